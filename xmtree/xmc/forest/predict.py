#  Copyright 2021 Amazon.com, Inc. or its affiliates. All Rights Reserved.
#
#  Licensed under the Apache License, Version 2.0 (the "License"). You may not use this file except in compliance
#  with the License. A copy of the License is located at
#
#  http://aws.amazon.com/apache2.0/
#
#  or in the "license" file accompanying this file. This file is distributed on an "AS IS" BASIS, WITHOUT WARRANTIES
#  OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific language governing permissions
#  and limitations under the License.
import argparse
import logging

from xmtree.utils import cli, data_util, logging_util, smat_util

from .model import ForestModel

LOGGER = logging.getLogger(__name__)


def parse_arguments():
    """Parse prediction arguments"""

    parser = argparse.ArgumentParser()

    # Required parameters
    parser.add_argument(
        "-i",
        "--test-path",
        type=str,
        required=True,
        metavar="PATH",
        help="path to the test data in text format, its labels are used for evaluation",
    )

    parser.add_argument(
        "-m",
        "--model-folder",
        type=str,
        required=True,
        metavar="DIR",
        help="path to the model folder.",
    )

    # Optional
    parser.add_argument(
        "-k",
        "--only-topk",
        "--k_top",
        type=cli.positive_int,
        default=None,
        dest="only_topk",
        metavar="INT",
        help="override the only topk specified in the model (default None to disable overriding)",
    )

    parser.add_argument(
        "-b",
        "--beam-size",
        "--beam_size",
        type=cli.positive_int,
        default=None,
        dest="beam_size",
        metavar="INT",
        help="override the beam size specified in the model (default None to disable overriding)",
    )

    parser.add_argument(
        "-o",
        "--save-pred-path",
        type=str,
        default=None,
        metavar="PATH",
        help="path to save the predictions (sorted CSR, nr_insts * nr_labels)",
    )

    parser.add_argument(
        "-n",
        "--threads",
        "--n_threads",
        type=int,
        default=None,
        dest="threads",
        metavar="THREADS",
        help="number of threads to use (default 0 to denote all the CPUs)",
    )

    cli.add_verbose_level_argument(parser, default=1)

    return parser


def do_predict(args):
    """Predict and Evaluate for forest model

    Args:
        args (argparse.Namespace): Command line arguments parsed by `parser.parse_args()`
    """

    # Load data
    Xt, Yt = data_util.load_xmc_text(args.test_path)
    model = ForestModel.load(args.model_folder)
    if Xt.shape[1] != model.nr_features:
        LOGGER.warning(
            f"test data has {Xt.shape[1]} features while the model was trained on {model.nr_features}"
        )

    # Model Predicting
    Yt_pred = model.predict_csr(
        Xt,
        only_topk=args.only_topk,
        beam_size=args.beam_size,
        threads=args.threads,
    )

    # Save prediction
    if args.save_pred_path:
        smat_util.save_matrix(args.save_pred_path, Yt_pred)

    # Evaluate
    if Yt.shape[1] == Yt_pred.shape[1]:
        metric = smat_util.Metrics.generate(Yt.tocsr(), Yt_pred, topk=10)
        print("==== evaluation results ====")
        print(metric)
    else:
        LOGGER.warning(f"skip evaluation: test data has {Yt.shape[1]} labels, model has {Yt_pred.shape[1]}")


if __name__ == "__main__":
    parser = parse_arguments()
    args = parser.parse_args()
    logging_util.setup_logging_config(level=args.verbose_level)
    do_predict(args)
