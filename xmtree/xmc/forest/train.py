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
import json
import logging
import sys

from xmtree.core import LOSS_TYPES
from xmtree.utils import cli, data_util, logging_util
from xmtree.utils.profile_util import MemInfo

from .model import ForestModel

LOGGER = logging.getLogger(__name__)


def parse_arguments():
    """Parse training arguments"""

    parser = argparse.ArgumentParser()

    parser.add_argument(
        "--generate-params-skeleton",
        action="store_true",
        help="generate template params-json to stdout",
    )

    skip_training = "--generate-params-skeleton" in sys.argv
    # ========= parameter jsons ============
    parser.add_argument(
        "--params-path",
        type=str,
        default=None,
        metavar="PARAMS_PATH",
        help="Json file for params (default None)",
    )
    # ======= actual arguments ========

    # Required parameters
    parser.add_argument(
        "-i",
        "--train-path",
        type=str,
        required=not skip_training,
        metavar="PATH",
        help="path to the training data in text format (header '<nr_insts> <nr_feats> <nr_labels>')",
    )

    parser.add_argument(
        "-m",
        "--model-folder",
        type=str,
        required=not skip_training,
        metavar="DIR",
        help="path to the model folder.",
    )

    # Tree parameters
    parser.add_argument(
        "--n-trees",
        "--n_trees",
        type=cli.positive_int,
        default=None,
        dest="n_trees",
        metavar="INT",
        help="number of trees in the ensemble (default 3)",
    )

    parser.add_argument(
        "--max-leaf-size",
        "--max_leaf_size",
        type=cli.positive_int,
        default=None,
        dest="max_leaf_size",
        metavar="INT",
        help="nodes with at most this many labels become leaves (default 100)",
    )

    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        dest="max_depth",
        metavar="INT",
        help="nodes at this depth become leaves regardless of their size (default 20)",
    )

    parser.add_argument(
        "--seed", type=int, default=None, metavar="INT", help="random seed (default 0)"
    )

    parser.add_argument(
        "-n",
        "--threads",
        "--n_threads",
        type=int,
        default=None,
        dest="threads",
        metavar="INT",
        help="number of threads to use (default 0 to denote all the CPUs)",
    )

    # Clustering parameters
    parser.add_argument(
        "--centroid-threshold",
        "--centroid_threshold",
        type=cli.non_negative_float,
        default=None,
        dest="centroid_threshold",
        metavar="VAL",
        help="prune label centroid components below this value before clustering (default 0.0)",
    )

    parser.add_argument(
        "--cluster-eps",
        "--cluster_eps",
        type=cli.non_negative_float,
        default=None,
        dest="cluster_eps",
        metavar="VAL",
        help="2-means stops once the mean similarity improves by less than this (default 1e-4)",
    )

    parser.add_argument(
        "--cluster-max-iter",
        type=cli.positive_int,
        default=None,
        dest="cluster_max_iter",
        metavar="INT",
        help="max number of 2-means iterations per split (default 20)",
    )

    # Linear classifier parameters
    parser.add_argument(
        "--linear.c",
        type=float,
        default=None,
        dest="c",
        metavar="VAL",
        help="cost coefficient of the loss term (default 1.0)",
    )

    parser.add_argument(
        "--linear.eps",
        type=float,
        default=None,
        dest="eps",
        metavar="VAL",
        help="stopping tolerance of the dual coordinate descent (default 0.1)",
    )

    parser.add_argument(
        "--linear.loss",
        type=str,
        choices=list(LOSS_TYPES.keys()),
        default=None,
        dest="loss",
        metavar="STR",
        help="{} (default hinge)".format(" | ".join(LOSS_TYPES.keys())),
    )

    parser.add_argument(
        "--linear.max_iter",
        "--linear.max-iter",
        type=cli.positive_int,
        default=None,
        dest="max_iter",
        metavar="INT",
        help="max number of passes of the dual coordinate descent (default 20)",
    )

    parser.add_argument(
        "--linear.max_sparse_density",
        "--linear.max-sparse-density",
        type=cli.non_negative_float,
        default=None,
        dest="max_sparse_density",
        metavar="VAL",
        help="store weights sparse when at most this fraction is nonzero (default 0.15)",
    )

    parser.add_argument(
        "--linear.weight_threshold",
        "--linear.weight-threshold",
        type=cli.non_negative_float,
        default=None,
        dest="weight_threshold",
        metavar="VAL",
        help="threshold to sparsify the model weights (default 0.1)",
    )

    parser.add_argument(
        "--linear.bias",
        type=float,
        default=None,
        dest="bias",
        metavar="VAL",
        help="bias term (default 1.0)",
    )

    # Prediction kwargs
    parser.add_argument(
        "-k",
        "--only-topk",
        type=cli.positive_int,
        default=None,
        metavar="INT",
        help="the default number of top labels used in the prediction",
    )

    parser.add_argument(
        "-b",
        "--beam-size",
        type=cli.positive_int,
        default=None,
        metavar="INT",
        help="the default size of beam search used in the prediction",
    )

    cli.add_verbose_level_argument(parser, default=1)

    return parser


def do_train(args):
    """Train and Save forest model

    Args:
        args (argparse.Namespace): Command line arguments parsed by `parser.parse_args()`
    """
    params = dict()
    if args.generate_params_skeleton:
        params["train_params"] = ForestModel.TrainParams.from_dict({}, recursive=True).to_dict()
        params["pred_params"] = ForestModel.PredParams.from_dict({}, recursive=True).to_dict()
        print(f"{json.dumps(params, indent=True)}")
        return

    if args.params_path:
        with open(args.params_path, "r", encoding="utf-8") as fin:
            params = json.load(fin)

    train_params = params.get("train_params", None)
    pred_params = params.get("pred_params", None)
    cli_kwargs = {k: v for k, v in vars(args).items() if v is not None}

    if train_params is not None:
        train_params = ForestModel.TrainParams.from_dict(train_params)
        train_params.override_with_kwargs(cli_kwargs)
    else:
        train_params = ForestModel.TrainParams.from_dict(cli_kwargs, recursive=True)

    if pred_params is not None:
        pred_params = ForestModel.PredParams.from_dict(pred_params)
        pred_params.override_with_kwargs(cli_kwargs)
    else:
        pred_params = ForestModel.PredParams.from_dict(cli_kwargs, recursive=True)

    # validate before the data is loaded
    train_params.validate()
    pred_params.validate()

    X, Y = data_util.load_xmc_text(args.train_path)
    LOGGER.info(f"Loaded training data. {MemInfo.mem_info()}")

    model = ForestModel.train(X, Y, train_params=train_params, pred_params=pred_params)
    model.save(args.model_folder)


if __name__ == "__main__":
    parser = parse_arguments()
    args = parser.parse_args()
    logging_util.setup_logging_config(level=args.verbose_level)
    do_train(args)
