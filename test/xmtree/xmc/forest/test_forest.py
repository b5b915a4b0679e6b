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
import pytest  # noqa: F401; pylint: disable=unused-variable
from pytest import approx

TRAIN_FILE = "test/tst-data/xmc/forest/train.txt"
TEST_FILE = "test/tst-data/xmc/forest/test.txt"
TINY_FILE = "test/tst-data/xmc/forest/tiny.txt"


def test_importable():
    import xmtree.xmc.forest  # noqa: F401
    from xmtree.xmc.forest import ForestModel  # noqa: F401
    from xmtree.xmc.forest.model import ForestModel  # noqa: F401,F811


def _train(**kwargs):
    from xmtree.utils import data_util
    from xmtree.xmc.forest import ForestModel

    X, Y = data_util.load_xmc_text(TRAIN_FILE)
    params = {"n_trees": 3, "max_leaf_size": 2, "seed": 0, "threads": 2}
    params.update(kwargs)
    return ForestModel.train(X, Y, **params)


def test_train_params_from_kwargs():
    from xmtree.xmc.forest import ForestModel

    params = ForestModel.TrainParams.from_dict({"n_trees": 2, "c": 0.5, "cluster_eps": 0.01}, recursive=True)
    assert params.n_trees == 2
    assert params.linear_args.c == 0.5
    assert params.cluster_args.cluster_eps == 0.01
    assert params.max_leaf_size == 100
    d = params.to_dict()
    assert ForestModel.TrainParams.from_dict(d) == params


def test_predict_format():
    from xmtree.utils import data_util

    model = _train()
    assert model.nr_trees == 3
    Xt, _ = data_util.load_xmc_text(TEST_FILE)
    results = model.predict(Xt, only_topk=3)
    assert len(results) == Xt.shape[0]
    for res in results:
        assert 0 < len(res) <= 3
        assert all(score > 0 for _, score in res)
        keys = [(-score, label) for label, score in res]
        assert keys == sorted(keys)
        assert len({label for label, _ in res}) == len(res)

    Y_pred = model.predict_csr(Xt, only_topk=3)
    assert Y_pred.shape == (Xt.shape[0], model.nr_labels)
    for i, res in enumerate(results):
        row = slice(Y_pred.indptr[i], Y_pred.indptr[i + 1])
        assert Y_pred.indices[row].tolist() == [label for label, _ in res]
        assert Y_pred.data[row] == approx([score for _, score in res])


def test_flat_model_accuracy():
    from xmtree.utils import data_util, smat_util

    # a single leaf makes the model one-vs-rest
    model = _train(n_trees=1, max_leaf_size=100, c=10.0)
    assert model.trees[0].nr_nodes == 1
    Xt, Yt = data_util.load_xmc_text(TEST_FILE)
    metric = smat_util.Metrics.generate(Yt, model.predict_csr(Xt, only_topk=6), topk=1)
    assert metric.prec[0] >= 0.8


def test_tiny_scenario():
    from xmtree.utils import data_util
    from xmtree.xmc.base import TreeNode
    from xmtree.xmc.forest import ForestModel

    X, Y = data_util.load_xmc_text(TINY_FILE)
    model = ForestModel.train(X, Y, n_trees=1, max_leaf_size=2)
    tree = model.trees[0]
    assert [node.kind for node in tree.nodes].count(TreeNode.INTERNAL) == 1
    assert sorted(len(leaf.labels) for leaf in tree.leaves()) == [1, 2]


def test_beam_size_one_stays_in_one_leaf():
    from xmtree.utils import data_util

    model = _train(n_trees=1)
    leaf_sets = [set(leaf.labels.tolist()) for leaf in model.trees[0].leaves()]
    Xt, _ = data_util.load_xmc_text(TEST_FILE)
    for res in model.predict(Xt, beam_size=1, only_topk=model.nr_labels):
        labels = {label for label, _ in res}
        assert any(labels <= leaf for leaf in leaf_sets)
    for res in model.predict(Xt, beam_size=1, only_topk=1):
        assert len(res) <= 1


def test_beam_monotonicity():
    from xmtree.utils import data_util

    model = _train(max_leaf_size=1)
    X, _ = data_util.load_xmc_text(TRAIN_FILE)
    nr_labels = model.nr_labels
    full = model.predict(X, beam_size=nr_labels, only_topk=nr_labels)
    for beam_size in [1, 2, 3]:
        partial = model.predict(X, beam_size=beam_size, only_topk=nr_labels)
        for res_full, res_partial in zip(full, partial):
            full_scores = dict(res_full)
            for label, score in res_partial:
                assert full_scores[label] >= score * (1 - 1e-9)


def test_label_without_instances_is_never_predicted():
    from xmtree.utils import data_util
    from xmtree.xmc.forest import ForestModel
    import scipy.sparse as smat

    X, Y = data_util.load_xmc_text(TRAIN_FILE)
    # append label 6 that no instance carries
    Y = smat.hstack([Y, smat.csr_matrix((Y.shape[0], 1), dtype=Y.dtype)]).tocsr()
    for max_leaf_size in [1, 2, 7]:
        model = ForestModel.train(X, Y, n_trees=2, max_leaf_size=max_leaf_size, threads=1)
        for res in model.predict(X, beam_size=7, only_topk=7):
            assert 6 not in [label for label, _ in res]


def test_underflowing_scores_are_kept():
    from xmtree.core import LinearClassifier
    from xmtree.xmc.base import Tree, TreeNode
    from xmtree.xmc.forest import ForestModel
    import numpy as np
    import scipy.sparse as smat

    def clf(*weights):
        return LinearClassifier(2, np.array(weights, dtype=np.float32))

    # the path to node 1 scores -(1 + 30)^2, far below the smallest exp() that does not underflow
    tree = Tree(
        [
            TreeNode(TreeNode.INTERNAL, [0, 1, 2, 3], children=(1, 2), classifiers=[clf(-30.0, 0.0), clf(0.0, 5.0)]),
            TreeNode(TreeNode.LEAF, [0, 3], classifiers=[clf(0.0, 5.0), clf(0.0, -1.0)]),
            TreeNode(TreeNode.LEAF, [1, 2], classifiers=[clf(0.0, 5.0), clf(0.0, -np.inf)]),
        ]
    ).validate(4, 2)
    model = ForestModel([tree], nr_features=1, nr_labels=4)
    X = smat.csr_matrix(np.array([[2.0]], dtype=np.float32))

    res = model.predict(X, beam_size=2, only_topk=4)[0]
    # label 2 sits behind an always-zero classifier and is dropped
    assert [label for label, _ in res] == [1, 0, 3]
    assert res[0][1] == approx(1.0)
    assert res[1][1] == 0 and res[2][1] == 0
    assert model.predict(X, beam_size=2, only_topk=2)[0] == res[:2]

    # the same tree twice doubles every score and keeps the order
    twice = ForestModel([tree, tree], nr_features=1, nr_labels=4).predict(X, beam_size=2, only_topk=4)[0]
    assert [label for label, _ in twice] == [1, 0, 3]
    assert twice[0][1] == approx(2.0)


def test_out_of_range_query_features_are_ignored():
    from xmtree.utils import data_util
    import scipy.sparse as smat

    model = _train()
    Xt, _ = data_util.load_xmc_text(TEST_FILE)
    wide = smat.hstack([Xt, smat.csr_matrix(([5.0], ([0], [3])), shape=(Xt.shape[0], 4))]).tocsr()
    assert model.predict(wide) == model.predict(Xt)


def test_deterministic_regardless_of_threads():
    import numpy as np

    model_1 = _train(threads=1)
    model_4 = _train(threads=4)
    for tree_1, tree_4 in zip(model_1.trees, model_4.trees):
        arrays_4 = tree_4.to_arrays()
        for name, arr in tree_1.to_arrays().items():
            assert np.array_equal(arr, arrays_4[name]), name


@pytest.mark.parametrize("loss", ["hinge", "log"])
def test_train_with_iteration_caps(loss):
    from xmtree.utils import data_util
    import numpy as np

    model = _train(loss=loss, max_iter=1, eps=1e-12, cluster_max_iter=1, cluster_eps=0.0)
    assert model.train_params.linear_args.max_iter == 1
    assert model.train_params.cluster_args.cluster_max_iter == 1
    Xt, _ = data_util.load_xmc_text(TEST_FILE)
    results = model.predict(Xt, only_topk=3)
    assert len(results) == Xt.shape[0]
    for res in results:
        assert len(res) <= 3
        assert all(np.isfinite(score) and score > 0 for _, score in res)


def test_predict_independent_of_threads():
    from xmtree.utils import data_util

    model = _train(loss="log")
    X, _ = data_util.load_xmc_text(TRAIN_FILE)
    assert model.predict(X, threads=1) == model.predict(X, threads=3)


@pytest.mark.parametrize("loss", ["hinge", "log"])
def test_save_load(tmpdir, loss):
    from xmtree.utils import data_util
    from xmtree.xmc.forest import ForestModel

    model = _train(loss=loss, max_sparse_density=0.5)
    model_folder = str(tmpdir.join("save_model"))
    model.save(model_folder)
    loaded = ForestModel.load(model_folder)
    assert loaded.nr_labels == model.nr_labels
    assert loaded.nr_features == model.nr_features
    assert loaded.train_params == model.train_params

    X, _ = data_util.load_xmc_text(TRAIN_FILE)
    assert loaded.predict(X, only_topk=6) == model.predict(X, only_topk=6)

    restored = ForestModel.from_bytes(model.to_bytes())
    assert restored.predict(X, only_topk=6) == model.predict(X, only_topk=6)


def test_corrupted_model(tmpdir):
    import numpy as np
    from xmtree.xmc.forest import ForestModel
    import json

    model = _train()
    buf = model.to_bytes()
    with pytest.raises(ValueError):
        ForestModel.from_bytes(buf[: len(buf) // 2])
    with pytest.raises(ValueError):
        ForestModel.from_bytes(b"not a model")

    arrays = model._tree_arrays()
    meta = model.get_meta()
    del arrays["tree1/clf_indptr"]
    with pytest.raises(ValueError):
        ForestModel._from_parts(meta, arrays)

    arrays = model._tree_arrays()
    arrays["tree0/label_indices"] = arrays["tree0/label_indices"][::-1].copy()
    with pytest.raises(ValueError):
        ForestModel._from_parts(meta, arrays)

    # offset arrays must start at zero
    for name in ["label_indptr", "clf_indptr"]:
        arrays = model._tree_arrays()
        arrays[f"tree0/{name}"] = arrays[f"tree0/{name}"].copy()
        arrays[f"tree0/{name}"][0] = -3
        with pytest.raises(ValueError):
            ForestModel._from_parts(meta, arrays)

    sparse_model = _train(max_sparse_density=1.0, weight_threshold=0.0)
    sparse_meta = sparse_model.get_meta()
    arrays = sparse_model._tree_arrays()
    indptr = arrays["tree0/sparse_indptr"]
    assert len(indptr) > 1
    arrays["tree0/sparse_indptr"] = indptr.copy()
    arrays["tree0/sparse_indptr"][0] = -3
    with pytest.raises(ValueError):
        ForestModel._from_parts(sparse_meta, arrays)

    # weight indices of a sparse classifier must be strictly increasing
    lengths = np.diff(indptr)
    pos = int(np.flatnonzero(lengths >= 2)[0])
    start, end = indptr[pos], indptr[pos + 1]
    for corrupt in ["reversed", "repeated"]:
        arrays = sparse_model._tree_arrays()
        indices = arrays["tree0/sparse_indices"].copy()
        if corrupt == "reversed":
            indices[start:end] = indices[start:end][::-1]
        else:
            indices[start + 1] = indices[start]
        arrays["tree0/sparse_indices"] = indices
        with pytest.raises(ValueError):
            ForestModel._from_parts(sparse_meta, arrays)

    model_folder = str(tmpdir.join("save_model"))
    model.save(model_folder)
    with open(f"{model_folder}/param.json", "r") as fin:
        meta = json.load(fin)
    meta["nr_labels"] += 1
    with open(f"{model_folder}/param.json", "w") as fout:
        json.dump(meta, fout)
    with pytest.raises(ValueError):
        ForestModel.load(model_folder)

    with open(f"{model_folder}/forest.npz", "wb") as fout:
        fout.write(b"\x00" * 10)
    with pytest.raises(ValueError):
        ForestModel.load(model_folder)

    with pytest.raises(FileNotFoundError):
        ForestModel.load(str(tmpdir.join("no_model")))


def test_invalid_params():
    from xmtree.utils import data_util
    from xmtree.xmc.forest import ForestModel

    X, Y = data_util.load_xmc_text(TINY_FILE)
    for bad in [{"n_trees": 0}, {"max_leaf_size": 0}, {"loss": "l1"}, {"cluster_max_iter": 0}]:
        with pytest.raises(ValueError):
            ForestModel.train(X, Y, **bad)

    model = ForestModel.train(X, Y, n_trees=1)
    with pytest.raises(ValueError):
        model.predict(X, beam_size=0)
    with pytest.raises(ValueError):
        model.predict(X, only_topk=0)


def test_cli(tmpdir):
    import subprocess
    import shlex
    from xmtree.utils import smat_util
    from xmtree.xmc.forest import ForestModel

    model_folder = str(tmpdir.join("save_model"))
    pred_path = str(tmpdir.join("Yt_pred.npz"))

    cmd = []
    cmd += ["python3 -m xmtree.xmc.forest.train"]
    cmd += ["-i {}".format(TRAIN_FILE)]
    cmd += ["-m {}".format(model_folder)]
    cmd += ["--n-trees 2"]
    cmd += ["--max-leaf-size 2"]
    cmd += ["--linear.c 2.0"]
    cmd += ["--linear.loss log"]
    cmd += ["--centroid_threshold 0.01"]
    cmd += ["-n 2"]
    process = subprocess.run(
        shlex.split(" ".join(cmd)), stdout=subprocess.PIPE, stderr=subprocess.PIPE
    )
    assert process.returncode == 0, " ".join(cmd)

    model = ForestModel.load(model_folder)
    assert model.nr_trees == 2
    assert model.train_params.linear_args.c == approx(2.0)
    assert model.train_params.linear_args.loss == "log"
    assert model.train_params.cluster_args.centroid_threshold == approx(0.01)

    cmd = []
    cmd += ["python3 -m xmtree.xmc.forest.predict"]
    cmd += ["-i {}".format(TEST_FILE)]
    cmd += ["-m {}".format(model_folder)]
    cmd += ["-o {}".format(pred_path)]
    cmd += ["-b 4"]
    cmd += ["-k 2"]
    process = subprocess.run(
        shlex.split(" ".join(cmd)), stdout=subprocess.PIPE, stderr=subprocess.PIPE
    )
    assert process.returncode == 0, " ".join(cmd)
    assert b"prec" in process.stdout

    Yt_pred = smat_util.load_matrix(pred_path)
    assert Yt_pred.shape == (6, model.nr_labels)
    assert max(Yt_pred.indptr[1:] - Yt_pred.indptr[:-1]) <= 2


def test_cli_params_skeleton(tmpdir):
    import subprocess
    import shlex
    import json

    cmd = "python3 -m xmtree.xmc.forest.train --generate-params-skeleton"
    process = subprocess.run(shlex.split(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    assert process.returncode == 0
    params = json.loads(process.stdout)
    assert params["train_params"]["n_trees"] == 3
    assert params["train_params"]["linear_args"]["loss"] == "hinge"
    assert params["pred_params"]["beam_size"] == 10

    params["train_params"]["n_trees"] = 1
    params_path = str(tmpdir.join("params.json"))
    with open(params_path, "w") as fout:
        json.dump(params, fout)
    model_folder = str(tmpdir.join("save_model"))
    cmd = f"python3 -m xmtree.xmc.forest.train -i {TINY_FILE} -m {model_folder} --params-path {params_path}"
    process = subprocess.run(shlex.split(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    assert process.returncode == 0

    from xmtree.xmc.forest import ForestModel

    assert ForestModel.load(model_folder).nr_trees == 1


def test_cli_rejects_malformed_data(tmpdir):
    import subprocess
    import shlex

    data_path = str(tmpdir.join("bad.txt"))
    with open(data_path, "w") as fout:
        fout.write("1 3 2\n0 5:1.0\n")
    cmd = f"python3 -m xmtree.xmc.forest.train -i {data_path} -m {tmpdir.join('model')}"
    process = subprocess.run(shlex.split(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    assert process.returncode != 0
    assert b"out of range" in process.stderr


def test_train_params_override_reaches_nested_params():
    from xmtree.xmc.forest import ForestModel

    params = ForestModel.TrainParams.from_dict({"n_trees": 1})
    params.override_with_kwargs({"n_trees": 2, "c": 5.0, "loss": "log", "centroid_threshold": 0.2, "seed": None})
    assert params.n_trees == 2
    assert params.seed == 0
    assert params.linear_args.c == approx(5.0)
    assert params.linear_args.loss == "log"
    assert params.cluster_args.centroid_threshold == approx(0.2)


def test_cli_options_override_params_file(tmpdir):
    import subprocess
    import shlex
    import json
    from xmtree.xmc.forest import ForestModel

    params_path = str(tmpdir.join("params.json"))
    with open(params_path, "w") as fout:
        json.dump({"train_params": {"n_trees": 1, "linear_args": {"c": 3.0, "eps": 0.5}}}, fout)
    model_folder = str(tmpdir.join("save_model"))
    cmd = (
        f"python3 -m xmtree.xmc.forest.train -i {TINY_FILE} -m {model_folder} --params-path {params_path}"
        " --n-trees 2 --linear.c 5.0 --linear.loss log --centroid-threshold 0.05"
    )
    process = subprocess.run(shlex.split(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    assert process.returncode == 0, process.stderr

    train_params = ForestModel.load(model_folder).train_params
    assert train_params.n_trees == 2
    assert train_params.linear_args.c == approx(5.0)
    assert train_params.linear_args.loss == "log"
    # values only present in the params file are kept
    assert train_params.linear_args.eps == approx(0.5)
    assert train_params.cluster_args.centroid_threshold == approx(0.05)
