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


def test_importable():
    import xmtree.xmc  # noqa: F401
    from xmtree.xmc.base import BalancedKMeans  # noqa: F401
    from xmtree.xmc.base import LabelTreeBuilder  # noqa: F401


def _load_problem(name="train.txt"):
    from xmtree.utils import data_util
    from xmtree.xmc.base import MLProblem

    X, Y = data_util.load_xmc_text(f"test/tst-data/xmc/forest/{name}")
    return MLProblem(X, Y)


def test_label_centroids():
    from xmtree.xmc.base import LabelCentroidFactory
    import numpy as np
    import scipy.sparse as smat

    X = smat.csr_matrix(np.array([[1.0, 0.0, 0.0], [0.0, 3.0, 4.0], [0.0, 0.0, 1.0]], dtype=np.float32))
    Y = smat.csc_matrix(np.array([[1, 0, 0], [1, 1, 0], [0, 0, 0]], dtype=np.float32))
    C = LabelCentroidFactory.create(X, Y)
    assert C.shape == (3, 3)
    assert C.toarray()[0] == approx(np.array([1.0, 3.0, 4.0]) / np.sqrt(26.0))
    assert C.toarray()[1] == approx([0.0, 0.6, 0.8])
    # a label without instances has an all-zero centroid
    assert C.getrow(2).nnz == 0

    C = LabelCentroidFactory.create(X, Y, centroid_threshold=0.3)
    assert C.toarray()[0] == approx(np.array([0.0, 3.0, 4.0]) / 5.0)


@pytest.mark.parametrize("nr_labels", [2, 3, 4, 7, 10, 33])
def test_balanced_kmeans_split(nr_labels):
    from xmtree.xmc.base import BalancedKMeans
    import numpy as np
    import scipy.sparse as smat
    from sklearn.preprocessing import normalize

    rng = np.random.RandomState(nr_labels)
    C = normalize(smat.random(nr_labels, 20, density=0.3, format="csr", random_state=rng))
    for seed in range(5):
        first, second = BalancedKMeans.split(C, seed=seed)
        assert abs(len(first) - len(second)) <= 1
        assert len(np.intersect1d(first, second)) == 0
        assert np.array_equal(np.union1d(first, second), np.arange(nr_labels))
        again = BalancedKMeans.split(C, seed=seed)
        assert np.array_equal(first, again[0]) and np.array_equal(second, again[1])


def test_balanced_kmeans_separates_groups():
    from xmtree.xmc.base import BalancedKMeans
    import numpy as np
    import scipy.sparse as smat

    # labels 0..2 point along feature 0, labels 3..5 along feature 1
    C = smat.csr_matrix(
        np.array([[1.0, 0.0], [0.9, 0.1], [0.95, 0.05], [0.0, 1.0], [0.1, 0.9], [0.05, 0.95]])
    )
    from sklearn.preprocessing import normalize

    first, second = BalancedKMeans.split(normalize(C), seed=0)
    groups = sorted([sorted(first.tolist()), sorted(second.tolist())])
    assert groups == [[0, 1, 2], [3, 4, 5]]


def test_balanced_kmeans_ties_are_deterministic():
    from xmtree.xmc.base import BalancedKMeans
    import scipy.sparse as smat

    # identical centroids: every margin ties and positions decide
    C = smat.csr_matrix([[1.0, 0.0]] * 5)
    first, second = BalancedKMeans.split(C, seed=11)
    assert first.tolist() == [0, 1]
    assert second.tolist() == [2, 3, 4]


def test_balanced_kmeans_iteration_cap():
    from xmtree.xmc.base import BalancedKMeans
    import numpy as np
    import scipy.sparse as smat
    from sklearn.preprocessing import normalize

    rng = np.random.RandomState(3)
    C = normalize(smat.random(21, 15, density=0.3, format="csr", random_state=rng))
    params = {"cluster_max_iter": 1, "cluster_eps": 0.0}
    first, second = BalancedKMeans.split(C, train_params=params, seed=2)
    assert sorted([len(first), len(second)]) == [10, 11]
    assert np.array_equal(np.union1d(first, second), np.arange(21))
    again = BalancedKMeans.split(C, train_params=params, seed=2)
    assert np.array_equal(first, again[0]) and np.array_equal(second, again[1])


def test_balanced_kmeans_invalid_input():
    from xmtree.xmc.base import BalancedKMeans
    import scipy.sparse as smat

    with pytest.raises(ValueError):
        BalancedKMeans.split(smat.csr_matrix([[1.0, 0.0]]))
    with pytest.raises(ValueError):
        BalancedKMeans.split(smat.csr_matrix([[1.0], [0.5]]), train_params={"cluster_max_iter": 0})


def _leaf_label_sets(tree):
    return [node.labels.tolist() for node in tree.leaves()]


def test_tree_label_partition():
    from xmtree.xmc.base import LabelTreeBuilder
    import numpy as np

    prob = _load_problem()
    for max_leaf_size in [1, 2, 3, 100]:
        builder = LabelTreeBuilder(prob, {"max_leaf_size": max_leaf_size})
        tree = builder.build(seed=5, threads=2)
        labels = np.sort(np.concatenate([node.labels for node in tree.leaves()]))
        assert labels.tolist() == list(range(prob.nr_labels))
        assert all(len(leaf) <= max_leaf_size for leaf in _leaf_label_sets(tree))
        tree.validate(prob.nr_labels, prob.nr_features + 1)
        for nid, node in enumerate(tree.nodes):
            if not node.is_leaf:
                assert len(node.classifiers) == 2
                assert all(c > nid for c in node.children)
            else:
                assert len(node.classifiers) == len(node.labels)


def test_instances_routed_to_every_matching_child():
    from xmtree.xmc.base import LabelTreeBuilder, TreeNode, _BuildJob
    import numpy as np

    prob = _load_problem()
    Y = prob.Y.tocsr()
    builder = LabelTreeBuilder(prob, {"max_leaf_size": 1})

    def expected_insts(insts, labels):
        return np.array([i for i in insts if np.intersect1d(Y[i].indices, labels).size > 0], dtype=np.int64)

    all_labels = np.arange(prob.nr_labels, dtype=np.int32)
    root = _BuildJob(0, 0, all_labels, np.arange(prob.nr_insts, dtype=np.int64), 0, 7)
    jobs = [root]
    while jobs:
        job = jobs.pop()
        expansion = builder._expand(job)
        if expansion.kind == TreeNode.LEAF:
            continue
        (labels_0, insts_0, _), (labels_1, insts_1, _) = expansion.children
        assert len(np.intersect1d(labels_0, labels_1)) == 0
        assert np.array_equal(np.union1d(labels_0, labels_1), np.sort(job.labels))
        # an instance with labels on both sides reaches both children
        shared = np.intersect1d(expected_insts(job.insts, labels_0), expected_insts(job.insts, labels_1))
        assert np.array_equal(np.intersect1d(insts_0, insts_1), shared)
        if job is root:
            # six labels split three and three always separate one of the pairs 0-1, 2-3, 4-5
            assert len(shared) > 0

        targets = expansion.targets
        assert targets.shape == (len(job.insts), 2)
        for j, (labels, insts, _) in enumerate(expansion.children):
            assert np.array_equal(insts, expected_insts(job.insts, labels))
            positives = targets.indices[targets.indptr[j] : targets.indptr[j + 1]]
            assert np.array_equal(job.insts[positives], insts)
            jobs.append(_BuildJob(0, job.node_id + j + 1, labels, insts, job.depth + 1, 0))


def test_tiny_tree_shape():
    from xmtree.xmc.base import LabelTreeBuilder, TreeNode

    prob = _load_problem("tiny.txt")
    tree = LabelTreeBuilder(prob, {"max_leaf_size": 2}).build(seed=0, threads=1)
    assert tree.nr_nodes == 3
    assert tree.root.kind == TreeNode.INTERNAL
    assert tree.root.labels.tolist() == [0, 1, 2]
    leaf_sizes = sorted(len(leaf) for leaf in _leaf_label_sets(tree))
    assert leaf_sizes == [1, 2]
    assert tree.depth == 1


def test_max_depth_forces_leaves():
    from xmtree.xmc.base import LabelTreeBuilder

    prob = _load_problem()
    tree = LabelTreeBuilder(prob, {"max_leaf_size": 1, "max_depth": 1}).build(seed=0, threads=1)
    assert tree.depth == 1
    assert len(tree.leaves()) == 2
    assert sorted(len(leaf) for leaf in _leaf_label_sets(tree)) == [3, 3]


def test_build_independent_of_threads():
    from xmtree.xmc.base import LabelTreeBuilder
    import numpy as np

    prob = _load_problem()
    builder = LabelTreeBuilder(prob, {"max_leaf_size": 2})
    arrays_1 = builder.build(seed=3, threads=1).to_arrays()
    arrays_4 = builder.build(seed=3, threads=4).to_arrays()
    for name, arr in arrays_1.items():
        assert np.array_equal(arr, arrays_4[name]), name


def test_tree_arrays_round_trip():
    from xmtree.xmc.base import LabelTreeBuilder, Tree
    import numpy as np

    prob = _load_problem()
    tree = LabelTreeBuilder(prob, {"max_leaf_size": 2}).build(seed=1, threads=2)
    arrays = tree.to_arrays()
    tree2 = Tree.from_arrays(arrays, prob.nr_labels, prob.nr_features + 1)
    for name, arr in tree2.to_arrays().items():
        assert np.array_equal(arr, arrays[name]), name

    broken = dict(arrays)
    broken["children"] = np.full_like(arrays["children"], -1)
    with pytest.raises(ValueError):
        Tree.from_arrays(broken, prob.nr_labels, prob.nr_features + 1)
    with pytest.raises(ValueError):
        Tree.from_arrays(arrays, prob.nr_labels + 1, prob.nr_features + 1)
    with pytest.raises(ValueError):
        Tree.from_arrays(arrays, prob.nr_labels, prob.nr_features + 2)
    broken = dict(arrays)
    del broken["dense_data"]
    with pytest.raises(ValueError):
        Tree.from_arrays(broken, prob.nr_labels, prob.nr_features + 1)


def test_beam_search_beam_size_one():
    from xmtree.core import Transform
    from xmtree.xmc.base import LabelTreeBuilder
    import numpy as np

    prob = _load_problem()
    tree = LabelTreeBuilder(prob, {"max_leaf_size": 2}).build(seed=2, threads=1)
    leaf_sets = [set(leaf) for leaf in _leaf_label_sets(tree)]
    for i in range(prob.nr_insts):
        row = prob.X.getrow(i)
        x_dense = np.zeros(prob.nr_features + 1, dtype=np.float32)
        x_dense[row.indices] = row.data
        x_dense[-1] = 1.0
        labels, scores = tree.beam_search(x_dense, 1, Transform.log_l2_hinge)
        assert any(set(labels.tolist()) == leaf for leaf in leaf_sets)
        assert np.all(scores <= 0)

        labels, scores = tree.beam_search(x_dense, prob.nr_labels, Transform.log_l2_hinge)
        assert sorted(labels.tolist()) == list(range(prob.nr_labels))


def test_builder_propagates_worker_errors():
    from xmtree.xmc.base import LabelTreeBuilder

    class Boom(RuntimeError):
        pass

    class FailingBuilder(LabelTreeBuilder):
        def _train_classifiers(self, expansion, cols):
            raise Boom("classifier training failed")

    prob = _load_problem()
    with pytest.raises(Boom):
        FailingBuilder(prob, {"max_leaf_size": 2}).build(seed=0, threads=2)


def test_invalid_tree_params():
    from xmtree.xmc.base import LabelTreeBuilder

    prob = _load_problem()
    with pytest.raises(ValueError):
        LabelTreeBuilder(prob, {"max_leaf_size": 0})
    with pytest.raises(ValueError):
        LabelTreeBuilder(prob, {"max_depth": -1})
