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
import collections
import json
import logging
from concurrent.futures import FIRST_COMPLETED, wait

import dataclasses as dc
import numpy as np
import scipy.sparse as smat
import xmtree
from xmtree.core import LOSS_TYPES, LinearClassifier
from xmtree.utils import parallel_util, smat_util
from sklearn.preprocessing import normalize

LOGGER = logging.getLogger(__name__)

MAX_SEED = 2**31 - 1


class MLProblem(object):
    """Read-only training data shared by every tree and node build task.

    X: shape of N by D, the l2-normalized instance feature matrix (CSR)
    Y: shape of N by L, the binary instance-to-label matrix, kept both as CSR (row slicing) and CSC (column slicing)
    """

    def __init__(self, X, Y):
        """Initialization

        Args:
            X (csr_matrix): instance feature matrix. Rows are l2-normalized on a copy.
            Y (csr_matrix or csc_matrix): instance-to-label matrix. Nonzeros are treated as relevant labels.
        """
        if not isinstance(X, smat.spmatrix):
            raise NotImplementedError("type(X) = {} is not supported.".format(type(X)))
        if not isinstance(Y, smat.spmatrix):
            raise NotImplementedError("type(Y) = {} is not supported.".format(type(Y)))
        if X.shape[0] != Y.shape[0]:
            raise ValueError(f"X.shape[0] = {X.shape[0]} != {Y.shape[0]} = Y.shape[0]")
        self.X = smat_util.l2_normalize_rows(smat.csr_matrix(X))
        Y = smat.csr_matrix(Y, dtype=np.float32, copy=True)
        Y.eliminate_zeros()
        Y = smat_util.binarized(Y, inplace=True)
        Y.sort_indices()
        self.Y = Y
        self.Y_csc = Y.tocsc()
        self.Y_csc.sort_indices()

    @property
    def nr_insts(self):
        return self.X.shape[0]

    @property
    def nr_features(self):
        return self.X.shape[1]

    @property
    def nr_labels(self):
        return self.Y.shape[1]


class LabelCentroidFactory(object):
    @staticmethod
    def create(X, Y, centroid_threshold=0.0):
        """Create label centroids from the instances carrying each label.

        The centroid of a label is the l2-normalized sum of the feature vectors of its instances,
        with components below `centroid_threshold` (after normalization) removed and the result re-normalized.

        Args:
            X (csr_matrix): instance feature matrix (nr_inst x nr_feat)
            Y (spmatrix): label matrix (nr_inst x nr_label)
            centroid_threshold (float, optional): pruning threshold. Default 0.0 to keep every component

        Returns:
            centroids (csr_matrix(float32)): (nr_label x nr_feat), all-zero rows for labels without instances
        """
        YT = smat.csr_matrix(Y.T, dtype=np.float32)
        centroids = smat.csr_matrix(YT.dot(X), dtype=np.float32)
        centroids = normalize(centroids, axis=1, norm="l2", copy=False)
        if centroid_threshold > 0:
            smat_util.prune_small_entries(centroids, centroid_threshold)
            centroids = normalize(centroids, axis=1, norm="l2", copy=False)
        centroids.sort_indices()
        return centroids


class BalancedKMeans(object):
    """Balanced spherical 2-means over label centroids.

    Labels are ranked by how much closer they are to the first cluster mean than to the second.
    The first cluster takes the labels with a positive margin, clamped to floor(n/2)..ceil(n/2) labels,
    so the two clusters never differ in size by more than one. Equal margins are ordered by the
    position of the label in the input, which makes every split deterministic for a given seed.
    """

    @dc.dataclass
    class TrainParams(xmtree.BaseParams):
        """Training Parameters of BalancedKMeans.

        Attributes:
            centroid_threshold (float, optional): prune label centroid components below this value. Default 0.0
            cluster_eps (float, optional): stop when the mean similarity improves by less than this. Default 1e-4
            cluster_max_iter (int, optional): maximum number of 2-means iterations. Default 20
        """

        centroid_threshold: float = 0.0
        cluster_eps: float = 1e-4
        cluster_max_iter: int = 20

        def validate(self):
            if self.centroid_threshold < 0:
                raise ValueError(f"centroid_threshold should be >= 0, got {self.centroid_threshold}")
            if self.cluster_eps < 0:
                raise ValueError(f"cluster_eps should be >= 0, got {self.cluster_eps}")
            if self.cluster_max_iter < 1:
                raise ValueError(f"cluster_max_iter should be at least 1, got {self.cluster_max_iter}")
            return self

    @classmethod
    def split(cls, centroids, train_params=None, seed=0):
        """Partition labels into two balanced clusters.

        Args:
            centroids (csr_matrix): l2-normalized label centroids (nr_label x nr_feat), nr_label >= 2
            train_params (BalancedKMeans.TrainParams, optional): clustering parameters
            seed (int, optional): seed for picking the two initial means. Default 0

        Returns:
            (ndarray, ndarray): sorted row positions of the first and the second cluster
        """
        train_params = cls.TrainParams.from_dict(train_params).validate()
        nr_labels = centroids.shape[0]
        if nr_labels < 2:
            raise ValueError(f"need at least 2 labels to split, got {nr_labels}")

        rng = np.random.RandomState(seed)
        c0, c1 = rng.choice(nr_labels, size=2, replace=False)
        means = smat.vstack([centroids[c0], centroids[c1]]).toarray().astype(np.float64)
        positions = np.arange(nr_labels)
        min_size, max_size = nr_labels // 2, nr_labels - nr_labels // 2

        prev_objective = -np.inf
        for it in range(train_params.cluster_max_iter):
            sims = np.asarray(centroids.dot(means.T))
            margin = sims[:, 0] - sims[:, 1]
            order = np.lexsort((positions, -margin))
            first_size = int(np.clip(np.count_nonzero(margin > 0), min_size, max_size))
            in_first = np.zeros(nr_labels, dtype=bool)
            in_first[order[:first_size]] = True

            objective = np.where(in_first, sims[:, 0], sims[:, 1]).mean()
            if objective - prev_objective < train_params.cluster_eps:
                break
            prev_objective = objective

            means[0] = smat_util.sum_rows(centroids, in_first)
            means[1] = smat_util.sum_rows(centroids, ~in_first)
            means = normalize(means, axis=1, norm="l2", copy=False)
        else:
            LOGGER.debug(f"2-means reached cluster_max_iter={train_params.cluster_max_iter}")

        return np.flatnonzero(in_first), np.flatnonzero(~in_first)


class TreeNode(object):
    """A node of a label tree, tagged by `kind`.

    Both kinds own `labels`, the sorted label ids reachable below the node.
    INTERNAL nodes own `children` (two node ids) and one routing classifier per child.
    LEAF nodes own one classifier per label, aligned with `labels`, and `children` is empty.
    """

    INTERNAL = 0
    LEAF = 1

    __slots__ = ("kind", "labels", "children", "classifiers")

    def __init__(self, kind, labels, children=(), classifiers=None):
        if kind not in (self.INTERNAL, self.LEAF):
            raise ValueError(f"unknown node kind {kind}")
        self.kind = kind
        self.labels = np.asarray(labels, dtype=np.int32)
        self.children = tuple(int(c) for c in children)
        self.classifiers = classifiers

    @property
    def is_leaf(self):
        return self.kind == self.LEAF


class Tree(object):
    """An immutable label tree with nodes stored in pre-order; node 0 is the root."""

    def __init__(self, nodes):
        self.nodes = list(nodes)

    @property
    def root(self):
        return self.nodes[0]

    @property
    def nr_nodes(self):
        return len(self.nodes)

    def leaves(self):
        return [node for node in self.nodes if node.is_leaf]

    @property
    def depth(self):
        depth = [0] * self.nr_nodes
        for nid, node in enumerate(self.nodes):
            for cid in node.children:
                depth[cid] = depth[nid] + 1
        return max(depth)

    def beam_search(self, x_dense, beam_size, transform):
        """Walk the tree keeping the `beam_size` best partial paths.

        Path scores add up the transformed classifier scores along the path. Leaves already in the beam are
        carried over unchanged while deeper paths are expanded, and the walk stops once every path ends at a leaf.

        Args:
            x_dense (ndarray): densified query with the bias value in the last slot
            beam_size (int): number of paths kept after each expansion
            transform (callable): maps raw classifier scores to additive path scores

        Returns:
            labels (ndarray(int32)), scores (ndarray(float64)): labels of the surviving leaves and their
                log scores (path score + label score), -inf for labels behind an always-zero classifier
        """
        beam = [(0.0, 0)]
        while any(not self.nodes[nid].is_leaf for _, nid in beam):
            candidates = []
            for score, nid in beam:
                node = self.nodes[nid]
                if node.is_leaf:
                    candidates.append((score, nid))
                    continue
                child_scores = transform(LinearClassifier.score_group(node.classifiers, x_dense))
                for cid, child_score in zip(node.children, child_scores):
                    candidates.append((score + float(child_score), cid))
            candidates.sort(key=lambda t: (-t[0], t[1]))
            beam = candidates[:beam_size]

        labels, scores = [], []
        for score, nid in beam:
            node = self.nodes[nid]
            label_scores = transform(LinearClassifier.score_group(node.classifiers, x_dense))
            labels.append(node.labels)
            scores.append(score + label_scores.astype(np.float64))
        return np.concatenate(labels), np.concatenate(scores)

    def validate(self, nr_labels, dim):
        """Check structural invariants, raising ValueError on the first violation.

        Args:
            nr_labels (int): size of the label universe, which must be partitioned by the leaves
            dim (int): expected classifier dimension (nr_features + 1)
        """
        if self.nr_nodes == 0:
            raise ValueError("tree has no nodes")
        parents = np.zeros(self.nr_nodes, dtype=np.int64)
        for nid, node in enumerate(self.nodes):
            if node.classifiers is None:
                raise ValueError(f"node {nid} has no classifiers")
            if node.is_leaf:
                if node.children:
                    raise ValueError(f"leaf {nid} has children")
                if len(node.classifiers) != len(node.labels):
                    raise ValueError(f"leaf {nid} has {len(node.labels)} labels but {len(node.classifiers)} classifiers")
            else:
                if len(node.children) != 2 or len(node.classifiers) != 2:
                    raise ValueError(f"internal node {nid} should have 2 children and 2 classifiers")
                for cid in node.children:
                    if not nid < cid < self.nr_nodes:
                        raise ValueError(f"internal node {nid} has invalid child {cid}")
                    parents[cid] += 1
                merged = np.sort(np.concatenate([self.nodes[cid].labels for cid in node.children]))
                if not np.array_equal(merged, node.labels):
                    raise ValueError(f"labels of node {nid} are not the disjoint union of its children's")
            for clf in node.classifiers:
                if clf.dim != dim:
                    raise ValueError(f"classifier of node {nid} has dim {clf.dim}, expected {dim}")
                if clf.is_sparse and len(clf.indices) and not (
                    0 <= clf.indices.min() and clf.indices.max() < dim
                ):
                    raise ValueError(f"classifier of node {nid} has out of range weight indices")
        if parents[0] != 0 or not np.all(parents[1:] == 1):
            raise ValueError("nodes do not form a single tree rooted at node 0")
        leaf_labels = np.sort(np.concatenate([node.labels for node in self.leaves()]))
        if not np.array_equal(leaf_labels, np.arange(nr_labels)):
            raise ValueError("leaves do not partition the label set")
        return self

    def to_arrays(self):
        """Flatten the tree into a dict of numpy arrays.

        Returns:
            dict: node_kind, children, label_indptr, label_indices, clf_indptr, clf_is_sparse,
                sparse_indptr, sparse_indices, sparse_data, dense_data
        """
        classifiers = [clf for node in self.nodes for clf in node.classifiers]
        sparse = [clf for clf in classifiers if clf.is_sparse]
        dense = [clf for clf in classifiers if not clf.is_sparse]
        dim = classifiers[0].dim if classifiers else 0
        return {
            "node_kind": np.array([node.kind for node in self.nodes], dtype=np.int8),
            "children": np.array(
                [node.children if node.children else (-1, -1) for node in self.nodes], dtype=np.int32
            ).reshape(-1, 2),
            "label_indptr": np.cumsum([0] + [len(node.labels) for node in self.nodes], dtype=np.int64),
            "label_indices": np.concatenate([node.labels for node in self.nodes]).astype(np.int32),
            "clf_indptr": np.cumsum([0] + [len(node.classifiers) for node in self.nodes], dtype=np.int64),
            "clf_is_sparse": np.array([clf.is_sparse for clf in classifiers], dtype=bool),
            "sparse_indptr": np.cumsum([0] + [len(clf.indices) for clf in sparse], dtype=np.int64),
            "sparse_indices": np.concatenate([clf.indices for clf in sparse] or [np.zeros(0)]).astype(np.int32),
            "sparse_data": np.concatenate([clf.data for clf in sparse] or [np.zeros(0)]).astype(np.float32),
            "dense_data": np.array([clf.data for clf in dense], dtype=np.float32).reshape(len(dense), dim),
        }

    @classmethod
    def from_arrays(cls, arrays, nr_labels, dim):
        """Rebuild and validate a tree from the output of `to_arrays`.

        Args:
            arrays (dict): flattened tree arrays
            nr_labels (int): size of the label universe
            dim (int): classifier dimension (nr_features + 1)

        Returns:
            Tree
        """
        try:
            node_kind = np.asarray(arrays["node_kind"])
            children = np.asarray(arrays["children"])
            label_indptr = np.asarray(arrays["label_indptr"])
            label_indices = np.asarray(arrays["label_indices"])
            clf_indptr = np.asarray(arrays["clf_indptr"])
            clf_is_sparse = np.asarray(arrays["clf_is_sparse"])
            sparse_indptr = np.asarray(arrays["sparse_indptr"])
            sparse_indices = np.asarray(arrays["sparse_indices"])
            sparse_data = np.asarray(arrays["sparse_data"])
            dense_data = np.asarray(arrays["dense_data"])
        except KeyError as e:
            raise ValueError(f"missing tree array {e}") from e

        nr_nodes = len(node_kind)
        nr_sparse = int(np.count_nonzero(clf_is_sparse))
        if (
            children.shape != (nr_nodes, 2)
            or label_indptr.shape != (nr_nodes + 1,)
            or clf_indptr.shape != (nr_nodes + 1,)
            or label_indptr[0] != 0
            or clf_indptr[0] != 0
            or label_indptr[-1] != len(label_indices)
            or clf_indptr[-1] != len(clf_is_sparse)
            or np.any(np.diff(label_indptr) < 0)
            or np.any(np.diff(clf_indptr) < 0)
            or sparse_indptr.shape != (nr_sparse + 1,)
            or sparse_indptr[0] != 0
            or np.any(np.diff(sparse_indptr) < 0)
            or sparse_indptr[-1] != len(sparse_indices)
            or len(sparse_indices) != len(sparse_data)
            or dense_data.shape != (len(clf_is_sparse) - nr_sparse, dim)
        ):
            raise ValueError("inconsistent tree array shapes")

        classifiers = []
        sparse_pos = dense_pos = 0
        for is_sparse in clf_is_sparse:
            if is_sparse:
                rng = slice(sparse_indptr[sparse_pos], sparse_indptr[sparse_pos + 1])
                if np.any(np.diff(sparse_indices[rng]) <= 0):
                    raise ValueError(f"sparse classifier {sparse_pos} has unsorted or repeated weight indices")
                classifiers.append(LinearClassifier(dim, sparse_data[rng], sparse_indices[rng]))
                sparse_pos += 1
            else:
                classifiers.append(LinearClassifier(dim, dense_data[dense_pos]))
                dense_pos += 1

        nodes = []
        for nid in range(nr_nodes):
            kind = int(node_kind[nid])
            if kind not in (TreeNode.INTERNAL, TreeNode.LEAF):
                raise ValueError(f"node {nid} has unknown kind {kind}")
            nodes.append(
                TreeNode(
                    kind,
                    label_indices[label_indptr[nid] : label_indptr[nid + 1]],
                    children=children[nid] if kind == TreeNode.INTERNAL else (),
                    classifiers=classifiers[clf_indptr[nid] : clf_indptr[nid + 1]],
                )
            )
        return cls(nodes).validate(nr_labels, dim)


# A node waiting to be expanded: global label ids and the instances reaching the node.
_BuildJob = collections.namedtuple("_BuildJob", ["tree_idx", "node_id", "labels", "insts", "depth", "seed"])

# Result of expanding a node: its kind, child jobs and the data its classifiers are trained on.
_Expansion = collections.namedtuple(
    "_Expansion", ["job", "kind", "children", "X_node", "rows", "targets", "clf_seeds"]
)


class LabelTreeBuilder(object):
    """Build label trees with recursive balanced 2-means and per-node linear classifiers.

    Construction is a task queue on a shared worker pool rather than a recursive call graph. Expanding a
    node (clustering its labels) yields zero or two child jobs plus the classifier training tasks of the node;
    all of them are submitted to the same pool, so trees, subtrees and classifiers are built concurrently.
    Every job carries its own seed, drawn from its parent's, so the result does not depend on scheduling.
    """

    @dc.dataclass
    class TrainParams(xmtree.BaseParams):
        """Training Parameters of LabelTreeBuilder.

        Attributes:
            max_leaf_size (int, optional): nodes with at most this many labels become leaves. Default 100
            max_depth (int, optional): nodes at this depth become leaves regardless of size. Default 20
            cluster_args (BalancedKMeans.TrainParams, optional): label clustering parameters
            linear_args (LinearClassifier.TrainParams, optional): classifier parameters
        """

        max_leaf_size: int = 100
        max_depth: int = 20
        cluster_args: BalancedKMeans.TrainParams = None  # type: ignore
        linear_args: LinearClassifier.TrainParams = None  # type: ignore

        def validate(self):
            if self.max_leaf_size < 1:
                raise ValueError(f"max_leaf_size should be at least 1, got {self.max_leaf_size}")
            if self.max_depth < 0:
                raise ValueError(f"max_depth should be >= 0, got {self.max_depth}")
            if self.cluster_args is None:
                self.cluster_args = BalancedKMeans.TrainParams()
            if self.linear_args is None:
                self.linear_args = LinearClassifier.TrainParams()
            self.cluster_args.validate()
            self.linear_args.validate()
            return self

    def __init__(self, prob, train_params=None):
        """Initialization

        Args:
            prob (MLProblem): training data, read-only for the whole build
            train_params (LabelTreeBuilder.TrainParams, optional): tree parameters
        """
        self.prob = prob
        self.train_params = self.TrainParams.from_dict(train_params).validate()
        LOGGER.debug(f"LabelTreeBuilder train_params: {json.dumps(self.train_params.to_dict(), indent=True)}")

    def _expand(self, job):
        prob, params = self.prob, self.train_params
        rng = np.random.RandomState(job.seed)
        X_node = prob.X[job.insts]
        row_slices = smat_util.row_slices(X_node)
        Y_node = smat.csc_matrix(prob.Y[job.insts][:, job.labels])
        Y_node.sort_indices()

        if len(job.labels) <= params.max_leaf_size or job.depth >= params.max_depth:
            clf_seeds = rng.randint(MAX_SEED, size=len(job.labels))
            return _Expansion(job, TreeNode.LEAF, (), X_node, row_slices, Y_node, clf_seeds)

        centroids = LabelCentroidFactory.create(
            X_node, Y_node, centroid_threshold=params.cluster_args.centroid_threshold
        )
        first, second = BalancedKMeans.split(
            centroids, train_params=params.cluster_args, seed=rng.randint(MAX_SEED)
        )
        child_seeds = rng.randint(MAX_SEED, size=2)
        clf_seeds = rng.randint(MAX_SEED, size=2)

        children, routes = [], []
        for part, child_seed in zip((first, second), child_seeds):
            rows = smat_util.rows_with_any_nonzero(Y_node, part)
            routes.append(rows)
            children.append((job.labels[part], job.insts[rows], int(child_seed)))
        # column j marks the instances whose labels intersect child j
        targets = smat.csc_matrix(
            (
                np.ones(sum(len(r) for r in routes), dtype=np.float32),
                np.concatenate(routes),
                np.cumsum([0] + [len(r) for r in routes]),
            ),
            shape=(len(job.insts), 2),
        )
        return _Expansion(job, TreeNode.INTERNAL, children, X_node, row_slices, targets, clf_seeds)

    def _train_classifiers(self, expansion, cols):
        X_node, targets = expansion.X_node, expansion.targets
        classifiers = []
        for j in range(cols.start, cols.stop):
            y = -np.ones(X_node.shape[0], dtype=np.int8)
            y[targets.indices[targets.indptr[j] : targets.indptr[j + 1]]] = 1
            classifiers.append(
                LinearClassifier.train(
                    X_node,
                    y,
                    train_params=self.train_params.linear_args,
                    seed=int(expansion.clf_seeds[j]),
                    rows=expansion.rows,
                )
            )
        return classifiers

    def build(self, seed=0, threads=0):
        """Build a single tree.

        Args:
            seed (int, optional): seed of the tree. Default 0
            threads (int, optional): number of threads, 0 to denote all the CPUs. Default 0

        Returns:
            Tree
        """
        with parallel_util.create_executor(threads) as executor:
            return self.build_many([seed], executor)[0]

    def build_many(self, seeds, executor):
        """Build one tree per seed on a shared executor.

        Args:
            seeds (list of int): one seed per tree
            executor (concurrent.futures.Executor): worker pool running the node and classifier tasks

        Returns:
            list of Tree, aligned with `seeds`
        """
        nr_workers = getattr(executor, "_max_workers", 1)
        nr_labels = self.prob.nr_labels
        if nr_labels == 0:
            raise ValueError("cannot build a label tree without labels")
        all_insts = np.arange(self.prob.nr_insts, dtype=np.int64)
        all_labels = np.arange(nr_labels, dtype=np.int32)

        # per tree: node id -> [kind, labels, children, classifier slots, nr pending chunks]
        tree_nodes = [dict() for _ in seeds]
        next_node_id = [1] * len(seeds)
        pending = {}

        def submit_expand(job):
            pending[executor.submit(self._expand, job)] = ("expand", job)

        for tree_idx, seed in enumerate(seeds):
            submit_expand(_BuildJob(tree_idx, 0, all_labels, all_insts, 0, int(seed)))

        try:
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    task_kind, payload = pending.pop(future)
                    result = future.result()
                    if task_kind == "expand":
                        expansion = result
                        job = expansion.job
                        nodes = tree_nodes[job.tree_idx]
                        child_ids = []
                        for labels, insts, child_seed in expansion.children:
                            child_id = next_node_id[job.tree_idx]
                            next_node_id[job.tree_idx] += 1
                            child_ids.append(child_id)
                            submit_expand(
                                _BuildJob(job.tree_idx, child_id, labels, insts, job.depth + 1, child_seed)
                            )
                        nr_clf = expansion.targets.shape[1]
                        chunks = parallel_util.chunk_ranges(nr_clf, nr_workers)
                        nodes[job.node_id] = [expansion.kind, job.labels, child_ids, [None] * nr_clf, len(chunks)]
                        for cols in chunks:
                            future = executor.submit(self._train_classifiers, expansion, cols)
                            pending[future] = ("train", (job.tree_idx, job.node_id, cols))
                    else:
                        tree_idx, node_id, cols = payload
                        entry = tree_nodes[tree_idx][node_id]
                        entry[3][cols] = result
                        entry[4] -= 1
        except BaseException:
            for future in pending:
                future.cancel()
            raise

        return [self._assemble(nodes) for nodes in tree_nodes]

    @staticmethod
    def _assemble(nodes):
        """Renumber build-time node ids in pre-order and freeze the tree."""
        order, stack = [], [0]
        while stack:
            node_id = stack.pop()
            order.append(node_id)
            stack.extend(reversed(nodes[node_id][2]))
        new_id = {old: new for new, old in enumerate(order)}
        tree_nodes = []
        for old in order:
            kind, labels, children, classifiers, nr_pending = nodes[old]
            assert nr_pending == 0, "classifier training still pending"
            tree_nodes.append(
                TreeNode(kind, labels, children=[new_id[c] for c in children], classifiers=classifiers)
            )
        return Tree(tree_nodes)


def get_transform(loss):
    """Return the score transform matching a classifier loss."""
    try:
        return LOSS_TYPES[loss]
    except KeyError:
        raise ValueError(f"loss should be one of {list(LOSS_TYPES)}, got {loss}") from None
