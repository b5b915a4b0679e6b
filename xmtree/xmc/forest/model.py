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
import io
import json
import logging
import math
import os
import zipfile
from os import path

import dataclasses as dc
import numpy as np
import scipy.sparse as smat
import xmtree
from xmtree.core import LinearClassifier
from xmtree.utils import logging_util, parallel_util, smat_util
from xmtree.utils.profile_util import MemInfo
from xmtree.xmc.base import (
    MAX_SEED,
    BalancedKMeans,
    LabelTreeBuilder,
    MLProblem,
    Tree,
    get_transform,
)

LOGGER = logging.getLogger(__name__)

TREE_ARRAY_NAMES = (
    "node_kind",
    "children",
    "label_indptr",
    "label_indices",
    "clf_indptr",
    "clf_is_sparse",
    "sparse_indptr",
    "sparse_indices",
    "sparse_data",
    "dense_data",
)


class ForestModel(xmtree.BaseClass):
    """An ensemble of partitioned label trees for extreme multi-label classification.

    Each tree recursively splits the label set with balanced 2-means and holds linear classifiers at every node:
    two routing classifiers at internal nodes and one classifier per label at leaves. Prediction runs a beam
    search in every tree and sums the per-tree label scores.
    """

    @dc.dataclass
    class TrainParams(xmtree.BaseParams):
        """Training parameters of ForestModel

        Attributes:
            n_trees (int, optional): number of trees in the ensemble. Default 3
            max_leaf_size (int, optional): nodes with at most this many labels become leaves. Default 100
            max_depth (int, optional): nodes at this depth become leaves regardless of size. Default 20
            seed (int, optional): seed from which the seed of every tree is derived. Default 0
            threads (int, optional): number of threads, 0 to denote all the CPUs. Default 0
            linear_args (LinearClassifier.TrainParams, optional): parameters of every node classifier
            cluster_args (BalancedKMeans.TrainParams, optional): parameters of the label clustering
        """

        n_trees: int = 3
        max_leaf_size: int = 100
        max_depth: int = 20
        seed: int = 0
        threads: int = 0
        linear_args: LinearClassifier.TrainParams = None  # type: ignore
        cluster_args: BalancedKMeans.TrainParams = None  # type: ignore

        def validate(self):
            if self.n_trees < 1:
                raise ValueError(f"n_trees should be at least 1, got {self.n_trees}")
            if self.linear_args is None:
                self.linear_args = LinearClassifier.TrainParams()
            if self.cluster_args is None:
                self.cluster_args = BalancedKMeans.TrainParams()
            self.tree_args().validate()
            return self

        def override_with_kwargs(self, kwargs):
            """Override fields of this params and of its nested linear/cluster params."""
            super().override_with_kwargs(kwargs)
            if self.linear_args is None:
                self.linear_args = LinearClassifier.TrainParams()
            if self.cluster_args is None:
                self.cluster_args = BalancedKMeans.TrainParams()
            self.linear_args.override_with_kwargs(kwargs)
            self.cluster_args.override_with_kwargs(kwargs)
            return self

        def tree_args(self):
            return LabelTreeBuilder.TrainParams(
                max_leaf_size=self.max_leaf_size,
                max_depth=self.max_depth,
                cluster_args=self.cluster_args,
                linear_args=self.linear_args,
            )

    @dc.dataclass
    class PredParams(xmtree.BaseParams):
        """Prediction parameters of ForestModel

        Attributes:
            beam_size (int, optional): number of paths kept per tree. Default 10
            only_topk (int, optional): number of labels returned per query. Default 5
            threads (int, optional): number of threads, 0 to denote all the CPUs. Default 0
        """

        beam_size: int = 10
        only_topk: int = 5
        threads: int = 0

        def validate(self):
            if self.beam_size < 1:
                raise ValueError(f"beam_size should be at least 1, got {self.beam_size}")
            if self.only_topk < 1:
                raise ValueError(f"only_topk should be at least 1, got {self.only_topk}")
            return self

    def __init__(self, trees, nr_features, nr_labels, train_params=None, pred_params=None):
        """Initialization

        Args:
            trees (list of Tree): trained trees
            nr_features (int): feature dimension the model was trained on, without the bias
            nr_labels (int): size of the label universe
            train_params (ForestModel.TrainParams, optional): parameters the trees were trained with
            pred_params (ForestModel.PredParams, optional): default prediction parameters
        """
        self.trees = list(trees)
        self.nr_features = int(nr_features)
        self.nr_labels = int(nr_labels)
        self.train_params = self.TrainParams.from_dict(train_params).validate()
        self.pred_params = self.PredParams.from_dict(pred_params).validate()
        self.transform = get_transform(self.train_params.linear_args.loss)

    @property
    def nr_trees(self):
        return len(self.trees)

    @property
    def dim(self):
        """Classifier dimension: features plus the bias slot."""
        return self.nr_features + 1

    @classmethod
    def train(cls, X, Y, train_params=None, pred_params=None, **kwargs):
        """Train a forest.

        Args:
            X (csr_matrix(float32)): instance feature matrix of shape (nr_inst, nr_feat)
            Y (csr_matrix(float32) or csc_matrix(float32)): label matrix of shape (nr_inst, nr_labels)
            train_params (ForestModel.TrainParams, optional): training parameters.
                Default None to build them from kwargs, e.g. `ForestModel.train(X, Y, n_trees=1, c=0.5)`
            pred_params (ForestModel.PredParams, optional): default prediction parameters stored in the model

        Returns:
            ForestModel
        """
        if train_params is None:
            train_params = cls.TrainParams.from_dict(kwargs, recursive=True)
        else:
            train_params = cls.TrainParams.from_dict(train_params)
        train_params.validate()
        pred_params = cls.PredParams.from_dict(pred_params).validate()

        prob = MLProblem(X, Y)
        if prob.nr_labels == 0:
            raise ValueError("Y has no label column")
        LOGGER.info(
            f"Training {train_params.n_trees} trees on {prob.nr_insts} instances, "
            f"{prob.nr_features} features and {prob.nr_labels} labels"
        )
        LOGGER.debug(f"ForestModel train_params: {train_params.to_json()}")

        tree_seeds = np.random.RandomState(train_params.seed).randint(MAX_SEED, size=train_params.n_trees)
        builder = LabelTreeBuilder(prob, train_params.tree_args())
        nr_threads = parallel_util.resolve_threads(train_params.threads)
        with logging_util.log_elapsed(LOGGER, f"Building forest with {nr_threads} threads"):
            with parallel_util.create_executor(nr_threads) as executor:
                trees = builder.build_many(tree_seeds, executor)

        for t, tree in enumerate(trees):
            LOGGER.info(
                f"Tree {t}: {tree.nr_nodes} nodes, {len(tree.leaves())} leaves, depth {tree.depth}. "
                f"{MemInfo.mem_info()}"
            )
        return cls(trees, prob.nr_features, prob.nr_labels, train_params, pred_params)

    def get_pred_params(self, pred_params=None, **kwargs):
        """Resolve prediction params: explicit `pred_params`, else the model defaults, overridden by kwargs."""
        if pred_params is None:
            pred_params = self.pred_params
        pred_params = self.PredParams.from_dict(pred_params)
        pred_params.override_with_kwargs(kwargs)
        return pred_params.validate()

    def _prepare_queries(self, X):
        if not isinstance(X, smat.spmatrix):
            raise NotImplementedError("type(X) = {} is not supported.".format(type(X)))
        X = smat.csr_matrix(X)
        if X.shape[1] > self.nr_features:
            # features unseen at training time have no weights
            X = X[:, : self.nr_features]
        return smat_util.l2_normalize_rows(X)

    def _densify(self, indices, data):
        bias = self.train_params.linear_args.bias
        x_dense = smat_util.densify(indices, data, self.dim)
        x_dense[-1] = bias
        return x_dense

    def _predict_one(self, indices, data, beam_size, only_topk):
        x_dense = self._densify(indices, data)
        # label -> [summed exp(log score), best log score]
        merged = {}
        for tree in self.trees:
            labels, log_scores = tree.beam_search(x_dense, beam_size, self.transform)
            for label, log_score in zip(labels.tolist(), log_scores.tolist()):
                if log_score == -np.inf:
                    continue
                entry = merged.setdefault(label, [0.0, -np.inf])
                entry[0] += math.exp(log_score)
                entry[1] = max(entry[1], log_score)
        # scores that underflow to 0 are still ranked by their log scores
        ranked = sorted(merged.items(), key=lambda t: (-t[1][0], -t[1][1], t[0]))
        return [(label, score) for label, (score, _) in ranked[:only_topk]]

    def _predict_rows(self, X, rows, pred_params):
        return [
            self._predict_one(
                X.indices[X.indptr[i] : X.indptr[i + 1]],
                X.data[X.indptr[i] : X.indptr[i + 1]],
                pred_params.beam_size,
                pred_params.only_topk,
            )
            for i in range(rows.start, rows.stop)
        ]

    def predict(self, X, pred_params=None, **kwargs):
        """Predict the top labels of each query.

        Args:
            X (csr_matrix): query feature matrix of shape (nr_queries, nr_feat). Features at or beyond the
                trained dimension are ignored.
            pred_params (ForestModel.PredParams, optional): prediction parameters. Default None to use the
                model defaults. kwargs such as beam_size, only_topk or threads override individual fields.

        Returns:
            list of list of (int, float): per query, (label, score) pairs by descending score,
                ties broken by the smaller label
        """
        pred_params = self.get_pred_params(pred_params, **kwargs)
        X = self._prepare_queries(X)
        nr_threads = parallel_util.resolve_threads(pred_params.threads)
        chunks = parallel_util.chunk_ranges(X.shape[0], nr_threads * 4)
        if nr_threads == 1 or len(chunks) <= 1:
            return [res for rows in chunks for res in self._predict_rows(X, rows, pred_params)]
        with parallel_util.create_executor(nr_threads) as executor:
            results = executor.map(lambda rows: self._predict_rows(X, rows, pred_params), chunks)
            return [res for chunk in results for res in chunk]

    def predict_csr(self, X, pred_params=None, **kwargs):
        """Predict like `predict` but return a row-sorted csr_matrix(float32) of shape (nr_queries, nr_labels)."""
        results = self.predict(X, pred_params=pred_params, **kwargs)
        indptr = np.cumsum([0] + [len(res) for res in results], dtype=np.int64)
        indices = np.array([label for res in results for label, _ in res], dtype=np.int32)
        data = np.array([score for res in results for _, score in res], dtype=np.float32)
        return smat.csr_matrix((data, indices, indptr), shape=(len(results), self.nr_labels))

    def get_meta(self):
        """Metadata header describing the model dimensions and the parameters it was trained with."""
        return self.append_meta(
            {
                "nr_features": self.nr_features,
                "nr_labels": self.nr_labels,
                "n_trees": self.nr_trees,
                "train_params": self.train_params.to_dict(),
                "pred_params": self.pred_params.to_dict(),
            }
        )

    def _tree_arrays(self):
        arrays = {}
        for t, tree in enumerate(self.trees):
            for name, arr in tree.to_arrays().items():
                arrays[f"tree{t}/{name}"] = arr
        return arrays

    @classmethod
    def _from_parts(cls, meta, arrays):
        """Rebuild a model from its metadata and tree arrays, raising ValueError on any inconsistency."""
        try:
            nr_features = int(meta["nr_features"])
            nr_labels = int(meta["nr_labels"])
            n_trees = int(meta["n_trees"])
            train_params = cls.TrainParams.from_dict(meta["train_params"])
            pred_params = cls.PredParams.from_dict(meta.get("pred_params", None))
        except (KeyError, TypeError) as e:
            raise ValueError(f"invalid model metadata: {e!r}") from e
        if nr_features < 0 or nr_labels < 1 or n_trees < 1:
            raise ValueError(
                f"invalid model dimensions nr_features={nr_features}, nr_labels={nr_labels}, n_trees={n_trees}"
            )

        trees = []
        for t in range(n_trees):
            tree_arrays = {}
            for name in TREE_ARRAY_NAMES:
                key = f"tree{t}/{name}"
                if key not in arrays:
                    raise ValueError(f"missing array {key}")
                tree_arrays[name] = arrays[key]
            try:
                trees.append(Tree.from_arrays(tree_arrays, nr_labels, nr_features + 1))
            except ValueError as e:
                raise ValueError(f"tree {t} is corrupted: {e}") from e
        return cls(trees, nr_features, nr_labels, train_params, pred_params)

    def save(self, model_folder):
        """Save the model to a folder as param.json and forest.npz

        Args:
            model_folder (str): dir to save the model
        """
        with logging_util.log_elapsed(LOGGER, f"Saving model to {model_folder}"):
            if not path.exists(model_folder):
                os.makedirs(model_folder)
            with open(path.join(model_folder, "param.json"), "w", encoding="utf-8") as fout:
                fout.write(json.dumps(self.get_meta(), indent=True))
            np.savez(path.join(model_folder, "forest.npz"), **self._tree_arrays())

    @classmethod
    def load(cls, model_folder):
        """Load a model saved by `save`

        Args:
            model_folder (str): dir the model was saved to

        Returns:
            ForestModel
        """
        param_path = path.join(model_folder, "param.json")
        forest_path = path.join(model_folder, "forest.npz")
        for fname in (param_path, forest_path):
            if not path.isfile(fname):
                raise FileNotFoundError(f"cannot find {fname}")
        with logging_util.log_elapsed(LOGGER, f"Loading model from {model_folder}"):
            try:
                with open(param_path, "r", encoding="utf-8") as fin:
                    meta = json.loads(fin.read())
                with np.load(forest_path, allow_pickle=False) as npz:
                    arrays = {key: npz[key] for key in npz.files}
            except (OSError, EOFError, zipfile.BadZipFile, ValueError) as e:
                raise ValueError(f"cannot read model from {model_folder}: {e!r}") from e
            return cls._from_parts(meta, arrays)

    def to_bytes(self):
        """Serialize the model, metadata included, into a single bytes object."""
        buf = io.BytesIO()
        meta = np.frombuffer(json.dumps(self.get_meta()).encode("utf-8"), dtype=np.uint8)
        np.savez(buf, __meta__=meta, **self._tree_arrays())
        return buf.getvalue()

    @classmethod
    def from_bytes(cls, buf):
        """Deserialize a model produced by `to_bytes`.

        Args:
            buf (bytes): serialized model

        Returns:
            ForestModel
        """
        try:
            with np.load(io.BytesIO(buf), allow_pickle=False) as npz:
                arrays = {key: npz[key] for key in npz.files}
            meta = json.loads(arrays.pop("__meta__").tobytes().decode("utf-8"))
        except (OSError, EOFError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise ValueError(f"cannot deserialize model: {e!r}") from e
        return cls._from_parts(meta, arrays)
