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
import logging
import math

import dataclasses as dc
import numpy as np
import scipy.sparse as smat
import xmtree
from xmtree.utils import smat_util

LOGGER = logging.getLogger(__name__)


class Transform(object):
    """Turns raw classifier scores into additive log-likelihood-like path scores."""

    @staticmethod
    def log_l2_hinge(v):
        """Log L2 Hinge transformation

        .. math:: - \\max (1 - v, 0)^2

        Args:
            v (ndarray): The input array

        Returns:
            out (ndarray): the transformed result.
        """
        v = np.asarray(v, dtype=np.float32)
        return -(np.maximum(1.0 - v, 0) ** 2)

    @staticmethod
    def log_sigmoid(v):
        """Log Sigmoid transformation, computed without overflow

        .. math:: \\log { \\frac{ 1 }{ 1 + \\exp {-v} } }

        Args:
            v (ndarray): The input array

        Returns:
            out (ndarray): the transformed result.
        """
        v = np.asarray(v, dtype=np.float32)
        return -np.logaddexp(np.float32(0), -v)


# loss name -> transform matching the loss the classifier was trained with
LOSS_TYPES = {
    "hinge": Transform.log_l2_hinge,
    "log": Transform.log_sigmoid,
}


class LinearClassifier(xmtree.BaseClass):
    """A binary linear decision function score(x) = w.x over features plus one trailing bias slot.

    The weight vector is kept either sparse (`indices` and `data`) or dense (`data` of length `dim`,
    `indices` is None). Both forms give the same scores; the form only trades memory for speed.
    """

    @dc.dataclass
    class TrainParams(xmtree.BaseParams):
        """Training Parameters of LinearClassifier.

        Attributes:
            c (float, optional): cost coefficient of the loss term. Default 1.0
            eps (float, optional): stopping tolerance of the dual coordinate descent. Default 0.1
            loss (str, optional): "hinge" for the L2-regularized squared hinge loss (SVM),
                "log" for L2-regularized logistic regression. Default "hinge"
            max_iter (int, optional): maximum number of passes over the data. Default 20
            max_sparse_density (float, optional): store weights sparse when the fraction of nonzeros
                is at most this value. Default 0.15
            weight_threshold (float, optional): weights with abs value below this are zeroed. Default 0.1
            bias (float, optional): value of the constant feature appended to every instance. Default 1.0
        """

        c: float = 1.0
        eps: float = 0.1
        loss: str = "hinge"
        max_iter: int = 20
        max_sparse_density: float = 0.15
        weight_threshold: float = 0.1
        bias: float = 1.0

        def validate(self):
            if self.loss not in LOSS_TYPES:
                raise ValueError(f"loss should be one of {list(LOSS_TYPES)}, got {self.loss}")
            if not self.c > 0:
                raise ValueError(f"c should be positive, got {self.c}")
            if not self.eps > 0:
                raise ValueError(f"eps should be positive, got {self.eps}")
            if self.max_iter < 1:
                raise ValueError(f"max_iter should be at least 1, got {self.max_iter}")
            if not 0.0 <= self.max_sparse_density <= 1.0:
                raise ValueError(
                    f"max_sparse_density should be in [0, 1], got {self.max_sparse_density}"
                )
            if self.weight_threshold < 0:
                raise ValueError(f"weight_threshold should be >= 0, got {self.weight_threshold}")
            if not self.bias > 0:
                raise ValueError(f"bias should be positive, got {self.bias}")
            return self

    def __init__(self, dim, data, indices=None):
        """Initialization

        Args:
            dim (int): length of the weight vector, i.e. number of features + 1
            data (ndarray): nonzero weights if sparse, otherwise the full weight vector
            indices (ndarray, optional): positions of the nonzero weights. Default None for dense storage
        """
        self.dim = int(dim)
        self.data = np.asarray(data, dtype=np.float32)
        self.indices = None if indices is None else np.asarray(indices, dtype=np.int32)
        if self.indices is None:
            if self.data.shape != (self.dim,):
                raise ValueError(f"dense weights should have shape ({self.dim},), got {self.data.shape}")
        elif self.indices.shape != self.data.shape:
            raise ValueError("indices and data of sparse weights differ in length")

    @classmethod
    def from_dense(cls, weights, max_sparse_density=0.15):
        """Build a classifier from a full weight vector, choosing the storage form by density.

        Args:
            weights (ndarray): weight vector including the bias slot
            max_sparse_density (float, optional): store sparse when nnz / dim <= this value

        Returns:
            LinearClassifier
        """
        weights = np.asarray(weights, dtype=np.float32)
        nz = np.flatnonzero(weights)
        if len(nz) <= max_sparse_density * len(weights):
            return cls(len(weights), weights[nz], nz)
        return cls(len(weights), weights)

    @property
    def is_sparse(self):
        return self.indices is not None

    @property
    def nnz(self):
        if self.is_sparse:
            return len(self.indices)
        return int(np.count_nonzero(self.data))

    def to_dense_weights(self):
        """Return the full weight vector as a new float32 array."""
        if not self.is_sparse:
            return self.data.copy()
        w = np.zeros(self.dim, dtype=np.float32)
        w[self.indices] = self.data
        return w

    def as_sparse(self):
        w = self.to_dense_weights()
        nz = np.flatnonzero(w)
        return LinearClassifier(self.dim, w[nz], nz)

    def as_dense(self):
        return LinearClassifier(self.dim, self.to_dense_weights())

    def score(self, x_dense):
        """Raw score w.x for a query densified to length `dim` (bias value in the last slot)."""
        if self.is_sparse:
            return smat_util.sparse_dense_dot(self.indices, self.data, x_dense)
        return np.dot(self.data, x_dense)

    @staticmethod
    def score_group(classifiers, x_dense):
        """Raw scores of a group of classifiers on one densified query, as a float32 array."""
        return np.array([clf.score(x_dense) for clf in classifiers], dtype=np.float32)

    @classmethod
    def train(cls, X, y, train_params=None, seed=0, rows=None):
        """Fit a binary classifier with dual coordinate descent.

        Args:
            X (csr_matrix): instance feature matrix of shape (nr_inst, nr_feat), without the bias column
            y (ndarray): labels in {+1, -1} of shape (nr_inst,)
            train_params (LinearClassifier.TrainParams, optional): solver parameters
            seed (int, optional): seed of the coordinate ordering. Default 0
            rows (list, optional): `smat_util.row_slices(X)`, shared by classifiers trained on the same X.
                Default None to compute it here

        Returns:
            LinearClassifier: classifier of dimension nr_feat + 1
        """
        train_params = cls.TrainParams.from_dict(train_params).validate()
        if not isinstance(X, smat.csr_matrix):
            raise ValueError("X should be a csr_matrix")
        y = np.asarray(y)
        if y.shape != (X.shape[0],):
            raise ValueError(f"y.shape = {y.shape} does not match X.shape[0] = {X.shape[0]}")

        dim = X.shape[1] + 1
        nr_pos = int(np.count_nonzero(y > 0))
        if nr_pos == 0 or nr_pos == len(y):
            # always-one if every instance is positive, always-zero otherwise
            w = np.zeros(dim, dtype=np.float32)
            w[-1] = np.inf if nr_pos > 0 else -np.inf
            return cls.from_dense(w, train_params.max_sparse_density)

        if rows is None:
            rows = smat_util.row_slices(X)
        elif len(rows) != X.shape[0]:
            raise ValueError(f"len(rows) = {len(rows)} does not match X.shape[0] = {X.shape[0]}")

        y = np.where(y > 0, 1.0, -1.0)
        rng = np.random.RandomState(seed)
        if train_params.loss == "hinge":
            w = _solve_l2r_l2loss_svc_dual(rows, X.shape[1], y, train_params, rng)
        else:
            w = _solve_l2r_lr_dual(rows, X.shape[1], y, train_params, rng)

        w[np.abs(w) < train_params.weight_threshold] = 0
        return cls.from_dense(w, train_params.max_sparse_density)


def _solve_l2r_l2loss_svc_dual(rows, nr_feat, y, train_params, rng):
    """Dual coordinate descent for the L2-regularized squared hinge loss (Hsieh et al., 2008).

    Returns:
        ndarray(float64) of length nr_feat + 1, the last entry being the bias weight
    """
    bias = train_params.bias
    diag = 0.5 / train_params.c
    QD = np.array([diag + np.dot(v, v) + bias * bias for _, v in rows])
    alpha = np.zeros(len(rows))
    w = np.zeros(nr_feat)
    wb = 0.0

    for it in range(train_params.max_iter):
        PGmax, PGmin = -math.inf, math.inf
        for i in rng.permutation(len(rows)):
            idx, val = rows[i]
            G = y[i] * (np.dot(w[idx], val) + wb * bias) - 1.0 + diag * alpha[i]
            PG = min(G, 0.0) if alpha[i] == 0 else G
            PGmax = max(PGmax, PG)
            PGmin = min(PGmin, PG)
            if abs(PG) > 1.0e-12:
                alpha_old = alpha[i]
                alpha[i] = max(alpha_old - G / QD[i], 0.0)
                d = (alpha[i] - alpha_old) * y[i]
                w[idx] += d * val
                wb += d * bias
        if PGmax - PGmin <= train_params.eps:
            break
    else:
        LOGGER.debug(f"squared hinge solver reached max_iter={train_params.max_iter}")
    return np.append(w, wb)


def _solve_l2r_lr_dual(rows, nr_feat, y, train_params, rng):
    """Dual coordinate descent for L2-regularized logistic regression (Yu et al., 2011).

    Each dual variable is split into the pair (alpha, C - alpha) and updated by a few Newton steps.

    Returns:
        ndarray(float64) of length nr_feat + 1, the last entry being the bias weight
    """
    max_inner_iter = 100
    bias = train_params.bias
    C = train_params.c
    xTx = np.array([np.dot(v, v) + bias * bias for _, v in rows])
    alpha = np.empty(2 * len(rows))
    alpha[0::2] = min(0.001 * C, 1.0e-8)
    alpha[1::2] = C - alpha[0::2]
    w = np.zeros(nr_feat)
    wb = 0.0
    for i, (idx, val) in enumerate(rows):
        w[idx] += y[i] * alpha[2 * i] * val
        wb += y[i] * alpha[2 * i] * bias

    innereps = 1.0e-2
    innereps_min = min(1.0e-8, train_params.eps)
    for it in range(train_params.max_iter):
        newton_iter = 0
        Gmax = 0.0
        for i in rng.permutation(len(rows)):
            idx, val = rows[i]
            a = xTx[i]
            b = y[i] * (np.dot(w[idx], val) + wb * bias)

            ind1, ind2, sign = 2 * i, 2 * i + 1, 1.0
            if 0.5 * a * (alpha[ind2] - alpha[ind1]) + b < 0:
                ind1, ind2, sign = 2 * i + 1, 2 * i, -1.0

            alpha_old = alpha[ind1]
            z = alpha_old
            if C - z < 0.5 * C:
                z = 0.1 * z
            gp = a * (z - alpha_old) + sign * b + math.log(z / (C - z))
            Gmax = max(Gmax, abs(gp))

            inner_iter = 0
            while inner_iter <= max_inner_iter:
                if abs(gp) < innereps:
                    break
                gpp = a + C / (C - z) / z
                tmpz = z - gp / gpp
                z = z * 0.1 if tmpz <= 0 else tmpz
                gp = a * (z - alpha_old) + sign * b + math.log(z / (C - z))
                newton_iter += 1
                inner_iter += 1

            if inner_iter > 0:
                alpha[ind1] = z
                alpha[ind2] = C - z
                d = sign * (z - alpha_old) * y[i]
                w[idx] += d * val
                wb += d * bias

        if Gmax < train_params.eps:
            break
        if newton_iter <= len(rows) / 10:
            innereps = max(innereps_min, 0.1 * innereps)
    else:
        LOGGER.debug(f"logistic regression solver reached max_iter={train_params.max_iter}")
    return np.append(w, wb)
