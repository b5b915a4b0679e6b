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

import numpy as np
import scipy.sparse as smat
from sklearn.preprocessing import normalize as sk_normalize


def save_matrix(tgt, mat):
    """Save dense or sparse matrix to file.

    Args:
        tgt (str): path to save the matrix
        mat (numpy.ndarray or scipy.sparse.spmatrix): target matrix to save
    """
    assert isinstance(tgt, str), "tgt for save_matrix must be a str, but got {}".format(type(tgt))
    with open(tgt, "wb") as tgt_file:
        if isinstance(mat, np.ndarray):
            np.save(tgt_file, mat, allow_pickle=False)
        elif isinstance(mat, smat.spmatrix):
            smat.save_npz(tgt_file, mat, compressed=False)
        else:
            raise NotImplementedError("Save not implemented for matrix type {}".format(type(mat)))


def load_matrix(src, dtype=None):
    """Load dense or sparse matrix from file.

    Args:
        src (str): path to load the matrix.
        dtype (numpy.dtype, optional): if given, convert matrix dtype. otherwise use default type.

    Returns:
        mat (numpy.ndarray or scipy.sparse.spmatrix): loaded matrix
    """
    if not isinstance(src, str):
        raise ValueError("src for load_matrix must be a str")

    mat = np.load(src)
    if isinstance(mat, np.ndarray):
        pass
    elif isinstance(mat, np.lib.npyio.NpzFile):
        mat = smat.load_npz(src)
        if mat.format in ("csc", "csr"):
            mat.sort_indices()
    else:
        raise TypeError("load_matrix encountered unknown input format {}".format(type(mat)))

    if dtype is None:
        return mat
    return mat.astype(dtype)


def binarized(X, inplace=False):
    """Binarize a dense/sparse matrix. All nonzero elements become 1.

    Args:
        X (np.ndarray, spmatrix): input matrix to binarize
        inplace (bool, optional): if True do the binarization in-place, else return a copy. Default False

    Returns:
        binarized X
    """

    if not isinstance(X, (np.ndarray, smat.spmatrix)):
        raise NotImplementedError(
            "this function only support X being np.ndarray or scipy.sparse.spmatrix."
        )

    if not inplace:
        X = X.copy()

    if isinstance(X, smat.spmatrix):
        X.data[:] = 1
    else:
        X[X != 0] = 1

    return X


def l2_normalize_rows(X, copy=True):
    """L2-normalize every row of a CSR matrix. All-zero rows are left untouched.

    Args:
        X (csr_matrix): input matrix
        copy (bool, optional): if False the data array of X is rescaled in place. Default True

    Returns:
        csr_matrix(float32) with sorted indices
    """
    if not isinstance(X, smat.csr_matrix):
        raise ValueError("the input matrix must be a csr_matrix.")
    X = sk_normalize(X.astype(np.float32, copy=copy), norm="l2", axis=1, copy=False)
    X.sort_indices()
    return X


def prune_small_entries(X, threshold):
    """Zero out and eliminate entries of a sparse matrix with absolute value below `threshold`.

    Args:
        X (csr_matrix or csc_matrix): matrix to prune, modified in place
        threshold (float): entries with |value| < threshold are removed. A non-positive threshold is a no-op.

    Returns:
        X
    """
    if threshold > 0:
        X.data[np.abs(X.data) < threshold] = 0
        X.eliminate_zeros()
    return X


def sparse_dense_dot(indices, data, dense):
    """Inner product between the sparse vector (indices, data) and a dense vector."""
    if len(indices) == 0:
        return dense.dtype.type(0)
    return np.dot(data, dense[indices])


def row_slices(X, dtype=np.float64):
    """Split a CSR matrix into per-row sparse vectors.

    Args:
        X (csr_matrix): input matrix
        dtype (dtype, optional): dtype of the returned values. Default np.float64

    Returns:
        list of (indices, data) tuples, one per row
    """
    if not isinstance(X, smat.csr_matrix):
        raise ValueError("X need to be csr_matrix!")
    return [
        (X.indices[X.indptr[i] : X.indptr[i + 1]], X.data[X.indptr[i] : X.indptr[i + 1]].astype(dtype))
        for i in range(X.shape[0])
    ]


def densify(indices, data, dim, dtype=np.float32):
    """Scatter a sparse vector into a zero-initialized dense vector of length `dim`.

    Indices outside [0, dim) are dropped.
    """
    dense = np.zeros(dim, dtype=dtype)
    indices = np.asarray(indices)
    valid = (indices >= 0) & (indices < dim)
    dense[indices[valid]] = np.asarray(data)[valid]
    return dense


def sum_rows(X, rows=None):
    """Sum of the selected rows of a CSR matrix as a dense 1-D float64 vector.

    Args:
        X (csr_matrix): input matrix
        rows (ndarray of int or bool, optional): selected rows. Default None to use all rows

    Returns:
        ndarray of shape (X.shape[1],)
    """
    if rows is not None:
        X = X[rows]
    return np.asarray(X.sum(axis=0, dtype=np.float64)).ravel()


def rows_with_any_nonzero(matrix, cols=None):
    """Return the sorted ids of rows having a nonzero in any of the given columns.

    Args:
        matrix (csc_matrix): matrix of shape (N x M)
        cols (ndarray of int, optional): selected columns. Default None to use all columns

    Returns:
        ndarray(int64) of row ids
    """
    if not isinstance(matrix, smat.csc_matrix):
        raise ValueError("matrix need to be csc_matrix!")
    if cols is not None:
        matrix = matrix[:, cols]
    return np.unique(matrix.indices).astype(np.int64)


def sorted_csr_from_coo(shape, row_idx, col_idx, val, only_topk=None):
    """Return a row-sorted CSR matrix from a COO sparse matrix.

    Nonzero elements in each row of the returned CSR matrix is sorted in an descending order based on the value,
    ties broken by the smaller column index. If only_topk is given, only topk largest elements will be kept.

    Args:
        shape (tuple): the shape of the input COO matrix
        row_idx (ndarray): row indices of the input COO matrix
        col_idx (ndarray): col indices of the input COO matrix
        val (ndarray): values of the input COO matrix
        only_topk (int, optional): keep only topk elements per row. Default None to ignore

    Returns:
        csr_matrix
    """
    csr = smat.csr_matrix((val, (row_idx, col_idx)), shape=shape)
    csr.sort_indices()
    for i in range(shape[0]):
        rng = slice(csr.indptr[i], csr.indptr[i + 1])
        # indices are ascending here, so a stable sort keeps smaller labels first on ties
        sorted_idx = np.argsort(-csr.data[rng], kind="mergesort")
        csr.indices[rng] = csr.indices[rng][sorted_idx]
        csr.data[rng] = csr.data[rng][sorted_idx]
    if only_topk is not None:
        only_topk = max(1, int(only_topk))
        nnz_of_insts = csr.indptr[1:] - csr.indptr[:-1]
        row_idx = np.repeat(np.arange(shape[0], dtype=np.int64), nnz_of_insts)
        selected_idx = (np.arange(len(csr.data)) - csr.indptr[row_idx]) < only_topk
        row_idx = row_idx[selected_idx]
        indptr = np.cumsum(np.bincount(row_idx + 1, minlength=(shape[0] + 1)))
        csr = smat.csr_matrix(
            (csr.data[selected_idx], csr.indices[selected_idx], indptr), shape=shape
        )
    return csr


def sorted_csr(csr, only_topk=None):
    """Return a copy of input CSR matrix where nonzero elements in each row is sorted in an descending order based on the value.

    Args:
        csr (csr_matrix): input csr_matrix to sort
        only_topk (int, optional): keep only topk elements per row. Default None to ignore

    Returns:
        csr_matrix
    """
    if not isinstance(csr, smat.csr_matrix):
        raise ValueError("the input matrix must be a csr_matrix.")

    row_idx = np.repeat(np.arange(csr.shape[0], dtype=np.int64), csr.indptr[1:] - csr.indptr[:-1])
    return sorted_csr_from_coo(csr.shape, row_idx, csr.indices, csr.data, only_topk)


class Metrics(collections.namedtuple("Metrics", ["prec", "recall"])):
    """The metrics (precision, recall) for multi-label classification problems."""

    __slots__ = ()

    def __str__(self):
        """Format printing"""

        def fmt(key):
            return " ".join("{:4.2f}".format(100 * v) for v in getattr(self, key)[:])

        return "\n".join("{:7}= {}".format(key, fmt(key)) for key in self._fields)

    @classmethod
    def generate(cls, tY, pY, topk=10):
        """Compute the metrics with given prediction and ground truth.

        Args:
            tY (csr_matrix): ground truth label matrix
            pY (csr_matrix): predicted scores
            topk (int, optional): only generate topk prediction. Default 10

        Returns:
            Metrics
        """
        assert isinstance(tY, smat.csr_matrix), type(tY)
        assert isinstance(pY, smat.csr_matrix), type(pY)
        assert tY.shape == pY.shape, "tY.shape = {}, pY.shape = {}".format(tY.shape, pY.shape)
        pY = sorted_csr(pY)
        total_matched = np.zeros(topk, dtype=np.uint64)
        recall = np.zeros(topk, dtype=np.float64)
        for i in range(tY.shape[0]):
            truth = tY.indices[tY.indptr[i] : tY.indptr[i + 1]]
            matched = np.isin(pY.indices[pY.indptr[i] : pY.indptr[i + 1]][:topk], truth)
            cum_matched = np.cumsum(matched, dtype=np.uint64)
            total_matched[: len(cum_matched)] += cum_matched
            recall[: len(cum_matched)] += cum_matched / max(len(truth), 1)
            if len(cum_matched) != 0:
                total_matched[len(cum_matched) :] += cum_matched[-1]
                recall[len(cum_matched) :] += cum_matched[-1] / max(len(truth), 1)
        prec = total_matched / max(tY.shape[0], 1) / np.arange(1, topk + 1)
        recall = recall / max(tY.shape[0], 1)
        return cls(prec=prec, recall=recall)
