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
import os

import numpy as np
import scipy.sparse as smat

LOGGER = logging.getLogger(__name__)


def _parse_int(token, what, data_path, lineno):
    try:
        return int(token)
    except ValueError:
        raise ValueError(f"{data_path}:{lineno}: non-integer {what} '{token}'") from None


def _parse_float(token, what, data_path, lineno):
    try:
        value = float(token)
    except ValueError:
        raise ValueError(f"{data_path}:{lineno}: non-numeric {what} '{token}'") from None
    if not np.isfinite(value):
        raise ValueError(f"{data_path}:{lineno}: non-finite {what} '{token}'")
    return value


def load_xmc_text(data_path):
    """Parse a dataset in the extreme classification repository text format.

    Text format:
        first line: <nr_insts> <nr_feats> <nr_labels>
        each following line: l_1,..,l_k<SPACE>f_1:v_1 f_2:v_2 ... f_t:v_t
            l_k is the zero-based index of a relevant label, the label list may be empty
            f_t is the zero-based index of a feature and v_t its value

    The whole file is validated before anything is returned, so a malformed file never yields partial data.

    Args:
        data_path (str): Path to the text file

    Returns:
        X (csr_matrix(float32)): feature matrix with shape (nr_insts, nr_feats), sorted indices
        Y (csr_matrix(float32)): binary label matrix with shape (nr_insts, nr_labels)
    """
    if not os.path.isfile(data_path):
        raise FileNotFoundError(f"cannot find input text file at {data_path}")

    with open(data_path, "r", encoding="utf-8") as fin:
        header = fin.readline().split()
        if len(header) != 3:
            raise ValueError(
                f"{data_path}:1: expect header '<nr_insts> <nr_feats> <nr_labels>', got {len(header)} fields"
            )
        nr_insts, nr_feats, nr_labels = (
            _parse_int(tok, "header field", data_path, 1) for tok in header
        )
        if min(nr_insts, nr_feats, nr_labels) < 0:
            raise ValueError(f"{data_path}:1: header fields must be non-negative")

        x_indptr, x_indices, x_data = [0], [], []
        y_indptr, y_indices = [0], []
        for lineno, line in enumerate(fin, start=2):
            line = line.rstrip("\n")
            if not line.strip():
                continue
            if len(x_indptr) - 1 >= nr_insts:
                raise ValueError(f"{data_path}:{lineno}: more instances than the {nr_insts} declared")

            tokens = line.split(" ")
            # a line starting with a space has an empty label list
            label_token, feat_tokens = tokens[0], [t for t in tokens[1:] if t]
            if ":" in label_token:
                label_token, feat_tokens = "", [t for t in tokens if t]

            labels = set()
            for tok in label_token.split(",") if label_token else []:
                label = _parse_int(tok, "label index", data_path, lineno)
                if not 0 <= label < nr_labels:
                    raise ValueError(
                        f"{data_path}:{lineno}: label index {label} out of range [0, {nr_labels})"
                    )
                labels.add(label)

            seen = set()
            for tok in feat_tokens:
                parts = tok.split(":")
                if len(parts) != 2:
                    raise ValueError(f"{data_path}:{lineno}: malformed feature '{tok}'")
                feat = _parse_int(parts[0], "feature index", data_path, lineno)
                if not 0 <= feat < nr_feats:
                    raise ValueError(
                        f"{data_path}:{lineno}: feature index {feat} out of range [0, {nr_feats})"
                    )
                if feat in seen:
                    raise ValueError(f"{data_path}:{lineno}: duplicate feature index {feat}")
                seen.add(feat)
                x_indices.append(feat)
                x_data.append(_parse_float(parts[1], "feature value", data_path, lineno))

            x_indptr.append(len(x_indices))
            y_indices.extend(sorted(labels))
            y_indptr.append(len(y_indices))

    if len(x_indptr) - 1 != nr_insts:
        raise ValueError(
            f"{data_path}: header declares {nr_insts} instances but found {len(x_indptr) - 1}"
        )

    X = smat.csr_matrix(
        (np.array(x_data, dtype=np.float32), np.array(x_indices, dtype=np.int32), x_indptr),
        shape=(nr_insts, nr_feats),
    )
    X.sort_indices()
    Y = smat.csr_matrix(
        (np.ones(len(y_indices), dtype=np.float32), np.array(y_indices, dtype=np.int32), y_indptr),
        shape=(nr_insts, nr_labels),
    )
    LOGGER.info(
        f"Loaded {data_path}: {nr_insts} instances, {nr_feats} features, {nr_labels} labels"
    )
    return X, Y


def save_xmc_text(data_path, X, Y):
    """Write a feature matrix and a label matrix in the format read by `load_xmc_text`.

    Args:
        data_path (str): destination path
        X (csr_matrix): feature matrix with shape (nr_insts, nr_feats)
        Y (csr_matrix): label matrix with shape (nr_insts, nr_labels)
    """
    X = smat.csr_matrix(X)
    Y = smat.csr_matrix(Y)
    if X.shape[0] != Y.shape[0]:
        raise ValueError(f"X.shape[0] = {X.shape[0]} != {Y.shape[0]} = Y.shape[0]")
    X.sort_indices()
    Y.sort_indices()
    with open(data_path, "w", encoding="utf-8") as fout:
        fout.write(f"{X.shape[0]} {X.shape[1]} {Y.shape[1]}\n")
        for i in range(X.shape[0]):
            labels = ",".join(str(j) for j in Y.indices[Y.indptr[i] : Y.indptr[i + 1]])
            feats = " ".join(
                f"{j}:{repr(float(v))}"
                for j, v in zip(
                    X.indices[X.indptr[i] : X.indptr[i + 1]], X.data[X.indptr[i] : X.indptr[i + 1]]
                )
            )
            fout.write(f"{labels} {feats}\n")
