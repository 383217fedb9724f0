"""Decision paths and the decision-distance / uniqueness metrics built on them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd

from .codec import Model, as_nodes
from .errors import IntegrityError
from .routing import route_nodes
from .tables import NODE_KEY, FeatureInput, feature_frame, unique_ids, validate_nodes

# Rows of the first point set compared per block; bounds the (rows, M, depth) buffer.
_BLOCK_ROWS = 256


@dataclass(frozen=True)
class DistanceMatrix:
    """Pairwise decision distances of one task.

    Attributes
    ----------
    task : int
    rows : tuple of int
        Records of the first point set (ascending).
    columns : tuple of int
        Records of the second point set, or of the first one again.
    values : ndarray of shape (len(rows), len(columns))
        ``0`` for identical decision behaviour, ``1`` for maximal divergence.
    """

    task: int
    rows: tuple[int, ...]
    columns: tuple[int, ...]
    values: np.ndarray

    def distance(self, p: int, q: int) -> float:
        return float(self.values[self.rows.index(p), self.columns.index(q)])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.values,
            index=pd.Index(self.rows, name="record"),
            columns=pd.Index(self.columns, name="record"),
        )


def path_table(nodes: Union[Model, pd.DataFrame]) -> pd.DataFrame:
    """Annotate every node with its unique id and its root-to-node id path."""
    nodes = as_nodes(nodes)
    validate_nodes(nodes)
    uids = unique_ids(nodes["level"], nodes["node"])
    parent_uids = unique_ids(np.maximum(nodes["level"].to_numpy() - 1, 1), nodes["parent"])

    paths: dict[tuple[int, int, int], tuple[int, ...]] = {}
    column: list[tuple[int, ...]] = []
    # rows are level-ordered, so every parent path exists before its children
    for task, tree, level, uid, parent_uid in zip(
        nodes["task"], nodes["tree"], nodes["level"], uids, parent_uids
    ):
        if level == 1:
            path = (int(uid),)
        else:
            path = paths[(task, tree, parent_uid)] + (int(uid),)
        paths[(task, tree, uid)] = path
        column.append(path)
    return nodes.assign(uid=uids, path=pd.Series(column, index=nodes.index, dtype=object))


def decision_paths(model: Union[Model, pd.DataFrame], features: FeatureInput) -> pd.DataFrame:
    """Root-to-leaf unique-id path of every point in every tree of its task.

    Returns
    -------
    DataFrame
        ``(task, record, tree, path)`` with ``path`` a tuple of unique ids.
    """
    annotated = path_table(model)
    leaves = route_nodes(annotated.drop(columns=["uid", "path"]), feature_frame(features))
    paths = leaves[["task", "record"] + NODE_KEY[1:]].merge(
        annotated[NODE_KEY + ["path"]], on=NODE_KEY
    )
    return paths[["task", "record", "tree", "path"]].sort_values(
        ["task", "record", "tree"], kind="mergesort"
    ).reset_index(drop=True)


def path_similarity(p: tuple[int, ...], q: tuple[int, ...]) -> float:
    """Common prefix length over the mean path length."""
    common = 0
    for a, b in zip(p, q):
        if a != b:
            break
        common += 1
    return common / ((len(p) + len(q)) / 2)


def decision_distance(
    model: Union[Model, pd.DataFrame],
    points1: FeatureInput,
    points2: Optional[FeatureInput] = None,
) -> dict[int, DistanceMatrix]:
    """``1 - mean over trees of path_similarity`` for every pair of points.

    With a single point set the matrix is square and symmetric: the upper
    triangle is computed and mirrored, the diagonal is 0.  With two sets
    the matrix is ``N x M``.  Points are only compared within a task.

    Returns
    -------
    dict of task -> DistanceMatrix
    """
    nodes = as_nodes(model)
    first = decision_paths(nodes, points1)
    second = first if points2 is None else decision_paths(nodes, points2)

    matrices: dict[int, DistanceMatrix] = {}
    for task in sorted(first["task"].unique()):
        left = _by_record(first[first["task"] == task])
        right = _by_record(second[second["task"] == task])
        if right.empty:
            continue
        values = _distances(left, right)
        if points2 is None:
            upper = np.triu(values, k=1)
            values = upper + upper.T
        matrices[int(task)] = DistanceMatrix(
            task=int(task),
            rows=tuple(int(r) for r in left.index),
            columns=tuple(int(r) for r in right.index),
            values=values,
        )
    return matrices


def uniqueness_factor(
    model: Union[Model, pd.DataFrame],
    points1: FeatureInput,
    points2: Optional[FeatureInput] = None,
) -> pd.DataFrame:
    """Mean decision distance of each point to every other point.

    With a second point set the mean runs over all of its points instead.
    A lone point of a single set has nothing to compare with and scores NaN.

    Returns
    -------
    DataFrame
        ``(task, record, uniqueness)``.
    """
    parts: list[pd.DataFrame] = []
    for task, matrix in decision_distance(model, points1, points2).items():
        if points2 is None:
            n_others = len(matrix.columns) - 1
            if n_others:
                scores = matrix.values.sum(axis=1) / n_others
            else:
                scores = np.full(len(matrix.rows), np.nan)
        else:
            scores = matrix.values.mean(axis=1)
        parts.append(
            pd.DataFrame({"task": task, "record": list(matrix.rows), "uniqueness": scores})
        )
    if not parts:
        return pd.DataFrame(
            {
                "task": pd.Series(dtype="int64"),
                "record": pd.Series(dtype="int64"),
                "uniqueness": pd.Series(dtype="float64"),
            }
        )
    return pd.concat(parts, ignore_index=True)


def _by_record(paths: pd.DataFrame) -> pd.DataFrame:
    """Pivot ``(record, tree) -> path`` into one row per record, one column per tree."""
    return paths.pivot(index="record", columns="tree", values="path").sort_index()


def _distances(left: pd.DataFrame, right: pd.DataFrame) -> np.ndarray:
    trees = sorted(set(left.columns) & set(right.columns))
    if len(trees) != len(left.columns) or len(trees) != len(right.columns):
        raise IntegrityError("point sets were routed through different trees")
    total = np.zeros((len(left), len(right)))
    for tree in trees:
        a, a_len = _padded(left[tree].tolist())
        b, b_len = _padded(right[tree].tolist())
        mean_len = (a_len[:, None] + b_len[None, :]) / 2.0
        for start in range(0, len(a), _BLOCK_ROWS):
            stop = start + _BLOCK_ROWS
            common = _common_prefix(a[start:stop], b)
            total[start:stop] += common / mean_len[start:stop]
    return 1.0 - total / len(trees)


def _padded(paths: list[tuple[int, ...]]) -> tuple[np.ndarray, np.ndarray]:
    lengths = np.array([len(p) for p in paths], dtype=np.int64)
    out = np.full((len(paths), int(lengths.max())), -1, dtype=np.int64)
    for i, p in enumerate(paths):
        out[i, : len(p)] = p
    return out, lengths


def _common_prefix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    depth = min(a.shape[1], b.shape[1])
    a, b = a[:, None, :depth], b[None, :, :depth]
    equal = (a == b) & (a >= 0)
    return np.cumprod(equal, axis=2).sum(axis=2)
