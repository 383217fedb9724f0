"""Row types and table helpers for features, targets and tree nodes.

Tables are pandas DataFrames in long form (one row per observation), the
in-process stand-in for a horizontally partitioned dataset.  Each table has a
frozen dataclass counterpart for building or inspecting single rows.
"""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike

from .errors import ConfigError, IntegrityError

LEAF_FEATURE = 0

# Split value of a forced split inserted when every candidate feature is
# constant at a node: ``x <= inf`` always descends left.
DEGENERATE_SPLIT_VALUE = math.inf

FEATURE_COLUMNS = ("task", "record", "feature", "value")
TARGET_COLUMNS = ("task", "record", "value")
SAMPLE_INDEX_COLUMNS = ("tree", "local", "original")
NODE_COLUMNS = (
    "task",
    "tree",
    "level",
    "node",
    "parent",
    "is_left",
    "feature",
    "value",
    "is_ordinal",
    "leaf_value",
    "support",
    "impurity_reduction",
)
NODE_KEY = ["task", "tree", "level", "node"]

_NODE_DTYPES = {
    "task": "int64",
    "tree": "int64",
    "level": "int64",
    "node": "int64",
    "parent": "int64",
    "is_left": "bool",
    "feature": "int64",
    "value": "float64",
    "is_ordinal": "bool",
    "leaf_value": "float64",
    "support": "int64",
    "impurity_reduction": "float64",
}
_FEATURE_DTYPES = {"task": "int64", "record": "int64", "feature": "int64", "value": "float64"}
_TARGET_DTYPES = {"task": "int64", "record": "int64", "value": "float64"}


@dataclass(frozen=True)
class FeatureRow:
    """One observed feature value of one record."""

    task: int
    record: int
    feature: int
    value: float


@dataclass(frozen=True)
class TargetRow:
    """The dependent value of one record."""

    task: int
    record: int
    value: float


@dataclass(frozen=True)
class TreeNode:
    """A single node of a grown tree.

    Parameters
    ----------
    task, tree : int
        Training task and tree the node belongs to.
    level : int
        Depth of the node; the root is at level 1.
    node : int
        Position within the level.  Children of node ``n`` are ``2n-1``
        (left) and ``2n`` (right) at ``level + 1``.
    parent : int
        ``node`` of the parent at ``level - 1``; 0 for the root.
    is_left : bool
        Whether the node is its parent's left child (False for the root).
    feature : int
        Split feature; 0 marks a leaf.
    value : float
        Split threshold (ordinal) or category (categorical).
    is_ordinal : bool
        ``x <= value`` descends left when True, ``x == value`` otherwise.
    leaf_value : float
        Mean target of the samples that reached the node.
    support : int
        Number of bootstrap samples that reached the node.
    impurity_reduction : float
        Per-sample impurity decrease achieved by the split.
    """

    task: int
    tree: int
    level: int
    node: int
    parent: int
    is_left: bool
    feature: int
    value: float
    is_ordinal: bool
    leaf_value: float
    support: int
    impurity_reduction: float

    @property
    def is_leaf(self) -> bool:
        return self.feature == LEAF_FEATURE

    @property
    def is_degenerate(self) -> bool:
        return not self.is_leaf and self.value == DEGENERATE_SPLIT_VALUE

    @property
    def unique_id(self) -> int:
        """Tree-scoped id that does not depend on the level layout."""
        return (1 << (self.level - 1)) + self.node - 1


# ------------------------------------------------------------------
# Node tables
# ------------------------------------------------------------------

def empty_nodes() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype=_NODE_DTYPES[c]) for c in NODE_COLUMNS})


def nodes_to_frame(nodes: Iterable[TreeNode]) -> pd.DataFrame:
    """Build a node table from :class:`TreeNode` rows."""
    rows = [astuple(n) for n in nodes]
    if not rows:
        return empty_nodes()
    return normalize_nodes(pd.DataFrame(rows, columns=list(NODE_COLUMNS)))


def frame_to_nodes(frame: pd.DataFrame) -> list[TreeNode]:
    """Inverse of :func:`nodes_to_frame`."""
    frame = normalize_nodes(frame)
    return [
        TreeNode(
            task=int(r.task),
            tree=int(r.tree),
            level=int(r.level),
            node=int(r.node),
            parent=int(r.parent),
            is_left=bool(r.is_left),
            feature=int(r.feature),
            value=float(r.value),
            is_ordinal=bool(r.is_ordinal),
            leaf_value=float(r.leaf_value),
            support=int(r.support),
            impurity_reduction=float(r.impurity_reduction),
        )
        for r in frame.itertuples(index=False)
    ]


def normalize_nodes(frame: pd.DataFrame) -> pd.DataFrame:
    """Select node columns, coerce dtypes and sort by ``(task, tree, level, node)``."""
    missing = [c for c in NODE_COLUMNS if c not in frame.columns]
    if missing:
        raise ConfigError(f"node table is missing columns {missing}")
    out = frame.loc[:, list(NODE_COLUMNS)].astype(_NODE_DTYPES)
    return out.sort_values(NODE_KEY, kind="mergesort").reset_index(drop=True)


def unique_ids(level: ArrayLike, node: ArrayLike) -> np.ndarray:
    """Vectorised :attr:`TreeNode.unique_id`."""
    level = np.asarray(level, dtype=np.int64)
    node = np.asarray(node, dtype=np.int64)
    return np.left_shift(np.ones_like(level), level - 1) + node - 1


def leaf_mask(frame: pd.DataFrame) -> pd.Series:
    return frame["feature"] == LEAF_FEATURE


def degenerate_mask(frame: pd.DataFrame) -> pd.Series:
    return (frame["feature"] != LEAF_FEATURE) & np.isposinf(frame["value"])


def validate_nodes(frame: pd.DataFrame) -> None:
    """Check the structural invariants of a node table.

    Raises
    ------
    IntegrityError
        On duplicate node keys, a missing or misplaced root, a child whose
        id does not follow the ``2n-1`` / ``2n`` rule, an orphaned parent
        reference, or a child hanging under a leaf.
    """
    if frame.empty:
        return

    dup = frame.duplicated(NODE_KEY, keep=False)
    if dup.any():
        raise _integrity("duplicate node id", frame[dup])

    out_of_range = (frame["level"] < 1) | (frame["node"] < 1) | (
        frame["node"] > unique_ids(frame["level"], np.ones(len(frame), dtype=np.int64))
    )
    if out_of_range.any():
        raise _integrity("node id outside its level", frame[out_of_range])

    roots = frame[frame["level"] == 1]
    bad_root = roots[(roots["node"] != 1) | (roots["parent"] != 0)]
    if not bad_root.empty:
        raise _integrity("root must have node=1 and parent=0", bad_root)

    trees = frame[["task", "tree"]].drop_duplicates()
    rooted = trees.merge(roots[["task", "tree"]], on=["task", "tree"], how="left", indicator=True)
    unrooted = rooted[rooted["_merge"] == "left_only"]
    if not unrooted.empty:
        raise _integrity("tree has no root", unrooted)

    children = frame[frame["level"] > 1]
    if children.empty:
        return
    misaddressed = children[
        (children["parent"] != (children["node"] + 1) // 2)
        | (children["is_left"] != (children["node"] % 2 == 1))
    ]
    if not misaddressed.empty:
        raise _integrity("child id does not match its parent link", misaddressed)

    parents = frame[["task", "tree", "level", "node", "feature"]].rename(
        columns={"node": "parent", "feature": "parent_feature"}
    )
    parents = parents.assign(level=parents["level"] + 1)
    linked = children.merge(
        parents, on=["task", "tree", "level", "parent"], how="left", indicator=True
    )
    orphans = linked[linked["_merge"] == "left_only"]
    if not orphans.empty:
        raise _integrity("orphaned parent reference", orphans)
    under_leaf = linked[linked["parent_feature"] == LEAF_FEATURE]
    if not under_leaf.empty:
        raise _integrity("child attached to a leaf", under_leaf)


def _integrity(message: str, rows: pd.DataFrame) -> IntegrityError:
    first = rows.iloc[0]
    return IntegrityError(
        message,
        task=int(first["task"]),
        tree=int(first["tree"]),
        node=int(first["node"]) if "node" in rows.columns else None,
    )


# ------------------------------------------------------------------
# Feature / target tables
# ------------------------------------------------------------------

FeatureInput = Union[pd.DataFrame, Iterable[FeatureRow], Iterable[Sequence[float]]]
TargetInput = Union[pd.DataFrame, Iterable[TargetRow], Iterable[Sequence[float]]]


def feature_frame(data: FeatureInput) -> pd.DataFrame:
    """Coerce feature rows into a validated ``(task, record, feature, value)`` table."""
    frame = _as_frame(data, FEATURE_COLUMNS).astype(_FEATURE_DTYPES)
    reserved = frame["feature"] < 1
    if reserved.any():
        first = frame[reserved].iloc[0]
        raise ConfigError(
            f"feature numbers must be >= 1 (0 is reserved), got {int(first['feature'])}",
            task=int(first["task"]),
        )
    dup = frame.duplicated(["task", "record", "feature"])
    if dup.any():
        first = frame[dup].iloc[0]
        raise ConfigError(
            f"duplicate value for record {int(first['record'])}, "
            f"feature {int(first['feature'])}",
            task=int(first["task"]),
        )
    return frame.reset_index(drop=True)


def target_frame(data: TargetInput) -> pd.DataFrame:
    """Coerce target rows into a validated ``(task, record, value)`` table."""
    frame = _as_frame(data, TARGET_COLUMNS).astype(_TARGET_DTYPES)
    dup = frame.duplicated(["task", "record"])
    if dup.any():
        first = frame[dup].iloc[0]
        raise ConfigError(
            f"duplicate target for record {int(first['record'])}", task=int(first["task"])
        )
    return frame.reset_index(drop=True)


def features_from_matrix(
    X: ArrayLike,
    *,
    task: int = 1,
    records: Optional[Sequence[int]] = None,
) -> pd.DataFrame:
    """Convert a dense ``(n_samples, n_features)`` matrix to feature rows.

    Columns become features ``1..n_features``; records default to
    ``1..n_samples``.  NaN entries are treated as unobserved and omitted.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"X must be two-dimensional, got shape {X.shape}")
    n_samples, n_features = X.shape
    record_ids = _record_ids(records, n_samples)
    frame = pd.DataFrame(
        {
            "task": task,
            "record": np.repeat(record_ids, n_features),
            "feature": np.tile(np.arange(1, n_features + 1, dtype=np.int64), n_samples),
            "value": X.ravel(),
        }
    )
    return feature_frame(frame.dropna(subset=["value"]))


def targets_from_vector(
    y: ArrayLike,
    *,
    task: int = 1,
    records: Optional[Sequence[int]] = None,
) -> pd.DataFrame:
    """Convert a target vector to target rows (records default to ``1..n``)."""
    y = np.asarray(y, dtype=np.float64).ravel()
    record_ids = _record_ids(records, len(y))
    return target_frame(pd.DataFrame({"task": task, "record": record_ids, "value": y}))


def point_frame(data: FeatureInput) -> pd.DataFrame:
    """Distinct ``(task, record)`` pairs of a feature table."""
    frame = feature_frame(data)
    return (
        frame[["task", "record"]]
        .drop_duplicates()
        .sort_values(["task", "record"], kind="mergesort")
        .reset_index(drop=True)
    )


def _record_ids(records: Optional[Sequence[int]], n: int) -> np.ndarray:
    if records is None:
        return np.arange(1, n + 1, dtype=np.int64)
    record_ids = np.asarray(records, dtype=np.int64)
    if record_ids.shape != (n,):
        raise ValueError(f"expected {n} record ids, got {record_ids.shape[0]}")
    return record_ids


def _as_frame(data, columns: Sequence[str]) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        missing = [c for c in columns if c not in data.columns]
        if missing:
            raise ConfigError(f"table is missing columns {missing}")
        return data.loc[:, list(columns)]
    rows = [astuple(r) if hasattr(r, "__dataclass_fields__") else tuple(r) for r in data]
    if not rows:
        return pd.DataFrame({c: pd.Series(dtype="float64") for c in columns})
    return pd.DataFrame(rows, columns=list(columns))
