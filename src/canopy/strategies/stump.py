"""Default regression split strategy (one sklearn stump per active node)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.tree import DecisionTreeRegressor

from ..config import ForestConfig
from ..errors import ConfigError
from ..tables import DEGENERATE_SPLIT_VALUE, LEAF_FEATURE, TreeNode, nodes_to_frame
from .base import GrowthStep, empty_assignments


@dataclass(frozen=True)
class _TaskMatrix:
    """Dense view of one task's feature rows (last row is all-NaN)."""

    records: pd.Index
    features: np.ndarray
    values: np.ndarray

    def rows(self, records: Iterable[int]) -> np.ndarray:
        pos = self.records.get_indexer(pd.Index(records))
        # records without any feature row read the trailing NaN row
        return np.where(pos < 0, len(self.records), pos)


@dataclass(frozen=True)
class _Candidate:
    feature: int
    column: np.ndarray
    category: Optional[float]  # None for an ordinal column


class StumpSplitStrategy:
    """Chooses each split with a depth-1 :class:`DecisionTreeRegressor`.

    Parameters
    ----------
    features : DataFrame
        Validated ``(task, record, feature, value)`` rows.
    features_per_node : int or None
        Candidate features drawn per node (see :class:`ForestConfig`).
    min_samples_split : int, default 2
        Nodes with fewer samples become leaves.
    categorical_features : iterable of int
        Features split by equality.  They are offered to the stump as
        ``x != v`` indicator columns so that ``x == v`` descends left.
    random_state : int, default 42
        Seed of the candidate feature draws.
    """

    def __init__(
        self,
        features: pd.DataFrame,
        *,
        features_per_node: Optional[int] = None,
        min_samples_split: int = 2,
        categorical_features: Iterable[int] = (),
        random_state: int = 42,
    ) -> None:
        self._config = ForestConfig(
            features_per_node=features_per_node,
            min_samples_split=min_samples_split,
            categorical_features=frozenset(categorical_features),
            random_state=random_state,
        )
        self._rng = np.random.RandomState(random_state)
        self._matrices = {
            int(task): _dense(rows) for task, rows in features.groupby("task", sort=True)
        }

    @classmethod
    def from_config(cls, features: pd.DataFrame, config: ForestConfig) -> StumpSplitStrategy:
        return cls(
            features,
            features_per_node=config.features_per_node,
            min_samples_split=config.min_samples_split,
            categorical_features=config.categorical_features,
            random_state=config.random_state,
        )

    def split(self, samples: pd.DataFrame, level: int, *, terminal: bool) -> GrowthStep:
        resolved: list[TreeNode] = []
        children: list[pd.DataFrame] = []
        for (task, tree, node), group in samples.groupby(["task", "tree", "node"], sort=True):
            tree_node, routed = self._resolve(
                int(task), int(tree), level, int(node), group, terminal
            )
            resolved.append(tree_node)
            if routed is not None:
                children.append(routed)
        assignments = pd.concat(children, ignore_index=True) if children else empty_assignments()
        return GrowthStep(nodes=nodes_to_frame(resolved), assignments=assignments)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self,
        task: int,
        tree: int,
        level: int,
        node: int,
        group: pd.DataFrame,
        terminal: bool,
    ) -> tuple[TreeNode, Optional[pd.DataFrame]]:
        y = group["target"].to_numpy(dtype=np.float64)
        base = dict(
            task=task,
            tree=tree,
            level=level,
            node=node,
            parent=0 if level == 1 else (node + 1) // 2,
            is_left=level > 1 and node % 2 == 1,
            leaf_value=float(y.mean()),
            support=len(y),
        )
        leaf = TreeNode(
            feature=LEAF_FEATURE, value=0.0, is_ordinal=True, impurity_reduction=0.0, **base
        )
        if terminal or len(y) < self._config.min_samples_split or np.ptp(y) == 0:
            return leaf, None

        try:
            matrix = self._matrices[task]
        except KeyError:
            raise ConfigError("task has targets but no feature rows", task=task) from None
        rows = matrix.rows(group["record"])
        candidates = self._draw_candidates(matrix, rows)
        varying = [c for c in candidates if _n_distinct(c.column) > 1]

        if not varying:
            split = TreeNode(
                feature=candidates[0].feature,
                value=DEGENERATE_SPLIT_VALUE,
                is_ordinal=True,
                impurity_reduction=0.0,
                **base,
            )
            return split, group.assign(node=2 * node - 1)

        chosen, threshold = self._fit_stump(varying, y)
        x = chosen.column
        if chosen.category is None:
            go_left = x <= threshold
            split_value, is_ordinal = float(threshold), True
        else:
            go_left = x == chosen.category
            split_value, is_ordinal = chosen.category, False

        n_left = int(go_left.sum())
        if n_left == 0 or n_left == len(y):
            return leaf, None

        split = TreeNode(
            feature=chosen.feature,
            value=split_value,
            is_ordinal=is_ordinal,
            impurity_reduction=_variance_reduction(y, go_left),
            **base,
        )
        return split, group.assign(node=np.where(go_left, 2 * node - 1, 2 * node))

    def _draw_candidates(self, matrix: _TaskMatrix, rows: np.ndarray) -> list[_Candidate]:
        n_features = len(matrix.features)
        k = self._config.resolve_features_per_node(n_features)
        picked = self._rng.choice(n_features, size=k, replace=False)
        candidates: list[_Candidate] = []
        for j in picked:
            feature = int(matrix.features[j])
            column = matrix.values[rows, j]
            categories = np.unique(column[~np.isnan(column)])
            if feature in self._config.categorical_features and len(categories) > 1:
                candidates.extend(_Candidate(feature, column, float(c)) for c in categories)
            else:
                candidates.append(_Candidate(feature, column, None))
        return candidates

    def _fit_stump(self, candidates: list[_Candidate], y: np.ndarray) -> tuple[_Candidate, float]:
        design = np.column_stack(
            [
                c.column if c.category is None else (c.column != c.category).astype(np.float64)
                for c in candidates
            ]
        )
        stump = DecisionTreeRegressor(
            max_depth=1,
            random_state=self._rng.randint(np.iinfo(np.int32).max),
        )
        stump.fit(design, y)
        tree_ = stump.tree_
        if tree_.node_count < 3:
            # no admissible split: hand back a threshold that keeps everyone left
            return candidates[0], np.inf
        return candidates[int(tree_.feature[0])], float(tree_.threshold[0])


def _dense(rows: pd.DataFrame) -> _TaskMatrix:
    wide = rows.pivot(index="record", columns="feature", values="value").sort_index()
    wide = wide.reindex(sorted(wide.columns), axis=1)
    values = wide.to_numpy(dtype=np.float64)
    values = np.vstack([values, np.full((1, values.shape[1]), np.nan)])
    return _TaskMatrix(
        records=wide.index,
        features=wide.columns.to_numpy(dtype=np.int64),
        values=values,
    )


def _n_distinct(column: np.ndarray) -> int:
    return len(np.unique(column[~np.isnan(column)]))


def _variance_reduction(y: np.ndarray, go_left: np.ndarray) -> float:
    """Decrease of mean squared error per sample achieved by the partition."""
    n = len(y)
    left, right = y[go_left], y[~go_left]
    children = (len(left) * left.var() + len(right) * right.var()) / n
    return float(max(y.var() - children, 0.0))
