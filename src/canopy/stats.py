"""Structural statistics and Mean-Decrease-Impurity feature importance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Union

import pandas as pd

from .codec import Model, as_nodes
from .tables import degenerate_mask, leaf_mask


@dataclass(frozen=True)
class TaskStats:
    """Structural summary of the forest of one task.

    Attributes
    ----------
    task : int
    n_trees : int
    min_depth, max_depth : int
        Shallowest / deepest tree (levels, root = 1).
    mean_depth : float
    min_nodes, max_nodes : int
        Smallest / largest tree by node count.
    mean_nodes : float
    total_nodes : int
    n_leaves : int
    min_leaf_depth, max_leaf_depth : int
    mean_leaf_depth : float
    n_degenerate : int
        Degenerate splits still present (0 after compression).
    root_support : int
        Bootstrap samples over all trees.
    mean_leaf_support : float
    """

    task: int
    n_trees: int
    min_depth: int
    max_depth: int
    mean_depth: float
    min_nodes: int
    max_nodes: int
    mean_nodes: float
    total_nodes: int
    n_leaves: int
    min_leaf_depth: int
    max_leaf_depth: int
    mean_leaf_depth: float
    n_degenerate: int
    root_support: int
    mean_leaf_support: float

    def __str__(self) -> str:
        return (
            f"=== Forest Stats (task {self.task}, {self.n_trees} trees) ===\n"
            f"  Depth: min {self.min_depth}, max {self.max_depth}, mean {self.mean_depth:.2f}\n"
            f"  Nodes: min {self.min_nodes}, max {self.max_nodes}, "
            f"mean {self.mean_nodes:.2f}, total {self.total_nodes}\n"
            f"  Leaves: {self.n_leaves} (depth min {self.min_leaf_depth}, "
            f"max {self.max_leaf_depth}, mean {self.mean_leaf_depth:.2f})\n"
            f"  Degenerate splits: {self.n_degenerate}\n"
            f"  Support: {self.root_support} samples, "
            f"mean leaf support {self.mean_leaf_support:.2f}"
        )


def model_stats(model: Union[Model, pd.DataFrame]) -> tuple[TaskStats, ...]:
    """Aggregate per-task tree statistics, ordered by task."""
    nodes = as_nodes(model)
    nodes = nodes.assign(is_leaf=leaf_mask(nodes), degenerate=degenerate_mask(nodes))

    reports: list[TaskStats] = []
    for task, rows in nodes.groupby("task", sort=True):
        per_tree = rows.groupby("tree").agg(depth=("level", "max"), n_nodes=("node", "size"))
        leaves = rows[rows["is_leaf"]]
        roots = rows[rows["level"] == 1]
        reports.append(
            TaskStats(
                task=int(task),
                n_trees=len(per_tree),
                min_depth=int(per_tree["depth"].min()),
                max_depth=int(per_tree["depth"].max()),
                mean_depth=float(per_tree["depth"].mean()),
                min_nodes=int(per_tree["n_nodes"].min()),
                max_nodes=int(per_tree["n_nodes"].max()),
                mean_nodes=float(per_tree["n_nodes"].mean()),
                total_nodes=len(rows),
                n_leaves=len(leaves),
                min_leaf_depth=int(leaves["level"].min()),
                max_leaf_depth=int(leaves["level"].max()),
                mean_leaf_depth=float(leaves["level"].mean()),
                n_degenerate=int(rows["degenerate"].sum()),
                root_support=int(roots["support"].sum()),
                mean_leaf_support=float(leaves["support"].mean()),
            )
        )
    return tuple(reports)


def feature_importance(
    model: Union[Model, pd.DataFrame],
    *,
    feature_names: Optional[Mapping[int, str]] = None,
) -> pd.DataFrame:
    """Mean Decrease Impurity per feature, ranked within each task.

    ``importance = sum(impurity_reduction * support) / n_trees`` over the
    real branch nodes using the feature; degenerate splits carry no
    decision and are not counted.

    Returns
    -------
    DataFrame
        ``(task, feature, importance, usage, rank)`` plus ``name`` when
        *feature_names* is given; rank 1 is the most important feature.
    """
    nodes = as_nodes(model)
    n_trees = nodes.groupby("task")["tree"].nunique()
    branches = nodes[~leaf_mask(nodes) & ~degenerate_mask(nodes)]
    branches = branches.assign(weighted=branches["impurity_reduction"] * branches["support"])

    ranked = (
        branches.groupby(["task", "feature"], sort=True)
        .agg(total=("weighted", "sum"), usage=("weighted", "size"))
        .reset_index()
    )
    ranked["importance"] = ranked["total"] / ranked["task"].map(n_trees)
    ranked = ranked.sort_values(
        ["task", "importance", "feature"], ascending=[True, False, True], kind="mergesort"
    ).reset_index(drop=True)
    ranked["rank"] = ranked.groupby("task").cumcount() + 1
    columns = ["task", "feature", "importance", "usage", "rank"]
    if feature_names is not None:
        ranked["name"] = ranked["feature"].map(lambda f: feature_names.get(int(f), str(f)))
        columns.append("name")
    return ranked.loc[:, columns]
