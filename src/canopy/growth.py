"""Round-based forest growth: one tree level per round, split choice delegated."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pandas as pd

from .bootstrap import BootstrapSampler, root_assignments, sample_counts_of
from .codec import Model, encode_nodes
from .config import ForestConfig
from .errors import ConfigError, IntegrityError
from .strategies.base import SplitStrategy
from .strategies.stump import StumpSplitStrategy
from .tables import (
    LEAF_FEATURE,
    NODE_KEY,
    FeatureInput,
    TargetInput,
    degenerate_mask,
    empty_nodes,
    feature_frame,
    normalize_nodes,
    target_frame,
)

logger = logging.getLogger(__name__)

_NODE = ["task", "tree", "node"]
_SAMPLE = ["task", "tree", "local"]


class ForestGrowthEngine:
    """Drives bounded, level-by-level expansion of every tree of every task.

    Each round hands the active sample assignments of one level to the
    strategy and checks what comes back before the next round starts.
    Growth stops when no node is active or after ``max_depth`` rounds; the
    last round is flagged terminal so the strategy closes every node.

    Parameters
    ----------
    strategy : SplitStrategy
        Resolves the active nodes of a level.
    max_depth : int
        Maximum number of rounds (tree levels).
    """

    def __init__(self, strategy: SplitStrategy, max_depth: int) -> None:
        if not isinstance(strategy, SplitStrategy):
            raise TypeError(
                f"strategy must implement split(samples, level, *, terminal), "
                f"got {type(strategy).__name__!r}"
            )
        if max_depth < 1:
            raise ConfigError(f"max_depth must be >= 1, got {max_depth}")
        self.strategy = strategy
        self.max_depth = max_depth

    def grow(self, roots: pd.DataFrame) -> pd.DataFrame:
        """Grow from the root assignments and return the full node table."""
        emitted: list[pd.DataFrame] = []
        active = roots
        for level in range(1, self.max_depth + 1):
            if active.empty:
                break
            terminal = level == self.max_depth
            logger.debug(
                "Level %d: %d active nodes, %d samples%s",
                level,
                len(active[_NODE].drop_duplicates()),
                len(active),
                " (terminal)" if terminal else "",
            )
            step = self.strategy.split(active, level, terminal=terminal)
            nodes = normalize_nodes(step.nodes)
            _check_round(active, nodes, step.assignments, level, terminal)
            emitted.append(nodes)
            active = step.assignments

        if not emitted:
            return empty_nodes()
        return normalize_nodes(pd.concat(emitted, ignore_index=True))


def _check_round(
    active: pd.DataFrame,
    nodes: pd.DataFrame,
    assignments: pd.DataFrame,
    level: int,
    terminal: bool,
) -> None:
    """Reject a growth step that breaks the node table invariants."""
    wrong_level = nodes[nodes["level"] != level]
    if not wrong_level.empty:
        raise _violation(f"strategy emitted a node outside level {level}", wrong_level)

    dup = nodes.duplicated(NODE_KEY, keep=False)
    if dup.any():
        raise _violation("duplicate node id", nodes[dup])

    expected = active[_NODE].drop_duplicates()
    matched = expected.merge(nodes[_NODE], on=_NODE, how="outer", indicator=True)
    unresolved = matched[matched["_merge"] == "left_only"]
    if not unresolved.empty:
        raise _violation("active node was not resolved", unresolved)
    unknown = matched[matched["_merge"] == "right_only"]
    if not unknown.empty:
        raise _violation("resolved node has no samples (orphaned)", unknown)

    if level > 1:
        misaddressed = nodes[
            (nodes["parent"] != (nodes["node"] + 1) // 2)
            | (nodes["is_left"] != (nodes["node"] % 2 == 1))
        ]
    else:
        misaddressed = nodes[(nodes["node"] != 1) | (nodes["parent"] != 0)]
    if not misaddressed.empty:
        raise _violation("node id does not follow the child-id rule", misaddressed)

    split_nodes = nodes[nodes["feature"] != LEAF_FEATURE]
    if terminal and not split_nodes.empty:
        raise _violation("terminal round emitted a branch node", split_nodes)
    if assignments.empty:
        _check_branches_have_children(split_nodes, assignments)
        return
    if terminal:
        raise _violation("terminal round produced children", assignments)

    dup = assignments.duplicated(_SAMPLE, keep=False)
    if dup.any():
        raise _violation("sample assigned to more than one child", assignments[dup])

    branches = split_nodes[_NODE].assign(degenerate=degenerate_mask(split_nodes).to_numpy())
    routed = assignments[_SAMPLE + ["node"]].rename(columns={"node": "child"})
    routed = routed.assign(node=(routed["child"] + 1) // 2)
    linked = routed.merge(branches, on=_NODE, how="left", indicator=True)
    orphans = linked[linked["_merge"] == "left_only"]
    if not orphans.empty:
        raise _violation("orphaned parent reference", orphans.assign(node=orphans["child"]))
    one_sided = linked[linked["degenerate"].astype(bool) & (linked["child"] % 2 == 0)]
    if not one_sided.empty:
        raise _violation("degenerate split routed a sample right", one_sided)

    _check_branches_have_children(split_nodes, assignments)

    source = active[_SAMPLE + ["node"]].merge(branches[_NODE], on=_NODE)
    traced = source.merge(routed, on=_SAMPLE, how="outer", suffixes=("", "_routed"), indicator=True)
    lost = traced[(traced["_merge"] != "both") | (traced["node"] != traced["node_routed"])]
    if not lost.empty:
        raise _violation(
            "sample of a branch node was lost or moved across nodes",
            lost.assign(node=lost["node"].fillna(lost["node_routed"])),
        )


def _check_branches_have_children(split_nodes: pd.DataFrame, assignments: pd.DataFrame) -> None:
    if split_nodes.empty:
        return
    parents = assignments[["task", "tree"]].assign(node=(assignments["node"] + 1) // 2)
    linked = split_nodes[_NODE].merge(
        parents.drop_duplicates(), on=_NODE, how="left", indicator=True
    )
    childless = linked[linked["_merge"] == "left_only"]
    if not childless.empty:
        raise _violation("branch node has no children", childless)


def _violation(message: str, rows: pd.DataFrame) -> IntegrityError:
    first = rows.iloc[0]
    return IntegrityError(
        message,
        task=int(first["task"]),
        tree=int(first["tree"]),
        node=int(first["node"]),
    )


def grow_forest(
    features: FeatureInput,
    targets: TargetInput,
    config: ForestConfig,
    *,
    strategy: Optional[SplitStrategy] = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Grow every tree of every task.

    Returns
    -------
    tuple of (DataFrame, DataFrame)
        The node table and the shared ``(tree, local, original)`` index.
    """
    features = feature_frame(features)
    targets = target_frame(targets)
    sample = BootstrapSampler(config.num_trees, random_state=config.random_state).generate(
        sample_counts_of(targets)
    )
    roots = root_assignments(sample, targets)
    if strategy is None:
        strategy = StumpSplitStrategy.from_config(features, config)

    logger.info(
        "Growing %d trees for %d tasks (max depth %d)",
        config.num_trees, len(sample.sample_counts), config.max_depth,
    )
    nodes = ForestGrowthEngine(strategy, config.max_depth).grow(roots)
    logger.info("Grew %d nodes", len(nodes))
    return nodes, sample.index


def build_forest(
    features: FeatureInput,
    targets: TargetInput,
    *,
    num_trees: int = 10,
    features_per_node: Optional[int] = None,
    max_depth: int = 10,
    min_samples_split: int = 2,
    categorical_features: Iterable[int] = (),
    random_state: int = 42,
    strategy: Optional[SplitStrategy] = None,
    config: Optional[ForestConfig] = None,
) -> Model:
    """Train a forest per task and return it as a :class:`Model`.

    Parameters
    ----------
    features : DataFrame or iterable of FeatureRow
        ``(task, record, feature, value)`` rows.
    targets : DataFrame or iterable of TargetRow
        ``(task, record, value)`` rows; they define each task's samples.
    num_trees, features_per_node, max_depth, min_samples_split,
    categorical_features, random_state
        See :class:`ForestConfig`.
    strategy : SplitStrategy or None
        Split strategy; defaults to :class:`StumpSplitStrategy`.
    config : ForestConfig or None
        Prebuilt configuration.  When given, the individual keyword
        parameters above are ignored.

    Returns
    -------
    Model
        Encoded node table plus the bootstrap sample index.
    """
    if config is None:
        config = ForestConfig(
            num_trees=num_trees,
            features_per_node=features_per_node,
            max_depth=max_depth,
            min_samples_split=min_samples_split,
            categorical_features=frozenset(categorical_features),
            random_state=random_state,
        )
    nodes, sample_index = grow_forest(features, targets, config, strategy=strategy)
    return encode_nodes(nodes, sample_index)
