"""Leaf routing: push feature vectors through a persisted forest."""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
import pandas as pd

from .codec import Model, as_nodes
from .errors import IntegrityError
from .tables import LEAF_FEATURE, NODE_COLUMNS, NODE_KEY, FeatureInput, feature_frame

logger = logging.getLogger(__name__)

ROUTE_COLUMNS = ["task", "record", "tree"] + [c for c in NODE_COLUMNS if c not in ("task", "tree")]


def route(model: Union[Model, pd.DataFrame], features: FeatureInput) -> pd.DataFrame:
    """Find the leaf every point reaches in every tree of its task.

    All ``(record, tree)`` pairs advance one level per round together: one
    join against the node table picks up the split, one join against the
    feature rows picks up the point's value.  Ordinal splits send
    ``x <= value`` left, categorical splits send ``x == value`` left,
    degenerate splits send everything left; a missing value goes right.

    Parameters
    ----------
    model : Model or DataFrame
        Persisted forest or its decoded node table.
    features : DataFrame or iterable of FeatureRow
        ``(task, record, feature, value)`` rows of the points to route.

    Returns
    -------
    DataFrame
        One row per ``(task, record, tree)`` with the reached leaf's node
        columns.

    Raises
    ------
    IntegrityError
        If a branch points at a child that is not in the node table.
    """
    return route_nodes(as_nodes(model), feature_frame(features))


def route_nodes(nodes: pd.DataFrame, features: pd.DataFrame) -> pd.DataFrame:
    """:func:`route` over an already decoded node table and feature table."""
    points = features[["task", "record"]].drop_duplicates()
    unknown = sorted(set(points["task"]) - set(nodes["task"]))
    if unknown:
        logger.warning("Skipping tasks without a trained forest: %s", unknown)

    roots = nodes.loc[nodes["level"] == 1, ["task", "tree"]]
    frontier = points.merge(roots, on="task").assign(level=1, node=1)
    splits = nodes[NODE_KEY + ["feature", "value", "is_ordinal"]]
    point_values = features.rename(columns={"value": "x"})

    reached: list[pd.DataFrame] = []
    rounds = 0
    while not frontier.empty:
        rounds += 1
        current = frontier.merge(splits, on=NODE_KEY, how="left", indicator=True)
        dangling = current[current["_merge"] == "left_only"]
        if not dangling.empty:
            first = dangling.iloc[0]
            raise IntegrityError(
                f"routing reached a missing node at level {int(first['level'])}",
                task=int(first["task"]),
                tree=int(first["tree"]),
                node=int(first["node"]),
            )
        current = current.drop(columns="_merge").astype({"feature": "int64", "is_ordinal": "bool"})

        at_leaf = current["feature"] == LEAF_FEATURE
        reached.append(current.loc[at_leaf, ["task", "record", "tree", "level", "node"]])
        branch = current[~at_leaf]
        if branch.empty:
            break

        branch = branch.merge(point_values, on=["task", "record", "feature"], how="left")
        x = branch["x"].to_numpy()
        value = branch["value"].to_numpy()
        ordinal = branch["is_ordinal"].to_numpy()
        go_left = np.isposinf(value) | np.where(ordinal, x <= value, x == value)
        frontier = pd.DataFrame(
            {
                "task": branch["task"].to_numpy(),
                "record": branch["record"].to_numpy(),
                "tree": branch["tree"].to_numpy(),
                "level": branch["level"].to_numpy() + 1,
                "node": np.where(go_left, 2 * branch["node"] - 1, 2 * branch["node"]),
            }
        )
    logger.debug("Routed %d points in %d rounds", len(points), rounds)

    if not reached:
        return nodes.iloc[0:0].assign(record=pd.Series(dtype="int64")).loc[:, ROUTE_COLUMNS]
    leaves = pd.concat(reached, ignore_index=True).merge(nodes, on=NODE_KEY)
    return (
        leaves.loc[:, ROUTE_COLUMNS]
        .sort_values(["task", "record", "tree"], kind="mergesort")
        .reset_index(drop=True)
    )


def predict(model: Union[Model, pd.DataFrame], features: FeatureInput) -> pd.DataFrame:
    """Average the reached leaf values over the trees of each point's task.

    Returns
    -------
    DataFrame
        ``(task, record, prediction)``.
    """
    leaves = route(model, features)
    return (
        leaves.groupby(["task", "record"], sort=True)["leaf_value"]
        .mean()
        .rename("prediction")
        .reset_index()
    )
