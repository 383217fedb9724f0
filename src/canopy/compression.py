"""Structural compression: remove degenerate splits and renumber the trees."""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
import pandas as pd

from .codec import Model, as_nodes, decode_nodes, decode_sample_index, encode_nodes
from .errors import IntegrityError
from .tables import degenerate_mask, normalize_nodes, unique_ids, validate_nodes

logger = logging.getLogger(__name__)

_TREE = ["task", "tree"]


def compress(model: Model) -> Model:
    """Compress every tree of *model*; the sample index is carried over."""
    nodes = compress_nodes(decode_nodes(model))
    return encode_nodes(nodes, decode_sample_index(model))


def compress_nodes(nodes: Union[Model, pd.DataFrame]) -> pd.DataFrame:
    """Remove degenerate splits from a node table.

    A degenerate split sends every input to its left child, so splicing the
    child into the split's place does not change which leaf any input
    reaches.

    1. *Splice*: nodes get a level-independent unique id and a parent link
       by unique id.  Levels are processed top-down; the left child of a
       degenerate node is relinked to the degenerate node's parent and
       inherits its ``is_left`` flag.  Nodes on the unreachable right side
       of a degenerate node are dropped before splicing.
    2. *Renumber*: ``level``, ``node`` and ``parent`` are recomputed from the
       root of each tree by walking the unique-id links with the
       ``2n-1`` / ``2n`` rule.

    Raises
    ------
    IntegrityError
        If the input breaks a structural invariant, a degenerate node has no
        left child, a tree ends up with several roots, two nodes land on the
        same side of one parent, or the links form a cycle.
    """
    nodes = as_nodes(nodes)
    validate_nodes(nodes)
    spliced = _splice(nodes)
    compressed = _renumber(spliced)
    n_degenerate = int(degenerate_mask(nodes).sum())
    logger.info(
        "Compressed %d nodes to %d (%d degenerate splits removed, %d unreachable nodes dropped)",
        len(nodes),
        len(compressed),
        n_degenerate,
        len(nodes) - len(compressed) - n_degenerate,
    )
    return compressed


def _splice(nodes: pd.DataFrame) -> pd.DataFrame:
    level = nodes["level"].to_numpy()
    frame = nodes.assign(
        uid=unique_ids(level, nodes["node"]),
        parent_uid=np.where(level > 1, unique_ids(np.maximum(level - 1, 1), nodes["parent"]), 0),
        degenerate=degenerate_mask(nodes).to_numpy(),
    )
    frame = frame[~_behind_degenerate(frame)]

    for lvl in sorted(frame.loc[frame["degenerate"], "level"].unique()):
        bypassed = frame.loc[
            (frame["level"] == lvl) & frame["degenerate"], _TREE + ["uid", "parent_uid", "is_left"]
        ].rename(columns={"uid": "via", "parent_uid": "new_parent", "is_left": "new_is_left"})
        reachable = (
            frame[_TREE + ["parent_uid", "is_left"]]
            .reset_index()
            .merge(bypassed, left_on=_TREE + ["parent_uid"], right_on=_TREE + ["via"])
        )
        childless = bypassed.merge(reachable[_TREE + ["via"]], on=_TREE + ["via"], how="left", indicator=True)
        childless = childless[childless["_merge"] == "left_only"]
        if not childless.empty:
            first = childless.iloc[0]
            raise IntegrityError(
                "degenerate split has no left child",
                task=int(first["task"]),
                tree=int(first["tree"]),
                node=int(first["via"]),
            )

        index = reachable["index"].to_numpy()
        frame.loc[index, "parent_uid"] = reachable["new_parent"].to_numpy()
        frame.loc[index, "is_left"] = reachable["new_is_left"].to_numpy()

    return frame[~frame["degenerate"]].drop(columns="degenerate")


def _behind_degenerate(frame: pd.DataFrame) -> np.ndarray:
    """Mask of the nodes that sit below the right side of a degenerate split."""
    forced = frame.loc[frame["degenerate"], _TREE + ["uid"]]
    behind = np.zeros(len(frame), dtype=bool)
    if forced.empty:
        return behind
    ancestor = frame["uid"].to_numpy()
    for _ in range(int(frame["level"].max()) - 1):
        right_side = (ancestor > 1) & (ancestor % 2 == 1)
        up = frame[_TREE].assign(uid=ancestor // 2)
        linked = up.merge(forced, on=_TREE + ["uid"], how="left", indicator=True)
        behind |= right_side & (linked["_merge"] == "both").to_numpy()
        ancestor = ancestor // 2
    return behind


def _renumber(frame: pd.DataFrame) -> pd.DataFrame:
    roots = frame[frame["parent_uid"] == 0]
    several = roots.duplicated(_TREE, keep=False)
    if several.any():
        first = roots[several].iloc[0]
        raise IntegrityError(
            "tree has several roots after splicing",
            task=int(first["task"]),
            tree=int(first["tree"]),
        )

    current = roots.assign(level=1, node=1, parent=0, is_left=False)
    placed = [current]
    seen = current[_TREE + ["uid"]]
    remaining = frame[frame["parent_uid"] > 0].drop(columns=["level", "node", "parent"])
    depth = 1
    while not current.empty:
        depth += 1
        parents = current[_TREE + ["uid", "node"]].rename(
            columns={"uid": "parent_uid", "node": "parent"}
        )
        children = remaining.merge(parents, on=_TREE + ["parent_uid"])
        if children.empty:
            break
        children = children.assign(
            level=depth,
            node=np.where(children["is_left"], 2 * children["parent"] - 1, 2 * children["parent"]),
        )

        clash = children.duplicated(_TREE + ["node"], keep=False)
        if clash.any():
            first = children[clash].iloc[0]
            raise IntegrityError(
                "two children on the same side of one parent",
                task=int(first["task"]),
                tree=int(first["tree"]),
                node=int(first["parent"]),
            )
        revisited = children.merge(seen, on=_TREE + ["uid"])
        if not revisited.empty:
            first = revisited.iloc[0]
            raise IntegrityError(
                "cyclic parent reference",
                task=int(first["task"]),
                tree=int(first["tree"]),
                node=int(first["uid"]),
            )

        placed.append(children)
        seen = pd.concat([seen, children[_TREE + ["uid"]]], ignore_index=True)
        current = children

    return normalize_nodes(pd.concat(placed, ignore_index=True))
