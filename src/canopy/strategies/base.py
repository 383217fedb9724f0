"""Protocol for pluggable split strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import pandas as pd

ASSIGNMENT_COLUMNS = ("task", "tree", "node", "local", "record", "target")


@dataclass(frozen=True)
class GrowthStep:
    """Output of one growth round.

    Attributes
    ----------
    nodes : DataFrame
        The active nodes of the round, resolved into leaves or branches
        (node table columns).
    assignments : DataFrame
        Samples of the branch nodes routed to their children at the next
        level, with :data:`ASSIGNMENT_COLUMNS`.
    """

    nodes: pd.DataFrame
    assignments: pd.DataFrame


def empty_assignments() -> pd.DataFrame:
    dtypes = {c: "int64" for c in ASSIGNMENT_COLUMNS}
    dtypes["target"] = "float64"
    return pd.DataFrame({c: pd.Series(dtype=t) for c, t in dtypes.items()})


@runtime_checkable
class SplitStrategy(Protocol):
    """Minimal interface that a split strategy must satisfy.

    A strategy must give children the ids ``2n-1`` (left) and ``2n``
    (right), mark leaves with feature 0, and route every sample of a branch
    to exactly one child.
    """

    def split(self, samples: pd.DataFrame, level: int, *, terminal: bool) -> GrowthStep:
        """Resolve the active nodes of *level*.

        *samples* holds :data:`ASSIGNMENT_COLUMNS` rows for every active
        node.  When *terminal* is True every node must become a leaf.
        """
        ...
