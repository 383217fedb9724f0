"""Training configuration for forest growth."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigError

# Unique node ids are heap-numbered (2**(level-1) + node - 1) and must fit int64.
MAX_SUPPORTED_DEPTH = 62


@dataclass(frozen=True)
class ForestConfig:
    """Parameters of one forest build.

    Parameters
    ----------
    num_trees : int
        Number of trees grown per task.
    features_per_node : int or None
        Candidate features drawn at every node.  ``None`` means
        ``ceil(sqrt(n_features))``.  Values above the number of available
        features are clamped, not rejected.
    max_depth : int
        Hard ceiling on the number of growth rounds (tree levels).
    min_samples_split : int
        Nodes supported by fewer bootstrap samples become leaves.
    categorical_features : frozenset of int
        Feature numbers split by equality instead of by threshold.
    random_state : int
        Seed for the bootstrap draw and the candidate feature draws.
    """

    num_trees: int = 10
    features_per_node: Optional[int] = None
    max_depth: int = 10
    min_samples_split: int = 2
    categorical_features: frozenset = field(default_factory=frozenset)
    random_state: int = 42

    def __post_init__(self) -> None:
        if self.num_trees < 1:
            raise ConfigError(f"num_trees must be >= 1, got {self.num_trees}")
        if not 1 <= self.max_depth <= MAX_SUPPORTED_DEPTH:
            raise ConfigError(
                f"max_depth must be in [1, {MAX_SUPPORTED_DEPTH}], got {self.max_depth}"
            )
        if self.min_samples_split < 2:
            raise ConfigError(
                f"min_samples_split must be >= 2, got {self.min_samples_split}"
            )
        if self.features_per_node is not None and self.features_per_node < 1:
            raise ConfigError(
                f"features_per_node must be >= 1, got {self.features_per_node}"
            )
        if 0 in self.categorical_features:
            raise ConfigError("feature number 0 is reserved and cannot be categorical")
        # Accept any iterable of feature numbers
        object.__setattr__(
            self, "categorical_features", frozenset(int(f) for f in self.categorical_features)
        )

    def resolve_features_per_node(self, n_features: int) -> int:
        """Number of candidate features per node for *n_features* available."""
        if n_features < 1:
            raise ConfigError("at least one feature is required to grow a forest")
        if self.features_per_node is None:
            return max(1, math.ceil(math.sqrt(n_features)))
        return min(self.features_per_node, n_features)
