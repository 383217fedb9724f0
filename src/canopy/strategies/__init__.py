"""Split strategies plugged into the forest growth loop."""

from .base import ASSIGNMENT_COLUMNS, GrowthStep, SplitStrategy, empty_assignments
from .stump import StumpSplitStrategy

__all__ = [
    "ASSIGNMENT_COLUMNS",
    "GrowthStep",
    "SplitStrategy",
    "StumpSplitStrategy",
    "empty_assignments",
]
