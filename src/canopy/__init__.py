"""canopy - distributed decision-forest structural engine."""

from .bootstrap import BootstrapSample, BootstrapSampler
from .codec import Model, decode_nodes, decode_sample_index, encode_nodes
from .compression import compress, compress_nodes
from .config import ForestConfig
from .errors import CanopyError, ConfigError, FormatError, IntegrityError, MappingError
from .export import Scorecard, export_luci, write_luci
from .growth import ForestGrowthEngine, build_forest, grow_forest
from .paths import DistanceMatrix, decision_distance, decision_paths, uniqueness_factor
from .routing import predict, route
from .stats import TaskStats, feature_importance, model_stats
from .strategies import GrowthStep, SplitStrategy, StumpSplitStrategy
from .tables import (
    DEGENERATE_SPLIT_VALUE,
    FeatureRow,
    TargetRow,
    TreeNode,
    features_from_matrix,
    frame_to_nodes,
    nodes_to_frame,
    targets_from_vector,
)
from .visualization import export_dot, plot_feature_importance

__all__ = [
    # Training
    "build_forest",
    "grow_forest",
    "ForestConfig",
    "ForestGrowthEngine",
    "BootstrapSampler",
    "BootstrapSample",
    "SplitStrategy",
    "GrowthStep",
    "StumpSplitStrategy",
    # Tables
    "FeatureRow",
    "TargetRow",
    "TreeNode",
    "DEGENERATE_SPLIT_VALUE",
    "features_from_matrix",
    "targets_from_vector",
    "nodes_to_frame",
    "frame_to_nodes",
    # Model format
    "Model",
    "encode_nodes",
    "decode_nodes",
    "decode_sample_index",
    # Scoring and transforms
    "route",
    "predict",
    "compress",
    "compress_nodes",
    # Analytics
    "decision_paths",
    "decision_distance",
    "uniqueness_factor",
    "DistanceMatrix",
    "model_stats",
    "feature_importance",
    "TaskStats",
    # Export
    "Scorecard",
    "export_luci",
    "write_luci",
    "export_dot",
    "plot_feature_importance",
    # Errors
    "CanopyError",
    "ConfigError",
    "FormatError",
    "IntegrityError",
    "MappingError",
]
