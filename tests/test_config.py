"""Tests for ForestConfig and the error taxonomy."""

import pytest

from canopy import CanopyError, ConfigError, ForestConfig, FormatError, IntegrityError, MappingError
from canopy.config import MAX_SUPPORTED_DEPTH


class TestForestConfig:
    def test_defaults(self):
        config = ForestConfig()
        assert config.num_trees == 10
        assert config.max_depth == 10
        assert config.features_per_node is None
        assert config.categorical_features == frozenset()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"num_trees": 0},
            {"max_depth": 0},
            {"max_depth": MAX_SUPPORTED_DEPTH + 1},
            {"min_samples_split": 1},
            {"features_per_node": 0},
            {"categorical_features": {0}},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            ForestConfig(**kwargs)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            ForestConfig(num_trees=-1)

    def test_categorical_features_coerced(self):
        config = ForestConfig(categorical_features=[3, 1])
        assert config.categorical_features == frozenset({1, 3})

    def test_default_features_per_node(self):
        config = ForestConfig()
        assert config.resolve_features_per_node(4) == 2
        assert config.resolve_features_per_node(5) == 3
        assert config.resolve_features_per_node(1) == 1

    def test_features_per_node_is_clamped(self):
        assert ForestConfig(features_per_node=10).resolve_features_per_node(3) == 3

    def test_no_features(self):
        with pytest.raises(ConfigError):
            ForestConfig().resolve_features_per_node(0)

    def test_frozen(self):
        config = ForestConfig()
        with pytest.raises(AttributeError):
            config.num_trees = 3


class TestErrors:
    def test_location_in_message(self):
        err = IntegrityError("bad node", task=2, tree=3, node=5)
        assert str(err) == "bad node [task=2, tree=3, node=5]"
        assert (err.task, err.tree, err.node) == (2, 3, 5)

    def test_message_without_location(self):
        assert str(FormatError("broken")) == "broken"

    def test_hierarchy(self):
        for cls in (FormatError, IntegrityError, ConfigError, MappingError):
            assert issubclass(cls, CanopyError)

    def test_mapping_error_is_key_error(self):
        err = MappingError("no field for 4", scorecard="A", feature=4, task=1)
        assert isinstance(err, KeyError)
        assert err.scorecard == "A"
        assert err.feature == 4
        assert str(err) == "no field for 4 [task=1]"
