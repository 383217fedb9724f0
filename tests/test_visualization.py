"""Tests for importance plots and DOT export."""

import os
import tempfile

import pytest

from canopy import ConfigError, export_dot, feature_importance, plot_feature_importance


class TestPlotFeatureImportance:
    def test_saves_file(self, forest_model):
        importance = feature_importance(forest_model)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "importance.png")
            plot_feature_importance(importance, task=1, save_path=path)
            assert os.path.exists(path)
            assert os.path.getsize(path) > 0

    def test_named_features(self, forest_model):
        importance = feature_importance(forest_model, feature_names={1: "age", 2: "income"})
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "importance.pdf")
            plot_feature_importance(importance, task=1, top_n=2, save_path=path)
            assert os.path.exists(path)

    def test_unknown_task(self, forest_model):
        importance = feature_importance(forest_model)
        with pytest.raises(ConfigError):
            plot_feature_importance(importance, task=9)


class TestExportDot:
    def test_structure(self, hand_tree):
        dot = export_dot(hand_tree, task=1, tree=1, feature_names={1: "age"})
        assert dot.startswith("digraph Tree {")
        assert dot.rstrip().endswith("}")
        assert "age <= 5.0000" in dot
        assert "feature 2 == 3.0000" in dot
        assert '1 -> 2 [headlabel="True"]' in dot
        assert '1 -> 3 [headlabel="False"]' in dot
        assert '3 -> 6 [headlabel="True"]' in dot
        assert dot.count("->") == 4

    def test_from_model(self, forest_model):
        dot = export_dot(forest_model, task=1, tree=2)
        assert "digraph Tree" in dot
        assert "value = " in dot

    def test_unknown_tree(self, hand_tree):
        with pytest.raises(ConfigError):
            export_dot(hand_tree, task=1, tree=3)

    def test_escapes_feature_names(self, hand_tree):
        dot = export_dot(hand_tree, task=1, tree=1, feature_names={1: 'size "cm"', 2: "a\\b"})
        assert 'size \\"cm\\" <= 5.0000' in dot
        assert "a\\\\b == 3.0000" in dot
        # every label stays one quoted string
        for line in dot.splitlines():
            if "[label=" in line:
                body = line.split('[label="', 1)[1].rsplit('"] ;', 1)[0]
                assert '"' not in body.replace('\\"', "")
