"""Tests for decision paths, decision distance and uniqueness."""

import numpy as np
import pandas as pd
import pytest

from canopy import (
    DistanceMatrix,
    FeatureRow,
    decision_distance,
    decision_paths,
    nodes_to_frame,
    uniqueness_factor,
)
from canopy.paths import path_similarity, path_table


class TestPathSimilarity:
    def test_identical_paths(self):
        assert path_similarity((1, 2, 5), (1, 2, 5)) == 1.0

    def test_shared_prefix(self):
        assert path_similarity((1, 2, 4), (1, 2, 5)) == pytest.approx(2 / 3)

    def test_different_lengths(self):
        assert path_similarity((1, 2), (1, 3, 6)) == pytest.approx(1 / 2.5)


class TestDecisionPaths:
    def test_path_table(self, hand_tree):
        table = path_table(hand_tree)
        assert list(table["uid"]) == [1, 2, 3, 6, 7]
        assert list(table["path"]) == [(1,), (1, 2), (1, 3), (1, 3, 6), (1, 3, 7)]

    def test_paths_of_points(self, hand_tree, hand_points):
        paths = decision_paths(hand_tree, hand_points)
        assert list(paths.columns) == ["task", "record", "tree", "path"]
        assert list(paths["path"]) == [(1, 2), (1, 3, 6), (1, 3, 7), (1, 2)]

    def test_one_path_per_tree(self, forest_model, regression_data):
        features, _ = regression_data
        paths = decision_paths(forest_model, features)
        assert len(paths) == 80 * 4
        assert all(p[0] == 1 for p in paths["path"])


class TestDecisionDistance:
    def test_single_set(self, hand_tree, hand_points):
        matrix = decision_distance(hand_tree, hand_points)[1]
        assert isinstance(matrix, DistanceMatrix)
        assert matrix.rows == (1, 2, 3, 4)
        assert matrix.columns == matrix.rows
        assert matrix.distance(1, 2) == pytest.approx(0.6)
        assert matrix.distance(2, 3) == pytest.approx(1 / 3)
        assert matrix.distance(1, 4) == pytest.approx(0.0)

    def test_reflexive_and_symmetric(self, forest_model, regression_data):
        features, _ = regression_data
        values = decision_distance(forest_model, features)[1].values
        assert values.shape == (80, 80)
        np.testing.assert_allclose(np.diag(values), 0.0)
        np.testing.assert_allclose(values, values.T)
        assert values.min() >= 0.0
        assert values.max() <= 1.0

    def test_two_sets(self, hand_tree, hand_points):
        first, second = hand_points[:4], hand_points[4:]
        matrix = decision_distance(hand_tree, first, second)[1]
        assert matrix.values.shape == (2, 2)
        assert matrix.rows == (1, 2)
        assert matrix.columns == (3, 4)
        np.testing.assert_allclose(matrix.values, [[0.6, 0.0], [1 / 3, 0.6]])

    def test_two_sets_rectangular(self, forest_model, regression_data):
        features, _ = regression_data
        first = features[features["record"] <= 10]
        second = features[features["record"] > 10]
        matrix = decision_distance(forest_model, first, second)[1]
        assert matrix.values.shape == (10, 70)

    def test_averages_over_trees(self, hand_tree, hand_points, make_node):
        stump = nodes_to_frame([make_node(1, 1, tree=2)])
        nodes = pd.concat([hand_tree, stump], ignore_index=True)
        matrix = decision_distance(nodes, hand_points)[1]
        # tree 2 is a lone leaf, so it agrees on every pair
        assert matrix.distance(1, 2) == pytest.approx(0.3)

    def test_to_frame(self, hand_tree, hand_points):
        frame = decision_distance(hand_tree, hand_points)[1].to_frame()
        assert frame.shape == (4, 4)
        assert frame.loc[2, 3] == pytest.approx(1 / 3)

    def test_tasks_are_kept_apart(self, hand_tree, hand_points):
        nodes = pd.concat([hand_tree, hand_tree.assign(task=2)], ignore_index=True)
        points = hand_points + [FeatureRow(2, 9, 1, 0.0)]
        matrices = decision_distance(nodes, points)
        assert set(matrices) == {1, 2}
        assert matrices[2].values.shape == (1, 1)


class TestUniquenessFactor:
    def test_single_set(self, hand_tree, hand_points):
        scores = uniqueness_factor(hand_tree, hand_points)
        assert list(scores.columns) == ["task", "record", "uniqueness"]
        np.testing.assert_allclose(
            scores["uniqueness"], [0.4, (1.2 + 1 / 3) / 3, (1.2 + 1 / 3) / 3, 0.4]
        )

    def test_two_sets(self, hand_tree, hand_points):
        scores = uniqueness_factor(hand_tree, hand_points[:4], hand_points[4:])
        np.testing.assert_allclose(scores["uniqueness"], [0.3, (1 / 3 + 0.6) / 2])

    def test_lone_point_is_nan(self, hand_tree):
        scores = uniqueness_factor(hand_tree, [FeatureRow(1, 1, 1, 3.0)])
        assert np.isnan(scores["uniqueness"].iloc[0])

    def test_bounds(self, forest_model, regression_data):
        features, _ = regression_data
        scores = uniqueness_factor(forest_model, features)
        assert len(scores) == 80
        assert scores["uniqueness"].between(0.0, 1.0).all()
