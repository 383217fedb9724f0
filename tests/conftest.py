"""Shared fixtures: hand-built trees and small regression datasets."""

import numpy as np
import pytest

from canopy import (
    DEGENERATE_SPLIT_VALUE,
    FeatureRow,
    TreeNode,
    build_forest,
    features_from_matrix,
    nodes_to_frame,
    targets_from_vector,
)


def _make_node(
    level,
    node,
    *,
    feature=0,
    value=0.0,
    is_ordinal=True,
    leaf_value=0.0,
    support=10,
    impurity_reduction=0.0,
    task=1,
    tree=1,
):
    return TreeNode(
        task=task,
        tree=tree,
        level=level,
        node=node,
        parent=0 if level == 1 else (node + 1) // 2,
        is_left=level > 1 and node % 2 == 1,
        feature=feature,
        value=value,
        is_ordinal=is_ordinal,
        leaf_value=leaf_value,
        support=support,
        impurity_reduction=impurity_reduction,
    )


@pytest.fixture()
def make_node():
    """Factory deriving ``parent`` and ``is_left`` from the child-id rule."""
    return _make_node


@pytest.fixture()
def hand_tree():
    """Root ``f1 <= 5``; right child ``f2 == 3``.

    Unique ids: root 1, left leaf 2 (10.0), categorical branch 3,
    its leaves 6 (20.0) and 7 (30.0).
    """
    return nodes_to_frame(
        [
            _make_node(1, 1, feature=1, value=5.0, leaf_value=20.0, support=12, impurity_reduction=2.0),
            _make_node(2, 1, leaf_value=10.0, support=4),
            _make_node(2, 2, feature=2, value=3.0, is_ordinal=False, leaf_value=25.0,
                       support=8, impurity_reduction=1.0),
            _make_node(3, 3, leaf_value=20.0, support=4),
            _make_node(3, 4, leaf_value=30.0, support=4),
        ]
    )


@pytest.fixture()
def hand_points():
    """Points reaching leaves 10, 20, 30 and, on the boundary, 10 again."""
    return [
        FeatureRow(1, 1, 1, 3.0),
        FeatureRow(1, 1, 2, 3.0),
        FeatureRow(1, 2, 1, 7.0),
        FeatureRow(1, 2, 2, 3.0),
        FeatureRow(1, 3, 1, 7.0),
        FeatureRow(1, 3, 2, 4.0),
        FeatureRow(1, 4, 1, 5.0),
        FeatureRow(1, 4, 2, 9.0),
    ]


@pytest.fixture()
def degenerate_root_tree():
    """Degenerate root whose only child splits ``f2 <= 0.5`` into two leaves."""
    return nodes_to_frame(
        [
            _make_node(1, 1, feature=1, value=DEGENERATE_SPLIT_VALUE, leaf_value=1.5),
            _make_node(2, 1, feature=2, value=0.5, leaf_value=1.5, impurity_reduction=0.25),
            _make_node(3, 1, leaf_value=1.0, support=5),
            _make_node(3, 2, leaf_value=2.0, support=5),
        ]
    )


@pytest.fixture()
def regression_data():
    rng = np.random.RandomState(0)
    X = rng.uniform(0, 10, size=(80, 4))
    y = 2.0 * X[:, 0] - X[:, 1] + rng.normal(0, 0.1, size=80)
    return features_from_matrix(X), targets_from_vector(y)


@pytest.fixture()
def constant_feature_data():
    """Two constant features next to one informative one."""
    rng = np.random.RandomState(1)
    x = rng.uniform(0, 10, size=60)
    X = np.column_stack([np.ones(60), np.full(60, 2.0), x])
    y = np.where(x > 5, 3.0, -3.0) + x * 0.1
    return features_from_matrix(X), targets_from_vector(y)


@pytest.fixture()
def forest_model(regression_data):
    features, targets = regression_data
    return build_forest(features, targets, num_trees=4, max_depth=5, random_state=7)


@pytest.fixture()
def degenerate_forest(constant_feature_data):
    features, targets = constant_feature_data
    return build_forest(
        features, targets, num_trees=4, features_per_node=1, max_depth=6, random_state=3
    )
