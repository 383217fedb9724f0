"""Tests for the shared bootstrap draw."""

import logging

import numpy as np
import pandas as pd
import pytest

from canopy import BootstrapSampler, ConfigError, TargetRow
from canopy.bootstrap import BootstrapSample, root_assignments, sample_counts_of
from canopy.tables import target_frame


class TestBootstrapSampler:
    def test_index_shape_and_bounds(self):
        sample = BootstrapSampler(3, random_state=0).generate({1: 20})
        index = sample.index
        assert len(index) == 3 * 20
        assert sample.max_samples == 20
        assert set(index["tree"]) == {1, 2, 3}
        assert index["original"].between(1, 20).all()
        for _, rows in index.groupby("tree"):
            assert list(rows["local"]) == list(range(1, 21))

    def test_deterministic_for_seed(self):
        a = BootstrapSampler(2, random_state=5).generate({1: 30}).index
        b = BootstrapSampler(2, random_state=5).generate({1: 30}).index
        c = BootstrapSampler(2, random_state=6).generate({1: 30}).index
        assert a.equals(b)
        assert not a.equals(c)

    def test_truncation_per_task(self):
        sample = BootstrapSampler(5, random_state=1).generate({1: 100, 2: 30})
        large = sample.for_task(1)
        small = sample.for_task(2)
        assert len(large) == 5 * 100
        assert len(small) <= len(large)
        assert small["original"].between(1, 30).all()
        # truncation keeps the shared draw, it does not redraw
        assert small.merge(large, on=["tree", "local", "original"]).shape[0] == len(small)

    def test_unknown_task(self):
        sample = BootstrapSampler(1).generate({1: 5})
        with pytest.raises(ConfigError):
            sample.for_task(9)

    @pytest.mark.parametrize("counts", [{}, {1: 0}])
    def test_rejects_empty_counts(self, counts):
        with pytest.raises(ConfigError):
            BootstrapSampler(2).generate(counts)

    def test_rejects_no_trees(self):
        with pytest.raises(ConfigError):
            BootstrapSampler(0)


class TestRootAssignments:
    def test_original_maps_to_sorted_records(self):
        targets = target_frame(
            [TargetRow(1, 30, 3.0), TargetRow(1, 10, 1.0), TargetRow(1, 20, 2.0)]
        )
        sample = BootstrapSampler(4, random_state=2).generate(sample_counts_of(targets))
        roots = root_assignments(sample, targets)

        assert len(roots) == 4 * 3
        assert set(roots["node"]) == {1}
        assert set(roots["record"]) <= {10, 20, 30}
        # target follows the record it was drawn for
        np.testing.assert_array_equal(roots["target"], roots["record"] / 10.0)
        expected = np.array([10, 20, 30])[sample.index["original"].to_numpy() - 1]
        np.testing.assert_array_equal(roots["record"], expected)

    def test_tree_sizes_follow_truncation(self):
        targets = target_frame(
            [TargetRow(1, r, float(r)) for r in range(1, 41)]
            + [TargetRow(2, r, float(r)) for r in range(1, 8)]
        )
        sample = BootstrapSampler(6, random_state=3).generate(sample_counts_of(targets))
        roots = root_assignments(sample, targets)

        sizes = roots.groupby(["task", "tree"]).size()
        for tree in range(1, 7):
            assert sizes[(1, tree)] == 40
        kept = sample.index[sample.index["original"] <= 7].groupby("tree").size()
        for tree, count in kept.items():
            assert sizes[(2, tree)] == count

    def test_warns_about_trees_without_draws(self, caplog):
        index = pd.DataFrame(
            {"tree": [1, 1, 2, 2], "local": [1, 2, 1, 2], "original": [2, 2, 1, 2]}
        )
        sample = BootstrapSample(index, {1: 2, 2: 1}, num_trees=2, max_samples=2)
        targets = target_frame([TargetRow(1, 1, 0.0), TargetRow(1, 2, 1.0), TargetRow(2, 1, 5.0)])

        with caplog.at_level(logging.WARNING, logger="canopy.bootstrap"):
            roots = root_assignments(sample, targets)

        assert set(roots.loc[roots["task"] == 2, "tree"]) == {2}
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "Task 2" in warnings[0].getMessage()
        assert "[1]" in warnings[0].getMessage()

    def test_no_warning_when_every_tree_has_draws(self, caplog):
        targets = target_frame([TargetRow(1, r, 0.0) for r in range(1, 6)])
        sample = BootstrapSampler(3, random_state=0).generate(sample_counts_of(targets))
        with caplog.at_level(logging.WARNING, logger="canopy.bootstrap"):
            root_assignments(sample, targets)
        assert not caplog.records

    def test_sample_counts(self):
        targets = target_frame([TargetRow(1, 1, 0.0), TargetRow(1, 2, 0.0), TargetRow(2, 1, 0.0)])
        assert sample_counts_of(targets) == {1: 2, 2: 1}
