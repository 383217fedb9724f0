"""Bootstrap sample indices shared by every training task of a batch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np
import pandas as pd

from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapSample:
    """One with-replacement draw per tree, computed once per training run.

    The draw covers ``local = 1..max_samples`` with ``original`` uniform in
    ``[1, max_samples]``.  A task with fewer samples keeps only the draws
    whose ``original`` lies within its own range, which leaves them uniform
    over ``[1, n_task]``.

    Attributes
    ----------
    index : DataFrame
        ``(tree, local, original)`` rows for every tree.
    sample_counts : mapping of task -> int
        Number of samples of each task.
    num_trees : int
    max_samples : int
    """

    index: pd.DataFrame
    sample_counts: Mapping[int, int]
    num_trees: int
    max_samples: int

    def for_task(self, task: int) -> pd.DataFrame:
        """The shared draw truncated to ``original <= n_samples(task)``."""
        try:
            n_samples = self.sample_counts[task]
        except KeyError:
            raise ConfigError("task has no bootstrap sample", task=task) from None
        truncated = self.index[self.index["original"] <= n_samples]
        return truncated.reset_index(drop=True)


class BootstrapSampler:
    """Generates the per-tree resampled training indices.

    Parameters
    ----------
    num_trees : int
        Number of trees (one independent draw each).
    random_state : int, default 42
        Seed of the draw.
    """

    def __init__(self, num_trees: int, *, random_state: int = 42) -> None:
        if num_trees < 1:
            raise ConfigError(f"num_trees must be >= 1, got {num_trees}")
        self.num_trees = num_trees
        self.random_state = random_state

    def generate(self, sample_counts: Mapping[int, int]) -> BootstrapSample:
        if not sample_counts:
            raise ConfigError("cannot draw a bootstrap sample without tasks")
        for task, count in sample_counts.items():
            if count < 1:
                raise ConfigError("task has no samples", task=task)

        max_samples = int(max(sample_counts.values()))
        rng = np.random.RandomState(self.random_state)
        original = rng.randint(1, max_samples + 1, size=(self.num_trees, max_samples))

        index = pd.DataFrame(
            {
                "tree": np.repeat(np.arange(1, self.num_trees + 1, dtype=np.int64), max_samples),
                "local": np.tile(np.arange(1, max_samples + 1, dtype=np.int64), self.num_trees),
                "original": original.ravel().astype(np.int64),
            }
        )
        logger.debug(
            "Drew %d bootstrap indices for %d trees (max samples %d)",
            len(index), self.num_trees, max_samples,
        )
        return BootstrapSample(
            index=index,
            sample_counts=dict(sample_counts),
            num_trees=self.num_trees,
            max_samples=max_samples,
        )


def sample_counts_of(targets: pd.DataFrame) -> dict[int, int]:
    """Number of target rows per task."""
    counts = targets.groupby("task").size()
    return {int(task): int(n) for task, n in counts.items()}


def root_assignments(sample: BootstrapSample, targets: pd.DataFrame) -> pd.DataFrame:
    """Assign each task's truncated bootstrap draw to the root of every tree.

    ``original = k`` addresses the k-th record of the task in ascending
    record order.

    Returns
    -------
    DataFrame
        ``(task, tree, node, local, record, target)`` with ``node = 1``.
    """
    parts: list[pd.DataFrame] = []
    for task, rows in targets.groupby("task", sort=True):
        rows = rows.sort_values("record", kind="mergesort")
        records = rows["record"].to_numpy()
        values = rows["value"].to_numpy()
        drawn = sample.for_task(int(task))
        empty = sorted(set(range(1, sample.num_trees + 1)) - set(drawn["tree"].tolist()))
        if empty:
            logger.warning(
                "Task %d drew no samples for trees %s; these trees get no nodes",
                task, empty,
            )
        pos = drawn["original"].to_numpy() - 1
        parts.append(
            pd.DataFrame(
                {
                    "task": np.int64(task),
                    "tree": drawn["tree"].to_numpy(),
                    "node": np.int64(1),
                    "local": drawn["local"].to_numpy(),
                    "record": records[pos],
                    "target": values[pos],
                }
            )
        )
    if not parts:
        raise ConfigError("no target rows to train on")
    return pd.concat(parts, ignore_index=True)
