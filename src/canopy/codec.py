"""Flat numeric model format: node tables and sample indices as tagged arrays."""

from __future__ import annotations

import logging
import zipfile
from typing import Mapping, Optional, Union

import numpy as np
import pandas as pd

from .errors import FormatError
from .tables import NODE_COLUMNS, SAMPLE_INDEX_COLUMNS, empty_nodes, normalize_nodes

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

# Field-to-slot mapping of one node record; the task is carried by the slot name.
NODE_FIELDS = NODE_COLUMNS[1:]
NODE_WIDTH = len(NODE_FIELDS)
SAMPLE_WIDTH = len(SAMPLE_INDEX_COLUMNS)

FORMAT_SLOT = "format"
SAMPLE_SLOT = "samples"
NODE_SLOT_PREFIX = "nodes."

_INTEGRAL_FIELDS = ("tree", "level", "node", "parent", "feature", "support")
_FLAG_FIELDS = ("is_left", "is_ordinal")


class Model:
    """A named collection of flat ``float64`` arrays; the persisted artifact.

    Slots
    -----
    ``format``
        ``[version, node_width, n_tasks]``.
    ``samples``
        Flattened ``(tree, local, original)`` triples.
    ``nodes.<task>``
        Flattened node records, :data:`NODE_WIDTH` values each, in
        :data:`NODE_FIELDS` order.
    """

    def __init__(self, slots: Mapping[str, np.ndarray]) -> None:
        self._slots = {
            str(name): np.asarray(array, dtype=np.float64).ravel()
            for name, array in slots.items()
        }

    def __getitem__(self, slot: str) -> np.ndarray:
        try:
            return self._slots[slot]
        except KeyError:
            raise FormatError(f"model has no slot {slot!r}") from None

    def __contains__(self, slot: object) -> bool:
        return slot in self._slots

    @property
    def slot_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._slots))

    @property
    def tasks(self) -> tuple[int, ...]:
        return tuple(sorted(_slot_task(name) for name in self._slots if name.startswith(NODE_SLOT_PREFIX)))

    def save(self, path: str) -> None:
        """Write every slot to a compressed ``.npz`` archive."""
        np.savez_compressed(path, **self._slots)

    @classmethod
    def load(cls, path: str) -> Model:
        try:
            archive = np.load(path, allow_pickle=False)
        except (ValueError, zipfile.BadZipFile) as exc:
            raise FormatError(f"{path} is not a model archive: {exc}") from exc
        if not isinstance(archive, np.lib.npyio.NpzFile):
            raise FormatError(f"{path} is not a model archive: holds a single array")
        try:
            with archive:
                slots = {name: archive[name] for name in archive.files}
        except (ValueError, zipfile.BadZipFile) as exc:
            raise FormatError(f"{path} is not a model archive: {exc}") from exc
        model = cls(slots)
        _check_format(model)
        return model

    def __repr__(self) -> str:
        sizes = ", ".join(f"{k}[{len(v)}]" for k, v in sorted(self._slots.items()))
        return f"Model({sizes})"


def encode_nodes(nodes: pd.DataFrame, sample_index: Optional[pd.DataFrame] = None) -> Model:
    """Serialize a node table (and optionally the sample index) into a :class:`Model`."""
    nodes = normalize_nodes(nodes)
    slots: dict[str, np.ndarray] = {}
    for task, rows in nodes.groupby("task", sort=True):
        slots[f"{NODE_SLOT_PREFIX}{int(task)}"] = rows.loc[:, list(NODE_FIELDS)].to_numpy(
            dtype=np.float64
        ).ravel()
    if sample_index is None:
        slots[SAMPLE_SLOT] = np.empty(0)
    else:
        slots[SAMPLE_SLOT] = sample_index.loc[:, list(SAMPLE_INDEX_COLUMNS)].to_numpy(
            dtype=np.float64
        ).ravel()
    n_tasks = len(slots) - 1
    slots[FORMAT_SLOT] = np.array([FORMAT_VERSION, NODE_WIDTH, n_tasks], dtype=np.float64)
    logger.debug("Encoded %d nodes over %d tasks", len(nodes), n_tasks)
    return Model(slots)


def decode_nodes(model: Model) -> pd.DataFrame:
    """Rebuild the node table stored in *model*.

    Raises
    ------
    FormatError
        If a slot is missing, unknown, or does not hold whole records.
    """
    _check_format(model)
    parts: list[pd.DataFrame] = []
    for task in model.tasks:
        records = _records(model, f"{NODE_SLOT_PREFIX}{task}", NODE_WIDTH)
        frame = pd.DataFrame(records, columns=list(NODE_FIELDS))
        for field in _INTEGRAL_FIELDS + _FLAG_FIELDS:
            column = frame[field].to_numpy()
            if not _is_integral(column):
                raise FormatError(f"field {field!r} holds non-integral values", task=task)
        for field in _FLAG_FIELDS:
            frame[field] = frame[field] != 0
        frame.insert(0, "task", task)
        parts.append(frame)
    if not parts:
        return empty_nodes()
    return normalize_nodes(pd.concat(parts, ignore_index=True))


def decode_sample_index(model: Model) -> pd.DataFrame:
    """Rebuild the ``(tree, local, original)`` bootstrap index stored in *model*."""
    _check_format(model)
    records = _records(model, SAMPLE_SLOT, SAMPLE_WIDTH)
    if not _is_integral(records):
        raise FormatError(f"slot {SAMPLE_SLOT!r} holds non-integral values")
    return pd.DataFrame(records, columns=list(SAMPLE_INDEX_COLUMNS)).astype("int64")


def as_nodes(source: Union[Model, pd.DataFrame]) -> pd.DataFrame:
    """Accept either a :class:`Model` or an already decoded node table."""
    if isinstance(source, Model):
        return decode_nodes(source)
    if isinstance(source, pd.DataFrame):
        return normalize_nodes(source)
    raise TypeError(f"expected a Model or a node DataFrame, got {type(source).__name__!r}")


def _check_format(model: Model) -> None:
    header = model[FORMAT_SLOT]
    if len(header) != 3:
        raise FormatError(f"format slot must hold 3 values, got {len(header)}")
    if not _is_integral(header):
        raise FormatError(f"format slot holds non-integral values {header.tolist()}")
    version, width, n_tasks = (int(v) for v in header)
    if version != FORMAT_VERSION:
        raise FormatError(f"unsupported model format version {version}")
    if width != NODE_WIDTH:
        raise FormatError(f"node records must be {NODE_WIDTH} wide, got {width}")
    if SAMPLE_SLOT not in model:
        raise FormatError(f"model has no slot {SAMPLE_SLOT!r}")
    unknown = [
        name
        for name in model.slot_names
        if name not in (FORMAT_SLOT, SAMPLE_SLOT) and not name.startswith(NODE_SLOT_PREFIX)
    ]
    if unknown:
        raise FormatError(f"unknown model slots {unknown}")
    if len(model.tasks) != n_tasks:
        raise FormatError(f"expected {n_tasks} node slots, found {len(model.tasks)}")


def _is_integral(values: np.ndarray) -> bool:
    return bool(np.all(np.isfinite(values)) and np.all(values == np.round(values)))


def _records(model: Model, slot: str, width: int) -> np.ndarray:
    array = model[slot]
    if len(array) % width:
        raise FormatError(f"slot {slot!r} length {len(array)} is not a multiple of {width}")
    return array.reshape(-1, width)


def _slot_task(name: str) -> int:
    try:
        return int(name[len(NODE_SLOT_PREFIX):])
    except ValueError:
        raise FormatError(f"malformed node slot name {name!r}") from None
