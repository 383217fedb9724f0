"""Text export of a compressed forest as L1MD / L2FO / L2SE / L3TN records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .codec import Model, decode_nodes
from .compression import compress_nodes
from .errors import ConfigError, MappingError
from .tables import LEAF_FEATURE, unique_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scorecard:
    """Binds one task of the model to a field-name translation table.

    Parameters
    ----------
    name : str
        Scorecard name written into every record.
    task : int
        Task whose trees the scorecard exports.
    field_names : mapping of int -> str
        Field name of every feature number used by a split.
    filter_expression : str
        Optional record filter; written as an ``L2SE`` record when set.
    """

    name: str
    task: int
    field_names: Mapping[int, str] = field(default_factory=dict)
    filter_expression: str = ""


def export_luci(
    model: Model,
    scorecards: Sequence[Scorecard],
    *,
    model_id: str,
    model_name: str,
) -> list[str]:
    """Render the compressed forest as export records, one string per line.

    Raises
    ------
    MappingError
        If a branch node uses a feature missing from its scorecard's
        ``field_names``.
    ConfigError
        If no scorecard is given or a scorecard's task has no trees.
    """
    if not scorecards:
        raise ConfigError("at least one scorecard is required")
    nodes = compress_nodes(decode_nodes(model))
    kind = "single" if len(scorecards) == 1 else "multi"

    lines = [f"L1MD,{model_id},{model_name},{kind},,LT,0"]
    for card in scorecards:
        lines.append(f"L2FO,{model_id},{card.name},AVE,0,,N,N,,N,")
    for card in scorecards:
        if card.filter_expression:
            quoted = card.filter_expression.replace('"', '""')
            lines.append(f'L2SE,{model_id},{card.name},"{quoted}"')
    for card in scorecards:
        lines.extend(_tree_records(nodes, card, model_id))
    logger.info("Exported %d records for %d scorecards", len(lines), len(scorecards))
    return lines


def write_luci(
    model: Model,
    scorecards: Sequence[Scorecard],
    output_path: str,
    *,
    model_id: str,
    model_name: str,
) -> None:
    """Write :func:`export_luci` records to *output_path*."""
    lines = export_luci(model, scorecards, model_id=model_id, model_name=model_name)
    with open(output_path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")


def _tree_records(nodes, card: Scorecard, model_id: str) -> list[str]:
    rows = nodes[nodes["task"] == card.task]
    if rows.empty:
        raise ConfigError(f"scorecard {card.name!r} refers to a task without trees", task=card.task)

    uids = unique_ids(rows["level"], rows["node"])
    present = set(zip(rows["tree"].tolist(), uids.tolist()))
    records: list[str] = []
    for row, uid in zip(rows.itertuples(index=False), uids.tolist()):
        if row.feature == LEAF_FEATURE:
            records.append(
                f"L3TN,{model_id},{card.name},{row.tree},{uid},-1,"
                f"{_number(row.leaf_value)},-1,-1,0,LE"
            )
            continue
        try:
            field_name = card.field_names[int(row.feature)]
        except KeyError:
            raise MappingError(
                f"scorecard {card.name!r} has no field name for feature {row.feature}",
                scorecard=card.name,
                feature=int(row.feature),
                task=card.task,
                tree=int(row.tree),
                node=uid,
            ) from None
        left = 2 * uid if (row.tree, 2 * uid) in present else -1
        right = 2 * uid + 1 if (row.tree, 2 * uid + 1) in present else -1
        op = "LE" if row.is_ordinal else "E"
        records.append(
            f"L3TN,{model_id},{card.name},{row.tree},{uid},{field_name},"
            f"{_number(row.value)},{left},{right},0,{op}"
        )
    return records


def _number(value: float) -> str:
    """Shortest text that parses back to exactly ``value``; integers drop ``.0``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)
