"""Forest visualisation helpers."""

from __future__ import annotations

from typing import Mapping, Optional, Union

import matplotlib
matplotlib.use("Agg")  # non-interactive backend for safe headless rendering
import matplotlib.pyplot as plt
import pandas as pd

from .codec import Model, as_nodes
from .errors import ConfigError
from .tables import unique_ids


def plot_feature_importance(
    importance: pd.DataFrame,
    task: int,
    *,
    top_n: Optional[int] = 20,
    figsize: tuple[int, int] = (8, 6),
    fontsize: int = 9,
    save_path: Optional[str] = None,
    dpi: int = 150,
) -> None:
    """Render the ranked importances of one task as a horizontal bar chart.

    Parameters
    ----------
    importance : DataFrame
        Output of :func:`canopy.stats.feature_importance`.
    task : int
        Task to plot.
    top_n : int or None, default 20
        Plot only the highest-ranked features.
    figsize : tuple, default (8, 6)
        Matplotlib figure size.
    fontsize : int, default 9
        Font size for tick labels.
    save_path : str or None
        If given, save the figure to this path (PNG, PDF, SVG, ...).
    dpi : int, default 150
        Resolution when saving.
    """
    rows = importance[importance["task"] == task].sort_values("rank")
    if rows.empty:
        raise ConfigError("no feature importance rows to plot", task=task)
    if top_n is not None:
        rows = rows.head(top_n)
    if "name" in rows.columns:
        labels = rows["name"].astype(str).tolist()
    else:
        labels = [f"feature {f}" for f in rows["feature"]]

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.barh(labels[::-1], rows["importance"].to_numpy()[::-1])
    ax.set_xlabel("Mean decrease in impurity", fontsize=fontsize)
    ax.tick_params(labelsize=fontsize)
    ax.set_title(f"Feature Importance (task {task})", fontsize=fontsize + 4)

    if save_path is not None:
        fig.savefig(save_path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)


def export_dot(
    model: Union[Model, pd.DataFrame],
    task: int,
    tree: int,
    *,
    feature_names: Optional[Mapping[int, str]] = None,
) -> str:
    """Export one tree in Graphviz DOT format.

    Nodes are named by their unique id; the left edge of a split is labelled
    ``True`` as in the ``x <= value`` / ``x == value`` test.

    Returns
    -------
    str
        DOT-language string that can be rendered by ``graphviz`` or ``dot``.
    """
    nodes = as_nodes(model)
    rows = nodes[(nodes["task"] == task) & (nodes["tree"] == tree)]
    if rows.empty:
        raise ConfigError("model has no such tree", task=task, tree=tree)
    names = feature_names or {}

    uids = unique_ids(rows["level"], rows["node"])
    parent_uids = unique_ids((rows["level"] - 1).clip(lower=1), rows["parent"])
    lines = [
        "digraph Tree {",
        'node [shape=box, style="rounded", fontname="helvetica"] ;',
        'edge [fontname="helvetica"] ;',
    ]
    for row, uid in zip(rows.itertuples(index=False), uids):
        if row.feature == 0:
            label = f"value = {row.leaf_value:.4f}\\nsamples = {row.support}"
        else:
            field = _dot_escape(names.get(int(row.feature), f"feature {row.feature}"))
            test = "<=" if row.is_ordinal else "=="
            label = f"{field} {test} {row.value:.4f}\\nsamples = {row.support}"
        lines.append(f'{uid} [label="{label}"] ;')
    for row, uid, parent_uid in zip(rows.itertuples(index=False), uids, parent_uids):
        if row.level > 1:
            edge = "True" if row.is_left else "False"
            lines.append(f'{parent_uid} -> {uid} [headlabel="{edge}"] ;')
    lines.append("}")
    return "\n".join(lines)


def _dot_escape(text: str) -> str:
    return str(text).replace("\\", "\\\\").replace('"', '\\"')
