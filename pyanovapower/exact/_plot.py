"""Descriptive plot of an exact dataset.

Jittered observations per cell with a red mean +/- 1 SD crossbar. One
factor: a single panel. Two factors: one panel per level of the second.
Three factors: a grid of third (rows) x second (columns). More factors:
one panel with the cell labels on the x axis.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from pyanovapower.design import DesignSpec

_TITLE = "Exact data for each condition in the design"


def _draw_panel(ax, data: pd.DataFrame, x_col: str, levels: list[str], rng) -> None:
    for pos, level in enumerate(levels):
        y = data.loc[data[x_col] == level, "y"].to_numpy(dtype=float)
        if y.size == 0:
            continue
        jitter = rng.uniform(-0.2, 0.2, size=y.size)
        ax.scatter(pos + jitter, y, s=8, color="black", alpha=0.6)

        mean = float(np.mean(y))
        sd = float(np.std(y, ddof=1)) if y.size > 1 else 0.0
        ax.add_patch(_crossbar(pos, mean, sd))
        ax.hlines(mean, pos - 0.3, pos + 0.3, color="red", linewidth=2)

    ax.set_xticks(range(len(levels)))
    ax.set_xticklabels(levels)
    ax.grid(True, alpha=0.3)


def _crossbar(pos: float, mean: float, sd: float):
    from matplotlib.patches import Rectangle

    return Rectangle(
        (pos - 0.3, mean - sd), 0.6, 2.0 * sd,
        fill=False, edgecolor="red", linewidth=1.5,
    )


def plot_exact_data(data: pd.DataFrame, design: DesignSpec):
    """Build the descriptive figure of *data*.

    Returns
    -------
    matplotlib.figure.Figure

    Raises
    ------
    ImportError
        If ``matplotlib`` is not installed.
    """
    try:
        from matplotlib.figure import Figure
    except ImportError:
        raise ImportError("matplotlib required for plotting: pip install matplotlib") from None

    rng = np.random.default_rng(0)
    names = list(design.factor_names)
    ylim = (float(data["y"].min()), float(data["y"].max()))

    if len(names) == 1 or len(names) > 3:
        x_col = names[0] if len(names) == 1 else "cond"
        levels = [str(c) for c in data[x_col].cat.categories]
        fig = Figure(figsize=(8, 6))
        ax = fig.add_subplot(1, 1, 1)
        _draw_panel(ax, data, x_col, levels, rng)
        ax.set_xlabel(x_col)
        ax.set_ylabel("y")
        ax.set_ylim(*ylim)
        fig.suptitle(_TITLE)
        return fig

    x_levels = list(design.factor(names[0]).levels)
    col_factor = design.factor(names[1])
    row_factor = design.factor(names[2]) if len(names) == 3 else None
    n_rows = row_factor.n_levels if row_factor is not None else 1
    n_cols = col_factor.n_levels

    fig = Figure(figsize=(4 * n_cols, 3.5 * n_rows))
    axes = fig.subplots(n_rows, n_cols, sharey=True, squeeze=False)
    for i in range(n_rows):
        for j, col_level in enumerate(col_factor.levels):
            panel = data[data[col_factor.name] == col_level]
            title = f"{col_factor.name} = {col_level}"
            if row_factor is not None:
                row_level = row_factor.levels[i]
                panel = panel[panel[row_factor.name] == row_level]
                title += f", {row_factor.name} = {row_level}"
            ax = axes[i, j]
            _draw_panel(ax, panel, names[0], x_levels, rng)
            ax.set_title(title, fontsize=10)
            ax.set_ylim(*ylim)
            if i == n_rows - 1:
                ax.set_xlabel(names[0])
            if j == 0:
                ax.set_ylabel("y")

    fig.suptitle(_TITLE)
    return fig
