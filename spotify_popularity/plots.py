"""
Figures for the run report: coefficient dot/error-bar plot and popularity histogram.

Both write an SVG and close their figure; nothing is shown interactively.
"""

import logging
from pathlib import Path
from typing import Optional, Union

# Select a non-interactive backend before pyplot is imported so headless runs
# never try to open a GUI window.
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .modeling import INTERCEPT

logger = logging.getLogger(__name__)


def error_bar_extents(rows: pd.DataFrame, exponentiated: bool = False) -> np.ndarray:
    """
    (2, n) array of left/right bar lengths around each estimate.

    Log-scale tables use +/- one std_error. Exponentiated tables span the
    confidence interval instead, since std_error stays on the log-odds scale.
    """
    estimate = rows["estimate"].to_numpy(dtype=float)
    if exponentiated:
        left = estimate - rows["conf_low"].to_numpy(dtype=float)
        right = rows["conf_high"].to_numpy(dtype=float) - estimate
    else:
        left = right = rows["std_error"].to_numpy(dtype=float)
    return np.vstack([left, right])


def plot_coefficients(
    table: pd.DataFrame,
    output_path: Union[str, Path],
    title: Optional[str] = None,
    reference: float = 0.0,
    exponentiated: bool = False,
) -> str:
    """
    One point per term at its estimate with error bars (see error_bar_extents)
    and a red reference line. Terms are drawn top to bottom in the table's row
    order, so the declared order of coefficients() is kept instead of being
    re-sorted.

    The intercept row is skipped; it sits on a different scale from the effects.
    """
    rows = table.loc[table["term"] != INTERCEPT].reset_index(drop=True)
    n_terms = len(rows)
    height = max(2.5, 0.45 * n_terms + 1.5)

    fig, ax = plt.subplots(figsize=(7, height))
    try:
        y = np.arange(n_terms)[::-1]
        ax.errorbar(
            rows["estimate"],
            y,
            xerr=error_bar_extents(rows, exponentiated),
            fmt="o",
            color="black",
            ecolor="gray",
            capsize=3,
        )
        ax.axvline(reference, color="red", linewidth=1)
        ax.set_yticks(y)
        ax.set_yticklabels(rows["term"])
        ax.set_xlabel("estimate")
        if title:
            ax.set_title(title)
        fig.tight_layout()
        fig.savefig(output_path, format="svg")
    finally:
        plt.close(fig)

    logger.debug(f"Wrote coefficient plot with {n_terms} terms to {output_path}")
    return str(output_path)


def plot_popularity_histogram(
    df: pd.DataFrame,
    output_path: Union[str, Path],
    column: str = "track_popularity",
    binwidth: float = 4.0,
) -> str:
    """Histogram of track popularity, excluding zero-popularity tracks."""
    values = pd.to_numeric(df[column], errors="coerce")
    values = values[values > 0]

    fig, ax = plt.subplots(figsize=(7, 4))
    try:
        if len(values):
            bins = np.arange(0.0, float(values.max()) + binwidth, binwidth)
            ax.hist(values, bins=bins, color="pink", edgecolor="black")
        ax.set_xlabel(column)
        ax.set_ylabel("tracks")
        fig.tight_layout()
        fig.savefig(output_path, format="svg")
    finally:
        plt.close(fig)
    return str(output_path)
