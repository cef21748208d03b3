"""Colours, axis labels and matplotlib settings of the report figures.

Figures are drawn for an A4 report page and embedded at screen
resolution, so the defaults favour small fonts and open axes.
"""

from typing import Dict

import matplotlib.pyplot as plt
import seaborn as sns

# ─────────────────────────────────────────────────────────────────────
# Axis labels by column name
# ─────────────────────────────────────────────────────────────────────

TERM_LABELS: Dict[str, str] = {
    "age": "Mother age (years)",
    "rodent_index": "Rodent index",
    "year": "Year",
    "litter_size": "Litter size",
    "survived": "Pup survival",
}

# ─────────────────────────────────────────────────────────────────────
# Colours (ColorBrewer Paired)
# ─────────────────────────────────────────────────────────────────────

POINT_COLOR = "#4d4d4d"
PREDICTION_COLOR = "#1f78b4"
BEST_MODEL_COLOR = "#33a02c"
OTHER_MODEL_COLOR = "#a6cee3"
WARNING_COLOR = "#e31a1c"

QUANTILE_COLORS: Dict[float, str] = {
    0.25: "#ff7f00",
    0.5: "#e31a1c",
    0.75: "#ff7f00",
}


def term_label(term: str) -> str:
    """Axis label for a column name, with fallback."""
    return TERM_LABELS.get(term, term.replace("_", " ").capitalize())


def set_publication_style(base_size: float = 10, figure_dpi: int = 150, save_dpi: int = 300) -> None:
    """Seaborn paper theme scaled to ``base_size`` points.

    Titles are one point larger than the base size, ticks and legends
    one point smaller.
    """
    rc = {
        "font.size": base_size,
        "axes.titlesize": base_size + 2,
        "axes.labelsize": base_size + 1,
        "xtick.labelsize": base_size - 1,
        "ytick.labelsize": base_size - 1,
        "legend.fontsize": base_size - 1,
        "legend.frameon": False,
        "axes.spines.top": False,
        "axes.spines.right": False,
        "figure.dpi": figure_dpi,
        "savefig.dpi": save_dpi,
        "savefig.bbox": "tight",
    }
    sns.set_theme(context="paper", style="ticks", palette="colorblind", rc=rc)
    plt.rcParams.update(rc)


def apply_style() -> None:
    """Style used for every figure of the report."""
    set_publication_style(save_dpi=200)
