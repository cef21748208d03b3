"""Figure generation for the reproduction report.

Every plot function saves PNG (and optionally PDF) files under
``<output_dir>/figures`` and returns a ``FigureResult`` for the report.
"""

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

from ..schemas import ModelDiagnostics  # noqa: E402
from ..statistics.diagnostics import (  # noqa: E402
    SimulatedResiduals,
    dispersion_statistics,
    quantile_guides,
)
from .quasirandom import group_quasirandom  # noqa: E402
from .style import (  # noqa: E402
    BEST_MODEL_COLOR,
    OTHER_MODEL_COLOR,
    POINT_COLOR,
    PREDICTION_COLOR,
    QUANTILE_COLORS,
    WARNING_COLOR,
    apply_style,
    term_label,
)

logger = logging.getLogger(__name__)

# Report style for every figure of this module
apply_style()


# ─────────────────────────────────────────────────────────────────────
# Saved figures
# ─────────────────────────────────────────────────────────────────────


@dataclass
class FigureResult:
    """A saved figure with its PNG encoded for embedding."""

    name: str
    png_path: Optional[Path] = None
    pdf_path: Optional[Path] = None
    png_base64: str = ""
    caption: str = ""


# ─────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────


def _save_and_encode(
    fig: "matplotlib.figure.Figure",
    name: str,
    output_dir: Path,
    caption: str = "",
    dpi: int = 200,
    formats: Sequence[str] = ("png", "pdf"),
) -> FigureResult:
    """Write ``<name>.png`` (and ``.pdf`` if requested) and close ``fig``.

    The PNG is rendered once; the same bytes go to disk and into the
    base64 string embedded in the report.
    """
    target = Path(output_dir) / "figures"
    target.mkdir(parents=True, exist_ok=True)

    with io.BytesIO() as buf:
        fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight")
        png_bytes = buf.getvalue()
    png_path = target / f"{name}.png"
    png_path.write_bytes(png_bytes)

    pdf_path = None
    if "pdf" in formats:
        pdf_path = target / f"{name}.pdf"
        fig.savefig(pdf_path, bbox_inches="tight")
    plt.close(fig)

    logger.debug(f"Saved figure {name} ({len(png_bytes) / 1024:.0f} KB PNG)")
    return FigureResult(
        name=name,
        png_path=png_path,
        pdf_path=pdf_path,
        png_base64=base64.b64encode(png_bytes).decode("ascii"),
        caption=caption,
    )


def _is_discrete(values: pd.Series, max_levels: int = 30) -> bool:
    """Whether a numeric column takes few integer values."""
    values = values.dropna().to_numpy(dtype=float)
    return bool(np.all(np.mod(values, 1.0) == 0) and len(np.unique(values)) <= max_levels)


# ─────────────────────────────────────────────────────────────────────
# Marginal effects
# ─────────────────────────────────────────────────────────────────────


def plot_marginal_effect(
    data: pd.DataFrame,
    pred: pd.DataFrame,
    term: str,
    response: str,
    output_dir: Path,
    name: str,
    response_label: Optional[str] = None,
    title: str = "",
    caption: str = "",
    width: float = 0.35,
    dpi: int = 200,
    formats: Sequence[str] = ("png", "pdf"),
) -> FigureResult:
    """Raw observations with the marginal prediction and its CI ribbon.

    Observations are drawn as a quasirandom scatter when the focal term is
    discrete (e.g. age in whole years) and as a plain scatter otherwise.

    Args:
        data: Model data
        pred: Output of ``marginal_predictions``
        term: Focal column
        response: Response column
        output_dir: Output directory
        name: Figure filename stem

    Returns:
        FigureResult
    """
    fig, ax = plt.subplots(figsize=(6, 4.5))

    x = data[term].to_numpy(dtype=float)
    y = data[response].to_numpy(dtype=float)
    if _is_discrete(data[term]):
        x = group_quasirandom(x, y, width=width)
    ax.scatter(x, y, s=10, color=POINT_COLOR, alpha=0.45, linewidths=0, zorder=1)

    ax.fill_between(
        pred[term],
        pred["conf_low"],
        pred["conf_high"],
        color=PREDICTION_COLOR,
        alpha=0.25,
        linewidth=0,
        zorder=2,
    )
    ax.plot(pred[term], pred["predicted"], color=PREDICTION_COLOR, linewidth=2, zorder=3)

    ax.set_xlabel(term_label(term))
    ax.set_ylabel(response_label or term_label(response))
    if title:
        ax.set_title(title, fontweight="bold")
    sns.despine(ax=ax)
    fig.tight_layout()

    return _save_and_encode(fig, name, output_dir, caption=caption, dpi=dpi, formats=formats)


# ─────────────────────────────────────────────────────────────────────
# Residual diagnostics
# ─────────────────────────────────────────────────────────────────────


def plot_residual_diagnostics(
    sim_res: SimulatedResiduals,
    diagnostics: ModelDiagnostics,
    output_dir: Path,
    name: str,
    caption: str = "",
    dpi: int = 200,
    formats: Sequence[str] = ("png", "pdf"),
) -> FigureResult:
    """Three-panel residual check of a fitted model.

    Panels: QQ plot of scaled residuals against U(0, 1) annotated with the
    test p-values; residuals against rank-transformed predictions with
    quantile regression guides; distribution of the simulated dispersion
    statistic with the observed value.
    """
    fig, axes = plt.subplots(1, 3, figsize=(15, 4.5))
    residuals = sim_res.scaled_residuals
    n = len(residuals)

    # QQ uniform
    ax = axes[0]
    expected = (np.arange(1, n + 1) - 0.5) / n
    ax.scatter(expected, np.sort(residuals), s=8, color=POINT_COLOR, alpha=0.6, linewidths=0)
    ax.plot([0, 1], [0, 1], color=WARNING_COLOR, linewidth=1)
    text = "\n".join(
        f"{t.test_name}: p = {t.p_value:.3f}" for t in diagnostics.tests
    )
    ax.text(0.03, 0.97, text, transform=ax.transAxes, va="top", fontsize=8)
    ax.set_xlabel("Expected")
    ax.set_ylabel("Observed")
    ax.set_title("QQ plot of scaled residuals", fontweight="bold")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)

    # Residuals vs predicted
    ax = axes[1]
    rank_pred = (np.argsort(np.argsort(sim_res.predicted)) + 0.5) / n
    outside = sim_res.outside_envelope
    ax.scatter(
        rank_pred[~outside], residuals[~outside], s=8, color=POINT_COLOR, alpha=0.6, linewidths=0
    )
    if outside.any():
        ax.scatter(
            rank_pred[outside], residuals[outside], s=20, color=WARNING_COLOR, marker="*"
        )
    guides = quantile_guides(sim_res)
    for q, frame in guides.groupby("quantile"):
        ax.axhline(q, color="#bdbdbd", linestyle="--", linewidth=0.8)
        ax.plot(frame["x"], frame["fitted"], color=QUANTILE_COLORS.get(q, WARNING_COLOR), linewidth=1.5)
    ax.set_xlabel("Model predictions (rank transformed)")
    ax.set_ylabel("Scaled residual")
    ax.set_title("Residuals vs. predicted", fontweight="bold")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)

    # Dispersion
    ax = axes[2]
    observed_stat, simulated_stats = dispersion_statistics(sim_res)
    sns.histplot(simulated_stats, ax=ax, color=OTHER_MODEL_COLOR, bins=30)
    ax.axvline(observed_stat, color=WARNING_COLOR, linewidth=2)
    ax.set_xlabel("Residual variance")
    ax.set_title(
        f"Dispersion = {diagnostics.dispersion.statistic:.2f} "
        f"(p = {diagnostics.dispersion.p_value:.3f})",
        fontweight="bold",
    )

    for ax in axes:
        sns.despine(ax=ax)
    fig.suptitle(sim_res.model_name, fontsize=12, fontweight="bold", y=1.02)
    fig.tight_layout()

    return _save_and_encode(fig, name, output_dir, caption=caption, dpi=dpi, formats=formats)


# ─────────────────────────────────────────────────────────────────────
# Model comparison
# ─────────────────────────────────────────────────────────────────────


def plot_model_comparison(
    table: pd.DataFrame,
    output_dir: Path,
    name: str,
    title: str = "",
    caption: str = "",
    dpi: int = 200,
    formats: Sequence[str] = ("png", "pdf"),
) -> FigureResult:
    """Horizontal bar chart of ΔAIC per model, annotated with Akaike weights.

    Args:
        table: Output of ``compare_models`` (sorted by AIC)
    """
    fig, ax = plt.subplots(figsize=(6, 0.6 * len(table) + 1.5))

    names = list(table.index)
    y = np.arange(len(names))
    colors = [BEST_MODEL_COLOR if d == 0 else OTHER_MODEL_COLOR for d in table["dAIC"]]
    bars = ax.barh(y, table["dAIC"], color=colors, edgecolor="white")

    for bar, weight in zip(bars, table["weight"]):
        ax.annotate(
            f"w = {weight:.2f}",
            xy=(bar.get_width(), bar.get_y() + bar.get_height() / 2),
            xytext=(3, 0),
            textcoords="offset points",
            va="center",
            fontsize=8,
        )

    ax.set_yticks(y)
    ax.set_yticklabels(names)
    ax.invert_yaxis()
    ax.set_xlabel("ΔAIC")
    xmax = float(table["dAIC"].max())
    ax.set_xlim(0, max(xmax * 1.3, 2.0))
    if title:
        ax.set_title(title, fontweight="bold")
    sns.despine(ax=ax)
    fig.tight_layout()

    return _save_and_encode(fig, name, output_dir, caption=caption, dpi=dpi, formats=formats)
