"""Stage 2: Visualization Modules.

Figures for the report: marginal effects over quasirandom scatters,
residual diagnostics and model comparison charts.
"""

from .figures import (
    FigureResult,
    plot_marginal_effect,
    plot_model_comparison,
    plot_residual_diagnostics,
)
from .quasirandom import group_quasirandom, quasirandom_offsets, van_der_corput
from .style import apply_style, set_publication_style

__all__ = [
    "FigureResult",
    "plot_marginal_effect",
    "plot_residual_diagnostics",
    "plot_model_comparison",
    "quasirandom_offsets",
    "group_quasirandom",
    "van_der_corput",
    "apply_style",
    "set_publication_style",
]
