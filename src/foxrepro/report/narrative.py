"""Auto-generated narrative text for the reproduction report.

Each function takes the run summary (or one analysis outcome) and produces
data-driven section text. Inline statistics (AIC, dispersion, peaks,
effects) are computed from the fitted models, never hardcoded.
"""

import logging
from dataclasses import dataclass, field

from ..schemas import AnalysisOutcome, DiagnosticVerdict, FitSummary, RunSummary

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# Section container
# ─────────────────────────────────────────────────────────────────────


@dataclass
class SectionContent:
    """Content for one report section."""

    section_id: str
    title: str
    paragraphs: list[str] = field(default_factory=list)
    figure_names: list[str] = field(default_factory=list)
    table_names: list[str] = field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────
# Figure / table naming shared with the pipeline
# ─────────────────────────────────────────────────────────────────────


def comparison_figure(analysis: str) -> str:
    return f"{analysis}_model_comparison"


def effect_figure(analysis: str, term: str) -> str:
    return f"{analysis}_effect_{term}"


def diagnostics_figure(analysis: str) -> str:
    return f"{analysis}_diagnostics"


def aic_table(analysis: str) -> str:
    return f"{analysis}_aic"


def fixed_table(analysis: str) -> str:
    return f"{analysis}_fixed_effects"


DATASET_TABLE = "datasets"


# ─────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────


def _fmt(val: float | None, decimals: int = 3) -> str:
    """Format a float for display, handling None."""
    if val is None:
        return "N/A"
    return f"{val:.{decimals}f}"


def _pval(p: float | None) -> str:
    """Format a p-value."""
    if p is None:
        return "p = N/A"
    if p < 0.001:
        return "p < 0.001"
    return f"p = {p:.3f}"


def _best_fit(outcome: AnalysisOutcome) -> FitSummary | None:
    return outcome.fit(outcome.best_model)


def _dispersion_phrase(fit: FitSummary) -> str | None:
    """Describe the COM-Poisson dispersion parameter, if the family has one."""
    nu = fit.extra.get("nu")
    if nu is None:
        return None
    if nu > 1.05:
        kind = "underdispersed relative to a Poisson distribution"
    elif nu < 0.95:
        kind = "overdispersed relative to a Poisson distribution"
    else:
        kind = "close to Poisson dispersion"
    return f"The dispersion parameter ν = {_fmt(nu, 2)} indicates counts {kind}."


def _effect_phrase(fit: FitSummary, term: str, label: str) -> str | None:
    effect = fit.fixed_effects.get(term)
    if effect is None:
        return None
    direction = "increased" if effect["estimate"] > 0 else "decreased"
    scale = "log-odds" if fit.family == "binomial" else "log scale"
    return (
        f"{label} {direction} with the rodent index "
        f"(β = {_fmt(effect['estimate'])} on the {scale}, SE = {_fmt(effect['se'])}, "
        f"{_pval(effect['p'])})."
    )


# ─────────────────────────────────────────────────────────────────────
# Section generators
# ─────────────────────────────────────────────────────────────────────


def generate_abstract(summary: RunSummary) -> SectionContent:
    """Generate report abstract from the best models."""
    section = SectionContent(section_id="abstract", title="Abstract")

    if not summary.analyses:
        section.paragraphs.append("No analyses were run.")
        return section

    sentences = []
    for outcome in summary.analyses:
        best = _best_fit(outcome)
        if best is None:
            continue
        peak = outcome.peaks.get("age")
        text = (
            f"For {outcome.title.lower() or outcome.name} (n = {outcome.dataset.n_obs}), "
            f"the best-supported model was '{best.name}' (AIC = {_fmt(best.aic, 1)})"
        )
        if peak is not None:
            text += f", with predicted reproductive output peaking at age {_fmt(peak, 1)}"
        sentences.append(text + ".")

    section.paragraphs.append(
        "We model litter size and pup survival of Arctic foxes as functions of "
        "mother age and rodent abundance using generalized linear mixed models. "
        + " ".join(sentences)
    )
    return section


def generate_data_section(summary: RunSummary) -> SectionContent:
    """Describe the datasets."""
    section = SectionContent(section_id="data", title="1. Data", table_names=[DATASET_TABLE])

    for outcome in summary.analyses:
        ds = outcome.dataset
        parts = [
            f"The {ds.name.replace('_', ' ')} dataset contains {ds.n_obs} observations "
            f"of {ds.n_mothers} mothers over {ds.n_years} years"
        ]
        if ds.year_min is not None:
            parts.append(f" ({ds.year_min}–{ds.year_max})")
        if ds.n_areas is not None:
            parts.append(f" in {ds.n_areas} areas")
        if ds.n_litters is not None:
            parts.append(f", from {ds.n_litters} litters")
        parts.append(
            f". Mother age ranges from {_fmt(ds.age_min, 0)} to {_fmt(ds.age_max, 0)} years; "
            f"mean {ds.response.replace('_', ' ')} is {_fmt(ds.response_mean, 2)} "
            f"(SD {_fmt(ds.response_sd, 2)}); the rodent index ranges from "
            f"{_fmt(ds.rodent_min, 2)} to {_fmt(ds.rodent_max, 2)}."
        )
        section.paragraphs.append("".join(parts))

    return section


def generate_methods_section(summary: RunSummary) -> SectionContent:
    """Describe the modelling approach."""
    section = SectionContent(section_id="methods", title="2. Methods")

    families = sorted({f.family for o in summary.analyses for f in o.fits})
    n_sim = max((o.diagnostics.n_sim for o in summary.analyses), default=0)

    section.paragraphs.append(
        "Each response was modelled with a sequence of generalized linear mixed models "
        "of increasing flexibility in mother age (linear, orthogonal polynomial and "
        "B-spline terms) with the rodent index as covariate and crossed random intercepts "
        "for mother, year and, where applicable, area or litter. Models were fitted by "
        "maximum likelihood using the Laplace approximation. Response families: "
        f"{', '.join(families) or 'none'}."
    )
    section.paragraphs.append(
        "Models within an analysis were compared by AIC; the lowest-AIC model was used "
        "for marginal predictions, with random effects set to zero and remaining "
        "covariates held at their mean. Residual assumptions were checked with "
        f"simulation-based scaled residuals ({n_sim} simulations): a Kolmogorov-Smirnov "
        "test of uniformity, a dispersion test and an outlier test. "
        f"Random seed: {summary.seed}."
    )
    return section


def generate_analysis_section(outcome: AnalysisOutcome, index: int) -> SectionContent:
    """Section for one analysis with inline model statistics."""
    section = SectionContent(
        section_id=outcome.name,
        title=f"{index}. {outcome.title or outcome.name}",
        figure_names=[comparison_figure(outcome.name)]
        + [effect_figure(outcome.name, term) for term in outcome.peaks]
        + [diagnostics_figure(outcome.name)],
        table_names=[aic_table(outcome.name), fixed_table(outcome.name)],
    )

    best = _best_fit(outcome)
    if best is None:
        section.paragraphs.append("No model could be fitted for this analysis.")
        return section

    aic_parts = [f"'{f.name}' (AIC = {_fmt(f.aic, 1)})" for f in outcome.fits]
    others = sorted(f.aic - best.aic for f in outcome.fits if f.name != best.name)
    text = (
        f"We compared {len(outcome.fits)} models: {', '.join(aic_parts)}. "
        f"The '{best.name}' model had the lowest AIC"
    )
    if others:
        text += f", {_fmt(others[0], 1)} units below the next best model"
    section.paragraphs.append(text + ".")

    details = []
    dispersion = _dispersion_phrase(best)
    if dispersion:
        details.append(dispersion)
    if best.random_effect_sd:
        sds = ", ".join(f"{g}: {_fmt(sd, 3)}" for g, sd in best.random_effect_sd.items())
        details.append(f"Random intercept standard deviations were {sds}.")
    if best.singular:
        details.append("At least one variance component was estimated at zero (singular fit).")
    rodent = _effect_phrase(best, "rodent_index", outcome.dataset.response.replace("_", " ").capitalize())
    if rodent:
        details.append(rodent)
    if details:
        section.paragraphs.append(" ".join(details))

    for term, peak in outcome.peaks.items():
        section.paragraphs.append(
            f"Predicted {outcome.dataset.response.replace('_', ' ')} reached its maximum "
            f"at {term.replace('_', ' ')} = {_fmt(peak, 1)}."
        )

    diag = outcome.diagnostics
    if diag.verdict == DiagnosticVerdict.FAILED:
        section.paragraphs.append("Residual diagnostics could not be computed.")
    else:
        verdict = (
            "showed no significant deviations"
            if diag.verdict == DiagnosticVerdict.OK
            else "flagged deviations that should be interpreted with care"
        )
        section.paragraphs.append(
            f"Residual diagnostics of the best model {verdict}: uniformity "
            f"{_pval(diag.uniformity.p_value)}, dispersion ratio "
            f"{_fmt(diag.dispersion.statistic, 2)} ({_pval(diag.dispersion.p_value)}), "
            f"outliers {_pval(diag.outliers.p_value)}."
        )

    for warning in outcome.warnings:
        section.paragraphs.append(f"Note: {warning}")

    return section


def generate_conclusion(summary: RunSummary) -> SectionContent:
    """Closing summary of the peak ages and diagnostics."""
    section = SectionContent(
        section_id="conclusion",
        title=f"{len(summary.analyses) + 3}. Conclusion",
    )

    peaks = [
        f"{o.title or o.name}: {_fmt(o.peaks['age'], 1)} years"
        for o in summary.analyses
        if "age" in o.peaks
    ]
    if peaks:
        section.paragraphs.append(
            "Predicted reproductive performance peaked at intermediate ages ("
            + "; ".join(peaks)
            + ")."
        )

    flagged = [o.name for o in summary.analyses if o.diagnostics.verdict != DiagnosticVerdict.OK]
    if flagged:
        section.paragraphs.append(
            f"Residual diagnostics flagged the best model of: {', '.join(flagged)}."
        )
    else:
        section.paragraphs.append("All best models passed the residual diagnostics.")
    return section


def generate_all_sections(summary: RunSummary) -> list[SectionContent]:
    """Generate every section in report order."""
    sections = [
        generate_abstract(summary),
        generate_data_section(summary),
        generate_methods_section(summary),
    ]
    for i, outcome in enumerate(summary.analyses, start=3):
        sections.append(generate_analysis_section(outcome, i))
    sections.append(generate_conclusion(summary))
    return sections
