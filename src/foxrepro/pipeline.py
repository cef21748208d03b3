"""Pipeline orchestration for the analysis stages.

Coordinates Stage 1 (model fitting and statistics) and Stage 2 (figures,
narrative and the HTML report).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from omegaconf import DictConfig

from .loaders import load_all_datasets, validate_data_directory
from .models import GLMMResults, ModelFitError, fit_model
from .schemas import AnalysisOutcome, RunSummary
from .statistics import (
    SimulatedResiduals,
    check_model,
    compare_models,
    dataset_table,
    diagnostics_table,
    find_peak,
    marginal_predictions,
    select_best,
    simulate_residuals,
    summarize_dataset,
)
from .utils.config import (
    get_dataset_config,
    get_value,
    load_config,
    save_config,
    validate_config,
)
from .utils.logging import setup_logging
from .utils.seed import set_seed
from .writers import (
    setup_output_directory,
    write_manifest,
    write_summary_json,
    write_table_csv,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRun:
    """In-memory results of Stage 1, consumed by Stage 2."""
    output_dir: Path
    summary: RunSummary
    datasets: Dict[str, pd.DataFrame] = field(default_factory=dict)

    # Per analysis name
    results: Dict[str, Dict[str, GLMMResults]] = field(default_factory=dict)
    comparisons: Dict[str, pd.DataFrame] = field(default_factory=dict)
    residuals: Dict[str, SimulatedResiduals] = field(default_factory=dict)
    predictions: Dict[str, Dict[str, pd.DataFrame]] = field(default_factory=dict)

    files: List[str] = field(default_factory=list)

    def best(self, analysis: str) -> GLMMResults:
        """Best-supported model of an analysis."""
        outcome = next(o for o in self.summary.analyses if o.name == analysis)
        return self.results[analysis][outcome.best_model]


def _dataset_frame(summary: RunSummary) -> pd.DataFrame:
    """Dataset table with one row per dataset (analyses may share one)."""
    unique = {o.dataset.name: o.dataset for o in summary.analyses}
    return dataset_table(list(unique.values()))


def _fit_sequence(analysis: DictConfig, data: pd.DataFrame, warnings: List[str]) -> List[GLMMResults]:
    """Fit the declared models in order, skipping those that fail."""
    fits = []
    for spec in analysis.models:
        try:
            fits.append(fit_model(spec, data))
        except ModelFitError as e:
            logger.error(f"{analysis.name}: {e}")
            warnings.append(f"Model '{spec.get('name')}' could not be fitted: {e}")
    return fits


def run_analyses(cfg: DictConfig) -> AnalysisRun:
    """Run Stage 1: Model fitting and statistics.

    Loads the datasets, fits each analysis' model sequence, compares the
    models by AIC, checks residuals and computes marginal predictions for
    the best model, and writes tables and ``summary.json``.

    Args:
        cfg: Validated analysis configuration

    Returns:
        AnalysisRun with fitted models and summaries

    Raises:
        ValueError: If a data file is missing
        ModelFitError: If no model of an analysis could be fitted
    """
    seed = int(cfg.seed)
    set_seed(seed)

    is_valid, found, missing = validate_data_directory(cfg)
    if not is_valid:
        raise ValueError(f"Missing data files: {missing}")

    output_path = setup_output_directory(cfg.paths.output_dir)
    datasets = load_all_datasets(cfg)

    n_sim = int(get_value(cfg, "diagnostics.n_sim", 250))
    alpha = float(get_value(cfg, "diagnostics.alpha", 0.05))
    n_points = int(get_value(cfg, "predictions.n_points", 100))
    ci_level = float(get_value(cfg, "predictions.ci_level", 0.95))

    summary = RunSummary(title=str(get_value(cfg, "report.title", "")), seed=seed)
    run = AnalysisRun(output_dir=output_path, summary=summary, datasets=datasets)

    for index, analysis in enumerate(cfg.analyses):
        name = analysis.name
        data = datasets[analysis.dataset]
        kind = get_dataset_config(cfg, analysis.dataset).get("kind", "litter_size")
        logger.info(f"Stage 1: analysis '{name}' on {kind} dataset '{analysis.dataset}' ({len(data)} rows)")

        warnings: List[str] = []
        fits = _fit_sequence(analysis, data, warnings)
        if not fits:
            raise ModelFitError(f"{name}: no model could be fitted")

        table = compare_models(fits)
        best_name = select_best(table)
        best = next(f for f in fits if f.name == best_name)
        logger.info(f"{name}: best model '{best_name}' (AIC={best.aic:.2f})")
        if not best.converged:
            warnings.append(f"The best model '{best_name}' did not converge ({best.message}).")

        sim_res = simulate_residuals(best, n_sim=n_sim, seed=seed + index)
        diagnostics = check_model(best, alpha=alpha, sim_res=sim_res)

        predictions = {}
        peaks = {}
        for term in analysis.get("focal_terms") or ["age"]:
            pred = marginal_predictions(best, term, n_points=n_points, ci_level=ci_level)
            predictions[term] = pred
            peaks[term] = find_peak(pred, term)
            run.files.append(write_table_csv(pred, output_path, f"{name}_predictions_{term}.csv"))

        outcome = AnalysisOutcome(
            name=name,
            title=str(analysis.get("title") or name),
            dataset=summarize_dataset(data, analysis.dataset),
            fits=[f.to_summary() for f in fits],
            best_model=best_name,
            diagnostics=diagnostics,
            peaks=peaks,
            warnings=warnings,
        )
        summary.analyses.append(outcome)

        run.results[name] = {f.name: f for f in fits}
        run.comparisons[name] = table
        run.residuals[name] = sim_res
        run.predictions[name] = predictions

        run.files.append(write_table_csv(table, output_path, f"{name}_aic.csv", index=True))
        run.files.append(
            write_table_csv(best.summary_frame(), output_path, f"{name}_parameters.csv", index=True)
        )
        run.files.append(
            write_table_csv(
                diagnostics_table({best_name: diagnostics}), output_path, f"{name}_diagnostics.csv"
            )
        )

    run.files.append(write_table_csv(_dataset_frame(summary), output_path, "datasets.csv", index=True))
    run.files.append(write_summary_json(summary, output_path))
    logger.info(f"Stage 1 complete. Generated {len(run.files)} files.")
    return run


def render_report(run: AnalysisRun, cfg: DictConfig) -> Path:
    """Run Stage 2: Figures, narrative and the HTML report.

    Args:
        run: Output of ``run_analyses``
        cfg: Analysis configuration

    Returns:
        Path to the rendered report
    """
    from .report import build_report, generate_all_sections, html_table
    from .report import narrative
    from .visualization import (
        plot_marginal_effect,
        plot_model_comparison,
        plot_residual_diagnostics,
    )

    output_path = run.output_dir
    dpi = int(get_value(cfg, "figures.dpi", 200))
    formats = list(get_value(cfg, "figures.formats", ["png", "pdf"]))
    ci_level = float(get_value(cfg, "predictions.ci_level", 0.95))

    figures = []
    tables = {
        narrative.DATASET_TABLE: html_table(
            _dataset_frame(run.summary).drop(columns=["kind"]),
            caption="Datasets",
        )
    }

    for analysis in cfg.analyses:
        name = analysis.name
        outcome = next(o for o in run.summary.analyses if o.name == name)
        best = run.best(name)
        data = best.model.data
        response = best.design.response
        title = outcome.title

        logger.info(f"Stage 2: figures for '{name}'")
        figures.append(
            plot_model_comparison(
                run.comparisons[name],
                output_path,
                narrative.comparison_figure(name),
                title=title,
                caption=f"ΔAIC of the candidate models for {title.lower()}; "
                f"labels give Akaike weights.",
                dpi=dpi,
                formats=formats,
            )
        )
        for term, pred in run.predictions[name].items():
            figures.append(
                plot_marginal_effect(
                    data,
                    pred,
                    term,
                    response,
                    output_path,
                    narrative.effect_figure(name, term),
                    response_label=analysis.get("response_label"),
                    title=title,
                    caption=f"Observations and predicted {response.replace('_', ' ')} "
                    f"({ci_level:.0%} CI) over {term.replace('_', ' ')} from "
                    f"'{best.name}'; other covariates at their mean, random effects at zero.",
                    dpi=dpi,
                    formats=formats,
                )
            )
        figures.append(
            plot_residual_diagnostics(
                run.residuals[name],
                outcome.diagnostics,
                output_path,
                narrative.diagnostics_figure(name),
                caption=f"Simulation-based residual diagnostics of '{best.name}'.",
                dpi=dpi,
                formats=formats,
            )
        )

        aic = run.comparisons[name][["family", "k", "logLik", "AIC", "dAIC", "weight"]]
        tables[narrative.aic_table(name)] = html_table(aic, caption="Model comparison")
        tables[narrative.fixed_table(name)] = html_table(
            best.fe_table(), caption=f"Fixed effects of '{best.name}'"
        )

    sections = generate_all_sections(run.summary)
    report_path = build_report(
        sections,
        figures,
        tables,
        output_path / str(get_value(cfg, "report.filename", "report.html")),
        title=str(get_value(cfg, "report.title", "Arctic fox reproduction")),
        subtitle=str(get_value(cfg, "report.subtitle", "")),
        seed=run.summary.seed,
    )

    write_manifest(output_path)
    logger.info(f"Stage 2 complete. Generated {len(figures)} figures.")
    return report_path


def run_full_pipeline(
    config_path: str,
    overrides: Optional[List[str]] = None,
    output_dir: Optional[str] = None,
    render: bool = True,
    log_level: int = logging.INFO,
) -> Dict[str, Any]:
    """Run the complete analysis (Stage 1 + Stage 2).

    Args:
        config_path: Path to the YAML config
        overrides: OmegaConf dotlist overrides
        output_dir: Override for ``paths.output_dir``
        render: If False, stop after Stage 1
        log_level: Logging level for console and log file

    Returns:
        Dictionary with:
            - run: AnalysisRun
            - output_dir: Path to output directory
            - report: Path to the report (None if not rendered)
    """
    cfg = load_config(config_path, overrides=overrides)
    if output_dir is not None:
        cfg.paths.output_dir = str(output_dir)
    validate_config(cfg)

    setup_logging(cfg.paths.output_dir, level=log_level)
    save_config(cfg, Path(cfg.paths.output_dir) / "config.yaml")

    run = run_analyses(cfg)
    report = render_report(run, cfg) if render else None
    if not render:
        write_manifest(run.output_dir)

    return {
        "run": run,
        "output_dir": str(run.output_dir),
        "report": str(report) if report is not None else None,
    }
