"""Tests for figures, narrative and HTML report generation."""

from pathlib import Path

import pandas as pd
import pytest

from foxrepro.report import build_report, generate_all_sections, html_table
from foxrepro.report.narrative import (
    SectionContent,
    comparison_figure,
    generate_analysis_section,
    generate_conclusion,
)
from foxrepro.schemas import (
    AnalysisOutcome,
    DatasetSummary,
    DiagnosticVerdict,
    FitSummary,
    ModelDiagnostics,
    RunSummary,
    StatisticalTestResults,
)
from foxrepro.statistics import compare_models, marginal_predictions, simulate_residuals
from foxrepro.statistics.diagnostics import check_model
from foxrepro.visualization import (
    plot_marginal_effect,
    plot_model_comparison,
    plot_residual_diagnostics,
)


@pytest.fixture
def run_summary() -> RunSummary:
    fits = [
        FitSummary(
            name="linear",
            family="truncated_compois",
            aic=520.4,
            extra={"nu": 1.6},
            random_effect_sd={"mother_id": 0.12},
            fixed_effects={"rodent_index": {"estimate": 0.14, "se": 0.03, "z": 4.6, "p": 1e-5}},
        ),
        FitSummary(name="quadratic", family="truncated_compois", aic=510.2, extra={"nu": 1.5}),
    ]
    outcome = AnalysisOutcome(
        name="wild_litter",
        title="Litter size in the wild",
        dataset=DatasetSummary(
            name="wild_litter_size",
            response="litter_size",
            n_obs=120,
            n_mothers=30,
            n_years=10,
            n_areas=4,
            year_min=2005,
            year_max=2014,
        ),
        fits=fits,
        best_model="quadratic",
        diagnostics=ModelDiagnostics(
            model_name="quadratic",
            n_sim=250,
            uniformity=StatisticalTestResults(test_name="KS uniformity", p_value=0.4),
            dispersion=StatisticalTestResults(test_name="Dispersion", statistic=0.93, p_value=0.6),
            outliers=StatisticalTestResults(test_name="Outliers", p_value=1.0),
        ),
        peaks={"age": 4.2},
        warnings=["Model 'spline' could not be fitted: singular design"],
    )
    return RunSummary(title="Test", seed=42, analyses=[outcome])


class TestHtmlTable:
    """Tests for DataFrame rendering."""

    def test_renders_rows_and_caption(self):
        df = pd.DataFrame({"AIC": [10.0, 12.5], "converged": [True, False]}, index=["a", "b"])
        html = html_table(df, caption="Models")

        assert "<caption>Models</caption>" in html
        assert html.count("<tr>") == 3
        assert "10.0000" in html
        assert "yes" in html and "no" in html

    def test_escapes_text(self):
        html = html_table(pd.DataFrame({"formula": ["y ~ x < 3"]}), index=False)
        assert "y ~ x &lt; 3" in html

    def test_small_values_scientific(self):
        html = html_table(pd.DataFrame({"p": [1e-6]}), index=False)
        assert "1.00e-06" in html


class TestNarrative:
    """Tests for generated section text."""

    def test_section_order(self, run_summary):
        sections = generate_all_sections(run_summary)
        ids = [s.section_id for s in sections]
        assert ids == ["abstract", "data", "methods", "wild_litter", "conclusion"]

    def test_abstract_mentions_best_model_and_peak(self, run_summary):
        abstract = generate_all_sections(run_summary)[0].paragraphs[0]
        assert "'quadratic'" in abstract
        assert "age 4.2" in abstract

    def test_analysis_section(self, run_summary):
        section = generate_analysis_section(run_summary.analyses[0], 3)
        text = " ".join(section.paragraphs)

        assert section.title == "3. Litter size in the wild"
        assert comparison_figure("wild_litter") in section.figure_names
        assert "10.2 units below" in text
        assert "ν = 1.50" in text
        assert "no significant deviations" in text
        assert "Note: Model 'spline'" in text

    def test_conclusion_flags_warnings(self, run_summary):
        run_summary.analyses[0].diagnostics.verdict = DiagnosticVerdict.WARNING
        section = generate_conclusion(run_summary)
        assert "wild_litter" in section.paragraphs[-1]


class TestFigures:
    """Tests for figure generation."""

    def test_marginal_effect(self, poisson_fit, poisson_data, temp_dir):
        pred = marginal_predictions(poisson_fit, "age", n_points=20)
        result = plot_marginal_effect(
            poisson_data, pred, "age", "litter_size", temp_dir, "effect_age", dpi=50, formats=["png"]
        )

        assert result.png_path.exists()
        assert result.pdf_path is None
        assert len(result.png_base64) > 100

    def test_residual_diagnostics(self, poisson_fit, temp_dir):
        sim_res = simulate_residuals(poisson_fit, n_sim=30, seed=1)
        diag = check_model(poisson_fit, sim_res=sim_res)
        result = plot_residual_diagnostics(sim_res, diag, temp_dir, "diag", dpi=50)

        assert result.png_path.exists()
        assert result.pdf_path.exists()

    def test_model_comparison(self, poisson_fit, temp_dir):
        table = compare_models([poisson_fit])
        result = plot_model_comparison(table, temp_dir, "aic", dpi=50, formats=["png"])
        assert result.png_path.name == "aic.png"


class TestBuildReport:
    """Tests for the HTML report."""

    def test_build_report(self, run_summary, poisson_fit, temp_dir):
        table = compare_models([poisson_fit])
        figure = plot_model_comparison(
            table, temp_dir, comparison_figure("wild_litter"), caption="Comparison", dpi=50
        )
        sections = generate_all_sections(run_summary)
        out = build_report(
            sections,
            [figure],
            {"wild_litter_aic": html_table(table, caption="Model comparison")},
            temp_dir / "report.html",
            title="Fox report",
            seed=42,
        )

        html = Path(out).read_text(encoding="utf-8")
        assert "<title>Fox report</title>" in html
        assert "data:image/png;base64," in html
        assert "Model comparison" in html
        assert 'id="wild_litter"' in html

    def test_missing_figure_logged(self, temp_dir, caplog):
        section = SectionContent(section_id="s", title="S", figure_names=["absent"])
        build_report([section], [], {}, temp_dir / "r.html")
        assert "absent" in caplog.text
