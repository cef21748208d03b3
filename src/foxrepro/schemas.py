"""Dataclass schemas for analysis outputs.

These schemas define the structure of the machine-readable outputs
(summary.json) and are shared by the statistics, report and pipeline
modules.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _convert(obj: Any) -> Any:
    """Recursively convert dataclasses/enums into JSON-friendly objects."""
    if dataclasses.is_dataclass(obj):
        return {k: _convert(v) for k, v in dataclasses.asdict(obj).items()}
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, dict):
        return {k: _convert(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert(v) for v in obj]
    return obj


class DatasetKind(str, Enum):
    """Kind of observation table."""
    LITTER_SIZE = "litter_size"  # one row per litter, count response
    SURVIVAL = "survival"        # one row per pup, binary response


class DiagnosticVerdict(str, Enum):
    """Overall verdict on residual diagnostics."""
    OK = "ok"
    WARNING = "warning"  # at least one test significant
    FAILED = "failed"    # diagnostics could not be computed


@dataclass
class DatasetSummary:
    """Descriptive statistics of one dataset."""
    name: str = ""
    kind: str = DatasetKind.LITTER_SIZE.value
    response: str = ""
    n_obs: int = 0
    n_mothers: int = 0
    n_years: int = 0
    n_areas: Optional[int] = None
    n_litters: Optional[int] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    age_min: float = 0.0
    age_max: float = 0.0
    response_mean: float = 0.0
    response_sd: float = 0.0
    rodent_min: float = 0.0
    rodent_max: float = 0.0


@dataclass
class FitSummary:
    """Scalar summary of one fitted model."""
    name: str = ""
    family: str = ""
    formula: str = ""
    groups: List[str] = field(default_factory=list)
    nobs: int = 0
    df_model: int = 0
    llf: float = float("nan")
    aic: float = float("nan")
    bic: float = float("nan")
    converged: bool = False
    singular: bool = False

    # Family-specific parameters on their natural scale (e.g. {"nu": 1.3})
    extra: Dict[str, float] = field(default_factory=dict)

    # Random intercept standard deviations per grouping factor
    random_effect_sd: Dict[str, float] = field(default_factory=dict)

    # Fixed effects: {term: {"estimate", "se", "z", "p"}}
    fixed_effects: Dict[str, Dict[str, float]] = field(default_factory=dict)

    message: str = ""


@dataclass
class StatisticalTestResults:
    """Results from statistical tests."""
    test_name: str = ""
    statistic: float = 0.0
    p_value: float = 1.0
    significant: bool = False  # p_value < alpha
    effect_size: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None
    notes: str = ""


@dataclass
class ModelDiagnostics:
    """Residual diagnostics of a fitted model."""
    model_name: str = ""
    n_sim: int = 0
    alpha: float = 0.05
    uniformity: StatisticalTestResults = field(default_factory=StatisticalTestResults)
    dispersion: StatisticalTestResults = field(default_factory=StatisticalTestResults)
    outliers: StatisticalTestResults = field(default_factory=StatisticalTestResults)
    verdict: DiagnosticVerdict = DiagnosticVerdict.OK

    @property
    def tests(self) -> List[StatisticalTestResults]:
        return [self.uniformity, self.dispersion, self.outliers]


@dataclass
class AnalysisOutcome:
    """Summary of one analysis (dataset + model sequence)."""
    name: str = ""
    title: str = ""
    dataset: DatasetSummary = field(default_factory=DatasetSummary)
    fits: List[FitSummary] = field(default_factory=list)
    best_model: str = ""
    diagnostics: ModelDiagnostics = field(default_factory=ModelDiagnostics)

    # Focal term -> value at which the predicted response peaks
    peaks: Dict[str, float] = field(default_factory=dict)

    warnings: List[str] = field(default_factory=list)

    def fit(self, name: str) -> Optional[FitSummary]:
        """Look up a fit summary by model name."""
        for fit in self.fits:
            if fit.name == name:
                return fit
        return None


@dataclass
class RunSummary:
    """Complete summary of a report render."""
    title: str = ""
    seed: int = 0
    analyses: List[AnalysisOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return _convert(self)
