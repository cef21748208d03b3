# tests/foxrepro/conftest.py
"""Shared fixtures for foxrepro tests."""

import tempfile
from pathlib import Path
from typing import Dict, Generator

import numpy as np
import pandas as pd
import pytest
import yaml

from foxrepro.models import GLMM, GLMMResults
from foxrepro.synthetic import write_example_data


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)


@pytest.fixture
def example_data_dir(temp_dir: Path) -> Path:
    """Directory with the three synthetic CSV files."""
    data_dir = temp_dir / "data"
    write_example_data(str(data_dir), seed=3, n_mothers=25)
    return data_dir


@pytest.fixture(scope="session")
def poisson_data() -> pd.DataFrame:
    """Counts with a quadratic age effect peaking at age 4 and a year effect."""
    rng = np.random.default_rng(2024)
    n = 400
    age = rng.integers(1, 9, n).astype(float)
    rodent = rng.gamma(2.0, 1.0, n)
    year = rng.integers(2000, 2020, n)
    u_year = rng.normal(0, 0.3, 20)
    eta = 1.5 - 0.05 * (age - 4.0) ** 2 + 0.1 * rodent + u_year[year - 2000]
    return pd.DataFrame(
        {
            "litter_size": rng.poisson(np.exp(eta)),
            "age": age,
            "rodent_index": rodent,
            "year": year,
            "mother_id": [f"M{i % 80:02d}" for i in range(n)],
        }
    )


@pytest.fixture(scope="session")
def poisson_fit(poisson_data: pd.DataFrame) -> GLMMResults:
    """Correctly specified Poisson GLMM with a random year intercept."""
    model = GLMM(
        "litter_size ~ poly(age, 2) + rodent_index",
        poisson_data,
        family="poisson",
        groups=["year"],
        name="quadratic",
    )
    return model.fit()


@pytest.fixture
def sample_config_dict(example_data_dir: Path, temp_dir: Path) -> Dict:
    """Small analysis configuration over the synthetic data."""
    return {
        "seed": 7,
        "paths": {
            "data_dir": str(example_data_dir),
            "output_dir": str(temp_dir / "results"),
        },
        "report": {"title": "Test report", "filename": "report.html"},
        "datasets": {
            "wild_litter_size": {
                "file": "wild_litter_size.csv",
                "kind": "litter_size",
                "truncated": True,
                "rodent_key": ["area", "year"],
                "columns": {
                    "mother": "mother",
                    "area": "area",
                    "year": "year",
                    "age": "age",
                    "response": "litter_size",
                    "rodent": "rodent_index",
                },
            },
            "captive_survival": {
                "file": "captive_survival.csv",
                "kind": "survival",
                "rodent_key": ["year"],
                "columns": {
                    "mother": "mother",
                    "litter": "litter",
                    "year": "year",
                    "age": "age",
                    "response": "survival",
                    "rodent": "rodent_index",
                },
            },
        },
        "analyses": [
            {
                "name": "wild_litter",
                "title": "Litter size in the wild",
                "dataset": "wild_litter_size",
                "response_label": "Litter size",
                "focal_terms": ["age"],
                "models": [
                    {
                        "name": "linear",
                        "formula": "litter_size ~ age + rodent_index",
                        "family": "truncated_compois",
                        "groups": ["mother_id"],
                    },
                    {
                        "name": "quadratic",
                        "formula": "litter_size ~ poly(age, 2) + rodent_index",
                        "family": "truncated_compois",
                        "groups": ["mother_id"],
                    },
                ],
            },
            {
                "name": "survival",
                "title": "Pup survival",
                "dataset": "captive_survival",
                "focal_terms": ["age"],
                "models": [
                    {
                        "name": "linear",
                        "formula": "survived ~ age + rodent_index",
                        "family": "binomial",
                        "groups": ["litter_id"],
                    },
                ],
            },
        ],
        "diagnostics": {"n_sim": 30, "alpha": 0.05},
        "predictions": {"n_points": 15, "ci_level": 0.95},
        "figures": {"dpi": 60, "formats": ["png"]},
    }


@pytest.fixture
def sample_config_file(temp_dir: Path, sample_config_dict: Dict) -> Path:
    """Create a sample config file."""
    config_path = temp_dir / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return config_path
