# src/foxrepro/synthetic.py
"""Synthetic reproduction datasets with known parameters.

Used for the test suite and for trying the pipeline without the field
data. Mothers enter the population in a random year and breed in a
random subset of the following years, so every mother has at most one
litter per year and age increases with year. Litter size depends on age
through a quadratic on the log scale (peaking at ``peak_age``) and on the
rodent index, with random intercepts for mother and year.

Example:
    >>> paths = write_example_data("data/", seed=1)
    >>> sorted(paths)
    ['captive_litter_size', 'captive_survival', 'wild_litter_size']
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.special import expit

from .models.families import get_family

logger = logging.getLogger(__name__)


def _breeding_records(
    rng: np.random.Generator,
    n_mothers: int,
    years: Sequence[int],
    breed_prob: float = 0.7,
    max_age: int = 10,
) -> pd.DataFrame:
    """Mother-year records with age, at most one per mother and year."""
    years = list(years)
    rows = []
    for m in range(n_mothers):
        birth = int(rng.integers(years[0] - 4, years[-1]))
        for year in years:
            age = year - birth
            if 1 <= age <= max_age and rng.random() < breed_prob:
                rows.append({"mother": f"M{m:03d}", "year": year, "age": age})
    return pd.DataFrame(rows, columns=["mother", "year", "age"])


def _rodent_index(rng: np.random.Generator, keys: Sequence) -> Dict:
    """Non-negative rodent abundance per key (year or area-year)."""
    return {k: float(np.round(rng.gamma(2.0, 1.0), 2)) for k in keys}


def _age_effect(age: np.ndarray, peak_age: float, curvature: float) -> np.ndarray:
    return -curvature * (age - peak_age) ** 2


def simulate_litter_sizes(
    rng: np.random.Generator,
    n_mothers: int = 60,
    years: Sequence[int] = tuple(range(2005, 2015)),
    areas: Optional[Sequence[str]] = None,
    truncated: bool = True,
    intercept: float = 1.8,
    peak_age: float = 4.0,
    curvature: float = 0.03,
    rodent_slope: float = 0.15,
    nu: float = 1.5,
    sd_mother: float = 0.15,
    sd_year: float = 0.1,
) -> pd.DataFrame:
    """Litter size table (wild when ``areas`` is given, captive otherwise).

    Responses are drawn from a (zero-truncated) Conway-Maxwell Poisson
    distribution with dispersion ``nu``.
    """
    records = _breeding_records(rng, n_mothers, years)
    if areas is not None:
        home = {m: areas[int(rng.integers(len(areas)))] for m in records["mother"].unique()}
        records["area"] = records["mother"].map(home)
        rodent = _rodent_index(rng, [(a, y) for a in areas for y in years])
        records["rodent_index"] = [rodent[(a, y)] for a, y in zip(records["area"], records["year"])]
    else:
        rodent = _rodent_index(rng, years)
        records["rodent_index"] = records["year"].map(rodent)

    u_mother = {m: rng.normal(0, sd_mother) for m in records["mother"].unique()}
    u_year = {y: rng.normal(0, sd_year) for y in years}
    eta = (
        intercept
        + _age_effect(records["age"].to_numpy(dtype=float), peak_age, curvature)
        + rodent_slope * records["rodent_index"].to_numpy()
        + records["mother"].map(u_mother).to_numpy()
        + records["year"].map(u_year).to_numpy()
    )

    family = get_family("truncated_compois" if truncated else "compois")
    records["litter_size"] = family.sample(eta, np.array([np.log(nu)]), rng).astype(int)
    return records


def simulate_pup_survival(
    rng: np.random.Generator,
    litters: pd.DataFrame,
    intercept: float = 0.5,
    peak_age: float = 4.0,
    curvature: float = 0.08,
    rodent_slope: float = 0.3,
    sd_litter: float = 0.5,
    sd_year: float = 0.3,
) -> pd.DataFrame:
    """One row per pup of each non-empty litter with a binary survival outcome."""
    years = litters["year"].unique()
    u_year = {y: rng.normal(0, sd_year) for y in years}

    rows = []
    for i, litter in enumerate(litters.itertuples(index=False)):
        if litter.litter_size == 0:
            continue
        u_litter = rng.normal(0, sd_litter)
        eta = (
            intercept
            + _age_effect(np.array([litter.age], dtype=float), peak_age, curvature)[0]
            + rodent_slope * litter.rodent_index
            + u_year[litter.year]
            + u_litter
        )
        survived = rng.random(litter.litter_size) < expit(eta)
        for s in survived:
            rows.append(
                {
                    "mother": litter.mother,
                    "litter": f"L{i:04d}",
                    "year": litter.year,
                    "age": litter.age,
                    "survival": int(s),
                    "rodent_index": litter.rodent_index,
                }
            )
    return pd.DataFrame(rows)


def write_example_data(
    data_dir: str,
    seed: int = 1,
    n_mothers: int = 60,
) -> Dict[str, str]:
    """Write the three example CSV files.

    Args:
        data_dir: Output directory
        seed: Random seed
        n_mothers: Mothers per population

    Returns:
        Mapping of dataset key to written file path
    """
    rng = np.random.default_rng(seed)
    out = Path(data_dir)
    out.mkdir(parents=True, exist_ok=True)

    wild = simulate_litter_sizes(
        rng, n_mothers=n_mothers, areas=["A", "B", "C", "D"], truncated=True
    )
    captive = simulate_litter_sizes(
        rng, n_mothers=n_mothers, truncated=False, intercept=1.9, nu=1.2
    )
    survival = simulate_pup_survival(rng, captive)

    paths = {
        "wild_litter_size": out / "wild_litter_size.csv",
        "captive_litter_size": out / "captive_litter_size.csv",
        "captive_survival": out / "captive_survival.csv",
    }
    wild.to_csv(paths["wild_litter_size"], index=False)
    captive.to_csv(paths["captive_litter_size"], index=False)
    survival.to_csv(paths["captive_survival"], index=False)

    for key, path in paths.items():
        logger.info(f"Wrote {key} to {path}")
    return {k: str(v) for k, v in paths.items()}
