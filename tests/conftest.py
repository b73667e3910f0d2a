"""
tests/conftest.py - Shared fixtures

Synthetic paired estimates shaped like the survey data:
- p_married humps around age 55 and declines at older ages
- p_has_child (child ≤ 24) declines after 45
- Group values = reference + systematic shift + noise, with small
  samples outside the core ages and no group data at the oldest ages

Author: Actuarial Pipeline Project
License: MIT
"""

import numpy as np
import pandas as pd
import pytest

from survivor_reserve.config import ValuationConfig
from survivor_reserve.mortality import create_mortality_calculator
from survivor_reserve.parameters import build_demographic_tables

AGES = np.arange(15, 91)


def reference_curves(sex: str) -> dict:
    """General-population curves by parameter for one sex."""
    ages = AGES.astype(float)
    female = sex == "Female"
    p_married = 0.2 + (0.45 if female else 0.55) * np.exp(-((ages - 55.0) / 20.0) ** 2)
    p_has_child = 0.7 / (1.0 + np.exp((ages - 50.0) / 4.0))
    return {
        "p_married": p_married,
        "age_gap_mean": np.full_like(ages, -3.0 if female else 3.0),
        "age_gap_sd": np.full_like(ages, 5.0),
        "p_has_child": p_has_child,
        "mean_child_count": 1.6 * p_has_child,
        "child_age_mean": np.clip(ages - 28.0, 3.0, 18.0),
        "child_age_sd": np.full_like(ages, 4.0),
    }


def make_paired_frame(seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    shifts = {"p_married": 0.05, "p_has_child": 0.02, "age_gap_mean": 0.5}
    rows = []
    for sex in ("Male", "Female"):
        for parameter, reference in reference_curves(sex).items():
            is_prob = parameter.startswith("p_")
            noise_sd = 0.03 if is_prob else 0.3
            group = reference + shifts.get(parameter, 0.0) + rng.normal(0.0, noise_sd, len(AGES))
            if is_prob:
                group = np.clip(group, 0.0, 1.0)
            group_n = np.where((AGES >= 30) & (AGES <= 70), 120, 12).astype(float)

            # Oldest ages: no group observations
            old = AGES >= 86
            group = np.where(old, np.nan, group)
            group_n = np.where(old, 0.0, group_n)

            for i, age in enumerate(AGES):
                rows.append({
                    "age": int(age),
                    "sex": sex,
                    "parameter": parameter,
                    "group_value": group[i],
                    "group_n": group_n[i],
                    "reference_value": reference[i],
                    "reference_n": 5000.0,
                })
    return pd.DataFrame(rows)


@pytest.fixture(scope="session")
def paired_frame() -> pd.DataFrame:
    return make_paired_frame()


@pytest.fixture(scope="session")
def demographic_tables(paired_frame):
    tables, _ = build_demographic_tables(paired_frame)
    return tables


@pytest.fixture(scope="session")
def smoothing_audit(paired_frame) -> pd.DataFrame:
    _, audit = build_demographic_tables(paired_frame)
    return audit


@pytest.fixture(scope="session")
def mortality():
    """Monotone (non-decreasing) Gompertz-Makeham basis."""
    return create_mortality_calculator("gompertz_makeham")


@pytest.fixture
def small_config() -> ValuationConfig:
    return ValuationConfig(
        interest_rate=0.06,
        n_samples=400,
        seed=42,
        min_age=60,
        max_age=62,
        mortality_table="gompertz_makeham",
        sensitivity_rates=[0.05, 0.06],
        sensitivity_ages=[60],
    )
