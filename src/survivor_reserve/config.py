"""
survivor_reserve/config.py - Valuation Configuration

Every tuning constant of the pipeline lives here instead of being hard-coded
in the engines: the smoothing window and prior anchor, the Student-t degrees
of freedom, the plausibility bounds for generated ages and the survivor
benefit rule.

Models:
- SmoothingConfig: Bühlmann-Straub credibility + anchored moving average
- SamplerConfig: Monte Carlo beneficiary distributions and batching
- BenefitRule: survivor pension percentage (50% + 10% per dependent, max 100%)
- ValuationConfig: run-level settings (rate, samples, seed, age grid)

Author: Actuarial Pipeline Project
License: MIT
"""

import json
from enum import Enum
from pathlib import Path
from typing import List, Tuple, Union
import logging

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class LookupPolicy(str, Enum):
    """How a missing value at an exact age is handled by parameter lookup."""
    LENIENT = "lenient"  # interpolate from neighbouring ages
    STRICT = "strict"    # raise DataAvailabilityError


class SmoothingConfig(BaseModel):
    """Credibility and smoothing constants (empirical tuning, not invariants)."""
    model_config = {"frozen": True}

    window: int = Field(5, ge=1, description="Moving-average window in ages (odd)")
    anchor_weight: float = Field(0.3, ge=0.0, le=1.0,
                                 description="Weight of the adjusted reference in each pass")
    n_iterations: int = Field(3, ge=1)
    n_min: int = Field(30, ge=1, description="Minimum group sample size for shift estimation")
    k_fallback: float = Field(50.0, gt=0.0,
                              description="Credibility parameter when no group data exists")
    sd_floor: float = Field(0.5, gt=0.0, description="Lower bound for smoothed dispersions")

    @field_validator("window")
    @classmethod
    def _window_is_odd(cls, v: int) -> int:
        if v % 2 == 0:
            raise ValueError(f"window must be odd, got {v}")
        return v


class SamplerConfig(BaseModel):
    """Distribution constants for the beneficiary sampler."""
    model_config = {"frozen": True}

    t_df: float = Field(5.0, gt=0.0, description="Student-t degrees of freedom for the age gap")
    spouse_age_bounds: Tuple[float, float] = (15.0, 100.0)
    child_age_bounds: Tuple[float, float] = (0.0, 24.0)
    lambda_floor: float = Field(0.1, gt=0.0)
    prob_floor: float = Field(0.01, gt=0.0)
    batch_size: int = Field(2000, ge=1, description="Draws per independent RNG sub-stream")
    n_workers: int = Field(1, ge=1, description="Threads used to generate batches")

    @field_validator("spouse_age_bounds", "child_age_bounds")
    @classmethod
    def _bounds_ordered(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        if v[0] > v[1]:
            raise ValueError(f"lower bound {v[0]} exceeds upper bound {v[1]}")
        return v


class BenefitRule(BaseModel):
    """
    Survivor pension percentage rule.

    pct = 0 when there are no dependents, else min(base + per_dependent * n, cap).
    The spouse counts as one dependent. Children receive benefits until
    child_cutoff_age.
    """
    model_config = {"frozen": True}

    base: float = Field(0.5, ge=0.0, le=1.0)
    per_dependent: float = Field(0.1, ge=0.0, le=1.0)
    cap: float = Field(1.0, gt=0.0, le=1.0)
    child_cutoff_age: int = Field(24, ge=1)


class ValuationConfig(BaseModel):
    """Complete run configuration."""
    model_config = {"frozen": True}

    interest_rate: float = Field(0.06, gt=0.0, lt=1.0)
    n_samples: int = Field(10_000, gt=0)
    seed: Union[int, None] = 42

    # Output age grid
    min_age: int = 30
    max_age: int = 80

    # Domain accepted by the public entry points
    member_age_bounds: Tuple[int, int] = (15, 90)

    mortality_table: str = "pub2010_general_retiree"
    lookup_policy: LookupPolicy = LookupPolicy.LENIENT

    sensitivity_rates: List[float] = Field(
        default_factory=lambda: [0.04, 0.05, 0.06, 0.07, 0.08]
    )
    sensitivity_ages: List[int] = Field(default_factory=lambda: [40, 50, 60, 70])

    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    benefit: BenefitRule = Field(default_factory=BenefitRule)

    @field_validator("sensitivity_rates")
    @classmethod
    def _rates_in_range(cls, v: List[float]) -> List[float]:
        for rate in v:
            if not 0.0 < rate < 1.0:
                raise ValueError(f"sensitivity rate must be in (0, 1), got {rate}")
        return v

    @model_validator(mode="after")
    def _grid_inside_domain(self) -> "ValuationConfig":
        lo, hi = self.member_age_bounds
        if lo > hi:
            raise ValueError(f"member_age_bounds reversed: {self.member_age_bounds}")
        if not lo <= self.min_age <= self.max_age <= hi:
            raise ValueError(
                f"age grid [{self.min_age}, {self.max_age}] must lie inside "
                f"member domain [{lo}, {hi}]"
            )
        return self


def load_config(path: Union[str, Path]) -> ValuationConfig:
    """
    Load a ValuationConfig from a JSON file.

    Missing keys take their defaults; invalid values raise ValidationError.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as fh:
        raw = json.load(fh)

    try:
        config = ValuationConfig.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid configuration in {path.name}: {e}") from e

    logger.info(f"Loaded configuration: {path.name} (rate={config.interest_rate:.2%}, "
                f"samples={config.n_samples:,})")
    return config
