"""
survivor_reserve/credibility.py - Bühlmann-Straub Credibility Smoothing

Stabilises a small-sample group curve (public servants) against a
large-sample reference curve (general population) for one parameter and
one sex.

Mathematical Framework:
- Shift:        Δ = mean(group - reference) over ages with n ≥ n_min
- Adjustment:   reference_adj = reference + Δ
- Parameter:    k = √(mean(n | n > 0))
- Weight:       Z = n / (n + k)
- Credible:     credible = Z × group + (1 - Z) × reference_adj
- Smoothing:    3 passes of a triangular 5-age moving average, each pass
                anchored on reference_adj with weight 0.3

ASOP 25: Credibility Procedures

Author: Actuarial Pipeline Project
License: MIT
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from .config import SmoothingConfig
from .exceptions import ValidationError
from .mortality import Sex

logger = logging.getLogger(__name__)

PAIRED_COLUMNS = ['age', 'sex', 'parameter', 'group_value', 'group_n',
                  'reference_value', 'reference_n']


class ParameterKind(Enum):
    """Post-processing applied to a smoothed curve."""
    PROBABILITY = "probability"  # clipped to [0, 1]
    LOCATION = "location"        # unbounded mean
    DISPERSION = "dispersion"    # floored at sd_floor


class ShiftTier(Enum):
    """Which ages were used to estimate the systematic shift Δ."""
    RELIABLE = "reliable"          # n ≥ n_min
    ANY_POSITIVE = "any_positive"  # n > 0 (fallback)
    NONE = "none"                  # no group data, Δ = 0


def infer_kind(parameter: str) -> ParameterKind:
    """Probability for 'p_*' names, dispersion for '*_sd', location otherwise."""
    if parameter.startswith("p_"):
        return ParameterKind.PROBABILITY
    if parameter.endswith("_sd"):
        return ParameterKind.DISPERSION
    return ParameterKind.LOCATION


# =============================================================================
# INPUT SERIES
# =============================================================================

@dataclass(frozen=True)
class PairedSeries:
    """
    Paired per-age estimates for one parameter and one sex.

    group_value may contain NaN (no estimate at that age); group_n may be 0.
    Arrays are sorted by age on construction.
    """
    ages: np.ndarray
    group_value: np.ndarray
    group_n: np.ndarray
    reference_value: np.ndarray
    reference_n: np.ndarray
    parameter: str = "value"
    sex: Optional[Sex] = None

    def __post_init__(self):
        arrays = {
            'ages': np.asarray(self.ages, dtype=int),
            'group_value': np.asarray(self.group_value, dtype=np.float64),
            'group_n': np.asarray(self.group_n, dtype=np.float64),
            'reference_value': np.asarray(self.reference_value, dtype=np.float64),
            'reference_n': np.asarray(self.reference_n, dtype=np.float64),
        }
        lengths = {len(a) for a in arrays.values()}
        if len(lengths) != 1:
            raise ValidationError(f"Paired series arrays differ in length: {sorted(lengths)}")
        if len(arrays['ages']) == 0:
            raise ValidationError(f"Paired series '{self.parameter}' is empty")
        if len(np.unique(arrays['ages'])) != len(arrays['ages']):
            raise ValidationError(f"Paired series '{self.parameter}' has duplicate ages")

        group_n = np.nan_to_num(arrays['group_n'], nan=0.0)
        if np.any(group_n < 0):
            raise ValidationError("Group sample sizes must be non-negative")
        arrays['group_n'] = group_n
        arrays['reference_n'] = np.nan_to_num(arrays['reference_n'], nan=0.0)

        order = np.argsort(arrays['ages'], kind='stable')
        for name, values in arrays.items():
            values = values[order]
            values.setflags(write=False)
            object.__setattr__(self, name, values)

    def __len__(self) -> int:
        return len(self.ages)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, parameter: str, sex: Sex) -> "PairedSeries":
        """Extract one (parameter, sex) series from a long PairedEstimate frame."""
        rows = df[(df['parameter'] == parameter) & (df['sex'].map(Sex.parse) == sex)]
        return cls(
            ages=rows['age'].to_numpy(),
            group_value=rows['group_value'].to_numpy(dtype=np.float64),
            group_n=rows['group_n'].to_numpy(dtype=np.float64),
            reference_value=rows['reference_value'].to_numpy(dtype=np.float64),
            reference_n=rows['reference_n'].to_numpy(dtype=np.float64),
            parameter=parameter,
            sex=sex,
        )


# =============================================================================
# CREDIBILITY BUILDING BLOCKS
# =============================================================================

def estimate_shift(group_value: np.ndarray, reference_value: np.ndarray,
                   group_n: np.ndarray, n_min: int = 30) -> Tuple[float, ShiftTier]:
    """
    Systematic shift Δ between group and reference.

    Uses ages with n ≥ n_min; falls back to ages with n > 0; Δ = 0 when the
    group has no data at all.
    """
    group_value = np.asarray(group_value, dtype=np.float64)
    reference_value = np.asarray(reference_value, dtype=np.float64)
    group_n = np.asarray(group_n, dtype=np.float64)
    both_present = np.isfinite(group_value) & np.isfinite(reference_value)

    for tier, mask in ((ShiftTier.RELIABLE, group_n >= n_min),
                       (ShiftTier.ANY_POSITIVE, group_n > 0)):
        usable = mask & both_present
        if np.any(usable):
            return float(np.mean(group_value[usable] - reference_value[usable])), tier
    return 0.0, ShiftTier.NONE


def credibility_parameter(group_n: np.ndarray, fallback: float = 50.0) -> Tuple[float, bool]:
    """
    k = √(mean of the positive sample sizes).

    Returns (k, used_fallback).
    """
    group_n = np.asarray(group_n, dtype=np.float64)
    positive = group_n[group_n > 0]
    if positive.size == 0:
        return float(fallback), True
    return float(np.sqrt(np.mean(positive))), False


def credibility_weight(n, k: float):
    """
    Z = n / (n + k).

    Z = 0 at n = 0, increases with n and tends to 1. Accepts scalars or arrays.
    """
    if k <= 0:
        raise ValidationError(f"k must be positive, got {k}")
    n_arr = np.asarray(n, dtype=np.float64)
    if np.any(n_arr < 0):
        raise ValidationError(f"Sample size must be non-negative, got {n}")
    z = n_arr / (n_arr + k)
    return float(z) if z.ndim == 0 else z


def smooth_with_prior(values: np.ndarray, prior: np.ndarray, window: int = 5,
                      anchor_weight: float = 0.3, n_iterations: int = 3) -> np.ndarray:
    """
    Iterative triangular moving average anchored on a prior curve.

    Each pass replaces every value by
        (1 - anchor_weight) × local + anchor_weight × prior
    where `local` is the average over ±window//2 ages with weights
    max(0, 1 - |d| / (window/2)), truncated at the edges and normalised.
    Missing values start at the prior; ages with a missing prior keep the
    local average.

    Args:
        values: Curve to smooth (e.g. credible values)
        prior: Anchor curve (adjusted reference)
        window: Odd window length in ages
        anchor_weight: Strength of the anchor, in [0, 1]
        n_iterations: Number of passes

    Returns:
        Smoothed curve, same length as `values`
    """
    values = np.asarray(values, dtype=np.float64)
    prior = np.asarray(prior, dtype=np.float64)
    if values.shape != prior.shape:
        raise ValidationError("values and prior must have the same length")
    if not 0.0 <= anchor_weight <= 1.0:
        raise ValidationError(f"anchor_weight must be in [0, 1], got {anchor_weight}")
    if window < 1 or window % 2 == 0:
        raise ValidationError(f"window must be a positive odd integer, got {window}")
    if n_iterations < 1:
        raise ValidationError(f"n_iterations must be >= 1, got {n_iterations}")

    n = len(values)
    current = np.where(np.isfinite(values), values, np.nan_to_num(prior, nan=0.0))
    half = window // 2

    # Weights depend only on position, so build them once
    windows = []
    for i in range(n):
        lo, hi = max(0, i - half), min(n, i + half + 1)
        dist = np.abs(np.arange(lo, hi) - i)
        weights = np.maximum(0.0, 1.0 - dist / (window / 2.0))
        windows.append((lo, hi, weights / weights.sum()))

    for _ in range(n_iterations):
        updated = np.empty(n, dtype=np.float64)
        for i, (lo, hi, weights) in enumerate(windows):
            local = float(np.dot(current[lo:hi], weights))
            anchor = prior[i] if np.isfinite(prior[i]) else local
            updated[i] = (1.0 - anchor_weight) * local + anchor_weight * anchor
        current = updated

    return current


# =============================================================================
# SMOOTHED CURVE
# =============================================================================

AGE_BANDS = [("15-24", 15, 24), ("25-49", 25, 49), ("50-64", 50, 64), ("65+", 65, 200)]


@dataclass(frozen=True)
class SmoothedCurve:
    """Stabilised curve for one parameter and sex, with full provenance for audit."""
    parameter: str
    sex: Optional[Sex]
    kind: ParameterKind
    ages: np.ndarray = field(repr=False)
    group_value: np.ndarray = field(repr=False)
    group_n: np.ndarray = field(repr=False)
    reference_value: np.ndarray = field(repr=False)
    reference_n: np.ndarray = field(repr=False)
    reference_adjusted: np.ndarray = field(repr=False)
    z: np.ndarray = field(repr=False)
    credible: np.ndarray = field(repr=False)
    smoothed: np.ndarray = field(repr=False)
    delta: float = 0.0
    k: float = 0.0
    shift_tier: ShiftTier = ShiftTier.RELIABLE
    k_fallback_used: bool = False

    @property
    def used_fallback(self) -> bool:
        return self.k_fallback_used or self.shift_tier is not ShiftTier.RELIABLE

    def value_at(self, age: int) -> float:
        idx = np.searchsorted(self.ages, age)
        if idx >= len(self.ages) or self.ages[idx] != age:
            raise KeyError(age)
        return float(self.smoothed[idx])

    def to_frame(self) -> pd.DataFrame:
        """Long audit rows: one per age."""
        return pd.DataFrame({
            'age': self.ages,
            'sex': self.sex.value if self.sex is not None else None,
            'parameter': self.parameter,
            'group_value': self.group_value,
            'group_n': self.group_n,
            'reference_value': self.reference_value,
            'reference_n': self.reference_n,
            'delta': self.delta,
            'reference_adjusted': self.reference_adjusted,
            'z': self.z,
            'credible': self.credible,
            'smoothed': self.smoothed,
            'k': self.k,
        })

    def diagnostics(self) -> Dict[str, float]:
        """Deviation from the reference before and after each stage, and mean Z by age band."""
        ref = self.reference_value
        observed = np.isfinite(self.group_value) & np.isfinite(ref)
        result = {
            'mae_group_vs_reference': float(np.mean(np.abs(self.group_value[observed] - ref[observed])))
            if np.any(observed) else float('nan'),
            'mae_credible_vs_reference': float(np.nanmean(np.abs(self.credible - ref))),
            'mae_smoothed_vs_reference': float(np.nanmean(np.abs(self.smoothed - ref))),
            'mean_z': float(np.mean(self.z)),
        }
        for label, lo, hi in AGE_BANDS:
            band = (self.ages >= lo) & (self.ages <= hi)
            if np.any(band):
                result[f'mean_z_{label}'] = float(np.mean(self.z[band]))
        return result


class CredibilitySmoother:
    """
    Applies Bühlmann-Straub credibility and anchored smoothing to paired series.

    The same procedure is used for every parameter family; location and
    dispersion curves of one family are smoothed independently.
    """

    def __init__(self, config: Optional[SmoothingConfig] = None):
        self.config = config or SmoothingConfig()

    def smooth(self, series: PairedSeries, kind: Optional[ParameterKind] = None) -> SmoothedCurve:
        cfg = self.config
        kind = kind or infer_kind(series.parameter)
        label = f"{series.parameter}/{series.sex.value if series.sex else '-'}"

        # Step 1-2: systematic shift and adjusted reference
        delta, tier = estimate_shift(series.group_value, series.reference_value,
                                     series.group_n, cfg.n_min)
        if tier is not ShiftTier.RELIABLE:
            logger.warning(f"{label}: no ages with n >= {cfg.n_min}, shift estimated from "
                           f"'{tier.value}' ages (Δ={delta:.4f})")
        reference_adj = series.reference_value + delta

        # Step 3-4: credibility parameter and weights
        k, k_fallback = credibility_parameter(series.group_n, cfg.k_fallback)
        if k_fallback:
            logger.warning(f"{label}: no positive group sample sizes, using k={k:.1f}")
        z = credibility_weight(series.group_n, k)

        # Step 5: credible values
        has_group = np.isfinite(series.group_value) & (series.group_n > 0)
        has_ref = np.isfinite(reference_adj)
        credible = np.where(
            has_group & has_ref, z * np.nan_to_num(series.group_value) + (1.0 - z) * reference_adj,
            np.where(has_ref, reference_adj, np.where(has_group, series.group_value, np.nan))
        )
        if np.all(np.isnan(credible)):
            raise ValidationError(f"{label}: neither group nor reference values are available")
        if np.any(np.isnan(credible)):
            credible = (pd.Series(credible, index=series.ages)
                        .interpolate(method='index', limit_direction='both')
                        .to_numpy())
        if kind is ParameterKind.PROBABILITY:
            credible = np.clip(credible, 0.0, 1.0)

        # Step 6: anchored moving average
        smoothed = smooth_with_prior(credible, reference_adj, window=cfg.window,
                                     anchor_weight=cfg.anchor_weight,
                                     n_iterations=cfg.n_iterations)
        if kind is ParameterKind.PROBABILITY:
            smoothed = np.clip(smoothed, 0.0, 1.0)
        elif kind is ParameterKind.DISPERSION:
            smoothed = np.maximum(smoothed, cfg.sd_floor)

        logger.debug(f"{label}: Δ={delta:.4f}, k={k:.2f}, mean Z={np.mean(z):.3f}")

        return SmoothedCurve(
            parameter=series.parameter, sex=series.sex, kind=kind,
            ages=series.ages, group_value=series.group_value, group_n=series.group_n,
            reference_value=series.reference_value, reference_n=series.reference_n,
            reference_adjusted=reference_adj, z=z, credible=credible, smoothed=smoothed,
            delta=delta, k=k, shift_tier=tier, k_fallback_used=k_fallback,
        )

    def smooth_frame(self, paired: pd.DataFrame) -> List[SmoothedCurve]:
        """Smooth every (parameter, sex) pair in a long PairedEstimate frame."""
        missing = set(PAIRED_COLUMNS) - set(paired.columns)
        if missing:
            raise ValidationError(f"Paired estimates missing columns: {sorted(missing)}")

        sexes = paired['sex'].map(Sex.parse)
        curves = []
        for parameter in pd.unique(paired['parameter']):
            for sex in Sex:
                if not ((paired['parameter'] == parameter) & (sexes == sex)).any():
                    continue
                series = PairedSeries.from_frame(paired, parameter, sex)
                curves.append(self.smooth(series))

        logger.info(f"Smoothed {len(curves)} curves "
                    f"({sum(c.used_fallback for c in curves)} with fallbacks)")
        return curves


def curves_to_frame(curves: List[SmoothedCurve]) -> pd.DataFrame:
    """Concatenate curve audit rows into one long table."""
    if not curves:
        return pd.DataFrame(columns=['age', 'sex', 'parameter', 'smoothed'])
    return pd.concat([c.to_frame() for c in curves], ignore_index=True)


def smooth_paired_estimates(paired: pd.DataFrame,
                            config: Optional[SmoothingConfig] = None) -> pd.DataFrame:
    """Convenience wrapper: long PairedEstimate frame in, long audit table out."""
    return curves_to_frame(CredibilitySmoother(config).smooth_frame(paired))
