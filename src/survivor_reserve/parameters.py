"""
survivor_reserve/parameters.py - Demographic Parameter Tables and Lookup

Read-only context holding the smoothed demographic curves consumed by the
beneficiary sampler, with exact / interpolated / clamped lookup by
(age, sex, parameter).

Lookup rules:
- Exact match: stored value returned unchanged
- Between observed ages: linear interpolation of the nearest neighbours
- Outside the observed range: nearest boundary value
- Missing value at an exact age: LookupPolicy decides (interpolate or raise)

Author: Actuarial Pipeline Project
License: MIT
"""

from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd

from .config import LookupPolicy, SmoothingConfig
from .credibility import CredibilitySmoother, SmoothedCurve, curves_to_frame
from .exceptions import DataAvailabilityError, ValidationError
from .mortality import Sex

logger = logging.getLogger(__name__)


PARAMETER_NAMES = (
    "p_married",
    "age_gap_mean",
    "age_gap_sd",
    "p_has_child",
    "mean_child_count",
    "child_age_mean",
    "child_age_sd",
)

PROBABILITY_PARAMETERS = ("p_married", "p_has_child")
DISPERSION_PARAMETERS = ("age_gap_sd", "child_age_sd")


def validate_member_age(age: int, bounds: Tuple[int, int] = (15, 90)) -> int:
    """Ages accepted by the public entry points."""
    integral = isinstance(age, (int, np.integer)) or (
        isinstance(age, (float, np.floating)) and float(age).is_integer())
    if isinstance(age, bool) or not integral:
        raise ValidationError(f"Age must be an integer, got {age!r}")
    age = int(age)
    if not bounds[0] <= age <= bounds[1]:
        raise ValidationError(f"Age must be between {bounds[0]} and {bounds[1]}, got {age}")
    return age


@dataclass(frozen=True)
class DemographicParameters:
    """Sampler inputs for one (age, sex)."""
    p_married: float
    age_gap_mean: float
    age_gap_sd: float
    p_has_child: float
    mean_child_count: float
    child_age_mean: float
    child_age_sd: float


class ParameterCurve:
    """
    One smoothed parameter, observed at integer ages, per sex.

    Values may contain NaN where no estimate exists.
    """

    def __init__(self, name: str, points: Mapping[Sex, Tuple[np.ndarray, np.ndarray]]):
        self.name = name
        self._points: Dict[Sex, Tuple[np.ndarray, np.ndarray]] = {}
        for sex, (ages, values) in points.items():
            ages = np.asarray(ages, dtype=int)
            values = np.asarray(values, dtype=np.float64)
            order = np.argsort(ages, kind='stable')
            ages, values = ages[order], values[order]
            ages.setflags(write=False)
            values.setflags(write=False)
            self._points[Sex.parse(sex)] = (ages, values)

    def sexes(self) -> List[Sex]:
        return [s for s, (ages, values) in self._points.items() if np.any(np.isfinite(values))]

    def observed(self, sex: Sex) -> Tuple[np.ndarray, np.ndarray]:
        """Ages and values with a finite estimate."""
        if sex not in self._points:
            raise DataAvailabilityError(f"No data for sex {sex.value} in parameter '{self.name}'")
        ages, values = self._points[sex]
        mask = np.isfinite(values)
        if not np.any(mask):
            raise DataAvailabilityError(f"No data for sex {sex.value} in parameter '{self.name}'")
        return ages[mask], values[mask]

    def lookup(self, age: int, sex: Union[str, Sex],
               policy: LookupPolicy = LookupPolicy.LENIENT) -> float:
        """
        Value at `age` for `sex`.

        Exact stored values are returned unchanged; gaps are interpolated
        linearly; ages outside the observed range take the boundary value.
        """
        sex = Sex.parse(sex)
        if sex not in self._points:
            raise DataAvailabilityError(f"No data for sex {sex.value} in parameter '{self.name}'")

        all_ages, all_values = self._points[sex]
        idx = np.searchsorted(all_ages, age)
        if idx < len(all_ages) and all_ages[idx] == age:
            value = all_values[idx]
            if np.isfinite(value):
                return float(value)
            if policy is LookupPolicy.STRICT:
                raise DataAvailabilityError(
                    f"Missing '{self.name}' at age {age} ({sex.value}) under strict lookup"
                )

        ages, values = self.observed(sex)
        if age <= ages[0]:
            return float(values[0])
        if age >= ages[-1]:
            return float(values[-1])

        upper = int(np.searchsorted(ages, age))
        lower = upper - 1
        weight = (age - ages[lower]) / (ages[upper] - ages[lower])
        return float(values[lower] * (1.0 - weight) + values[upper] * weight)


class DemographicTables:
    """
    Immutable context of smoothed demographic curves.

    Built once per run (from smoothing output or from an external smoothed
    table) and shared read-only by every sampler and aggregator.
    """

    def __init__(self, curves: Mapping[str, ParameterCurve],
                 policy: LookupPolicy = LookupPolicy.LENIENT,
                 sd_floor: float = 0.5,
                 age_bounds: Tuple[int, int] = (15, 90)):
        missing = [name for name in PARAMETER_NAMES if name not in curves]
        if missing:
            raise DataAvailabilityError(f"Demographic tables missing parameters: {missing}")
        if sd_floor <= 0:
            raise ValidationError(f"sd_floor must be positive, got {sd_floor}")
        self._curves = MappingProxyType(dict(curves))
        self.policy = LookupPolicy(policy)
        self.sd_floor = sd_floor
        self.age_bounds = tuple(age_bounds)

    @property
    def curves(self) -> Mapping[str, ParameterCurve]:
        return self._curves

    def lookup(self, parameter: str, age: int, sex: Union[str, Sex]) -> float:
        curve = self._curves.get(parameter)
        if curve is None:
            raise DataAvailabilityError(f"Unknown parameter: {parameter}")
        return curve.lookup(age, sex, self.policy)

    def parameters(self, age: int, sex: Union[str, Sex],
                   validate: bool = True) -> DemographicParameters:
        """
        Sampler parameters for (age, sex).

        With validate=False ages beyond the member domain are accepted and
        take the boundary values (used for reserve horizons past the domain).
        Probabilities are clipped into [0, 1] and dispersions floored.
        """
        if validate:
            age = validate_member_age(age, self.age_bounds)
        sex = Sex.parse(sex)
        values = {name: self.lookup(name, age, sex) for name in PARAMETER_NAMES}
        for name in PROBABILITY_PARAMETERS:
            values[name] = float(np.clip(values[name], 0.0, 1.0))
        for name in DISPERSION_PARAMETERS:
            values[name] = max(values[name], self.sd_floor)
        values['mean_child_count'] = max(values['mean_child_count'], 0.0)
        return DemographicParameters(**values)

    def to_frame(self, ages: Optional[Iterable[int]] = None) -> pd.DataFrame:
        """Wide table: one row per (age, sex), one column per parameter."""
        ages = list(ages) if ages is not None else list(range(self.age_bounds[0],
                                                              self.age_bounds[1] + 1))
        rows = []
        for sex in Sex:
            for age in ages:
                params = self.parameters(age, sex, validate=False)
                rows.append({'age': age, 'sex': sex.value, **asdict(params)})
        return pd.DataFrame(rows)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_curves(cls, curves: Iterable[SmoothedCurve], **kwargs) -> "DemographicTables":
        points: Dict[str, Dict[Sex, Tuple[np.ndarray, np.ndarray]]] = {}
        for curve in curves:
            if curve.sex is None:
                raise ValidationError(f"Curve '{curve.parameter}' has no sex")
            points.setdefault(curve.parameter, {})[curve.sex] = (curve.ages, curve.smoothed)
        return cls({name: ParameterCurve(name, pts) for name, pts in points.items()}, **kwargs)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, value_column: str = 'smoothed',
                   **kwargs) -> "DemographicTables":
        """
        Build from an externally produced smoothed table.

        Accepts the long audit form (age, sex, parameter, <value_column>) or
        the wide form (age, sex, one column per parameter).
        """
        if {'age', 'sex'} - set(df.columns):
            raise ValidationError("Smoothed table needs 'age' and 'sex' columns")

        if 'parameter' in df.columns:
            if value_column not in df.columns:
                raise ValidationError(f"Smoothed table missing column '{value_column}'")
            long = df[['age', 'sex', 'parameter', value_column]].rename(
                columns={value_column: 'value'})
        else:
            present = [p for p in PARAMETER_NAMES if p in df.columns]
            long = df.melt(id_vars=['age', 'sex'], value_vars=present,
                           var_name='parameter', value_name='value')

        long = long.assign(sex=long['sex'].map(Sex.parse))
        curves = {}
        for name, rows in long.groupby('parameter', sort=False):
            points = {
                sex: (grp['age'].to_numpy(dtype=int), grp['value'].to_numpy(dtype=np.float64))
                for sex, grp in rows.groupby('sex', sort=False)
            }
            curves[name] = ParameterCurve(name, points)

        tables = cls(curves, **kwargs)
        logger.info(f"Demographic tables loaded: {len(curves)} parameters, "
                    f"{long['age'].nunique()} ages")
        return tables


def build_demographic_tables(paired: pd.DataFrame,
                             smoothing: Optional[SmoothingConfig] = None,
                             policy: LookupPolicy = LookupPolicy.LENIENT,
                             age_bounds: Tuple[int, int] = (15, 90)
                             ) -> Tuple[DemographicTables, pd.DataFrame]:
    """
    Run credibility smoothing over a long PairedEstimate frame.

    Returns:
        Tuple of (DemographicTables, long audit table of every smoothed curve)
    """
    smoothing = smoothing or SmoothingConfig()
    curves = CredibilitySmoother(smoothing).smooth_frame(paired)
    tables = DemographicTables.from_curves(curves, policy=policy,
                                           sd_floor=smoothing.sd_floor,
                                           age_bounds=age_bounds)
    return tables, curves_to_frame(curves)
