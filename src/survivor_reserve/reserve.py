"""
survivor_reserve/reserve.py - Reserve Aggregator

Expected present value, at the valuation date, of the survivor charge for
a member who is alive now: the member may die in any future year, and the
charge at that age of death is weighted by the probability of dying then.

Mathematical Framework:
    Reserve(x) = Σ_{t=0}^{ω-x} v^t × tpx × q_{x+t} × Charge(x+t)

    where:
    - v = 1/(1+i) is the discount factor
    - tpx is the probability of surviving t years from age x
    - q_{x+t} is the probability of death in year t (q_ω = 1)
    - Charge(y) is the mean charge for a member dying at age y

    Reserve per life year = Reserve(x) / e_x

    Probability of leaving a dependent spouse:
    P = Σ w_t × p_married(x+t) / Σ w_t,   w_t = tpx × q_{x+t}

    Above the member domain (ages 91..ω) p_married is held at its age-90
    value, as the tail charges are, rather than set to zero.

A charge must exist for every age from x to ω; missing entries are an
error, never zero.

Author: Actuarial Pipeline Project
License: MIT
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from .exceptions import DataAvailabilityError, ValidationError
from .mortality import MortalityCalculator, Sex
from .parameters import DemographicTables, validate_member_age

logger = logging.getLogger(__name__)


CHARGE_COLUMNS = [
    'age', 'sex', 'mean', 'median', 'p10', 'p90', 'min', 'max',
    'mean_pension_pct', 'n_samples', 'interest_rate',
]

RESERVE_COLUMNS = [
    'age', 'sex', 'reserve_total', 'reserve_per_life_year',
    'life_expectancy', 'prob_leave_dependent', 'interest_rate',
]


# =============================================================================
# CHARGE TABLE
# =============================================================================

class ChargeTable:
    """
    Precomputed mean charges by (age, sex) at a single interest rate.

    The reserve reads nothing else from the charge aggregator, so a table
    loaded from file is as good as one built in memory.
    """

    def __init__(self, frame: pd.DataFrame, interest_rate: Optional[float] = None):
        missing = {'age', 'sex', 'mean'} - set(frame.columns)
        if missing:
            raise ValidationError(f"Charge table missing columns: {sorted(missing)}")

        frame = frame.copy()
        frame['sex'] = frame['sex'].map(lambda s: Sex.parse(s).value)
        frame['age'] = frame['age'].astype(int)

        if interest_rate is None:
            if 'interest_rate' not in frame.columns:
                raise ValidationError("Charge table has no interest rate")
            rates = frame['interest_rate'].unique()
            if len(rates) != 1:
                raise ValidationError(f"Charge table mixes interest rates: {sorted(rates)}")
            interest_rate = float(rates[0])
        elif 'interest_rate' in frame.columns and not np.allclose(frame['interest_rate'],
                                                                   interest_rate):
            raise ValidationError("Charge table rows disagree with the stated interest rate")
        frame['interest_rate'] = float(interest_rate)

        if frame.duplicated(['age', 'sex']).any():
            raise ValidationError("Charge table has duplicate (age, sex) rows")

        self.interest_rate = float(interest_rate)
        self._frame = frame.sort_values(['sex', 'age']).reset_index(drop=True)
        self._means = {
            (int(row.age), row.sex): float(row.mean)
            for row in self._frame[['age', 'sex', 'mean']].itertuples(index=False)
        }

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, key) -> bool:
        age, sex = key
        return (int(age), Sex.parse(sex).value) in self._means

    def mean_charge(self, age: int, sex: Union[str, Sex]) -> float:
        sex = Sex.parse(sex)
        value = self._means.get((int(age), sex.value))
        if value is None or not np.isfinite(value):
            raise DataAvailabilityError(f"No charge for age {age} ({sex.value})")
        return value

    def ages(self, sex: Union[str, Sex]) -> List[int]:
        sex = Sex.parse(sex).value
        return sorted(a for a, s in self._means if s == sex)

    def missing_ages(self, ages: Iterable[int], sex: Union[str, Sex]) -> List[int]:
        sex = Sex.parse(sex)
        return [a for a in ages if not np.isfinite(self._means.get((int(a), sex.value), np.nan))]

    def to_frame(self) -> pd.DataFrame:
        columns = [c for c in CHARGE_COLUMNS if c in self._frame.columns]
        return self._frame[columns].copy()

    @classmethod
    def from_summaries(cls, summaries: Sequence, interest_rate: float) -> "ChargeTable":
        frame = pd.DataFrame([s.to_dict() for s in summaries], columns=CHARGE_COLUMNS)
        return cls(frame, interest_rate=interest_rate)


# =============================================================================
# RESERVE
# =============================================================================

@dataclass(frozen=True)
class ReserveResult:
    """Reserve for one (age, sex) at one interest rate."""
    age: int
    sex: Sex
    reserve_total: float
    reserve_per_life_year: float
    life_expectancy: float
    prob_leave_dependent: float
    interest_rate: float

    def to_dict(self) -> dict:
        return {
            'age': self.age,
            'sex': self.sex.value,
            'reserve_total': self.reserve_total,
            'reserve_per_life_year': self.reserve_per_life_year,
            'life_expectancy': self.life_expectancy,
            'prob_leave_dependent': self.prob_leave_dependent,
            'interest_rate': self.interest_rate,
        }


class ReserveCalculator:
    """
    Reserve aggregator over a precomputed charge table.

    Args:
        mortality: Mortality basis for both sexes
        demographics: Demographic tables (for the married share at death)
        charge_table: Mean charges for every age of the reserve horizon
        age_bounds: Member ages accepted
    """

    def __init__(self, mortality: MortalityCalculator, demographics: DemographicTables,
                 charge_table: ChargeTable, age_bounds=None):
        self.mortality = mortality
        self.demographics = demographics
        self.charge_table = charge_table
        self.age_bounds = tuple(age_bounds or demographics.age_bounds)

    def reserve(self, age: int, sex: Union[str, Sex],
                interest_rate: Optional[float] = None) -> ReserveResult:
        """
        Reserve for a member aged `age` now.

        Raises:
            ValidationError: age/sex/rate invalid, or the charge table was
                built at another rate
            DataAvailabilityError: a charge is missing for an age in [age, ω]
        """
        age = validate_member_age(age, self.age_bounds)
        sex = Sex.parse(sex)
        rate = self.charge_table.interest_rate if interest_rate is None else interest_rate
        if not 0.0 < rate < 1.0:
            raise ValidationError(f"Interest rate must be in (0, 1), got {rate}")
        if not np.isclose(rate, self.charge_table.interest_rate):
            raise ValidationError(
                f"Charge table built at {self.charge_table.interest_rate:.4%}, "
                f"reserve requested at {rate:.4%}"
            )

        table = self.mortality.table(sex)
        omega = table.omega
        horizon = np.arange(age, omega + 1)

        missing = self.charge_table.missing_ages(horizon, sex)
        if missing:
            raise DataAvailabilityError(
                f"Charge table lacks {len(missing)} ages for {sex.value} "
                f"{age}-{omega} (first missing: {missing[0]})"
            )
        charges = np.array([self.charge_table.mean_charge(y, sex) for y in horizon])

        # Death probability in each future year, with q_ω = 1
        q = np.append(table.qx[age:omega], 1.0)
        tpx = np.concatenate([[1.0], np.cumprod(1.0 - q[:-1])])
        weights = tpx * q
        v = 1.0 / (1.0 + rate)
        discount = np.power(v, np.arange(len(horizon)))

        reserve_total = float(np.sum(discount * weights * charges))
        ex = self.mortality.life_expectancy(age, sex)
        per_year = reserve_total / ex if ex > 0 else 0.0

        p_married = np.array([
            self.demographics.parameters(int(y), sex, validate=False).p_married
            for y in horizon
        ])
        total_weight = weights.sum()
        prob_dependent = float(np.sum(weights * p_married) / total_weight) if total_weight > 0 else 0.0

        logger.debug(f"Reserve {sex.value} {age} @ {rate:.2%}: {reserve_total:.4f}")
        return ReserveResult(
            age=age,
            sex=sex,
            reserve_total=reserve_total,
            reserve_per_life_year=per_year,
            life_expectancy=ex,
            prob_leave_dependent=prob_dependent,
            interest_rate=float(rate),
        )

    def reserve_table(self, ages: Iterable[int],
                      sexes: Iterable[Union[str, Sex]] = tuple(Sex)) -> pd.DataFrame:
        rows = [
            self.reserve(age, sex).to_dict()
            for sex in (Sex.parse(s) for s in sexes)
            for age in ages
        ]
        return pd.DataFrame(rows, columns=RESERVE_COLUMNS)
