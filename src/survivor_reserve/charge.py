"""
survivor_reserve/charge.py - Charge Aggregator

The charge (encargo) for a member dying at age x is the present value, in
years of benefit, of the survivor pension paid to the household left behind.

Mathematical Framework:
    pct = 0                                 if no dependents
          min(0.5 + 0.1 × dependents, 1.0)  otherwise

    dependents = married + num_children

    Spouse:   pct × ä_{y}                   (y = spouse age, opposite sex)
    Children: pct × n × ½(ä^M_{c:24-c} + ä^F_{c:24-c})
              (c = youngest child age, paid while c < 24)

    Charge = Spouse + Children, averaged over Monte Carlo draws.

Spouse and child ages are rounded to the nearest integer before the
annuity lookup.

Author: Actuarial Pipeline Project
License: MIT
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging
import threading

import numpy as np
import pandas as pd

from .config import BenefitRule, ValuationConfig
from .exceptions import ValidationError
from .mortality import (
    MortalityCalculator,
    Sex,
    annuity_due_vector,
    temporary_annuity_vector,
)
from .parameters import DemographicTables
from .reserve import ChargeTable
from .sampler import (
    BeneficiaryBatch,
    BeneficiarySampler,
    SamplerDiagnostics,
    SeedLike,
    as_seed_sequence,
)

logger = logging.getLogger(__name__)

SENSITIVITY_COLUMNS = ['interest_rate', 'age', 'sex', 'mean']


# =============================================================================
# BENEFIT RULE
# =============================================================================

def pension_percentage(dependents, rule: Optional[BenefitRule] = None):
    """
    Survivor pension as a share of the member's benefit.

    Works on a scalar count or a numpy array of counts.
    """
    rule = rule or BenefitRule()
    dependents = np.asarray(dependents)
    if np.any(dependents < 0):
        raise ValidationError("Number of dependents cannot be negative")
    pct = np.where(dependents > 0,
                   np.minimum(rule.base + rule.per_dependent * dependents, rule.cap),
                   0.0)
    return float(pct) if pct.ndim == 0 else pct


@dataclass(frozen=True)
class ChargeSummary:
    """Distribution of the charge over the simulated households."""
    age: int
    sex: Sex
    mean: float
    median: float
    p10: float
    p90: float
    min: float
    max: float
    mean_pension_pct: float
    n_samples: int
    interest_rate: float
    diagnostics: SamplerDiagnostics = field(default_factory=SamplerDiagnostics, compare=False)

    def to_dict(self) -> Dict:
        return {
            'age': self.age,
            'sex': self.sex.value,
            'mean': self.mean,
            'median': self.median,
            'p10': self.p10,
            'p90': self.p90,
            'min': self.min,
            'max': self.max,
            'mean_pension_pct': self.mean_pension_pct,
            'n_samples': self.n_samples,
            'interest_rate': self.interest_rate,
        }


def cell_seed(root: np.random.SeedSequence, age: int, sex: Sex) -> np.random.SeedSequence:
    """
    Seed for one (age, sex) cell: a child of `root` keyed by the cell.

    The same cell gets the same stream whatever grid it is computed in.
    """
    sex_code = 0 if sex is Sex.MALE else 1
    return np.random.SeedSequence(root.entropy,
                                  spawn_key=tuple(root.spawn_key) + (int(age), sex_code),
                                  pool_size=root.pool_size)


# =============================================================================
# CHARGE CALCULATOR
# =============================================================================

class ChargeCalculator:
    """
    Monte Carlo charge for a member dying at a given age.

    Args:
        mortality: Mortality basis for both sexes
        demographics: Smoothed demographic tables
        config: Valuation configuration (rate, samples, sampler, benefit rule)
    """

    def __init__(self, mortality: MortalityCalculator, demographics: DemographicTables,
                 config: Optional[ValuationConfig] = None):
        self.mortality = mortality
        self.demographics = demographics
        self.config = config or ValuationConfig()
        self.sampler = BeneficiarySampler(demographics, self.config.sampler)
        self._annuity_cache: Dict[Tuple[str, float], np.ndarray] = {}
        self._cache_lock = threading.Lock()
        for sex in Sex:
            self._spouse_annuities(sex, self.config.interest_rate)
        self._child_annuities(self.config.interest_rate)

    # -------------------------------------------------------------------------
    # Annuity factors
    # -------------------------------------------------------------------------

    def _cached(self, key: Tuple[str, float], build) -> np.ndarray:
        # Factors for the configured rate are built in __init__; other rates
        # are added on first use under the lock.
        with self._cache_lock:
            if key not in self._annuity_cache:
                self._annuity_cache[key] = build()
            return self._annuity_cache[key]

    def _spouse_annuities(self, sex: Sex, rate: float) -> np.ndarray:
        return self._cached((sex.value, rate),
                            lambda: annuity_due_vector(self.mortality.table(sex), rate))

    def _child_annuities(self, rate: float) -> np.ndarray:
        """Unisex ä_{c:cutoff-c} for c = 0..cutoff (zero at the cutoff)."""
        def build():
            cutoff = self.config.benefit.child_cutoff_age
            ages = np.arange(cutoff + 1)
            terms = cutoff - ages
            male = temporary_annuity_vector(self.mortality.table(Sex.MALE), ages, terms, rate)
            female = temporary_annuity_vector(self.mortality.table(Sex.FEMALE), ages, terms, rate)
            return 0.5 * (male + female)
        return self._cached(('child', rate), build)

    def household_values(self, batch: BeneficiaryBatch, sex: Sex,
                         rate: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Charge and pension percentage for every household of a batch.

        Returns:
            Tuple of (charge per draw, pension pct per draw)
        """
        dependents = batch.married.astype(np.int64) + batch.num_children
        pct = pension_percentage(dependents, self.config.benefit)

        spouse_table = self._spouse_annuities(sex.opposite, rate)
        omega = len(spouse_table) - 1
        spouse_idx = np.clip(np.rint(np.nan_to_num(batch.spouse_age)), 0, omega).astype(int)
        spouse = np.where(batch.married, pct * spouse_table[spouse_idx], 0.0)

        child_table = self._child_annuities(rate)
        cutoff = len(child_table) - 1
        child_idx = np.clip(np.rint(np.nan_to_num(batch.youngest_child_age)), 0, cutoff).astype(int)
        children = np.where(batch.has_child,
                            pct * batch.num_children * child_table[child_idx],
                            0.0)

        return spouse + children, pct

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def charge(self, age: int, sex: Union[str, Sex], n_samples: Optional[int] = None,
               interest_rate: Optional[float] = None, seed: SeedLike = None,
               extend_domain: bool = False) -> ChargeSummary:
        """
        Charge distribution for a member of (age, sex) dying now.

        Args:
            age: Member age at death
            sex: Member sex
            n_samples: Monte Carlo draws (default from config)
            interest_rate: Discount rate (default from config)
            seed: Seed for reproducibility
            extend_domain: Accept ages above the member domain (reserve tail)

        Returns:
            ChargeSummary
        """
        sex = Sex.parse(sex)
        n_samples = self.config.n_samples if n_samples is None else n_samples
        rate = self.config.interest_rate if interest_rate is None else interest_rate
        if not 0.0 < rate < 1.0:
            raise ValidationError(f"Interest rate must be in (0, 1), got {rate}")
        rate = float(rate)

        batch = self.sampler.sample(age, sex, n_samples, seed=seed, extend_domain=extend_domain)
        values, pct = self.household_values(batch, sex, rate)
        p10, median, p90 = np.percentile(values, [10, 50, 90])

        return ChargeSummary(
            age=int(age),
            sex=sex,
            mean=float(np.mean(values)),
            median=float(median),
            p10=float(p10),
            p90=float(p90),
            min=float(np.min(values)),
            max=float(np.max(values)),
            mean_pension_pct=float(np.mean(pct)),
            n_samples=len(batch),
            interest_rate=rate,
            diagnostics=batch.diagnostics,
        )

    def build_charge_table(self, ages: Iterable[int],
                           sexes: Iterable[Union[str, Sex]] = tuple(Sex),
                           n_samples: Optional[int] = None,
                           interest_rate: Optional[float] = None,
                           seed: SeedLike = None) -> ChargeTable:
        """
        Charges for an age grid and both sexes, ascending by age.

        Ages above the member domain are computed with demographic parameters
        held at the domain boundary.
        """
        rate = self.config.interest_rate if interest_rate is None else interest_rate
        seed = self.config.seed if seed is None else seed
        root = as_seed_sequence(seed)
        upper = self.demographics.age_bounds[1]

        summaries: List[ChargeSummary] = []
        for sex in (Sex.parse(s) for s in sexes):
            for age in sorted(set(int(a) for a in ages)):
                summaries.append(self.charge(age, sex, n_samples, rate,
                                             seed=cell_seed(root, age, sex),
                                             extend_domain=age > upper))

        clamps = sum(s.diagnostics.total_clamps for s in summaries)
        logger.info(f"Charge table built: {len(summaries)} cells @ {rate:.2%} "
                    f"({clamps:,} plausibility clamps)")
        return ChargeTable.from_summaries(summaries, interest_rate=rate)

    def charge_sensitivity(self, rates: Iterable[float], ages: Iterable[int],
                           sexes: Iterable[Union[str, Sex]] = tuple(Sex),
                           n_samples: Optional[int] = None,
                           seed: SeedLike = None) -> pd.DataFrame:
        """
        Mean charge across an interest-rate grid.

        Each (age, sex) cell uses the same draws at every rate, so the rows
        differ only by discounting.
        """
        seed = self.config.seed if seed is None else seed
        root = as_seed_sequence(seed)
        sexes = [Sex.parse(s) for s in sexes]
        ages = list(ages)

        rows = []
        for rate in rates:
            for sex in sexes:
                for age in ages:
                    summary = self.charge(age, sex, n_samples, rate,
                                          seed=cell_seed(root, age, sex))
                    rows.append({'interest_rate': float(rate), 'age': int(age),
                                 'sex': sex.value, 'mean': summary.mean})

        logger.info(f"Charge sensitivity: {len(rows)} cells")
        return pd.DataFrame(rows, columns=SENSITIVITY_COLUMNS)
