"""
survivor_reserve/engine.py - Survivor Reserve Valuation Engine

Orchestrates the pipeline over one immutable valuation context:

    Paired estimates
      -> Credibility smoothing      (once, cached in the context)
      -> Demographic tables
      -> Beneficiary sampler
      -> Charge table               (every age to ω, ascending; batch barrier)
      -> Reserve table
      -> Interest-rate sensitivity

The context holds the mortality basis, the demographic tables and the
configuration. Nothing in it is mutated after construction. The only
mutable state in the engine is the charge calculator's annuity-factor
cache, which is filled under a lock, so a single engine may be shared by
threads.

Author: Actuarial Pipeline Project
License: MIT
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union
import logging

import pandas as pd

from .charge import SENSITIVITY_COLUMNS, ChargeCalculator, ChargeSummary
from .config import ValuationConfig
from .exceptions import ValidationError
from .mortality import MortalityCalculator, Sex, create_mortality_calculator
from .parameters import DemographicTables, build_demographic_tables, validate_member_age
from .reserve import ChargeTable, ReserveCalculator, ReserveResult
from .sampler import BeneficiaryBatch, SeedLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValuationContext:
    """Read-only inputs shared by every component of a run."""
    mortality: MortalityCalculator
    demographics: DemographicTables
    config: ValuationConfig
    smoothing_audit: Optional[pd.DataFrame] = None

    @property
    def omega(self) -> int:
        return max(self.mortality.omega(sex) for sex in Sex)


@dataclass
class ValuationResult:
    """Output tables of a complete run."""
    charges: pd.DataFrame
    reserves: pd.DataFrame
    sensitivity: pd.DataFrame
    charge_table: ChargeTable
    smoothing_audit: Optional[pd.DataFrame] = None

    def get_summary(self) -> dict:
        return {
            'interest_rate': self.charge_table.interest_rate,
            'charge_cells': len(self.charges),
            'reserve_cells': len(self.reserves),
            'sensitivity_cells': len(self.sensitivity),
            'mean_reserve': float(self.reserves['reserve_total'].mean())
            if len(self.reserves) else float('nan'),
        }


class ReserveEngine:
    """
    Survivor reserve engine.

    Example:
        engine = create_engine(config, paired=paired_df)
        result = engine.run()
        result.reserves.head()
    """

    def __init__(self, context: ValuationContext):
        self.context = context
        self.config = context.config
        self.charge_calculator = ChargeCalculator(context.mortality, context.demographics,
                                                  context.config)
        self.sampler = self.charge_calculator.sampler

        logger.info(f"Reserve engine initialized: rate={self.config.interest_rate:.2%}, "
                    f"samples={self.config.n_samples:,}, "
                    f"ages {self.config.min_age}-{self.config.max_age}")

    # -------------------------------------------------------------------------
    # Single-cell operations
    # -------------------------------------------------------------------------

    def sample(self, age: int, sex: Union[str, Sex], n_samples: Optional[int] = None,
               seed: SeedLike = None) -> BeneficiaryBatch:
        n_samples = self.config.n_samples if n_samples is None else n_samples
        return self.sampler.sample(age, sex, n_samples, seed=seed)

    def charge(self, age: int, sex: Union[str, Sex], n_samples: Optional[int] = None,
               interest_rate: Optional[float] = None, seed: SeedLike = None) -> ChargeSummary:
        return self.charge_calculator.charge(age, sex, n_samples, interest_rate, seed=seed)

    def build_charge_table(self, min_age: Optional[int] = None,
                           sexes: Iterable[Union[str, Sex]] = tuple(Sex),
                           n_samples: Optional[int] = None,
                           interest_rate: Optional[float] = None,
                           seed: SeedLike = None) -> ChargeTable:
        """
        Charge table covering every age from `min_age` to ω.

        This is the batch barrier: all reserves at or above `min_age` can be
        read from it.
        """
        min_age = self.config.min_age if min_age is None else min_age
        min_age = validate_member_age(min_age, self.context.demographics.age_bounds)
        ages = range(min_age, self.context.omega + 1)
        return self.charge_calculator.build_charge_table(ages, sexes, n_samples,
                                                         interest_rate, seed)

    def reserve(self, age: int, sex: Union[str, Sex],
                interest_rate: Optional[float] = None,
                charge_table: Optional[ChargeTable] = None) -> ReserveResult:
        """
        Reserve for one member.

        Without a charge table, one is built from `age` to ω for this sex.
        """
        sex = Sex.parse(sex)
        if charge_table is None:
            age = validate_member_age(age, self.context.demographics.age_bounds)
            charge_table = self.build_charge_table(age, [sex], interest_rate=interest_rate)
        return self._reserve_calculator(charge_table).reserve(age, sex, interest_rate)

    def reserve_table(self, ages: Optional[Iterable[int]] = None,
                      sexes: Iterable[Union[str, Sex]] = tuple(Sex),
                      charge_table: Optional[ChargeTable] = None) -> pd.DataFrame:
        ages = list(ages) if ages is not None else list(
            range(self.config.min_age, self.config.max_age + 1))
        if not ages:
            raise ValidationError("ages must not be empty")
        sexes = [Sex.parse(s) for s in sexes]
        if charge_table is None:
            charge_table = self.build_charge_table(min(ages), sexes)
        return self._reserve_calculator(charge_table).reserve_table(ages, sexes)

    def sensitivity(self, rates: Optional[Iterable[float]] = None,
                    ages: Optional[Iterable[int]] = None,
                    n_samples: Optional[int] = None) -> pd.DataFrame:
        rates = self.config.sensitivity_rates if rates is None else rates
        ages = self.config.sensitivity_ages if ages is None else ages
        return self.charge_calculator.charge_sensitivity(rates, ages, n_samples=n_samples)

    def _reserve_calculator(self, charge_table: ChargeTable) -> ReserveCalculator:
        return ReserveCalculator(self.context.mortality, self.context.demographics,
                                 charge_table, self.context.demographics.age_bounds)

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def run(self, include_sensitivity: bool = True) -> ValuationResult:
        """
        Complete valuation over the configured age grid.

        Returns:
            ValuationResult with charge, reserve and sensitivity tables
        """
        cfg = self.config
        grid = list(range(cfg.min_age, cfg.max_age + 1))

        logger.info(f"Building charge table {cfg.min_age}-{self.context.omega}")
        charge_table = self.build_charge_table(cfg.min_age)

        logger.info(f"Computing reserves {cfg.min_age}-{cfg.max_age}")
        reserves = self.reserve_table(grid, charge_table=charge_table)

        charges = charge_table.to_frame()
        charges = charges[charges['age'].isin(grid)].reset_index(drop=True)

        if include_sensitivity:
            logger.info(f"Computing sensitivity over {len(cfg.sensitivity_rates)} rates")
            sensitivity = self.sensitivity()
        else:
            sensitivity = pd.DataFrame(columns=SENSITIVITY_COLUMNS)

        result = ValuationResult(
            charges=charges,
            reserves=reserves,
            sensitivity=sensitivity,
            charge_table=charge_table,
            smoothing_audit=self.context.smoothing_audit,
        )
        logger.info(f"Valuation complete: {result.get_summary()}")
        return result


def create_engine(config: Optional[ValuationConfig] = None,
                  demographics: Optional[DemographicTables] = None,
                  paired: Optional[pd.DataFrame] = None,
                  mortality: Optional[MortalityCalculator] = None) -> ReserveEngine:
    """
    Factory function to create a configured engine.

    Args:
        config: Run configuration (defaults apply when omitted)
        demographics: Smoothed demographic tables, if already available
        paired: Long paired-estimate table to smooth when `demographics`
            is not given
        mortality: Mortality basis (built-in table from config when omitted)

    Returns:
        ReserveEngine over a fresh ValuationContext
    """
    config = config or ValuationConfig()
    audit = None
    if demographics is None:
        if paired is None:
            raise ValidationError("Either demographic tables or paired estimates are required")
        demographics, audit = build_demographic_tables(
            paired, config.smoothing, config.lookup_policy, config.member_age_bounds
        )
    mortality = mortality or create_mortality_calculator(config.mortality_table)

    context = ValuationContext(
        mortality=mortality,
        demographics=demographics,
        config=config,
        smoothing_audit=audit,
    )
    return ReserveEngine(context)
