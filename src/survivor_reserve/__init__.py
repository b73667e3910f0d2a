"""
Survivor Pension Reserve Engine

Actuarial reserve for the survivor (heritor) pension of a retired member:
credibility-smoothed demographic assumptions, Monte Carlo simulation of the
household left at death, and annuity-based charge and reserve tables.

Pipeline:
- Bühlmann-Straub credibility smoothing of group vs. reference curves
- Beneficiary sampler (spouse, children) per member age and sex
- Charge: present value of the survivor pension at the member's death
- Reserve: expected present value of the charge over the member's lifetime

Compliance:
- ASOP 25: Credibility Procedures
- ASOP 35: Selection of Demographic Assumptions

Author: Actuarial Pipeline Project
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Actuarial Pipeline Project"

from .exceptions import (
    ValidationError,
    DataAvailabilityError,
)

from .config import (
    LookupPolicy,
    SmoothingConfig,
    SamplerConfig,
    BenefitRule,
    ValuationConfig,
    load_config,
)

from .mortality import (
    Sex,
    MortalityTable,
    MortalityCalculator,
    create_mortality_calculator,
    load_mortality_table,
    gompertz_makeham_table,
    whole_life_annuity_due,
    temporary_annuity_due,
    life_expectancy,
)

from .credibility import (
    PairedSeries,
    SmoothedCurve,
    CredibilitySmoother,
    credibility_weight,
    smooth_paired_estimates,
)

from .parameters import (
    DemographicParameters,
    DemographicTables,
    build_demographic_tables,
)

from .sampler import (
    BeneficiarySample,
    BeneficiaryBatch,
    BeneficiarySampler,
    SamplerDiagnostics,
)

from .charge import (
    ChargeCalculator,
    ChargeSummary,
    pension_percentage,
)

from .reserve import (
    ChargeTable,
    ReserveCalculator,
    ReserveResult,
)

from .engine import (
    ReserveEngine,
    ValuationContext,
    ValuationResult,
    create_engine,
)

__all__ = [
    # Errors
    "ValidationError",
    "DataAvailabilityError",

    # Configuration
    "LookupPolicy",
    "SmoothingConfig",
    "SamplerConfig",
    "BenefitRule",
    "ValuationConfig",
    "load_config",

    # Mortality
    "Sex",
    "MortalityTable",
    "MortalityCalculator",
    "create_mortality_calculator",
    "load_mortality_table",
    "gompertz_makeham_table",
    "whole_life_annuity_due",
    "temporary_annuity_due",
    "life_expectancy",

    # Credibility
    "PairedSeries",
    "SmoothedCurve",
    "CredibilitySmoother",
    "credibility_weight",
    "smooth_paired_estimates",

    # Demographic tables
    "DemographicParameters",
    "DemographicTables",
    "build_demographic_tables",

    # Sampler
    "BeneficiarySample",
    "BeneficiaryBatch",
    "BeneficiarySampler",
    "SamplerDiagnostics",

    # Charge and reserve
    "ChargeCalculator",
    "ChargeSummary",
    "pension_percentage",
    "ChargeTable",
    "ReserveCalculator",
    "ReserveResult",

    # Engine
    "ReserveEngine",
    "ValuationContext",
    "ValuationResult",
    "create_engine",
]
