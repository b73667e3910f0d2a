"""
tests/test_reserve.py - Reserve Aggregator Tests

Validates:
1. Reserve against a hand-computed sum on a constant charge table
2. Reserve < charge at the same age (discounting and declining charges)
3. Missing charges and rate mismatches are errors, never zeros

Author: Actuarial Pipeline Project
License: MIT
"""

import numpy as np
import pandas as pd
import pytest

from survivor_reserve.charge import ChargeCalculator
from survivor_reserve.config import ValuationConfig
from survivor_reserve.exceptions import DataAvailabilityError, ValidationError
from survivor_reserve.mortality import Sex
from survivor_reserve.reserve import ChargeTable, ReserveCalculator


def constant_charge_table(value: float, rate: float, ages=range(15, 111)) -> ChargeTable:
    rows = [{"age": a, "sex": s, "mean": value} for s in ("Male", "Female") for a in ages]
    return ChargeTable(pd.DataFrame(rows), interest_rate=rate)


@pytest.fixture(scope="module")
def charge_table(mortality, demographic_tables):
    config = ValuationConfig(n_samples=1_000, seed=42, mortality_table="gompertz_makeham")
    calculator = ChargeCalculator(mortality, demographic_tables, config)
    return calculator.build_charge_table(range(60, 111), ["M"])


class TestChargeTable:

    def test_mean_charge_lookup(self):
        table = constant_charge_table(2.5, 0.06, ages=[60, 61])
        assert table.mean_charge(60, "M") == 2.5
        assert (61, "Female") in table
        assert (62, "Female") not in table

    def test_missing_entry(self):
        table = constant_charge_table(2.5, 0.06, ages=[60])
        with pytest.raises(DataAvailabilityError):
            table.mean_charge(61, "M")

    def test_rate_read_from_frame(self):
        df = pd.DataFrame({"age": [60], "sex": ["M"], "mean": [1.0], "interest_rate": [0.05]})
        assert ChargeTable(df).interest_rate == 0.05

    def test_mixed_rates_rejected(self):
        df = pd.DataFrame({"age": [60, 61], "sex": ["M", "M"], "mean": [1.0, 1.0],
                           "interest_rate": [0.05, 0.06]})
        with pytest.raises(ValidationError):
            ChargeTable(df)

    def test_duplicates_rejected(self):
        df = pd.DataFrame({"age": [60, 60], "sex": ["M", "Male"], "mean": [1.0, 2.0]})
        with pytest.raises(ValidationError):
            ChargeTable(df, interest_rate=0.06)

    def test_frame_round_trip(self):
        table = constant_charge_table(1.0, 0.06, ages=[60, 61])
        rebuilt = ChargeTable(table.to_frame())
        assert rebuilt.interest_rate == 0.06
        assert len(rebuilt) == 4


class TestReserveFormula:

    def test_constant_charge(self, mortality, demographic_tables):
        """With a flat charge C, Reserve = C × Σ v^t tpx q_{x+t} (a death-benefit insurance)."""
        rate = 0.05
        calc = ReserveCalculator(mortality, demographic_tables,
                                 constant_charge_table(3.0, rate))
        result = calc.reserve(70, "F")

        table = mortality.table(Sex.FEMALE)
        v = 1.0 / (1.0 + rate)
        expected = 0.0
        tpx = 1.0
        for t in range(table.omega - 70 + 1):
            q = table.q(70 + t)
            expected += v ** t * tpx * q * 3.0
            tpx *= 1.0 - q
        assert result.reserve_total == pytest.approx(expected)
        assert result.life_expectancy == pytest.approx(mortality.life_expectancy(70, "F"))
        assert result.reserve_per_life_year == \
            pytest.approx(result.reserve_total / result.life_expectancy)

    def test_prob_leave_dependent_is_weighted_married_share(self, mortality, demographic_tables):
        calc = ReserveCalculator(mortality, demographic_tables, constant_charge_table(1.0, 0.06))
        result = calc.reserve(60, "M")
        shares = [demographic_tables.parameters(a, "M", validate=False).p_married
                  for a in range(60, 111)]
        assert min(shares) <= result.prob_leave_dependent <= max(shares)

    def test_tail_ages_hold_married_share_at_boundary(self, mortality, demographic_tables):
        calc = ReserveCalculator(mortality, demographic_tables, constant_charge_table(1.0, 0.06))
        result = calc.reserve(90, "F")
        assert result.prob_leave_dependent == \
            pytest.approx(demographic_tables.parameters(90, "F").p_married)
        assert result.prob_leave_dependent > 0.0


class TestReserveProperties:

    def test_reserve_below_charge_at_60(self, mortality, demographic_tables, charge_table):
        """Age 60 Male at 6%: reserve < charge(60).mean."""
        calc = ReserveCalculator(mortality, demographic_tables, charge_table)
        result = calc.reserve(60, "M")
        charge_60 = charge_table.mean_charge(60, "M")
        assert 0.0 < result.reserve_total < charge_60, \
            f"Reserve {result.reserve_total:.4f} not below charge {charge_60:.4f}"

    def test_reserve_table(self, mortality, demographic_tables, charge_table):
        calc = ReserveCalculator(mortality, demographic_tables, charge_table)
        df = calc.reserve_table([60, 70, 80], ["M"])
        assert list(df.columns) == ["age", "sex", "reserve_total", "reserve_per_life_year",
                                    "life_expectancy", "prob_leave_dependent", "interest_rate"]
        assert len(df) == 3
        assert (df["reserve_total"] > 0).all()


class TestReserveErrors:

    def test_missing_charge_is_error(self, mortality, demographic_tables):
        table = constant_charge_table(1.0, 0.06, ages=range(60, 100))
        calc = ReserveCalculator(mortality, demographic_tables, table)
        with pytest.raises(DataAvailabilityError, match="first missing: 100"):
            calc.reserve(60, "M")

    def test_sex_not_in_charge_table(self, mortality, demographic_tables, charge_table):
        calc = ReserveCalculator(mortality, demographic_tables, charge_table)
        with pytest.raises(DataAvailabilityError):
            calc.reserve(60, "F")

    def test_rate_mismatch(self, mortality, demographic_tables, charge_table):
        calc = ReserveCalculator(mortality, demographic_tables, charge_table)
        with pytest.raises(ValidationError):
            calc.reserve(60, "M", interest_rate=0.05)

    @pytest.mark.parametrize("age", [14, 91])
    def test_age_outside_domain(self, mortality, demographic_tables, charge_table, age):
        calc = ReserveCalculator(mortality, demographic_tables, charge_table)
        with pytest.raises(ValidationError):
            calc.reserve(age, "M")
