"""
tests/test_mortality.py - Mortality and Annuity Tests

Author: Actuarial Pipeline Project
License: MIT
"""

import numpy as np
import pandas as pd
import pytest

from survivor_reserve.exceptions import DataAvailabilityError, ValidationError
from survivor_reserve.mortality import (
    MortalityCalculator,
    MortalityTable,
    Sex,
    annuity_due_vector,
    available_tables,
    gompertz_makeham_table,
    life_expectancy,
    load_mortality_table,
    temporary_annuity_due,
    temporary_annuity_vector,
    whole_life_annuity_due,
)


def step_table(death_age: int, omega: int = 110) -> MortalityTable:
    """No deaths before `death_age`, certain death at `death_age`."""
    qx = np.zeros(omega + 1)
    qx[death_age:] = 1.0
    return MortalityTable(name="step", sex=Sex.MALE, qx=qx)


class TestSex:

    @pytest.mark.parametrize("raw,expected", [
        ("M", Sex.MALE), ("male", Sex.MALE), ("Masculino", Sex.MALE),
        ("F", Sex.FEMALE), ("FEMALE", Sex.FEMALE), ("Feminino", Sex.FEMALE),
    ])
    def test_parse_labels(self, raw, expected):
        assert Sex.parse(raw) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValidationError):
            Sex.parse("X")

    def test_opposite(self):
        assert Sex.MALE.opposite is Sex.FEMALE
        assert Sex.FEMALE.opposite is Sex.MALE


class TestMortalityTable:

    def test_table_is_read_only(self):
        table = gompertz_makeham_table(Sex.MALE)
        with pytest.raises(ValueError):
            table.qx[50] = 0.5

    def test_rates_outside_unit_interval_rejected(self):
        with pytest.raises(ValidationError):
            MortalityTable(name="bad", sex=Sex.MALE, qx=np.array([0.1, 1.5, 1.0]))

    def test_q_is_one_at_omega(self):
        table = gompertz_makeham_table(Sex.FEMALE)
        assert table.q(table.omega) == 1.0

    def test_gompertz_is_non_decreasing(self):
        for sex in Sex:
            table = gompertz_makeham_table(sex)
            assert np.all(np.diff(table.qx) >= 0), f"{sex.value} table not monotone"

    def test_tpx_matches_product(self):
        table = gompertz_makeham_table(Sex.MALE)
        expected = np.prod(1.0 - table.qx[60:70])
        assert table.tpx(60, 10) == pytest.approx(expected)
        assert table.tpx(60, 0) == 1.0

    def test_from_frame_requires_contiguous_ages(self):
        df = pd.DataFrame({"age": [0, 1, 3], "qx": [0.01, 0.02, 1.0]})
        with pytest.raises(ValidationError):
            MortalityTable.from_frame(df, "M")

    def test_from_frame(self):
        df = pd.DataFrame({"age": [2, 0, 1], "qx": [1.0, 0.01, 0.02]})
        table = MortalityTable.from_frame(df, "F", name="tiny")
        np.testing.assert_allclose(table.qx, [0.01, 0.02, 1.0])
        assert table.omega == 2
        assert table.sex is Sex.FEMALE


class TestBuiltInTables:

    def test_available(self):
        assert "pub2010_general_retiree" in available_tables()
        assert "gompertz_makeham" in available_tables()

    def test_pub2010_omega(self):
        for sex in Sex:
            table = load_mortality_table("pub2010_general_retiree", sex)
            assert table.omega == 110
            assert table.q(110) == 1.0

    def test_tables_are_memoised(self):
        first = load_mortality_table("pub2010_general_retiree", "M")
        second = load_mortality_table("Pub2010 General Retiree", Sex.MALE)
        assert first is second

    def test_unknown_table(self):
        with pytest.raises(DataAvailabilityError):
            load_mortality_table("no_such_table", "M")


class TestAnnuities:
    """Annuity-due identities on simple and monotone tables."""

    def test_certain_annuity_on_step_table(self):
        """Death certain during age 70: payments at 65 through 70, five full years lived."""
        table = step_table(70)
        rate = 0.05
        v = 1.0 / 1.05
        expected = sum(v ** t for t in range(6))  # payments at 65..70, death during 70
        assert whole_life_annuity_due(table, 65, rate) == pytest.approx(expected)
        assert life_expectancy(table, 65) == pytest.approx(5.0)

    def test_annuity_at_omega_is_one(self):
        table = gompertz_makeham_table(Sex.MALE)
        assert whole_life_annuity_due(table, table.omega, 0.06) == pytest.approx(1.0)
        assert life_expectancy(table, table.omega) == 0.0

    def test_decreasing_in_age(self):
        table = gompertz_makeham_table(Sex.MALE)
        values = [whole_life_annuity_due(table, x, 0.06) for x in range(20, 111, 5)]
        assert all(a >= b for a, b in zip(values, values[1:])), \
            "ä_x must be non-increasing in age for a non-decreasing table"

    def test_decreasing_in_rate(self):
        table = gompertz_makeham_table(Sex.FEMALE)
        values = [whole_life_annuity_due(table, 60, r) for r in (0.02, 0.04, 0.06, 0.08)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_temporary_not_above_whole_life(self):
        table = gompertz_makeham_table(Sex.MALE)
        for age in (0, 10, 40, 80, 105):
            for years in (0, 1, 5, 24, 200):
                assert temporary_annuity_due(table, age, years, 0.06) <= \
                    whole_life_annuity_due(table, age, 0.06) + 1e-12

    def test_temporary_zero_term(self):
        table = gompertz_makeham_table(Sex.MALE)
        assert temporary_annuity_due(table, 10, 0, 0.06) == 0.0

    def test_temporary_long_term_equals_whole_life(self):
        table = gompertz_makeham_table(Sex.MALE)
        assert temporary_annuity_due(table, 50, 500, 0.06) == \
            pytest.approx(whole_life_annuity_due(table, 50, 0.06))

    def test_negative_term_rejected(self):
        table = gompertz_makeham_table(Sex.MALE)
        with pytest.raises(ValidationError):
            temporary_annuity_due(table, 10, -1, 0.06)

    @pytest.mark.parametrize("rate", [0.0, -0.01, 1.0, 1.5])
    def test_rate_outside_open_interval_rejected(self, rate):
        table = gompertz_makeham_table(Sex.MALE)
        with pytest.raises(ValidationError):
            whole_life_annuity_due(table, 60, rate)

    @pytest.mark.parametrize("age", [-1, 111, 60.5])
    def test_age_outside_table_rejected(self, age):
        table = gompertz_makeham_table(Sex.MALE)
        with pytest.raises(ValidationError):
            whole_life_annuity_due(table, age, 0.06)


class TestVectorForms:

    def test_annuity_vector_matches_scalar(self):
        table = load_mortality_table("pub2010_general_retiree", "F")
        vector = annuity_due_vector(table, 0.05)
        for age in (0, 30, 65, 100, 110):
            assert vector[age] == pytest.approx(whole_life_annuity_due(table, age, 0.05))

    def test_temporary_vector_matches_scalar(self):
        table = gompertz_makeham_table(Sex.MALE)
        ages = np.array([0, 5, 5, 23])
        years = 24 - ages
        result = temporary_annuity_vector(table, ages, years, 0.06)
        expected = [temporary_annuity_due(table, a, n, 0.06) for a, n in zip(ages, years)]
        np.testing.assert_allclose(result, expected)


class TestMortalityCalculator:

    def test_requires_both_sexes(self):
        with pytest.raises(DataAvailabilityError):
            MortalityCalculator({Sex.MALE: gompertz_makeham_table(Sex.MALE)})

    def test_rejects_mislabelled_table(self):
        with pytest.raises(ValidationError):
            MortalityCalculator({
                Sex.MALE: gompertz_makeham_table(Sex.FEMALE),
                Sex.FEMALE: gompertz_makeham_table(Sex.FEMALE),
            })

    def test_female_annuity_exceeds_male(self, mortality):
        assert mortality.annuity_due(65, "F", 0.06) > mortality.annuity_due(65, "M", 0.06)
        assert mortality.life_expectancy(65, "F") > mortality.life_expectancy(65, "M")
