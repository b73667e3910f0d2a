"""
tests/test_sampler.py - Monte Carlo Beneficiary Sampler Tests

Author: Actuarial Pipeline Project
License: MIT
"""

import numpy as np
import pytest

from survivor_reserve.config import SamplerConfig
from survivor_reserve.exceptions import ValidationError
from survivor_reserve.sampler import (
    BeneficiaryBatch,
    BeneficiarySample,
    BeneficiarySampler,
    SamplerDiagnostics,
)


@pytest.fixture(scope="module")
def sampler(demographic_tables):
    return BeneficiarySampler(demographic_tables)


def assert_batches_equal(a: BeneficiaryBatch, b: BeneficiaryBatch):
    np.testing.assert_array_equal(a.married, b.married)
    np.testing.assert_array_equal(a.spouse_age, b.spouse_age)
    np.testing.assert_array_equal(a.has_child, b.has_child)
    np.testing.assert_array_equal(a.num_children, b.num_children)
    np.testing.assert_array_equal(a.youngest_child_age, b.youngest_child_age)


class TestSamplerStatistics:

    def test_married_share_matches_table(self, sampler, demographic_tables):
        """Age 60 Male, 10,000 draws: married share within ±2pp of p_married."""
        batch = sampler.sample(60, "Male", 10_000, seed=42)
        expected = demographic_tables.parameters(60, "Male").p_married
        share = batch.summary()["share_married"]
        assert abs(share - expected) < 0.02, \
            f"Married share {share:.4f} vs table {expected:.4f}"

    def test_child_share_matches_table(self, sampler, demographic_tables):
        batch = sampler.sample(40, "Female", 10_000, seed=7)
        expected = demographic_tables.parameters(40, "Female").p_has_child
        assert abs(batch.summary()["share_with_child"] - expected) < 0.02

    def test_mean_spouse_age_follows_gap(self, sampler, demographic_tables):
        params = demographic_tables.parameters(50, "M")
        batch = sampler.sample(50, "M", 10_000, seed=3)
        expected = 50 - params.age_gap_mean
        assert abs(batch.summary()["mean_spouse_age"] - expected) < 0.5


class TestSamplerInvariants:

    def test_presence_rules(self, sampler):
        batch = sampler.sample(35, "F", 5_000, seed=11)
        assert np.all(np.isnan(batch.spouse_age) == ~batch.married)
        assert np.all(np.isnan(batch.youngest_child_age) == ~batch.has_child)
        assert np.all((batch.num_children >= 1) == batch.has_child)

    def test_clamps(self, sampler):
        batch = sampler.sample(20, "M", 5_000, seed=5)
        spouse = batch.spouse_age[batch.married]
        child = batch.youngest_child_age[batch.has_child]
        assert spouse.min() >= 15.0 and spouse.max() <= 100.0
        assert child.min() >= 0.0 and child.max() <= 24.0

    def test_young_member_counts_low_spouse_clamps(self, sampler):
        """At 15 with a positive age gap, many spouses fall below 15 and are clamped."""
        batch = sampler.sample(15, "M", 5_000, seed=5)
        assert batch.diagnostics.spouse_clamped_low > 0
        assert batch.diagnostics.total_clamps >= batch.diagnostics.spouse_clamped_low

    def test_records(self, sampler):
        batch = sampler.sample(45, "M", 50, seed=1)
        records = list(batch)
        assert len(records) == 50
        for record in records:
            assert isinstance(record, BeneficiarySample)
            assert (record.spouse_age is not None) == record.married
            assert (record.youngest_child_age is not None) == record.has_child

    def test_to_frame(self, sampler):
        df = sampler.sample(45, "M", 100, seed=1).to_frame()
        assert list(df.columns) == ["married", "spouse_age", "has_child",
                                    "num_children", "youngest_child_age"]
        assert len(df) == 100


class TestReproducibility:

    def test_same_seed_bit_identical(self, sampler):
        assert_batches_equal(sampler.sample(60, "M", 3_000, seed=42),
                             sampler.sample(60, "M", 3_000, seed=42))

    def test_different_seed_differs(self, sampler):
        a = sampler.sample(60, "M", 3_000, seed=42)
        b = sampler.sample(60, "M", 3_000, seed=43)
        assert not np.array_equal(a.married, b.married)

    def test_independent_of_worker_count(self, demographic_tables):
        serial = BeneficiarySampler(demographic_tables, SamplerConfig(batch_size=500))
        threaded = BeneficiarySampler(demographic_tables,
                                      SamplerConfig(batch_size=500, n_workers=4))
        assert_batches_equal(serial.sample(55, "F", 2_300, seed=9),
                             threaded.sample(55, "F", 2_300, seed=9))

    def test_seed_sequence_not_consumed(self, sampler):
        seed = np.random.SeedSequence(123)
        assert_batches_equal(sampler.sample(50, "M", 1_000, seed=seed),
                             sampler.sample(50, "M", 1_000, seed=seed))

    def test_batches_concatenate(self, demographic_tables):
        sampler = BeneficiarySampler(demographic_tables, SamplerConfig(batch_size=300))
        batch = sampler.sample(50, "M", 1_000, seed=2)
        assert len(batch) == 1_000


class TestValidation:

    @pytest.mark.parametrize("age", [14, 91, 50.5])
    def test_age_outside_domain(self, sampler, age):
        with pytest.raises(ValidationError):
            sampler.sample(age, "M", 10, seed=1)

    def test_tail_age_with_extended_domain(self, sampler):
        batch = sampler.sample(100, "M", 200, seed=1, extend_domain=True)
        assert len(batch) == 200

    @pytest.mark.parametrize("n", [0, -5, 2.5])
    def test_sample_count(self, sampler, n):
        with pytest.raises(ValidationError):
            sampler.sample(60, "M", n, seed=1)

    def test_bad_sex(self, sampler):
        with pytest.raises(ValidationError):
            sampler.sample(60, "Z", 10, seed=1)

    def test_negative_seed(self, sampler):
        with pytest.raises(ValidationError):
            sampler.sample(60, "M", 10, seed=-1)


class TestDiagnostics:

    def test_merge(self):
        a = SamplerDiagnostics(spouse_clamped_low=1, child_clamped_high=2)
        b = SamplerDiagnostics(spouse_clamped_low=3, children_forced_to_one=4)
        merged = a.merge(b)
        assert merged.spouse_clamped_low == 4
        assert merged.child_clamped_high == 2
        assert merged.children_forced_to_one == 4
        assert merged.total_clamps == 6
