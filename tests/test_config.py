"""
tests/test_config.py - Configuration Tests

Author: Actuarial Pipeline Project
License: MIT
"""

import json

import pydantic
import pytest

from survivor_reserve.config import (
    LookupPolicy,
    SamplerConfig,
    SmoothingConfig,
    ValuationConfig,
    load_config,
)
from survivor_reserve.exceptions import ValidationError


class TestDefaults:

    def test_valuation_defaults(self):
        config = ValuationConfig()
        assert config.interest_rate == 0.06
        assert config.n_samples == 10_000
        assert config.seed == 42
        assert config.lookup_policy is LookupPolicy.LENIENT
        assert config.sensitivity_rates == [0.04, 0.05, 0.06, 0.07, 0.08]

    def test_smoothing_defaults(self):
        config = SmoothingConfig()
        assert (config.window, config.anchor_weight, config.n_iterations) == (5, 0.3, 3)
        assert (config.n_min, config.k_fallback, config.sd_floor) == (30, 50.0, 0.5)

    def test_sampler_defaults(self):
        config = SamplerConfig()
        assert config.t_df == 5.0
        assert config.spouse_age_bounds == (15.0, 100.0)
        assert config.child_age_bounds == (0.0, 24.0)


class TestConstraints:

    @pytest.mark.parametrize("rate", [0.0, 1.0, -0.02])
    def test_interest_rate_range(self, rate):
        with pytest.raises(pydantic.ValidationError):
            ValuationConfig(interest_rate=rate)

    def test_even_window_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SmoothingConfig(window=4)

    def test_grid_outside_domain(self):
        with pytest.raises(pydantic.ValidationError):
            ValuationConfig(min_age=10)

    def test_reversed_bounds(self):
        with pytest.raises(pydantic.ValidationError):
            SamplerConfig(child_age_bounds=(24.0, 0.0))

    def test_frozen(self):
        config = ValuationConfig()
        with pytest.raises(pydantic.ValidationError):
            config.interest_rate = 0.05


class TestLoadConfig:

    def test_partial_file(self, tmp_path):
        path = tmp_path / "valuation.json"
        path.write_text(json.dumps({"interest_rate": 0.05, "smoothing": {"window": 7},
                                    "lookup_policy": "strict"}))
        config = load_config(path)
        assert config.interest_rate == 0.05
        assert config.smoothing.window == 7
        assert config.smoothing.anchor_weight == 0.3
        assert config.lookup_policy is LookupPolicy.STRICT

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "valuation.json"
        path.write_text(json.dumps({"n_samples": 0}))
        with pytest.raises(ValidationError, match="valuation.json"):
            load_config(path)
