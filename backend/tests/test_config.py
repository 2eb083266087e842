"""Tests for backend/revenue_leakage/config.py — RulesConfig validation and overrides."""

import json
from dataclasses import replace

import pytest

from revenue_leakage.config import ConfigError, RulesConfig
from revenue_leakage.pipeline.rule_catalog import RULE_BY_ID


class TestDefaults:

    def test_defaults_validate(self):
        config = RulesConfig().validate()
        assert config.risk_level_thresholds == {"High": 45, "Medium": 20}
        assert config.severity_points == {"High": 20, "Medium": 10, "Low": 5}
        assert config.hotspot_top_n == 127
        assert config.hotspot_persistent_periods == 3

    def test_every_catalog_rule_enabled(self):
        config = RulesConfig()
        assert set(config.enabled_rules) == set(RULE_BY_ID)
        assert all(config.is_enabled(rule_id) for rule_id in RULE_BY_ID)

    def test_unknown_rule_is_disabled(self):
        assert not RulesConfig().is_enabled("R-NOPE-01")

    def test_weight_defaults_to_one(self):
        assert RulesConfig().weight_for("RevenueGap") == 1.0


class TestValidate:

    @pytest.mark.parametrize("overrides,message", [
        ({"category_caps": {"RevenueGap": -1}}, "must be >= 0"),
        ({"category_weights": {"Bogus": 1.0}}, "unknown category"),
        ({"risk_level_thresholds": {"High": 20, "Medium": 45}}, "0 < Medium < High"),
        ({"risk_level_thresholds": {"High": 45, "Medium": 0}}, "0 < Medium < High"),
        ({"challan_delay_days": 10, "challan_delay_high_days": 5}, "challan_delay_high_days"),
        ({"drr_bands": [[0.7, "High"], [0.5, "Critical"]]}, "strictly ascending"),
        ({"hotspot_top_n": 0}, "hotspot_top_n"),
        ({"hotspot_persistent_periods": 1}, "hotspot_persistent_periods"),
        ({"rate_card_z_high": 4.0}, "rate card z thresholds"),
        ({"gap_abs_floor_inr": -1}, "gap_abs_floor_inr"),
    ])
    def test_inconsistent_settings_rejected(self, overrides, message):
        with pytest.raises(ConfigError, match=message):
            RulesConfig.from_dict(overrides)

    def test_unknown_rule_id(self):
        with pytest.raises(ConfigError, match="unknown rule ids"):
            RulesConfig.from_dict({"enabled_rules": {"R-NOPE-01": True}})

    def test_replace_then_validate(self):
        with pytest.raises(ConfigError):
            replace(RulesConfig(), severity_points={"High": 20, "Medium": 10}).validate()

    def test_all_problems_reported_together(self):
        with pytest.raises(ConfigError) as exc:
            RulesConfig.from_dict({"hotspot_top_n": 0, "gap_pct_floor": -5})
        assert "hotspot_top_n" in str(exc.value)
        assert "gap_pct_floor" in str(exc.value)

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)


class TestFromDict:

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown config keys"):
            RulesConfig.from_dict({"risk_thresholds": {}})

    def test_partial_caps_merge_over_defaults(self):
        config = RulesConfig.from_dict({"category_caps": {"RevenueGap": 50}})
        assert config.category_caps["RevenueGap"] == 50
        assert config.category_caps["ChallanDelay"] == 25

    def test_partial_enabled_rules(self):
        config = RulesConfig.from_dict({"enabled_rules": {"R-CHLN-03": False}})
        assert not config.is_enabled("R-CHLN-03")
        assert config.is_enabled("R-CHLN-01")

    def test_floors_can_be_disabled(self):
        config = RulesConfig.from_dict({"gap_abs_floor_inr": None, "gap_pct_floor": None})
        assert config.gap_abs_floor_inr is None
        assert config.gap_pct_floor is None

    def test_drr_bands_become_tuples(self):
        config = RulesConfig.from_dict({"drr_bands": [[0.6, "Critical"], [0.9, "Watch"]]})
        assert config.drr_bands == ((0.6, "Critical"), (0.9, "Watch"))

    def test_config_is_frozen(self):
        config = RulesConfig()
        with pytest.raises(AttributeError):
            config.hotspot_top_n = 5


class TestLoad:

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"mv_deviation_pct": 25, "category_weights": {"HolidayFee": 0.5}}))
        config = RulesConfig.load(path)
        assert config.mv_deviation_pct == 25
        assert config.weight_for("HolidayFee") == 0.5

    def test_load_invalid_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"hotspot_min_transactions": 0}))
        with pytest.raises(ConfigError):
            RulesConfig.load(path)
