"""Tests for backend/revenue_leakage/pipeline/rule_catalog.py — catalog integrity & partitioning."""

import pytest

from revenue_leakage.config import RulesConfig
from revenue_leakage.pipeline.models import Category, Severity
from revenue_leakage.pipeline.rule_catalog import (
    ALL_RULE_DEFS,
    ALL_RULES_FLAT,
    RULE_BY_ID,
    build_rule_roster,
    partition_rules,
)
from revenue_leakage.pipeline.rules import RULE_FUNCTIONS

REQUIRED_KEYS = {"rule_id", "rule_name", "category", "severity", "confidence",
                 "phase", "enabled", "inputs", "description"}


class TestCatalogIntegrity:

    def test_every_rule_has_required_keys(self):
        for rule in ALL_RULES_FLAT:
            missing = REQUIRED_KEYS - set(rule)
            assert not missing, f"{rule.get('rule_id')} missing {missing}"

    def test_rule_ids_unique(self):
        ids = [r["rule_id"] for r in ALL_RULES_FLAT]
        assert len(ids) == len(set(ids))
        assert len(RULE_BY_ID) == len(ids)

    def test_every_rule_has_an_implementation(self):
        assert set(RULE_FUNCTIONS) == set(RULE_BY_ID)

    def test_groups_match_category(self):
        for category, rules in ALL_RULE_DEFS.items():
            assert {r["category"] for r in rules} == {category}

    def test_categories_and_severities_are_enum_values(self):
        for rule in ALL_RULES_FLAT:
            Category(rule["category"])
            Severity(rule["severity"])

    def test_confidence_in_range(self):
        for rule in ALL_RULES_FLAT:
            assert 0 <= rule["confidence"] <= 100

    def test_every_category_has_rules(self):
        assert set(ALL_RULE_DEFS) == {c.value for c in Category}

    @pytest.mark.parametrize("rule_id,severity", [
        ("R-PAY-01", "High"),
        ("R-PAY-04", "Medium"),
        ("R-CHLN-02", "Low"),
        ("R-PROB-02", "High"),
        ("R-COMP-05", "Medium"),
        ("R-DATA-03", "Low"),
    ])
    def test_default_severity(self, rule_id, severity):
        assert RULE_BY_ID[rule_id]["severity"] == severity


class TestPartitionRules:

    def test_defaults_all_enabled(self):
        enabled, disabled = partition_rules(RulesConfig())
        assert len(enabled) == len(ALL_RULES_FLAT)
        assert disabled == []

    def test_disabled_rule_moves_to_disabled(self):
        config = RulesConfig.from_dict({"enabled_rules": {"R-MV-02": False, "R-EX-04": False}})
        enabled, disabled = partition_rules(config)
        assert [r["rule_id"] for r in disabled] == ["R-MV-02", "R-EX-04"]
        assert "R-MV-02" not in {r["rule_id"] for r in enabled}

    def test_catalog_order_preserved(self):
        enabled, _ = partition_rules(RulesConfig())
        assert [r["rule_id"] for r in enabled] == [r["rule_id"] for r in ALL_RULES_FLAT]


class TestRuleRoster:

    def test_roster_reflects_config(self):
        config = RulesConfig.from_dict({"enabled_rules": {"R-PAY-03": False}})
        roster = {row["rule_id"]: row for row in build_rule_roster(config)}
        assert roster["R-PAY-03"]["enabled"] is False
        assert roster["R-PAY-01"]["enabled"] is True
        assert roster["R-PAY-01"]["category"] == "RevenueGap"

    def test_roster_rows_are_copies(self):
        row = build_rule_roster(RulesConfig())[0]
        row["inputs"].append("X")
        assert "X" not in RULE_BY_ID[row["rule_id"]]["inputs"]
