"""Rule catalog — single source of truth for all leakage detection rules.

Each rule defines:
  - rule_id / rule_name / severity: identity & default classification
  - confidence: base confidence (0–100) attached to every hit
  - category: leakage signal the rule feeds (``Category`` value)
  - phase: rollout phase the rule shipped in
  - enabled: default switch (overridable via ``RulesConfig.enabled_rules``)
  - inputs: case fields the rule reads
  - description: what the rule detects, shown in the rules screen

The evaluator uses ``partition_rules()`` to split the catalog into
**enabled** (evaluated) and **disabled** (skipped) rules under a config.
"""

from __future__ import annotations
from typing import Any

# ───────────────────────────────────────────────────────
# Rule definitions, grouped by category
# ───────────────────────────────────────────────────────

REVENUE_GAP_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-PAY-01",
        "rule_name": "Paid Less Than Payable",
        "category": "RevenueGap",
        "severity": "High",
        "confidence": 90,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["SD_PAYABLE", "TD_PAYABLE", "RF_PAYABLE", "DSD_PAYABLE", "OTHER_FEE", "receipts.amount"],
        "description": (
            "Sum of accepted receipts is below the payable total and the gap "
            "crosses the absolute or percentage materiality floor."
        ),
    },
    {
        "rule_id": "R-PAY-02",
        "rule_name": "Zero Payment Against Payable",
        "category": "RevenueGap",
        "severity": "High",
        "confidence": 95,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["SD_PAYABLE", "TD_PAYABLE", "RF_PAYABLE", "DSD_PAYABLE", "OTHER_FEE", "receipts"],
        "description": "No accepted payment recorded although duties and fees are payable.",
    },
    {
        "rule_id": "R-PAY-03",
        "rule_name": "Multi-Receipt Shortfall",
        "category": "RevenueGap",
        "severity": "Medium",
        "confidence": 80,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["receipts.amount", "receipts.acc_canc"],
        "description": "Several accepted receipts exist but together they still fall short of payable.",
    },
    {
        "rule_id": "R-PAY-04",
        "rule_name": "Excluded Receipts Contributing to Gap",
        "category": "RevenueGap",
        "severity": "Medium",
        "confidence": 70,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["receipts.acc_canc", "receipts.amount"],
        "description": (
            "Cancelled or reversed receipts (ACC_CANC ≠ 'A') would have covered part "
            "of the gap; they are never counted as payment."
        ),
    },
]

CHALLAN_DELAY_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-CHLN-01",
        "rule_name": "Challan Delay Exceeds Threshold",
        "category": "ChallanDelay",
        "severity": "Medium",
        "confidence": 85,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["receipts.receipt_date", "receipts.challan_date", "receipts.entry_date"],
        "description": (
            "Days between challan date and receipt date exceed the configured delay; "
            "escalates to High beyond the wide delay band."
        ),
    },
    {
        "rule_id": "R-CHLN-02",
        "rule_name": "Challan Date Missing",
        "category": "ChallanDelay",
        "severity": "Low",
        "confidence": 75,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["receipts.challan_no", "receipts.challan_date"],
        "description": "A challan number is recorded without any challan or entry date.",
    },
    {
        "rule_id": "R-CHLN-03",
        "rule_name": "Registration Delay After Presentation",
        "category": "ChallanDelay",
        "severity": "Low",
        "confidence": 70,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["P_DATE", "R_DATE"],
        "description": (
            "Registration happened long after presentation (P_DATE → R_DATE); "
            "escalates to Medium beyond the wide delay band."
        ),
    },
]

PROHIBITED_LAND_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-PROB-01",
        "rule_name": "Prohibited Land Match (Rural)",
        "category": "ProhibitedLand",
        "severity": "High",
        "confidence": 85,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["is_urban", "VILLAGE_CODE", "SURVEY_NO"],
        "description": "Village + survey number is notified in the prohibited-land registry.",
    },
    {
        "rule_id": "R-PROB-02",
        "rule_name": "Prohibited Land Match (Urban)",
        "category": "ProhibitedLand",
        "severity": "High",
        "confidence": 85,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["is_urban", "WARD_NO", "BLOCK_NO"],
        "description": "Ward + block is notified in the prohibited-land registry.",
    },
]

MARKET_VALUE_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-MV-01",
        "rule_name": "Declared Value Below Expected",
        "category": "MarketValueRisk",
        "severity": "High",
        "confidence": 82,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["declared_value", "UNIT_RATE", "extent"],
        "description": (
            "Declared value is below the rate-card expected value by more than "
            "the deviation floor."
        ),
    },
    {
        "rule_id": "R-MV-02",
        "rule_name": "Unit Rate Drop vs Previous Revision",
        "category": "MarketValueRisk",
        "severity": "Medium",
        "confidence": 75,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["REV_RATE", "PRE_REV_RATE"],
        "description": "The applicable rate-card unit rate fell sharply against its previous revision.",
    },
    {
        "rule_id": "R-MV-03",
        "rule_name": "Unit Rate Below Nearby Median",
        "category": "MarketValueRisk",
        "severity": "Medium",
        "confidence": 72,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["UNIT_RATE", "SRO_CODE", "is_urban"],
        "description": "Unit rate is a small fraction of the office median for the same location type.",
    },
]

EXEMPTION_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-EX-01",
        "rule_name": "Exemption on Ineligible Doc Type",
        "category": "ExemptionRisk",
        "severity": "High",
        "confidence": 88,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["exemptions.code", "exemptions.doc_type_eligible", "TRAN_MAJ_CODE"],
        "description": "Exemption claimed on a document type the exemption policy does not cover.",
    },
    {
        "rule_id": "R-EX-02",
        "rule_name": "Exemption Exceeds Cap",
        "category": "ExemptionRisk",
        "severity": "High",
        "confidence": 90,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["exemptions.amount", "exemptions.cap_amount", "exemptions.cap_exceeded"],
        "description": "Exemption amount is above the policy cap.",
    },
    {
        "rule_id": "R-EX-03",
        "rule_name": "Repeat Exemption Usage",
        "category": "ExemptionRisk",
        "severity": "Medium",
        "confidence": 78,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["exemptions.code", "parties.PAN_NO"],
        "description": (
            "Same party PAN used the same exemption code on more documents than "
            "the repeat-usage threshold (cross-case index)."
        ),
    },
    {
        "rule_id": "R-EX-04",
        "rule_name": "Multiple Exemptions on Single Case",
        "category": "ExemptionRisk",
        "severity": "Medium",
        "confidence": 72,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["exemptions"],
        "description": "More than one exemption claimed on one registration.",
    },
]

HOLIDAY_FEE_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-COMP-05",
        "rule_name": "Holiday Registration Missing Fee",
        "category": "HolidayFee",
        "severity": "Medium",
        "confidence": 68,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["holiday_registration", "receipts"],
        "description": "Registered on a holiday but the additional fee is not covered by payments.",
    },
]

DATA_INTEGRITY_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "R-DATA-01",
        "rule_name": "Missing Schedule Data",
        "category": "DataIntegrity",
        "severity": "Medium",
        "confidence": 70,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["property_summary"],
        "description": "No property schedule for this registration.",
    },
    {
        "rule_id": "R-DATA-02",
        "rule_name": "Missing Party Records",
        "category": "DataIntegrity",
        "severity": "Medium",
        "confidence": 70,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["parties"],
        "description": "No buyer / seller party records.",
    },
    {
        "rule_id": "R-DATA-03",
        "rule_name": "Rate Card Entry Missing",
        "category": "DataIntegrity",
        "severity": "Low",
        "confidence": 60,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["SR_CODE", "location_key"],
        "description": "No rate-card entry for the property location; market value cannot be checked.",
    },
    {
        "rule_id": "R-DATA-04",
        "rule_name": "Payable Breakdown Incomplete",
        "category": "DataIntegrity",
        "severity": "Medium",
        "confidence": 65,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["SD_PAYABLE", "TD_PAYABLE", "RF_PAYABLE", "DSD_PAYABLE", "OTHER_FEE"],
        "description": "One or more payable components are absent; payable total may be understated.",
    },
    {
        "rule_id": "R-DATA-05",
        "rule_name": "Inconsistent Payment Evidence",
        "category": "DataIntegrity",
        "severity": "Medium",
        "confidence": 80,
        "phase": "Phase 1",
        "enabled": True,
        "inputs": ["receipts.amount", "receipts.acc_canc", "payable_total_inr"],
        "description": (
            "Negative amounts, unknown receipt status codes, or a reported payable "
            "total that does not equal the sum of its components."
        ),
    },
    {
        "rule_id": "R-DATA-06",
        "rule_name": "Property Identifiers Missing",
        "category": "DataIntegrity",
        "severity": "Low",
        "confidence": 60,
        "phase": "Phase 2 Enhanced",
        "enabled": True,
        "inputs": ["VILLAGE_CODE", "SURVEY_NO", "WARD_NO", "BLOCK_NO"],
        "description": "Property schedule lacks the identifiers needed for registry and rate-card lookups.",
    },
]

# ───────────────────────────────────────────────────────
# All rules indexed by category
# ───────────────────────────────────────────────────────

ALL_RULE_DEFS: dict[str, list[dict[str, Any]]] = {
    "RevenueGap": REVENUE_GAP_RULES,
    "ChallanDelay": CHALLAN_DELAY_RULES,
    "ProhibitedLand": PROHIBITED_LAND_RULES,
    "MarketValueRisk": MARKET_VALUE_RULES,
    "ExemptionRisk": EXEMPTION_RULES,
    "HolidayFee": HOLIDAY_FEE_RULES,
    "DataIntegrity": DATA_INTEGRITY_RULES,
}

# Flat list for quick lookup
ALL_RULES_FLAT: list[dict[str, Any]] = [
    r for rules in ALL_RULE_DEFS.values() for r in rules
]

# rule_id → rule def
RULE_BY_ID: dict[str, dict[str, Any]] = {
    r["rule_id"]: r for r in ALL_RULES_FLAT
}


# ───────────────────────────────────────────────────────
# Partition logic
# ───────────────────────────────────────────────────────

def partition_rules(config) -> tuple[list[dict], list[dict]]:
    """Split the catalog into enabled and disabled rules.

    Args:
        config: ``RulesConfig`` whose ``enabled_rules`` map decides each switch.

    Returns:
        (enabled, disabled), both in catalog order.
    """
    enabled: list[dict] = []
    disabled: list[dict] = []
    for rule in ALL_RULES_FLAT:
        (enabled if config.is_enabled(rule["rule_id"]) else disabled).append(rule)
    return enabled, disabled


def build_rule_roster(config) -> list[dict[str, Any]]:
    """Catalog rows with the effective enabled flag, for the rules screen."""
    return [
        {
            "rule_id": r["rule_id"],
            "rule_name": r["rule_name"],
            "category": r["category"],
            "severity": r["severity"],
            "confidence": r["confidence"],
            "phase": r["phase"],
            "inputs": list(r["inputs"]),
            "description": r["description"],
            "enabled": config.is_enabled(r["rule_id"]),
        }
        for r in ALL_RULES_FLAT
    ]
