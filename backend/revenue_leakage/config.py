"""Application configuration."""

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")

# Reference data bundle (rate cards, prohibited land, exemption policy) used by the API
REFERENCE_DATA_PATH = os.getenv("REFERENCE_DATA_PATH", "")
# Optional JSON overrides for RulesConfig
RULES_CONFIG_PATH = os.getenv("RULES_CONFIG_PATH", "")

# Concurrency
BATCH_MAX_WORKERS = int(os.getenv("BATCH_MAX_WORKERS", "4"))  # Thread pool size for batch case evaluation

# Debug trace mode: set RLE_TRACE=1 to get detailed rule engine logs
TRACE_ENABLED = os.getenv("RLE_TRACE", "").strip().lower() in ("1", "true", "yes")

# Only CASH_DET rows with ACC_CANC = 'A' count as payment evidence (locked rule)
VALID_RECEIPT_STATUS = "A"
RECEIPT_STATUS_LABELS = {
    "A": "Accepted",
    "C": "Cancelled",
    "R": "Reversed",
}

# ── Detection thresholds (env-overridable) ──
GAP_ABS_FLOOR_INR = float(os.getenv("GAP_ABS_FLOOR_INR", "10000"))     # ₹ gap that is always material
GAP_PCT_FLOOR = float(os.getenv("GAP_PCT_FLOOR", "5"))                 # gap as % of payable
CHALLAN_DELAY_DAYS = int(os.getenv("CHALLAN_DELAY_DAYS", "7"))         # receipt date − challan date
CHALLAN_DELAY_HIGH_DAYS = int(os.getenv("CHALLAN_DELAY_HIGH_DAYS", "30"))
PRESENTATION_DELAY_DAYS = int(os.getenv("PRESENTATION_DELAY_DAYS", "7"))  # R_DATE − P_DATE
PRESENTATION_DELAY_HIGH_DAYS = int(os.getenv("PRESENTATION_DELAY_HIGH_DAYS", "30"))
MV_DEVIATION_PCT = float(os.getenv("MV_DEVIATION_PCT", "15"))          # declared below expected by more than this
UNIT_RATE_DROP_PCT = float(os.getenv("UNIT_RATE_DROP_PCT", "20"))      # rate card revision drop
NEARBY_MEDIAN_RATIO_PCT = float(os.getenv("NEARBY_MEDIAN_RATIO_PCT", "50"))
EXEMPTION_REPEAT_THRESHOLD = int(os.getenv("EXEMPTION_REPEAT_THRESHOLD", "2"))

# ── Risk scoring ──
SEVERITY_POINTS = {"High": 20, "Medium": 10, "Low": 5}

# Max score per leakage category
CATEGORY_CAPS = {
    "RevenueGap": 35,
    "ChallanDelay": 25,
    "ProhibitedLand": 25,
    "MarketValueRisk": 35,
    "ExemptionRisk": 25,
    "HolidayFee": 15,
    "DataIntegrity": 10,
}

# Score >= threshold → level (checked highest first)
RISK_LEVEL_THRESHOLDS = {
    "High": int(os.getenv("RISK_HIGH_THRESHOLD", "45")),
    "Medium": int(os.getenv("RISK_MEDIUM_THRESHOLD", "20")),
}
RISK_SCORE_MAX = 100

CONFIDENCE_TOLERANCE = 10        # aggregate may sit this far below the weakest hit
MISSING_INPUT_PENALTY = 5        # per Data-Integrity hit caused by absent input

# ── MV trend / hotspot mining ──
# Upper bounds (exclusive), ascending; anything at or above the last bound is Normal
DRR_BANDS = (
    (0.50, "Critical"),
    (0.70, "High"),
    (0.85, "Medium"),
    (0.95, "Watch"),
)
HOTSPOT_DRR_THRESHOLD = float(os.getenv("HOTSPOT_DRR_THRESHOLD", "0.85"))
HOTSPOT_MIN_TRANSACTIONS = int(os.getenv("HOTSPOT_MIN_TRANSACTIONS", "5"))
HOTSPOT_MIN_CONSECUTIVE_PERIODS = int(os.getenv("HOTSPOT_MIN_CONSECUTIVE_PERIODS", "2"))
HOTSPOT_TOP_N = int(os.getenv("HOTSPOT_TOP_N", "127"))
HOTSPOT_PERSISTENT_PERIODS = 3    # trailing low quarters that tag a hotspot as persistent

RATE_CARD_Z_HIGH = 2.5
RATE_CARD_Z_CRITICAL = 3.5
DECLARED_DIVERGENCE_FLOOR = 5.0    # percentage points
DECLARED_DIVERGENCE_HIGH = 10.0
OFFICE_DRR_GAP_FLOOR = 0.30
SEASONAL_DELTA_THRESHOLD = -0.15
SEASONAL_MIN_ALERT_MONTHS = 2

# Office tile colours on the MV dashboard, by average DRR (exclusive upper bound)
DRR_TILE_COLOURS = (
    (0.70, "red"),
    (0.85, "orange"),
    (1.00, "yellow"),
)


class ConfigError(ValueError):
    """Raised when a rules configuration is internally inconsistent."""


def _default_enabled() -> dict[str, bool]:
    from revenue_leakage.pipeline.rule_catalog import RULE_BY_ID
    return {rule_id: bool(rule["enabled"]) for rule_id, rule in RULE_BY_ID.items()}


@dataclass(frozen=True)
class RulesConfig:
    """Thresholds, caps and switches consumed by the rule engine.

    Every threshold a rule body uses lives here; rule functions never
    hardcode their own floors.
    """
    enabled_rules: dict[str, bool] = field(default_factory=_default_enabled)
    gap_abs_floor_inr: Optional[float] = GAP_ABS_FLOOR_INR
    gap_pct_floor: Optional[float] = GAP_PCT_FLOOR
    challan_delay_days: int = CHALLAN_DELAY_DAYS
    challan_delay_high_days: int = CHALLAN_DELAY_HIGH_DAYS
    presentation_delay_days: int = PRESENTATION_DELAY_DAYS
    presentation_delay_high_days: int = PRESENTATION_DELAY_HIGH_DAYS
    mv_deviation_pct: float = MV_DEVIATION_PCT
    unit_rate_drop_pct: float = UNIT_RATE_DROP_PCT
    nearby_median_ratio_pct: float = NEARBY_MEDIAN_RATIO_PCT
    exemption_repeat_threshold: int = EXEMPTION_REPEAT_THRESHOLD

    severity_points: dict[str, int] = field(default_factory=lambda: dict(SEVERITY_POINTS))
    category_caps: dict[str, float] = field(default_factory=lambda: dict(CATEGORY_CAPS))
    category_weights: dict[str, float] = field(default_factory=dict)  # missing → 1.0
    risk_level_thresholds: dict[str, int] = field(default_factory=lambda: dict(RISK_LEVEL_THRESHOLDS))
    risk_score_max: int = RISK_SCORE_MAX
    confidence_tolerance: int = CONFIDENCE_TOLERANCE
    missing_input_penalty: int = MISSING_INPUT_PENALTY

    drr_bands: tuple = DRR_BANDS
    hotspot_drr_threshold: float = HOTSPOT_DRR_THRESHOLD
    hotspot_min_transactions: int = HOTSPOT_MIN_TRANSACTIONS
    hotspot_min_consecutive_periods: int = HOTSPOT_MIN_CONSECUTIVE_PERIODS
    hotspot_top_n: int = HOTSPOT_TOP_N
    hotspot_persistent_periods: int = HOTSPOT_PERSISTENT_PERIODS
    rate_card_z_high: float = RATE_CARD_Z_HIGH
    rate_card_z_critical: float = RATE_CARD_Z_CRITICAL
    declared_divergence_floor: float = DECLARED_DIVERGENCE_FLOOR
    declared_divergence_high: float = DECLARED_DIVERGENCE_HIGH
    office_drr_gap_floor: float = OFFICE_DRR_GAP_FLOOR
    seasonal_delta_threshold: float = SEASONAL_DELTA_THRESHOLD
    seasonal_min_alert_months: int = SEASONAL_MIN_ALERT_MONTHS

    def is_enabled(self, rule_id: str) -> bool:
        return self.enabled_rules.get(rule_id, False)

    def weight_for(self, category: str) -> float:
        return self.category_weights.get(category, 1.0)

    def validate(self) -> "RulesConfig":
        """Fail fast on inconsistent settings. Returns self for chaining."""
        from revenue_leakage.pipeline.rule_catalog import RULE_BY_ID
        from revenue_leakage.pipeline.models import Category

        problems: list[str] = []

        unknown = sorted(set(self.enabled_rules) - set(RULE_BY_ID))
        if unknown:
            problems.append(f"unknown rule ids in enabled_rules: {unknown}")

        known_categories = {c.value for c in Category}
        for name, mapping in (("category_caps", self.category_caps),
                              ("category_weights", self.category_weights)):
            for cat, value in mapping.items():
                if cat not in known_categories:
                    problems.append(f"{name}: unknown category '{cat}'")
                elif value is None or value < 0:
                    problems.append(f"{name}: '{cat}' must be >= 0 (got {value})")
        missing_caps = known_categories - set(self.category_caps)
        if missing_caps:
            problems.append(f"category_caps missing: {sorted(missing_caps)}")

        for sev in ("High", "Medium", "Low"):
            pts = self.severity_points.get(sev)
            if pts is None or pts < 0:
                problems.append(f"severity_points: '{sev}' must be >= 0 (got {pts})")

        high = self.risk_level_thresholds.get("High")
        medium = self.risk_level_thresholds.get("Medium")
        if high is None or medium is None:
            problems.append("risk_level_thresholds needs both 'High' and 'Medium'")
        elif not (0 < medium < high <= self.risk_score_max):
            problems.append(
                f"risk_level_thresholds must satisfy 0 < Medium < High <= {self.risk_score_max} "
                f"(got Medium={medium}, High={high})"
            )

        for name in ("gap_abs_floor_inr", "gap_pct_floor"):
            value = getattr(self, name)
            if value is not None and value < 0:
                problems.append(f"{name} must be >= 0 or null (got {value})")
        for name in ("challan_delay_days", "presentation_delay_days", "mv_deviation_pct",
                     "unit_rate_drop_pct", "nearby_median_ratio_pct",
                     "exemption_repeat_threshold", "confidence_tolerance",
                     "missing_input_penalty", "declared_divergence_floor",
                     "office_drr_gap_floor", "seasonal_min_alert_months"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must be >= 0 (got {getattr(self, name)})")
        if self.challan_delay_high_days < self.challan_delay_days:
            problems.append("challan_delay_high_days must be >= challan_delay_days")
        if self.presentation_delay_high_days < self.presentation_delay_days:
            problems.append("presentation_delay_high_days must be >= presentation_delay_days")
        if self.declared_divergence_high < self.declared_divergence_floor:
            problems.append("declared_divergence_high must be >= declared_divergence_floor")
        if not (0 < self.rate_card_z_high < self.rate_card_z_critical):
            problems.append("rate card z thresholds must satisfy 0 < high < critical")

        bounds = [b for b, _ in self.drr_bands]
        if not bounds or any(b2 <= b1 for b1, b2 in zip(bounds, bounds[1:])) or bounds[0] <= 0:
            problems.append(f"drr_bands must be strictly ascending positive bounds (got {bounds})")
        if self.hotspot_drr_threshold <= 0:
            problems.append("hotspot_drr_threshold must be > 0")
        if self.hotspot_min_transactions < 1 or self.hotspot_min_consecutive_periods < 1:
            problems.append("hotspot minimum transactions / periods must be >= 1")
        if self.hotspot_top_n < 1:
            problems.append("hotspot_top_n must be >= 1")
        if self.hotspot_persistent_periods < self.hotspot_min_consecutive_periods:
            problems.append("hotspot_persistent_periods must be >= hotspot_min_consecutive_periods")

        if problems:
            raise ConfigError("Invalid rules configuration: " + "; ".join(problems))
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RulesConfig":
        """Build a config from overrides; unknown keys are rejected."""
        base = cls()
        allowed = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")

        overrides: dict[str, Any] = {}
        for key, value in data.items():
            current = getattr(base, key)
            if key == "drr_bands":
                overrides[key] = tuple((float(b), str(label)) for b, label in value)
            elif isinstance(current, dict) and isinstance(value, dict):
                # Partial maps merge over defaults
                overrides[key] = {**current, **value}
            else:
                overrides[key] = value
        return replace(base, **overrides).validate()

    @classmethod
    def load(cls, path: str | Path) -> "RulesConfig":
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def get_rules_config() -> RulesConfig:
    """Return the process-wide rules config (defaults + optional JSON overrides)."""
    if RULES_CONFIG_PATH:
        return RulesConfig.load(RULES_CONFIG_PATH)
    return RulesConfig().validate()
