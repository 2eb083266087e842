"""Signal aggregator — collapses rule hits into a scored evaluation result.

The aggregation is pure and order-independent: hits are sorted into a
canonical order before any summation, so shuffling the input produces an
identical result, and running it twice gives the same answer.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence

from revenue_leakage.config import RulesConfig
from revenue_leakage.pipeline.confidence import combine_confidence
from revenue_leakage.pipeline.models import (
    CATEGORY_ORDER,
    Case,
    Category,
    Office,
    PaymentLedger,
    RiskLevel,
    RuleEvaluationResult,
    RuleHit,
)
from revenue_leakage.pipeline.reference import ExemptionUsageIndex, ReferenceData
from revenue_leakage.pipeline.rules import build_ledger, evaluate_with_errors

logger = logging.getLogger(__name__)


def risk_level_for(score: int, config: RulesConfig) -> RiskLevel:
    """Map a 0–100 score to a level. Thresholds are inclusive lower bounds."""
    if score >= config.risk_level_thresholds["High"]:
        return RiskLevel.HIGH
    if score >= config.risk_level_thresholds["Medium"]:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def category_contributions(hits: Sequence[RuleHit], config: RulesConfig) -> dict[Category, float]:
    """Per-category score: weight × Σ severity points, capped per category."""
    points: dict[Category, list[float]] = defaultdict(list)
    for hit in hits:
        points[hit.category].append(float(config.severity_points.get(hit.severity.value, 0)))
    contributions: dict[Category, float] = {}
    for category in sorted(points, key=CATEGORY_ORDER.__getitem__):
        raw = config.weight_for(category.value) * math.fsum(points[category])
        contributions[category] = min(raw, float(config.category_caps.get(category.value, 0)))
    return contributions


def aggregate(
    hits: Iterable[RuleHit],
    config: RulesConfig,
    ledger: Optional[PaymentLedger] = None,
    document: Optional[str] = None,
    *,
    office_code: str = "",
    rule_errors: Iterable[str] = (),
) -> RuleEvaluationResult:
    """Build the evaluation result for one case from its rule hits."""
    ordered = tuple(sorted(hits, key=lambda h: h.sort_key()))

    signals = tuple(sorted({h.category for h in ordered}, key=CATEGORY_ORDER.__getitem__))
    contributions = category_contributions(ordered, config)
    score = min(config.risk_score_max, round(math.fsum(contributions.values())))

    return RuleEvaluationResult(
        triggered_rules=ordered,
        leakage_signals=signals,
        risk_score=int(score),
        risk_level=risk_level_for(score, config),
        confidence=combine_confidence(ordered, config),
        impact_amount_inr=math.fsum(h.impact_inr for h in ordered),
        gap_inr=ledger.gap if ledger is not None else 0.0,
        payable_total_inr=ledger.payable_total if ledger is not None else 0.0,
        paid_total_inr=ledger.paid_total if ledger is not None else 0.0,
        category_scores={c.value: round(v, 2) for c, v in contributions.items()},
        rule_errors=tuple(sorted(set(rule_errors))),
        document=document or "",
        office_code=office_code,
    )


def evaluate_case(
    case: Case,
    reference: ReferenceData,
    config: RulesConfig,
    usage_index: Optional[ExemptionUsageIndex] = None,
) -> RuleEvaluationResult:
    """Evaluate all enabled rules for ``case`` and aggregate the hits."""
    ledger = build_ledger(case)
    hits, errors = evaluate_with_errors(case, reference, config, usage_index, ledger=ledger)
    result = aggregate(
        hits, config, ledger, case.document_key.label,
        office_code=case.office.sr_code or case.document_key.sr_code,
        rule_errors=errors,
    )
    logger.debug(f"Case {result.document}: score={result.risk_score} level={result.risk_level.value} "
                 f"hits={len(result.triggered_rules)} errors={len(result.rule_errors)}")
    return result


# ═══════════════════════════════════════════════════
# OFFICE ROLLUP
# ═══════════════════════════════════════════════════

_COMPONENT_CATEGORIES = {
    "revenue_gap": Category.REVENUE_GAP,
    "challan_delay": Category.CHALLAN_DELAY,
    "prohibited_match": Category.PROHIBITED_LAND,
    "mv_deviation": Category.MARKET_VALUE,
    "exemption_anomaly": Category.EXEMPTION,
}


def summarise_offices(
    results: Iterable[RuleEvaluationResult],
    config: Optional[RulesConfig] = None,
    offices: Optional[Mapping[str, Office]] = None,
) -> list[dict]:
    """Roll case results up into one risk row per office.

    Component scores and the office risk score are means over the office's
    cases; the office level uses the same thresholds as a single case.
    Rows are ordered by risk score (highest first), then office code.
    """
    config = config or RulesConfig()
    offices = offices or {}
    grouped: dict[str, list[RuleEvaluationResult]] = defaultdict(list)
    for result in results:
        grouped[result.office_code].append(result)

    rows = []
    for code, items in grouped.items():
        n = len(items)
        components = {
            name: round(math.fsum(r.category_scores.get(cat.value, 0.0) for r in items) / n, 2)
            for name, cat in _COMPONENT_CATEGORIES.items()
        }
        mean_score = round(math.fsum(r.risk_score for r in items) / n, 2)
        office = offices.get(code) or Office(sr_code=code)
        rows.append({
            "SR_CODE": code,
            "SR_NAME": office.sr_name,
            "district": office.district,
            "zone": office.zone,
            "risk_score": mean_score,
            "risk_level": risk_level_for(round(mean_score), config).value,
            "component_scores": components,
            "total_cases": n,
            "high_risk_cases": sum(1 for r in items if r.risk_level is RiskLevel.HIGH),
            "total_gap_inr": math.fsum(r.gap_inr for r in items),
        })
    rows.sort(key=lambda r: (-r["risk_score"], r["SR_CODE"]))
    return rows
