"""Rule evaluator — deterministic leakage checks over one registered document.

Every rule is a plain function ``(case, ctx) -> RuleHit | None``.  Rules only
read the case, the shared read-only ``ReferenceData`` and the pre-computed
``PaymentLedger``; they never raise for absent optional data.  Absence is
reported through the Data-Integrity rules with ``missing_input=True``.

``evaluate()`` runs every enabled rule from the catalog, isolating each call
so that one failing rule never aborts the rest.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from revenue_leakage.config import (
    RECEIPT_STATUS_LABELS,
    TRACE_ENABLED,
    VALID_RECEIPT_STATUS,
    RulesConfig,
)
from revenue_leakage.pipeline.models import (
    Calculation,
    Case,
    Category,
    ExcludedReceipt,
    PaymentLedger,
    RuleHit,
    Severity,
)
from revenue_leakage.pipeline.reference import (
    ExemptionUsageIndex,
    RateCardEntry,
    ReferenceData,
)
from revenue_leakage.pipeline.rule_catalog import RULE_BY_ID, partition_rules
from revenue_leakage.pipeline.utils import days_between, format_inr

logger = logging.getLogger(__name__)


def _trace(msg: str):
    """Emit a trace-level debug message when RLE_TRACE is enabled."""
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# 1. PAYMENT LEDGER
# ═══════════════════════════════════════════════════

def build_ledger(case: Case) -> PaymentLedger:
    """Split receipts into paid / excluded and total the payable components.

    Only ACC_CANC = 'A' receipts with a non-negative amount count as
    payment.  Negative amounts are excluded, never netted; R-DATA-05
    reports them.  Missing payable components count as 0 here; R-DATA-04
    reports them.
    """
    included = []
    excluded = []
    for receipt in case.receipts:
        if receipt.acc_canc == VALID_RECEIPT_STATUS:
            if receipt.amount < 0:
                excluded.append(ExcludedReceipt(receipt, "negative amount"))
            else:
                included.append(receipt)
        else:
            label = RECEIPT_STATUS_LABELS.get(receipt.acc_canc, "Unknown status")
            excluded.append(ExcludedReceipt(receipt, f"ACC_CANC={receipt.acc_canc or '?'} ({label})"))
    ledger = PaymentLedger(
        payable_total=case.payable.total,
        paid_total=math.fsum(r.amount for r in included),
        included=tuple(included),
        excluded=tuple(excluded),
    )
    _trace(f"LEDGER [{case.document_key.label}] payable={ledger.payable_total} "
           f"paid={ledger.paid_total} gap={ledger.gap} excluded={len(excluded)}")
    return ledger


@dataclass(frozen=True)
class RuleContext:
    reference: ReferenceData
    config: RulesConfig
    ledger: PaymentLedger
    usage_index: ExemptionUsageIndex


# ═══════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════

def _hit(
    rule_id: str,
    explanation: str,
    *,
    impact: float = 0.0,
    severity: Optional[Severity] = None,
    fields_used: Optional[list[str]] = None,
    calculations: Optional[list[tuple[str, str]]] = None,
    missing_input: bool = False,
) -> RuleHit:
    """Create a RuleHit carrying the catalog identity of ``rule_id``."""
    rule = RULE_BY_ID[rule_id]
    return RuleHit(
        rule_id=rule_id,
        rule_name=rule["rule_name"],
        category=Category(rule["category"]),
        severity=severity or Severity(rule["severity"]),
        impact_inr=float(impact),
        confidence=int(rule["confidence"]),
        explanation=explanation,
        fields_used=tuple(fields_used if fields_used is not None else rule["inputs"]),
        calculations=tuple(Calculation(label, value) for label, value in calculations or []),
        missing_input=missing_input,
    )


def _gap_is_material(gap: float, payable: float, config: RulesConfig) -> bool:
    """Gap ≥ absolute floor OR gap ≥ percent-of-payable floor.

    A floor set to None is disabled; with both disabled any positive gap counts.
    """
    if gap <= 0:
        return False
    abs_floor, pct_floor = config.gap_abs_floor_inr, config.gap_pct_floor
    if abs_floor is None and pct_floor is None:
        return True
    if abs_floor is not None and gap >= abs_floor:
        return True
    if pct_floor is not None and payable > 0 and gap / payable * 100 >= pct_floor:
        return True
    return False


def _gap_calculations(ledger: PaymentLedger) -> list[tuple[str, str]]:
    calcs = [
        ("Payable total", format_inr(ledger.payable_total)),
        ("Paid total (ACC_CANC=A)", format_inr(ledger.paid_total)),
        ("Gap", format_inr(ledger.gap)),
    ]
    if ledger.payable_total > 0:
        calcs.append(("Gap % of payable", f"{ledger.gap / ledger.payable_total * 100:.2f}%"))
    return calcs


def _sro(case: Case) -> str:
    return case.office.sr_code or case.document_key.sr_code


def _rate_card(case: Case, ctx: RuleContext) -> Optional[RateCardEntry]:
    return ctx.reference.rate_card_for(_sro(case), case.schedule)


def _expected_value(case: Case, ctx: RuleContext) -> Optional[float]:
    """Rate card unit rate × extent when both are known, else the supplied value."""
    card = _rate_card(case, ctx)
    prop = case.schedule
    if card is not None and card.unit_rate > 0 and prop is not None and prop.extent:
        return card.unit_rate * prop.extent
    return case.market_value.expected_value


# ═══════════════════════════════════════════════════
# 2. REVENUE GAP RULES
# ═══════════════════════════════════════════════════

def rule_paid_less_than_payable(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PAY-01: partial payment with a material gap."""
    ledger = ctx.ledger
    if ledger.paid_total <= 0 or not _gap_is_material(ledger.gap, ledger.payable_total, ctx.config):
        return None
    return _hit(
        "R-PAY-01",
        f"Paid {format_inr(ledger.paid_total)} against payable {format_inr(ledger.payable_total)}; "
        f"shortfall of {format_inr(ledger.gap)}.",
        impact=ledger.gap,
        calculations=_gap_calculations(ledger),
    )


def rule_zero_payment(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PAY-02: nothing paid although duties are payable."""
    ledger = ctx.ledger
    if ledger.payable_total <= 0 or ledger.paid_total > 0:
        return None
    if not _gap_is_material(ledger.gap, ledger.payable_total, ctx.config):
        return None
    return _hit(
        "R-PAY-02",
        f"No accepted payment recorded against payable {format_inr(ledger.payable_total)}.",
        impact=ledger.payable_total,
        calculations=_gap_calculations(ledger),
    )


def rule_multi_receipt_shortfall(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PAY-03"""
    ledger = ctx.ledger
    if len(ledger.included) <= 1 or not _gap_is_material(ledger.gap, ledger.payable_total, ctx.config):
        return None
    return _hit(
        "R-PAY-03",
        f"{len(ledger.included)} accepted receipts still short of payable by {format_inr(ledger.gap)}.",
        impact=ledger.gap,
        calculations=[("Accepted receipts", str(len(ledger.included)))] + _gap_calculations(ledger),
    )


def rule_excluded_receipts(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PAY-04: cancelled / reversed receipts that would have narrowed the gap."""
    ledger = ctx.ledger
    excluded_total = ledger.excluded_total
    if excluded_total <= 0 or not _gap_is_material(ledger.gap, ledger.payable_total, ctx.config):
        return None
    reasons = sorted({e.reason for e in ledger.excluded})
    return _hit(
        "R-PAY-04",
        f"{len(ledger.excluded)} receipt(s) worth {format_inr(excluded_total)} excluded from payment "
        f"({', '.join(reasons)}); gap remains {format_inr(ledger.gap)}.",
        impact=min(excluded_total, ledger.gap),
        calculations=[("Excluded receipts total", format_inr(excluded_total))] + _gap_calculations(ledger),
    )


# ═══════════════════════════════════════════════════
# 3. CHALLAN / REGISTRATION DELAY RULES
# ═══════════════════════════════════════════════════

def rule_challan_delay(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-CHLN-01: longest challan → receipt delay across accepted receipts."""
    worst: Optional[tuple[int, str]] = None
    for r in ctx.ledger.included:
        delay = days_between(r.challan_date or r.entry_date, r.receipt_date)
        if delay is None:
            continue
        if worst is None or delay > worst[0]:
            worst = (delay, r.receipt_no)
    if worst is None:
        return None
    delay, receipt_no = worst
    cfg = ctx.config
    _trace(f"CHALLAN_DELAY [{case.document_key.label}] max={delay}d threshold={cfg.challan_delay_days}d")
    if delay <= cfg.challan_delay_days:
        return None
    severity = Severity.HIGH if delay > cfg.challan_delay_high_days else Severity.MEDIUM
    return _hit(
        "R-CHLN-01",
        f"Receipt {receipt_no or '(unnumbered)'} was issued {delay} days after the challan "
        f"(threshold {cfg.challan_delay_days} days).",
        severity=severity,
        calculations=[
            ("Max challan delay", f"{delay} days"),
            ("Threshold", f"{cfg.challan_delay_days} days"),
            ("High band", f"> {cfg.challan_delay_high_days} days"),
        ],
    )


def rule_challan_date_missing(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-CHLN-02"""
    undated = [r.challan_no for r in ctx.ledger.included
               if r.challan_no and r.challan_date is None and r.entry_date is None]
    if not undated:
        return None
    return _hit(
        "R-CHLN-02",
        f"Challan(s) {', '.join(sorted(undated))} recorded without a challan or entry date; "
        f"delay cannot be verified.",
        calculations=[("Undated challans", str(len(undated)))],
    )


def rule_registration_delay(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-CHLN-03: presentation → registration delay."""
    delay = days_between(case.dates.presentation, case.dates.registration)
    cfg = ctx.config
    if delay is None or delay <= cfg.presentation_delay_days:
        return None
    severity = Severity.MEDIUM if delay > cfg.presentation_delay_high_days else Severity.LOW
    return _hit(
        "R-CHLN-03",
        f"Registered {delay} days after presentation "
        f"(P_DATE {case.dates.presentation.isoformat()}, R_DATE {case.dates.registration.isoformat()}).",
        severity=severity,
        calculations=[
            ("Presentation → registration", f"{delay} days"),
            ("Threshold", f"{cfg.presentation_delay_days} days"),
        ],
    )


# ═══════════════════════════════════════════════════
# 4. PROHIBITED LAND RULES
# ═══════════════════════════════════════════════════

def _prohibited_codes(case: Case, ctx: RuleContext, urban: bool) -> list[str]:
    prop = case.schedule
    if prop is None or prop.is_urban != urban:
        return []
    level = "Urban" if urban else "Rural"
    codes = {rec.prohib_cd for rec in ctx.reference.prohibited_matches(prop)}
    codes.update(
        m.prohib_cd for m in case.prohibited_matches
        if m.match_level == level and not m.denotified
    )
    return sorted(c for c in codes if c)


def _prohibited_hit(rule_id: str, case: Case, codes: list[str]) -> RuleHit:
    taxable = case.payable.final_taxable_value or 0.0
    return _hit(
        rule_id,
        f"Property {case.schedule.location_key or '(unkeyed)'} matches prohibited-land "
        f"notification(s) {', '.join(codes)}.",
        impact=taxable,
        calculations=[
            ("Matched PROHIB_CD", ", ".join(codes)),
            ("Final taxable value", format_inr(taxable)),
        ],
    )


def rule_prohibited_rural(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PROB-01"""
    codes = _prohibited_codes(case, ctx, urban=False)
    return _prohibited_hit("R-PROB-01", case, codes) if codes else None


def rule_prohibited_urban(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-PROB-02"""
    codes = _prohibited_codes(case, ctx, urban=True)
    return _prohibited_hit("R-PROB-02", case, codes) if codes else None


# ═══════════════════════════════════════════════════
# 5. MARKET VALUE RULES
# ═══════════════════════════════════════════════════

def rule_declared_below_expected(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-MV-01: declared value under-reports the rate-card expectation."""
    declared = case.market_value.declared_value
    expected = _expected_value(case, ctx)
    if declared is None or expected is None or expected <= 0:
        return None
    deviation = (expected - declared) / expected * 100
    _trace(f"MV_DEVIATION [{case.document_key.label}] declared={declared} expected={expected} dev={deviation:.2f}%")
    if deviation <= ctx.config.mv_deviation_pct:
        return None
    return _hit(
        "R-MV-01",
        f"Declared value {format_inr(declared)} is {deviation:.1f}% below expected "
        f"{format_inr(expected)} (floor {ctx.config.mv_deviation_pct:g}%).",
        impact=expected - declared,
        calculations=[
            ("Declared value", format_inr(declared)),
            ("Expected value", format_inr(expected)),
            ("Deviation", f"{deviation:.2f}%"),
        ],
    )


def rule_unit_rate_drop(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-MV-02"""
    card = _rate_card(case, ctx)
    if card is None or card.rev_rate is None or not card.pre_rev_rate or card.pre_rev_rate <= 0:
        return None
    drop = (card.pre_rev_rate - card.rev_rate) / card.pre_rev_rate * 100
    if drop <= ctx.config.unit_rate_drop_pct:
        return None
    return _hit(
        "R-MV-02",
        f"Rate card for {card.location_key} dropped {drop:.1f}% on revision "
        f"({format_inr(card.pre_rev_rate)} → {format_inr(card.rev_rate)}).",
        calculations=[
            ("Previous revision rate", format_inr(card.pre_rev_rate)),
            ("Revised rate", format_inr(card.rev_rate)),
            ("Drop", f"{drop:.2f}%"),
        ],
    )


def rule_below_nearby_median(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-MV-03"""
    card = _rate_card(case, ctx)
    if card is None or card.unit_rate <= 0:
        return None
    median = ctx.reference.nearby_median_rate(_sro(case), case.schedule.location_type)
    if not median:
        return None
    ratio = card.unit_rate / median * 100
    if ratio >= ctx.config.nearby_median_ratio_pct:
        return None
    return _hit(
        "R-MV-03",
        f"Unit rate {format_inr(card.unit_rate)} is {ratio:.1f}% of the office "
        f"{case.schedule.location_type.lower()} median {format_inr(median)}.",
        calculations=[
            ("Unit rate", format_inr(card.unit_rate)),
            ("Nearby median", format_inr(median)),
            ("Ratio", f"{ratio:.2f}%"),
        ],
    )


# ═══════════════════════════════════════════════════
# 6. EXEMPTION RULES
# ═══════════════════════════════════════════════════

def rule_exemption_ineligible(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-EX-01: exemption claimed on a document type it does not cover."""
    tran_maj = case.doc_type.tran_maj_code
    flagged = []
    for ex in case.exemptions:
        policy = ctx.reference.exemption_policy(ex.code)
        policy_excludes = policy is not None and bool(tran_maj) and not policy.allows(tran_maj)
        if ex.doc_type_eligible is False or policy_excludes:
            flagged.append(ex)
    if not flagged:
        return None
    total = math.fsum(ex.amount for ex in flagged)
    return _hit(
        "R-EX-01",
        f"Exemption(s) {', '.join(sorted(ex.code for ex in flagged))} are not eligible for "
        f"document type {tran_maj or '(unknown)'}.",
        impact=total,
        calculations=[("Ineligible exemption amount", format_inr(total))],
    )


def rule_exemption_cap(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-EX-02"""
    flagged = []
    excess_parts = []
    for ex in case.exemptions:
        policy = ctx.reference.exemption_policy(ex.code)
        cap = ex.cap_amount if ex.cap_amount is not None else (policy.cap_amount if policy else None)
        over_cap = cap is not None and ex.amount > cap
        if ex.cap_exceeded or over_cap:
            flagged.append(ex.code)
            excess_parts.append(ex.amount - cap if over_cap else 0.0)
    if not flagged:
        return None
    excess = math.fsum(excess_parts)
    return _hit(
        "R-EX-02",
        f"Exemption(s) {', '.join(sorted(flagged))} exceed the policy cap by {format_inr(excess)}.",
        impact=excess,
        calculations=[("Amount above cap", format_inr(excess))],
    )


def rule_exemption_repeat(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-EX-03: same PAN + code used on more documents than the threshold."""
    threshold = ctx.config.exemption_repeat_threshold
    repeats: list[tuple[str, str, int]] = []
    amounts = []
    for ex in case.exemptions:
        if not ex.code:
            continue
        pans = {ex.party_pan} if ex.party_pan else case.party_pans
        worst = max((ctx.usage_index.usage(pan, ex.code), pan) for pan in pans) if pans else (0, "")
        if worst[0] > threshold:
            repeats.append((worst[1], ex.code, worst[0]))
            amounts.append(ex.amount)
    if not repeats:
        return None
    total = math.fsum(amounts)
    detail = "; ".join(f"PAN {pan} used {code} on {n} documents" for pan, code, n in sorted(repeats))
    return _hit(
        "R-EX-03",
        f"Repeat exemption usage: {detail} (threshold {threshold}).",
        impact=total,
        calculations=[("Repeated exemption amount", format_inr(total))],
    )


def rule_multiple_exemptions(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-EX-04"""
    if len(case.exemptions) <= 1:
        return None
    total = math.fsum(ex.amount for ex in case.exemptions)
    return _hit(
        "R-EX-04",
        f"{len(case.exemptions)} exemptions claimed on one registration "
        f"({', '.join(sorted(ex.code or '?' for ex in case.exemptions))}).",
        impact=total,
        calculations=[("Total exemption amount", format_inr(total))],
    )


# ═══════════════════════════════════════════════════
# 7. HOLIDAY FEE
# ═══════════════════════════════════════════════════

def rule_holiday_fee(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-COMP-05"""
    if not case.holiday_registration or ctx.ledger.gap <= 0:
        return None
    return _hit(
        "R-COMP-05",
        f"Holiday registration with an unpaid balance of {format_inr(ctx.ledger.gap)}; "
        f"holiday fee not covered.",
        impact=ctx.ledger.gap,
        calculations=_gap_calculations(ctx.ledger),
    )


# ═══════════════════════════════════════════════════
# 8. DATA INTEGRITY RULES
# ═══════════════════════════════════════════════════

def rule_missing_schedule(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-01"""
    if case.schedule is not None:
        return None
    return _hit("R-DATA-01", "No property schedule recorded for this registration.",
                missing_input=True)


def rule_missing_parties(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-02"""
    if case.parties:
        return None
    return _hit("R-DATA-02", "No party records (buyer / seller) for this registration.",
                missing_input=True)


def rule_rate_card_missing(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-03: market value cannot be checked."""
    if case.schedule is None or _rate_card(case, ctx) is not None:
        return None
    if case.market_value.expected_value is not None:
        return None
    return _hit(
        "R-DATA-03",
        f"No rate card entry for {_sro(case)} / {case.schedule.location_key or '(unkeyed location)'} "
        f"and no expected value supplied.",
        missing_input=True,
    )


def rule_payable_incomplete(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-04"""
    missing = case.payable.missing_components
    if not missing:
        return None
    return _hit(
        "R-DATA-04",
        f"Payable component(s) missing: {', '.join(missing)}; counted as 0 in the payable total.",
        fields_used=missing,
        missing_input=True,
    )


def rule_inconsistent_evidence(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-05: evidence that contradicts itself; values are reported, never corrected."""
    issues: list[str] = []
    for r in case.receipts:
        if r.amount < 0:
            issues.append(f"negative receipt amount {format_inr(r.amount)} on {r.receipt_no or '(unnumbered)'}")
        if r.acc_canc not in RECEIPT_STATUS_LABELS:
            issues.append(f"unknown ACC_CANC '{r.acc_canc}' on {r.receipt_no or '(unnumbered)'}")
    for name, value in case.payable.components().items():
        if value is not None and value < 0:
            issues.append(f"negative {name} {format_inr(value)}")
    reported = case.reported_payable_total
    computed = ctx.ledger.payable_total
    if reported is not None and not math.isclose(reported, computed, abs_tol=0.01):
        issues.append(f"reported payable {format_inr(reported)} ≠ computed {format_inr(computed)}")
    if not issues:
        return None
    return _hit(
        "R-DATA-05",
        "Inconsistent payment evidence: " + "; ".join(issues) + ".",
        calculations=[("Issues", str(len(issues)))],
    )


def rule_property_identifiers_missing(case: Case, ctx: RuleContext) -> Optional[RuleHit]:
    """R-DATA-06"""
    prop = case.schedule
    if prop is None or prop.location_key:
        return None
    needed = "WARD_NO + BLOCK_NO" if prop.is_urban else "VILLAGE_CODE + SURVEY_NO"
    return _hit(
        "R-DATA-06",
        f"{prop.location_type.title()} property lacks {needed}; registry and rate-card lookups skipped.",
        missing_input=True,
    )


# ═══════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════

RuleFn = Callable[[Case, RuleContext], Optional[RuleHit]]

RULE_FUNCTIONS: dict[str, RuleFn] = {
    "R-PAY-01": rule_paid_less_than_payable,
    "R-PAY-02": rule_zero_payment,
    "R-PAY-03": rule_multi_receipt_shortfall,
    "R-PAY-04": rule_excluded_receipts,
    "R-CHLN-01": rule_challan_delay,
    "R-CHLN-02": rule_challan_date_missing,
    "R-CHLN-03": rule_registration_delay,
    "R-PROB-01": rule_prohibited_rural,
    "R-PROB-02": rule_prohibited_urban,
    "R-MV-01": rule_declared_below_expected,
    "R-MV-02": rule_unit_rate_drop,
    "R-MV-03": rule_below_nearby_median,
    "R-EX-01": rule_exemption_ineligible,
    "R-EX-02": rule_exemption_cap,
    "R-EX-03": rule_exemption_repeat,
    "R-EX-04": rule_multiple_exemptions,
    "R-COMP-05": rule_holiday_fee,
    "R-DATA-01": rule_missing_schedule,
    "R-DATA-02": rule_missing_parties,
    "R-DATA-03": rule_rate_card_missing,
    "R-DATA-04": rule_payable_incomplete,
    "R-DATA-05": rule_inconsistent_evidence,
    "R-DATA-06": rule_property_identifiers_missing,
}


def evaluate_with_errors(
    case: Case,
    reference: ReferenceData,
    config: RulesConfig,
    usage_index: Optional[ExemptionUsageIndex] = None,
    *,
    ledger: Optional[PaymentLedger] = None,
    rule_functions: Optional[dict[str, RuleFn]] = None,
) -> tuple[list[RuleHit], list[str]]:
    """Run every enabled rule against ``case``.

    Args:
        case: the registered document
        reference: shared read-only reference data
        config: validated rules config
        usage_index: cross-case exemption usage; when omitted it is built from
            this case alone
        ledger: pre-computed payment ledger (built here when omitted)
        rule_functions: override of the rule_id → function table

    Returns:
        (hits, rule_errors) where rule_errors lists the ids of rules that raised
    """
    functions = rule_functions if rule_functions is not None else RULE_FUNCTIONS
    ctx = RuleContext(
        reference=reference,
        config=config,
        ledger=ledger if ledger is not None else build_ledger(case),
        usage_index=usage_index if usage_index is not None else ExemptionUsageIndex.build([case]),
    )
    label = case.document_key.label
    enabled, disabled = partition_rules(config)
    if disabled:
        _trace(f"EVALUATE [{label}] skipping disabled rules: {[r['rule_id'] for r in disabled]}")

    hits: list[RuleHit] = []
    errors: list[str] = []
    for rule in enabled:
        rule_id = rule["rule_id"]
        fn = functions.get(rule_id)
        if fn is None:
            logger.warning(f"Rule [{rule_id}] has no implementation; skipped")
            continue
        try:
            hit = fn(case, ctx)
        except Exception as e:
            logger.error(f"Rule [{rule_id}] failed for {label}: {e}")
            errors.append(rule_id)
            continue
        if hit is not None:
            _trace(f"HIT {rule_id} [{label}] severity={hit.severity.value} impact={hit.impact_inr}")
            hits.append(hit)
    return hits, errors


def evaluate(
    case: Case,
    reference: ReferenceData,
    config: RulesConfig,
    usage_index: Optional[ExemptionUsageIndex] = None,
) -> list[RuleHit]:
    """Hits from every enabled rule; rules that raise are logged and skipped."""
    hits, _ = evaluate_with_errors(case, reference, config, usage_index)
    return hits
