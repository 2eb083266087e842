"""Case records and evaluation results for the revenue leakage engine.

A ``Case`` is one registered document. ``from_dict`` accepts the source
column names (``SR_CODE``, ``ACC_CANC``, ``SD_PAYABLE`` …) as well as
lower-case keys, so ingestion output can be passed through unchanged.
Missing optional data becomes ``None`` or an empty tuple; it is the rules'
job to turn absence into Data-Integrity findings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

from revenue_leakage.pipeline.utils import normalize_code, parse_amount, parse_date


class Category(str, Enum):
    """Leakage signal categories, in canonical report order."""
    REVENUE_GAP = "RevenueGap"
    CHALLAN_DELAY = "ChallanDelay"
    PROHIBITED_LAND = "ProhibitedLand"
    MARKET_VALUE = "MarketValueRisk"
    EXEMPTION = "ExemptionRisk"
    HOLIDAY_FEE = "HolidayFee"
    DATA_INTEGRITY = "DataIntegrity"


CATEGORY_ORDER = {c: i for i, c in enumerate(Category)}


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class RiskLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def _get(d: dict, *keys: str, default: Any = None) -> Any:
    """First present, non-None value among ``keys``."""
    if not isinstance(d, dict):
        return default
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def _amount_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return parse_amount(value)


# ═══════════════════════════════════════════════════
# CASE RECORD
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class DocumentKey:
    sr_code: str
    book_no: str
    doct_no: str
    reg_year: str

    @property
    def label(self) -> str:
        return f"{self.sr_code}/{self.book_no}/{self.doct_no}/{self.reg_year}"

    @classmethod
    def from_dict(cls, d: dict) -> DocumentKey:
        return cls(
            sr_code=str(_get(d, "SR_CODE", "sr_code", default="")),
            book_no=str(_get(d, "BOOK_NO", "book_no", default="")),
            doct_no=str(_get(d, "DOCT_NO", "doct_no", default="")),
            reg_year=str(_get(d, "REG_YEAR", "reg_year", default="")),
        )


@dataclass(frozen=True)
class Office:
    sr_code: str
    sr_name: str = ""
    district: str = ""
    zone: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> Office:
        return cls(
            sr_code=str(_get(d, "SR_CODE", "sr_code", default="")),
            sr_name=str(_get(d, "SR_NAME", "sr_name", default="")),
            district=str(_get(d, "district", "DISTRICT", default="")),
            zone=str(_get(d, "zone", "ZONE", default="")),
        )


@dataclass(frozen=True)
class DocType:
    tran_maj_code: str = ""
    tran_min_code: str = ""
    tran_desc: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> DocType:
        return cls(
            tran_maj_code=str(_get(d, "TRAN_MAJ_CODE", "tran_maj_code", default="")),
            tran_min_code=str(_get(d, "TRAN_MIN_CODE", "tran_min_code", default="")),
            tran_desc=str(_get(d, "TRAN_DESC", "tran_desc", default="")),
        )


@dataclass(frozen=True)
class KeyDates:
    presentation: Optional[date] = None
    execution: Optional[date] = None
    registration: Optional[date] = None

    @classmethod
    def from_dict(cls, d: dict) -> KeyDates:
        return cls(
            presentation=parse_date(_get(d, "P_DATE", "presentation")),
            execution=parse_date(_get(d, "E_DATE", "execution")),
            registration=parse_date(_get(d, "R_DATE", "registration")),
        )


@dataclass(frozen=True)
class Property:
    is_urban: bool
    village_code: str = ""
    survey_no: str = ""
    ward_no: str = ""
    block_no: str = ""
    extent: Optional[float] = None
    extent_unit: str = ""
    land_nature: str = ""

    @property
    def location_type(self) -> str:
        return "URBAN" if self.is_urban else "RURAL"

    @property
    def location_key(self) -> Optional[str]:
        """Registry / rate-card key: ward+block (urban) or village+survey (rural)."""
        if self.is_urban:
            ward, block = normalize_code(self.ward_no), normalize_code(self.block_no)
            return f"W{ward}:B{block}" if ward and block else None
        village, survey = normalize_code(self.village_code), normalize_code(self.survey_no)
        return f"V{village}:S{survey}" if village and survey else None

    @classmethod
    def from_dict(cls, d: dict) -> Property:
        rural = _get(d, "rural", default={}) or {}
        urban = _get(d, "urban", default={}) or {}
        return cls(
            is_urban=bool(_get(d, "is_urban", default=False)),
            village_code=str(_get(rural, "VILLAGE_CODE", "village_code",
                                  default=_get(d, "VILLAGE_CODE", "village_code", default=""))),
            survey_no=str(_get(rural, "SURVEY_NO", "survey_no",
                               default=_get(d, "SURVEY_NO", "survey_no", default=""))),
            ward_no=str(_get(urban, "WARD_NO", "ward_no",
                             default=_get(d, "WARD_NO", "ward_no", default=""))),
            block_no=str(_get(urban, "BLOCK_NO", "block_no",
                              default=_get(d, "BLOCK_NO", "block_no", default=""))),
            extent=_amount_or_none(_get(d, "extent", "EXTENT")),
            extent_unit=str(_get(d, "unit", "extent_unit", default="")),
            land_nature=str(_get(d, "land_nature", default="")),
        )


@dataclass(frozen=True)
class Party:
    code: str = ""
    name: str = ""
    pan: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> Party:
        return cls(
            code=str(_get(d, "CODE", "code", default="")),
            name=str(_get(d, "NAME", "name", default="")),
            pan=normalize_code(_get(d, "PAN_NO", "pan", default="")),
        )


PAYABLE_COMPONENTS = ("SD_PAYABLE", "TD_PAYABLE", "RF_PAYABLE", "DSD_PAYABLE", "OTHER_FEE")


@dataclass(frozen=True)
class PayableBreakdown:
    """Stamp duty, transfer duty, registration fee, deficit stamp duty, other fees.

    ``None`` means the component was absent from the source record.
    """
    sd: Optional[float] = None
    td: Optional[float] = None
    rf: Optional[float] = None
    dsd: Optional[float] = None
    other_fee: Optional[float] = None
    final_taxable_value: Optional[float] = None

    def components(self) -> dict[str, Optional[float]]:
        return dict(zip(PAYABLE_COMPONENTS, (self.sd, self.td, self.rf, self.dsd, self.other_fee)))

    @property
    def missing_components(self) -> list[str]:
        return [k for k, v in self.components().items() if v is None]

    @property
    def total(self) -> float:
        return math.fsum(v for v in self.components().values() if v is not None)

    @classmethod
    def from_dict(cls, d: dict) -> PayableBreakdown:
        return cls(
            sd=_amount_or_none(_get(d, "SD_PAYABLE", "sd")),
            td=_amount_or_none(_get(d, "TD_PAYABLE", "td")),
            rf=_amount_or_none(_get(d, "RF_PAYABLE", "rf")),
            dsd=_amount_or_none(_get(d, "DSD_PAYABLE", "dsd")),
            other_fee=_amount_or_none(_get(d, "OTHER_FEE", "other_fee")),
            final_taxable_value=_amount_or_none(_get(d, "FINAL_TAXABLE_VALUE", "final_taxable_value")),
        )


@dataclass(frozen=True)
class Receipt:
    receipt_no: str = ""
    receipt_date: Optional[date] = None
    amount: float = 0.0
    acc_canc: str = ""
    challan_no: str = ""
    challan_date: Optional[date] = None
    entry_date: Optional[date] = None

    @classmethod
    def from_dict(cls, d: dict) -> Receipt:
        amount = _amount_or_none(_get(d, "amount", "AMOUNT"))
        if amount is None:
            # CASH_DET lines: sum of per-account amounts
            lines = _get(d, "cash_paid", default=[]) or []
            amount = math.fsum(parse_amount(_get(line, "AMOUNT", "amount", default=0)) or 0.0
                               for line in lines)
        return cls(
            receipt_no=str(_get(d, "C_RECEIPT_NO", "receipt_no", default="")),
            receipt_date=parse_date(_get(d, "RECEIPT_DATE", "receipt_date")),
            amount=amount,
            acc_canc=normalize_code(_get(d, "ACC_CANC", "acc_canc", default="")),
            challan_no=str(_get(d, "BANK_CHALLAN_NO", "ECHALLAN_NO", "challan_no", default="")),
            challan_date=parse_date(_get(d, "BANK_CHALLAN_DT", "challan_date")),
            entry_date=parse_date(_get(d, "ENTRY_DATE", "entry_date")),
        )


@dataclass(frozen=True)
class ProhibitedMatch:
    """An upstream prohibited-land match candidate attached to the case."""
    prohib_cd: str
    match_level: str  # "Rural" | "Urban"
    match_fields: tuple[str, ...] = ()
    denotified: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> ProhibitedMatch:
        return cls(
            prohib_cd=str(_get(d, "PROHIB_CD", "prohib_cd", default="")),
            match_level=str(_get(d, "match_level", default="")).capitalize(),
            match_fields=tuple(_get(d, "match_fields", default=[]) or []),
            denotified=bool(_get(d, "DENOTI_GAZ_NO", "denoti_gaz_no")),
        )


@dataclass(frozen=True)
class MarketValueEvidence:
    declared_value: Optional[float] = None
    expected_value: Optional[float] = None

    @classmethod
    def from_dict(cls, d: dict) -> MarketValueEvidence:
        return cls(
            declared_value=_amount_or_none(_get(d, "declared_value")),
            expected_value=_amount_or_none(_get(d, "expected_value")),
        )


@dataclass(frozen=True)
class ExemptionEntry:
    code: str
    amount: float = 0.0
    doc_type_eligible: Optional[bool] = None
    cap_exceeded: Optional[bool] = None
    cap_amount: Optional[float] = None
    party_pan: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> ExemptionEntry:
        eligibility = _get(d, "eligibility_result")
        eligible = _get(d, "doc_type_eligible")
        if eligible is None and eligibility in ("Pass", "Fail"):
            eligible = eligibility == "Pass"
        return cls(
            code=normalize_code(_get(d, "exemption_code", "code", default="")),
            amount=_amount_or_none(_get(d, "exemption_amount", "amount")) or 0.0,
            doc_type_eligible=None if eligible is None else bool(eligible),
            cap_exceeded=None if _get(d, "cap_exceeded") is None else bool(d["cap_exceeded"]),
            cap_amount=_amount_or_none(_get(d, "cap_amount")),
            party_pan=normalize_code(_get(d, "party_pan", "PAN_NO", default="")),
        )


@dataclass(frozen=True)
class Case:
    document_key: DocumentKey
    office: Office
    doc_type: DocType = field(default_factory=DocType)
    dates: KeyDates = field(default_factory=KeyDates)
    schedule: Optional[Property] = None  # property schedule
    parties: tuple[Party, ...] = ()
    payable: PayableBreakdown = field(default_factory=PayableBreakdown)
    reported_payable_total: Optional[float] = None
    receipts: tuple[Receipt, ...] = ()
    prohibited_matches: tuple[ProhibitedMatch, ...] = ()
    market_value: MarketValueEvidence = field(default_factory=MarketValueEvidence)
    exemptions: tuple[ExemptionEntry, ...] = ()
    holiday_registration: bool = False

    @property
    def party_pans(self) -> set[str]:
        return {p.pan for p in self.parties if p.pan}

    @classmethod
    def from_dict(cls, d: dict) -> Case:
        key = _get(d, "document_key", default=d)
        office = _get(d, "office", default={"SR_CODE": _get(key, "SR_CODE", "sr_code", default="")})
        evidence = _get(d, "evidence", default={}) or {}
        prop = _get(d, "property_summary", "property")
        payable = _get(d, "payable_breakdown", "payable", default={}) or {}
        receipts = _get(d, "receipts", default=None)
        if receipts is None:
            receipts = (list(_get(evidence, "included_receipts", default=[]) or [])
                        + list(_get(evidence, "excluded_receipts", default=[]) or []))
        exemptions = _get(d, "exemptions", default=None)
        if exemptions is None:
            exemptions = _get(_get(evidence, "exemption_evidence", default={}), "entries", default=[])
        mv = _get(d, "market_value", default=None) or _get(evidence, "mv_evidence", default={}) or {}
        prohibited = _get(d, "prohibited_matches", default=None)
        if prohibited is None:
            prohibited = _get(evidence, "prohibited_matches", default=[])

        return cls(
            document_key=DocumentKey.from_dict(key),
            office=Office.from_dict(office),
            doc_type=DocType.from_dict(_get(d, "doc_type", default={}) or {}),
            dates=KeyDates.from_dict(_get(d, "dates", default={}) or {}),
            schedule=Property.from_dict(prop) if isinstance(prop, dict) and prop else None,
            parties=tuple(Party.from_dict(p) for p in (_get(d, "parties_summary", "parties", default=[]) or [])),
            payable=PayableBreakdown.from_dict(payable),
            reported_payable_total=_amount_or_none(_get(d, "payable_total_inr", "reported_payable_total")),
            receipts=tuple(Receipt.from_dict(r) for r in receipts or []),
            prohibited_matches=tuple(ProhibitedMatch.from_dict(p) for p in prohibited or []),
            market_value=MarketValueEvidence.from_dict(mv),
            exemptions=tuple(ExemptionEntry.from_dict(e) for e in exemptions or []),
            holiday_registration=bool(_get(d, "holiday_registration", default=False)),
        )


# ═══════════════════════════════════════════════════
# PAYMENT LEDGER
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class ExcludedReceipt:
    receipt: Receipt
    reason: str


@dataclass(frozen=True)
class PaymentLedger:
    """Payable vs paid position of a case. Only ACC_CANC='A' receipts are paid."""
    payable_total: float
    paid_total: float
    included: tuple[Receipt, ...]
    excluded: tuple[ExcludedReceipt, ...]

    @property
    def gap(self) -> float:
        return max(0.0, self.payable_total - self.paid_total)

    @property
    def excluded_total(self) -> float:
        return math.fsum(max(0.0, e.receipt.amount) for e in self.excluded)


# ═══════════════════════════════════════════════════
# EVALUATION OUTPUT
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Calculation:
    label: str
    value: str


@dataclass(frozen=True)
class RuleHit:
    """Output of one fired rule for one case. Never mutated after creation."""
    rule_id: str
    rule_name: str
    category: Category
    severity: Severity
    impact_inr: float
    confidence: int
    explanation: str
    fields_used: tuple[str, ...] = ()
    calculations: tuple[Calculation, ...] = ()
    missing_input: bool = False

    def sort_key(self) -> tuple:
        return (self.rule_id, self.explanation, self.impact_inr, self.confidence)

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "category": self.category.value,
            "severity": self.severity.value,
            "impact_inr": self.impact_inr,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "fields_used": list(self.fields_used),
            "calculations": [{"label": c.label, "value": c.value} for c in self.calculations],
            "missing_input": self.missing_input,
        }


@dataclass(frozen=True)
class RuleEvaluationResult:
    triggered_rules: tuple[RuleHit, ...]
    leakage_signals: tuple[Category, ...]
    risk_score: int
    risk_level: RiskLevel
    confidence: int
    impact_amount_inr: float
    gap_inr: float = 0.0
    payable_total_inr: float = 0.0
    paid_total_inr: float = 0.0
    category_scores: dict[str, float] = field(default_factory=dict)
    rule_errors: tuple[str, ...] = ()
    document: str = ""
    office_code: str = ""

    def to_dict(self) -> dict:
        return {
            "document": self.document,
            "office_code": self.office_code,
            "triggered_rules": [h.to_dict() for h in self.triggered_rules],
            "leakage_signals": [s.value for s in self.leakage_signals],
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence,
            "impact_amount_inr": self.impact_amount_inr,
            "gap_inr": self.gap_inr,
            "payable_total_inr": self.payable_total_inr,
            "paid_total_inr": self.paid_total_inr,
            "category_scores": dict(self.category_scores),
            "rule_errors": list(self.rule_errors),
        }
