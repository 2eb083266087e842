"""Reference data — rate cards, prohibited-land registry, exemption policy.

Loaded once per batch and treated as read-only: every mapping is exposed
through ``MappingProxyType`` so rules cannot mutate shared state while
cases are evaluated concurrently.

Also hosts ``ExemptionUsageIndex``, the cross-case pre-pass that the
repeat-exemption rule reads.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import numpy as np

from revenue_leakage.pipeline.models import Case, Property, _get
from revenue_leakage.pipeline.utils import normalize_code, parse_amount, parse_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateCardEntry:
    sro_code: str
    location_key: str
    location_type: str  # "URBAN" | "RURAL"
    unit_rate: float
    rev_rate: Optional[float] = None
    pre_rev_rate: Optional[float] = None
    effective_from: str = ""
    source: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> RateCardEntry:
        source = str(_get(d, "source", default=""))
        location_type = _get(d, "location_type")
        if location_type is None:
            location_type = "URBAN" if source.endswith("URB_REG") else "RURAL"
        return cls(
            sro_code=normalize_code(_get(d, "SRO_CODE", "sro_code", default="")),
            location_key=normalize_code(_get(d, "location_key", default="")),
            location_type=str(location_type).upper(),
            unit_rate=parse_amount(_get(d, "UNIT_RATE", "unit_rate", default=0)) or 0.0,
            rev_rate=parse_amount(_get(d, "REV_RATE", "rev_rate")),
            pre_rev_rate=parse_amount(_get(d, "PRE_REV_RATE", "pre_rev_rate")),
            effective_from=str(_get(d, "effective_from", default="")),
            source=source,
        )


@dataclass(frozen=True)
class ProhibitedLandRecord:
    prohib_cd: str
    level: str                # "Rural" | "Urban"
    location_key: str         # same key format as Property.location_key
    sro_code: str = ""
    noti_gaz_no: str = ""
    denoti_gaz_no: str = ""
    h_name: str = ""

    @property
    def denotified(self) -> bool:
        return bool(self.denoti_gaz_no)

    @classmethod
    def from_dict(cls, d: dict) -> ProhibitedLandRecord:
        level = str(_get(d, "level", "match_level", default="")).capitalize()
        key = _get(d, "location_key")
        if key is None:
            # Build the same key a Property would produce
            prop = Property(
                is_urban=level == "Urban",
                village_code=str(_get(d, "VILLAGE_CODE", "village_code", default="")),
                survey_no=str(_get(d, "SURVEY_NO", "survey_no", default="")),
                ward_no=str(_get(d, "WARD_NO", "ward_no", default="")),
                block_no=str(_get(d, "BLOCK_NO", "block_no", default="")),
            )
            key = prop.location_key or ""
        return cls(
            prohib_cd=str(_get(d, "PROHIB_CD", "prohib_cd", default="")),
            level=level,
            location_key=normalize_code(key),
            sro_code=normalize_code(_get(d, "SRO_CODE", "sro_code", default="")),
            noti_gaz_no=str(_get(d, "NOTI_GAZ_NO", "noti_gaz_no", default="")),
            denoti_gaz_no=str(_get(d, "DENOTI_GAZ_NO", "denoti_gaz_no", default="")),
            h_name=str(_get(d, "H_NAME", "h_name", default="")),
        )


@dataclass(frozen=True)
class ExemptionPolicy:
    code: str
    eligible_doc_types: frozenset[str] = frozenset()   # TRAN_MAJ_CODEs; empty = any
    cap_amount: Optional[float] = None

    def allows(self, tran_maj_code: str) -> bool:
        return not self.eligible_doc_types or tran_maj_code in self.eligible_doc_types

    @classmethod
    def from_dict(cls, d: dict) -> ExemptionPolicy:
        return cls(
            code=normalize_code(_get(d, "exemption_code", "code", default="")),
            eligible_doc_types=frozenset(str(x) for x in (_get(d, "eligible_doc_types", default=[]) or [])),
            cap_amount=parse_amount(_get(d, "cap_amount")),
        )


class ReferenceData:
    """Read-only lookup interface over the reference tables."""

    def __init__(
        self,
        rate_cards: Iterable[RateCardEntry] = (),
        prohibited: Iterable[ProhibitedLandRecord] = (),
        exemption_policies: Iterable[ExemptionPolicy] = (),
    ):
        cards: dict[tuple[str, str], RateCardEntry] = {}
        for entry in rate_cards:
            key = (entry.sro_code, entry.location_key)
            existing = cards.get(key)
            # Latest effective entry wins
            if existing is None or (parse_date(entry.effective_from) or parse_date("1900-01-01")) >= \
                    (parse_date(existing.effective_from) or parse_date("1900-01-01")):
                cards[key] = entry
        self._rate_cards: Mapping[tuple[str, str], RateCardEntry] = MappingProxyType(cards)

        registry: dict[str, list[ProhibitedLandRecord]] = defaultdict(list)
        for rec in prohibited:
            if rec.location_key:
                registry[rec.location_key].append(rec)
        self._prohibited: Mapping[str, tuple[ProhibitedLandRecord, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in registry.items()}
        )

        self._policies: Mapping[str, ExemptionPolicy] = MappingProxyType(
            {p.code: p for p in exemption_policies}
        )

        # Median unit rate per (office, location type) for the nearby-median rule
        grouped: dict[tuple[str, str], list[float]] = defaultdict(list)
        for entry in cards.values():
            if entry.unit_rate > 0:
                grouped[(entry.sro_code, entry.location_type)].append(entry.unit_rate)
        self._medians: Mapping[tuple[str, str], float] = MappingProxyType(
            {k: float(np.median(v)) for k, v in grouped.items()}
        )

    @property
    def rate_card_count(self) -> int:
        return len(self._rate_cards)

    def rate_card_for(self, sro_code: str, prop: Optional[Property]) -> Optional[RateCardEntry]:
        if prop is None or not prop.location_key:
            return None
        return self._rate_cards.get((normalize_code(sro_code), prop.location_key))

    def nearby_median_rate(self, sro_code: str, location_type: str) -> Optional[float]:
        return self._medians.get((normalize_code(sro_code), location_type))

    def prohibited_matches(self, prop: Optional[Property]) -> list[ProhibitedLandRecord]:
        """Exact key intersection with the registry; denotified records never match."""
        if prop is None or not prop.location_key:
            return []
        level = "Urban" if prop.is_urban else "Rural"
        return [
            rec for rec in self._prohibited.get(prop.location_key, ())
            if rec.level == level and not rec.denotified
        ]

    def exemption_policy(self, code: str) -> Optional[ExemptionPolicy]:
        return self._policies.get(normalize_code(code))

    @classmethod
    def from_dict(cls, d: dict) -> ReferenceData:
        return cls(
            rate_cards=[RateCardEntry.from_dict(x) for x in d.get("rate_cards", []) or []],
            prohibited=[ProhibitedLandRecord.from_dict(x) for x in d.get("prohibited_land", []) or []],
            exemption_policies=[ExemptionPolicy.from_dict(x) for x in d.get("exemption_policies", []) or []],
        )

    @classmethod
    def load(cls, path: str | Path) -> ReferenceData:
        with open(path, encoding="utf-8") as f:
            ref = cls.from_dict(json.load(f))
        logger.info(
            f"Reference data loaded from {Path(path).name}: {ref.rate_card_count} rate card entries, "
            f"{len(ref._prohibited)} prohibited keys, {len(ref._policies)} exemption policies"
        )
        return ref


# ═══════════════════════════════════════════════════
# CROSS-CASE PRE-PASS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class ExemptionUsageIndex:
    """Distinct documents per (party PAN, exemption code), built before evaluation.

    Built in one pass over the whole batch so that results never depend on
    the order in which cases are evaluated.
    """
    counts: Mapping[tuple[str, str], int] = field(default_factory=lambda: MappingProxyType({}))

    def usage(self, pan: str, code: str) -> int:
        return self.counts.get((normalize_code(pan), normalize_code(code)), 0)

    @classmethod
    def build(cls, cases: Iterable[Case]) -> ExemptionUsageIndex:
        docs: dict[tuple[str, str], set[str]] = defaultdict(set)
        for case in cases:
            pans = case.party_pans
            for ex in case.exemptions:
                if not ex.code:
                    continue
                for pan in ({ex.party_pan} if ex.party_pan else pans):
                    docs[(pan, ex.code)].add(case.document_key.label)
        counts = {k: len(v) for k, v in docs.items()}
        logger.info(f"Exemption usage index: {len(counts)} (PAN, code) pairs")
        return cls(MappingProxyType(counts))
