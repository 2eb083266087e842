"""Market-value hotspot mining.

DRR (declared-to-rate-card ratio) is the median declared unit value of a
location divided by its rate-card unit rate.  A location becomes a hotspot
only when all three hold:

  - DRR below ``hotspot_drr_threshold`` (0.85)
  - at least ``hotspot_min_transactions`` transactions (5)
  - at least ``hotspot_min_consecutive_periods`` trailing low-DRR quarters (2)

Mining only ever creates ``New`` hotspots.  Status moves forward through
``transition_status()``; re-running the miner over the same data is
idempotent once reconciled with the stored hotspots.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence

import numpy as np

from revenue_leakage.config import DRR_TILE_COLOURS, RulesConfig
from revenue_leakage.pipeline.models import _get
from revenue_leakage.pipeline.utils import parse_amount, parse_date, quarter_label, slugify_label

logger = logging.getLogger(__name__)


class MVSeverity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    WATCH = "Watch"
    NORMAL = "Normal"


class HotspotStatus(str, Enum):
    NEW = "New"
    IN_REVIEW = "In Review"
    CONFIRMED = "Confirmed"


_NEXT_STATUS = {
    HotspotStatus.NEW: HotspotStatus.IN_REVIEW,
    HotspotStatus.IN_REVIEW: HotspotStatus.CONFIRMED,
}


class InvalidStatusTransition(ValueError):
    """Raised when a hotspot status change skips or reverses the lifecycle."""


# ═══════════════════════════════════════════════════
# RECORDS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class MVTransaction:
    """One registration observed at a location, per-unit values."""
    doc_key: str
    sro_code: str
    location_label: str
    declared_per_unit: float
    rate_card_unit_rate: float
    date: Optional[date] = None
    extent: float = 0.0
    sro_name: str = ""
    district: str = ""
    location_type: str = "RURAL"

    @property
    def drr(self) -> Optional[float]:
        if self.rate_card_unit_rate <= 0:
            return None
        return self.declared_per_unit / self.rate_card_unit_rate

    @property
    def loss(self) -> float:
        return max(0.0, self.rate_card_unit_rate - self.declared_per_unit) * self.extent

    @classmethod
    def from_dict(cls, d: dict) -> MVTransaction:
        return cls(
            doc_key=str(_get(d, "doc_key", default="")),
            sro_code=str(_get(d, "sro_code", "SR_CODE", default="")),
            location_label=str(_get(d, "location_label", default="")),
            declared_per_unit=parse_amount(_get(d, "declared_per_unit", default=0)) or 0.0,
            rate_card_unit_rate=parse_amount(_get(d, "rate_card_unit_rate", default=0)) or 0.0,
            date=parse_date(_get(d, "date")),
            extent=parse_amount(_get(d, "extent", default=0)) or 0.0,
            sro_name=str(_get(d, "sro_name", default="")),
            district=str(_get(d, "district", default="")),
            location_type=str(_get(d, "location_type", default="RURAL")).upper(),
        )


@dataclass(frozen=True)
class LocationRecord:
    sro_code: str
    location_label: str
    drr: float
    transaction_count: int
    consecutive_low_periods: int
    rate_card_unit_rate: float = 0.0
    median_declared: float = 0.0
    estimated_loss: float = 0.0
    sro_name: str = ""
    district: str = ""
    location_type: str = "RURAL"
    last_seen: Optional[date] = None  # latest transaction date behind the record

    @property
    def key(self) -> tuple[str, str]:
        return (self.sro_code, self.location_label)

    def to_dict(self) -> dict:
        return {
            "sro_code": self.sro_code,
            "sro_name": self.sro_name,
            "district": self.district,
            "location_label": self.location_label,
            "location_type": self.location_type,
            "drr": self.drr,
            "rate_card_unit_rate": self.rate_card_unit_rate,
            "median_declared": self.median_declared,
            "transaction_count": self.transaction_count,
            "consecutive_low_periods": self.consecutive_low_periods,
            "estimated_loss": self.estimated_loss,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> LocationRecord:
        drr = _get(d, "drr")
        if drr is None:
            raise ValueError(f"location {_get(d, 'location_label', default='?')!r} has no drr")
        return cls(
            sro_code=str(_get(d, "sro_code", "SR_CODE", default="")),
            location_label=str(_get(d, "location_label", default="")),
            drr=float(drr),
            transaction_count=int(_get(d, "transaction_count", default=0)),
            consecutive_low_periods=int(_get(d, "consecutive_low_periods", "consecutive_quarters", default=0)),
            rate_card_unit_rate=parse_amount(_get(d, "rate_card_unit_rate", default=0)) or 0.0,
            median_declared=parse_amount(_get(d, "median_declared", default=0)) or 0.0,
            estimated_loss=parse_amount(_get(d, "estimated_loss", default=0)) or 0.0,
            sro_name=str(_get(d, "sro_name", default="")),
            district=str(_get(d, "district", default="")),
            location_type=str(_get(d, "location_type", default="RURAL")).upper(),
            last_seen=parse_date(_get(d, "last_seen")),
        )


@dataclass(frozen=True)
class HotspotItem:
    location: LocationRecord
    case_id: str
    severity: MVSeverity
    status: HotspotStatus = HotspotStatus.NEW
    assigned_to: Optional[str] = None
    rules_triggered: tuple[str, ...] = ()
    resolved: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.location.key

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            **self.location.to_dict(),
            "severity": self.severity.value,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "rules_triggered": list(self.rules_triggered),
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, d: dict) -> HotspotItem:
        location = LocationRecord.from_dict(d)
        return cls(
            location=location,
            case_id=str(_get(d, "case_id", default="")),
            severity=MVSeverity(_get(d, "severity", default=MVSeverity.NORMAL.value)),
            status=HotspotStatus(_get(d, "status", default=HotspotStatus.NEW.value)),
            assigned_to=_get(d, "assigned_to"),
            rules_triggered=tuple(_get(d, "rules_triggered", default=[]) or []),
            resolved=bool(_get(d, "resolved", default=False)),
        )


# ═══════════════════════════════════════════════════
# 1. CLASSIFICATION
# ═══════════════════════════════════════════════════

def severity_from_drr(drr: float, config: RulesConfig) -> MVSeverity:
    """Band a DRR using exclusive upper bounds; at or above the last bound is Normal."""
    for bound, label in config.drr_bands:
        if drr < bound:
            return MVSeverity(label)
    return MVSeverity.NORMAL


def is_hotspot(location: LocationRecord, config: RulesConfig) -> bool:
    return (
        location.drr < config.hotspot_drr_threshold
        and location.transaction_count >= config.hotspot_min_transactions
        and location.consecutive_low_periods >= config.hotspot_min_consecutive_periods
    )


def _median_drr(txns: Sequence[MVTransaction]) -> Optional[float]:
    rates = [t.rate_card_unit_rate for t in txns if t.rate_card_unit_rate > 0]
    if not rates:
        return None
    declared = float(np.median([t.declared_per_unit for t in txns]))
    return declared / float(np.median(rates))


def _trailing_low_periods(txns: Sequence[MVTransaction], threshold: float) -> int:
    """Length of the run of most recent quarters whose DRR sits below ``threshold``."""
    by_period: dict[str, list[MVTransaction]] = defaultdict(list)
    for t in txns:
        if t.date is not None:
            by_period[quarter_label(t.date)].append(t)
    run = 0
    for period in sorted(by_period, reverse=True):
        period_drr = _median_drr(by_period[period])
        if period_drr is None or period_drr >= threshold:
            break
        run += 1
    return run


def build_location_records(
    transactions: Iterable[MVTransaction], config: RulesConfig
) -> list[LocationRecord]:
    """Group transactions by (office, location) and derive one record per group."""
    groups: dict[tuple[str, str], list[MVTransaction]] = defaultdict(list)
    for t in transactions:
        groups[(t.sro_code, t.location_label)].append(t)

    records = []
    skipped = 0
    for (sro_code, label), txns in sorted(groups.items()):
        rates = [t.rate_card_unit_rate for t in txns if t.rate_card_unit_rate > 0]
        if not rates:
            skipped += 1
            continue
        median_rate = float(np.median(rates))
        median_declared = float(np.median([t.declared_per_unit for t in txns]))
        first = txns[0]
        records.append(LocationRecord(
            sro_code=sro_code,
            location_label=label,
            drr=round(median_declared / median_rate, 2),
            transaction_count=len(txns),
            consecutive_low_periods=_trailing_low_periods(txns, config.hotspot_drr_threshold),
            rate_card_unit_rate=median_rate,
            median_declared=median_declared,
            estimated_loss=round(math.fsum(t.loss for t in txns), 2),
            sro_name=first.sro_name,
            district=first.district,
            location_type=first.location_type,
            last_seen=max((t.date for t in txns if t.date is not None), default=None),
        ))
    if skipped:
        logger.warning(f"Location records: {skipped} location(s) skipped without a rate card unit rate")
    return records


# ═══════════════════════════════════════════════════
# 2. MINING & RECONCILIATION
# ═══════════════════════════════════════════════════

def _band_bound(config: RulesConfig, severity: MVSeverity) -> Optional[float]:
    for bound, label in config.drr_bands:
        if label == severity.value:
            return bound
    return None


def _rules_for(location: LocationRecord, config: RulesConfig) -> tuple[str, ...]:
    """R-MV-007 always; the DRR triggers follow the High and Critical band bounds."""
    rules = ["R-MV-007"]
    high = _band_bound(config, MVSeverity.HIGH)
    critical = _band_bound(config, MVSeverity.CRITICAL)
    if high is not None and location.drr < high:
        rules.append("R-MV-003")
    if location.consecutive_low_periods >= config.hotspot_persistent_periods:
        rules.append("R-MV-006")
    if critical is not None and location.drr < critical:
        rules.append("R-MV-002")
    return tuple(rules)


def _run_year(locations: Sequence[LocationRecord]) -> int:
    seen = [loc.last_seen for loc in locations if loc.last_seen is not None]
    if not seen:
        raise ValueError("run_year is required when location records carry no last_seen date")
    return max(seen).year


def mine_hotspots(
    locations: Iterable[LocationRecord],
    config: RulesConfig,
    run_year: Optional[int] = None,
) -> list[HotspotItem]:
    """Rank qualifying locations by ascending DRR and keep the top N as ``New`` hotspots.

    Without ``run_year`` the case-id year is taken from the latest
    ``last_seen`` date among the locations, so ids never depend on the clock.
    """
    all_locations = list(locations)
    candidates = sorted(
        (loc for loc in all_locations if is_hotspot(loc, config)),
        key=lambda loc: (loc.drr, loc.sro_code, loc.location_label),
    )
    selected = candidates[: config.hotspot_top_n]
    year = run_year
    if selected and year is None:
        year = _run_year(all_locations)

    hotspots = []
    for rank, loc in enumerate(selected, start=1):
        slug = slugify_label(loc.location_label) or "HOT"
        hotspots.append(HotspotItem(
            location=loc,
            case_id=f"MV-{year}-{loc.sro_code}-{slug}-{rank:03d}",
            severity=severity_from_drr(loc.drr, config),
            rules_triggered=_rules_for(loc, config),
        ))
    logger.info(
        f"Hotspot mining: {len(all_locations)} location(s), {len(candidates)} qualifying, "
        f"{len(hotspots)} kept (top {config.hotspot_top_n})"
    )
    return hotspots


def reconcile_hotspots(
    existing: Iterable[HotspotItem],
    detected: Iterable[HotspotItem],
    observed_keys: Iterable[tuple[str, str]],
) -> list[HotspotItem]:
    """Merge a fresh mining run into the stored hotspots.

    - re-detected: fresh evidence, stored case id / status / assignee kept
    - newly detected: added as ``New``
    - observed but no longer qualifying: Confirmed ones stay with
      ``resolved=True``; New / In Review ones are dropped
    - not observed in this run: kept unchanged
    """
    stored = {h.key: h for h in existing}
    observed = set(observed_keys)
    detected_list = list(detected)
    detected_keys = {h.key for h in detected_list}

    retained: list[HotspotItem] = []
    dropped = 0
    for key, item in stored.items():
        if key in detected_keys:
            continue
        if key not in observed:
            retained.append(item)
        elif item.status is HotspotStatus.CONFIRMED:
            retained.append(replace(item, resolved=True))
        else:
            dropped += 1

    used_ids = {h.case_id for h in stored.values()}
    merged: list[HotspotItem] = []
    for item in detected_list:
        prev = stored.get(item.key)
        if prev is not None:
            merged.append(replace(
                item,
                case_id=prev.case_id,
                status=prev.status,
                assigned_to=prev.assigned_to,
                resolved=False,
            ))
            continue
        case_id = item.case_id
        n = 2
        while case_id in used_ids:
            case_id = f"{item.case_id}-{n}"
            n += 1
        used_ids.add(case_id)
        merged.append(replace(item, case_id=case_id))

    logger.info(
        f"Hotspot reconcile: {len(merged)} detected, {len(retained)} retained, {dropped} dropped"
    )
    return merged + retained


def transition_status(item: HotspotItem, new_status: HotspotStatus | str) -> HotspotItem:
    """Move a hotspot one step along New → In Review → Confirmed."""
    try:
        target = HotspotStatus(new_status)
    except ValueError:
        raise InvalidStatusTransition(f"Unknown hotspot status '{new_status}'") from None
    if _NEXT_STATUS.get(item.status) is not target:
        raise InvalidStatusTransition(
            f"{item.case_id}: cannot move from '{item.status.value}' to '{target.value}'"
        )
    return replace(item, status=target)


# ═══════════════════════════════════════════════════
# 3. DASHBOARD ROLLUPS
# ═══════════════════════════════════════════════════

def _tile_colour(avg_drr: float) -> str:
    for bound, colour in DRR_TILE_COLOURS:
        if avg_drr < bound:
            return colour
    return "green"


def summarise_hotspots(
    hotspots: Iterable[HotspotItem], locations: Iterable[LocationRecord]
) -> dict:
    """Severity counts, affected volume, loss, top offices and per-office tiles."""
    all_hotspots = list(hotspots)
    active = [h for h in all_hotspots if not h.resolved]
    location_list = list(locations)

    total_txns = sum(loc.transaction_count for loc in location_list)
    hotspot_txns = sum(h.location.transaction_count for h in active)
    total_loss = math.fsum(h.location.estimated_loss for h in active)

    by_office: dict[str, list[HotspotItem]] = defaultdict(list)
    for h in active:
        by_office[h.location.sro_code].append(h)
    top_offices = sorted(
        (
            {
                "sro_code": code,
                "sro_name": items[0].location.sro_name,
                "avg_drr": round(float(np.mean([h.location.drr for h in items])), 2),
                "hotspots": len(items),
                "loss": math.fsum(h.location.estimated_loss for h in items),
            }
            for code, items in by_office.items()
        ),
        key=lambda row: (-row["loss"], row["sro_code"]),
    )[:10]

    office_locations: dict[str, list[LocationRecord]] = defaultdict(list)
    for loc in location_list:
        office_locations[loc.sro_code].append(loc)
    tiles = []
    for code in sorted(office_locations):
        locs = office_locations[code]
        avg_drr = round(float(np.mean([loc.drr for loc in locs])), 2)
        tiles.append({
            "sro_code": code,
            "sro_name": locs[0].sro_name,
            "district": locs[0].district,
            "avg_drr": avg_drr,
            "hotspot_count": len(by_office.get(code, [])),
            "transaction_count": sum(loc.transaction_count for loc in locs),
            "estimated_loss": math.fsum(h.location.estimated_loss for h in by_office.get(code, [])),
            "color": _tile_colour(avg_drr),
        })

    counts = {s.value: 0 for s in MVSeverity if s is not MVSeverity.NORMAL}
    for h in active:
        if h.severity.value in counts:
            counts[h.severity.value] += 1

    return {
        "total_hotspots": len(active),
        "resolved_hotspots": len(all_hotspots) - len(active),
        "severity_counts": counts,
        "affected_transactions": hotspot_txns,
        "pct_in_hotspots": round(hotspot_txns / max(1, total_txns) * 100, 1),
        "total_loss": total_loss,
        "locations_monitored": len(location_list),
        "top_offices": top_offices,
        "office_tiles": tiles,
    }


def quarterly_drr_trend(transactions: Iterable[MVTransaction]) -> list[dict]:
    """Average transaction DRR and loss per quarter, oldest first."""
    by_period: dict[str, list[MVTransaction]] = defaultdict(list)
    for t in transactions:
        if t.date is not None and t.drr is not None:
            by_period[quarter_label(t.date)].append(t)
    return [
        {
            "quarter": period,
            "avg_drr": round(float(np.mean([t.drr for t in txns])), 2),
            "transaction_count": len(txns),
            "loss": round(math.fsum(t.loss for t in txns), 2),
        }
        for period, txns in sorted(by_period.items())
    ]
