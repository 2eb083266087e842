"""Trend & anomaly detectors for the market-value dashboard.

Each detector is an independent, side-effect-free transform from plain
rows to flagged findings:

  - rate-card growth z-score anomalies within an office
  - declared-value growth lagging rate-card growth
  - office-pair DRR divergence
  - seasonal months with persistent DRR dips
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, Optional

import numpy as np

from revenue_leakage.config import RulesConfig
from revenue_leakage.pipeline.hotspots import LocationRecord
from revenue_leakage.pipeline.models import _get
from revenue_leakage.pipeline.utils import parse_amount

logger = logging.getLogger(__name__)


def _pct_gap(a: float, b: float) -> float:
    denom = max(a, b)
    return round((a - b) / denom * 100, 1) if denom > 0 else 0.0


# ═══════════════════════════════════════════════════
# 1. RATE CARD GROWTH ANOMALIES
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class RateCardGrowth:
    location_label: str
    sro_code: str
    prev_rate: float
    current_rate: float
    sro_name: str = ""

    @property
    def growth_pct(self) -> Optional[float]:
        if self.prev_rate <= 0:
            return None
        return (self.current_rate - self.prev_rate) / self.prev_rate * 100

    @classmethod
    def from_dict(cls, d: dict) -> RateCardGrowth:
        return cls(
            location_label=str(_get(d, "location_label", default="")),
            sro_code=str(_get(d, "sro_code", default="")),
            prev_rate=parse_amount(_get(d, "prev_rate", "PRE_REV_RATE", default=0)) or 0.0,
            current_rate=parse_amount(_get(d, "current_rate", "REV_RATE", default=0)) or 0.0,
            sro_name=str(_get(d, "sro_name", default="")),
        )


@dataclass(frozen=True)
class RateCardAnomaly:
    location_label: str
    sro_code: str
    sro_name: str
    prev_rate: float
    current_rate: float
    growth_pct: float
    sro_avg_growth: float
    z_score: float
    rule_id: str
    severity: str

    def to_dict(self) -> dict:
        return asdict(self)


def detect_rate_card_anomalies(
    rows: Iterable[RateCardGrowth],
    config: RulesConfig,
    office_stats: Optional[Mapping[str, tuple[float, float]]] = None,
) -> list[RateCardAnomaly]:
    """Flag locations whose rate-card growth is an outlier within their office.

    Args:
        rows: one growth row per location
        config: z thresholds (``rate_card_z_high`` / ``rate_card_z_critical``)
        office_stats: optional ``{sro_code: (mean_growth_pct, std_growth_pct)}``;
            when absent, population mean/std over the office's own rows is used

    Offices with std 0, or fewer than 2 locations and no supplied stats, are skipped.
    """
    office_stats = office_stats or {}
    by_office: dict[str, list[tuple[RateCardGrowth, float]]] = defaultdict(list)
    for row in rows:
        growth = row.growth_pct
        if growth is not None:
            by_office[row.sro_code].append((row, growth))

    anomalies = []
    for sro_code, items in by_office.items():
        if sro_code in office_stats:
            mean, std = office_stats[sro_code]
        elif len(items) >= 2:
            growths = np.array([g for _, g in items], dtype=float)
            mean, std = float(growths.mean()), float(growths.std())
        else:
            continue
        if std <= 0:
            logger.debug(f"Rate card anomalies: {sro_code} skipped (zero spread)")
            continue

        for row, growth in items:
            z = (growth - mean) / std
            if abs(z) > config.rate_card_z_critical:
                severity = "Critical"
            elif abs(z) > config.rate_card_z_high:
                severity = "High"
            else:
                continue
            anomalies.append(RateCardAnomaly(
                location_label=row.location_label,
                sro_code=sro_code,
                sro_name=row.sro_name,
                prev_rate=row.prev_rate,
                current_rate=row.current_rate,
                growth_pct=round(growth, 1),
                sro_avg_growth=round(mean, 1),
                z_score=round(z, 1),
                rule_id="R-MV-001" if z > 0 else "R-MV-002",
                severity=severity,
            ))
    anomalies.sort(key=lambda a: (-abs(a.z_score), a.sro_code, a.location_label))
    return anomalies


# ═══════════════════════════════════════════════════
# 2. DECLARED VALUE DIVERGENCE
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class DeclaredGrowth:
    location_label: str
    sro_code: str
    quarterly_growth: tuple[float, float, float, float]   # q1..q4, percent
    rate_card_growth: float
    sro_name: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> DeclaredGrowth:
        quarters = _get(d, "quarterly_growth")
        if quarters is None:
            quarters = [_get(d, f"q{i}_growth", default=0.0) for i in range(1, 5)]
        if len(quarters) != 4:
            raise ValueError(f"expected 4 quarterly growth values, got {len(quarters)}")
        return cls(
            location_label=str(_get(d, "location_label", default="")),
            sro_code=str(_get(d, "sro_code", default="")),
            quarterly_growth=tuple(float(q) for q in quarters),
            rate_card_growth=float(_get(d, "rate_card_growth", default=0.0)),
            sro_name=str(_get(d, "sro_name", default="")),
        )


@dataclass(frozen=True)
class DeclaredDivergence:
    location_label: str
    sro_code: str
    sro_name: str
    q1_growth: float
    q2_growth: float
    q3_growth: float
    q4_growth: float
    rate_card_growth: float
    divergence: float
    rule_id: str
    severity: str

    def to_dict(self) -> dict:
        return asdict(self)


def detect_declared_divergence(
    rows: Iterable[DeclaredGrowth], config: RulesConfig
) -> list[DeclaredDivergence]:
    """Locations where rate cards grew faster than declared values by more than the floor."""
    flagged = []
    for row in rows:
        divergence = row.rate_card_growth - float(np.mean(row.quarterly_growth))
        if divergence <= config.declared_divergence_floor:
            continue
        if divergence > config.declared_divergence_high:
            rule_id, severity = "R-MV-005", "High"
        elif row.quarterly_growth[-1] < 0:
            rule_id, severity = "R-MV-004", "Medium"
        else:
            rule_id, severity = "R-MV-003", "Watch"
        q1, q2, q3, q4 = row.quarterly_growth
        flagged.append(DeclaredDivergence(
            location_label=row.location_label,
            sro_code=row.sro_code,
            sro_name=row.sro_name,
            q1_growth=q1, q2_growth=q2, q3_growth=q3, q4_growth=q4,
            rate_card_growth=row.rate_card_growth,
            divergence=round(divergence, 1),
            rule_id=rule_id,
            severity=severity,
        ))
    flagged.sort(key=lambda f: (-f.divergence, f.sro_code, f.location_label))
    return flagged


# ═══════════════════════════════════════════════════
# 3. OFFICE-PAIR COMPARISON
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class OfficeDrrSummary:
    code: str
    avg_drr: float
    name: str = ""
    txn_count: int = 0
    rate_card_avg: float = 0.0
    declared_avg: float = 0.0

    @classmethod
    def from_dict(cls, d: dict) -> OfficeDrrSummary:
        return cls(
            code=str(_get(d, "code", "sro_code", default="")),
            avg_drr=float(_get(d, "avg_drr", default=0.0)),
            name=str(_get(d, "name", "sro_name", default="")),
            txn_count=int(_get(d, "txn_count", default=0)),
            rate_card_avg=parse_amount(_get(d, "rate_card_avg", default=0)) or 0.0,
            declared_avg=parse_amount(_get(d, "declared_avg", default=0)) or 0.0,
        )


@dataclass(frozen=True)
class OfficeComparison:
    sro_a: OfficeDrrSummary
    sro_b: OfficeDrrSummary
    drr_gap: float
    lower_drr_sro: str
    is_flagged: bool
    severity: str
    rate_card_gap_pct: float
    declared_gap_pct: float

    def to_dict(self) -> dict:
        return asdict(self)


def office_drr_summaries(locations: Iterable[LocationRecord]) -> dict[str, OfficeDrrSummary]:
    """Per-office averages over location records, keyed by office code."""
    grouped: dict[str, list[LocationRecord]] = defaultdict(list)
    for loc in locations:
        grouped[loc.sro_code].append(loc)
    return {
        code: OfficeDrrSummary(
            code=code,
            name=locs[0].sro_name,
            avg_drr=round(float(np.mean([loc.drr for loc in locs])), 2),
            txn_count=sum(loc.transaction_count for loc in locs),
            rate_card_avg=round(float(np.mean([loc.rate_card_unit_rate for loc in locs])), 2),
            declared_avg=round(float(np.mean([loc.median_declared for loc in locs])), 2),
        )
        for code, locs in sorted(grouped.items())
    }


def compare_offices(a: OfficeDrrSummary, b: OfficeDrrSummary, config: RulesConfig) -> OfficeComparison:
    gap = abs(a.avg_drr - b.avg_drr)
    flagged = gap > config.office_drr_gap_floor
    return OfficeComparison(
        sro_a=a,
        sro_b=b,
        drr_gap=round(gap, 2),
        lower_drr_sro=a.code if a.avg_drr < b.avg_drr else b.code,
        is_flagged=flagged,
        severity="High" if flagged else "Medium",
        rate_card_gap_pct=_pct_gap(a.rate_card_avg, b.rate_card_avg),
        declared_gap_pct=_pct_gap(a.declared_avg, b.declared_avg),
    )


def compare_office_pairs(
    pairs: Iterable[tuple[OfficeDrrSummary, OfficeDrrSummary]], config: RulesConfig
) -> list[OfficeComparison]:
    """Compare each pair; widest DRR gap first."""
    results = [compare_offices(a, b, config) for a, b in pairs]
    results.sort(key=lambda c: (-c.drr_gap, c.sro_a.code, c.sro_b.code))
    return results


# ═══════════════════════════════════════════════════
# 4. SEASONAL PATTERNS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class SeasonalSeries:
    location_label: str
    sro_code: str
    monthly_delta: tuple[float, ...]
    sro_name: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> SeasonalSeries:
        return cls(
            location_label=str(_get(d, "location_label", default="")),
            sro_code=str(_get(d, "sro_code", default="")),
            monthly_delta=tuple(float(x) for x in _get(d, "monthly_delta", default=[]) or []),
            sro_name=str(_get(d, "sro_name", default="")),
        )


@dataclass(frozen=True)
class SeasonalPattern:
    location_label: str
    sro_code: str
    sro_name: str
    monthly_delta: tuple[float, ...]
    persistent_alerts: tuple[int, ...]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["monthly_delta"] = list(self.monthly_delta)
        d["persistent_alerts"] = list(self.persistent_alerts)
        return d


def detect_seasonal_patterns(
    rows: Iterable[SeasonalSeries], config: RulesConfig
) -> list[SeasonalPattern]:
    """Locations with at least ``seasonal_min_alert_months`` months below the delta threshold.

    ``persistent_alerts`` holds the 0-based month indices of those dips.
    """
    patterns = []
    for row in rows:
        if not row.monthly_delta:
            continue
        deltas = np.asarray(row.monthly_delta, dtype=float)
        alerts = tuple(int(i) for i in np.flatnonzero(deltas < config.seasonal_delta_threshold))
        if len(alerts) >= config.seasonal_min_alert_months:
            patterns.append(SeasonalPattern(
                location_label=row.location_label,
                sro_code=row.sro_code,
                sro_name=row.sro_name,
                monthly_delta=row.monthly_delta,
                persistent_alerts=alerts,
            ))
    return patterns
