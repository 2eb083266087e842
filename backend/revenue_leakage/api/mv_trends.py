"""Market-value trend endpoints: hotspots, anomalies, office comparison, seasonality."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from revenue_leakage.api.deps import resolve_config
from revenue_leakage.pipeline.hotspots import (
    HotspotItem,
    InvalidStatusTransition,
    LocationRecord,
    MVTransaction,
    build_location_records,
    mine_hotspots,
    quarterly_drr_trend,
    reconcile_hotspots,
    summarise_hotspots,
    transition_status,
)
from revenue_leakage.pipeline.trends import (
    DeclaredGrowth,
    OfficeDrrSummary,
    RateCardGrowth,
    SeasonalSeries,
    compare_office_pairs,
    detect_declared_divergence,
    detect_rate_card_anomalies,
    detect_seasonal_patterns,
    office_drr_summaries,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class HotspotRequest(BaseModel):
    locations: list[dict] = Field(default_factory=list)
    transactions: list[dict] = Field(default_factory=list)
    existing: list[dict] = Field(default_factory=list)
    run_year: Optional[int] = None
    config: Optional[dict] = None


class RateCardAnomalyRequest(BaseModel):
    rows: list[dict]
    office_stats: Optional[dict[str, tuple[float, float]]] = None
    config: Optional[dict] = None


class RowsRequest(BaseModel):
    rows: list[dict]
    config: Optional[dict] = None


class ComparisonRequest(BaseModel):
    # Either explicit summary pairs, or location records plus office-code pairs
    pairs: list[tuple[dict, dict]] = Field(default_factory=list)
    locations: list[dict] = Field(default_factory=list)
    office_pairs: list[tuple[str, str]] = Field(default_factory=list)
    config: Optional[dict] = None


class TransitionRequest(BaseModel):
    hotspot: dict
    new_status: str


def _parse_rows(rows: list[dict], factory):
    try:
        return [factory(r) for r in rows]
    except (TypeError, ValueError, KeyError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid row: {e}")


@router.post("/hotspots")
def hotspots(request: HotspotRequest):
    """Mine hotspots from location records (or raw transactions) and reconcile with stored ones."""
    config = resolve_config(request.config)
    transactions = _parse_rows(request.transactions, MVTransaction.from_dict)
    locations = _parse_rows(request.locations, LocationRecord.from_dict)
    if transactions:
        locations.extend(build_location_records(transactions, config))
    if not locations:
        raise HTTPException(status_code=400, detail="No locations or transactions supplied")

    try:
        detected = mine_hotspots(locations, config, request.run_year)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    existing = _parse_rows(request.existing, HotspotItem.from_dict)
    if existing:
        detected = reconcile_hotspots(existing, detected, {loc.key for loc in locations})

    return {
        "hotspots": [h.to_dict() for h in detected],
        "summary": summarise_hotspots(detected, locations),
        "quarterly_trend": quarterly_drr_trend(transactions),
    }


@router.post("/hotspots/transition")
def hotspot_transition(request: TransitionRequest):
    item = _parse_rows([request.hotspot], HotspotItem.from_dict)[0]
    try:
        updated = transition_status(item, request.new_status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Hotspot {updated.case_id}: {item.status.value} → {updated.status.value}")
    return updated.to_dict()


@router.post("/anomalies/rate-card")
def rate_card_anomalies(request: RateCardAnomalyRequest):
    config = resolve_config(request.config)
    rows = _parse_rows(request.rows, RateCardGrowth.from_dict)
    found = detect_rate_card_anomalies(rows, config, request.office_stats)
    return {"anomalies": [a.to_dict() for a in found]}


@router.post("/anomalies/declared")
def declared_divergence(request: RowsRequest):
    config = resolve_config(request.config)
    rows = _parse_rows(request.rows, DeclaredGrowth.from_dict)
    return {"trends": [d.to_dict() for d in detect_declared_divergence(rows, config)]}


@router.post("/comparison")
def office_comparison(request: ComparisonRequest):
    config = resolve_config(request.config)
    pairs = [tuple(_parse_rows([a, b], OfficeDrrSummary.from_dict)) for a, b in request.pairs]
    if request.office_pairs:
        summaries = office_drr_summaries(_parse_rows(request.locations, LocationRecord.from_dict))
        missing = sorted({c for pair in request.office_pairs for c in pair} - set(summaries))
        if missing:
            raise HTTPException(status_code=422, detail=f"No locations for office(s): {missing}")
        pairs.extend((summaries[a], summaries[b]) for a, b in request.office_pairs)
    return {"pairs": [c.to_dict() for c in compare_office_pairs(pairs, config)]}


@router.post("/seasonal")
def seasonal_patterns(request: RowsRequest):
    config = resolve_config(request.config)
    rows = _parse_rows(request.rows, SeasonalSeries.from_dict)
    return {"patterns": [p.to_dict() for p in detect_seasonal_patterns(rows, config)]}
