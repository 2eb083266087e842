"""Case evaluation endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from revenue_leakage.api.deps import get_default_config, resolve_config, resolve_reference
from revenue_leakage.pipeline.aggregator import evaluate_case, summarise_offices
from revenue_leakage.pipeline.batch import evaluate_batch
from revenue_leakage.pipeline.models import Case
from revenue_leakage.pipeline.rule_catalog import build_rule_roster

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_CASES_PER_REQUEST = 5000


class EvaluateRequest(BaseModel):
    case: dict
    reference: Optional[dict] = None
    config: Optional[dict] = None


class EvaluateBatchRequest(BaseModel):
    cases: list[dict] = Field(default_factory=list)
    reference: Optional[dict] = None
    config: Optional[dict] = None
    max_workers: Optional[int] = Field(default=None, ge=1, le=64)


def _parse_case(raw: dict, index: int = 0) -> Case:
    try:
        return Case.from_dict(raw)
    except (TypeError, ValueError, AttributeError) as e:
        raise HTTPException(status_code=422, detail=f"Case #{index}: {e}")


@router.post("/evaluate")
def evaluate_one(request: EvaluateRequest):
    """Evaluate a single case and return its scored result."""
    config = resolve_config(request.config)
    reference = resolve_reference(request.reference)
    result = evaluate_case(_parse_case(request.case), reference, config)
    return result.to_dict()


@router.post("/evaluate-batch")
def evaluate_many(request: EvaluateBatchRequest):
    """Evaluate many cases; results follow request order, plus a per-office rollup."""
    if len(request.cases) > MAX_CASES_PER_REQUEST:
        raise HTTPException(status_code=413, detail=f"Maximum {MAX_CASES_PER_REQUEST} cases per request")
    config = resolve_config(request.config)
    reference = resolve_reference(request.reference)
    cases = [_parse_case(raw, i) for i, raw in enumerate(request.cases)]
    results = evaluate_batch(cases, reference, config, request.max_workers)
    offices = {c.office.sr_code: c.office for c in cases if c.office.sr_code}
    return {
        "results": [r.to_dict() for r in results],
        "office_risk_scores": summarise_offices(results, config, offices),
        "total_cases": len(results),
    }


@router.get("/rules")
def list_rules():
    """Rule catalog with the effective enabled flag under the default config."""
    return {"rules": build_rule_roster(get_default_config())}
