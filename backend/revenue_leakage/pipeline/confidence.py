"""Aggregate confidence for a set of rule hits.

Signals combined
────────────────
1. Per-hit confidence from the rule catalog
2. Severity weight (High hits pull the mean harder than Low ones)
3. Missing-input penalty for every Data-Integrity hit caused by absent data

The result never drops more than ``confidence_tolerance`` points below the
weakest contributing hit, and is 0 when nothing fired.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from revenue_leakage.config import RulesConfig
from revenue_leakage.pipeline.models import RuleHit

logger = logging.getLogger(__name__)


def combine_confidence(hits: Sequence[RuleHit], config: RulesConfig) -> int:
    """Severity-weighted mean of hit confidences, penalised for missing input."""
    if not hits:
        return 0

    ordered = sorted(hits, key=lambda h: h.sort_key())
    weights = [float(config.severity_points.get(h.severity.value, 0)) for h in ordered]
    total_weight = math.fsum(weights)
    if total_weight > 0:
        mean = math.fsum(w * h.confidence for w, h in zip(weights, ordered)) / total_weight
    else:
        mean = math.fsum(h.confidence for h in ordered) / len(ordered)

    missing = sum(1 for h in ordered if h.missing_input)
    penalised = mean - config.missing_input_penalty * missing

    floor = max(0, min(h.confidence for h in ordered) - config.confidence_tolerance)
    result = int(min(100, max(floor, round(penalised))))
    if missing:
        logger.debug(f"Confidence: mean={mean:.1f} penalty={config.missing_input_penalty * missing} "
                     f"floor={floor} → {result}")
    return result
