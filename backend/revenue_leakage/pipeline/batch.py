"""Batch runner — evaluates many cases against one shared reference snapshot.

The repeat-exemption usage index is built in a single pre-pass over the whole
batch, so the result for any case does not depend on evaluation order.
Cases are then evaluated on a thread pool; results keep input order.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional

from revenue_leakage.config import BATCH_MAX_WORKERS, RulesConfig
from revenue_leakage.pipeline.aggregator import evaluate_case
from revenue_leakage.pipeline.models import Case, RiskLevel, RuleEvaluationResult
from revenue_leakage.pipeline.reference import ExemptionUsageIndex, ReferenceData

logger = logging.getLogger(__name__)


def evaluate_batch(
    cases: Iterable[Case],
    reference: ReferenceData,
    config: RulesConfig,
    max_workers: Optional[int] = None,
) -> list[RuleEvaluationResult]:
    """Evaluate ``cases`` concurrently; output order matches input order.

    Raises:
        ConfigError: when ``config`` is inconsistent (checked before any work).
    """
    config.validate()
    case_list = list(cases)
    if not case_list:
        return []

    usage_index = ExemptionUsageIndex.build(case_list)
    workers = max(1, min(max_workers or BATCH_MAX_WORKERS, len(case_list)))

    t0 = time.monotonic()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rle-batch") as pool:
        results = list(pool.map(
            lambda c: evaluate_case(c, reference, config, usage_index),
            case_list,
        ))
    elapsed = time.monotonic() - t0

    high = sum(1 for r in results if r.risk_level is RiskLevel.HIGH)
    errored = sum(1 for r in results if r.rule_errors)
    logger.info(
        f"Batch evaluated {len(results)} case(s) in {elapsed:.2f}s with {workers} worker(s): "
        f"{high} high risk, {errored} with rule errors"
    )
    return results
