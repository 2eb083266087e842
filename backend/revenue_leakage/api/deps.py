"""Shared rules config and reference data for the API routers."""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException

from revenue_leakage.config import REFERENCE_DATA_PATH, ConfigError, RulesConfig, get_rules_config
from revenue_leakage.pipeline.reference import ReferenceData

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_default_config() -> RulesConfig:
    return get_rules_config()


@lru_cache(maxsize=1)
def get_default_reference() -> ReferenceData:
    """Reference data from REFERENCE_DATA_PATH, loaded once per process."""
    if not REFERENCE_DATA_PATH:
        logger.warning("REFERENCE_DATA_PATH not set — rate card / registry lookups will be empty")
        return ReferenceData()
    return ReferenceData.load(REFERENCE_DATA_PATH)


def resolve_config(overrides: Optional[dict]) -> RulesConfig:
    """Request-level config: defaults, or overrides validated into a new config."""
    if not overrides:
        return get_default_config()
    try:
        return RulesConfig.from_dict(overrides)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))


def resolve_reference(inline: Optional[dict]) -> ReferenceData:
    if inline is None:
        return get_default_reference()
    try:
        return ReferenceData.from_dict(inline)
    except (TypeError, ValueError, AttributeError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid reference data: {e}")
