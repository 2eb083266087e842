"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from revenue_leakage.api import cases, mv_trends
from revenue_leakage.api.deps import get_default_config, get_default_reference
from revenue_leakage.pipeline.rule_catalog import partition_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: validate rules config and load reference data once.

    A ConfigError here is fatal; the service refuses to start.
    """
    config = get_default_config()
    enabled, disabled = partition_rules(config)
    reference = get_default_reference()
    logger.info(
        f"Rules config OK: {len(enabled)} rule(s) enabled, {len(disabled)} disabled; "
        f"{reference.rate_card_count} rate card entries loaded"
    )
    yield


app = FastAPI(
    title="Revenue Leakage Intelligence",
    description="Registration revenue leakage detection, risk scoring and market-value hotspots",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cases.router, prefix="/api/cases", tags=["Cases"])
app.include_router(mv_trends.router, prefix="/api/mv-trends", tags=["MV Trends"])


@app.get("/api/health")
async def health():
    return {"status": "operational", "platform": "Revenue Leakage Intelligence"}
