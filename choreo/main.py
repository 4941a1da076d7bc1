"""FastAPI entry-point exposing orchestrator controls."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI

from choreo.api.positions import router as positions_router
from choreo.api.sessions import router as sessions_router
from choreo.config import config
from choreo.logging_config import configure_logging
from choreo.orchestration.orchestrator import Orchestrator
from choreo.runtime import get_orchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.orchestrator.log_level)
    logger.info("choreo starting in %s mode", config.environment)
    yield
    await get_orchestrator().terminate_all()


app = FastAPI(title="Choreo Orchestrator", lifespan=lifespan)
app.include_router(positions_router)
app.include_router(sessions_router)


@app.get("/health")
async def health(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    return {"status": "ok", **orchestrator.stats()}


def run() -> None:
    uvicorn.run("choreo.main:app", host="0.0.0.0", port=8000)
