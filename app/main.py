from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.ingestion import build_default_orchestrator


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    orchestrator = build_default_orchestrator()
    try:
        yield
    finally:
        orchestrator.shutdown()
        build_default_orchestrator.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Telemetry Alert Service",
        description="Sensor and device telemetry ingestion with throttled threshold alerts.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
