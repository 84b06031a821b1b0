"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.schemas import (
    BroadcastEventOut,
    EnvironmentPageOut,
    EnvironmentReadingIn,
    EnvironmentReadingOut,
    EnvironmentStatsOut,
    PaginationOut,
    ReadingIn,
    ReadingOut,
    RecipientIn,
    RecipientsResponse,
    SystemReadingIn,
    SystemReadingOut,
    ThresholdsResponse,
    as_utc,
    reading_out,
)
from datastore.readings import PersistenceError
from models.records import EnvironmentReading, SystemReading
from services.ingestion import IngestionOrchestrator, build_default_orchestrator
from services.stats import DEFAULT_PERIOD, EnvironmentAggregator, period_start
from services.thresholds import ENVIRONMENT, SYSTEM

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator() -> IngestionOrchestrator:
    return build_default_orchestrator()


def _ingest(orchestrator: IngestionOrchestrator, payload: ReadingIn) -> ReadingOut:
    reading = orchestrator.new_reading(payload)
    try:
        orchestrator.ingest(reading)
    except PersistenceError as exc:
        logger.error(
            "Failed to store reading",
            extra={"reading_id": reading.reading_id, "device_id": reading.device_id, "reason": str(exc)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error",
        ) from exc
    return reading_out(reading)


def _latest(orchestrator: IngestionOrchestrator, kind: str) -> ReadingOut:
    reading = orchestrator.table.latest(kind)
    if reading is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {kind} readings found",
        )
    return reading_out(reading)


def _range(
    orchestrator: IngestionOrchestrator,
    kind: str,
    start_date: datetime,
    end_date: datetime,
    device_id: Optional[str],
) -> List[ReadingOut]:
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startDate must not be after endDate",
        )
    readings = orchestrator.table.query(kind, start=start_date, end=end_date, device_id=device_id)
    return [reading_out(reading) for reading in readings]


@router.post(
    "/environment",
    status_code=status.HTTP_201_CREATED,
    response_model=EnvironmentReadingOut,
    summary="Ingest an environment reading.",
)
async def ingest_environment(
    payload: EnvironmentReadingIn,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ReadingOut:
    return _ingest(orchestrator, payload)


@router.get(
    "/environment",
    response_model=EnvironmentPageOut,
    summary="Environment readings, newest first, one page at a time.",
)
async def list_environment(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> EnvironmentPageOut:
    readings, total = orchestrator.table.page(EnvironmentReading.kind, page, limit)
    return EnvironmentPageOut(
        data=[reading_out(reading) for reading in readings],
        pagination=PaginationOut(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get(
    "/environment/latest",
    response_model=EnvironmentReadingOut,
    summary="Most recent environment reading.",
)
async def latest_environment(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ReadingOut:
    return _latest(orchestrator, EnvironmentReading.kind)


@router.get(
    "/environment/range",
    response_model=List[EnvironmentReadingOut],
    summary="Environment readings within a time range.",
)
async def environment_range(
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> List[ReadingOut]:
    return _range(orchestrator, EnvironmentReading.kind, start_date, end_date, device_id)


@router.get(
    "/environment/stats",
    response_model=EnvironmentStatsOut,
    response_model_exclude_none=True,
    summary="Averages and extremes of recent environment readings.",
)
async def environment_stats(
    period: str = Query(DEFAULT_PERIOD, description="One of 1h, 24h, 7d or 30d."),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> EnvironmentStatsOut:
    start = period_start(period, orchestrator.clock())
    readings = orchestrator.table.query(EnvironmentReading.kind, start=start)
    summary = EnvironmentAggregator().aggregate(readings)
    return EnvironmentStatsOut(**asdict(summary))


@router.post(
    "/system/metrics",
    status_code=status.HTTP_201_CREATED,
    response_model=SystemReadingOut,
    summary="Ingest host metrics from a device agent.",
)
async def ingest_system(
    payload: SystemReadingIn,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ReadingOut:
    return _ingest(orchestrator, payload)


@router.get(
    "/system/latest",
    response_model=SystemReadingOut,
    summary="Most recent system metrics.",
)
async def latest_system(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ReadingOut:
    return _latest(orchestrator, SystemReading.kind)


@router.get(
    "/system/range",
    response_model=List[SystemReadingOut],
    summary="System metrics within a time range.",
)
async def system_range(
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> List[ReadingOut]:
    return _range(orchestrator, SystemReading.kind, start_date, end_date, device_id)


@router.get(
    "/system/devices",
    response_model=List[SystemReadingOut],
    summary="Latest system metrics for every known device.",
)
async def system_devices(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> List[ReadingOut]:
    return [reading_out(reading) for reading in orchestrator.table.latest_per_device(SystemReading.kind)]


@router.get(
    "/thresholds",
    response_model=ThresholdsResponse,
    summary="Threshold values currently in effect.",
)
async def current_thresholds(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ThresholdsResponse:
    return ThresholdsResponse(
        environment=orchestrator.thresholds.snapshot(ENVIRONMENT).as_dict(),
        system=orchestrator.thresholds.snapshot(SYSTEM).as_dict(),
    )


@router.get(
    "/recipients",
    response_model=RecipientsResponse,
    summary="Addresses opted into alert notifications.",
)
async def list_recipients(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> RecipientsResponse:
    return RecipientsResponse(recipients=sorted(orchestrator.directory.list_recipients()))


@router.post(
    "/recipients",
    status_code=status.HTTP_201_CREATED,
    response_model=RecipientsResponse,
    summary="Opt an address into alert notifications.",
)
async def add_recipient(
    payload: RecipientIn,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> RecipientsResponse:
    try:
        orchestrator.directory.subscribe(payload.address)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return RecipientsResponse(recipients=sorted(orchestrator.directory.list_recipients()))


@router.delete(
    "/recipients/{address}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Opt an address out of alert notifications.",
)
async def remove_recipient(
    address: str,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> Response:
    if not orchestrator.directory.unsubscribe(address):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recipient {address!r} not found.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/events",
    response_model=List[BroadcastEventOut],
    summary="Recently broadcast live events.",
)
async def recent_events(
    topic: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> List[BroadcastEventOut]:
    events = orchestrator.broadcaster.recent(topic=topic, limit=limit)
    return [
        BroadcastEventOut(topic=event.topic, payload=event.payload, published_at=event.published_at)
        for event in events
    ]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
