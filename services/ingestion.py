"""Ingestion orchestration: persist, broadcast, gate, then notify in the background."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from app.schemas import EnvironmentReadingIn, SystemReadingIn, serialize_reading
from datastore.readings import MockReadingTable, build_default_table
from datastore.recipients import RecipientDirectory, build_default_directory
from models.records import AlertCandidate, DispatchReport, IngestionOutcome, Reading
from services.broadcast import InMemoryBroadcaster
from services.channels import build_default_channel
from services.cooldown import CooldownGate
from services.dispatcher import NotificationDispatcher
from services.evaluator import RuleSet, evaluate, rule_set_for
from services.reports import TextReportGenerator
from services.thresholds import EnvThresholdProvider, ThresholdProvider
from settings import get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionOrchestrator:
    """Coordinates persistence, live broadcast and alert notification.

    ``ingest`` stores, broadcasts, evaluates and gates the reading before it
    returns. Notification dispatch for admitted alerts runs on a private pool
    and never waits on sends, so a slow channel cannot hold up later
    readings. The returned future resolves once every send has an outcome.
    """

    def __init__(
        self,
        table: MockReadingTable,
        broadcaster: InMemoryBroadcaster,
        thresholds: ThresholdProvider,
        gate: CooldownGate,
        dispatcher: NotificationDispatcher,
        directory: RecipientDirectory,
        workers: int = 4,
        clock: Clock = _utc_now,
    ) -> None:
        self.table = table
        self.broadcaster = broadcaster
        self.thresholds = thresholds
        self.gate = gate
        self.dispatcher = dispatcher
        self.directory = directory
        self.clock = clock
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="alerts")
        self._futures: Dict[str, Future[Optional[IngestionOutcome]]] = {}
        self._futures_lock = Lock()

    def new_reading(self, payload: EnvironmentReadingIn | SystemReadingIn) -> Reading:
        return payload.to_reading(reading_id=str(uuid4()), received_at=self.clock())

    def ingest(self, reading: Reading) -> Future[Optional[IngestionOutcome]]:
        """Persist, broadcast and gate ``reading``, then hand alerts to the pool.

        Evaluation and the cooldown gate run inline, so admissions follow
        ingest order and use the clock at receipt. Only notification
        dispatch is detached. Raises ``PersistenceError`` when the store
        rejects the reading; no alerting happens in that case.
        """
        self.table.put_item(reading)

        rule_set = rule_set_for(reading)
        self.broadcaster.publish(rule_set.reading_topic, serialize_reading(reading))

        outcome: Future[Optional[IngestionOutcome]] = Future()
        context = {
            "reading_id": reading.reading_id,
            "device_id": reading.device_id,
            "rule_set": rule_set.name,
        }
        try:
            config = self.thresholds.snapshot(rule_set.name)
            candidates = evaluate(reading, config, rule_set)
            admitted = self.gate.admit(candidates, self.clock(), config.cooldown)
        except Exception:  # noqa: BLE001 - ingestion already succeeded
            logger.exception("Alert processing failed", extra=context)
            outcome.set_result(None)
            return outcome

        if not admitted:
            outcome.set_result(IngestionOutcome(reading_id=reading.reading_id))
            return outcome

        logger.info(
            "Alert thresholds crossed",
            extra={**context, "admitted_count": len(admitted)},
        )
        with self._futures_lock:
            self._futures[reading.reading_id] = outcome
        outcome.add_done_callback(lambda _f, rid=reading.reading_id: self._clear_future(rid))
        try:
            self.executor.submit(self._dispatch, reading, tuple(admitted), rule_set, outcome)
        except RuntimeError:
            logger.warning("Alert dispatch skipped; orchestrator is shut down", extra=context)
            outcome.set_result(IngestionOutcome(reading_id=reading.reading_id, admitted=tuple(admitted)))
        return outcome

    def pending(self) -> List[Future[Optional[IngestionOutcome]]]:
        with self._futures_lock:
            return list(self._futures.values())

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight dispatches; returns False if any are still running."""
        _, not_done = wait(self.pending(), timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        """Let queued dispatch jobs hand off their sends, then stop the send pool."""
        self.executor.shutdown(wait=True)
        self.dispatcher.shutdown(wait=True)

    def _clear_future(self, reading_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(reading_id, None)

    def _dispatch(
        self,
        reading: Reading,
        admitted: Tuple[AlertCandidate, ...],
        rule_set: RuleSet,
        outcome: Future[Optional[IngestionOutcome]],
    ) -> None:
        start_time = time.perf_counter()
        context = {
            "reading_id": reading.reading_id,
            "device_id": reading.device_id,
            "rule_set": rule_set.name,
        }
        try:
            recipients = self.directory.list_recipients()
            report = self.dispatcher.dispatch(admitted, reading, recipients, rule_set)
        except Exception:  # noqa: BLE001 - ingestion already succeeded
            logger.exception("Alert processing failed", extra=context)
            outcome.set_result(None)
            return

        def finish(done: Future[DispatchReport]) -> None:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.debug("Alert processing finished", extra={**context, "elapsed_ms": elapsed_ms})
            outcome.set_result(
                IngestionOutcome(
                    reading_id=reading.reading_id,
                    admitted=admitted,
                    dispatch=done.result(),
                )
            )

        report.add_done_callback(finish)


@lru_cache
def build_default_broadcaster() -> InMemoryBroadcaster:
    return InMemoryBroadcaster(buffer_size=get_settings().event_buffer_size)


@lru_cache
def build_default_orchestrator(
    workers: Optional[int] = None,
) -> IngestionOrchestrator:
    """Factory that wires the orchestrator with in-process collaborators."""
    settings = get_settings()
    broadcaster = build_default_broadcaster()
    dispatcher = NotificationDispatcher(
        broadcaster=broadcaster,
        channel=build_default_channel(settings),
        report_generator=TextReportGenerator(company_name=settings.company_name),
        workers=settings.notify_workers,
        send_timeout=settings.send_timeout_seconds,
    )
    return IngestionOrchestrator(
        table=build_default_table(),
        broadcaster=broadcaster,
        thresholds=EnvThresholdProvider(),
        gate=CooldownGate(),
        dispatcher=dispatcher,
        directory=build_default_directory(),
        workers=workers or settings.alert_workers,
    )
