"""Fan-out of admitted alerts to the broadcast and message channels."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Lock, Timer
from typing import AbstractSet, Callable, Dict, Optional, Sequence, Tuple

from app.schemas import serialize_reading
from models.records import (
    AlertCandidate,
    Attachment,
    DispatchReport,
    EnvironmentReading,
    NotificationJob,
    Reading,
    RecipientOutcome,
)
from services.broadcast import InMemoryBroadcaster
from services.channels import MessageChannel
from services.evaluator import RuleSet, rule_set_for
from services.reports import ReportGenerator
from services.templating import get_environment

logger = logging.getLogger(__name__)


def _format_threshold(threshold: float | str) -> str:
    if isinstance(threshold, str):
        return threshold
    return f"{threshold:g}"


def summary_rows(eligible: Sequence[AlertCandidate], reading: Reading) -> Tuple[Tuple[str, str], ...]:
    rows: Dict[str, str] = {}
    for alert in eligible:
        rows[alert.metric] = f"{alert.value:g} (threshold {_format_threshold(alert.threshold)})"
    if isinstance(reading, EnvironmentReading):
        rows["Location"] = reading.location
    return tuple(rows.items())


class _OutcomeCollector:
    """Keeps the first outcome recorded per recipient and completes the report."""

    def __init__(self, job: NotificationJob, recipients: Sequence[str]) -> None:
        self.job = job
        self.recipients = tuple(recipients)
        self.report: Future[DispatchReport] = Future()
        self._outcomes: Dict[str, RecipientOutcome] = {}
        self._lock = Lock()

    def record(self, outcome: RecipientOutcome) -> bool:
        with self._lock:
            if outcome.recipient in self._outcomes:
                return False
            self._outcomes[outcome.recipient] = outcome
            complete = len(self._outcomes) == len(self.recipients)
            if complete:
                outcomes = tuple(self._outcomes[recipient] for recipient in self.recipients)
        if complete:
            self.report.set_result(DispatchReport(job=self.job, outcomes=outcomes))
        return True


class NotificationDispatcher:
    """Broadcasts admitted alerts and mails them to each opted-in recipient.

    ``dispatch`` builds and broadcasts the job, queues one send per recipient
    on a private pool and returns at once with a future of the
    ``DispatchReport``. Each send gets ``send_timeout`` seconds from the
    moment it starts, so a queued send is never charged for time spent
    behind slower ones. A failing or slow recipient only affects its own
    outcome and ``dispatch`` never raises for delivery problems.
    """

    def __init__(
        self,
        broadcaster: InMemoryBroadcaster,
        channel: MessageChannel,
        report_generator: Optional[ReportGenerator] = None,
        workers: int = 8,
        send_timeout: float = 30.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.broadcaster = broadcaster
        self.channel = channel
        self.report_generator = report_generator
        self.send_timeout = send_timeout
        self.clock = clock
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")

    def dispatch(
        self,
        eligible: Sequence[AlertCandidate],
        reading: Reading,
        recipients: AbstractSet[str],
        rule_set: Optional[RuleSet] = None,
    ) -> Future[DispatchReport]:
        rule_set = rule_set or rule_set_for(reading)
        job = self.build_job(eligible, reading, recipients, rule_set)

        self.broadcaster.publish(rule_set.alert_topic, list(job.broadcast_payload))

        if not job.recipients:
            logger.info(
                "No recipients opted into notifications",
                extra={"reading_id": reading.reading_id, "device_id": reading.device_id},
            )
            done: Future[DispatchReport] = Future()
            done.set_result(DispatchReport(job=job))
            return done

        collector = _OutcomeCollector(job, sorted(job.recipients))
        collector.report.add_done_callback(
            lambda future: self._log_report(future.result(), reading)
        )
        for recipient in collector.recipients:
            try:
                future = self.executor.submit(self._send, recipient, job, collector)
            except RuntimeError:
                collector.record(RecipientOutcome(recipient=recipient, delivered=False, error="not sent"))
                continue
            future.add_done_callback(
                lambda f, recipient=recipient: self._record_cancelled(f, recipient, collector)
            )
        return collector.report

    def build_job(
        self,
        eligible: Sequence[AlertCandidate],
        reading: Reading,
        recipients: AbstractSet[str],
        rule_set: RuleSet,
    ) -> NotificationJob:
        metrics = ", ".join(alert.metric for alert in eligible)
        subject = f"{rule_set.subject_prefix} ({reading.device_id}) - {metrics}"
        summary = summary_rows(eligible, reading)
        broadcast_payload = tuple(alert.to_payload() for alert in eligible)

        if not recipients:
            return NotificationJob(
                recipients=frozenset(),
                subject=subject,
                body="",
                summary=summary,
                broadcast_payload=broadcast_payload,
            )

        attachment = self._render_attachment(reading) if rule_set.attach_report else None
        message = (
            f"Threshold(s) exceeded at {reading.timestamp.isoformat()} "
            f"for device {reading.device_id}."
        )
        body = get_environment().get_template("alert_email.html").render(
            subject=subject,
            message=message,
            summary=summary,
            alerts=eligible,
            has_attachment=attachment is not None,
        )
        return NotificationJob(
            recipients=frozenset(recipients),
            subject=subject,
            body=body,
            summary=summary,
            broadcast_payload=broadcast_payload,
            attachment=attachment,
        )

    def shutdown(self, wait: bool = True) -> None:
        """Stop the send pool; without ``wait`` queued sends are reported as not sent."""
        self.executor.shutdown(wait=wait, cancel_futures=not wait)

    def _render_attachment(self, reading: Reading) -> Optional[Attachment]:
        if self.report_generator is None:
            return None
        try:
            content = self.report_generator.render(serialize_reading(reading))
        except Exception as exc:  # noqa: BLE001 - notify without the report
            logger.warning(
                "Report rendering failed; sending without attachment",
                extra={"reading_id": reading.reading_id, "reason": str(exc)},
            )
            return None
        stamp = int(self.clock().timestamp() * 1000)
        return Attachment(
            filename=f"system-alert-{reading.device_id}-{stamp}.{self.report_generator.extension}",
            content=content,
            content_type=self.report_generator.content_type,
        )

    def _log_report(self, report: DispatchReport, reading: Reading) -> None:
        logger.info(
            "Dispatched alert notification",
            extra={
                "reading_id": reading.reading_id,
                "device_id": reading.device_id,
                "recipient_count": len(report.delivered),
                "reason": f"{len(report.failed)} failed" if report.failed else None,
            },
        )

    def _record_cancelled(
        self, future: Future[None], recipient: str, collector: _OutcomeCollector
    ) -> None:
        if future.cancelled():
            collector.record(RecipientOutcome(recipient=recipient, delivered=False, error="not sent"))

    def _send(self, recipient: str, job: NotificationJob, collector: _OutcomeCollector) -> None:
        timer = Timer(self.send_timeout, self._expire, args=(recipient, collector))
        timer.daemon = True
        timer.start()
        try:
            outcome = self._deliver(recipient, job)
        finally:
            timer.cancel()
        collector.record(outcome)

    def _expire(self, recipient: str, collector: _OutcomeCollector) -> None:
        timed_out = RecipientOutcome(recipient=recipient, delivered=False, error="timed out")
        if collector.record(timed_out):
            logger.warning(
                "Notification send timed out",
                extra={"recipient": recipient, "reason": f"no answer after {self.send_timeout:g}s"},
            )

    def _deliver(self, recipient: str, job: NotificationJob) -> RecipientOutcome:
        try:
            delivered = self.channel.send(recipient, job.subject, job.body, job.attachment)
        except Exception as exc:  # noqa: BLE001 - failures stay per recipient
            logger.warning(
                "Notification send failed",
                extra={"recipient": recipient, "reason": str(exc)},
            )
            return RecipientOutcome(recipient=recipient, delivered=False, error=str(exc))
        if not delivered:
            logger.warning(
                "Notification send was rejected",
                extra={"recipient": recipient, "reason": "channel reported failure"},
            )
            return RecipientOutcome(recipient=recipient, delivered=False, error="rejected")
        return RecipientOutcome(recipient=recipient, delivered=True)
