from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

import pytest

from models.records import Attachment, EnvironmentReading, SystemReading
from services.broadcast import InMemoryBroadcaster
from services.dispatcher import NotificationDispatcher
from services.evaluator import evaluate
from services.thresholds import ENVIRONMENT, SYSTEM, default_config

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingChannel:
    def __init__(self, failing: tuple[str, ...] = (), rejecting: tuple[str, ...] = ()) -> None:
        self.failing = failing
        self.rejecting = rejecting
        self.sent: List[tuple[str, str, Optional[Attachment]]] = []
        self._lock = threading.Lock()

    def send(self, recipient: str, subject: str, body: str, attachment: Optional[Attachment] = None) -> bool:
        if recipient in self.failing:
            raise ConnectionError("relay unavailable")
        if recipient in self.rejecting:
            return False
        with self._lock:
            self.sent.append((recipient, subject, attachment))
        return True


class CountingReportGenerator:
    content_type = "application/pdf"
    extension = "pdf"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.snapshots: List[Mapping[str, Any]] = []

    def render(self, snapshot: Mapping[str, Any]) -> bytes:
        self.snapshots.append(snapshot)
        if self.fail:
            raise RuntimeError("renderer crashed")
        return b"%PDF-report"


@pytest.fixture
def broadcaster() -> InMemoryBroadcaster:
    return InMemoryBroadcaster()


def _dispatcher(broadcaster, channel, report_generator=None, **kwargs) -> NotificationDispatcher:
    return NotificationDispatcher(
        broadcaster=broadcaster,
        channel=channel,
        report_generator=report_generator,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


def _environment_reading() -> EnvironmentReading:
    return EnvironmentReading(
        reading_id="env-1",
        device_id="d1",
        timestamp=FIXED_NOW,
        temperature=40.0,
        humidity=90.0,
        location="Lab",
    )


def _system_reading() -> SystemReading:
    return SystemReading(
        reading_id="sys-1",
        device_id="laptop1",
        timestamp=FIXED_NOW,
        battery_percent=80.0,
    )


def test_empty_recipients_still_broadcasts_once(broadcaster) -> None:
    channel = RecordingChannel()
    reading = _environment_reading()
    eligible = evaluate(reading, default_config(ENVIRONMENT))[:1]
    dispatcher = _dispatcher(broadcaster, channel)

    try:
        report = dispatcher.dispatch(eligible, reading, frozenset()).result(timeout=5)
    finally:
        dispatcher.shutdown()

    events = broadcaster.recent()
    assert len(events) == 1
    assert events[0].topic == "alerts"
    assert events[0].payload == [eligible[0].to_payload()]
    assert channel.sent == []
    assert report.outcomes == ()


def test_failing_recipient_does_not_block_others(broadcaster) -> None:
    channel = RecordingChannel(failing=("b@example.com",), rejecting=("c@example.com",))
    reading = _environment_reading()
    eligible = evaluate(reading, default_config(ENVIRONMENT))
    dispatcher = _dispatcher(broadcaster, channel)
    recipients = {"a@example.com", "b@example.com", "c@example.com", "d@example.com"}

    try:
        report = dispatcher.dispatch(eligible, reading, recipients).result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert sorted(recipient for recipient, _, _ in channel.sent) == ["a@example.com", "d@example.com"]
    assert report.delivered == ("a@example.com", "d@example.com")
    assert report.failed == ("b@example.com", "c@example.com")
    failures = {outcome.recipient: outcome.error for outcome in report.outcomes if not outcome.delivered}
    assert failures["b@example.com"] == "relay unavailable"
    assert failures["c@example.com"] == "rejected"
    assert [event.topic for event in broadcaster.recent()] == ["alerts"]


def test_subject_and_summary_are_shared(broadcaster) -> None:
    channel = RecordingChannel()
    reading = _environment_reading()
    eligible = evaluate(reading, default_config(ENVIRONMENT))
    dispatcher = _dispatcher(broadcaster, channel)

    try:
        report = dispatcher.dispatch(eligible, reading, {"a@example.com", "b@example.com"}).result(timeout=5)
    finally:
        dispatcher.shutdown()

    job = report.job
    assert job.subject == "Environment Alert (d1) - temperature, humidity"
    assert job.summary == (
        ("temperature", "40 (threshold 35)"),
        ("humidity", "90 (threshold 85)"),
        ("Location", "Lab"),
    )
    assert "High temperature detected" in job.body
    assert job.attachment is None
    assert {subject for _, subject, _ in channel.sent} == {job.subject}


def test_environment_alerts_do_not_request_report(broadcaster) -> None:
    generator = CountingReportGenerator()
    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, RecordingChannel(), generator)

    try:
        future = dispatcher.dispatch(evaluate(reading, default_config(ENVIRONMENT)), reading, {"a@example.com"})
        future.result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert generator.snapshots == []


def test_system_report_is_rendered_once_and_shared(broadcaster) -> None:
    channel = RecordingChannel()
    generator = CountingReportGenerator()
    reading = _system_reading()
    eligible = evaluate(reading, default_config(SYSTEM))
    dispatcher = _dispatcher(broadcaster, channel, generator)

    try:
        recipients = {"a@example.com", "b@example.com", "c@example.com"}
        report = dispatcher.dispatch(eligible, reading, recipients).result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert len(generator.snapshots) == 1
    assert generator.snapshots[0]["deviceId"] == "laptop1"
    attachments = {id(attachment) for _, _, attachment in channel.sent}
    assert len(channel.sent) == 3
    assert attachments == {id(report.job.attachment)}
    assert report.job.attachment is not None
    expected_stamp = int(FIXED_NOW.timestamp() * 1000)
    assert report.job.attachment.filename == f"system-alert-laptop1-{expected_stamp}.pdf"
    assert report.job.attachment.content_type == "application/pdf"
    assert [event.topic for event in broadcaster.recent()] == ["systemAlerts"]


def test_report_failure_sends_without_attachment(broadcaster, caplog) -> None:
    channel = RecordingChannel()
    reading = _system_reading()
    dispatcher = _dispatcher(broadcaster, channel, CountingReportGenerator(fail=True))

    try:
        with caplog.at_level("WARNING"):
            future = dispatcher.dispatch(evaluate(reading, default_config(SYSTEM)), reading, {"a@example.com"})
            report = future.result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert report.job.attachment is None
    assert report.delivered == ("a@example.com",)
    assert any("Report rendering failed" in record.getMessage() for record in caplog.records)


def test_sends_run_concurrently(broadcaster) -> None:
    barrier = threading.Barrier(2)

    class CoordinatedChannel(RecordingChannel):
        def send(self, recipient, subject, body, attachment=None):
            try:
                barrier.wait(timeout=1.0)
            except threading.BrokenBarrierError as exc:
                raise AssertionError("Sends did not run concurrently") from exc
            return super().send(recipient, subject, body, attachment)

    channel = CoordinatedChannel()
    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, channel, workers=2)

    try:
        report = dispatcher.dispatch(
            evaluate(reading, default_config(ENVIRONMENT)), reading, {"a@example.com", "b@example.com"}
        ).result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert report.failed == ()
    assert len(channel.sent) == 2


def test_slow_recipient_times_out_individually(broadcaster) -> None:
    release = threading.Event()

    class StallingChannel(RecordingChannel):
        def send(self, recipient, subject, body, attachment=None):
            if recipient == "slow@example.com":
                release.wait(timeout=5.0)
            return super().send(recipient, subject, body, attachment)

    channel = StallingChannel()
    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, channel, workers=2, send_timeout=0.2)

    try:
        report = dispatcher.dispatch(
            evaluate(reading, default_config(ENVIRONMENT)), reading, {"fast@example.com", "slow@example.com"}
        ).result(timeout=5)
    finally:
        release.set()
        dispatcher.shutdown()

    outcomes = {outcome.recipient: outcome for outcome in report.outcomes}
    assert outcomes["fast@example.com"].delivered is True
    assert outcomes["slow@example.com"].delivered is False
    assert outcomes["slow@example.com"].error == "timed out"


def test_queued_sends_get_their_own_timeout(broadcaster) -> None:
    class SlowChannel(RecordingChannel):
        def send(self, recipient, subject, body, attachment=None):
            time.sleep(0.2)
            return super().send(recipient, subject, body, attachment)

    channel = SlowChannel()
    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, channel, workers=1, send_timeout=0.5)
    recipients = {"a@example.com", "b@example.com", "c@example.com"}

    try:
        report = dispatcher.dispatch(evaluate(reading, default_config(ENVIRONMENT)), reading, recipients).result(
            timeout=5
        )
    finally:
        dispatcher.shutdown()

    assert report.delivered == ("a@example.com", "b@example.com", "c@example.com")
    assert report.failed == ()
    assert len(channel.sent) == 3


def test_dispatch_returns_before_sends_finish(broadcaster) -> None:
    release = threading.Event()

    class StallingChannel(RecordingChannel):
        def send(self, recipient, subject, body, attachment=None):
            release.wait(timeout=5.0)
            return super().send(recipient, subject, body, attachment)

    channel = StallingChannel()
    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, channel, workers=1)

    try:
        future = dispatcher.dispatch(evaluate(reading, default_config(ENVIRONMENT)), reading, {"a@example.com"})
        assert not future.done()
        assert [event.topic for event in broadcaster.recent()] == ["alerts"]
        release.set()
        report = future.result(timeout=5)
    finally:
        release.set()
        dispatcher.shutdown()

    assert report.delivered == ("a@example.com",)


def test_shutdown_without_wait_reports_queued_sends_as_not_sent(broadcaster) -> None:
    started = threading.Event()
    release = threading.Event()

    class StallingChannel(RecordingChannel):
        def send(self, recipient, subject, body, attachment=None):
            started.set()
            release.wait(timeout=5.0)
            return super().send(recipient, subject, body, attachment)

    reading = _environment_reading()
    dispatcher = _dispatcher(broadcaster, StallingChannel(), workers=1)

    future = dispatcher.dispatch(
        evaluate(reading, default_config(ENVIRONMENT)), reading, {"a@example.com", "b@example.com"}
    )
    assert started.wait(timeout=5.0)
    dispatcher.shutdown(wait=False)
    release.set()
    report = future.result(timeout=5)

    outcomes = {outcome.recipient: outcome for outcome in report.outcomes}
    assert outcomes["a@example.com"].delivered is True
    assert outcomes["b@example.com"].error == "not sent"
