from __future__ import annotations

import logging
from datetime import datetime, timezone

from learnpath.events import ProgressChanged, ProgressEventBus
from learnpath.models import SubUnitKind
from learnpath.telemetry import emit_event


def test_emit_event_normalizes_payload_and_logs(telemetry_events, caplog) -> None:
    caplog.set_level(logging.INFO, logger="learnpath.telemetry")

    emit_event("progress_recorded", kind=SubUnitKind.QUIZ, at=datetime(2026, 3, 1, tzinfo=timezone.utc))

    assert telemetry_events[-1].payload == {"kind": "quiz", "at": "2026-03-01T00:00:00+00:00"}
    assert 'TELEMETRY {"event": "progress_recorded"' in caplog.text


def test_failing_listener_does_not_block_others(caplog) -> None:
    bus = ProgressEventBus()
    received: list[ProgressChanged] = []

    def broken(event: ProgressChanged) -> None:
        raise RuntimeError("listener crashed")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish(ProgressChanged(user_id="learner-1", key=None, record=None, reason="started"))

    assert len(received) == 1
    assert "ProgressChanged listener failed" in caplog.text
