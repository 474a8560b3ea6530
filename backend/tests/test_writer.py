from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from learnpath.errors import LocalWriteFailure
from learnpath.events import ProgressChanged, ProgressEventBus
from learnpath.local_cache import LocalProgressCache
from learnpath.models import CompletionPayload, ProgressKey, SubUnitKind
from learnpath.outbound_queue import OutboundQueue
from learnpath.writer import ProgressWriter

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
QUIZ = ProgressKey(unit_id=1, kind=SubUnitKind.QUIZ)
MODULE = ProgressKey(unit_id=1, kind=SubUnitKind.MODULE, index=0)


@pytest.fixture()
def bus() -> ProgressEventBus:
    return ProgressEventBus()


@pytest.fixture()
def writer(settings, tmp_path: Path, remote, bus: ProgressEventBus) -> ProgressWriter:
    return ProgressWriter(
        "learner-1",
        LocalProgressCache(tmp_path / "local.json"),
        remote,
        OutboundQueue(tmp_path / "queue.json", max_attempts=3, retry_base_seconds=0),
        bus,
    )


def _local(writer: ProgressWriter) -> LocalProgressCache:
    return writer._local  # type: ignore[attr-defined]


def _queue(writer: ProgressWriter) -> OutboundQueue:
    return writer._queue  # type: ignore[attr-defined]


def test_completion_is_cached_and_queued_without_event_loop(writer: ProgressWriter, remote) -> None:
    stored = writer.record_completion(MODULE, CompletionPayload(completed_at=NOW))

    assert stored.completed
    cached = _local(writer).read(MODULE)
    assert cached is not None and cached.completed
    assert [entry.record.key for entry in _queue(writer).pending()] == [MODULE]
    assert remote.upserts == []


def test_completion_publishes_change_event(writer: ProgressWriter, bus: ProgressEventBus, telemetry_events) -> None:
    received: list[ProgressChanged] = []
    bus.subscribe(received.append)

    writer.record_completion(QUIZ, CompletionPayload(score=90, completed_at=NOW))

    assert len(received) == 1
    assert received[0].key == QUIZ
    assert received[0].user_id == "learner-1"
    assert received[0].record is not None and received[0].record.score == 90
    assert any(event.name == "progress_recorded" for event in telemetry_events)


def test_failed_retake_does_not_undo_completion(writer: ProgressWriter) -> None:
    writer.record_completion(QUIZ, CompletionPayload(score=85, completed_at=NOW))
    stored = writer.record_completion(
        QUIZ,
        CompletionPayload(completed=False, score=40, completed_at=NOW + timedelta(days=1)),
    )

    assert stored.completed
    assert stored.score == 85
    cached = _local(writer).read(QUIZ)
    assert cached is not None and cached.score == 85


@pytest.mark.asyncio
async def test_background_flush_reaches_remote(writer: ProgressWriter, remote) -> None:
    writer.record_completion(MODULE, CompletionPayload(completed_at=NOW))
    await writer.drain()

    assert [record.key for record in remote.upserts] == [MODULE]
    assert len(_queue(writer)) == 0


@pytest.mark.asyncio
async def test_remote_failure_keeps_local_completion(writer: ProgressWriter, remote, telemetry_events) -> None:
    remote.raise_errors = True

    stored = writer.record_completion(MODULE, CompletionPayload(completed_at=NOW))
    await writer.drain()

    assert stored.completed
    assert _local(writer).read(MODULE) is not None
    assert len(_queue(writer)) == 1
    assert any(event.name == "remote_upsert_failed" for event in telemetry_events)


def test_local_failure_propagates(settings, tmp_path: Path, remote, bus: ProgressEventBus) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    writer = ProgressWriter(
        "learner-1",
        LocalProgressCache(blocker / "local.json"),
        remote,
        OutboundQueue(tmp_path / "queue.json"),
        bus,
    )
    received: list[ProgressChanged] = []
    bus.subscribe(received.append)

    with pytest.raises(LocalWriteFailure):
        writer.record_completion(MODULE, CompletionPayload(completed_at=NOW))

    assert received == []
    assert OutboundQueue(tmp_path / "queue.json").pending() == []


def test_failing_score_is_stored_as_not_completed(writer: ProgressWriter) -> None:
    writer.record_completion(QUIZ, CompletionPayload(score=90, completed_at=NOW), passing_score=70)
    stored = writer.record_completion(
        QUIZ,
        CompletionPayload(score=40, completed_at=NOW + timedelta(days=1)),
        passing_score=70,
    )

    assert stored.completed
    assert stored.score == 90
    queued = sorted(_queue(writer).pending(), key=lambda entry: entry.record.completed_at)
    assert [(entry.record.completed, entry.record.score) for entry in queued] == [(True, 90.0), (False, 40.0)]


def test_failing_score_alone_does_not_complete_quiz(writer: ProgressWriter) -> None:
    stored = writer.record_completion(QUIZ, CompletionPayload(score=50, completed_at=NOW), passing_score=70)

    assert not stored.completed
    assert stored.score == 50


def test_queue_failure_still_publishes_cached_change(settings, tmp_path: Path, remote, bus: ProgressEventBus) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    writer = ProgressWriter(
        "learner-1",
        LocalProgressCache(tmp_path / "local.json"),
        remote,
        OutboundQueue(blocker / "queue.json"),
        bus,
    )
    received: list[ProgressChanged] = []
    bus.subscribe(received.append)

    with pytest.raises(LocalWriteFailure):
        writer.record_completion(MODULE, CompletionPayload(completed_at=NOW))

    cached = _local(writer).read(MODULE)
    assert cached is not None and cached.completed
    assert [event.key for event in received] == [MODULE]


@pytest.mark.asyncio
async def test_completions_during_outage_share_one_flush(writer: ProgressWriter, remote) -> None:
    remote.raise_errors = True

    for index in range(3):
        writer.record_completion(
            ProgressKey(unit_id=1, kind=SubUnitKind.MODULE, index=index),
            CompletionPayload(completed_at=NOW),
        )
    await writer.drain()

    pending = _queue(writer).pending()
    assert len(pending) == 3
    assert max(entry.attempts for entry in pending) == 1
