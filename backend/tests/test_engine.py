from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from learnpath.catalog import build_default_catalog
from learnpath.config import get_settings
from learnpath.engine import ProgressEngine, build_engine
from learnpath.events import ProgressChanged
from learnpath.local_cache import LocalProgressCache
from learnpath.models import CompletionPayload, ProgressKey, ProgressRecord, SubUnitKind
from learnpath.outbound_queue import OutboundQueue
from learnpath.remote_store import HttpRemoteProgressStore, OfflineRemoteProgressStore
from learnpath.unlock import sequential_units

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine(settings, tmp_path: Path, remote) -> ProgressEngine:
    return ProgressEngine(
        user_id="learner-1",
        catalog=build_default_catalog(settings),
        local_cache=LocalProgressCache(tmp_path / "local.json"),
        remote_store=remote,
        queue=OutboundQueue(tmp_path / "queue.json", max_attempts=3, retry_base_seconds=0),
        settings=settings,
    )


def _local(engine: ProgressEngine) -> LocalProgressCache:
    return engine._local  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_status_merges_local_and_remote_completions(engine: ProgressEngine, remote) -> None:
    engine.record_completion(1, SubUnitKind.MODULE, 0, CompletionPayload(completed_at=NOW))
    await engine.drain()
    remote.seed("learner-1", ProgressRecord(unit_id=1, kind=SubUnitKind.MODULE, index=1, completed_at=NOW))

    status = await engine.get_unit_status(1)

    assert [module.status for module in status.modules] == ["completed", "completed", "available", "locked"]
    assert status.status == "in_progress"
    assert status.progress == 25


@pytest.mark.asyncio
async def test_remote_outage_degrades_to_local(engine: ProgressEngine, remote, telemetry_events) -> None:
    remote.raise_errors = True
    engine.record_completion(1, "module", 0, CompletionPayload(completed_at=NOW))
    await engine.drain()

    status = await engine.get_unit_status(1)

    assert status.modules[0].status == "completed"
    assert any(event.name == "remote_read_degraded" for event in telemetry_events)


@pytest.mark.asyncio
async def test_slow_remote_is_bounded_by_timeout(settings, tmp_path: Path, remote, monkeypatch) -> None:
    monkeypatch.setenv("LEARNPATH_REMOTE_TIMEOUT_SECONDS", "0.05")
    get_settings.cache_clear()
    fast_settings = get_settings()
    remote.read_delay = 1.0
    engine = ProgressEngine(
        user_id="learner-1",
        catalog=build_default_catalog(fast_settings),
        local_cache=LocalProgressCache(tmp_path / "local.json"),
        remote_store=remote,
        queue=OutboundQueue(tmp_path / "queue.json"),
        settings=fast_settings,
    )

    started = time.monotonic()
    status = await engine.get_unit_status(1)

    assert time.monotonic() - started < 0.9
    assert status.status == "available"


@pytest.mark.asyncio
async def test_remote_completions_are_hydrated_locally(engine: ProgressEngine, remote) -> None:
    remote.seed("learner-1", ProgressRecord(unit_id=2, kind=SubUnitKind.MODULE, index=0, completed_at=NOW))

    await engine.get_all_statuses()

    cached = _local(engine).read_all("2:")
    assert [record.index for record in cached] == [0]

    remote.raise_errors = True
    status = await engine.get_unit_status(2)
    assert status.modules[0].status == "completed"


@pytest.mark.asyncio
async def test_sequential_policy_through_engine(settings, tmp_path: Path, remote) -> None:
    engine = ProgressEngine(
        user_id="learner-1",
        catalog=build_default_catalog(settings),
        local_cache=LocalProgressCache(tmp_path / "local.json"),
        remote_store=remote,
        queue=OutboundQueue(tmp_path / "queue.json"),
        policy=sequential_units,
        settings=settings,
    )

    assert (await engine.get_unit_status(2)).status == "locked"

    for index in range(4):
        engine.record_completion(1, SubUnitKind.MODULE, index, CompletionPayload(completed_at=NOW))
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=80, completed_at=NOW))
    await engine.drain()

    assert (await engine.get_unit_status(1)).status == "completed"
    assert (await engine.get_unit_status(2)).status == "available"


@pytest.mark.asyncio
async def test_failed_retake_keeps_unit_completed(engine: ProgressEngine, remote) -> None:
    for index in range(4):
        engine.record_completion(1, SubUnitKind.MODULE, index, CompletionPayload(completed_at=NOW))
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=90, completed_at=NOW))
    await engine.drain()
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=40, completed_at=NOW + timedelta(days=1)))
    await engine.drain()

    status = await engine.get_unit_status(1)

    assert status.status == "completed"
    assert status.progress == 100
    stored = remote.storage[("learner-1", ProgressKey(unit_id=1, kind=SubUnitKind.QUIZ))]
    assert stored.completed and stored.score == 90


@pytest.mark.asyncio
async def test_offline_attempts_all_reach_remote(engine: ProgressEngine, remote) -> None:
    remote.raise_errors = True
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=90, completed_at=NOW))
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=40, completed_at=NOW + timedelta(hours=1)))
    await engine.drain()

    remote.raise_errors = False
    result = await engine.sync_pending()

    assert result.synced == 2
    assert [(record.completed, record.score) for record in remote.upserts] == [(True, 90.0), (False, 40.0)]
    assert len(engine.queue) == 0


@pytest.mark.asyncio
async def test_unexpected_remote_body_degrades_to_local(settings, tmp_path: Path, telemetry_events) -> None:
    client = httpx.AsyncClient(
        base_url="http://progress.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
    )
    engine = ProgressEngine(
        user_id="learner-1",
        catalog=build_default_catalog(settings),
        local_cache=LocalProgressCache(tmp_path / "local.json"),
        remote_store=HttpRemoteProgressStore("http://progress.test", client=client),
        queue=OutboundQueue(tmp_path / "queue.json"),
        settings=settings,
    )
    engine.record_completion(1, SubUnitKind.MODULE, 0, CompletionPayload(completed_at=NOW))
    await engine.drain()

    status = await engine.get_unit_status(1)
    await client.aclose()

    assert status.modules[0].status == "completed"
    assert any(event.name == "remote_read_degraded" for event in telemetry_events)


@pytest.mark.asyncio
async def test_overview_counts_completed_weeks(engine: ProgressEngine) -> None:
    for index in range(4):
        engine.record_completion(1, SubUnitKind.MODULE, index, CompletionPayload(completed_at=NOW))
    engine.record_completion(1, SubUnitKind.QUIZ, 0, CompletionPayload(score=100, completed_at=NOW))
    await engine.drain()

    overview = await engine.get_all_statuses()

    assert overview.completed_units == 1
    assert overview.total_units == 10
    assert overview.overall_progress == 10


def test_listeners_can_unsubscribe(engine: ProgressEngine) -> None:
    received: list[ProgressChanged] = []
    unsubscribe = engine.on_progress_changed(received.append)

    engine.record_completion(1, SubUnitKind.MODULE, 0, CompletionPayload(completed_at=NOW))
    unsubscribe()
    engine.record_completion(1, SubUnitKind.MODULE, 1, CompletionPayload(completed_at=NOW))

    assert len(received) == 1


@pytest.mark.asyncio
async def test_mark_started_moves_unit_in_progress(engine: ProgressEngine) -> None:
    received: list[ProgressChanged] = []
    engine.on_progress_changed(received.append)

    engine.mark_started(3)

    assert (await engine.get_unit_status(3)).status == "in_progress"
    assert received[0].reason == "started"


def test_unknown_unit_is_rejected(engine: ProgressEngine) -> None:
    with pytest.raises(LookupError):
        engine.record_completion(42, SubUnitKind.MODULE, 0)


@pytest.mark.asyncio
async def test_reconnect_flushes_queued_writes(engine: ProgressEngine, remote) -> None:
    remote.raise_errors = True
    engine.record_completion(1, SubUnitKind.MODULE, 0, CompletionPayload(completed_at=NOW))
    await engine.drain()
    assert len(engine.queue) == 1

    assert await engine.handle_connectivity_change(False) is None

    remote.raise_errors = False
    result = await engine.handle_connectivity_change(True)

    assert result is not None
    assert result.synced == 1
    assert len(engine.queue) == 0


@pytest.mark.asyncio
async def test_build_engine_from_settings(settings) -> None:
    engine = build_engine(settings)

    assert isinstance(engine._remote, OfflineRemoteProgressStore)  # type: ignore[attr-defined]
    assert engine.user_id == "learner-1"
    status = await engine.get_unit_status(1)
    assert status.status == "available"
