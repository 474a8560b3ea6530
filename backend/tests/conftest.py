from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

import pytest

from learnpath.config import Settings, get_settings
from learnpath.db.session import create_schema, dispose_engine
from learnpath.errors import RemoteReadFailure, RemoteWriteFailure
from learnpath.models import ProgressKey, ProgressRecord, RecordSource
from learnpath.reconciler import merge_records
from learnpath.telemetry import TelemetryEvent, clear_listeners, register_listener


class FakeRemoteStore:
    """In-memory remote with switchable outages."""

    def __init__(self) -> None:
        self.raise_errors = False
        self.read_delay = 0.0
        self.storage: Dict[Tuple[str, ProgressKey], ProgressRecord] = {}
        self.upserts: List[ProgressRecord] = []

    def seed(self, user_id: str, record: ProgressRecord) -> None:
        self.storage[(user_id, record.key)] = record.with_source(RecordSource.REMOTE)

    async def upsert(self, user_id: str, record: ProgressRecord) -> None:
        if self.raise_errors:
            raise RemoteWriteFailure("remote unavailable")
        self.upserts.append(record)
        incoming = record.with_source(RecordSource.REMOTE)
        current = self.storage.get((user_id, record.key))
        self.storage[(user_id, record.key)] = merge_records(current, incoming) or incoming

    async def read_all(self, user_id: str) -> List[ProgressRecord]:
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.raise_errors:
            raise RemoteReadFailure("remote unavailable")
        return [record for (owner, _), record in self.storage.items() if owner == user_id]


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Settings]:
    monkeypatch.setenv("LEARNPATH_LOCAL_CACHE_PATH", str(tmp_path / "local_progress.json"))
    monkeypatch.setenv("LEARNPATH_OUTBOUND_QUEUE_PATH", str(tmp_path / "outbound_queue.json"))
    monkeypatch.setenv("LEARNPATH_REMOTE_MODE", "offline")
    monkeypatch.setenv("LEARNPATH_USER_ID", "learner-1")
    monkeypatch.setenv("LEARNPATH_RECONNECT_DELAY_SECONDS", "0")
    monkeypatch.setenv("LEARNPATH_SYNC_RETRY_BASE_SECONDS", "0")
    monkeypatch.delenv("LEARNPATH_DATABASE_URL", raising=False)
    monkeypatch.delenv("LEARNPATH_UNIT_AVAILABILITY_POLICY", raising=False)
    get_settings.cache_clear()
    dispose_engine()
    yield get_settings()
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture()
def database(settings: Settings, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    url = f"sqlite:///{tmp_path / 'progress.sqlite'}"
    monkeypatch.setenv("LEARNPATH_DATABASE_URL", url)
    get_settings.cache_clear()
    dispose_engine()
    create_schema()
    yield url
    dispose_engine()


@pytest.fixture()
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    yield captured
    clear_listeners()
