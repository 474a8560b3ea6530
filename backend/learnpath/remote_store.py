"""Clients for the authoritative, multi-device progress store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.session import session_scope
from .errors import RemoteReadFailure, RemoteWriteFailure
from .models import ProgressRecord, RecordSource
from .repositories.progress_records import progress_records

logger = logging.getLogger(__name__)


class RemoteProgressStore(Protocol):
    """Upsert must be idempotent on (user_id, unit_id, kind, index)."""

    async def upsert(self, user_id: str, record: ProgressRecord) -> None:  # pragma: no cover - protocol definition
        ...

    async def read_all(self, user_id: str) -> List[ProgressRecord]:  # pragma: no cover - protocol definition
        ...


def serialize_record(record: ProgressRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", exclude={"source"})


class DatabaseRemoteProgressStore:
    """Talks to the progress database directly, off the event loop."""

    def _upsert_sync(self, user_id: str, record: ProgressRecord) -> None:
        with session_scope() as session:
            progress_records.upsert(session, user_id, record)

    def _read_sync(self, user_id: str) -> List[ProgressRecord]:
        with session_scope(commit=False) as session:
            return progress_records.list_for_user(session, user_id)

    async def upsert(self, user_id: str, record: ProgressRecord) -> None:
        try:
            await asyncio.to_thread(self._upsert_sync, user_id, record)
        except (SQLAlchemyError, RuntimeError, ValueError) as exc:
            raise RemoteWriteFailure(f"Database upsert failed for {record.key}: {exc}") from exc

    async def read_all(self, user_id: str) -> List[ProgressRecord]:
        try:
            return await asyncio.to_thread(self._read_sync, user_id)
        except (SQLAlchemyError, RuntimeError, ValueError) as exc:
            raise RemoteReadFailure(f"Database read failed for user={user_id}: {exc}") from exc


class HttpRemoteProgressStore:
    """Client for the progress service's ``/api/progress`` endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._owns_client = client is None

    @staticmethod
    def _records_path(user_id: str) -> str:
        return f"/api/progress/{quote(user_id, safe='')}/records"

    async def upsert(self, user_id: str, record: ProgressRecord) -> None:
        try:
            response = await self._client.put(self._records_path(user_id), json=serialize_record(record))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteWriteFailure(f"Remote upsert failed for {record.key}: {exc}") from exc

    async def read_all(self, user_id: str) -> List[ProgressRecord]:
        try:
            response = await self._client.get(self._records_path(user_id))
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteReadFailure(f"Remote read failed for user={user_id}: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
            raise RemoteReadFailure(f"Remote read for user={user_id} returned an unexpected body: {payload!r:.200}")

        records: List[ProgressRecord] = []
        for raw in payload["records"]:
            if not isinstance(raw, dict):
                logger.warning("Skipping malformed remote progress row for user=%s: %s", user_id, raw)
                continue
            try:
                records.append(ProgressRecord.model_validate({**raw, "source": RecordSource.REMOTE}))
            except ValidationError:
                logger.warning("Skipping malformed remote progress row for user=%s: %s", user_id, raw)
        return records

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class OfflineRemoteProgressStore:
    """Stand-in used when the device is configured to never reach the network."""

    async def upsert(self, user_id: str, record: ProgressRecord) -> None:
        raise RemoteWriteFailure("Remote progress store is offline.")

    async def read_all(self, user_id: str) -> List[ProgressRecord]:
        raise RemoteReadFailure("Remote progress store is offline.")


def build_remote_store(settings: Settings | None = None) -> RemoteProgressStore:
    settings = settings or get_settings()
    if settings.remote_mode == "database":
        return DatabaseRemoteProgressStore()
    if settings.remote_mode == "offline":
        return OfflineRemoteProgressStore()
    return HttpRemoteProgressStore(settings.remote_base_url, timeout_seconds=settings.remote_timeout_seconds)


__all__ = [
    "DatabaseRemoteProgressStore",
    "HttpRemoteProgressStore",
    "OfflineRemoteProgressStore",
    "RemoteProgressStore",
    "build_remote_store",
    "serialize_record",
]
