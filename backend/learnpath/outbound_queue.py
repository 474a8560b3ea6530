"""Durable queue of local writes that still need to reach the remote store."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import get_settings
from .errors import LocalWriteFailure, RemoteWriteFailure
from .models import ProgressRecord
from .reconciler import merge_records
from .remote_store import RemoteProgressStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    record: ProgressRecord
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "record": self.record.model_dump(mode="json"),
            "attempts": self.attempts,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "PendingWrite":
        next_attempt_at = payload.get("next_attempt_at")
        return cls(
            record=ProgressRecord.model_validate(payload["record"]),
            attempts=int(payload.get("attempts", 0)),
            next_attempt_at=datetime.fromisoformat(next_attempt_at) if next_attempt_at else None,
            last_error=payload.get("last_error"),
        )


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0
    stalled: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


class OutboundQueue:
    """One pending entry per attempt, persisted as JSON next to the cache.

    Attempts are keyed by natural key plus ``completed_at`` so a failed retake
    queued behind a pass still reaches the remote attempt history. Entries
    leave the queue only after a successful upsert. Entries that have used up
    ``max_attempts`` are reported as stalled and skipped by routine flushes
    until a forced flush (connectivity regained, manual sync).
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._path = path or settings.outbound_queue_path
        self._max_attempts = max_attempts if max_attempts is not None else settings.sync_max_attempts
        self._retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.sync_retry_base_seconds
        )
        self._lock = threading.RLock()
        self._flush_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, PendingWrite]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError):
            logger.exception("Outbound queue at %s is unreadable; starting empty", self._path)
            return {}

        entries: Dict[str, PendingWrite] = {}
        for key, payload in raw.get("pending", {}).items():
            try:
                entries[key] = PendingWrite.from_json(payload)
            except (KeyError, ValueError, ValidationError):
                logger.exception("Discarding malformed outbound entry %s", key)
        return entries

    def _write_unlocked(self, entries: Dict[str, PendingWrite]) -> None:
        payload = {"pending": {key: entry.to_json() for key, entry in entries.items()}}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            staging = self._path.with_suffix(self._path.suffix + ".tmp")
            with staging.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            staging.replace(self._path)
        except OSError as exc:
            raise LocalWriteFailure(f"Could not persist outbound queue to {self._path}: {exc}") from exc

    @staticmethod
    def entry_key(record: ProgressRecord) -> str:
        stamp = record.completed_at.astimezone(timezone.utc).isoformat() if record.completed_at else ""
        return f"{record.key.as_string()}@{stamp}"

    def enqueue(self, record: ProgressRecord) -> PendingWrite:
        key = self.entry_key(record)
        with self._lock:
            entries = self._load_unlocked()
            existing = entries.get(key)
            if existing is None:
                entry = PendingWrite(record=record)
            else:
                merged = merge_records(existing.record, record)
                entry = PendingWrite(record=merged or record)
            entries[key] = entry
            self._write_unlocked(entries)
        logger.debug("Queued remote write for %s", key)
        return entry

    def pending(self) -> List[PendingWrite]:
        with self._lock:
            return list(self._load_unlocked().values())

    def __len__(self) -> int:
        return len(self.pending())

    def is_stalled(self, entry: PendingWrite) -> bool:
        return entry.attempts >= self._max_attempts

    def _backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=self._retry_base_seconds * (2 ** attempts))

    async def flush(
        self,
        remote: RemoteProgressStore,
        user_id: str,
        *,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Push pending entries in key order, stopping at the first failure.

        Concurrent callers are serialized so one outage counts as one attempt.
        """
        async with self._flush_lock:
            return await self._flush_serialized(remote, user_id, force=force, now=now)

    async def _flush_serialized(
        self,
        remote: RemoteProgressStore,
        user_id: str,
        *,
        force: bool,
        now: Optional[datetime],
    ) -> SyncResult:
        now = now or datetime.now(timezone.utc)
        result = SyncResult()

        with self._lock:
            snapshot = sorted(self._load_unlocked().items())

        for key, entry in snapshot:
            if not force:
                if self.is_stalled(entry):
                    result.stalled += 1
                    continue
                if entry.next_attempt_at and entry.next_attempt_at > now:
                    continue
            try:
                await remote.upsert(user_id, entry.record)
            except RemoteWriteFailure as exc:
                result.failed += 1
                result.errors.append(f"{key}: {exc}")
                entry = self._record_failure(key, entry, str(exc), now)
                if self.is_stalled(entry):
                    result.stalled += 1
                    logger.warning(
                        "Remote write for %s stalled after %d attempts; kept for next reconnect",
                        key,
                        entry.attempts,
                    )
                else:
                    logger.info("Remote write for %s failed (attempt %d): %s", key, entry.attempts, exc)
                break
            self._remove_if_unchanged(key, entry.record)
            result.synced += 1

        emit_event(
            "outbound_flush_completed",
            user_id=user_id,
            synced=result.synced,
            failed=result.failed,
            stalled=result.stalled,
            remaining=len(self),
            forced=force,
        )
        return result

    def _record_failure(self, key: str, entry: PendingWrite, error: str, now: datetime) -> PendingWrite:
        with self._lock:
            entries = self._load_unlocked()
            current = entries.get(key, entry)
            current.attempts += 1
            current.last_error = error
            current.next_attempt_at = now + self._backoff(current.attempts - 1)
            entries[key] = current
            self._write_unlocked(entries)
            return current

    def _remove_if_unchanged(self, key: str, record: ProgressRecord) -> None:
        with self._lock:
            entries = self._load_unlocked()
            current = entries.get(key)
            # The same attempt may have been re-enqueued while the upsert was in flight.
            if current is None or current.record != record:
                return
            del entries[key]
            self._write_unlocked(entries)

    def clear(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()


__all__ = ["OutboundQueue", "PendingWrite", "SyncResult"]
