"""Local-first progress writes."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .events import ProgressChanged, ProgressEventBus
from .local_cache import LocalProgressCache
from .models import CompletionPayload, ProgressKey, ProgressRecord, RecordSource, SubUnitKind
from .outbound_queue import OutboundQueue, SyncResult
from .reconciler import merge_records
from .remote_store import RemoteProgressStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)

_SCORED_KINDS = (SubUnitKind.QUIZ, SubUnitKind.FINAL_EXAM)


class ProgressWriter:
    """Records completions on the device first, then pushes them upstream.

    The local write is the only step that can fail the caller. Remote delivery
    runs through the outbound queue and never rolls the local write back.
    """

    def __init__(
        self,
        user_id: str,
        local_cache: LocalProgressCache,
        remote_store: RemoteProgressStore,
        queue: OutboundQueue,
        bus: ProgressEventBus,
    ) -> None:
        self._user_id = user_id
        self._local = local_cache
        self._remote = remote_store
        self._queue = queue
        self._bus = bus
        self._flush_task: Optional[asyncio.Task[SyncResult]] = None
        self._flush_requested = False

    def record_completion(
        self,
        key: ProgressKey,
        payload: Optional[CompletionPayload] = None,
        *,
        passing_score: Optional[float] = None,
    ) -> ProgressRecord:
        """Persist one learner action locally and queue it for the remote store.

        For quiz and final-exam keys with a ``passing_score``, an attempt scoring
        below it is stored as not completed, so it can never displace a pass.
        """
        payload = payload or CompletionPayload()
        completed = payload.completed
        if (
            completed
            and passing_score is not None
            and key.kind in _SCORED_KINDS
            and payload.score is not None
            and payload.score < passing_score
        ):
            completed = False
        attempt = ProgressRecord(
            unit_id=key.unit_id,
            kind=key.kind,
            index=key.index,
            completed=completed,
            score=payload.score,
            completed_at=payload.completed_at,
            source=RecordSource.LOCAL,
        )

        existing = self._local.read(key)
        stored = merge_records(existing, attempt) or attempt
        if existing is not None and existing.completed and not attempt.completed:
            logger.info("Keeping earlier completion for %s; new attempt did not complete", key)
        self._local.write(key, stored)

        # The cache write is the commit point; listeners hear about it even if queueing fails.
        try:
            # The raw attempt goes upstream so the remote keeps it in attempt history.
            self._queue.enqueue(attempt)
        finally:
            self._bus.publish(ProgressChanged(user_id=self._user_id, key=key, record=stored))

        emit_event(
            "progress_recorded",
            user_id=self._user_id,
            key=key.as_string(),
            completed=attempt.completed,
            score=attempt.score,
            stored_completed=stored.completed,
        )
        self._schedule_flush()
        return stored

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; remote write stays queued")
            return
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_requested = True
            return
        self._flush_task = loop.create_task(self._flush_in_background())

    async def _flush_in_background(self) -> SyncResult:
        while True:
            self._flush_requested = False
            try:
                result = await self._queue.flush(self._remote, self._user_id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Background progress flush failed for user=%s", self._user_id)
                return SyncResult(failed=1, errors=[str(exc)])
            for error in result.errors:
                logger.warning("Remote progress upsert failed for user=%s: %s", self._user_id, error)
                emit_event("remote_upsert_failed", user_id=self._user_id, error=error)
            # Writes made during this flush get one more pass unless the remote is failing.
            if not self._flush_requested or result.failed:
                return result

    async def drain(self) -> None:
        """Wait for the background flush started by this writer, if any."""
        if self._flush_task is not None:
            await asyncio.gather(self._flush_task, return_exceptions=True)


__all__ = ["ProgressWriter"]
