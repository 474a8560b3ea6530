"""Single entry point for reading and recording learner progress."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from .catalog import LearningUnitCatalog, build_default_catalog
from .config import Settings, get_settings
from .errors import LocalWriteFailure, RemoteReadFailure
from .events import ProgressChanged, ProgressEventBus, ProgressListener
from .local_cache import LocalProgressCache
from .models import (
    CompletionPayload,
    CurriculumOverview,
    MergedProgressState,
    ProgressKey,
    ProgressRecord,
    RecordSource,
    SubUnitKind,
    UnitStatus,
)
from .outbound_queue import OutboundQueue, SyncResult
from .reconciler import ProgressReconciler
from .remote_store import RemoteProgressStore, build_remote_store
from .telemetry import emit_event
from .unlock import UnitAvailabilityPolicy, UnlockEvaluator, resolve_policy
from .writer import ProgressWriter

logger = logging.getLogger(__name__)


class ProgressEngine:
    """Merges local and remote progress and evaluates unit availability.

    Every status read re-reads both sources, reconciles them, and evaluates
    the result; nothing derived is cached between calls.
    """

    def __init__(
        self,
        user_id: str,
        catalog: LearningUnitCatalog,
        local_cache: LocalProgressCache,
        remote_store: RemoteProgressStore,
        queue: OutboundQueue,
        policy: Optional[UnitAvailabilityPolicy] = None,
        bus: Optional[ProgressEventBus] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._user_id = user_id
        self._catalog = catalog
        self._local = local_cache
        self._remote = remote_store
        self._queue = queue
        self._bus = bus or ProgressEventBus()
        self._reconciler = ProgressReconciler()
        self._evaluator = UnlockEvaluator(
            policy or resolve_policy(self._settings.unit_availability_policy),
            module_share=self._settings.module_share,
        )
        self._writer = ProgressWriter(user_id, local_cache, remote_store, queue, self._bus)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def catalog(self) -> LearningUnitCatalog:
        return self._catalog

    @property
    def queue(self) -> OutboundQueue:
        return self._queue

    async def get_unit_status(self, unit_id: int) -> UnitStatus:
        merged = await self.load_merged_state()
        return self._evaluator.evaluate(
            unit_id,
            merged,
            self._catalog,
            started_units=self._local.started_units(),
        )

    async def get_all_statuses(self) -> CurriculumOverview:
        merged = await self.load_merged_state()
        return self._evaluator.evaluate_all(merged, self._catalog, started_units=self._local.started_units())

    async def load_merged_state(self) -> MergedProgressState:
        local_records = self._local.read_all()
        remote_records = await self._read_remote()
        merged = self._reconciler.reconcile(local_records, remote_records)
        if remote_records is not None and self._settings.hydrate_local_cache:
            self._hydrate(ProgressReconciler.remote_only_completions(local_records, merged))
        return merged

    async def _read_remote(self) -> Optional[List[ProgressRecord]]:
        timeout = self._settings.remote_timeout_seconds
        try:
            return await asyncio.wait_for(self._remote.read_all(self._user_id), timeout=timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout:.1f}s"
        except RemoteReadFailure as exc:
            reason = str(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error reading remote progress for user=%s", self._user_id)
            reason = f"{type(exc).__name__}: {exc}"
        logger.warning("Remote progress unavailable for user=%s (%s); using local cache only", self._user_id, reason)
        emit_event("remote_read_degraded", user_id=self._user_id, reason=reason)
        return None

    def _hydrate(self, records: List[ProgressRecord]) -> None:
        for record in records:
            try:
                self._local.write(record.key, record.with_source(RecordSource.LOCAL))
            except LocalWriteFailure:
                logger.exception("Could not cache remote completion %s locally", record.key)
                return
        if records:
            logger.info("Cached %d remote completions on this device", len(records))

    def on_progress_changed(self, callback: ProgressListener) -> Callable[[], None]:
        return self._bus.subscribe(callback)

    def record_completion(
        self,
        unit_id: int,
        kind: SubUnitKind | str,
        index: int = 0,
        payload: Optional[CompletionPayload] = None,
    ) -> ProgressRecord:
        unit = self._catalog.get(unit_id)
        key = ProgressKey(unit_id=unit_id, kind=SubUnitKind(kind), index=index)
        return self._writer.record_completion(key, payload, passing_score=unit.passing_score)

    def mark_started(self, unit_id: int) -> None:
        self._catalog.get(unit_id)
        self._local.mark_started(unit_id)
        self._bus.publish(ProgressChanged(user_id=self._user_id, key=None, record=None, reason="started"))

    async def sync_pending(self) -> SyncResult:
        result = await self._queue.flush(self._remote, self._user_id, force=True)
        if result.errors:
            logger.warning("Manual sync left %d entries pending for user=%s", len(self._queue), self._user_id)
        return result

    async def handle_connectivity_change(self, online: bool) -> Optional[SyncResult]:
        if not online:
            logger.info("Connectivity lost; progress writes stay queued for user=%s", self._user_id)
            return None
        await asyncio.sleep(self._settings.reconnect_delay_seconds)
        logger.info("Connectivity restored; flushing %d queued writes", len(self._queue))
        return await self.sync_pending()

    async def drain(self) -> None:
        await self._writer.drain()


def build_engine(settings: Optional[Settings] = None) -> ProgressEngine:
    settings = settings or get_settings()
    return ProgressEngine(
        user_id=settings.user_id,
        catalog=build_default_catalog(settings),
        local_cache=LocalProgressCache(settings.local_cache_path),
        remote_store=build_remote_store(settings),
        queue=OutboundQueue(
            settings.outbound_queue_path,
            max_attempts=settings.sync_max_attempts,
            retry_base_seconds=settings.sync_retry_base_seconds,
        ),
        settings=settings,
    )


__all__ = ["ProgressEngine", "build_engine"]
