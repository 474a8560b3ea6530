"""Union merge of local and remote progress facts.

Completion is append-only in this domain, so the merge never lets a
"not completed" report override a completion seen by the other source.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from .models import MergedProgressState, ProgressKey, ProgressRecord, RecordSource

logger = logging.getLogger(__name__)


def merge_records(current: Optional[ProgressRecord], incoming: Optional[ProgressRecord]) -> Optional[ProgressRecord]:
    """Pick the truthful record for one key.

    ``completed=True`` always beats ``completed=False``. Between two completions
    the later ``completed_at`` wins; ties and missing timestamps go to the
    remote record. Between two non-completions the same recency rule applies
    so the latest attempt score is kept for history.
    """
    if current is None:
        return incoming
    if incoming is None:
        return current
    if current.key != incoming.key:
        raise ValueError(f"Cannot merge records for different keys: {current.key} and {incoming.key}")

    if current.completed != incoming.completed:
        return current if current.completed else incoming

    if current.completed_at and incoming.completed_at and current.completed_at != incoming.completed_at:
        return current if current.completed_at > incoming.completed_at else incoming

    if incoming.source == RecordSource.REMOTE and current.source != RecordSource.REMOTE:
        return incoming
    return current


class ProgressReconciler:
    """Produces a :class:`MergedProgressState` from one local and one remote read."""

    def reconcile(
        self,
        local_records: Iterable[ProgressRecord],
        remote_records: Optional[Iterable[ProgressRecord]],
    ) -> MergedProgressState:
        merged: Dict[ProgressKey, ProgressRecord] = {}

        for record in local_records:
            record = record.with_source(RecordSource.LOCAL)
            merged[record.key] = merge_records(merged.get(record.key), record)  # type: ignore[assignment]

        if remote_records is None:
            logger.debug("Reconciling %d local records without remote data", len(merged))
            return MergedProgressState(merged)

        contradictions = 0
        for record in remote_records:
            record = record.with_source(RecordSource.REMOTE)
            existing = merged.get(record.key)
            if existing is not None and existing.completed and not record.completed:
                contradictions += 1
            merged[record.key] = merge_records(existing, record)  # type: ignore[assignment]

        if contradictions:
            logger.info("Ignored %d stale remote non-completions during merge", contradictions)
        return MergedProgressState(merged)

    @staticmethod
    def remote_only_completions(
        local_records: Iterable[ProgressRecord],
        merged: MergedProgressState,
    ) -> list[ProgressRecord]:
        """Completions the device has not cached yet (used to hydrate the local cache)."""
        local_completed = {record.key for record in local_records if record.completed}
        return [
            record
            for record in merged
            if record.completed and record.source == RecordSource.REMOTE and record.key not in local_completed
        ]


__all__ = ["ProgressReconciler", "merge_records"]
