"""Database-backed progress record repository."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import ProgressAttemptModel, ProgressRecordModel
from ..models import ProgressRecord, RecordSource, SubUnitKind
from ..reconciler import merge_records

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_LISTED = 200


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip()
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ProgressRecordRepository:
    """Idempotent upsert keyed by (user_id, unit_id, kind, index).

    The stored row only ever moves forward: a non-completion never clears a
    stored completion, and every distinct attempt is kept in the history table.
    """

    def get(self, session: Session, user_id: str, unit_id: int, kind: SubUnitKind, index: int) -> ProgressRecord | None:
        model = self._find(session, _normalize_user_id(user_id), unit_id, kind, index)
        return self._to_domain(model) if model else None

    def upsert(self, session: Session, user_id: str, record: ProgressRecord) -> ProgressRecord:
        normalized = _normalize_user_id(user_id)
        incoming = record.model_copy(
            update={"completed_at": _as_utc(record.completed_at), "source": RecordSource.REMOTE}
        )
        model = self._find(session, normalized, record.unit_id, record.kind, record.index)
        if model is None:
            model = ProgressRecordModel(
                user_id=normalized,
                unit_id=incoming.unit_id,
                kind=incoming.kind.value,
                sub_unit_index=incoming.index,
            )
            session.add(model)
            winner = incoming
        else:
            winner = merge_records(self._to_domain(model), incoming)  # type: ignore[assignment]

        model.completed = winner.completed
        model.score = winner.score
        model.completed_at = winner.completed_at
        self._record_attempt(session, normalized, incoming)
        session.flush()
        logger.debug(
            "Upserted progress user=%s key=%s completed=%s",
            normalized,
            incoming.key,
            model.completed,
        )
        return self._to_domain(model)

    def list_for_user(self, session: Session, user_id: str) -> List[ProgressRecord]:
        stmt = (
            select(ProgressRecordModel)
            .where(ProgressRecordModel.user_id == _normalize_user_id(user_id))
            .order_by(
                ProgressRecordModel.unit_id.asc(),
                ProgressRecordModel.kind.asc(),
                ProgressRecordModel.sub_unit_index.asc(),
            )
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def list_attempts(self, session: Session, user_id: str, limit: int = 50) -> List[ProgressRecord]:
        stmt = (
            select(ProgressAttemptModel)
            .where(ProgressAttemptModel.user_id == _normalize_user_id(user_id))
            .order_by(ProgressAttemptModel.recorded_at.desc())
            .limit(max(1, min(limit, MAX_ATTEMPTS_LISTED)))
        )
        return [
            ProgressRecord(
                unit_id=attempt.unit_id,
                kind=SubUnitKind(attempt.kind),
                index=attempt.sub_unit_index,
                completed=attempt.completed,
                score=attempt.score,
                completed_at=attempt.recorded_at,
                source=RecordSource.REMOTE,
            )
            for attempt in session.execute(stmt).scalars().all()
        ]

    def _record_attempt(self, session: Session, user_id: str, record: ProgressRecord) -> None:
        if record.completed_at is None:
            return
        stmt = select(ProgressAttemptModel.id).where(
            ProgressAttemptModel.user_id == user_id,
            ProgressAttemptModel.unit_id == record.unit_id,
            ProgressAttemptModel.kind == record.kind.value,
            ProgressAttemptModel.sub_unit_index == record.index,
            ProgressAttemptModel.recorded_at == record.completed_at,
        )
        if session.execute(stmt).first() is not None:
            return
        session.add(
            ProgressAttemptModel(
                user_id=user_id,
                unit_id=record.unit_id,
                kind=record.kind.value,
                sub_unit_index=record.index,
                completed=record.completed,
                score=record.score,
                recorded_at=record.completed_at,
            )
        )

    @staticmethod
    def _find(
        session: Session,
        user_id: str,
        unit_id: int,
        kind: SubUnitKind,
        index: int,
    ) -> ProgressRecordModel | None:
        stmt = select(ProgressRecordModel).where(
            ProgressRecordModel.user_id == user_id,
            ProgressRecordModel.unit_id == unit_id,
            ProgressRecordModel.kind == kind.value,
            ProgressRecordModel.sub_unit_index == index,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_domain(model: ProgressRecordModel) -> ProgressRecord:
        return ProgressRecord(
            unit_id=model.unit_id,
            kind=SubUnitKind(model.kind),
            index=model.sub_unit_index,
            completed=model.completed,
            score=model.score,
            completed_at=_as_utc(model.completed_at),
            source=RecordSource.REMOTE,
        )


progress_records = ProgressRecordRepository()

__all__ = ["ProgressRecordRepository", "progress_records"]
