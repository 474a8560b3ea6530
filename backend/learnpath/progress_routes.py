from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from .db.session import session_scope
from .models import ProgressRecord, SubUnitKind
from .repositories.progress_records import MAX_ATTEMPTS_LISTED, progress_records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


class ProgressRecordPayload(BaseModel):
    unit_id: int = Field(ge=1)
    kind: SubUnitKind
    index: int = Field(default=0, ge=0)
    completed: bool = True
    score: Optional[float] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ProgressRecord) -> "ProgressRecordPayload":
        return cls(
            unit_id=record.unit_id,
            kind=record.kind,
            index=record.index,
            completed=record.completed,
            score=record.score,
            completed_at=record.completed_at,
        )

    def to_record(self) -> ProgressRecord:
        return ProgressRecord(**self.model_dump())


class ProgressRecordList(BaseModel):
    user_id: str
    records: List[ProgressRecordPayload] = Field(default_factory=list)


def _unavailable(exc: Exception, action: str, user_id: str) -> HTTPException:
    logger.exception("Progress database failure during %s for user=%s", action, user_id)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Progress storage is unavailable. Try again shortly.",
    )


@router.put("/{user_id}/records", response_model=ProgressRecordPayload, status_code=status.HTTP_200_OK)
def upsert_progress_record(user_id: str, payload: ProgressRecordPayload) -> ProgressRecordPayload:
    try:
        with session_scope() as session:
            stored = progress_records.upsert(session, user_id, payload.to_record())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (SQLAlchemyError, RuntimeError) as exc:
        raise _unavailable(exc, "upsert", user_id) from exc
    return ProgressRecordPayload.from_record(stored)


@router.get("/{user_id}/records", response_model=ProgressRecordList, status_code=status.HTTP_200_OK)
def list_progress_records(user_id: str) -> ProgressRecordList:
    try:
        with session_scope(commit=False) as session:
            records = progress_records.list_for_user(session, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (SQLAlchemyError, RuntimeError) as exc:
        raise _unavailable(exc, "list", user_id) from exc
    return ProgressRecordList(
        user_id=user_id.strip(),
        records=[ProgressRecordPayload.from_record(record) for record in records],
    )


@router.get("/{user_id}/attempts", response_model=ProgressRecordList, status_code=status.HTTP_200_OK)
def list_progress_attempts(
    user_id: str,
    limit: int = Query(50, ge=1, le=MAX_ATTEMPTS_LISTED),
) -> ProgressRecordList:
    try:
        with session_scope(commit=False) as session:
            attempts = progress_records.list_attempts(session, user_id, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (SQLAlchemyError, RuntimeError) as exc:
        raise _unavailable(exc, "attempt listing", user_id) from exc
    return ProgressRecordList(
        user_id=user_id.strip(),
        records=[ProgressRecordPayload.from_record(record) for record in attempts],
    )


__all__ = ["ProgressRecordList", "ProgressRecordPayload", "router"]
