"""Progress records, merged state and derived unit status models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubUnitKind(str, Enum):
    MODULE = "module"
    QUIZ = "quiz"
    WRITING = "writing"
    FINAL_EXAM = "final_exam"


class RecordSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProgressKey(BaseModel):
    """Natural key of a progress fact on one device (user scope is implicit)."""

    model_config = ConfigDict(frozen=True)

    unit_id: int = Field(ge=1)
    kind: SubUnitKind
    index: int = Field(default=0, ge=0)

    def as_string(self) -> str:
        return f"{self.unit_id}:{self.kind.value}:{self.index}"

    @classmethod
    def parse(cls, raw: str) -> "ProgressKey":
        parts = raw.split(":")
        if len(parts) != 3:
            raise ValueError(f"Invalid progress key: {raw!r}")
        unit_id, kind, index = parts
        return cls(unit_id=int(unit_id), kind=SubUnitKind(kind), index=int(index))

    def __str__(self) -> str:
        return self.as_string()


class ProgressRecord(BaseModel):
    """An immutable completion fact reported by one source."""

    model_config = ConfigDict(frozen=True)

    unit_id: int = Field(ge=1)
    kind: SubUnitKind
    index: int = Field(default=0, ge=0)
    completed: bool = True
    score: Optional[float] = None
    completed_at: Optional[datetime] = None
    source: RecordSource = RecordSource.LOCAL

    @field_validator("completed_at")
    @classmethod
    def _normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_aware(value)

    @property
    def key(self) -> ProgressKey:
        return ProgressKey(unit_id=self.unit_id, kind=self.kind, index=self.index)

    def with_source(self, source: RecordSource) -> "ProgressRecord":
        if self.source == source:
            return self
        return self.model_copy(update={"source": source})


class CompletionPayload(BaseModel):
    """Caller-supplied details of a completion-causing learner action."""

    completed: bool = True
    score: Optional[float] = None
    completed_at: datetime = Field(default_factory=_now)

    @field_validator("completed_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)  # type: ignore[return-value]


class MergedProgressState:
    """The reconciled view of every known key; recomputed, never persisted."""

    def __init__(self, records: Optional[Dict[ProgressKey, ProgressRecord]] = None) -> None:
        self._records: Dict[ProgressKey, ProgressRecord] = dict(records or {})

    @classmethod
    def from_records(cls, records: Iterable[ProgressRecord]) -> "MergedProgressState":
        return cls({record.key: record for record in records})

    def get(self, key: ProgressKey) -> Optional[ProgressRecord]:
        return self._records.get(key)

    def is_completed(self, key: ProgressKey) -> bool:
        record = self._records.get(key)
        return bool(record and record.completed)

    def records_for_unit(self, unit_id: int) -> List[ProgressRecord]:
        return [record for key, record in self._records.items() if key.unit_id == unit_id]

    def keys(self) -> List[ProgressKey]:
        return list(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[ProgressRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


StatusName = Literal["locked", "available", "in_progress", "completed"]


class SubUnitStatus(BaseModel):
    key: ProgressKey
    status: StatusName
    reason: Optional[str] = None
    score: Optional[float] = None


class UnitStatus(BaseModel):
    unit_id: int
    status: StatusName
    progress: int = Field(ge=0, le=100)
    modules: List[SubUnitStatus] = Field(default_factory=list)
    quiz: Optional[SubUnitStatus] = None
    writing: List[SubUnitStatus] = Field(default_factory=list)
    completed_modules: int = 0
    total_modules: int = 0

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class CurriculumOverview(BaseModel):
    units: List[UnitStatus] = Field(default_factory=list)
    completed_units: int = 0
    total_units: int = 0
    overall_progress: int = 0


__all__ = [
    "CompletionPayload",
    "CurriculumOverview",
    "MergedProgressState",
    "ProgressKey",
    "ProgressRecord",
    "RecordSource",
    "StatusName",
    "SubUnitKind",
    "SubUnitStatus",
    "UnitStatus",
]
