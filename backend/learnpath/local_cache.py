"""On-device JSON cache of completion markers."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_settings
from .errors import LocalWriteFailure
from .models import ProgressKey, ProgressRecord, RecordSource

logger = logging.getLogger(__name__)


class LocalProgressCache:
    """Synchronous key-addressed store scoped to the current device.

    Entries are kept as ``{"completed", "score", "timestamp"}`` under the
    ``"{unit}:{kind}:{index}"`` key. Lesson-start markers live alongside them so
    the evaluator can report a unit as in progress before any module finishes.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or get_settings().local_cache_path
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {"records": {}, "started": []}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError):
            logger.exception("Local progress cache at %s is unreadable; starting empty", self._path)
            return {"records": {}, "started": []}
        raw.setdefault("records", {})
        raw.setdefault("started", [])
        return raw

    def _write_unlocked(self, payload: Dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            staging = self._path.with_suffix(self._path.suffix + ".tmp")
            with staging.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            staging.replace(self._path)
        except OSError as exc:
            raise LocalWriteFailure(f"Could not persist local progress to {self._path}: {exc}") from exc

    @staticmethod
    def _to_entry(record: ProgressRecord) -> Dict[str, Any]:
        return {
            "completed": record.completed,
            "score": record.score,
            "timestamp": record.completed_at.isoformat() if record.completed_at else None,
        }

    @staticmethod
    def _from_entry(raw_key: str, entry: Dict[str, Any]) -> ProgressRecord:
        key = ProgressKey.parse(raw_key)
        timestamp = entry.get("timestamp")
        return ProgressRecord(
            unit_id=key.unit_id,
            kind=key.kind,
            index=key.index,
            completed=bool(entry.get("completed", False)),
            score=entry.get("score"),
            completed_at=datetime.fromisoformat(timestamp) if timestamp else None,
            source=RecordSource.LOCAL,
        )

    def write(self, key: ProgressKey, record: ProgressRecord) -> None:
        if record.key != key:
            raise ValueError(f"Record for {record.key} cannot be stored under {key}.")
        with self._lock:
            payload = self._load_unlocked()
            payload["records"][key.as_string()] = self._to_entry(record)
            self._write_unlocked(payload)
        logger.debug("Cached progress %s completed=%s", key, record.completed)

    def read(self, key: ProgressKey) -> Optional[ProgressRecord]:
        with self._lock:
            entry = self._load_unlocked()["records"].get(key.as_string())
        if entry is None:
            return None
        try:
            return self._from_entry(key.as_string(), entry)
        except (ValueError, TypeError):
            logger.exception("Discarding malformed local progress entry %s", key)
            return None

    def read_all(self, prefix: str = "") -> List[ProgressRecord]:
        with self._lock:
            entries = dict(self._load_unlocked()["records"])
        records: List[ProgressRecord] = []
        for raw_key, entry in sorted(entries.items()):
            if not raw_key.startswith(prefix):
                continue
            try:
                records.append(self._from_entry(raw_key, entry))
            except (ValueError, TypeError):
                logger.exception("Discarding malformed local progress entry %s", raw_key)
        return records

    def mark_started(self, unit_id: int) -> None:
        with self._lock:
            payload = self._load_unlocked()
            started = set(payload["started"])
            if unit_id in started:
                return
            started.add(unit_id)
            payload["started"] = sorted(started)
            self._write_unlocked(payload)

    def started_units(self) -> set[int]:
        with self._lock:
            return {int(unit_id) for unit_id in self._load_unlocked()["started"]}

    def clear(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()


__all__ = ["LocalProgressCache"]
