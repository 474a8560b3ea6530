"""In-process ProgressChanged fan-out for UI, XP and achievement consumers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, List, Optional

from .models import ProgressKey, ProgressRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressChanged:
    user_id: str
    key: Optional[ProgressKey]
    record: Optional[ProgressRecord]
    reason: str = "completion"
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ProgressListener = Callable[[ProgressChanged], None]


class ProgressEventBus:
    """Synchronous subscriber list; a failing subscriber never blocks the others."""

    def __init__(self) -> None:
        self._listeners: List[ProgressListener] = []
        self._lock = RLock()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ProgressChanged) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("ProgressChanged listener failed for key=%s", event.key)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["ProgressChanged", "ProgressEventBus", "ProgressListener"]
