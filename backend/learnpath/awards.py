"""Translate progress changes into award actions for the XP/achievement service."""

from __future__ import annotations

import logging
from typing import Callable, List, Set, Tuple

from .catalog import LearningUnitCatalog
from .engine import ProgressEngine
from .events import ProgressChanged
from .models import ProgressKey, SubUnitKind

logger = logging.getLogger(__name__)

AwardSink = Callable[[str, ProgressChanged], None]

COMPLETE_LESSON = "complete_lesson"
COMPLETE_WRITING = "complete_writing"
PASS_QUIZ = "pass_quiz"
PERFECT_QUIZ = "perfect_quiz"
COMPLETE_WEEK = "complete_week"
COMPLETE_FINAL_EXAM = "complete_final_exam"

PERFECT_SCORE = 100.0


def award_actions(event: ProgressChanged, catalog: LearningUnitCatalog) -> List[str]:
    """Action names earned by a single change, ignoring what was awarded before."""
    record = event.record
    if event.key is None or record is None or not record.completed:
        return []

    kind = event.key.kind
    if kind == SubUnitKind.MODULE:
        return [COMPLETE_LESSON]
    if kind == SubUnitKind.WRITING:
        return [COMPLETE_WRITING]

    unit = catalog.get(event.key.unit_id)
    if record.score is not None and record.score < unit.passing_score:
        return []
    if kind == SubUnitKind.FINAL_EXAM:
        return [COMPLETE_FINAL_EXAM]

    actions = [PASS_QUIZ]
    if record.score is not None and record.score >= PERFECT_SCORE:
        actions.append(PERFECT_QUIZ)
    actions.append(COMPLETE_WEEK)
    return actions


class AwardDispatcher:
    """Forwards each newly earned action to ``sink`` once per key."""

    def __init__(self, engine: ProgressEngine, sink: AwardSink) -> None:
        self._catalog = engine.catalog
        self._sink = sink
        self._awarded: Set[Tuple[ProgressKey, str]] = set()
        self._unsubscribe = engine.on_progress_changed(self.handle)

    def handle(self, event: ProgressChanged) -> None:
        if event.key is None:
            return
        try:
            actions = award_actions(event, self._catalog)
        except LookupError:
            logger.warning("Ignoring progress change for unknown unit %s", event.key.unit_id)
            return

        for action in actions:
            marker = (event.key, action)
            if marker in self._awarded:
                continue
            try:
                self._sink(action, event)
            except Exception:  # noqa: BLE001
                logger.exception("Award sink failed for action=%s key=%s", action, event.key)
                continue
            self._awarded.add(marker)

    def close(self) -> None:
        self._unsubscribe()


__all__ = [
    "AwardDispatcher",
    "AwardSink",
    "COMPLETE_FINAL_EXAM",
    "COMPLETE_LESSON",
    "COMPLETE_WEEK",
    "COMPLETE_WRITING",
    "PASS_QUIZ",
    "PERFECT_QUIZ",
    "award_actions",
]
