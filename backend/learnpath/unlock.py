"""Unlock evaluation: merged progress + catalog -> per-unit status.

Everything here is a pure function of its inputs. Cross-unit gating is a
pluggable :data:`UnitAvailabilityPolicy` so the content policy can change
without touching the merge logic.
"""

from __future__ import annotations

from typing import Callable, Collection, Dict, List, Literal, Optional

from .catalog import LearningUnit, LearningUnitCatalog
from .models import (
    CurriculumOverview,
    MergedProgressState,
    ProgressRecord,
    StatusName,
    SubUnitStatus,
    UnitStatus,
)


UnitAvailabilityPolicy = Callable[[LearningUnit, MergedProgressState, LearningUnitCatalog], bool]
PolicyName = Literal["sequential", "all_unlocked"]

DEFAULT_MODULE_SHARE = 50


def quiz_passed(unit: LearningUnit, merged: MergedProgressState) -> bool:
    """A quiz counts as passed when completed and at or above the unit threshold."""
    record = merged.get(unit.quiz_key())
    return _is_passing(unit, record)


def _is_passing(unit: LearningUnit, record: Optional[ProgressRecord]) -> bool:
    if record is None or not record.completed:
        return False
    return record.score is None or record.score >= unit.passing_score


def all_units_unlocked(unit: LearningUnit, merged: MergedProgressState, catalog: LearningUnitCatalog) -> bool:
    return True


def sequential_units(unit: LearningUnit, merged: MergedProgressState, catalog: LearningUnitCatalog) -> bool:
    previous = catalog.previous(unit.unit_id)
    if previous is None:
        return True
    return quiz_passed(previous, merged)


_POLICIES: Dict[str, UnitAvailabilityPolicy] = {
    "all_unlocked": all_units_unlocked,
    "sequential": sequential_units,
}


def resolve_policy(name: str) -> UnitAvailabilityPolicy:
    try:
        return _POLICIES[name]
    except KeyError as exc:
        raise ValueError(f"Unknown unit availability policy: {name!r}") from exc


class UnlockEvaluator:
    """Derives lock/available/in-progress/completed for units and their parts."""

    def __init__(
        self,
        policy: UnitAvailabilityPolicy = all_units_unlocked,
        *,
        module_share: int = DEFAULT_MODULE_SHARE,
    ) -> None:
        if not 0 <= module_share <= 100:
            raise ValueError("module_share must be between 0 and 100.")
        self._policy = policy
        self._module_share = module_share

    def evaluate(
        self,
        unit_id: int,
        merged: MergedProgressState,
        catalog: LearningUnitCatalog,
        *,
        started_units: Collection[int] = (),
    ) -> UnitStatus:
        unit = catalog.get(unit_id)
        is_entry_point = unit.unit_id == catalog.first_unit_id
        unit_open = is_entry_point or self._policy(unit, merged, catalog)
        lock_reason = None if unit_open else self._unit_lock_reason(unit, catalog)

        modules = self._module_statuses(unit, merged, unit_open, lock_reason)
        completed_modules = sum(1 for module in modules if module.status == "completed")

        passed = quiz_passed(unit, merged)
        quiz = self._quiz_status(unit, merged, passed, completed_modules, unit_open, lock_reason)
        writing = self._writing_statuses(unit, merged, quiz)

        quiz_record = merged.get(unit.quiz_key())
        touched = (
            completed_modules > 0
            or quiz_record is not None
            or any(item.status == "completed" for item in writing)
            or unit.unit_id in started_units
        )

        status: StatusName
        if passed:
            status = "completed"
        elif touched:
            status = "in_progress"
        elif unit_open:
            status = "available"
        else:
            status = "locked"

        return UnitStatus(
            unit_id=unit.unit_id,
            status=status,
            progress=self._progress(unit, completed_modules, passed),
            modules=modules,
            quiz=quiz,
            writing=writing,
            completed_modules=completed_modules,
            total_modules=unit.module_count,
        )

    def evaluate_all(
        self,
        merged: MergedProgressState,
        catalog: LearningUnitCatalog,
        *,
        started_units: Collection[int] = (),
    ) -> CurriculumOverview:
        statuses = [
            self.evaluate(unit.unit_id, merged, catalog, started_units=started_units)
            for unit in catalog.units()
        ]
        weekly_ids = {unit.unit_id for unit in catalog.weekly_units()}
        weekly = [status for status in statuses if status.unit_id in weekly_ids]
        completed_units = sum(1 for status in weekly if status.completed)
        total_units = len(weekly)
        overall = round(completed_units / total_units * 100) if total_units else 0
        return CurriculumOverview(
            units=statuses,
            completed_units=completed_units,
            total_units=total_units,
            overall_progress=overall,
        )

    def _module_statuses(
        self,
        unit: LearningUnit,
        merged: MergedProgressState,
        unit_open: bool,
        lock_reason: Optional[str],
    ) -> List[SubUnitStatus]:
        statuses: List[SubUnitStatus] = []
        previous_completed = True
        for module in unit.modules:
            key = unit.module_key(module.index)
            record = merged.get(key)
            completed = bool(record and record.completed)
            if completed:
                statuses.append(SubUnitStatus(key=key, status="completed", score=record.score if record else None))
            elif not unit_open:
                statuses.append(SubUnitStatus(key=key, status="locked", reason=lock_reason))
            elif previous_completed:
                statuses.append(SubUnitStatus(key=key, status="available"))
            else:
                statuses.append(
                    SubUnitStatus(
                        key=key,
                        status="locked",
                        reason=f"Complete module {module.index} to unlock module {module.index + 1}",
                    )
                )
            previous_completed = completed
        return statuses

    def _quiz_status(
        self,
        unit: LearningUnit,
        merged: MergedProgressState,
        passed: bool,
        completed_modules: int,
        unit_open: bool,
        lock_reason: Optional[str],
    ) -> Optional[SubUnitStatus]:
        if unit.quiz is None:
            return None
        key = unit.quiz_key()
        record = merged.get(key)
        score = record.score if record else None
        if passed:
            return SubUnitStatus(key=key, status="completed", score=score)
        if not unit_open:
            return SubUnitStatus(key=key, status="locked", reason=lock_reason, score=score)
        remaining = unit.module_count - completed_modules
        if remaining > 0:
            return SubUnitStatus(
                key=key,
                status="locked",
                reason=f"Complete {remaining} of {unit.module_count} modules to unlock the quiz",
                score=score,
            )
        return SubUnitStatus(key=key, status="available", score=score)

    @staticmethod
    def _writing_statuses(
        unit: LearningUnit,
        merged: MergedProgressState,
        quiz: Optional[SubUnitStatus],
    ) -> List[SubUnitStatus]:
        quiz_reachable = quiz is not None and quiz.status in ("available", "completed")
        statuses: List[SubUnitStatus] = []
        for prompt in unit.writing_prompts:
            key = unit.writing_key(prompt.index)
            if merged.is_completed(key):
                statuses.append(SubUnitStatus(key=key, status="completed"))
            elif quiz_reachable:
                statuses.append(SubUnitStatus(key=key, status="available"))
            else:
                statuses.append(
                    SubUnitStatus(key=key, status="locked", reason="Unlock the quiz to answer writing prompts")
                )
        return statuses

    def _progress(self, unit: LearningUnit, completed_modules: int, passed: bool) -> int:
        if passed:
            return 100
        if unit.module_count == 0:
            return 0
        return round(completed_modules / unit.module_count * self._module_share)

    @staticmethod
    def _unit_lock_reason(unit: LearningUnit, catalog: LearningUnitCatalog) -> str:
        previous = catalog.previous(unit.unit_id)
        if previous is None:
            return f"{unit.title} is not available yet"
        return f"Complete {previous.title} to unlock {unit.title}"


__all__ = [
    "DEFAULT_MODULE_SHARE",
    "PolicyName",
    "UnitAvailabilityPolicy",
    "UnlockEvaluator",
    "all_units_unlocked",
    "quiz_passed",
    "resolve_policy",
    "sequential_units",
]
