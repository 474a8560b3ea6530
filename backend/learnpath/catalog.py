"""Static curriculum catalog: weekly units, their modules, quiz and writing prompts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .config import Settings, get_settings
from .models import ProgressKey, SubUnitKind

FINAL_EXAM_UNIT_ID = 999
DEFAULT_PASSING_SCORE = 70.0


@dataclass(frozen=True)
class ModuleRef:
    index: int
    title: str


@dataclass(frozen=True)
class QuizRef:
    passing_score: float = DEFAULT_PASSING_SCORE


@dataclass(frozen=True)
class WritingPromptRef:
    index: int
    prompt: str = ""


@dataclass(frozen=True)
class LearningUnit:
    unit_id: int
    title: str
    modules: Tuple[ModuleRef, ...] = ()
    quiz: Optional[QuizRef] = None
    writing_prompts: Tuple[WritingPromptRef, ...] = ()
    description: str = ""
    is_final_exam: bool = False

    def module_key(self, index: int) -> ProgressKey:
        return ProgressKey(unit_id=self.unit_id, kind=SubUnitKind.MODULE, index=index)

    def quiz_key(self) -> ProgressKey:
        kind = SubUnitKind.FINAL_EXAM if self.is_final_exam else SubUnitKind.QUIZ
        return ProgressKey(unit_id=self.unit_id, kind=kind, index=0)

    def writing_key(self, index: int) -> ProgressKey:
        return ProgressKey(unit_id=self.unit_id, kind=SubUnitKind.WRITING, index=index)

    @property
    def module_count(self) -> int:
        return len(self.modules)

    @property
    def passing_score(self) -> float:
        return self.quiz.passing_score if self.quiz else DEFAULT_PASSING_SCORE


_WEEK_TITLES: Dict[int, Tuple[str, str]] = {
    1: ("Understanding Income, Expenses & Savings", "Learn to track your money flow"),
    2: ("How to Open & Manage a Bank Account", "Opening and managing accounts"),
    3: ("What is Credit?", "How credit works and its importance"),
    4: ("How to Build & Maintain Good Credit", "Building a strong credit history"),
    5: ("Create a Personal Budget", "Creating your spending plan"),
    6: ("Personal Branding & Professionalism", "Building your professional image"),
    7: ("Resume Building & Job Applications", "Creating an impressive resume"),
    8: ("Career Readiness & Leadership", "Preparing for the workforce"),
    9: ("Networking & Professional Connections", "Building professional connections"),
    10: ("Entrepreneurship & Career Planning", "Starting your own business"),
}


class LearningUnitCatalog:
    """Ordered, immutable lookup over the curriculum's units."""

    def __init__(self, units: Iterable[LearningUnit]) -> None:
        ordered = sorted(units, key=lambda unit: (unit.is_final_exam, unit.unit_id))
        if not ordered:
            raise ValueError("A catalog needs at least one unit.")
        self._units: Tuple[LearningUnit, ...] = tuple(ordered)
        self._by_id: Dict[int, LearningUnit] = {}
        for unit in self._units:
            if unit.unit_id in self._by_id:
                raise ValueError(f"Duplicate unit id {unit.unit_id} in catalog.")
            self._by_id[unit.unit_id] = unit

    def get(self, unit_id: int) -> LearningUnit:
        unit = self._by_id.get(unit_id)
        if unit is None:
            raise LookupError(f"Unit {unit_id} is not part of the curriculum.")
        return unit

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._by_id

    def units(self) -> List[LearningUnit]:
        return list(self._units)

    def weekly_units(self) -> List[LearningUnit]:
        return [unit for unit in self._units if not unit.is_final_exam]

    @property
    def first_unit_id(self) -> int:
        return self._units[0].unit_id

    def previous(self, unit_id: int) -> Optional[LearningUnit]:
        position = self._units.index(self.get(unit_id))
        if position == 0:
            return None
        return self._units[position - 1]


def build_default_catalog(settings: Settings | None = None) -> LearningUnitCatalog:
    """Build the weekly program plus its final exam from configuration."""
    settings = settings or get_settings()
    units: List[LearningUnit] = []
    for week in range(1, settings.total_weeks + 1):
        title, description = _WEEK_TITLES.get(week, (f"Week {week}", "Coming soon"))
        units.append(
            LearningUnit(
                unit_id=week,
                title=title,
                description=description,
                modules=tuple(
                    ModuleRef(index=index, title=f"Module {index + 1}")
                    for index in range(settings.modules_per_week)
                ),
                quiz=QuizRef(passing_score=settings.passing_score),
                writing_prompts=tuple(
                    WritingPromptRef(index=index) for index in range(settings.writing_prompts_per_week)
                ),
            )
        )
    units.append(
        LearningUnit(
            unit_id=FINAL_EXAM_UNIT_ID,
            title="Final Exam",
            description="Comprehensive assessment across every week",
            quiz=QuizRef(passing_score=settings.passing_score),
            is_final_exam=True,
        )
    )
    return LearningUnitCatalog(units)


__all__ = [
    "DEFAULT_PASSING_SCORE",
    "FINAL_EXAM_UNIT_ID",
    "LearningUnit",
    "LearningUnitCatalog",
    "ModuleRef",
    "QuizRef",
    "WritingPromptRef",
    "build_default_catalog",
]
