from __future__ import annotations

import pytest

from learnpath.catalog import FINAL_EXAM_UNIT_ID, LearningUnit, LearningUnitCatalog, build_default_catalog
from learnpath.models import SubUnitKind


def test_default_catalog_has_ten_weeks_and_final_exam(settings) -> None:
    catalog = build_default_catalog(settings)

    assert [unit.unit_id for unit in catalog.weekly_units()] == list(range(1, 11))
    assert catalog.units()[-1].unit_id == FINAL_EXAM_UNIT_ID
    assert all(unit.module_count == 4 for unit in catalog.weekly_units())
    assert catalog.get(3).title == "What is Credit?"
    assert catalog.get(FINAL_EXAM_UNIT_ID).quiz_key().kind == SubUnitKind.FINAL_EXAM
    assert catalog.get(1).passing_score == 70.0


def test_catalog_orders_final_exam_last_and_links_previous() -> None:
    catalog = LearningUnitCatalog(
        [
            LearningUnit(unit_id=FINAL_EXAM_UNIT_ID, title="Final Exam", is_final_exam=True),
            LearningUnit(unit_id=2, title="Week 2"),
            LearningUnit(unit_id=1, title="Week 1"),
        ]
    )

    assert catalog.first_unit_id == 1
    assert catalog.previous(1) is None
    assert catalog.previous(2).unit_id == 1
    assert catalog.previous(FINAL_EXAM_UNIT_ID).unit_id == 2
    assert 2 in catalog
    assert 5 not in catalog


def test_catalog_rejects_duplicates_and_empty() -> None:
    with pytest.raises(ValueError):
        LearningUnitCatalog([])
    with pytest.raises(ValueError):
        LearningUnitCatalog([LearningUnit(unit_id=1, title="a"), LearningUnit(unit_id=1, title="b")])


def test_catalog_sizes_follow_settings(settings) -> None:
    catalog = build_default_catalog(
        settings.model_copy(update={"total_weeks": 2, "modules_per_week": 3, "writing_prompts_per_week": 2})
    )

    assert len(catalog.weekly_units()) == 2
    assert catalog.get(2).module_count == 3
    assert len(catalog.get(2).writing_prompts) == 2
