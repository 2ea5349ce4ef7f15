from __future__ import annotations

from decimal import Decimal

import pytest

from otm_importer.models.import_plan import RowStatus
from otm_importer.models.reference import ExamDescriptor, ExamSession
from otm_importer.models.row_data import RawRow
from otm_importer.services.planner import ImportPlanner, build_record
from otm_importer.services.resolution import ReferenceResolver
from otm_importer.services.validation import ImportKind, RowValidator


def _resolved(reference_store, *specs: dict[str, str]):
    base = {"major1": "30", "major2": "25", "mandatory1": "9", "mandatory2": "8", "mandatory3": "10"}
    validator = RowValidator(ImportKind.FILE, 7)
    rows = [validator.validate(RawRow(line=i + 2, values={**base, **spec})) for i, spec in enumerate(specs)]
    ReferenceResolver(reference_store).resolve(rows, default_exam_id=7)
    return rows


def test_plan_classifies_rows(reference_store, results_store):
    results_store.rows[(102, 7)] = {"pupil_id": 102}
    rows = _resolved(
        reference_store,
        {"pupil_id": "101"},
        {"pupil_id": "102"},
        {"pupil_id": "103"},
        {"pupil_id": "101", "major1": "", "major2": "", "mandatory1": "", "mandatory2": "", "mandatory3": ""},
    )
    plan = ImportPlanner(results_store).plan(rows, ["pupil_id"])
    assert [r.status for r in plan.rows] == [RowStatus.INSERT, RowStatus.UPDATE, RowStatus.ERROR, RowStatus.SKIP]
    assert plan.counts() == {"total": 4, "skip": 1, "valid": 2, "error": 1, "insert": 1, "update": 1}
    assert plan.is_blocked
    assert plan.headers == ["pupil_id"]
    assert results_store.calls == ["existing_keys"]


def test_plan_duplicate_natural_key_keeps_first(reference_store, results_store):
    rows = _resolved(reference_store, {"pupil_id": "101"}, {"pupil_id": "101", "major1": "1"})
    plan = ImportPlanner(results_store).plan(rows)
    first, second = plan.rows
    assert first.status is RowStatus.INSERT
    assert second.status is RowStatus.ERROR
    assert second.errors["pupil_id"] == "duplicate row for the same pupil and exam (line 2)"


def test_plan_same_pupil_different_exams_is_not_duplicate(reference_store, results_store):
    rows = _resolved(reference_store, {"pupil_id": "101"}, {"pupil_id": "101", "exam_id": "8"})
    plan = ImportPlanner(results_store).plan(rows)
    assert plan.insert_count == 2


def test_plan_without_valid_rows_does_not_probe(reference_store, results_store):
    rows = _resolved(reference_store, {"pupil_id": "999"})
    plan = ImportPlanner(results_store).plan(rows)
    assert plan.error_count == 1
    assert results_store.calls == []


def test_pending_exam_rows_insert_and_are_listed(reference_store, results_store):
    descriptor = ExamDescriptor(1, "mock", "Mock 9", "2025-06-01", 2)
    validator = RowValidator(ImportKind.GRID)
    rows = [
        validator.validate(RawRow(line=1, values={"pupil_id": "101", "major1": "5"})),
        validator.validate(RawRow(line=2, values={"pupil_id": "102", "major2": "6"})),
    ]
    ReferenceResolver(reference_store).resolve(rows, exam=ExamSession.pending(descriptor))
    plan = ImportPlanner(results_store).plan(rows)
    assert plan.insert_count == 2
    assert plan.pending_exams() == [descriptor]
    assert all(r.otm_exam_id is None for r in plan.records())


def test_build_record_fills_blank_counts_with_zero(reference_store):
    validator = RowValidator(ImportKind.GRID)
    row = validator.validate(RawRow(line=1, values={"pupil_id": "101", "major1": "10", "major1_percent": "80"}))
    ReferenceResolver(reference_store).resolve([row], exam=reference_store.exams[7])
    record = build_record(row)
    assert record.correct == {"major1": 10, "major2": 0, "mandatory1": 0, "mandatory2": 0, "mandatory3": 0}
    assert record.certificate_percent["major1"] == Decimal("80.00")
    assert record.certificate_percent["major2"] is None
    assert (record.major1_subject_id, record.major2_subject_id) == (1, 2)


def test_build_record_rejects_unresolved_row():
    row = RowValidator(ImportKind.GRID).validate(RawRow(line=4, values={"pupil_id": "1", "major1": "1"}))
    with pytest.raises(ValueError, match="line 4"):
        build_record(row)
