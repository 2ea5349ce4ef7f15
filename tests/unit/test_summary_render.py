from __future__ import annotations

from otm_importer.models.import_plan import CommitResult, ImportPlan, PlannedRow, RowStatus
from otm_importer.models.field_value import ValidatedRow
from otm_importer.services.summary import render_summary_line


def _plan(*statuses: RowStatus) -> ImportPlan:
    rows = [
        PlannedRow(ValidatedRow(line=i + 2, raw={}, fields={}, score_fields=()), status)
        for i, status in enumerate(statuses)
    ]
    return ImportPlan(rows=rows)


def test_render_summary_preview_only():
    plan = _plan(RowStatus.INSERT, RowStatus.UPDATE, RowStatus.SKIP)
    assert render_summary_line(plan) == (
        "SUMMARY rows=3 skipped=1 valid=2 errors=0 inserts=0 updates=0 dry_run=false"
    )


def test_render_summary_after_commit():
    plan = _plan(RowStatus.INSERT, RowStatus.INSERT, RowStatus.UPDATE)
    result = CommitResult(inserted=2, updated=1)
    assert render_summary_line(plan, result) == (
        "SUMMARY rows=3 skipped=0 valid=3 errors=0 inserts=2 updates=1 dry_run=false"
    )


def test_render_summary_dry_run():
    plan = _plan(RowStatus.INSERT, RowStatus.UPDATE)
    result = CommitResult(inserted=1, updated=1, dry_run=True)
    assert render_summary_line(plan, result, dry_run=True).endswith("inserts=1 updates=1 dry_run=true")


def test_render_summary_blocked_reports_no_writes():
    plan = _plan(RowStatus.INSERT, RowStatus.ERROR)
    result = CommitResult(errors=["line 3: pupil_id: pupil not found"])
    assert render_summary_line(plan, result) == (
        "SUMMARY rows=2 skipped=0 valid=1 errors=1 inserts=0 updates=0 dry_run=false"
    )
