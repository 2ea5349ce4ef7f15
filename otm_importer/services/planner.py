from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.field_value import ValidatedRow
from ..models.import_plan import ImportPlan, PlannedRow, RowStatus
from ..models.result_record import SUBJECTS, ResultRecord
from .interfaces import ResultsStore

"""Import planning: classify every row as insert / update / error / skip.

Planning is read-only. Existence of natural keys is probed with a single
batched call. A natural key repeated inside one batch is an error on every
occurrence after the first, so one sheet never writes the same key twice.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ImportPlanner",
    "build_record",
]


def _batch_key(row: ValidatedRow) -> tuple | None:
    if row.pupil is None or row.exam is None:
        return None
    exam_key = row.exam.id if row.exam.id is not None else row.exam.descriptor.key()
    return (row.pupil.id, exam_key)


def build_record(row: ValidatedRow) -> ResultRecord:
    """Result payload for a valid, resolved row. Blank counts are written as 0."""
    pupil = row.pupil
    exam = row.exam
    if pupil is None or exam is None or pupil.majors is None:
        raise ValueError(f"row at line {row.line} is not resolved")
    return ResultRecord(
        pupil_id=pupil.id,
        otm_exam_id=exam.id,
        study_year_id=exam.study_year_id,
        otm_kind=exam.kind,
        exam_title=exam.title,
        exam_date=exam.exam_date,
        attempt_no=exam.attempt_no,
        major1_subject_id=pupil.majors.major1_subject_id,
        major2_subject_id=pupil.majors.major2_subject_id,
        correct={s.field: row.value(s.field, 0) for s in SUBJECTS},
        certificate_percent={s.field: row.value(s.percent_field) for s in SUBJECTS},
    )


class ImportPlanner:
    def __init__(self, results: ResultsStore) -> None:
        self.results = results

    def plan(self, rows: Sequence[ValidatedRow], headers: Sequence[str] = ()) -> ImportPlan:
        first_seen: dict[tuple, int] = {}
        for row in rows:
            if row.is_skip or row.errors:
                continue
            key = _batch_key(row)
            if key is None:
                continue
            if key in first_seen:
                row.add_error(
                    "pupil_id",
                    f"duplicate row for the same pupil and exam (line {first_seen[key]})",
                )
            else:
                first_seen[key] = row.line

        probe = [r.natural_key for r in rows if r.is_valid and r.natural_key is not None]
        existing = self.results.existing_keys(probe) if probe else set()

        planned: list[PlannedRow] = []
        for row in rows:
            if row.is_skip:
                planned.append(PlannedRow(row, RowStatus.SKIP))
            elif row.errors:
                planned.append(PlannedRow(row, RowStatus.ERROR))
            else:
                status = RowStatus.UPDATE if row.natural_key in existing else RowStatus.INSERT
                planned.append(PlannedRow(row, status, build_record(row)))

        plan = ImportPlan(rows=planned, headers=list(headers))
        logger.debug("planned %s", plan.counts())
        return plan
