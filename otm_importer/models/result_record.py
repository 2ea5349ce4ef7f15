from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

"""ResultRecord model: one stored OTM result (the unit of the upsert).

Natural key is (pupil_id, otm_exam_id). Scores are derived here, not in SQL,
so preview and commit agree on the numbers that will be written:

- exam points per correct answer: major1 x 3.1, major2 x 2.1, each mandatory
  subject x 1.1
- a certificate percentage turns into `max_points * pct / 100` for that
  subject, and the subject's final score is the certificate score when one is
  given, otherwise the exam score
- `total_score` sums exam scores only, `total_score_withcert` sums finals
"""

__all__ = [
    "RESULT_COLUMNS",
    "SUBJECTS",
    "ResultRecord",
    "Subject",
]

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Subject:
    field: str  # canonical row field holding the correct-answer count
    column: str  # column stem in otm_results
    weight: Decimal
    max_correct: int

    @property
    def max_points(self) -> Decimal:
        return self.weight * self.max_correct

    @property
    def percent_field(self) -> str:
        return f"{self.field}_percent"


SUBJECTS: tuple[Subject, ...] = (
    Subject("major1", "major1", Decimal("3.1"), 30),
    Subject("major2", "major2", Decimal("2.1"), 30),
    Subject("mandatory1", "mandatory_ona_tili", Decimal("1.1"), 10),
    Subject("mandatory2", "mandatory_matematika", Decimal("1.1"), 10),
    Subject("mandatory3", "mandatory_uzb_tarix", Decimal("1.1"), 10),
)

_KEY_COLUMNS = ["pupil_id", "otm_exam_id"]
_EXAM_COLUMNS = ["study_year_id", "otm_kind", "exam_title", "exam_date", "attempt_no"]
_MAJOR_COLUMNS = ["major1_subject_id", "major2_subject_id"]
_CORRECT_COLUMNS = [f"{s.column}_correct" for s in SUBJECTS]
_PERCENT_COLUMNS = [f"{s.column}_certificate_percent" for s in SUBJECTS]
_SCORE_COLUMNS = (
    [f"{s.column}_score" for s in SUBJECTS]
    + [f"{s.column}_certificate_score" for s in SUBJECTS]
    + [f"{s.column}_final_score" for s in SUBJECTS]
    + ["total_score", "total_score_withcert"]
)

# Column order used by the upsert statement.
RESULT_COLUMNS: tuple[str, ...] = tuple(
    _KEY_COLUMNS + _EXAM_COLUMNS + _MAJOR_COLUMNS + _CORRECT_COLUMNS + _PERCENT_COLUMNS + _SCORE_COLUMNS
)


@dataclass(frozen=True)
class ResultRecord:
    """Resolved, valid payload for one (pupil, exam) pair.

    `otm_exam_id` is None while the exam session is still pending creation;
    the executor fills it in before writing.
    """
    pupil_id: int
    otm_exam_id: int | None
    study_year_id: int
    otm_kind: str
    exam_title: str
    exam_date: str
    attempt_no: int
    major1_subject_id: int
    major2_subject_id: int
    correct: dict[str, int] = field(default_factory=dict)  # canonical field -> count
    certificate_percent: dict[str, Decimal | None] = field(default_factory=dict)

    @property
    def natural_key(self) -> tuple[int, int | None]:
        return (self.pupil_id, self.otm_exam_id)

    def with_exam_id(self, exam_id: int) -> ResultRecord:
        return replace(self, otm_exam_id=exam_id)

    def scores(self) -> dict[str, Decimal | None]:
        out: dict[str, Decimal | None] = {}
        total = Decimal("0")
        total_withcert = Decimal("0")
        for s in SUBJECTS:
            exam_score = (s.weight * self.correct.get(s.field, 0)).quantize(CENT)
            pct = self.certificate_percent.get(s.field)
            cert_score = None
            if pct is not None:
                cert_score = (s.max_points * pct / 100).quantize(CENT, rounding=ROUND_HALF_UP)
            final = cert_score if cert_score is not None else exam_score
            out[f"{s.column}_score"] = exam_score
            out[f"{s.column}_certificate_score"] = cert_score
            out[f"{s.column}_final_score"] = final
            total += exam_score
            total_withcert += final
        out["total_score"] = total.quantize(CENT)
        out["total_score_withcert"] = total_withcert.quantize(CENT)
        return out

    def as_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "pupil_id": self.pupil_id,
            "otm_exam_id": self.otm_exam_id,
            "study_year_id": self.study_year_id,
            "otm_kind": self.otm_kind,
            "exam_title": self.exam_title,
            "exam_date": self.exam_date,
            "attempt_no": self.attempt_no,
            "major1_subject_id": self.major1_subject_id,
            "major2_subject_id": self.major2_subject_id,
        }
        for s in SUBJECTS:
            row[f"{s.column}_correct"] = self.correct.get(s.field, 0)
            row[f"{s.column}_certificate_percent"] = self.certificate_percent.get(s.field)
        row.update(self.scores())
        return row

    def to_db_row(self) -> tuple[Any, ...]:
        d = self.as_dict()
        return tuple(d[c] for c in RESULT_COLUMNS)
