from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum

"""Reference data consumed by the importer: pupils, majors and exam sessions.

The importer never edits these records except for exam sessions, which may
be created on the fly when manual entry names a session that does not exist
yet (see `ExamDescriptor`).
"""

__all__ = [
    "ExamDescriptor",
    "ExamKind",
    "ExamSession",
    "MajorAssignment",
    "Pupil",
    "MAX_ATTEMPT_NO",
    "MAX_TITLE_LENGTH",
]

MAX_TITLE_LENGTH = 120
MAX_ATTEMPT_NO = 20


class ExamKind(Enum):
    """OTM exam kind.

    - MOCK: trial run of the national test
    - REPETITION: repeated sitting organised by the school
    """
    MOCK = "mock"
    REPETITION = "repetition"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, raw: str | None) -> ExamKind | None:
        s = (raw or "").strip().lower()
        for kind in cls:
            if kind.value == s:
                return kind
        return None


@dataclass(frozen=True)
class MajorAssignment:
    """Active pair of major subjects for one pupil (0 = not assigned)."""
    major1_subject_id: int = 0
    major2_subject_id: int = 0

    @property
    def is_complete(self) -> bool:
        return self.major1_subject_id > 0 and self.major2_subject_id > 0

    @property
    def is_distinct(self) -> bool:
        return self.major1_subject_id != self.major2_subject_id


@dataclass(frozen=True)
class Pupil:
    id: int
    surname: str = ""
    name: str = ""
    class_code: str = ""
    login: str | None = None
    majors: MajorAssignment | None = None

    @property
    def display_name(self) -> str:
        return f"{self.surname} {self.name}".strip()


@dataclass(frozen=True)
class ExamDescriptor:
    """Descriptive tuple that identifies an exam session without its id.

    Unique in the reference store; used for exact-match lookup and for
    find-or-create of a new session.
    """
    study_year_id: int
    kind: str
    title: str
    exam_date: str  # YYYY-MM-DD
    attempt_no: int = 1

    def __post_init__(self) -> None:
        # lookup key and stored row must agree: kind lower-case, text trimmed
        object.__setattr__(self, "kind", (self.kind or "").strip().lower())
        object.__setattr__(self, "title", (self.title or "").strip())
        object.__setattr__(self, "exam_date", (self.exam_date or "").strip())

    def problems(self) -> list[str]:
        """Return human readable reasons why this descriptor is not usable."""
        errs: list[str] = []
        if self.study_year_id <= 0:
            errs.append("Study year is required.")
        if ExamKind.parse(self.kind) is None:
            errs.append("OTM type must be mock or repetition.")
        title = self.title.strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            errs.append(f"Exam title is required (max {MAX_TITLE_LENGTH} chars).")
        if not _valid_iso_date(self.exam_date):
            errs.append("Exam date is required and must be valid (YYYY-MM-DD).")
        if self.attempt_no < 1 or self.attempt_no > MAX_ATTEMPT_NO:
            errs.append(f"Attempt number must be between 1 and {MAX_ATTEMPT_NO}.")
        return errs

    @property
    def is_complete(self) -> bool:
        return not self.problems()

    def key(self) -> tuple[int, str, str, str, int]:
        return (self.study_year_id, self.kind, self.title, self.exam_date, self.attempt_no)


@dataclass(frozen=True)
class ExamSession:
    """A stored (id set) or pending (id None) OTM exam session."""
    id: int | None
    study_year_id: int
    kind: str
    title: str
    exam_date: str
    attempt_no: int = 1
    year_code: str | None = None

    @classmethod
    def pending(cls, descriptor: ExamDescriptor) -> ExamSession:
        return cls(
            id=None,
            study_year_id=descriptor.study_year_id,
            kind=descriptor.kind,
            title=descriptor.title,
            exam_date=descriptor.exam_date,
            attempt_no=descriptor.attempt_no,
        )

    @property
    def is_pending(self) -> bool:
        return self.id is None

    @property
    def descriptor(self) -> ExamDescriptor:
        return ExamDescriptor(
            study_year_id=self.study_year_id,
            kind=self.kind,
            title=self.title,
            exam_date=self.exam_date,
            attempt_no=self.attempt_no,
        )

    def with_id(self, exam_id: int) -> ExamSession:
        return replace(self, id=exam_id)

    def label(self) -> str:
        kind = ExamKind.parse(self.kind)
        kind_label = kind.label if kind else self.kind.capitalize()
        sy = (self.year_code or "").strip() or f"#{self.study_year_id}"
        return f"{sy} · {kind_label} · {self.title} · {self.exam_date} · #{self.attempt_no}"


def _valid_iso_date(s: str) -> bool:
    s = (s or "").strip()
    if len(s) != 10:
        return False
    try:
        return date.fromisoformat(s).isoformat() == s
    except ValueError:
        return False
