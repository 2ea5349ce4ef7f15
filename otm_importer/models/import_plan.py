from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .field_value import ValidatedRow
from .reference import ExamDescriptor
from .result_record import ResultRecord

"""Plan and commit outcome models.

ImportPlan is the read-only classification of every row of one batch. It is
what a preview shows and what a dry-run reports; a commit executes it.
"""

__all__ = [
    "CommitResult",
    "ImportPlan",
    "PlannedRow",
    "RowStatus",
]


class RowStatus(Enum):
    """Planned outcome for one row.

    - INSERT: valid, natural key not yet stored
    - UPDATE: valid, natural key already stored (overwrite)
    - ERROR: at least one validation or resolution error
    - SKIP: every score field blank; never written
    """
    INSERT = "insert"
    UPDATE = "update"
    ERROR = "error"
    SKIP = "skip"


@dataclass
class PlannedRow:
    row: ValidatedRow
    status: RowStatus
    record: ResultRecord | None = None

    @property
    def line(self) -> int:
        return self.row.line

    @property
    def errors(self) -> dict[str, str]:
        return self.row.errors

    def error_text(self) -> str:
        return "; ".join(
            msg if name.startswith("_") else f"{name}: {msg}" for name, msg in self.row.errors.items()
        )


@dataclass
class ImportPlan:
    rows: list[PlannedRow] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)

    def _count(self, status: RowStatus) -> int:
        return sum(1 for r in self.rows if r.status is status)

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def skip_count(self) -> int:
        return self._count(RowStatus.SKIP)

    @property
    def error_count(self) -> int:
        return self._count(RowStatus.ERROR)

    @property
    def insert_count(self) -> int:
        return self._count(RowStatus.INSERT)

    @property
    def update_count(self) -> int:
        return self._count(RowStatus.UPDATE)

    @property
    def valid_count(self) -> int:
        return self.insert_count + self.update_count

    @property
    def is_blocked(self) -> bool:
        return self.error_count > 0

    def error_rows(self) -> list[PlannedRow]:
        return [r for r in self.rows if r.status is RowStatus.ERROR]

    def records(self) -> list[ResultRecord]:
        return [
            r.record
            for r in self.rows
            if r.status in (RowStatus.INSERT, RowStatus.UPDATE) and r.record is not None
        ]

    def pending_exams(self) -> list[ExamDescriptor]:
        """Distinct descriptors of exam sessions that must be created on commit."""
        seen: dict[tuple, ExamDescriptor] = {}
        for r in self.rows:
            exam = r.row.exam
            if r.status in (RowStatus.INSERT, RowStatus.UPDATE) and exam is not None and exam.is_pending:
                d = exam.descriptor
                seen.setdefault(d.key(), d)
        return list(seen.values())

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "skip": self.skip_count,
            "valid": self.valid_count,
            "error": self.error_count,
            "insert": self.insert_count,
            "update": self.update_count,
        }


@dataclass(frozen=True)
class CommitResult:
    """What a commit (or dry-run) did.

    `errors` holds one human readable line per blocked row; a non-empty list
    means nothing was written.
    """
    inserted: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: int = 0
    dry_run: bool = False

    @property
    def written(self) -> int:
        return 0 if self.dry_run else self.inserted + self.updated
