from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager
from typing import Any

from ..models.reference import ExamDescriptor, ExamSession, Pupil
from ..models.result_record import ResultRecord

"""Collaborator interfaces consumed by the pipeline.

The PostgreSQL implementations live in `otm_importer.db.repository`; tests
use in-memory fakes. Lookups are batched: one call per entity kind per run.
"""

__all__ = [
    "ReferenceStore",
    "ResultsStore",
]


class ReferenceStore(ABC):
    @abstractmethod
    def find_pupils(self, ids: Iterable[int]) -> dict[int, Pupil]:
        """Pupils by id, each with its active major assignment (or None)."""

    @abstractmethod
    def find_pupils_by_login(self, logins: Iterable[str]) -> dict[str, Pupil]:
        ...

    @abstractmethod
    def find_pupils_by_class(self, class_code: str, q: str = "") -> list[Pupil]:
        """Pupils of one class ordered by surname, name, id; `q` filters on name."""

    @abstractmethod
    def find_exams(self, ids: Iterable[int]) -> dict[int, ExamSession]:
        ...

    @abstractmethod
    def find_exam_by_descriptor(self, descriptor: ExamDescriptor) -> ExamSession | None:
        ...

    @abstractmethod
    def find_or_create_exam(self, descriptor: ExamDescriptor) -> ExamSession:
        """Insert-if-absent, else fetch. Safe against a concurrent insert."""

    @abstractmethod
    def study_year_exists(self, study_year_id: int) -> bool:
        ...


class ResultsStore(ABC):
    @abstractmethod
    def existing_keys(self, keys: Iterable[tuple[int, int]]) -> set[tuple[int, int]]:
        """Subset of (pupil_id, otm_exam_id) pairs that already have a row."""

    @abstractmethod
    def fetch_results(self, pupil_ids: Iterable[int], otm_exam_id: int) -> dict[int, dict[str, Any]]:
        """Stored rows for one exam keyed by pupil id (column -> value)."""

    @abstractmethod
    def upsert_results(self, records: Iterable[ResultRecord]) -> int:
        """Insert or overwrite by natural key. Returns the number of rows sent."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """All-or-nothing scope for the write phase."""


def chunked(items: list[Any], size: int) -> Iterator[list[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]
