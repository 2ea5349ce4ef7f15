from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.field_value import ValidatedRow
from ..models.reference import ExamDescriptor, ExamSession, Pupil
from .interfaces import ReferenceStore

"""Reference resolution: pupil, active majors and exam session per row.

Distinct ids are collected over the whole batch first, then looked up with
one store call per entity kind. Resolution problems are recorded on the row
next to its validation errors; the row stays in the batch so the operator
can see which id failed.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ReferenceResolver",
    "ResolutionError",
]

MSG_PUPIL_NOT_FOUND = "pupil not found"
MSG_MAJOR_NOT_SET = "active major assignment not set"
MSG_MAJOR_SAME = "major1 and major2 must be different subjects"
MSG_EXAM_NOT_FOUND = "exam_id not found"


class ResolutionError(Exception):
    """Pipeline-level resolution failure (e.g. incomplete exam descriptor)."""


class ReferenceResolver:
    def __init__(self, reference: ReferenceStore) -> None:
        self.reference = reference

    def resolve(
        self,
        rows: Sequence[ValidatedRow],
        *,
        default_exam_id: int | None = None,
        descriptor: ExamDescriptor | None = None,
        exam: ExamSession | None = None,
    ) -> None:
        """Attach pupil and exam to each non-skip row, recording failures.

        With `exam` every row targets that already resolved session. With
        `descriptor` (manual entry) every row targets the session found by
        exact match, or a pending one created on commit. Otherwise each row
        targets its own exam_id or `default_exam_id`.
        """
        active = [r for r in rows if not r.is_skip]
        if not active:
            return

        pupils = self._lookup_pupils(active)
        logins = self._lookup_logins(active)

        shared_exam: ExamSession | None = exam
        exams: dict[int, ExamSession] = {}
        if shared_exam is None and descriptor is not None:
            shared_exam = self.resolve_descriptor(descriptor)
        elif shared_exam is None:
            ids = {self._exam_id(r, default_exam_id) for r in active}
            ids.discard(None)
            exams = self.reference.find_exams(sorted(ids)) if ids else {}

        for row in active:
            pupil = self._pupil_for(row, pupils, logins)
            if pupil is not None:
                row.pupil = pupil
                self._check_majors(row, pupil)
            if shared_exam is not None:
                row.exam = shared_exam
                continue
            eid = self._exam_id(row, default_exam_id)
            if eid:
                exam = exams.get(eid)
                if exam is None:
                    row.add_error("exam_id", MSG_EXAM_NOT_FOUND)
                else:
                    row.exam = exam

        logger.debug(
            "resolved rows=%d pupils=%d exams=%d",
            len(active),
            len(pupils) + len(logins),
            1 if shared_exam is not None else len(exams),
        )

    def resolve_descriptor(self, descriptor: ExamDescriptor) -> ExamSession:
        problems = descriptor.problems()
        if problems:
            raise ResolutionError(" ".join(problems))
        if not self.reference.study_year_exists(descriptor.study_year_id):
            raise ResolutionError("Selected study year not found.")
        found = self.reference.find_exam_by_descriptor(descriptor)
        if found is not None:
            return found
        return ExamSession.pending(descriptor)

    def _lookup_pupils(self, rows: Sequence[ValidatedRow]) -> dict[int, Pupil]:
        ids = {r.value("pupil_id") for r in rows if r.value("pupil_id")}
        return self.reference.find_pupils(sorted(ids)) if ids else {}

    def _lookup_logins(self, rows: Sequence[ValidatedRow]) -> dict[str, Pupil]:
        logins = {
            r.value("pupil_login")
            for r in rows
            if r.is_blank("pupil_id") and r.value("pupil_login")
        }
        return self.reference.find_pupils_by_login(sorted(logins)) if logins else {}

    @staticmethod
    def _exam_id(row: ValidatedRow, default_exam_id: int | None) -> int | None:
        if row.errors.get("exam_id"):
            return None
        return row.value("exam_id") or default_exam_id

    @staticmethod
    def _pupil_for(
        row: ValidatedRow, pupils: dict[int, Pupil], logins: dict[str, Pupil]
    ) -> Pupil | None:
        pid = row.value("pupil_id")
        if pid:
            pupil = pupils.get(pid)
            if pupil is None:
                row.add_error("pupil_id", MSG_PUPIL_NOT_FOUND)
            return pupil
        login = row.value("pupil_login")
        if login and row.is_blank("pupil_id"):
            pupil = logins.get(login)
            if pupil is None:
                row.add_error("pupil_login", MSG_PUPIL_NOT_FOUND)
            return pupil
        return None

    @staticmethod
    def _check_majors(row: ValidatedRow, pupil: Pupil) -> None:
        majors = pupil.majors
        if majors is None or not majors.is_complete:
            row.add_error("_major", MSG_MAJOR_NOT_SET)
        elif not majors.is_distinct:
            row.add_error("_major", MSG_MAJOR_SAME)
