from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

from psycopg2 import errors as pg_errors

from ..models.reference import ExamDescriptor, ExamSession, MajorAssignment, Pupil
from ..models.result_record import RESULT_COLUMNS, ResultRecord
from ..services.interfaces import ReferenceStore, ResultsStore, chunked
from .upsert import BatchMetrics, UpsertError, upsert_rows

"""PostgreSQL implementations of the reference and results stores.

Both stores work on one shared cursor so that exam session creation and the
result upsert of a commit run in the same transaction. The connection is
expected in autocommit mode; `PgResultsStore.transaction` issues
BEGIN/COMMIT/ROLLBACK itself.

Batched lookups use `= ANY(%s)` with a Python list (adapted to an array).
"""

logger = logging.getLogger(__name__)

__all__ = [
    "PgReferenceStore",
    "PgResultsStore",
    "SCHEMA_PATH",
    "apply_schema",
]

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

RESULTS_TABLE = "otm_results"
CONFLICT_COLUMNS = ("pupil_id", "otm_exam_id")
LOOKUP_CHUNK = 1000

_PUPIL_SELECT = """
    SELECT p.id, p.surname, p.name, p.class_code, p.login,
           om.major1_subject_id, om.major2_subject_id
    FROM pupils p
    LEFT JOIN otm_major om ON om.pupil_id = p.id AND om.is_active
"""

_EXAM_SELECT = """
    SELECT e.id, e.study_year_id, e.otm_kind, e.exam_title, e.exam_date, e.attempt_no, sy.year_code
    FROM otm_exams e
    LEFT JOIN study_year sy ON sy.id = e.study_year_id
"""


def _iso(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _pupil_from_row(row: Sequence[Any]) -> Pupil:
    pid, surname, name, class_code, login, m1, m2 = row
    majors = None
    if m1 is not None or m2 is not None:
        majors = MajorAssignment(int(m1 or 0), int(m2 or 0))
    return Pupil(
        id=int(pid),
        surname=surname or "",
        name=name or "",
        class_code=class_code or "",
        login=login,
        majors=majors,
    )


def _exam_from_row(row: Sequence[Any]) -> ExamSession:
    eid, sy_id, kind, title, exam_date, attempt_no, year_code = row
    return ExamSession(
        id=int(eid),
        study_year_id=int(sy_id),
        kind=kind,
        title=title,
        exam_date=_iso(exam_date),
        attempt_no=int(attempt_no or 1),
        year_code=year_code,
    )


def apply_schema(cursor: Any, path: Path = SCHEMA_PATH) -> None:
    cursor.execute(path.read_text(encoding="utf-8"))
    logger.info("schema applied from %s", path.name)


class PgReferenceStore(ReferenceStore):
    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor

    def find_pupils(self, ids: Iterable[int]) -> dict[int, Pupil]:
        out: dict[int, Pupil] = {}
        for chunk in chunked(sorted(set(ids)), LOOKUP_CHUNK):
            self.cursor.execute(_PUPIL_SELECT + " WHERE p.id = ANY(%s)", (chunk,))
            for row in self.cursor.fetchall():
                pupil = _pupil_from_row(row)
                out[pupil.id] = pupil
        return out

    def find_pupils_by_login(self, logins: Iterable[str]) -> dict[str, Pupil]:
        out: dict[str, Pupil] = {}
        for chunk in chunked(sorted(set(logins)), LOOKUP_CHUNK):
            self.cursor.execute(_PUPIL_SELECT + " WHERE p.login = ANY(%s)", (chunk,))
            for row in self.cursor.fetchall():
                pupil = _pupil_from_row(row)
                if pupil.login:
                    out[pupil.login] = pupil
        return out

    def find_pupils_by_class(self, class_code: str, q: str = "") -> list[Pupil]:
        sql = _PUPIL_SELECT + " WHERE p.class_code = %s"
        params: list[Any] = [class_code]
        if q:
            sql += " AND (p.surname ILIKE %s OR p.name ILIKE %s)"
            like = f"%{q}%"
            params += [like, like]
        sql += " ORDER BY p.surname ASC, p.name ASC, p.id ASC"
        self.cursor.execute(sql, tuple(params))
        return [_pupil_from_row(r) for r in self.cursor.fetchall()]

    def find_exams(self, ids: Iterable[int]) -> dict[int, ExamSession]:
        out: dict[int, ExamSession] = {}
        for chunk in chunked(sorted(set(ids)), LOOKUP_CHUNK):
            self.cursor.execute(_EXAM_SELECT + " WHERE e.id = ANY(%s)", (chunk,))
            for row in self.cursor.fetchall():
                exam = _exam_from_row(row)
                out[exam.id] = exam
        return out

    def find_exam_by_descriptor(self, descriptor: ExamDescriptor) -> ExamSession | None:
        self.cursor.execute(
            _EXAM_SELECT
            + """ WHERE e.study_year_id = %s AND e.otm_kind = %s AND e.exam_title = %s
                  AND e.exam_date = %s AND e.attempt_no = %s
                ORDER BY e.id DESC LIMIT 1""",
            descriptor.key(),
        )
        row = self.cursor.fetchone()
        return _exam_from_row(row) if row else None

    def find_or_create_exam(self, descriptor: ExamDescriptor) -> ExamSession:
        """Must run inside an open transaction (uses a savepoint)."""
        found = self.find_exam_by_descriptor(descriptor)
        if found is not None:
            return found
        self.cursor.execute("SAVEPOINT otm_exam_create")
        try:
            self.cursor.execute(
                """INSERT INTO otm_exams (study_year_id, otm_kind, exam_title, exam_date, attempt_no)
                   VALUES (%s, %s, %s, %s, %s) RETURNING id""",
                descriptor.key(),
            )
            new_id = self.cursor.fetchone()[0]
        except pg_errors.UniqueViolation:
            # concurrent insert of the same descriptor
            self.cursor.execute("ROLLBACK TO SAVEPOINT otm_exam_create")
            found = self.find_exam_by_descriptor(descriptor)
            if found is None:
                raise
            logger.debug("exam session created concurrently id=%s", found.id)
            return found
        self.cursor.execute("RELEASE SAVEPOINT otm_exam_create")
        logger.info("created exam session id=%s", new_id)
        return ExamSession.pending(descriptor).with_id(int(new_id))

    def study_year_exists(self, study_year_id: int) -> bool:
        self.cursor.execute("SELECT 1 FROM study_year WHERE id = %s LIMIT 1", (study_year_id,))
        return self.cursor.fetchone() is not None


class PgResultsStore(ResultsStore):
    def __init__(self, cursor: Any, *, page_size: int = 500) -> None:
        self.cursor = cursor
        self.page_size = page_size
        self.last_batch: BatchMetrics | None = None

    def existing_keys(self, keys: Iterable[tuple[int, int]]) -> set[tuple[int, int]]:
        found: set[tuple[int, int]] = set()
        for chunk in chunked(sorted(set(keys)), LOOKUP_CHUNK):
            pupil_ids = [k[0] for k in chunk]
            exam_ids = [k[1] for k in chunk]
            self.cursor.execute(
                """SELECT r.pupil_id, r.otm_exam_id
                   FROM otm_results r
                   JOIN unnest(%s::int[], %s::int[]) AS k(pupil_id, otm_exam_id)
                     ON k.pupil_id = r.pupil_id AND k.otm_exam_id = r.otm_exam_id""",
                (pupil_ids, exam_ids),
            )
            found.update((int(p), int(e)) for p, e in self.cursor.fetchall())
        return found

    def fetch_results(self, pupil_ids: Iterable[int], otm_exam_id: int) -> dict[int, dict[str, Any]]:
        ids = sorted(set(pupil_ids))
        if not ids:
            return {}
        cols = ",".join(f'"{c}"' for c in RESULT_COLUMNS)
        self.cursor.execute(
            f"SELECT {cols} FROM {RESULTS_TABLE} WHERE otm_exam_id = %s AND pupil_id = ANY(%s)",
            (otm_exam_id, ids),
        )
        out: dict[int, dict[str, Any]] = {}
        for row in self.cursor.fetchall():
            d = {c: _iso(v) for c, v in zip(RESULT_COLUMNS, row)}
            out[int(d["pupil_id"])] = d
        return out

    def upsert_results(self, records: Iterable[ResultRecord]) -> int:
        rows = []
        for r in records:
            if r.otm_exam_id is None:
                raise UpsertError(f"result for pupil {r.pupil_id} has no exam id")
            rows.append(r.to_db_row())
        result = upsert_rows(
            self.cursor,
            RESULTS_TABLE,
            RESULT_COLUMNS,
            rows,
            conflict_columns=CONFLICT_COLUMNS,
            page_size=self.page_size,
            touch_column="updated_at",
            metrics_callback=self._record_batch,
        )
        return result.written_rows

    def _record_batch(self, metrics: BatchMetrics) -> None:
        self.last_batch = metrics
        logger.debug("upsert batch rows=%d elapsed=%.3fs", metrics.batch_size, metrics.elapsed_seconds)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.cursor.execute("BEGIN")
        try:
            yield
        except BaseException:
            try:
                self.cursor.execute("ROLLBACK")
            except Exception:  # pragma: no cover
                logger.warning("rollback failed", exc_info=True)
            raise
        self.cursor.execute("COMMIT")
