from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence

from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.import_plan import CommitResult, ImportPlan
from ..models.result_record import ResultRecord
from .interfaces import ReferenceStore, ResultsStore, chunked
from .progress import ProgressTracker

"""Write phase: execute an ImportPlan inside one transaction.

Nothing is written while the plan has errors or when running dry. Otherwise
pending exam sessions are created first, then every record is upserted in
chunks. Any failure rolls the whole batch back and is reported to the caller
only by its correlation reference; the detail goes to the server log and the
JSON Lines error log.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "TransactionError",
    "UpsertExecutor",
]

DEFAULT_CHUNK_SIZE = 500


class TransactionError(Exception):
    def __init__(self, correlation_id: str, message: str = "transaction failed") -> None:
        super().__init__(f"{message} (ref {correlation_id})")
        self.correlation_id = correlation_id


class UpsertExecutor:
    def __init__(
        self,
        reference: ReferenceStore,
        results: ResultsStore,
        error_log: ErrorLogBuffer | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.reference = reference
        self.results = results
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.chunk_size = chunk_size

    def execute(
        self,
        plan: ImportPlan,
        *,
        dry_run: bool = False,
        source: str = "",
        on_success: Sequence[Callable[[], object]] = (),
    ) -> CommitResult:
        if plan.is_blocked:
            errors = [f"line {r.line}: {r.error_text()}" for r in plan.error_rows()]
            logger.warning("commit blocked source=%s error_rows=%d", source, len(errors))
            return CommitResult(errors=errors, skipped=plan.skip_count, dry_run=dry_run)

        if dry_run:
            return CommitResult(
                inserted=plan.insert_count,
                updated=plan.update_count,
                skipped=plan.skip_count,
                dry_run=True,
            )

        records = plan.records()
        try:
            with self.results.transaction():
                records = self._bind_exams(plan, records)
                self._write(records)
        except Exception as e:
            correlation_id = uuid.uuid4().hex[:12]
            logger.exception("commit failed ref=%s source=%s rows=%d", correlation_id, source, len(records))
            self.error_log.append(
                ErrorRecord.create(
                    correlation_id=correlation_id,
                    source=source or "<unknown>",
                    row=-1,
                    error_type="TRANSACTION_ERROR",
                    message=str(e),
                )
            )
            self.error_log.flush()
            raise TransactionError(correlation_id) from e

        logger.info(
            "committed source=%s inserted=%d updated=%d", source, plan.insert_count, plan.update_count
        )
        for callback in on_success:
            callback()
        return CommitResult(
            inserted=plan.insert_count,
            updated=plan.update_count,
            skipped=plan.skip_count,
        )

    def _bind_exams(self, plan: ImportPlan, records: list[ResultRecord]) -> list[ResultRecord]:
        pending = plan.pending_exams()
        if not pending:
            return records
        created = {}
        for descriptor in pending:
            session = self.reference.find_or_create_exam(descriptor)
            if session.id is None:
                raise RuntimeError(f"exam session was not created: {descriptor.key()}")
            created[descriptor.key()] = session.id
            logger.info("exam session ready id=%s descriptor=%s", session.id, descriptor.key())

        bound = []
        for record in records:
            if record.otm_exam_id is None:
                key = (record.study_year_id, record.otm_kind, record.exam_title, record.exam_date, record.attempt_no)
                record = record.with_exam_id(created[key])
            bound.append(record)
        return bound

    def _write(self, records: list[ResultRecord]) -> None:
        with ProgressTracker(len(records)) as progress:
            for chunk in chunked(records, self.chunk_size):
                self.results.upsert_results(chunk)
                progress.advance(len(chunk))

