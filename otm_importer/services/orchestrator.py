from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ..logging.error_log import ErrorLogBuffer
from ..models.import_plan import CommitResult, ImportPlan
from ..models.outcome import Outcome, import_url
from ..state.import_context import ContextError, ImportContext, ImportContextManager, UploadRejectedError
from ..tabular.reader import (
    HeaderRowError,
    MissingColumnsError,
    NoDataRowsError,
    TabularData,
    UnreadableArtifactError,
    read_artifact,
    read_text,
)
from .executor import TransactionError, UpsertExecutor
from .interfaces import ReferenceStore, ResultsStore
from .planner import ImportPlanner
from .resolution import ReferenceResolver
from .validation import ImportKind, RowValidator

"""Import pipeline: upload/paste -> preview -> commit.

    TabularReader -> RowValidator -> ReferenceResolver -> ImportPlanner
        -> (dry-run stop | UpsertExecutor)

Upload flow is a two-call handshake. `preview_upload` stages the artifact
and returns a plan plus the context token; `commit` must present that token
within the context TTL. The commit re-reads the stored artifact and
re-resolves every row (pupils, majors, exams) so it never trusts a stale
preview.

Paste flow has no stored artifact: the caller re-submits the same text for
preview and for import.

Every action returns an `Outcome` (flash messages + redirect URL). Pipeline
level problems never raise out of the public methods; they become one
`danger` flash. `build_plan`/`plan_text` raise `PipelineError` for callers
that want the exception.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ImportPipeline",
    "PipelineError",
]

MSG_READ_FAILED = "Could not read spreadsheet. Verify file format and headers."
MSG_BLOCKED = "Import blocked: fix invalid rows first."
MSG_PREVIEW_ERRORS = "Preview loaded with validation errors. Fix file data before importing."
MSG_PREVIEW_OK = "Preview loaded successfully. Ready for dry-run/import."
MSG_SAVE_FAILED = "Import failed due to a database/server error. See logs."
MSG_PASTE_SAVE_FAILED = "Import failed while saving rows."

_READ_ERRORS = (HeaderRowError, MissingColumnsError, NoDataRowsError)


class PipelineError(Exception):
    """Pipeline-level failure: aborts the action before any row is processed."""


class ImportPipeline:
    def __init__(
        self,
        reference: ReferenceStore,
        results: ResultsStore,
        contexts: ImportContextManager,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.reference = reference
        self.results = results
        self.contexts = contexts
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.resolver = ReferenceResolver(reference)
        self.planner = ImportPlanner(results)
        self.executor = UpsertExecutor(reference, results, self.error_log)

    # ---- planning -------------------------------------------------------

    def build_plan(self, data: TabularData, *, default_exam_id: int | None = None) -> ImportPlan:
        try:
            data.require_columns()
        except MissingColumnsError as e:
            raise PipelineError(str(e)) from e
        validator = RowValidator(ImportKind.FILE, default_exam_id)
        rows = validator.validate_all(data.rows)
        self.resolver.resolve(rows, default_exam_id=validator.default_exam_id)
        plan = self.planner.plan(rows, data.headers)
        logger.info(
            "plan rows=%d skipped=%d valid=%d errors=%d",
            plan.total,
            plan.skip_count,
            plan.valid_count,
            plan.error_count,
        )
        return plan

    def plan_artifact(self, path: Path, *, default_exam_id: int | None = None, has_header: bool = True) -> ImportPlan:
        try:
            data = read_artifact(path, has_header=has_header)
        except _READ_ERRORS as e:
            raise PipelineError(str(e)) from e
        except UnreadableArtifactError as e:
            logger.warning("read failed: %s", e)
            raise PipelineError(MSG_READ_FAILED) from e
        return self.build_plan(data, default_exam_id=default_exam_id)

    def plan_text(self, text: str, *, default_exam_id: int | None = None, has_header: bool = True) -> ImportPlan:
        try:
            data = read_text(text, has_header=has_header)
        except _READ_ERRORS as e:
            raise PipelineError(str(e)) from e
        return self.build_plan(data, default_exam_id=default_exam_id)

    # ---- upload flow ----------------------------------------------------

    def preview_upload(
        self,
        session: str,
        filename: str,
        data: bytes,
        *,
        default_exam_id: int | None = None,
        has_header: bool = True,
    ) -> Outcome:
        outcome = Outcome(redirect_url=import_url(default_exam_id))
        try:
            ctx = self.contexts.stage_upload(session, filename, data)
        except UploadRejectedError as e:
            return outcome.flash("danger", str(e))
        outcome.token = ctx.token
        try:
            plan = self.plan_artifact(ctx.artifact, default_exam_id=default_exam_id, has_header=has_header)
        except PipelineError as e:
            return outcome.flash("danger", str(e))
        outcome.plan = plan
        if plan.is_blocked:
            return outcome.flash("warning", MSG_PREVIEW_ERRORS)
        return outcome.flash("success", MSG_PREVIEW_OK)

    def commit(
        self,
        session: str,
        token: str,
        *,
        dry_run: bool = False,
        default_exam_id: int | None = None,
        has_header: bool = True,
    ) -> Outcome:
        outcome = Outcome(redirect_url=import_url(default_exam_id))
        try:
            ctx = self.contexts.require(session, token)
        except ContextError as e:
            logger.warning("commit refused session=%s: %s", session, e)
            return outcome.flash("danger", str(e))
        try:
            plan = self.plan_artifact(ctx.artifact, default_exam_id=default_exam_id, has_header=has_header)
        except PipelineError as e:
            return outcome.flash("danger", str(e))
        outcome.plan = plan
        outcome.token = ctx.token
        return self._execute(
            outcome,
            plan,
            dry_run=dry_run,
            source=ctx.name,
            on_success=[lambda: self.contexts.consume(session)],
            failure_message=MSG_SAVE_FAILED,
            success_message=self._imported_message,
        )

    def current_context(self, session: str) -> ImportContext | None:
        return self.contexts.current(session)

    def reset(self, session: str, *, default_exam_id: int | None = None) -> Outcome:
        outcome = Outcome(redirect_url=import_url(default_exam_id))
        if self.contexts.reset(session):
            return outcome.flash("info", "Import context cleared.")
        return outcome.flash("info", "Nothing to clear.")

    # ---- paste flow -----------------------------------------------------

    def preview_text(
        self, text: str, *, default_exam_id: int | None = None, has_header: bool = True
    ) -> Outcome:
        outcome = Outcome(redirect_url=import_url(default_exam_id))
        try:
            plan = self.plan_text(text, default_exam_id=default_exam_id, has_header=has_header)
        except PipelineError as e:
            return outcome.flash("danger", str(e))
        outcome.plan = plan
        if plan.is_blocked:
            return outcome.flash("warning", MSG_PREVIEW_ERRORS)
        return outcome.flash("success", MSG_PREVIEW_OK)

    def import_text(
        self,
        text: str,
        *,
        dry_run: bool = False,
        default_exam_id: int | None = None,
        has_header: bool = True,
    ) -> Outcome:
        outcome = Outcome(redirect_url=import_url(default_exam_id))
        try:
            plan = self.plan_text(text, default_exam_id=default_exam_id, has_header=has_header)
        except PipelineError as e:
            return outcome.flash("danger", str(e))
        outcome.plan = plan
        return self._execute(
            outcome,
            plan,
            dry_run=dry_run,
            source="paste",
            on_success=[],
            failure_message=MSG_PASTE_SAVE_FAILED,
            success_message=lambda r: f"Imported OTM results rows: {r.written}.",
        )

    # ---- shared ---------------------------------------------------------

    @staticmethod
    def _imported_message(result: CommitResult) -> str:
        return f"Imported {result.written} rows. Inserts: {result.inserted}, updates: {result.updated}."

    def _execute(
        self,
        outcome: Outcome,
        plan: ImportPlan,
        *,
        dry_run: bool,
        source: str,
        on_success: list[Callable[[], object]],
        failure_message: str,
        success_message: Callable[[CommitResult], str],
    ) -> Outcome:
        try:
            result = self.executor.execute(plan, dry_run=dry_run, source=source, on_success=on_success)
        except TransactionError as e:
            return outcome.flash("danger", f"{failure_message} (ref {e.correlation_id})")
        outcome.result = result
        if result.errors:
            return outcome.flash("danger", MSG_BLOCKED)
        if result.dry_run:
            return outcome.flash("info", f"Dry run OK. Would insert {result.inserted}, update {result.updated}.")
        return outcome.flash("success", success_message(result))
