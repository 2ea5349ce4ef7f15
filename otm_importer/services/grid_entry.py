from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..logging.error_log import ErrorLogBuffer
from ..models.import_plan import ImportPlan, RowStatus
from ..models.outcome import Outcome, results_url
from ..models.reference import ExamDescriptor, ExamSession, Pupil
from ..models.result_record import SUBJECTS
from ..models.row_data import RawRow
from ..state.drafts import DraftState, DraftStore, draft_key
from ..tabular.headers import canonical_key
from ..tabular.reader import cell_text
from .executor import TransactionError, UpsertExecutor
from .interfaces import ReferenceStore, ResultsStore
from .planner import ImportPlanner
from .resolution import ReferenceResolver, ResolutionError
from .validation import ImportKind, RowValidator

"""Manual entry grid: one class, one exam session, one row per pupil.

Posted values use the results table column names (`major1_correct`,
`major1_certificate_percent`, ...). On save:

- blank rows are skipped
- valid rows are written in one transaction; the exam session is created on
  the fly when the entered descriptor does not exist yet
- rows with errors are kept as a draft under the exact view (class, exam
  descriptor, search filter) together with their field errors, and spliced
  back into the grid on the next load of that view
- a save with no error rows clears the draft
"""

logger = logging.getLogger(__name__)

__all__ = [
    "FORM_FIELDS",
    "GridEntryService",
    "GridError",
    "GridRow",
    "GridView",
]

# canonical row field -> form / column name
_FORM_NAMES: dict[str, str] = {
    **{s.field: f"{s.column}_correct" for s in SUBJECTS},
    **{s.percent_field: f"{s.column}_certificate_percent" for s in SUBJECTS},
}

FORM_FIELDS: tuple[str, ...] = tuple(_FORM_NAMES.values())

MSG_SAVE_FAILED = "Save failed. Check data/schema."


class GridError(Exception):
    """The grid cannot be loaded or saved for the requested view."""

    def __init__(self, message: str, flash_type: str = "danger") -> None:
        super().__init__(message)
        self.flash_type = flash_type


@dataclass
class GridRow:
    pupil: Pupil
    values: dict[str, str]
    errors: dict[str, str] = field(default_factory=dict)
    stored: bool = False

    @property
    def can_save(self) -> bool:
        majors = self.pupil.majors
        return majors is not None and majors.is_complete and majors.is_distinct


@dataclass
class GridView:
    class_code: str
    exam: ExamSession
    q: str
    rows: list[GridRow]
    draft_restored: bool = False

    @property
    def rows_without_majors(self) -> int:
        return sum(1 for r in self.rows if not r.can_save)


def _form_name(error_field: str) -> str:
    if error_field.startswith("_"):
        return error_field
    if error_field == "pupil_id":
        return "_row"
    return _FORM_NAMES.get(error_field, error_field)


def _posted_for(posted: Mapping[Any, Mapping[str, Any]], pupil_id: int) -> dict[str, str]:
    raw = posted.get(str(pupil_id))
    if raw is None:
        raw = posted.get(pupil_id)
    if not isinstance(raw, Mapping):
        return {}
    return {name: "" if raw.get(name) is None else str(raw.get(name)) for name in FORM_FIELDS}


def _stored_values(stored: Mapping[str, Any] | None) -> dict[str, str]:
    if not stored:
        return {name: "" for name in FORM_FIELDS}
    return {name: cell_text(stored.get(name)) for name in FORM_FIELDS}


class GridEntryService:
    def __init__(
        self,
        reference: ReferenceStore,
        results: ResultsStore,
        drafts: DraftStore,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.reference = reference
        self.results = results
        self.drafts = drafts
        self.resolver = ReferenceResolver(reference)
        self.planner = ImportPlanner(results)
        self.executor = UpsertExecutor(reference, results, error_log)

    def resolve_exam(self, *, otm_exam_id: int | None = None, descriptor: ExamDescriptor | None = None) -> ExamSession:
        """Selected exam by id, else by descriptor (pending when not stored yet)."""
        if otm_exam_id:
            exam = self.reference.find_exams([otm_exam_id]).get(otm_exam_id)
            if exam is None:
                raise GridError("Selected OTM exam was not found.")
            return exam
        if descriptor is None:
            raise GridError("Study year is required.")
        try:
            return self.resolver.resolve_descriptor(descriptor)
        except ResolutionError as e:
            raise GridError(str(e)) from e

    @staticmethod
    def _require_class(class_code: str) -> None:
        if not class_code.strip():
            raise GridError("Class is required.")

    def _pupils(self, class_code: str, q: str) -> list[Pupil]:
        pupils = self.reference.find_pupils_by_class(class_code, q)
        if not pupils:
            raise GridError("No pupils found for the selected class/filter.", flash_type="warning")
        return pupils

    @staticmethod
    def _draft_key(class_code: str, exam: ExamSession, q: str) -> str:
        return draft_key(class_code, exam.study_year_id, exam.kind, exam.title, exam.exam_date, exam.attempt_no, q)

    @staticmethod
    def _redirect(class_code: str, exam: ExamSession | None, q: str, descriptor: ExamDescriptor | None = None) -> str:
        src = exam.descriptor if exam is not None else descriptor
        if src is None:
            return results_url(class_code, 0, 0, "", "", "", 1, q)
        exam_id = exam.id if exam is not None and exam.id else 0
        return results_url(class_code, exam_id, src.study_year_id, src.kind, src.title, src.exam_date, src.attempt_no, q)

    def load_grid(
        self,
        session: str,
        class_code: str,
        *,
        otm_exam_id: int | None = None,
        descriptor: ExamDescriptor | None = None,
        q: str = "",
    ) -> GridView:
        """Rows for the grid: draft values first, then stored results, else blank.

        Raises GridError when the view cannot be built.
        """
        self._require_class(class_code)
        exam = self.resolve_exam(otm_exam_id=otm_exam_id, descriptor=descriptor)
        pupils = self._pupils(class_code, q)
        stored: dict[int, dict[str, Any]] = {}
        if exam.id is not None:
            stored = self.results.fetch_results([p.id for p in pupils], exam.id)
        draft = self.drafts.take(session, self._draft_key(class_code, exam, q))

        rows = []
        for pupil in pupils:
            if pupil.id in draft.rows:
                values = dict(draft.rows[pupil.id])
            else:
                values = _stored_values(stored.get(pupil.id))
            rows.append(
                GridRow(
                    pupil=pupil,
                    values=values,
                    errors=dict(draft.errors.get(pupil.id, {})),
                    stored=pupil.id in stored,
                )
            )
        return GridView(class_code=class_code, exam=exam, q=q, rows=rows, draft_restored=bool(draft))

    def save_grid(
        self,
        session: str,
        class_code: str,
        posted: Mapping[Any, Mapping[str, Any]],
        *,
        otm_exam_id: int | None = None,
        descriptor: ExamDescriptor | None = None,
        q: str = "",
    ) -> Outcome:
        exam: ExamSession | None = None
        try:
            self._require_class(class_code)
            exam = self.resolve_exam(otm_exam_id=otm_exam_id, descriptor=descriptor)
            pupils = self._pupils(class_code, q)
        except GridError as e:
            outcome = Outcome(redirect_url=self._redirect(class_code, exam, q, descriptor))
            return outcome.flash(e.flash_type, str(e))

        outcome = Outcome(redirect_url=self._redirect(class_code, exam, q))
        ctx_key = self._draft_key(class_code, exam, q)

        submitted: dict[int, dict[str, str]] = {}
        raw_rows: list[RawRow] = []
        for line, pupil in enumerate(pupils, start=1):
            values = _posted_for(posted, pupil.id)
            submitted[pupil.id] = values
            row_values = {canonical_key(name): text for name, text in values.items()}
            row_values["pupil_id"] = str(pupil.id)
            raw_rows.append(RawRow(line=line, values=row_values))

        rows = RowValidator(ImportKind.GRID).validate_all(raw_rows)
        self.resolver.resolve(rows, exam=exam)
        plan = self.planner.plan(rows)

        draft = DraftState()
        for planned in plan.error_rows():
            pid = int(planned.row.value("pupil_id"))
            draft.rows[pid] = submitted[pid]
            draft.errors[pid] = {_form_name(k): v for k, v in planned.errors.items()}

        writable = ImportPlan(rows=[r for r in plan.rows if r.status in (RowStatus.INSERT, RowStatus.UPDATE)])
        saved = 0
        if writable.rows:
            try:
                result = self.executor.execute(writable, source="grid")
            except TransactionError as e:
                for r in writable.rows:
                    pid = r.record.pupil_id
                    draft.rows[pid] = submitted[pid]
                    draft.errors[pid] = {"_row": MSG_SAVE_FAILED}
                self.drafts.save(session, ctx_key, draft)
                return outcome.flash("danger", f"{MSG_SAVE_FAILED} (ref {e.correlation_id})")
            saved = result.written
            outcome.result = result
            if exam.is_pending:
                stored_exam = self.reference.find_exam_by_descriptor(exam.descriptor)
                if stored_exam is not None:
                    outcome.redirect_url = self._redirect(class_code, stored_exam, q)

        outcome.plan = plan
        blank = plan.skip_count
        errors = plan.error_count
        if errors:
            self.drafts.save(session, ctx_key, draft)
            logger.info("grid saved=%d blank=%d error_rows=%d class=%s", saved, blank, errors, class_code)
            return outcome.flash(
                "warning" if saved > 0 else "danger",
                f"Saved: {saved}. Skipped (blank): {blank}. Rows with errors: {errors}. "
                "Fix highlighted fields and save again.",
            )

        self.drafts.clear(session, ctx_key)
        logger.info("grid saved=%d blank=%d class=%s", saved, blank, class_code)
        return outcome.flash("success", f"OTM results saved: {saved}. Skipped (blank): {blank}.")
