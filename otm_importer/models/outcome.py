from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from .import_plan import CommitResult, ImportPlan

"""Outcome of a state-changing pipeline action for the rendering layer.

Every action answers with flash messages (type + text) and the canonical URL
the caller should redirect to. Flash types follow the admin UI alert classes:
success, info, warning, danger.
"""

__all__ = [
    "FlashMessage",
    "IMPORT_PATH",
    "Outcome",
    "RESULTS_PATH",
    "import_url",
    "results_url",
]

IMPORT_PATH = "/admin/otm_import.php"
RESULTS_PATH = "/admin/otm_results.php"

FLASH_TYPES = ("success", "info", "warning", "danger")


@dataclass(frozen=True)
class FlashMessage:
    type: str
    text: str

    def __post_init__(self) -> None:
        if self.type not in FLASH_TYPES:
            raise ValueError(f"unknown flash type: {self.type}")


@dataclass
class Outcome:
    flashes: list[FlashMessage] = field(default_factory=list)
    redirect_url: str = IMPORT_PATH
    plan: ImportPlan | None = None
    result: CommitResult | None = None
    token: str | None = None

    def flash(self, type_: str, text: str) -> Outcome:
        self.flashes.append(FlashMessage(type_, text))
        return self

    @property
    def ok(self) -> bool:
        return not any(f.type == "danger" for f in self.flashes)


def _build_url(path: str, query: dict[str, Any]) -> str:
    q = {k: ("" if v is None else v) for k, v in query.items()}
    if not q:
        return path
    return f"{path}?{urlencode(q)}"


def import_url(default_exam_id: int | None = None) -> str:
    if default_exam_id is None:
        return IMPORT_PATH
    return _build_url(IMPORT_PATH, {"default_otm_exam_id": default_exam_id if default_exam_id > 0 else ""})


def results_url(
    class_code: str,
    otm_exam_id: int,
    study_year_id: int,
    otm_kind: str,
    exam_title: str,
    exam_date: str,
    attempt_no: int,
    q: str = "",
) -> str:
    """Canonical URL of the manual entry grid for one class and exam."""
    return _build_url(
        RESULTS_PATH,
        {
            "class_code": class_code,
            "otm_exam_id": otm_exam_id if otm_exam_id > 0 else "",
            "study_year_id": study_year_id if study_year_id > 0 else "",
            "otm_kind": otm_kind,
            "exam_title": exam_title,
            "exam_date": exam_date,
            "attempt_no": attempt_no if attempt_no > 0 else 1,
            "q": q,
        },
    )
