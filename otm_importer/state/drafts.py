from __future__ import annotations

from dataclasses import dataclass, field

from ..models.config_models import DEFAULT_DRAFT_TTL_SECONDS
from .store import KeyValueStore

"""Draft state for the manual entry grid.

When a save leaves rows with errors, the submitted raw values and the field
errors of those rows are kept under the exact view the operator was on
(class, exam descriptor, search filter). The next render of that same view
takes the draft (read once, then deleted) and splices it back in. A fully
successful save clears it.
"""

__all__ = [
    "DraftState",
    "DraftStore",
    "draft_key",
]

_DRAFT_PREFIX = "draft:"


def draft_key(
    class_code: str,
    study_year_id: int,
    kind: str,
    exam_title: str,
    exam_date: str,
    attempt_no: int,
    q: str = "",
) -> str:
    return "|".join(
        [class_code, str(study_year_id), kind, exam_title, exam_date, str(attempt_no), q]
    )


@dataclass
class DraftState:
    rows: dict[int, dict[str, str]] = field(default_factory=dict)  # pupil_id -> raw values
    errors: dict[int, dict[str, str]] = field(default_factory=dict)  # pupil_id -> field -> message

    def __bool__(self) -> bool:
        return bool(self.rows or self.errors)


def _int_keys(d: object) -> dict[int, dict[str, str]]:
    out: dict[int, dict[str, str]] = {}
    if not isinstance(d, dict):
        return out
    for k, v in d.items():
        try:
            pid = int(k)
        except (TypeError, ValueError):
            continue
        if isinstance(v, dict):
            out[pid] = {str(f): str(x) for f, x in v.items()}
    return out


class DraftStore:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_DRAFT_TTL_SECONDS) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, session: str, ctx_key: str) -> str:
        return f"{_DRAFT_PREFIX}{session}:{ctx_key}"

    def save(self, session: str, ctx_key: str, state: DraftState) -> None:
        if not ctx_key or not state:
            return
        value = {
            "rows": {str(k): v for k, v in state.rows.items()},
            "errors": {str(k): v for k, v in state.errors.items()},
        }
        self.store.set(self._key(session, ctx_key), value, ttl_seconds=self.ttl_seconds)

    def take(self, session: str, ctx_key: str) -> DraftState:
        if not ctx_key:
            return DraftState()
        raw = self.store.pop(self._key(session, ctx_key))
        if not isinstance(raw, dict):
            return DraftState()
        return DraftState(rows=_int_keys(raw.get("rows")), errors=_int_keys(raw.get("errors")))

    def clear(self, session: str, ctx_key: str) -> None:
        if ctx_key:
            self.store.delete(self._key(session, ctx_key))
