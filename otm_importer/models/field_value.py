from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .reference import ExamSession, Pupil

"""Per-field parse outcome and the validated row that carries them.

Every canonical field of a row is exactly one of:

- `Blank`   - nothing was entered
- `Invalid` - something was entered but it failed its rule
- `Valid`   - the typed value

A row whose score fields are all `Blank` is a *skip* row: it is not an
error, it is not written, and it is counted on its own.
"""

__all__ = [
    "BLANK",
    "Blank",
    "FieldValue",
    "Invalid",
    "Valid",
    "ValidatedRow",
]


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Invalid:
    reason: str


@dataclass(frozen=True)
class Valid:
    value: Any


FieldValue = Union[Blank, Invalid, Valid]

BLANK = Blank()


@dataclass
class ValidatedRow:
    """A row after validation, later enriched by reference resolution.

    `errors` maps a field name (or a pseudo field such as `_major` / `_row`)
    to one message. The first message recorded for a field wins.
    """
    line: int
    raw: dict[str, str]
    fields: dict[str, FieldValue]
    score_fields: tuple[str, ...]
    errors: dict[str, str] = field(default_factory=dict)
    pupil: Pupil | None = None
    exam: ExamSession | None = None

    def add_error(self, name: str, message: str) -> None:
        self.errors.setdefault(name, message)

    def value(self, name: str, default: Any = None) -> Any:
        fv = self.fields.get(name)
        if isinstance(fv, Valid):
            return fv.value
        return default

    def is_blank(self, name: str) -> bool:
        return isinstance(self.fields.get(name, BLANK), Blank)

    @property
    def is_skip(self) -> bool:
        return all(self.is_blank(name) for name in self.score_fields)

    @property
    def is_valid(self) -> bool:
        return not self.is_skip and not self.errors

    @property
    def natural_key(self) -> tuple[int, int] | None:
        """(pupil_id, exam_id) once both are resolved to stored ids."""
        if self.pupil is None or self.exam is None or self.exam.id is None:
            return None
        return (self.pupil.id, self.exam.id)
