from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ..models.field_value import BLANK, FieldValue, Invalid, Valid, ValidatedRow
from ..models.row_data import RawRow
from ..tabular.headers import COUNT_FIELDS, PERCENT_FIELDS

"""Row validation: raw text per canonical field -> Blank | Invalid | Valid.

Each import kind has a static table of FieldSpec. Validation never raises
for bad data; problems are recorded on the row, keyed by field name.

Order of checks for one row:
1. parse every field on its own
2. if every score field is blank the row is a skip row and gets no errors
3. otherwise record parse errors, then required-field errors
"""

__all__ = [
    "FieldRule",
    "FieldSpec",
    "ImportKind",
    "RowValidator",
    "SCORE_FIELDS",
    "field_specs",
    "parse_field",
]

_UINT = re.compile(r"^[0-9]+$")
_PERCENT = re.compile(r"^[0-9]+(?:\.[0-9]{1,2})?$")
CENT = Decimal("0.01")

SCORE_FIELDS: tuple[str, ...] = COUNT_FIELDS + PERCENT_FIELDS


class ImportKind(Enum):
    """FILE: upload or paste, counts required. GRID: manual entry, blank count = 0."""
    FILE = "file"
    GRID = "grid"


class FieldRule(Enum):
    COUNT = "count"
    ID = "id"
    PERCENT = "percent"
    TEXT = "text"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    rule: FieldRule
    min: int = 0
    max: int = 0
    required: bool = False


_MAJOR_MAX = 30
_MANDATORY_MAX = 10


def _count_specs(required: bool) -> list[FieldSpec]:
    return [
        FieldSpec("major1", FieldRule.COUNT, 0, _MAJOR_MAX, required),
        FieldSpec("major2", FieldRule.COUNT, 0, _MAJOR_MAX, required),
        FieldSpec("mandatory1", FieldRule.COUNT, 0, _MANDATORY_MAX, required),
        FieldSpec("mandatory2", FieldRule.COUNT, 0, _MANDATORY_MAX, required),
        FieldSpec("mandatory3", FieldRule.COUNT, 0, _MANDATORY_MAX, required),
    ]


_PERCENT_SPECS = [FieldSpec(name, FieldRule.PERCENT, 0, 100) for name in PERCENT_FIELDS]

_FIELD_SPECS: dict[ImportKind, tuple[FieldSpec, ...]] = {
    ImportKind.FILE: tuple(
        [
            FieldSpec("pupil_id", FieldRule.ID),
            FieldSpec("pupil_login", FieldRule.TEXT),
            FieldSpec("exam_id", FieldRule.ID),
        ]
        + _count_specs(required=True)
        + _PERCENT_SPECS
    ),
    ImportKind.GRID: tuple(
        [FieldSpec("pupil_id", FieldRule.ID, required=True)]
        + _count_specs(required=False)
        + _PERCENT_SPECS
    ),
}


def field_specs(kind: ImportKind) -> tuple[FieldSpec, ...]:
    return _FIELD_SPECS[kind]


def parse_field(spec: FieldSpec, raw: str | None) -> FieldValue:
    s = (raw or "").strip()
    if spec.rule is FieldRule.PERCENT:
        s = s.replace(",", ".")
    if s == "":
        return BLANK

    if spec.rule is FieldRule.TEXT:
        return Valid(s)

    if spec.rule is FieldRule.PERCENT:
        if not _PERCENT.match(s):
            return Invalid(f"{spec.name} must be a number 0..100 (max 2 decimals)")
        v = Decimal(s)
        if v < spec.min or v > spec.max:
            return Invalid(f"{spec.name} must be between 0 and 100")
        return Valid(v.quantize(CENT))

    if not _UINT.match(s):
        return Invalid(f"{spec.name} must be an integer")
    n = int(s)
    if spec.rule is FieldRule.ID:
        if n <= 0:
            return Invalid(f"{spec.name} must be > 0")
        return Valid(n)
    if n < spec.min or n > spec.max:
        return Invalid(f"{spec.name} must be {spec.min}..{spec.max}")
    return Valid(n)


class RowValidator:
    """Validate raw rows for one import kind.

    `default_exam_id` is the caller's exam selection used when a FILE row has
    no exam_id of its own. GRID rows get their exam from the entry form and
    carry no exam_id.
    """

    def __init__(self, kind: ImportKind, default_exam_id: int | None = None) -> None:
        self.kind = kind
        self.default_exam_id = default_exam_id if default_exam_id and default_exam_id > 0 else None
        self.specs = field_specs(kind)

    def validate(self, raw: RawRow) -> ValidatedRow:
        fields = {spec.name: parse_field(spec, raw.get(spec.name)) for spec in self.specs}
        row = ValidatedRow(line=raw.line, raw=dict(raw.values), fields=fields, score_fields=SCORE_FIELDS)
        if row.is_skip:
            return row

        for name, fv in fields.items():
            if isinstance(fv, Invalid):
                row.add_error(name, fv.reason)

        for spec in self.specs:
            if spec.required and row.is_blank(spec.name):
                row.add_error(spec.name, f"{spec.name} is required")

        if self.kind is ImportKind.FILE:
            if row.is_blank("pupil_id") and row.is_blank("pupil_login"):
                row.add_error("pupil_id", "pupil_id is required")
            if row.is_blank("exam_id") and self.default_exam_id is None:
                row.add_error("exam_id", "exam_id is required (column or default exam)")
        return row

    def validate_all(self, rows: Iterable[RawRow]) -> list[ValidatedRow]:
        return [self.validate(r) for r in rows]

    def effective_exam_id(self, row: ValidatedRow) -> int | None:
        return row.value("exam_id") or self.default_exam_id
