from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

"""Header normalization for OTM score sheets.

A raw header cell is normalized to a token (see `normalize_header_token`),
then looked up in a static alias table. Unknown tokens fall back to
themselves so extra columns survive under a readable key and are simply
ignored later on.

The alias table is validated once at import time: a bad table is a
programming error and must stop the process before any sheet is read.
"""

__all__ = [
    "AliasTableError",
    "CANONICAL_FIELDS",
    "COUNT_FIELDS",
    "HEADER_ALIASES",
    "PERCENT_FIELDS",
    "POSITIONAL_FIELDS",
    "REQUIRED_COLUMNS",
    "canonical_key",
    "map_headers",
    "missing_required_columns",
    "normalize_header_token",
    "positional_key",
]


class AliasTableError(Exception):
    """Raised when the header alias table is inconsistent."""


COUNT_FIELDS: tuple[str, ...] = ("major1", "major2", "mandatory1", "mandatory2", "mandatory3")
PERCENT_FIELDS: tuple[str, ...] = tuple(f"{f}_percent" for f in COUNT_FIELDS)
CANONICAL_FIELDS: frozenset[str] = frozenset(
    ("pupil_id", "pupil_login", "exam_id") + COUNT_FIELDS + PERCENT_FIELDS
)

# Column order assumed when the caller says the data has no header row.
POSITIONAL_FIELDS: tuple[str, ...] = (
    "pupil_id",
    "major1",
    "major2",
    "mandatory1",
    "mandatory2",
    "mandatory3",
    "exam_id",
)

REQUIRED_COLUMNS: tuple[str, ...] = COUNT_FIELDS

_QUOTES = str.maketrans("", "", "`'’ʻ“”")
_NON_WORD = re.compile(r"[\W_]+")


def normalize_header_token(raw: object) -> str:
    """Trim, drop BOM, lower-case, strip quotes, collapse non-alnum runs to `_`.

    >>> normalize_header_token("\\ufeff Fan 1 (to'g'ri) ")
    'fan_1_togri'
    """
    s = "" if raw is None else str(raw)
    s = s.strip().lstrip("\ufeff").strip()
    if not s:
        return ""
    s = s.lower().translate(_QUOTES)
    s = _NON_WORD.sub("_", s)
    return s.strip("_")


def _aliases(target: str, *names: str) -> dict[str, str]:
    return {target: target, **{n: target for n in names}}


HEADER_ALIASES: dict[str, str] = {
    **_aliases("pupil_id", "pupil", "student_id", "oquvchi_id", "id"),
    **_aliases("pupil_login", "login", "student_login", "oquvchi_login"),
    **_aliases("major1", "major_1", "fan1", "fan_1", "fan_1_togri", "major1_correct"),
    **_aliases("major2", "major_2", "fan2", "fan_2", "fan_2_togri", "major2_correct"),
    **_aliases(
        "mandatory1",
        "mandatory_1",
        "ona_tili",
        "ona_tili_va_adabiyot",
        "m_ona_tili",
        "mandatory_ona_tili_correct",
    ),
    **_aliases(
        "mandatory2",
        "mandatory_2",
        "matematika",
        "m_matematika",
        "math",
        "mandatory_matematika_correct",
    ),
    **_aliases(
        "mandatory3",
        "mandatory_3",
        "tarix",
        "uzb_tarix",
        "ozbekiston_tarixi",
        "m_tarix",
        "history",
        "mandatory_uzb_tarix_correct",
    ),
    **_aliases("major1_percent", "major1_certificate_percent", "fan1_sertifikat", "fan_1_sertifikat"),
    **_aliases("major2_percent", "major2_certificate_percent", "fan2_sertifikat", "fan_2_sertifikat"),
    **_aliases("mandatory1_percent", "mandatory_ona_tili_certificate_percent", "ona_tili_sertifikat"),
    **_aliases("mandatory2_percent", "mandatory_matematika_certificate_percent", "matematika_sertifikat"),
    **_aliases("mandatory3_percent", "mandatory_uzb_tarix_certificate_percent", "tarix_sertifikat"),
    **_aliases("exam_id", "otm_exam_id"),
}


def _validate_alias_table(table: Mapping[str, str], canonical: Iterable[str]) -> None:
    canonical = frozenset(canonical)
    for field in canonical:
        if table.get(field) != field:
            raise AliasTableError(f"canonical field {field!r} must map to itself")
    for alias, target in table.items():
        if target not in canonical:
            raise AliasTableError(f"alias {alias!r} targets unknown field {target!r}")
        if normalize_header_token(alias) != alias:
            raise AliasTableError(f"alias {alias!r} is not in normalized form")
        if alias in canonical and alias != target:
            raise AliasTableError(f"alias {alias!r} collides with canonical field of the same name")


_validate_alias_table(HEADER_ALIASES, CANONICAL_FIELDS)


def canonical_key(raw_header: object) -> str:
    token = normalize_header_token(raw_header)
    return HEADER_ALIASES.get(token, token)


def positional_key(index: int) -> str:
    """Key for the 0-based column `index` when there is no header row."""
    if 0 <= index < len(POSITIONAL_FIELDS):
        return POSITIONAL_FIELDS[index]
    return f"col_{index + 1}"


def map_headers(raw_headers: Iterable[object]) -> list[str]:
    """Map a header row to unique keys.

    Empty cells become `col_N` (1-based column). A key seen again in the same
    row gets `_2`, `_3`, ... appended so no column is silently overwritten.
    """
    keys: list[str] = []
    seen: dict[str, int] = {}
    for idx, raw in enumerate(raw_headers):
        key = canonical_key(raw) or f"col_{idx + 1}"
        if key in seen:
            seen[key] += 1
            key = f"{key}_{seen[key]}"
        else:
            seen[key] = 1
        keys.append(key)
    return keys


def missing_required_columns(headers: Iterable[str]) -> list[str]:
    present = set(headers)
    missing: list[str] = []
    if "pupil_id" not in present and "pupil_login" not in present:
        missing.append("pupil_id")
    missing.extend(c for c in REQUIRED_COLUMNS if c not in present)
    return missing
