from __future__ import annotations

from dataclasses import dataclass, field

"""RawRow model: one data row as produced by the tabular reader.

The keys are already canonical field names (or synthetic `col_N` keys for
headers that are unknown or empty). Values are trimmed raw text; numeric
spreadsheet cells have been coerced to canonical decimal text.
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """Logical representation of a single source row.

    `line` is the 1-based line (text) or row (spreadsheet) number in the
    source, so the operator can find the row that failed.
    """
    line: int
    values: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str:
        return self.values.get(key, "")

    @property
    def is_blank(self) -> bool:
        return all(v.strip() == "" for v in self.values.values())
