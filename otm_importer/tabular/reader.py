from __future__ import annotations

import csv
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from numbers import Integral, Real
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.row_data import RawRow
from .headers import map_headers, missing_required_columns, positional_key

"""Tabular readers: spreadsheet artifacts and pasted/CSV text.

Both readers produce the same `TabularData`: header keys (already mapped to
canonical names) plus one `RawRow` per non-blank source row.

- spreadsheet (.xlsx): first sheet only, row 1 is the header unless the caller
  says otherwise, formula cells give their cached value (openpyxl data_only)
- text (paste or .csv): every line is split on its own delimiter (tab, else
  `;` when it beats `,`, else `,`), so ragged lines are tolerated
- numeric cells become canonical decimal text: 30.0 -> "30", 12.50 -> "12.5"
- fully blank rows are dropped and not counted
"""

__all__ = [
    "HeaderRowError",
    "MissingColumnsError",
    "NoDataRowsError",
    "TabularData",
    "UnreadableArtifactError",
    "cell_text",
    "decode_text",
    "parse_line",
    "read_artifact",
    "read_spreadsheet",
    "read_text",
]

TEXT_ENCODINGS = ("utf-8-sig", "cp1251")


class HeaderRowError(Exception):
    """Raised when the header row is missing or has no usable cell."""


class NoDataRowsError(Exception):
    """Raised when the input holds no non-blank data row."""


class MissingColumnsError(Exception):
    """Raised when a required canonical column is absent from the header."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__("; ".join(f"Missing required column: {c}" for c in missing))


class UnreadableArtifactError(Exception):
    """Raised when a stored artifact cannot be opened or decoded."""


@dataclass
class TabularData:
    headers: list[str]
    rows: list[RawRow] = field(default_factory=list)
    has_header: bool = True

    def require_columns(self) -> None:
        """Raise MissingColumnsError unless the header names every required column.

        Positional (no header) input always carries the fixed schema and is
        not checked.
        """
        if not self.has_header:
            return
        missing = missing_required_columns(self.headers)
        if missing:
            raise MissingColumnsError(missing)


def _format_decimal(value: float) -> str:
    s = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if s in ("", "-0") else s


def cell_text(value: Any) -> str:
    """Canonical text for one spreadsheet cell value."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (pd.Timestamp, datetime)):
        if pd.isna(value):
            return ""
        if value.hour == 0 and value.minute == 0 and value.second == 0:
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Integral):
        return str(int(value))
    if isinstance(value, Decimal):
        return _format_decimal(float(value))
    if isinstance(value, Real):
        f = float(value)
        if math.isnan(f):
            return ""
        if f.is_integer():
            return str(int(f))
        return _format_decimal(f)
    return str(value).strip()


def _build_rows(matrix: list[tuple[int, list[str]]], has_header: bool) -> TabularData:
    """Turn (line, cells) pairs into TabularData.

    `matrix` holds only non-blank lines. With a header, the first entry is the
    header row.
    """
    headers: list[str] = []
    body = matrix
    if has_header:
        if not matrix:
            raise NoDataRowsError("No data rows found")
        _, raw_headers = matrix[0]
        if all(c == "" for c in raw_headers):
            raise HeaderRowError("Header row is empty")
        headers = map_headers(raw_headers)
        body = matrix[1:]

    rows: list[RawRow] = []
    for line, cells in body:
        values: dict[str, str] = {}
        width = max(len(headers), len(cells))
        for idx in range(width):
            if idx < len(headers):
                key = headers[idx]
            else:
                key = f"col_{idx + 1}" if has_header else positional_key(idx)
            if key in values:
                key = f"col_{idx + 1}"
            values[key] = cells[idx] if idx < len(cells) else ""
        row = RawRow(line=line, values=values)
        if row.is_blank:
            continue
        rows.append(row)

    if not has_header:
        width = max((len(r.values) for r in rows), default=0)
        headers = [positional_key(i) for i in range(width)]
    if not rows:
        raise NoDataRowsError("No data rows found")
    return TabularData(headers=headers, rows=rows, has_header=has_header)


def read_spreadsheet(path: Path, has_header: bool = True) -> TabularData:
    """Read the first sheet of an .xlsx workbook."""
    try:
        df = pd.read_excel(
            path,
            sheet_name=0,
            header=None,
            dtype=object,
            engine="openpyxl",
            keep_default_na=False,
        )
    except Exception as e:
        raise UnreadableArtifactError(f"could not read spreadsheet {path.name}: {e}") from e

    matrix: list[tuple[int, list[str]]] = []
    for idx, raw in enumerate(df.itertuples(index=False, name=None)):
        cells = [cell_text(v) for v in raw]
        if all(c == "" for c in cells):
            if has_header and not matrix and idx == 0:
                raise HeaderRowError("Header row is empty")
            continue
        matrix.append((idx + 1, cells))
    return _build_rows(matrix, has_header)


def parse_line(line: str) -> list[str]:
    """Split one text line on its own delimiter, honouring quotes."""
    if "\t" in line:
        return [c.strip() for c in line.split("\t")]
    delim = ";" if line.count(";") > line.count(",") else ","
    cells = next(csv.reader([line], delimiter=delim, quotechar='"'), [])
    return [c.strip() for c in cells]


def read_text(text: str, has_header: bool = True) -> TabularData:
    """Parse a pasted block (or decoded CSV file) line by line."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        raise NoDataRowsError("Paste data is empty")
    matrix: list[tuple[int, list[str]]] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        matrix.append((lineno, parse_line(line)))
    return _build_rows(matrix, has_header)


def decode_text(data: bytes) -> str:
    for enc in TEXT_ENCODINGS:
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    raise UnreadableArtifactError("could not decode text file")


def read_artifact(path: Path, has_header: bool = True) -> TabularData:
    """Dispatch on the artifact extension (.xlsx or .csv)."""
    ext = path.suffix.lower()
    if ext == ".xlsx":
        return read_spreadsheet(path, has_header=has_header)
    if ext == ".csv":
        try:
            data = path.read_bytes()
        except OSError as e:
            raise UnreadableArtifactError(f"could not read {path.name}: {e}") from e
        return read_text(decode_text(data), has_header=has_header)
    raise UnreadableArtifactError(f"unsupported artifact type: {ext or '(none)'}")
