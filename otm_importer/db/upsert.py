from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT ... ON CONFLICT DO UPDATE via psycopg2.extras.execute_values.

The statement is built from trusted identifiers only (table and column names
come from `models.result_record`, never from input files). Values travel as
parameters. Every non-conflict column is overwritten from EXCLUDED, so a
second write of the same natural key replaces the stored row.
"""

__all__ = [
    "BatchMetrics",
    "UpsertError",
    "UpsertResult",
    "build_upsert_sql",
    "upsert_rows",
]


class UpsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for one execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class UpsertResult:
    written_rows: int


def build_upsert_sql(
    table: str,
    columns: Sequence[str],
    conflict_columns: Sequence[str],
    touch_column: str | None = None,
) -> str:
    if not conflict_columns:
        raise UpsertError("conflict_columns must not be empty")
    missing = [c for c in conflict_columns if c not in columns]
    if missing:
        raise UpsertError(f"conflict columns not in insert columns: {missing}")

    cols_sql = ",".join(f'"{c}"' for c in columns)
    conflict_sql = ",".join(f'"{c}"' for c in conflict_columns)
    assignments = [f'"{c}"=EXCLUDED."{c}"' for c in columns if c not in conflict_columns]
    if touch_column:
        assignments.append(f'"{touch_column}"=now()')
    if not assignments:
        return f"INSERT INTO {table} ({cols_sql}) VALUES %s ON CONFLICT ({conflict_sql}) DO NOTHING"
    return (
        f"INSERT INTO {table} ({cols_sql}) VALUES %s "
        f"ON CONFLICT ({conflict_sql}) DO UPDATE SET {','.join(assignments)}"
    )


def upsert_rows(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    conflict_columns: Sequence[str],
    page_size: int = 500,
    touch_column: str | None = None,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> UpsertResult:
    """Write `rows` with one execute_values call.

    Parameters
    ----------
    cursor: psycopg2 cursor (inside the caller's transaction)
    table: target table (trusted identifier)
    columns: column order matching each row tuple
    conflict_columns: natural key columns for ON CONFLICT
    page_size: execute_values page size
    touch_column: optional timestamp column set to now() on update
    metrics_callback: receives BatchMetrics; not invoked for empty input
    """
    rows_list = list(rows)
    if not rows_list:
        return UpsertResult(written_rows=0)

    sql = build_upsert_sql(table, columns, conflict_columns, touch_column)

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, page_size=page_size)
    except Exception as e:
        raise UpsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return UpsertResult(written_rows=len(rows_list))
