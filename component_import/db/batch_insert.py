from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""DB batch insert helper.

Batched INSERT through psycopg2.extras.execute_values. Callers pass the cursor
of the transaction they are in; this module never commits or rolls back.

ON CONFLICT clauses and RETURNING columns are supplied by the repository layer
(e.g. idempotent drawing / template creation, component ids for milestones).
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    """Driver error raised during a batch insert (original error in __cause__)."""


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch insert operation."""
    table: str
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    on_conflict: str | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor of the caller's transaction
    table: target table (trusted identifier, not user input)
    columns: insert columns, in row value order
    rows: row sequences
    returning: columns for a RETURNING clause; returned rows are collected from
        every page (execute_values fetch=True)
    on_conflict: conflict target and action, e.g. "(project_id, number) DO NOTHING".
        With DO NOTHING, inserted_rows counts only the rows actually written
        when returning is set.
    page_size: execute_values page size
    metrics_callback: receives one BatchMetrics per call. Not invoked when rows
        is empty (the function returns early).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if on_conflict:
        sql += f" ON CONFLICT {on_conflict}"
    if returning:
        sql += " RETURNING " + ",".join(f'"{c}"' for c in returning)

    start_time = time.time()
    try:
        returned = execute_values(
            cursor, sql, rows_list, page_size=page_size, fetch=bool(returning)
        )
    except psycopg2.Error as e:
        raise BatchInsertError(f"{table}: {e}") from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    table=table,
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    if returning:
        values = [tuple(r) for r in (returned or [])]
        return InsertResult(inserted_rows=len(values), returned_values=values)
    return InsertResult(inserted_rows=len(rows_list), returned_values=None)
