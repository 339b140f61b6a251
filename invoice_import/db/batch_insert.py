from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Paged multi-row INSERT on top of psycopg2.extras.execute_values.

RETURNING rows are collected across every page (fetch=True), so a parent
table can hand all generated ids to its children in one call.
"""

DEFAULT_PAGE_SIZE = 500


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one batch_insert call."""
    batch_size: int  # rows sent
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None  # None when no RETURNING was requested


def _quote(names: Sequence[str]) -> str:
    return ",".join(f'"{n}"' for n in names)


def build_insert_sql(
    table: str,
    columns: Sequence[str],
    returning: Sequence[str] | None = None,
    on_conflict: str | None = None,
) -> str:
    """INSERT statement with the single VALUES placeholder execute_values expands."""
    parts = [f"INSERT INTO {table} ({_quote(columns)}) VALUES %s"]
    if on_conflict:
        parts.append(f"ON CONFLICT {on_conflict}")
    if returning:
        parts.append(f"RETURNING {_quote(returning)}")
    return " ".join(parts)


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    on_conflict: str | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert rows in pages of page_size.

    Parameters
    ----------
    cursor: psycopg2 cursor, inside the caller's transaction
    table: target table (trusted identifier, never user input)
    columns: insert columns, aligned with each row
    returning: columns for RETURNING, e.g. ["id", "email"]
    on_conflict: clause following "ON CONFLICT", e.g. "(user_id, email) DO NOTHING"
    metrics_callback: receives one BatchMetrics, also when the insert fails.
        Not called for an empty batch.

    Raises
    ------
    BatchInsertError: wraps any driver error, prefixed with the table name
    """
    if execute_values is None:
        raise BatchInsertError("psycopg2 not available")

    batch = [tuple(r) for r in rows]
    if not batch:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    sql = build_insert_sql(table, columns, returning, on_conflict)
    started = time.time()
    try:
        fetched = execute_values(cursor, sql, batch, page_size=page_size, fetch=bool(returning))
    except Exception as e:
        raise BatchInsertError(f"{table}: {e}") from e
    finally:
        if metrics_callback is not None:
            finished = time.time()
            metrics_callback(
                BatchMetrics(
                    batch_size=len(batch),
                    elapsed_seconds=finished - started,
                    start_time=started,
                    end_time=finished,
                )
            )

    returned = [tuple(r) for r in fetched or []] if returning else None
    return InsertResult(inserted_rows=len(batch), returned_values=returned)
