from __future__ import annotations

import pytest

from invoice_import.db.batch_insert import BatchInsertError, InsertResult, batch_insert


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.pages: list[int] = []
        self.returned: list[tuple] = [("id-1", "a@acme.test"), ("id-2", "b@beta.test")]

# execute_values is monkeypatched inside the module so no database is needed


@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import invoice_import.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=100, fetch=False):
        cursor.queries.append(sql)
        cursor.pages.append(page_size)
        if fetch:
            return cursor.returned[: len(rows)]
        return None

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(cur, table="clients", columns=["name", "email"], rows=[["A", "a@acme.test"]])
    assert isinstance(res, InsertResult)
    assert res.inserted_rows == 1
    assert res.returned_values is None
    assert cur.queries == ['INSERT INTO clients ("name","email") VALUES %s']


def test_batch_insert_returning_and_on_conflict():
    cur = DummyCursor()
    res = batch_insert(
        cur,
        table="clients",
        columns=["user_id", "email"],
        rows=[("t", "a@acme.test"), ("t", "b@beta.test")],
        returning=["id", "email"],
        on_conflict="(user_id, email) DO NOTHING",
    )
    assert res.returned_values == [("id-1", "a@acme.test"), ("id-2", "b@beta.test")]
    assert cur.queries[0].endswith('ON CONFLICT (user_id, email) DO NOTHING RETURNING "id","email"')


def test_batch_insert_empty_rows():
    cur = DummyCursor()
    res = batch_insert(cur, table="clients", columns=["email"], rows=[], returning=["id"])
    assert res.inserted_rows == 0
    assert res.returned_values == []
    assert cur.queries == []


def test_batch_insert_page_size_passed_through():
    cur = DummyCursor()
    batch_insert(cur, table="invoice_items", columns=["description"], rows=[["x"]], page_size=500)
    assert cur.pages == [500]


def test_batch_insert_missing_driver(monkeypatch):
    import invoice_import.db.batch_insert as bi

    monkeypatch.setattr(bi, "execute_values", None)
    with pytest.raises(BatchInsertError):
        batch_insert(DummyCursor(), table="t", columns=["c"], rows=[[1]])


def test_batch_insert_wraps_driver_error(monkeypatch):
    import invoice_import.db.batch_insert as bi

    def boom(*args, **kwargs):
        raise RuntimeError("duplicate key")

    monkeypatch.setattr(bi, "execute_values", boom)
    captured = []
    with pytest.raises(BatchInsertError, match="invoices: duplicate key"):
        batch_insert(DummyCursor(), table="invoices", columns=["c"], rows=[[1]], metrics_callback=captured.append)
    assert len(captured) == 1


def test_batch_insert_with_metrics_callback():
    cur = DummyCursor()
    captured = []
    batch_insert(
        cur,
        table="clients",
        columns=["name", "email"],
        rows=[["A", "a@acme.test"], ["B", "b@beta.test"]],
        metrics_callback=captured.append,
    )
    assert len(captured) == 1
    metrics = captured[0]
    assert metrics.batch_size == 2
    assert metrics.elapsed_seconds >= 0
    assert metrics.end_time >= metrics.start_time
