from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import psycopg2

from ..models.records import ExistingSnapshot
from ..services.fk_propagation import (
    FKPropagationError,
    build_key_map,
    get_column_index,
    propagate_foreign_keys,
)
from ..services.reconciler import ReconciliationResult
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert

"""Persistence collaborators for a reconciled batch.

Both stores expose the same two calls, each made exactly once per batch by
the orchestrator:

    fetch_snapshot(tenant_id) -> ExistingSnapshot
    commit(tenant_id, result) -> CommitResult

PostgresEntityStore commits the whole batch in one transaction (clients ->
invoices -> items, ids propagated through RETURNING maps) and rolls back on
any failure. InMemoryEntityStore backs mock mode and tests.
"""

__all__ = [
    "StoreError",
    "CommitResult",
    "PostgresEntityStore",
    "InMemoryEntityStore",
]

logger = logging.getLogger(__name__)

CLIENT_COLUMNS = ["user_id", "name", "email", "phone", "address", "contact_person"]
INVOICE_COLUMNS = [
    "user_id",
    "client_id",
    "invoice_number",
    "issue_date",
    "due_date",
    "subtotal",
    "tax",
    "discount",
    "total",
    "status",
    "notes",
    "payment_terms",
]
ITEM_COLUMNS = ["invoice_id", "description", "quantity", "price", "amount"]

CLIENT_CONFLICT = "(user_id, email) DO NOTHING"
INVOICE_CONFLICT = "(user_id, invoice_number) DO UPDATE SET " + ", ".join(
    f"{c} = EXCLUDED.{c}" for c in INVOICE_COLUMNS if c not in ("user_id", "invoice_number")
)


class StoreError(Exception):
    """Raised when the snapshot cannot be read or the batch cannot be committed."""


@dataclass(frozen=True)
class CommitResult:
    created_clients: int
    upserted_invoices: int
    inserted_items: int
    client_ids: dict[str, str] = field(default_factory=dict)  # lower-cased e-mail -> id
    invoice_ids: dict[str, str] = field(default_factory=dict)  # invoice number -> id


def _client_rows(tenant_id: str, result: ReconciliationResult) -> list[tuple[Any, ...]]:
    return [
        (tenant_id, c.name, c.email, c.phone, c.address, c.contact_person)
        for c in result.clients_to_create
    ]


def _invoice_rows(tenant_id: str, result: ReconciliationResult) -> list[tuple[Any, ...]]:
    # client_id column carries the client e-mail until propagation
    rows = []
    for resolved in result.invoices:
        inv = resolved.record
        rows.append(
            (
                tenant_id,
                resolved.client.email,
                inv.invoice_number,
                inv.issue_date,
                inv.due_date,
                inv.subtotal,
                inv.tax,
                inv.discount,
                inv.total,
                inv.status.value,
                inv.notes,
                inv.payment_terms,
            )
        )
    return rows


def _item_rows(result: ReconciliationResult) -> list[tuple[Any, ...]]:
    # invoice_id column carries the invoice number until propagation
    return [
        (r.invoice.invoice_number, r.record.description, r.record.quantity, r.record.price, r.record.amount)
        for r in result.items
    ]


class PostgresEntityStore:
    """Entity store on the product database (clients / invoices / invoice_items).

    Records are scoped to a tenant through the user_id column.
    """

    def __init__(
        self,
        cursor: Any,
        *,
        page_size: int = 500,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.cursor = cursor
        self.page_size = page_size
        self.metrics_callback = metrics_callback

    def fetch_snapshot(self, tenant_id: str) -> ExistingSnapshot:
        try:
            self.cursor.execute("SELECT id, email FROM clients WHERE user_id = %s", (tenant_id,))
            client_rows = [(str(pk), email) for pk, email in self.cursor.fetchall() if email]
            self.cursor.execute(
                "SELECT id, invoice_number FROM invoices WHERE user_id = %s", (tenant_id,)
            )
            invoice_rows = [(str(pk), number) for pk, number in self.cursor.fetchall()]
        except psycopg2.Error as e:
            raise StoreError(f"snapshot query failed: {e}") from e
        snapshot = ExistingSnapshot(
            tenant_id=tenant_id,
            clients=build_key_map(client_rows, key_index=1, pk_index=0, normalize=str.lower),
            invoices=build_key_map(invoice_rows, key_index=1, pk_index=0),
        )
        logger.debug(
            "snapshot tenant=%s clients=%d invoices=%d",
            tenant_id,
            len(snapshot.clients),
            len(snapshot.invoices),
        )
        return snapshot

    def _insert(self, table: str, columns: list[str], rows: list[tuple[Any, ...]], **kwargs: Any):
        return batch_insert(
            self.cursor,
            table=table,
            columns=columns,
            rows=rows,
            page_size=self.page_size,
            metrics_callback=self.metrics_callback,
            **kwargs,
        )

    def commit(
        self, tenant_id: str, result: ReconciliationResult, snapshot: ExistingSnapshot | None = None
    ) -> CommitResult:
        """Insert the batch in one transaction.

        snapshot supplies ids of already-persisted clients / invoices referenced
        by the batch. Without it the ids carried on the resolved references are
        used.
        """
        client_ids: dict[str, str] = dict(snapshot.clients) if snapshot else {}
        invoice_ids: dict[str, str] = dict(snapshot.invoices) if snapshot else {}
        for resolved in result.invoices:
            if resolved.client.client_id is not None:
                client_ids.setdefault(resolved.client.email.lower(), resolved.client.client_id)
        for item in result.items:
            if item.invoice.invoice_id is not None:
                invoice_ids.setdefault(item.invoice.invoice_number, item.invoice.invoice_id)

        try:
            self.cursor.execute("BEGIN")
            clients = self._insert(
                "clients",
                CLIENT_COLUMNS,
                _client_rows(tenant_id, result),
                returning=["id", "email"],
                on_conflict=CLIENT_CONFLICT,
            )
            returned = [(str(pk), email) for pk, email in clients.returned_values or []]
            client_ids.update(build_key_map(returned, key_index=1, pk_index=0, normalize=str.lower))

            invoice_rows = propagate_foreign_keys(
                _invoice_rows(tenant_id, result),
                client_ids,
                child_fk_column_index=get_column_index("client_id", INVOICE_COLUMNS),
                normalize=str.lower,
            )
            invoices = self._insert(
                "invoices",
                INVOICE_COLUMNS,
                invoice_rows,
                returning=["id", "invoice_number"],
                on_conflict=INVOICE_CONFLICT,
            )
            returned = [(str(pk), number) for pk, number in invoices.returned_values or []]
            invoice_ids.update(build_key_map(returned, key_index=1, pk_index=0))

            item_rows = propagate_foreign_keys(
                _item_rows(result),
                invoice_ids,
                child_fk_column_index=get_column_index("invoice_id", ITEM_COLUMNS),
            )
            items = self._insert("invoice_items", ITEM_COLUMNS, item_rows)
            self.cursor.execute("COMMIT")
        except (BatchInsertError, FKPropagationError, psycopg2.Error) as e:
            try:
                self.cursor.execute("ROLLBACK")
            except psycopg2.Error as rollback_e:
                logger.warning("rollback failed tenant=%s: %s", tenant_id, rollback_e)
            raise StoreError(f"commit failed: {e}") from e

        return CommitResult(
            created_clients=len(clients.returned_values or []),
            upserted_invoices=len(invoices.returned_values or []),
            inserted_items=items.inserted_rows,
            client_ids=client_ids,
            invoice_ids=invoice_ids,
        )


class InMemoryEntityStore:
    """Dict-backed store used in mock mode (no database) and in tests.

    Applies the same conflict rules as the database: a client e-mail is
    inserted once per tenant, an invoice number is upserted.
    """

    def __init__(self) -> None:
        self.clients: dict[str, dict[str, dict[str, Any]]] = {}  # tenant -> id -> row
        self.invoices: dict[str, dict[str, dict[str, Any]]] = {}
        self.items: dict[str, list[dict[str, Any]]] = {}
        self.snapshot_calls = 0
        self.commit_calls = 0

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def add_client(self, tenant_id: str, email: str, name: str = "") -> str:
        """Seed an already-persisted client. Returns its id."""
        pk = self._new_id()
        self.clients.setdefault(tenant_id, {})[pk] = {"id": pk, "email": email, "name": name}
        return pk

    def add_invoice(self, tenant_id: str, invoice_number: str, client_id: str | None = None) -> str:
        """Seed an already-persisted invoice. Returns its id."""
        pk = self._new_id()
        self.invoices.setdefault(tenant_id, {})[pk] = {
            "id": pk,
            "invoice_number": invoice_number,
            "client_id": client_id,
        }
        return pk

    def fetch_snapshot(self, tenant_id: str) -> ExistingSnapshot:
        self.snapshot_calls += 1
        return self._snapshot(tenant_id)

    def _snapshot(self, tenant_id: str) -> ExistingSnapshot:
        clients = [(pk, row["email"]) for pk, row in self.clients.get(tenant_id, {}).items()]
        invoices = [(pk, row["invoice_number"]) for pk, row in self.invoices.get(tenant_id, {}).items()]
        return ExistingSnapshot(
            tenant_id=tenant_id,
            clients=build_key_map(clients, key_index=1, pk_index=0, normalize=str.lower),
            invoices=build_key_map(invoices, key_index=1, pk_index=0),
        )

    def commit(
        self, tenant_id: str, result: ReconciliationResult, snapshot: ExistingSnapshot | None = None
    ) -> CommitResult:
        self.commit_calls += 1
        current = self._snapshot(tenant_id)
        client_ids = dict(current.clients)
        invoice_ids = dict(current.invoices)

        new_clients: dict[str, dict[str, Any]] = {}
        for c in result.clients_to_create:
            if c.key in client_ids:
                continue  # ON CONFLICT DO NOTHING
            pk = self._new_id()
            client_ids[c.key] = pk
            new_clients[pk] = {
                "id": pk,
                "name": c.name,
                "email": c.email,
                "phone": c.phone,
                "address": c.address,
                "contact_person": c.contact_person,
            }

        try:
            upserts: dict[str, dict[str, Any]] = {}
            for resolved in result.invoices:
                inv = resolved.record
                key = resolved.client.email.lower()
                if key not in client_ids:
                    raise FKPropagationError(f"Parent identifier '{resolved.client.email}' not found in parent PK map")
                pk = invoice_ids.get(inv.invoice_number) or self._new_id()
                invoice_ids[inv.invoice_number] = pk
                upserts[pk] = {
                    "id": pk,
                    "client_id": client_ids[key],
                    "invoice_number": inv.invoice_number,
                    "issue_date": inv.issue_date,
                    "due_date": inv.due_date,
                    "subtotal": inv.subtotal,
                    "tax": inv.tax,
                    "discount": inv.discount,
                    "total": inv.total,
                    "status": inv.status.value,
                    "notes": inv.notes,
                    "payment_terms": inv.payment_terms,
                }
            item_rows = propagate_foreign_keys(_item_rows(result), invoice_ids, child_fk_column_index=0)
        except FKPropagationError as e:
            raise StoreError(f"commit failed: {e}") from e

        # apply only after everything resolved (all-or-nothing)
        self.clients.setdefault(tenant_id, {}).update(new_clients)
        self.invoices.setdefault(tenant_id, {}).update(upserts)
        self.items.setdefault(tenant_id, []).extend(
            dict(zip(ITEM_COLUMNS, row, strict=True)) for row in item_rows
        )
        return CommitResult(
            created_clients=len(new_clients),
            upserted_invoices=len(upserts),
            inserted_items=len(item_rows),
            client_ids=client_ids,
            invoice_ids=invoice_ids,
        )
