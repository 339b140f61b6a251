from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..models.records import (
    ClientRecord,
    ClientRef,
    EntityKind,
    ExistingSnapshot,
    InvoiceItemRecord,
    InvoiceRecord,
    InvoiceRef,
    ResolvedInvoice,
    ResolvedItem,
    UnresolvedRow,
)

"""Cross-file reference resolution for one import batch.

Order is strict: clients, then invoices, then items. An invoice may point at a
client introduced by the same batch, and an item at an invoice introduced by
the same batch, so all three validated sets must be available before
reconcile() is called.

reconcile() is pure: same inputs and same snapshot give the same result. The
snapshot of persisted records is fetched once by the caller and only read
here.
"""

__all__ = [
    "ReconciliationResult",
    "reconcile",
    "UNRESOLVED_CLIENT_EMAIL",
    "UNRESOLVED_INVOICE_NUMBER",
]

logger = logging.getLogger(__name__)

UNRESOLVED_CLIENT_EMAIL = "unresolved_client_email"
UNRESOLVED_INVOICE_NUMBER = "unresolved_invoice_number"


@dataclass(frozen=True)
class ReconciliationResult:
    """Fully resolved batch, ready for the persistence collaborator."""
    clients_to_create: tuple[ClientRecord, ...]
    existing_clients: tuple[ClientRecord, ...]  # batch rows matching a persisted client; not re-created
    invoices: tuple[ResolvedInvoice, ...]
    items: tuple[ResolvedItem, ...]
    unresolved: tuple[UnresolvedRow, ...]

    @property
    def is_empty(self) -> bool:
        return not (self.clients_to_create or self.invoices or self.items)


def _resolve_clients(
    clients: Iterable[ClientRecord],
    snapshot: ExistingSnapshot,
    unresolved: list[UnresolvedRow],
) -> tuple[list[ClientRecord], list[ClientRecord]]:
    to_create: list[ClientRecord] = []
    existing: list[ClientRecord] = []
    seen: set[str] = set()
    for client in clients:
        if client.key in seen:
            unresolved.append(UnresolvedRow(EntityKind.CLIENTS, client.line_number, ("duplicate_key:email",)))
            continue
        seen.add(client.key)
        if snapshot.client_id(client.email) is not None:
            existing.append(client)
        else:
            to_create.append(client)
    return to_create, existing


def _resolve_invoices(
    invoices: Iterable[InvoiceRecord],
    new_client_keys: set[str],
    snapshot: ExistingSnapshot,
    unresolved: list[UnresolvedRow],
) -> dict[str, ResolvedInvoice]:
    resolved: dict[str, ResolvedInvoice] = {}
    for invoice in invoices:
        if invoice.key in resolved:
            unresolved.append(
                UnresolvedRow(EntityKind.INVOICES, invoice.line_number, ("duplicate_key:invoice_number",))
            )
            continue
        if invoice.client_key in new_client_keys:
            client = ClientRef(email=invoice.client_email)
        else:
            client_id = snapshot.client_id(invoice.client_email)
            if client_id is None:
                unresolved.append(
                    UnresolvedRow(EntityKind.INVOICES, invoice.line_number, (UNRESOLVED_CLIENT_EMAIL,))
                )
                continue
            client = ClientRef(email=invoice.client_email, client_id=client_id)
        resolved[invoice.key] = ResolvedInvoice(
            record=invoice,
            client=client,
            existing_id=snapshot.invoice_id(invoice.invoice_number),
        )
    return resolved


def _resolve_items(
    items: Iterable[InvoiceItemRecord],
    batch_invoices: dict[str, ResolvedInvoice],
    failed_invoice_numbers: set[str],
    snapshot: ExistingSnapshot,
    unresolved: list[UnresolvedRow],
) -> list[ResolvedItem]:
    resolved: list[ResolvedItem] = []
    for item in items:
        number = item.invoice_number
        batch_invoice = batch_invoices.get(number)
        if batch_invoice is not None:
            ref = InvoiceRef(invoice_number=number, invoice_id=batch_invoice.existing_id)
        elif number in failed_invoice_numbers:
            # the batch meant its own invoice, which did not resolve
            ref = None
        else:
            invoice_id = snapshot.invoice_id(number)
            ref = InvoiceRef(invoice_number=number, invoice_id=invoice_id) if invoice_id is not None else None
        if ref is None:
            unresolved.append(
                UnresolvedRow(EntityKind.INVOICE_ITEMS, item.line_number, (UNRESOLVED_INVOICE_NUMBER,))
            )
            continue
        resolved.append(ResolvedItem(record=item, invoice=ref))
    return resolved


def reconcile(
    clients: Iterable[ClientRecord],
    invoices: Iterable[InvoiceRecord],
    items: Iterable[InvoiceItemRecord],
    snapshot: ExistingSnapshot | None = None,
) -> ReconciliationResult:
    """Resolve invoice -> client and item -> invoice references.

    Parameters
    ----------
    clients, invoices, items: validated records (warnings preserved)
    snapshot: persisted clients / invoices of the tenant, fetched once up front

    Returns
    -------
    ReconciliationResult with creatable clients, resolved invoices and items,
    and one UnresolvedRow per dangling reference.
    """
    snapshot = snapshot or ExistingSnapshot()
    invoices = list(invoices)
    unresolved: list[UnresolvedRow] = []

    to_create, existing = _resolve_clients(clients, snapshot, unresolved)
    new_client_keys = {c.key for c in to_create}

    batch_invoices = _resolve_invoices(invoices, new_client_keys, snapshot, unresolved)
    failed_numbers = {i.invoice_number for i in invoices} - set(batch_invoices)

    resolved_items = _resolve_items(items, batch_invoices, failed_numbers, snapshot, unresolved)

    logger.debug(
        "reconciled create_clients=%d existing_clients=%d invoices=%d items=%d unresolved=%d",
        len(to_create),
        len(existing),
        len(batch_invoices),
        len(resolved_items),
        len(unresolved),
    )
    return ReconciliationResult(
        clients_to_create=tuple(to_create),
        existing_clients=tuple(existing),
        invoices=tuple(batch_invoices.values()),
        items=tuple(resolved_items),
        unresolved=tuple(unresolved),
    )
