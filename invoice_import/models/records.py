from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

"""Entity records for the CSV import pipeline.

Lifecycle of one CSV line:

    RawRow -> (validate) -> ClientRecord | InvoiceRecord | InvoiceItemRecord
                            or RejectedRow
           -> (reconcile) -> ResolvedInvoice | ResolvedItem or UnresolvedRow

Every record is a frozen dataclass. The reconciler never mutates a validated
record; it wraps it together with the resolved reference.
"""

__all__ = [
    "EntityKind",
    "InvoiceStatus",
    "KNOWN_FIELDS",
    "REQUIRED_FIELDS",
    "ClientRecord",
    "InvoiceRecord",
    "InvoiceItemRecord",
    "RejectedRow",
    "ClientRef",
    "InvoiceRef",
    "ResolvedInvoice",
    "ResolvedItem",
    "UnresolvedRow",
    "ExistingSnapshot",
]


class EntityKind(Enum):
    """The three CSV files of one import batch, in dependency order."""
    CLIENTS = "clients"
    INVOICES = "invoices"
    INVOICE_ITEMS = "invoice_items"


class InvoiceStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


KNOWN_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.CLIENTS: ("name", "email", "phone", "address", "contact_person"),
    EntityKind.INVOICES: (
        "invoice_number",
        "client_email",
        "issue_date",
        "due_date",
        "subtotal",
        "tax",
        "discount",
        "total",
        "status",
        "notes",
        "payment_terms",
    ),
    EntityKind.INVOICE_ITEMS: ("invoice_number", "description", "quantity", "price", "amount"),
}

# total / amount are derived when the column is absent; tax / discount default to 0
REQUIRED_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.CLIENTS: ("name", "email"),
    EntityKind.INVOICES: ("invoice_number", "client_email", "issue_date", "due_date", "subtotal"),
    EntityKind.INVOICE_ITEMS: ("invoice_number", "description", "quantity", "price"),
}


@dataclass(frozen=True)
class ClientRecord:
    line_number: int
    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    contact_person: str | None = None
    extra_columns: dict[str, str | None] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        """Natural key: e-mail, case-insensitive."""
        return self.email.lower()


@dataclass(frozen=True)
class InvoiceRecord:
    line_number: int
    invoice_number: str
    client_email: str
    issue_date: date
    due_date: date
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: str | None = None
    payment_terms: str | None = None
    extra_columns: dict[str, str | None] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return self.invoice_number

    @property
    def client_key(self) -> str:
        return self.client_email.lower()


@dataclass(frozen=True)
class InvoiceItemRecord:
    line_number: int
    invoice_number: str
    description: str
    quantity: Decimal
    price: Decimal
    amount: Decimal
    extra_columns: dict[str, str | None] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RejectedRow:
    """A row that failed validation. All reasons are collected, never just the first."""
    kind: EntityKind
    line_number: int
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class ClientRef:
    """Resolved client reference.

    client_id is None when the client is created by this same batch; the store
    fills it in from the ids it assigns on insert.
    """
    email: str
    client_id: str | None = None

    @property
    def is_new(self) -> bool:
        return self.client_id is None


@dataclass(frozen=True)
class InvoiceRef:
    invoice_number: str
    invoice_id: str | None = None

    @property
    def is_new(self) -> bool:
        return self.invoice_id is None


@dataclass(frozen=True)
class ResolvedInvoice:
    record: InvoiceRecord
    client: ClientRef
    existing_id: str | None = None  # set when the invoice number is already persisted (upsert)


@dataclass(frozen=True)
class ResolvedItem:
    record: InvoiceItemRecord
    invoice: InvoiceRef


@dataclass(frozen=True)
class UnresolvedRow:
    """A validated row whose cross-file reference points at nothing."""
    kind: EntityKind
    line_number: int
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class ExistingSnapshot:
    """Already-persisted records of one tenant, fetched once per batch.

    clients maps lower-cased e-mail -> client id, invoices maps invoice number
    -> invoice id.
    """
    tenant_id: str | None = None
    clients: Mapping[str, str] = field(default_factory=dict)
    invoices: Mapping[str, str] = field(default_factory=dict)

    def client_id(self, email: str) -> str | None:
        return self.clients.get(email.lower())

    def invoice_id(self, invoice_number: str) -> str | None:
        return self.invoices.get(invoice_number)
