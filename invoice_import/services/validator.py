from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ..models.config_models import PipelineConfig
from ..models.records import (
    REQUIRED_FIELDS,
    ClientRecord,
    EntityKind,
    InvoiceItemRecord,
    InvoiceRecord,
    InvoiceStatus,
    RejectedRow,
)
from ..models.row_data import RawRow
from .coercion import AmbiguousDateError, parse_amount, parse_date

"""Validation / normalization service for parsed CSV rows.

Each row is checked completely before it is classified: every failing rule
adds a reason code, and a row with at least one reason is rejected. Numeric
inconsistencies (total, amount) and a defaulted status are warnings: the row
stays valid and carries the warning codes so the caller can ask for
confirmation.

Reason codes:
    missing_field:<f>  invalid_number:<f>  invalid_date:<f>  ambiguous_date:<f>
    invalid_email:<f>  negative_value:<f>  non_positive:<f>  due_before_issue
    duplicate_key:<f>
Warning codes:
    total_mismatch  amount_mismatch  status_defaulted
"""

__all__ = [
    "ValidationResult",
    "validate",
    "validate_clients",
    "validate_invoices",
    "validate_invoice_items",
]

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ZERO = Decimal("0")


@dataclass(frozen=True)
class ValidationResult:
    kind: EntityKind
    valid: tuple[ClientRecord | InvoiceRecord | InvoiceItemRecord, ...]
    rejected: tuple[RejectedRow, ...]

    @property
    def warned(self) -> list[ClientRecord | InvoiceRecord | InvoiceItemRecord]:
        return [r for r in self.valid if r.warnings]


def _missing(row: RawRow, kind: EntityKind) -> list[str]:
    return [f"missing_field:{name}" for name in REQUIRED_FIELDS[kind] if row.get(name) is None]


def _amount(
    row: RawRow,
    name: str,
    config: PipelineConfig,
    reasons: list[str],
    default: Decimal | None = None,
) -> Decimal | None:
    raw = row.get(name)
    if raw is None:
        return default
    try:
        return parse_amount(raw, config.default_currency)
    except ValueError:
        reasons.append(f"invalid_number:{name}")
        return None


def _date(row: RawRow, name: str, config: PipelineConfig, reasons: list[str]) -> date | None:
    raw = row.get(name)
    if raw is None:
        return None
    try:
        return parse_date(raw, config.date_formats)
    except AmbiguousDateError:
        reasons.append(f"ambiguous_date:{name}")
    except ValueError:
        reasons.append(f"invalid_date:{name}")
    return None


def _email(row: RawRow, name: str, reasons: list[str]) -> None:
    value = row.get(name)
    if value is not None and not EMAIL_PATTERN.match(value):
        reasons.append(f"invalid_email:{name}")


def _claim_key(key: str | None, name: str, seen: set[str], reasons: list[str]) -> None:
    """First occurrence in file order keeps the key, later ones are duplicates."""
    if key is None:
        return
    if key in seen:
        reasons.append(f"duplicate_key:{name}")
    else:
        seen.add(key)


def _status(raw: str | None) -> tuple[InvoiceStatus, bool]:
    """Return (status, defaulted)."""
    if raw is not None:
        try:
            return InvoiceStatus(raw.strip().lower()), False
        except ValueError:
            pass
    return InvoiceStatus.DRAFT, True


def _mismatch(actual: Decimal, expected: Decimal, config: PipelineConfig) -> bool:
    return abs(actual - expected) > config.epsilon


def validate_clients(rows: Iterable[RawRow], config: PipelineConfig | None = None) -> ValidationResult:
    config = config or PipelineConfig()
    valid: list[ClientRecord] = []
    rejected: list[RejectedRow] = []
    seen: set[str] = set()
    for row in rows:
        reasons = _missing(row, EntityKind.CLIENTS)
        _email(row, "email", reasons)
        email = row.get("email")
        _claim_key(email.lower() if email else None, "email", seen, reasons)
        if reasons:
            rejected.append(RejectedRow(EntityKind.CLIENTS, row.line_number, tuple(reasons)))
            continue
        valid.append(
            ClientRecord(
                line_number=row.line_number,
                name=row.get("name"),  # type: ignore[arg-type]
                email=email,  # type: ignore[arg-type]
                phone=row.get("phone"),
                address=row.get("address"),
                contact_person=row.get("contact_person"),
                extra_columns=dict(row.extra_columns),
            )
        )
    return ValidationResult(EntityKind.CLIENTS, tuple(valid), tuple(rejected))


def validate_invoices(rows: Iterable[RawRow], config: PipelineConfig | None = None) -> ValidationResult:
    config = config or PipelineConfig()
    valid: list[InvoiceRecord] = []
    rejected: list[RejectedRow] = []
    seen: set[str] = set()
    for row in rows:
        reasons = _missing(row, EntityKind.INVOICES)
        _email(row, "client_email", reasons)
        issue_date = _date(row, "issue_date", config, reasons)
        due_date = _date(row, "due_date", config, reasons)
        subtotal = _amount(row, "subtotal", config, reasons)
        tax = _amount(row, "tax", config, reasons, default=ZERO)
        discount = _amount(row, "discount", config, reasons, default=ZERO)
        total = _amount(row, "total", config, reasons)
        for name, value in (("subtotal", subtotal), ("tax", tax), ("discount", discount), ("total", total)):
            if value is not None and value < 0:
                reasons.append(f"negative_value:{name}")
        if issue_date is not None and due_date is not None and due_date < issue_date:
            reasons.append("due_before_issue")
        _claim_key(row.get("invoice_number"), "invoice_number", seen, reasons)
        if reasons:
            rejected.append(RejectedRow(EntityKind.INVOICES, row.line_number, tuple(reasons)))
            continue

        warnings: list[str] = []
        expected = subtotal + tax - discount  # type: ignore[operator]
        if total is None:
            total = expected
        elif _mismatch(total, expected, config):
            warnings.append("total_mismatch")
        status, defaulted = _status(row.get("status"))
        if defaulted:
            warnings.append("status_defaulted")
        valid.append(
            InvoiceRecord(
                line_number=row.line_number,
                invoice_number=row.get("invoice_number"),  # type: ignore[arg-type]
                client_email=row.get("client_email"),  # type: ignore[arg-type]
                issue_date=issue_date,  # type: ignore[arg-type]
                due_date=due_date,  # type: ignore[arg-type]
                subtotal=subtotal,  # type: ignore[arg-type]
                tax=tax,  # type: ignore[arg-type]
                discount=discount,  # type: ignore[arg-type]
                total=total,
                status=status,
                notes=row.get("notes"),
                payment_terms=row.get("payment_terms"),
                extra_columns=dict(row.extra_columns),
                warnings=tuple(warnings),
            )
        )
    return ValidationResult(EntityKind.INVOICES, tuple(valid), tuple(rejected))


def validate_invoice_items(
    rows: Iterable[RawRow], config: PipelineConfig | None = None
) -> ValidationResult:
    config = config or PipelineConfig()
    valid: list[InvoiceItemRecord] = []
    rejected: list[RejectedRow] = []
    for row in rows:
        reasons = _missing(row, EntityKind.INVOICE_ITEMS)
        quantity = _amount(row, "quantity", config, reasons)
        price = _amount(row, "price", config, reasons)
        amount = _amount(row, "amount", config, reasons)
        if quantity is not None and quantity <= 0:
            reasons.append("non_positive:quantity")
        if price is not None and price < 0:
            reasons.append("negative_value:price")
        if reasons:
            rejected.append(RejectedRow(EntityKind.INVOICE_ITEMS, row.line_number, tuple(reasons)))
            continue

        warnings: list[str] = []
        expected = quantity * price  # type: ignore[operator]
        if amount is None:
            amount = expected
        elif _mismatch(amount, expected, config):
            warnings.append("amount_mismatch")
        valid.append(
            InvoiceItemRecord(
                line_number=row.line_number,
                invoice_number=row.get("invoice_number"),  # type: ignore[arg-type]
                description=row.get("description"),  # type: ignore[arg-type]
                quantity=quantity,  # type: ignore[arg-type]
                price=price,  # type: ignore[arg-type]
                amount=amount,
                extra_columns=dict(row.extra_columns),
                warnings=tuple(warnings),
            )
        )
    return ValidationResult(EntityKind.INVOICE_ITEMS, tuple(valid), tuple(rejected))


_VALIDATORS = {
    EntityKind.CLIENTS: validate_clients,
    EntityKind.INVOICES: validate_invoices,
    EntityKind.INVOICE_ITEMS: validate_invoice_items,
}


def validate(
    rows: Iterable[RawRow], kind: EntityKind, config: PipelineConfig | None = None
) -> ValidationResult:
    """Validate rows of one entity kind."""
    result = _VALIDATORS[kind](rows, config)
    logger.debug(
        "validated kind=%s valid=%d warned=%d rejected=%d",
        kind.value,
        len(result.valid),
        len(result.warned),
        len(result.rejected),
    )
    return result
