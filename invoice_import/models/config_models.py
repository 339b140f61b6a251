from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from .records import EntityKind

"""Config dataclasses for the CSV import pipeline.

PipelineConfig is the explicit configuration object handed to every stage
(parser, validator, orchestrator); nothing in the pipeline reads ambient
state. ImportConfig is the root object built by config.loader for the CLI.
"""

DEFAULT_DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y")

DEFAULT_FILES: dict[EntityKind, str] = {
    EntityKind.CLIENTS: "clients.csv",
    EntityKind.INVOICES: "invoices.csv",
    EntityKind.INVOICE_ITEMS: "invoice_items.csv",
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Per-tenant knobs for parsing and validation.

    column_aliases maps entity kind -> {header text: canonical field}. Header
    text is compared after the same normalisation the parser applies to
    headers, so "E-Mail Address" and "e mail address" are the same alias.
    """
    default_currency: str = "USD"
    epsilon: Decimal = Decimal("0.01")  # tolerance for total / amount consistency
    date_formats: tuple[str, ...] = DEFAULT_DATE_FORMATS
    null_sentinels: frozenset[str] = frozenset()  # upper-cased strings read as empty
    column_aliases: dict[EntityKind, dict[str, str]] = field(default_factory=dict)

    def aliases_for(self, kind: EntityKind) -> dict[str, str]:
        return self.column_aliases.get(kind, {})


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for one CLI run."""
    source_directory: str  # Directory holding the batch CSV files
    files: dict[EntityKind, str]  # Entity kind -> file name inside source_directory
    pipeline: PipelineConfig
    database: DatabaseConfig
    tenant_id: str | None = None  # Owner (user_id) of imported records; CLI / env may override
