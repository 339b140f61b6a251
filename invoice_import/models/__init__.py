"""Domain models for the CSV client / invoice import pipeline.

This package contains all domain model classes used throughout the application.
"""

from .config_models import DatabaseConfig, ImportConfig, PipelineConfig
from .error_record import ErrorRecord
from .import_report import EntityStat, ImportReport
from .records import (
    ClientRecord,
    ClientRef,
    EntityKind,
    ExistingSnapshot,
    InvoiceItemRecord,
    InvoiceRecord,
    InvoiceRef,
    InvoiceStatus,
    RejectedRow,
    ResolvedInvoice,
    ResolvedItem,
    UnresolvedRow,
)
from .row_data import RawRow

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "PipelineConfig",
    # Pipeline records
    "EntityKind",
    "InvoiceStatus",
    "RawRow",
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
    # Reporting
    "ErrorRecord",
    "EntityStat",
    "ImportReport",
]
