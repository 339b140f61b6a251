from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the import report and the JSON Lines error log.

One ErrorRecord per problem found in a batch: a skipped CSV line, a rejected
row, a warning on an accepted row, an unresolved reference or a file-level
failure. line=-1 is the sentinel for file-level errors where no single line
is to blame.

The serialized shape is fixed (contracts/error_log_schema.json); no extra keys.
"""

__all__ = [
    "ErrorRecord",
    "PARSE_ERROR",
    "HEADER_ERROR",
    "VALIDATION_ERROR",
    "VALIDATION_WARNING",
    "RECONCILIATION_ERROR",
    "FILE_LEVEL_LINE",
]

PARSE_ERROR = "PARSE_ERROR"
HEADER_ERROR = "HEADER_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
VALIDATION_WARNING = "VALIDATION_WARNING"
RECONCILIATION_ERROR = "RECONCILIATION_ERROR"

FILE_LEVEL_LINE = -1


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for the import report and JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: CSV file name the row came from
        entity: Entity kind value (clients / invoices / invoice_items)
        line: 1-based line number. -1 for file-level errors
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Reason codes joined with "; " (e.g. "missing_field:email")
    """
    timestamp: str  # ISO8601 UTC
    file: str
    entity: str
    line: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, entity: str, line: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            entity=entity,
            line=line,
            error_type=error_type,
            message=message,
        )

    @property
    def is_warning(self) -> bool:
        return self.error_type == VALIDATION_WARNING

    def to_json_line(self) -> str:
        """Serialize ErrorRecord to JSON Lines format."""
        return json.dumps(asdict(self), ensure_ascii=False)
