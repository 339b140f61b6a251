from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd

from .error_record import ErrorRecord
from .records import EntityKind

"""Import report models for the CSV import pipeline.

The report is what a user sees after an import: accepted counts, warning
counts with reasons, and every rejected / unresolved row with its line number,
so the source CSV can be fixed and only the failed rows re-imported.
"""

REPORT_COLUMNS = ["file", "entity", "line", "error_type", "message"]


@dataclass(frozen=True)
class EntityStat:
    """Per-file counts.

    total_rows counts every data record seen, including lines the parser had
    to skip. accepted rows are those handed to the store (for clients this
    includes rows matching an already-persisted client).
    """
    entity: str
    file_name: str | None  # None when the batch had no file for this kind
    total_rows: int = 0
    parse_errors: int = 0
    rejected: int = 0
    unresolved: int = 0
    accepted: int = 0
    warnings: int = 0  # accepted rows carrying at least one warning
    failed: bool = False  # header-level failure, file contributed nothing


@dataclass(frozen=True)
class ImportReport:
    """Aggregated result of one import batch."""
    tenant_id: str
    stats: dict[EntityKind, EntityStat]
    created_clients: int  # clients inserted by this batch
    existing_clients: int  # batch clients matching an already-persisted client
    issues: list[ErrorRecord]  # combined parse / validation / reconciliation list
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    committed: bool = False  # False on dry runs
    failed_files: list[str] = field(default_factory=list)

    def stat_for(self, kind: EntityKind) -> EntityStat:
        return self.stats.get(kind, EntityStat(entity=kind.value, file_name=None))

    @property
    def total_warnings(self) -> int:
        return sum(s.warnings for s in self.stats.values())

    @property
    def total_rejected(self) -> int:
        return sum(s.rejected + s.parse_errors for s in self.stats.values())

    @property
    def total_unresolved(self) -> int:
        return sum(s.unresolved for s in self.stats.values())

    @property
    def has_problems(self) -> bool:
        """True when anything was skipped; warnings alone do not count."""
        return bool(self.failed_files) or self.total_rejected > 0 or self.total_unresolved > 0

    def to_dataframe(self) -> pd.DataFrame:
        """Render the combined issue list as an import-report table.

        Rows are ordered by file, then line, so the table reads top-down next
        to the source CSV.
        """
        data = [
            {
                "file": r.file,
                "entity": r.entity,
                "line": r.line,
                "error_type": r.error_type,
                "message": r.message,
            }
            for r in self.issues
        ]
        df = pd.DataFrame(data, columns=REPORT_COLUMNS)
        if df.empty:
            return df
        return df.sort_values(["file", "line"], kind="stable").reset_index(drop=True)
