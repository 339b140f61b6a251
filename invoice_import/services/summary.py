from __future__ import annotations

from ..models.import_report import ImportReport
from ..models.records import EntityKind

"""SUMMARY line rendering for one import batch.

Format:
SUMMARY clients={accepted}/{total} invoices={accepted}/{total}
items={accepted}/{total} warnings={w} rejected={r} unresolved={u}
created_clients={c} elapsed_sec={elapsed}
"""


def _format_elapsed(seconds: float) -> str:
    # Integers print without a fraction, tiny values without scientific notation
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return str(round(seconds, 3))


def render_summary_line(report: ImportReport) -> str:
    """Render the SUMMARY line for an ImportReport.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> report = ImportReport(
        ...     tenant_id="t1", stats={}, created_clients=0, existing_clients=0,
        ...     issues=[], start_time=t, end_time=t, elapsed_seconds=2.0,
        ... )
        >>> render_summary_line(report)  # doctest: +ELLIPSIS
        'SUMMARY clients=0/0 invoices=0/0 items=0/0 warnings=0 rejected=0 ... elapsed_sec=2'
    """
    parts = []
    for label, kind in (
        ("clients", EntityKind.CLIENTS),
        ("invoices", EntityKind.INVOICES),
        ("items", EntityKind.INVOICE_ITEMS),
    ):
        stat = report.stat_for(kind)
        parts.append(f"{label}={stat.accepted}/{stat.total_rows}")
    return (
        "SUMMARY "
        + " ".join(parts)
        + f" warnings={report.total_warnings}"
        + f" rejected={report.total_rejected}"
        + f" unresolved={report.total_unresolved}"
        + f" created_clients={report.created_clients}"
        + f" elapsed_sec={_format_elapsed(report.elapsed_seconds)}"
    )
