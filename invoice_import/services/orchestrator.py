from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from ..csvio.reader import CsvRowSource, HeaderError
from ..db.entity_store import CommitResult, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import PipelineConfig
from ..models.error_record import (
    FILE_LEVEL_LINE,
    HEADER_ERROR,
    PARSE_ERROR,
    RECONCILIATION_ERROR,
    VALIDATION_ERROR,
    VALIDATION_WARNING,
    ErrorRecord,
)
from ..models.import_report import EntityStat, ImportReport
from ..models.records import EntityKind, ExistingSnapshot
from .progress import ProgressTracker
from .reconciler import ReconciliationResult, reconcile
from .validator import ValidationResult, validate

"""Batch orchestration for the CSV import pipeline.

run_import() drives one batch of up to three files:

1. parse + validate each provided file independently (a header failure fails
   only that file)
2. fetch the tenant's snapshot from the store, exactly once
3. reconcile clients -> invoices -> items against batch + snapshot
4. commit the resolved sets, exactly once (skipped on dry runs)

Every skipped line, rejected row, warning and unresolved reference ends up as
an ErrorRecord in the ImportReport.
"""

__all__ = [
    "ProcessingError",
    "SourceFile",
    "ImportSources",
    "EntityStore",
    "load_sources",
    "run_import",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Fatal for the whole batch (source directory unreadable, store failure)."""


class EntityStore(Protocol):
    def fetch_snapshot(self, tenant_id: str) -> ExistingSnapshot: ...

    def commit(
        self, tenant_id: str, result: ReconciliationResult, snapshot: ExistingSnapshot | None = None
    ) -> CommitResult: ...


@dataclass(frozen=True)
class SourceFile:
    """CSV text tagged with the file name used in the report."""
    name: str
    text: str


@dataclass(frozen=True)
class ImportSources:
    clients: SourceFile | None = None
    invoices: SourceFile | None = None
    invoice_items: SourceFile | None = None

    def for_kind(self, kind: EntityKind) -> SourceFile | None:
        return getattr(self, kind.value)

    def provided(self) -> list[tuple[EntityKind, SourceFile]]:
        """Provided files in dependency order."""
        out = []
        for kind in EntityKind:
            source = self.for_kind(kind)
            if source is not None:
                out.append((kind, source))
        return out


def load_sources(directory: Path, files: Mapping[EntityKind, str]) -> ImportSources:
    """Read the batch files from a directory.

    Texts are decoded as UTF-8 (a leading BOM is dropped). Missing files are
    skipped; a batch may consist of any subset of the three kinds.

    Raises:
        ProcessingError: directory missing or a file cannot be read/decoded
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")

    loaded: dict[str, SourceFile] = {}
    for kind, name in files.items():
        path = directory / name
        if not path.is_file():
            logger.debug(f"skip {kind.value}: {path} not found")
            continue
        try:
            text = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise ProcessingError(f"Error reading {path}: {e}") from e
        loaded[kind.value] = SourceFile(name=name, text=text)
    return ImportSources(**loaded)


@dataclass
class _FileOutcome:
    kind: EntityKind
    file_name: str
    total_rows: int = 0
    parse_errors: int = 0
    failed: bool = False
    validation: ValidationResult | None = None


def _parse_and_validate(
    kind: EntityKind, source: SourceFile, config: PipelineConfig, issues: list[ErrorRecord]
) -> _FileOutcome:
    outcome = _FileOutcome(kind=kind, file_name=source.name)
    try:
        row_source = CsvRowSource(source.text, kind, config)
    except HeaderError as e:
        logger.warning(f"{source.name}: header error: {e}")
        message = e.reason if not e.detail else f"{e.reason}: {e.detail}"
        issues.append(ErrorRecord.create(source.name, kind.value, FILE_LEVEL_LINE, HEADER_ERROR, message))
        outcome.failed = True
        return outcome

    rows = list(row_source)
    for err in row_source.errors:
        message = err.reason if not err.detail else f"{err.reason}: {err.detail}"
        issues.append(ErrorRecord.create(source.name, kind.value, err.line_number, PARSE_ERROR, message))
    if row_source.extra_columns:
        logger.debug(f"{source.name}: unmapped columns kept: {row_source.extra_columns}")

    result = validate(rows, kind, config)
    for rejected in result.rejected:
        issues.append(
            ErrorRecord.create(
                source.name, kind.value, rejected.line_number, VALIDATION_ERROR, "; ".join(rejected.reasons)
            )
        )
    outcome.total_rows = len(rows) + len(row_source.errors)
    outcome.parse_errors = len(row_source.errors)
    outcome.validation = result
    return outcome


def _valid(outcomes: dict[EntityKind, _FileOutcome], kind: EntityKind) -> tuple:
    outcome = outcomes.get(kind)
    if outcome is None or outcome.validation is None:
        return ()
    return outcome.validation.valid


def run_import(
    sources: ImportSources,
    config: PipelineConfig,
    store: EntityStore,
    tenant_id: str,
    *,
    dry_run: bool = False,
    error_log: ErrorLogBuffer | None = None,
) -> ImportReport:
    """Run one import batch and return its report.

    Parameters
    ----------
    sources: CSV texts per entity kind (any subset)
    config: pipeline configuration, passed to every stage
    store: persistence collaborator (snapshot + commit)
    tenant_id: owner of every record in the batch
    dry_run: validate and reconcile only; the store is not written
    error_log: when given, receives every issue and is flushed once

    Raises
    ------
    ProcessingError: tenant missing, or the store failed (nothing committed)
    """
    if not tenant_id:
        raise ProcessingError("tenant id is required")

    start_time = datetime.now(UTC)
    issues: list[ErrorRecord] = []
    outcomes: dict[EntityKind, _FileOutcome] = {}
    provided = sources.provided()

    try:
        with ProgressTracker(len(provided)) as progress:
            for kind, source in provided:
                progress.start_file(source.name)
                outcome = _parse_and_validate(kind, source, config, issues)
                outcomes[kind] = outcome
                if outcome.validation is not None:
                    progress.set_postfix(
                        rows=outcome.total_rows,
                        rejected=len(outcome.validation.rejected) + outcome.parse_errors,
                    )
                    logger.info(
                        f"{source.name}: rows={outcome.total_rows} valid={len(outcome.validation.valid)} "
                        f"rejected={len(outcome.validation.rejected)} parse_errors={outcome.parse_errors}"
                    )
                progress.finish_file(success=not outcome.failed)

        try:
            snapshot = store.fetch_snapshot(tenant_id)
        except StoreError as e:
            raise ProcessingError(f"snapshot: {e}") from e

        result = reconcile(
            _valid(outcomes, EntityKind.CLIENTS),
            _valid(outcomes, EntityKind.INVOICES),
            _valid(outcomes, EntityKind.INVOICE_ITEMS),
            snapshot,
        )

        unresolved_lines: dict[EntityKind, set[int]] = {kind: set() for kind in EntityKind}
        for row in result.unresolved:
            unresolved_lines[row.kind].add(row.line_number)
            file_name = outcomes[row.kind].file_name
            issues.append(
                ErrorRecord.create(
                    file_name, row.kind.value, row.line_number, RECONCILIATION_ERROR, "; ".join(row.reasons)
                )
            )

        committed = False
        created_clients = len(result.clients_to_create)
        if dry_run:
            logger.info("dry run: nothing committed")
        else:
            try:
                commit = store.commit(tenant_id, result, snapshot)
            except StoreError as e:
                raise ProcessingError(f"commit: {e}") from e
            committed = True
            created_clients = commit.created_clients
            logger.info(
                f"committed clients={commit.created_clients} invoices={commit.upserted_invoices} "
                f"items={commit.inserted_items}"
            )

        stats: dict[EntityKind, EntityStat] = {}
        for kind, outcome in outcomes.items():
            skipped = unresolved_lines[kind]
            accepted = [r for r in _valid(outcomes, kind) if r.line_number not in skipped]
            warned = [r for r in accepted if r.warnings]
            for record in warned:
                issues.append(
                    ErrorRecord.create(
                        outcome.file_name,
                        kind.value,
                        record.line_number,
                        VALIDATION_WARNING,
                        "; ".join(record.warnings),
                    )
                )
            stats[kind] = EntityStat(
                entity=kind.value,
                file_name=outcome.file_name,
                total_rows=outcome.total_rows,
                parse_errors=outcome.parse_errors,
                rejected=len(outcome.validation.rejected) if outcome.validation else 0,
                unresolved=len(skipped),
                accepted=len(accepted),
                warnings=len(warned),
                failed=outcome.failed,
            )
    finally:
        if error_log is not None:
            error_log.extend(issues)
            path = error_log.flush()
            if path is not None:
                logger.info(f"error log written: {path}")

    end_time = datetime.now(UTC)
    by_type = Counter(i.error_type for i in issues)
    if by_type:
        logger.debug(f"issues by type: {dict(by_type)}")
    return ImportReport(
        tenant_id=tenant_id,
        stats=stats,
        created_clients=created_clients,
        existing_clients=len(result.existing_clients),
        issues=issues,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        committed=committed,
        failed_files=[o.file_name for o in outcomes.values() if o.failed],
    )
