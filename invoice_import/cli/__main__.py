from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from invoice_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from invoice_import.csvio.reader import CsvRowSource, HeaderError
from invoice_import.db.entity_store import InMemoryEntityStore, PostgresEntityStore
from invoice_import.logging.error_log import ErrorLogBuffer
from invoice_import.logging.init import log_summary, setup_logging
from invoice_import.models.config_models import ImportConfig
from invoice_import.services.orchestrator import ProcessingError, load_sources, run_import
from invoice_import.services.summary import render_summary_line

"""CLI entrypoint: import one batch of clients / invoices / invoice_items CSVs.

    python -m invoice_import.cli [--config PATH] [--tenant ID] [--dry-run]
                                 [--report PATH] [--inspect-data] [--debug]

Exit codes:
    0  every provided row accepted (warnings allowed)
    2  partial: rows or files skipped (parse errors, rejections, unresolved)
    1  fatal: config, source directory, tenant or store failure
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_ROWS = 3


def _resolve_dsn(cfg: ImportConfig) -> str:
    """Connection settings: environment (.env already loaded) first, then YAML.

    DATABASE_URL / PGDSN are used whole; otherwise PGHOST / PGPORT / PGUSER /
    PGPASSWORD / PGDATABASE, each falling back to the database section.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a psycopg2 cursor. Connection errors surface before the yield."""
    conn = psycopg2.connect(_resolve_dsn(cfg))
    try:
        # transaction boundaries are issued by the store (BEGIN / COMMIT / ROLLBACK)
        conn.autocommit = True
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _open_store(cfg: ImportConfig, stack: ExitStack, logger: logging.Logger) -> tuple[Any, str]:
    """Return (store, mode). mode is "live" or "mock"."""
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        return InMemoryEntityStore(), "mock"
    try:
        cursor = stack.enter_context(_db_connection(cfg))
    except psycopg2.Error as e:
        logger.info(f"DB connection failed -> fallback to mock mode: {e}")
        return InMemoryEntityStore(), "mock"
    return PostgresEntityStore(cursor), "live"


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values override the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="CSV -> clients / invoices / invoice_items importer")
    p.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="YAML config path")
    p.add_argument("--tenant", default=None, help="Tenant (user) id owning the imported records")
    p.add_argument("--dry-run", action="store_true", help="Validate and reconcile, commit nothing")
    p.add_argument("--report", default=None, help="Write the import report as CSV to this path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print header mapping & first rows then exit")
    return p.parse_args(argv)


def _inspect_data(cfg: ImportConfig) -> int:
    directory = Path(cfg.source_directory)
    try:
        sources = load_sources(directory, cfg.files)
    except ProcessingError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    provided = sources.provided()
    if not provided:
        print("inspect: no csv files")
        return EXIT_SUCCESS_ALL
    for kind, source in provided:
        print(f"FILE: {source.name} ({kind.value})")
        try:
            row_source = CsvRowSource(source.text, kind, cfg.pipeline)
        except HeaderError as e:
            print(f"  header_error: {e}")
            continue
        print(f"  columns={row_source.known_columns}")
        if row_source.extra_columns:
            print(f"  extra_columns={row_source.extra_columns}")
        sample = []
        for row in row_source:
            sample.append({"line": row.line_number, **row.values})
            if len(sample) >= INSPECT_SAMPLE_ROWS:
                break
        print("    sample_rows=", sample)
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None -> read sys.argv; [] means "no arguments" (tests call main([]))
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(Path(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    directory = Path(cfg.source_directory)
    if not directory.exists():
        logger.error(f"directory not found: {directory}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(cfg)

    tenant_id = args.tenant or os.getenv("IMPORT_TENANT_ID") or cfg.tenant_id
    if not tenant_id:
        logger.error("tenant id missing: use --tenant, IMPORT_TENANT_ID or tenant_id in config")
        return EXIT_FATAL

    logger.info(f"Processing files from: {directory}")
    try:
        sources = load_sources(directory, cfg.files)
    except ProcessingError as e:
        logger.error(f"sources: {e}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer()
    with ExitStack() as stack:
        store, db_mode = _open_store(cfg, stack, logger)
        try:
            report = run_import(
                sources,
                cfg.pipeline,
                store,
                tenant_id,
                dry_run=args.dry_run,
                error_log=error_log,
            )
        except ProcessingError as e:
            logger.error(f"processing({db_mode}): {e}")
            return EXIT_FATAL

    logger.info(f"mode={db_mode} tenant={tenant_id} committed={report.committed}")
    for name in report.failed_files:
        logger.warning(f"file skipped: {name}")

    if args.report:
        report_path = Path(args.report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report.to_dataframe().to_csv(report_path, index=False)
        logger.info(f"import report written: {report_path}")

    summary_line = render_summary_line(report)
    # log_summary adds the "SUMMARY " label itself
    log_summary(summary_line[len("SUMMARY "):])

    if report.has_problems:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
