from __future__ import annotations

from pathlib import Path

import pytest

from invoice_import.db.entity_store import InMemoryEntityStore, StoreError
from invoice_import.logging.error_log import ErrorLogBuffer
from invoice_import.models.config_models import DEFAULT_FILES, PipelineConfig
from invoice_import.models.error_record import (
    FILE_LEVEL_LINE,
    HEADER_ERROR,
    PARSE_ERROR,
    RECONCILIATION_ERROR,
    VALIDATION_ERROR,
    VALIDATION_WARNING,
)
from invoice_import.models.records import EntityKind
from invoice_import.services.orchestrator import (
    ImportSources,
    ProcessingError,
    SourceFile,
    load_sources,
    run_import,
)


def _sources(texts: dict[str, str]) -> ImportSources:
    return ImportSources(
        clients=SourceFile("clients.csv", texts["clients.csv"]) if "clients.csv" in texts else None,
        invoices=SourceFile("invoices.csv", texts["invoices.csv"]) if "invoices.csv" in texts else None,
        invoice_items=(
            SourceFile("invoice_items.csv", texts["invoice_items.csv"]) if "invoice_items.csv" in texts else None
        ),
    )


def test_clean_batch_commits_everything(sample_csv_texts):
    store = InMemoryEntityStore()
    report = run_import(_sources(sample_csv_texts), PipelineConfig(), store, "tenant-1")
    assert report.committed
    assert report.created_clients == 2
    assert report.stat_for(EntityKind.INVOICES).accepted == 2
    assert report.stat_for(EntityKind.INVOICE_ITEMS).accepted == 2
    assert not report.has_problems
    assert report.issues == []
    assert len(store.invoices["tenant-1"]) == 2
    assert store.snapshot_calls == 1
    assert store.commit_calls == 1


def test_dry_run_does_not_commit(sample_csv_texts):
    store = InMemoryEntityStore()
    report = run_import(_sources(sample_csv_texts), PipelineConfig(), store, "tenant-1", dry_run=True)
    assert not report.committed
    assert report.created_clients == 2
    assert store.commit_calls == 0
    assert store.clients == {}


def test_problems_become_issues():
    texts = {
        "clients.csv": "name,email\nAcme,a@acme.test\nBroken,not-an-email\nragged\n",
        "invoices.csv": (
            "invoice_number,client_email,issue_date,due_date,subtotal,total\n"
            "INV-1,a@acme.test,2024-01-01,2024-02-01,10,99\n"
            "INV-2,ghost@nowhere.test,2024-01-01,2024-02-01,10,10\n"
        ),
        "invoice_items.csv": "invoice_number,description,quantity,price\nINV-2,Widget,1,10\n",
    }
    store = InMemoryEntityStore()
    report = run_import(_sources(texts), PipelineConfig(), store, "tenant-1")

    kinds = {(i.file, i.line, i.error_type) for i in report.issues}
    assert ("clients.csv", 3, VALIDATION_ERROR) in kinds
    assert ("clients.csv", 4, PARSE_ERROR) in kinds
    assert ("invoices.csv", 2, VALIDATION_WARNING) in kinds  # total_mismatch + status_defaulted
    assert ("invoices.csv", 3, RECONCILIATION_ERROR) in kinds
    assert ("invoice_items.csv", 2, RECONCILIATION_ERROR) in kinds

    clients = report.stat_for(EntityKind.CLIENTS)
    assert (clients.total_rows, clients.accepted, clients.rejected, clients.parse_errors) == (3, 1, 1, 1)
    invoices = report.stat_for(EntityKind.INVOICES)
    assert (invoices.accepted, invoices.unresolved, invoices.warnings) == (1, 1, 1)
    assert report.has_problems
    assert len(store.invoices["tenant-1"]) == 1


def test_header_error_fails_only_that_file(sample_csv_texts):
    texts = dict(sample_csv_texts)
    texts["invoice_items.csv"] = "foo,bar\n1,2\n"
    report = run_import(_sources(texts), PipelineConfig(), InMemoryEntityStore(), "tenant-1")
    assert report.failed_files == ["invoice_items.csv"]
    header_issues = [i for i in report.issues if i.error_type == HEADER_ERROR]
    assert len(header_issues) == 1
    assert header_issues[0].line == FILE_LEVEL_LINE
    assert header_issues[0].message.startswith("missing_header")
    assert report.stat_for(EntityKind.INVOICE_ITEMS).failed
    assert report.stat_for(EntityKind.INVOICES).accepted == 2


def test_partial_batch_uses_persisted_records():
    store = InMemoryEntityStore()
    cid = store.add_client("tenant-1", "a@acme.test")
    store.add_invoice("tenant-1", "INV-1", cid)
    texts = {"invoice_items.csv": "invoice_number,description,quantity,price\nINV-1,Extra,1,5\n"}
    report = run_import(_sources(texts), PipelineConfig(), store, "tenant-1")
    assert report.stat_for(EntityKind.INVOICE_ITEMS).accepted == 1
    assert store.items["tenant-1"][0]["description"] == "Extra"


def test_tenant_required(sample_csv_texts):
    with pytest.raises(ProcessingError):
        run_import(_sources(sample_csv_texts), PipelineConfig(), InMemoryEntityStore(), "")


def test_store_failure_is_processing_error(sample_csv_texts, monkeypatch):
    store = InMemoryEntityStore()

    def fail(*args, **kwargs):
        raise StoreError("commit failed: boom")

    monkeypatch.setattr(store, "commit", fail)
    with pytest.raises(ProcessingError, match="boom"):
        run_import(_sources(sample_csv_texts), PipelineConfig(), store, "tenant-1")


def test_error_log_flushed_once(temp_workdir: Path):
    texts = {"clients.csv": "name,email\nAcme,bad\n"}
    buf = ErrorLogBuffer()
    run_import(_sources(texts), PipelineConfig(), InMemoryEntityStore(), "tenant-1", error_log=buf)
    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    assert len(logs[0].read_text(encoding="utf-8").splitlines()) == 1


def test_load_sources_skips_missing_and_strips_bom(temp_workdir: Path):
    data = temp_workdir / "data"
    (data / "clients.csv").write_text("\ufeffname,email\nAcme,a@acme.test\n", encoding="utf-8")
    sources = load_sources(data, DEFAULT_FILES)
    assert sources.invoices is None
    assert sources.clients.text.startswith("name,email")
    assert [k for k, _ in sources.provided()] == [EntityKind.CLIENTS]


def test_load_sources_missing_directory(temp_workdir: Path):
    with pytest.raises(ProcessingError, match="Directory not found"):
        load_sources(temp_workdir / "missing", DEFAULT_FILES)


def test_load_sources_undecodable_file(temp_workdir: Path):
    (temp_workdir / "data" / "clients.csv").write_bytes(b"name,email\n\xff\xfe\n")
    with pytest.raises(ProcessingError):
        load_sources(temp_workdir / "data", DEFAULT_FILES)
