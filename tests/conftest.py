# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from invoice_import.logging.init import reset_logging


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        monkeypatch.delenv("IMPORT_TENANT_ID", raising=False)
        reset_logging()
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
tenant_id: tenant-1
files:
  clients: clients.csv
  invoices: invoices.csv
  invoice_items: invoice_items.csv
pipeline:
  default_currency: USD
  epsilon: 0.01
  null_sentinels: ["NULL", "N/A"]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


CLIENTS_CSV = """name,email,phone,address,contact_person
Acme Corp,billing@acme.test,555-0100,1 Main St,Ann
Globex,ap@globex.test,,,
"""

INVOICES_CSV = """invoice_number,client_email,issue_date,due_date,subtotal,tax,discount,total,status
INV-001,billing@acme.test,2024-01-15,2024-02-15,100.00,10.00,0,110.00,sent
INV-002,AP@globex.test,01/20/2024,02/20/2024,"$1,000.00",0,50,950.00,paid
"""

ITEMS_CSV = """invoice_number,description,quantity,price,amount
INV-001,Widget,2,50.00,100.00
INV-002,Consulting,10,100.00,1000.00
"""


@pytest.fixture()
def sample_csv_texts() -> dict[str, str]:
    return {
        "clients.csv": CLIENTS_CSV,
        "invoices.csv": INVOICES_CSV,
        "invoice_items.csv": ITEMS_CSV,
    }


@pytest.fixture()
def sample_csv_files(temp_workdir: Path, sample_csv_texts: dict[str, str]) -> list[Path]:
    files = []
    for name, text in sample_csv_texts.items():
        f = temp_workdir / "data" / name
        f.write_text(text, encoding="utf-8")
        files.append(f)
    return files
