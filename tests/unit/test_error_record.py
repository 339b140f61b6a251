from __future__ import annotations

import json
import re

from invoice_import.models.error_record import (
    FILE_LEVEL_LINE,
    HEADER_ERROR,
    VALIDATION_WARNING,
    ErrorRecord,
)


def test_create_sets_utc_timestamp():
    rec = ErrorRecord.create("invoices.csv", "invoices", 7, HEADER_ERROR, "missing_header")
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$", rec.timestamp)


def test_to_json_line_fixed_keys():
    rec = ErrorRecord.create("invoices.csv", "invoices", FILE_LEVEL_LINE, HEADER_ERROR, "empty_file")
    data = json.loads(rec.to_json_line())
    assert list(data) == ["timestamp", "file", "entity", "line", "error_type", "message"]
    assert data["line"] == -1


def test_non_ascii_kept():
    rec = ErrorRecord.create("clientes.csv", "clients", 2, VALIDATION_WARNING, "Café")
    assert "Café" in rec.to_json_line()
    assert rec.is_warning
