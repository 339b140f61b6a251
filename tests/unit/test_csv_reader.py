from __future__ import annotations

import pytest

from invoice_import.csvio.reader import (
    CsvRowSource,
    HeaderError,
    ParseError,
    map_columns,
    normalize_header,
    parse_csv,
)
from invoice_import.models.config_models import PipelineConfig
from invoice_import.models.records import EntityKind


def test_normalize_header_drops_case_and_punctuation():
    assert normalize_header(" Client-Email ") == "clientemail"
    assert normalize_header("CLIENT_EMAIL") == "clientemail"
    assert normalize_header("Invoice #") == "invoice"


def test_map_columns_auto_mapping():
    mapped = map_columns(["Invoice Number", "client email", "Issue-Date", "Region"], EntityKind.INVOICES)
    assert mapped == ["invoice_number", "client_email", "issue_date", None]


def test_map_columns_alias_wins_over_auto_match():
    mapped = map_columns(["Customer", "Mail"], EntityKind.CLIENTS, {"customer": "name", "MAIL": "email"})
    assert mapped == ["name", "email"]


def test_map_columns_alias_to_unknown_field_ignored():
    mapped = map_columns(["Customer"], EntityKind.CLIENTS, {"Customer": "nickname"})
    assert mapped == [None]


def test_parse_basic_rows_with_line_numbers():
    result = parse_csv("name,email\nAcme,a@acme.test\nGlobex,g@globex.test\n", EntityKind.CLIENTS)
    assert [r.line_number for r in result.rows] == [2, 3]
    assert result.rows[0].values == {"name": "Acme", "email": "a@acme.test"}
    assert result.errors == []


def test_parse_strips_bom_and_crlf():
    text = "\ufeffname,email\r\nAcme,a@acme.test\r\n"
    result = parse_csv(text, EntityKind.CLIENTS)
    assert result.rows[0].values["name"] == "Acme"
    assert result.rows[0].values["email"] == "a@acme.test"


def test_blank_lines_skipped_and_line_numbers_kept():
    text = "name,email\n\nAcme,a@acme.test\n   \nGlobex,g@globex.test\n"
    result = parse_csv(text, EntityKind.CLIENTS)
    assert [r.line_number for r in result.rows] == [3, 5]


def test_quoted_field_spanning_lines_reports_start_line():
    text = 'name,email,address\nAcme,a@acme.test,"1 Main St\nSuite 2"\nGlobex,g@globex.test,\n'
    result = parse_csv(text, EntityKind.CLIENTS)
    assert [r.line_number for r in result.rows] == [2, 4]
    assert result.rows[0].values["address"] == "1 Main St\nSuite 2"


def test_escaped_quotes_inside_quoted_field():
    text = 'name,email\n"Acme ""Widgets"", Inc",a@acme.test\n'
    result = parse_csv(text, EntityKind.CLIENTS)
    assert result.rows[0].values["name"] == 'Acme "Widgets", Inc'


def test_unterminated_quote_skips_line_and_continues():
    text = 'name,email\nAcme,"a@acme.test\nGlobex,g@globex.test\n'
    result = parse_csv(text, EntityKind.CLIENTS)
    assert [(e.line_number, e.reason) for e in result.errors] == [(2, "unterminated_quote")]
    assert [r.line_number for r in result.rows] == [3]


def test_ragged_row_is_skipped():
    text = "name,email\nAcme,a@acme.test,surplus\nGlobex\nInitech,i@initech.test\n"
    result = parse_csv(text, EntityKind.CLIENTS)
    assert [(e.line_number, e.reason) for e in result.errors] == [(2, "ragged_row"), (3, "ragged_row")]
    assert [r.line_number for r in result.rows] == [4]


def test_trailing_empty_cells_tolerated():
    result = parse_csv("name,email\nAcme,a@acme.test,,\n", EntityKind.CLIENTS)
    assert result.errors == []
    assert len(result.rows) == 1


def test_malformed_quoting_is_line_error():
    text = 'name,email\n"Acme"x,a@acme.test\nGlobex,g@globex.test\n'
    result = parse_csv(text, EntityKind.CLIENTS)
    assert [(e.line_number, e.reason) for e in result.errors] == [(2, "malformed_quoting")]
    assert len(result.rows) == 1


def test_stray_quotes_in_unquoted_fields_do_not_swallow_lines_between():
    text = (
        "invoice_number,description,quantity,price\n"
        'INV-1,Monitor 27",1,100\n'
        "INV-1,Cable,1,5\n"
        "INV-1,Mouse,1,20\n"
        'INV-1,TV 50",1,300\n'
        "INV-1,Stand,1,40\n"
    )
    result = parse_csv(text, EntityKind.INVOICE_ITEMS)
    assert [(e.line_number, e.reason) for e in result.errors] == [
        (2, "malformed_quoting"),
        (5, "unterminated_quote"),
    ]
    assert [r.line_number for r in result.rows] == [3, 4, 6]
    assert [r.values["description"] for r in result.rows] == ["Cable", "Mouse", "Stand"]


def test_empty_and_null_sentinel_values_become_none():
    config = PipelineConfig(null_sentinels=frozenset({"NULL", "N/A"}))
    text = "name,email,phone,address\nAcme,a@acme.test,n/a,  \n"
    row = parse_csv(text, EntityKind.CLIENTS, config).rows[0]
    assert row.get("phone") is None
    assert row.get("address") is None


def test_unknown_columns_preserved_under_original_header():
    source = CsvRowSource("name,email,Sales Region\nAcme,a@acme.test,West\n", EntityKind.CLIENTS)
    row = next(iter(source))
    assert row.extra_columns == {"Sales Region": "West"}
    assert "Sales Region" not in row.values
    assert source.extra_columns == ["Sales Region"]
    assert source.known_columns == {"name": "name", "email": "email"}


@pytest.mark.parametrize(
    "text,reason",
    [
        ("", "empty_file"),
        ("  \n\n", "empty_file"),
        ("Acme,a@acme.test\nGlobex,g@globex.test\n", "missing_header"),
        ("name,email,E-Mail\nAcme,a@acme.test,x\n", "duplicate_column"),
        ('"name,email\nAcme,a@acme.test\n', "unterminated_quote"),
    ],
)
def test_header_errors_are_fatal(text, reason):
    with pytest.raises(HeaderError) as ei:
        CsvRowSource(text, EntityKind.CLIENTS)
    assert ei.value.reason == reason
    assert isinstance(ei.value, ParseError)


def test_header_only_file_yields_no_rows():
    result = parse_csv("name,email\n", EntityKind.CLIENTS)
    assert result.rows == []
    assert result.errors == []


def test_iteration_is_restartable_and_resets_errors():
    source = CsvRowSource("name,email\nAcme,a@acme.test\nbroken\n", EntityKind.CLIENTS)
    first = list(source)
    assert len(source.errors) == 1
    second = list(source)
    assert first == second
    assert len(source.errors) == 1


def test_iteration_is_lazy():
    source = CsvRowSource("name,email\nAcme,a@acme.test\nGlobex,g@globex.test\n", EntityKind.CLIENTS)
    it = iter(source)
    assert next(it).line_number == 2
    assert next(it).line_number == 3
    with pytest.raises(StopIteration):
        next(it)
