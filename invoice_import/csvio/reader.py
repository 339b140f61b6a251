from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterator
from dataclasses import dataclass

from ..models.config_models import PipelineConfig
from ..models.records import KNOWN_FIELDS, EntityKind
from ..models.row_data import RawRow

"""CSV reader for the import pipeline.

- First non-blank record is the header. Header problems are fatal for the file
  (HeaderError); every other malformed record is skipped and collected as a
  ParseError so the rest of the file still imports.
- Records may span physical lines inside quotes (RFC 4180). A record whose
  quote is never closed is reported at the line it starts on and scanning
  resumes on the following physical line.
- Known columns are matched case-insensitively, ignoring whitespace and
  punctuation ("Client Email" -> client_email). Unknown columns are kept under
  their original header text.
"""

__all__ = [
    "ParseError",
    "HeaderError",
    "ParseResult",
    "CsvRowSource",
    "normalize_header",
    "map_columns",
    "parse_csv",
]

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class ParseError(Exception):
    """Malformed CSV structure at a given line."""

    def __init__(self, line_number: int, reason: str, detail: str = "") -> None:
        self.line_number = line_number
        self.reason = reason
        self.detail = detail
        message = f"line {line_number}: {reason}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class HeaderError(ParseError):
    """Raised when the header is missing or unusable. Fatal for the whole file."""


@dataclass(frozen=True)
class ParseResult:
    rows: list[RawRow]
    errors: list[ParseError]


def normalize_header(name: str) -> str:
    """Lower-case and drop everything but letters and digits."""
    return _NON_ALNUM.sub("", name.strip().lower())


def map_columns(
    header: list[str], kind: EntityKind, aliases: dict[str, str] | None = None
) -> list[str | None]:
    """Map header cells to canonical field names (None = unknown column).

    Explicit aliases win over the automatic match.
    """
    known = {normalize_header(f): f for f in KNOWN_FIELDS[kind]}
    alias_map = {normalize_header(k): v for k, v in (aliases or {}).items() if v in KNOWN_FIELDS[kind]}
    mapped: list[str | None] = []
    for cell in header:
        norm = normalize_header(cell)
        mapped.append(alias_map.get(norm) or known.get(norm))
    return mapped


def _split_records(text: str) -> Iterator[tuple[int, list[str]] | ParseError]:
    """Yield (start_line, fields) per record, or a ParseError for a bad record.

    Blank lines are skipped. Quote parity decides whether a record continues on
    the next physical line ("" escapes count as two quotes).
    A record that fails to parse is reported on its first line and scanning
    resumes on the line after it.
    """
    lines = io.StringIO(text, newline="").readlines()
    i = 0
    while i < len(lines):
        start = i
        chunk = lines[i]
        i += 1
        while chunk.count('"') % 2 == 1 and i < len(lines):
            chunk += lines[i]
            i += 1
        line_number = start + 1
        if chunk.count('"') % 2 == 1:
            yield ParseError(line_number, "unterminated_quote")
            i = start + 1
            continue
        chunk = chunk.rstrip("\r\n")
        if not chunk.strip():
            continue
        try:
            fields = next(csv.reader([chunk], strict=True), None)
        except csv.Error as e:
            yield ParseError(line_number, "malformed_quoting", str(e))
            i = start + 1  # lines glued on by a stray quote are read again one by one
            continue
        if fields is None:  # pragma: no cover - non-blank chunk always yields a record
            continue
        yield line_number, fields


class CsvRowSource:
    """Lazy, restartable sequence of RawRow for one CSV file.

    The header is validated when the source is created, so a headerless or
    empty file fails before any row is produced. Each iteration re-reads the
    text from the start; `errors` holds the ParseErrors of the latest
    iteration.
    """

    def __init__(self, text: str, kind: EntityKind, config: PipelineConfig | None = None) -> None:
        self.kind = kind
        self.config = config or PipelineConfig()
        self._text = text[1:] if text.startswith("\ufeff") else text
        self.errors: list[ParseError] = []
        self.header_line, self.header = self._read_header()
        self.columns = map_columns(self.header, kind, self.config.aliases_for(kind))
        self._check_columns()

    def _read_header(self) -> tuple[int, list[str]]:
        first = next(_split_records(self._text), None)
        if first is None:
            raise HeaderError(1, "empty_file")
        if isinstance(first, ParseError):
            raise HeaderError(first.line_number, first.reason, first.detail)
        line_number, cells = first
        header = []
        for idx, cell in enumerate(cells):
            name = cell.strip()
            header.append(name if name else f"column_{idx + 1}")
        return line_number, header

    def _check_columns(self) -> None:
        if not any(self.columns):
            raise HeaderError(
                self.header_line,
                "missing_header",
                f"no {self.kind.value} column found in {self.header}",
            )
        seen: set[str] = set()
        for name, field_name in zip(self.header, self.columns, strict=True):
            key = field_name or f"extra:{name}"
            if key in seen:
                raise HeaderError(self.header_line, "duplicate_column", field_name or name)
            seen.add(key)

    @property
    def known_columns(self) -> dict[str, str]:
        """Original header text -> canonical field, for recognised columns only."""
        return {h: f for h, f in zip(self.header, self.columns, strict=True) if f is not None}

    @property
    def extra_columns(self) -> list[str]:
        return [h for h, f in zip(self.header, self.columns, strict=True) if f is None]

    def _clean(self, value: str) -> str | None:
        stripped = value.strip()
        if stripped == "":
            return None
        if stripped.upper() in self.config.null_sentinels:
            return None
        return stripped

    def __iter__(self) -> Iterator[RawRow]:
        self.errors = []
        records = _split_records(self._text)
        next(records, None)  # header, validated in __init__
        width = len(self.header)
        for item in records:
            if isinstance(item, ParseError):
                self.errors.append(item)
                continue
            line_number, cells = item
            if len(cells) > width and not any(c.strip() for c in cells[width:]):
                cells = cells[:width]  # trailing empty cells (spreadsheet exports)
            if len(cells) != width:
                self.errors.append(
                    ParseError(line_number, "ragged_row", f"expected {width} fields, got {len(cells)}")
                )
                continue
            values: dict[str, str | None] = {}
            extra: dict[str, str | None] = {}
            for name, field_name, cell in zip(self.header, self.columns, cells, strict=True):
                if field_name is None:
                    extra[name] = self._clean(cell)
                else:
                    values[field_name] = self._clean(cell)
            yield RawRow(line_number=line_number, values=values, extra_columns=extra)


def parse_csv(text: str, kind: EntityKind, config: PipelineConfig | None = None) -> ParseResult:
    """Parse a whole file at once. HeaderError propagates to the caller."""
    source = CsvRowSource(text, kind, config)
    rows = list(source)
    return ParseResult(rows=rows, errors=list(source.errors))
