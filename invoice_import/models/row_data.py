from __future__ import annotations

from dataclasses import dataclass, field

"""RawRow model for the CSV import pipeline.

RawRow represents a single CSV record after header mapping, before validation.
It only lives between parse and validate.
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """Logical representation of a single CSV record after header mapping.

    line_number is the 1-based physical line the record starts on (the header
    is line 1). values is keyed by canonical field name; columns the header
    mapping did not recognise are kept in extra_columns under their original
    header text.
    """
    line_number: int
    values: dict[str, str | None]  # canonical field -> stripped value, None when empty / null sentinel
    extra_columns: dict[str, str | None] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.values.get(name)
