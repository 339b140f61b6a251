from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

"""FK propagation helpers for committing a reconciled batch.

Parent tables are inserted with RETURNING (id, natural key). The returned
tuples become a natural-key -> id map, and child rows carry the parent's
natural key in their FK column until propagate_foreign_keys swaps it for the
id:

    clients  RETURNING id, email           -> invoices.client_id
    invoices RETURNING id, invoice_number  -> invoice_items.invoice_id
"""


class FKPropagationError(Exception):
    """Exception raised during FK propagation operations."""
    pass


def build_key_map(
    returned_values: Iterable[Sequence[Any]],
    key_index: int,
    pk_index: int,
    normalize: Callable[[Any], Any] | None = None,
) -> dict[Any, Any]:
    """Build lookup map from parent natural-key values to generated PKs.

    Parameters
    ----------
    returned_values: RETURNING tuples from the parent insert
    key_index: Index of the natural-key column in the tuples
    pk_index: Index of the PK column in the tuples
    normalize: Optional key normalisation (e.g. str.lower for e-mails)

    Returns
    -------
    dict[Any, Any]: Map from natural key to generated PK value
    """
    pk_map: dict[Any, Any] = {}
    for row in returned_values:
        if len(row) <= max(key_index, pk_index):
            raise FKPropagationError(
                f"Returned row has {len(row)} columns, need at least {max(key_index, pk_index) + 1}"
            )
        key = row[key_index]
        pk_map[normalize(key) if normalize else key] = row[pk_index]
    return pk_map


def propagate_foreign_keys(
    child_rows: Iterable[Sequence[Any]],
    parent_pk_map: Mapping[Any, Any],
    child_fk_column_index: int,
    child_identifier_column_index: int | None = None,
    normalize: Callable[[Any], Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Propagate FK values from parent PK map to child rows.

    Parameters
    ----------
    child_rows: Child table rows
    parent_pk_map: Map from parent natural key to generated PK
    child_fk_column_index: Index of FK column in child rows
    child_identifier_column_index: Index of the natural-key column in child
        rows. Defaults to the FK column itself (placeholder key replaced in place)
    normalize: Optional key normalisation applied before lookup

    Returns
    -------
    list[tuple[Any, ...]]: Child rows with propagated FK values

    Raises
    ------
    FKPropagationError: If identifier not found in parent map
    """
    ident_index = child_fk_column_index if child_identifier_column_index is None else child_identifier_column_index
    propagated: list[tuple[Any, ...]] = []
    for row in child_rows:
        if len(row) <= max(child_fk_column_index, ident_index):
            raise FKPropagationError(
                f"Row has insufficient columns: {len(row)} columns, "
                f"need at least {max(child_fk_column_index, ident_index) + 1}"
            )
        identifier = row[ident_index]
        lookup = normalize(identifier) if normalize else identifier
        if lookup not in parent_pk_map:
            raise FKPropagationError(f"Parent identifier '{identifier}' not found in parent PK map")
        row_list = list(row)
        row_list[child_fk_column_index] = parent_pk_map[lookup]
        propagated.append(tuple(row_list))
    return propagated


def get_column_index(column_name: str, columns: Sequence[str]) -> int:
    """Get index of column by name.

    Raises
    ------
    FKPropagationError: If column not found
    """
    try:
        return list(columns).index(column_name)
    except ValueError:
        raise FKPropagationError(
            f"Column '{column_name}' not found in columns: {list(columns)}"
        ) from None
