"""
Key Advancer Module

Pulls key tuples out of fetched rows so the next batch can start strictly
after the last row of the previous one.
"""

from collections.abc import Mapping
from typing import Any, List, Optional, Sequence, Tuple
import logging

from mssql_backfill.errors import SchemaDriftError

logger = logging.getLogger(__name__)


class KeyAdvancer:
    """Extract key-column values, in key order, from result rows."""

    def __init__(self, key_column_names: Sequence[str]):
        self.key_column_names = list(key_column_names)

    def _resolve(self, name: str, available: List[str]) -> str:
        if name in available:
            return name
        # SQL Server identifiers are case-insensitive under the default collation
        folded = [col for col in available if col.casefold() == name.casefold()]
        if len(folded) == 1:
            return folded[0]
        raise SchemaDriftError(
            f"Key column '{name}' missing from fetched row (columns: {', '.join(available)})"
        )

    def extract(self, row: Any, columns: Optional[Sequence[str]] = None) -> Tuple[Any, ...]:
        """
        Return the key tuple of a row.

        Args:
            row: Mapping, pyodbc.Row, or plain sequence
            columns: Column names for a plain sequence row

        Returns:
            Tuple of key values in key-column order

        Raises:
            SchemaDriftError: If a key column is missing from the row
        """
        if row is None:
            raise SchemaDriftError("Cannot advance key from an empty row")

        if isinstance(row, Mapping):
            available = [str(name) for name in row.keys()]
            return tuple(row[self._resolve(name, available)] for name in self.key_column_names)

        if columns is None:
            description = getattr(row, 'cursor_description', None)
            if description is None:
                raise SchemaDriftError(
                    "Cannot locate key columns: row has no column names"
                )
            columns = [d[0] for d in description]

        columns = list(columns)
        if len(columns) != len(row):
            raise SchemaDriftError(
                f"Row has {len(row)} values but {len(columns)} column names"
            )

        positions = {name: idx for idx, name in enumerate(columns)}
        return tuple(row[positions[self._resolve(name, columns)]] for name in self.key_column_names)

    def read_limit_row(self, row: Sequence[Any]) -> Tuple[Tuple[Any, ...], int]:
        """
        Split a limit-discovery row into (end_key, batch_rows).

        The row carries the key values of the last row in the batch followed
        by the number of rows in the batch.
        """
        key_count = len(self.key_column_names)
        if row is None or len(row) < key_count + 1:
            raise SchemaDriftError(
                f"Limit row must carry {key_count} key values and a row count, got {row!r}"
            )
        return tuple(row[:key_count]), int(row[key_count])
