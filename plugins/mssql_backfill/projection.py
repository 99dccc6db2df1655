"""
Column Projection Module

Tracks which source columns are copied to the destination and how each one
is loaded: read verbatim, computed from a T-SQL expression, or dropped.
"""

from typing import Any, Dict, List, Optional, Sequence, Union
import copy
import json
import logging

from mssql_backfill.catalog import TableColInfo, TableInfo
from mssql_backfill.errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)


class ColumnProjector:
    """
    Ordered output column list for a source table.

    Starts with every non-ignored, copyable column in ordinal order. Column
    names are unique within the list. The projector owns copies of the
    catalog columns, so edits never reach the TableInfo or other projectors.

    Key columns are always read verbatim: the key of the last row in a batch
    becomes the next start key.
    """

    def __init__(self, source_table: TableInfo, key_column_names: Optional[Sequence[str]] = None):
        self.source_table = source_table
        self.key_column_names = frozenset(key_column_names or ())
        self._columns: List[TableColInfo] = [
            copy.copy(col) for col in source_table
            if not col.ignore and col.is_copyable
        ]

    @property
    def columns(self) -> List[TableColInfo]:
        return list(self._columns)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self._columns]

    def find(self, name: str) -> Optional[TableColInfo]:
        for col in self._columns:
            if col.name == name:
                return col
        return None

    def add_computed_column(
        self,
        column: Union[TableColInfo, str],
        expression: str,
    ) -> bool:
        """
        Add a calculated column to the output.

        The first registration of a name wins; adding a name that is already
        projected does nothing.

        Args:
            column: Column metadata, or just the output column name
            expression: T-SQL scalar expression producing the value

        Returns:
            True if the column was added

        Raises:
            ConfigurationError: If the expression is empty or the name is a key column
        """
        if not expression or not str(expression).strip():
            raise ConfigurationError("Computed column requires a load expression")

        if isinstance(column, str):
            column = TableColInfo(name=column, column_id=0)

        if self.find(column.name) is not None:
            logger.debug(f"Computed column '{column.name}' already projected, keeping first definition")
            return False
        self._check_not_key(column.name)

        column = copy.copy(column)
        column.load_expression = expression
        self._columns.append(column)
        return True

    def _check_not_key(self, name: str) -> None:
        if name in self.key_column_names:
            raise ConfigurationError(f"Key column '{name}' must be read verbatim")

    def modify_column(self, name: str, expression: Optional[str]) -> None:
        """
        Replace the load expression of a projected column.

        Args:
            name: Existing projected column name
            expression: New T-SQL expression, or None to copy the column verbatim

        Raises:
            NotFoundError: If the column is not projected
            ConfigurationError: If an expression is given for a key column
        """
        col = self.find(name)
        if col is None:
            raise NotFoundError(f"Cannot find existing source column: '{name}'")
        if expression is not None:
            self._check_not_key(name)
        col.load_expression = expression

    def remove_column(self, name: str) -> None:
        """
        Drop a projected column so it is not transferred.

        Raises:
            NotFoundError: If the column is not projected
        """
        col = self.find(name)
        if col is None:
            raise NotFoundError(f"Cannot find existing source column: '{name}'")
        self._columns.remove(col)

    def apply_settings(self, settings: Union[str, Dict[str, Any], None]) -> None:
        """
        Apply projection settings from a dict or JSON string.

        Supported keys:
        - computed: {name: expression} columns to add
        - modify: {name: expression} load expressions to replace
        - ignore: list (or comma-separated string) of columns to drop

        Example:
            {"computed": {"LoadedAt": "SYSUTCDATETIME()"}, "ignore": ["Notes"]}

        Raises:
            ConfigurationError: If the settings cannot be parsed
            NotFoundError: If modify/ignore names a column that is not projected
        """
        if settings is None:
            return

        if isinstance(settings, str):
            settings = settings.strip()
            if not settings:
                return
            try:
                settings = json.loads(settings)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid projection settings: {e}")

        if not isinstance(settings, dict):
            raise ConfigurationError(
                f"Projection settings must be a mapping, got {type(settings).__name__}"
            )

        unknown = set(settings) - {'computed', 'modify', 'ignore'}
        if unknown:
            raise ConfigurationError(f"Unknown projection settings: {sorted(unknown)}")

        computed = settings.get('computed') or {}
        modify = settings.get('modify') or {}
        ignore = settings.get('ignore') or []

        if not isinstance(computed, dict) or not isinstance(modify, dict):
            raise ConfigurationError("'computed' and 'modify' must map column names to expressions")
        if isinstance(ignore, str):
            ignore = [name.strip() for name in ignore.split(',') if name.strip()]
        if not isinstance(ignore, list):
            raise ConfigurationError("'ignore' must be a list of column names")

        # Validate before mutating so a bad entry leaves the projection untouched
        projected = set(self.column_names)
        for name in list(modify) + list(ignore):
            if name not in projected:
                raise NotFoundError(f"Cannot find existing source column: '{name}'")
        for name, expression in modify.items():
            if expression is not None:
                self._check_not_key(name)
        if len(set(ignore)) != len(ignore):
            raise ConfigurationError(f"Duplicate names in 'ignore': {ignore}")
        for name, expression in computed.items():
            if not expression or not str(expression).strip():
                raise ConfigurationError(f"Computed column '{name}' requires a load expression")

        for name, expression in computed.items():
            self.add_computed_column(name, expression)
        for name, expression in modify.items():
            self.modify_column(name, expression)
        for name in ignore:
            self.remove_column(name)

        logger.info(
            f"Applied projection settings: {len(computed)} computed, "
            f"{len(modify)} modified, {len(ignore)} ignored"
        )
