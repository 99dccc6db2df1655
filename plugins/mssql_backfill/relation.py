"""
Relation Binding Module

Optional join from the source table to a parent/foreign table, applied to
every batch and last-row fetch.
"""

from enum import Enum
from typing import List, Optional, Union
import logging

from mssql_backfill.catalog import TableColInfo, TableInfo
from mssql_backfill.errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)


class JoinKind(Enum):
    NONE = 0
    INNER = 1
    OUTER = 2

    @classmethod
    def parse(cls, value: Union['JoinKind', str, None]) -> 'JoinKind':
        """
        Parse a join kind name.

        Accepts the enum itself or names such as 'inner', 'InnerJoin',
        'outer', 'OuterJoin', 'left'. None means an inner join.
        """
        if value is None:
            return cls.INNER
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower().replace('_', '').replace(' ', '')
        aliases = {
            'inner': cls.INNER,
            'innerjoin': cls.INNER,
            'outer': cls.OUTER,
            'outerjoin': cls.OUTER,
            'left': cls.OUTER,
            'leftjoin': cls.OUTER,
            'leftouterjoin': cls.OUTER,
            'none': cls.NONE,
            'norelationset': cls.NONE,
        }
        if normalized not in aliases:
            raise ConfigurationError(f"Unknown join kind: '{value}'")
        return aliases[normalized]


class RelationBinder:
    """
    Join configuration for one source table.

    Either every reference is set and join_kind is INNER or OUTER, or
    nothing is set and join_kind is NONE.
    """

    def __init__(self, source_table: TableInfo):
        self.source_table = source_table
        self._reset()

    def _reset(self) -> None:
        self.join_kind = JoinKind.NONE
        self.related_table: Optional[TableInfo] = None
        self.related_column: Optional[TableColInfo] = None
        self.source_column: Optional[TableColInfo] = None
        self.related_projection: List[TableColInfo] = []

    @property
    def is_bound(self) -> bool:
        return self.join_kind is not JoinKind.NONE

    def bind(
        self,
        related_table: Optional[TableInfo],
        related_column_name: Optional[str],
        source_column_name: Optional[str],
        join_kind: Union[JoinKind, str, None] = JoinKind.INNER,
        project_columns: Optional[List[str]] = None,
    ) -> None:
        """
        Join the source table to a related table.

        Args:
            related_table: Parent/foreign table
            related_column_name: Join column in the related table
            source_column_name: Join column in the source table
            join_kind: INNER (default) or OUTER
            project_columns: Related-table columns to add to the output

        Raises:
            ConfigurationError: If an argument is missing or a name does not resolve
        """
        if related_table is None or not related_column_name or not source_column_name:
            raise ConfigurationError(
                "Relation binding requires a related table, a related column and a source column"
            )

        kind = JoinKind.parse(join_kind)
        if kind is JoinKind.NONE:
            raise ConfigurationError("Relation binding requires an INNER or OUTER join kind")

        # Resolve everything before storing anything
        try:
            related_column = related_table.column(related_column_name)
            source_column = self.source_table.column(source_column_name)
            related_projection = [related_table.column(name) for name in (project_columns or [])]
        except NotFoundError as e:
            raise ConfigurationError(f"Improper relation binding: {e}")

        self.related_table = related_table
        self.related_column = related_column
        self.source_column = source_column
        self.related_projection = related_projection
        self.join_kind = kind

        logger.info(
            f"Bound {self.source_table.full_name}.[{source_column.name}] to "
            f"{related_table.full_name}.[{related_column.name}] ({kind.name} join)"
        )

    def unbind(self) -> None:
        self._reset()
