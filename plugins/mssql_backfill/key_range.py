"""
Key Range Module

Key-range specs hold the state of one keyset scan: the ordered key columns,
the current start/end key tuples, the restart position, and whether reads
are filtered by partition. Each key-range spec also owns the column
projection and the optional relation binding used to build the statements
of every batch.

Variants:
- KeysetRangeSpec: plain ordered scan
- PartitionedKeysetRangeSpec: ordered scan restricted to one partition per
  batch, used when the partition column is the leading key column
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging

from mssql_backfill.catalog import TableColInfo, TableInfo
from mssql_backfill.errors import ConfigurationError, NotFoundError
from mssql_backfill.key_advancer import KeyAdvancer
from mssql_backfill.projection import ColumnProjector
from mssql_backfill.query_builder import (
    SOURCE_ALIAS,
    BatchQueries,
    QueryBuilder,
    column_ref,
    quote_identifier,
)
from mssql_backfill.relation import JoinKind, RelationBinder
from mssql_backfill.settings import get_default_table_hint

logger = logging.getLogger(__name__)


def _check_partition(partition: Any) -> int:
    if isinstance(partition, bool) or not isinstance(partition, int) or partition < 1:
        raise ConfigurationError(f"Invalid partition number: {partition!r} (must be >= 1)")
    return partition


class RestartState:
    """
    Where a scan resumes: either fresh (start of table) or resuming from a
    partition number and the last committed key tuple.
    """

    def __init__(self, is_resuming: bool, partition: int = 1, key: Sequence[Any] = ()):
        self.is_resuming = is_resuming
        self.partition = _check_partition(partition)
        self.key: Tuple[Any, ...] = tuple(key)

    @classmethod
    def fresh(cls) -> 'RestartState':
        return cls(False)

    @classmethod
    def resuming(cls, partition: int = 1, key: Sequence[Any] = ()) -> 'RestartState':
        return cls(True, partition, key)

    def with_key(self, key: Sequence[Any]) -> 'RestartState':
        return RestartState.resuming(self.partition, key)

    def with_partition(self, partition: int) -> 'RestartState':
        return RestartState.resuming(partition, self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resuming': self.is_resuming,
            'partition': self.partition,
            'key': list(self.key),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RestartState':
        if not data or not data.get('resuming'):
            return cls.fresh()
        return cls.resuming(int(data.get('partition', 1)), data.get('key') or ())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RestartState):
            return NotImplemented
        return (self.is_resuming, self.partition, self.key) == (other.is_resuming, other.partition, other.key)

    def __repr__(self) -> str:
        if not self.is_resuming:
            return "RestartState.fresh()"
        return f"RestartState.resuming(partition={self.partition}, key={self.key!r})"


def parse_key_column_names(key_column_names: Union[str, Sequence[str], None]) -> Optional[List[str]]:
    """
    Normalize key column names.

    Handles:
    - None: use the table's key columns
    - Comma-separated string: "OrderId, LineNo" -> ["OrderId", "LineNo"]
    - List of names
    """
    if key_column_names is None:
        return None
    if isinstance(key_column_names, str):
        return [name.strip() for name in key_column_names.split(',') if name.strip()]
    return [str(name).strip() for name in key_column_names]


def resolve_key_columns(
    table: TableInfo,
    key_column_names: Union[str, Sequence[str], None],
) -> List[TableColInfo]:
    """
    Resolve key column names against a table.

    Raises:
        ConfigurationError: If the list is empty, has duplicates, or a name does not resolve
    """
    names = parse_key_column_names(key_column_names)
    if names is None:
        key_columns = table.key_columns()
    else:
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate key columns: {names}")
        try:
            key_columns = [table.column(name) for name in names]
        except NotFoundError as e:
            raise ConfigurationError(f"Invalid key column: {e}")

    if not key_columns:
        raise ConfigurationError(f"No key columns available for {table.full_name}")
    return key_columns


def infer_partition_filter(table: TableInfo, key_columns: Sequence[TableColInfo]) -> bool:
    """
    True when the table is partitioned on its leading key column.

    Only the leading column is checked: filtering by partition number lets
    SQL Server eliminate partitions only when the partition column drives
    the key order.
    """
    if not table.is_partitioned or not key_columns:
        return False
    return table.partition_column.column_id == key_columns[0].column_id


class KeyRangeSpec(ABC):
    """Base key-range state shared by all scan variants."""

    def __init__(
        self,
        source_table: TableInfo,
        key_column_names: Union[str, Sequence[str], None] = None,
        name: Optional[str] = None,
    ):
        self.source_table = source_table
        self.name = name or f"{source_table.schema_name}.{source_table.table_name}"
        self._key_columns = resolve_key_columns(source_table, key_column_names)

        self.projector = ColumnProjector(source_table, self.key_column_names)
        self.relation = RelationBinder(source_table)

        self.order_by = True
        self.table_hint = get_default_table_hint()
        self.and_where: Optional[str] = None

        self.start_key: Tuple[Any, ...] = ()
        self._end_key: List[Any] = []
        self.restart = RestartState.fresh()
        self.partition_number = 1

        self.select_by_partition = infer_partition_filter(source_table, self._key_columns)
        if self.select_by_partition:
            logger.info(
                f"{self.name}: partition column {source_table.partition_column.name} "
                f"leads the key, filtering reads by partition"
            )

    @property
    def key_columns(self) -> List[TableColInfo]:
        return list(self._key_columns)

    @property
    def key_column_names(self) -> List[str]:
        return [col.name for col in self._key_columns]

    @property
    def end_key(self) -> Tuple[Any, ...]:
        return tuple(self._end_key)

    @property
    def is_restart(self) -> bool:
        return self.restart.is_resuming

    def _check_key(self, key: Sequence[Any], label: str) -> Tuple[Any, ...]:
        key = tuple(key)
        if key and len(key) != len(self._key_columns):
            raise ConfigurationError(
                f"{label} {key!r} has {len(key)} values, expected {len(self._key_columns)}"
            )
        return key

    # Range state

    def set_start_key(self, key: Sequence[Any]) -> None:
        self.start_key = self._check_key(key, 'Start key')

    def append_end_key(self, value: Any) -> None:
        if len(self._end_key) >= len(self._key_columns):
            raise ConfigurationError(f"End key already has {len(self._end_key)} values")
        self._end_key.append(value)

    def set_end_key(self, key: Sequence[Any]) -> None:
        self._end_key = list(self._check_key(key, 'End key'))

    def clear_end_key(self) -> None:
        self._end_key = []

    # Restart state

    def set_restart_state(self, state: RestartState) -> None:
        self._check_key(state.key, 'Restart key')
        self.restart = state
        if state.is_resuming:
            self.partition_number = state.partition

    def set_restart_key(self, key: Sequence[Any]) -> None:
        self.restart = self.restart.with_key(self._check_key(key, 'Restart key'))

    def append_restart_key(self, value: Any) -> None:
        if len(self.restart.key) >= len(self._key_columns):
            raise ConfigurationError(f"Restart key already has {len(self.restart.key)} values")
        self.restart = self.restart.with_key(self.restart.key + (value,))

    def set_restart_partition(self, partition: int) -> None:
        self.restart = self.restart.with_partition(_check_partition(partition))
        self.partition_number = partition

    # Projection and relation

    def bind(
        self,
        related_table: TableInfo,
        related_column_name: str,
        source_column_name: str,
        join_kind: Union[JoinKind, str, None] = JoinKind.INNER,
        project_columns: Optional[List[str]] = None,
    ) -> None:
        self.relation.bind(
            related_table, related_column_name, source_column_name, join_kind, project_columns
        )

    def add_computed_column(self, column: Union[TableColInfo, str], expression: str) -> bool:
        return self.projector.add_computed_column(column, expression)

    def modify_column(self, name: str, expression: Optional[str]) -> None:
        self.projector.modify_column(name, expression)

    def remove_column(self, name: str) -> None:
        self.projector.remove_column(name)

    # Fetch strategy

    def partition_predicate(self) -> Optional[str]:
        """T-SQL predicate restricting reads to one partition, or None."""
        return None

    @abstractmethod
    def build_queries(
        self,
        batch_size: int,
        partition_number: Optional[int] = None,
        is_first_fetch: bool = False,
    ) -> BatchQueries:
        raise NotImplementedError(f"{type(self).__name__} does not build fetch queries")

    @abstractmethod
    def advance_key(self, last_row: Any, columns: Optional[Sequence[str]] = None) -> Tuple[Any, ...]:
        raise NotImplementedError(f"{type(self).__name__} does not advance keys")


class KeysetRangeSpec(KeyRangeSpec):
    """Plain keyset scan ordered by the key columns."""

    def build_queries(
        self,
        batch_size: int,
        partition_number: Optional[int] = None,
        is_first_fetch: bool = False,
    ) -> BatchQueries:
        return QueryBuilder(self).build(batch_size, partition_number, is_first_fetch)

    def advance_key(self, last_row: Any, columns: Optional[Sequence[str]] = None) -> Tuple[Any, ...]:
        """
        Make the key of the batch's last row the next start key.

        Raises:
            SchemaDriftError: If the row lacks a key column
        """
        key = KeyAdvancer(self.key_column_names).extract(last_row, columns)
        self.set_start_key(key)
        self.clear_end_key()
        return key


class PartitionedKeysetRangeSpec(KeysetRangeSpec):
    """Keyset scan that reads one partition at a time via $PARTITION."""

    def __init__(
        self,
        source_table: TableInfo,
        key_column_names: Union[str, Sequence[str], None] = None,
        name: Optional[str] = None,
    ):
        super().__init__(source_table, key_column_names, name)
        if not self.select_by_partition:
            raise ConfigurationError(
                f"{source_table.full_name} is not partitioned on its leading key column"
            )
        if not source_table.partition_function:
            raise ConfigurationError(f"{source_table.full_name} has no partition function")

    def partition_predicate(self) -> Optional[str]:
        function = quote_identifier(self.source_table.partition_function)
        column = column_ref(SOURCE_ALIAS, self.source_table.partition_column.name)
        return f"$PARTITION.{function}({column}) = ?"


def new_key_range_spec(
    source_table: TableInfo,
    key_column_names: Union[str, Sequence[str], None] = None,
    name: Optional[str] = None,
) -> KeysetRangeSpec:
    """
    Create the key-range spec suited to a table.

    Returns a PartitionedKeysetRangeSpec when the table is partitioned on
    its leading key column, otherwise a KeysetRangeSpec.
    """
    key_columns = resolve_key_columns(source_table, key_column_names)
    if infer_partition_filter(source_table, key_columns) and source_table.partition_function:
        return PartitionedKeysetRangeSpec(source_table, key_column_names, name)
    return KeysetRangeSpec(source_table, key_column_names, name)
