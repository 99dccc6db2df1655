"""
Table Catalog Module

Column and table metadata consumed by the key-range engine, plus a loader
that builds it from the SQL Server catalog views.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional
import logging

from mssql_backfill.errors import NotFoundError

logger = logging.getLogger(__name__)

# Types SQL Server will not accept as explicit insert values
NON_COPYABLE_TYPES = {'timestamp', 'rowversion'}


class TableColInfo:
    """Metadata for one source column."""

    def __init__(
        self,
        name: str,
        column_id: int,
        ordinal: Optional[int] = None,
        key_ordinal: int = 0,
        data_type: Optional[str] = None,
        ignore: bool = False,
        is_copyable: bool = True,
        load_expression: Optional[str] = None,
    ):
        self.name = name
        self.column_id = column_id
        self.ordinal = column_id if ordinal is None else ordinal
        self.key_ordinal = key_ordinal
        self.data_type = data_type
        self.ignore = ignore
        self.is_copyable = is_copyable
        self.load_expression = load_expression

    @property
    def is_key(self) -> bool:
        return self.key_ordinal > 0

    def __repr__(self) -> str:
        return f"TableColInfo({self.name!r}, id={self.column_id}, key_ordinal={self.key_ordinal})"


class TableInfo:
    """
    Read-only view of a source or related table.

    Columns are looked up by name with table[name] or column(name) and
    iterate in ordinal order. A table is partitioned when a partition
    column is configured.
    """

    def __init__(
        self,
        schema_name: str,
        table_name: str,
        columns: Iterable[TableColInfo],
        partition_column: Optional[str] = None,
        partition_function: Optional[str] = None,
        partition_count: int = 1,
    ):
        self.schema_name = schema_name
        self.table_name = table_name
        self._columns: Dict[str, TableColInfo] = {}
        for col in sorted(columns, key=lambda c: c.ordinal):
            self._columns[col.name] = col

        if partition_column is not None and partition_column not in self._columns:
            raise NotFoundError(
                f"Partition column '{partition_column}' not found in {self.full_name}"
            )
        self._partition_column = partition_column
        self.partition_function = partition_function
        self.partition_count = partition_count

    @property
    def full_name(self) -> str:
        schema = self.schema_name.replace(']', ']]')
        table = self.table_name.replace(']', ']]')
        return f"[{schema}].[{table}]"

    @property
    def columns(self) -> List[TableColInfo]:
        return list(self._columns.values())

    @property
    def is_partitioned(self) -> bool:
        return self._partition_column is not None

    @property
    def partition_column(self) -> Optional[TableColInfo]:
        if self._partition_column is None:
            return None
        return self._columns[self._partition_column]

    def column(self, name: str) -> TableColInfo:
        try:
            return self._columns[name]
        except KeyError:
            raise NotFoundError(f"Column '{name}' not found in {self.full_name}")

    def key_columns(self) -> List[TableColInfo]:
        """Columns with a positive key ordinal, in key order."""
        keys = [col for col in self._columns.values() if col.key_ordinal > 0]
        return sorted(keys, key=lambda c: c.key_ordinal)

    def __getitem__(self, name: str) -> TableColInfo:
        return self.column(name)

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[TableColInfo]:
        return iter(self._columns.values())

    def __len__(self) -> int:
        return len(self._columns)

    def __repr__(self) -> str:
        return f"TableInfo({self.full_name}, columns={len(self._columns)})"


COLUMNS_QUERY = """
SELECT
    c.column_id,
    c.name AS column_name,
    t.name AS data_type,
    c.is_computed,
    ISNULL(ic.key_ordinal, 0) AS key_ordinal,
    ISNULL(ic.partition_ordinal, 0) AS partition_ordinal
FROM sys.columns c
INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
LEFT JOIN sys.index_columns ic
    ON ic.object_id = c.object_id
   AND ic.column_id = c.column_id
   AND ic.index_id = 1
WHERE c.object_id = ?
ORDER BY c.column_id
"""

PARTITION_QUERY = """
SELECT pf.name AS function_name, pf.fanout
FROM sys.indexes i
INNER JOIN sys.partition_schemes ps ON i.data_space_id = ps.data_space_id
INNER JOIN sys.partition_functions pf ON ps.function_id = pf.function_id
WHERE i.object_id = ?
  AND i.index_id IN (0, 1)
"""


def load_table_info(helper: Any, schema_name: str, table_name: str) -> TableInfo:
    """
    Build a TableInfo from the SQL Server catalog.

    Key ordinals come from the clustered index. Computed and rowversion
    columns are marked as not copyable.

    Args:
        helper: Object with get_first/get_records (e.g. OdbcConnectionHelper)
        schema_name: Source schema name
        table_name: Source table name

    Returns:
        TableInfo for the table

    Raises:
        NotFoundError: If the table does not exist
    """
    result = helper.get_first(
        """
        SELECT t.object_id
        FROM sys.tables t
        INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
        WHERE s.name = ? AND t.name = ?
        """,
        parameters=[schema_name, table_name],
    )
    if not result:
        raise NotFoundError(f"Table {schema_name}.{table_name} not found")

    object_id = result[0]

    columns = []
    partition_column = None
    for row in helper.get_records(COLUMNS_QUERY, parameters=[object_id]):
        column_id, name, data_type, is_computed, key_ordinal, partition_ordinal = row
        columns.append(TableColInfo(
            name=name,
            column_id=column_id,
            key_ordinal=key_ordinal or 0,
            data_type=data_type,
            is_copyable=not is_computed and (data_type or '').lower() not in NON_COPYABLE_TYPES,
        ))
        if partition_ordinal == 1:
            partition_column = name

    partition_function = None
    partition_count = 1
    if partition_column is not None:
        partition = helper.get_first(PARTITION_QUERY, parameters=[object_id])
        if partition:
            partition_function, partition_count = partition[0], partition[1]
        else:
            logger.warning(
                f"{schema_name}.{table_name} has a partition column but no partition scheme; "
                f"treating as unpartitioned"
            )
            partition_column = None

    if partition_column:
        logger.info(
            f"Loaded {schema_name}.{table_name}: {len(columns)} columns, "
            f"partitioned on {partition_column} ({partition_count} partitions)"
        )
    else:
        logger.info(f"Loaded {schema_name}.{table_name}: {len(columns)} columns")

    return TableInfo(
        schema_name,
        table_name,
        columns,
        partition_column=partition_column,
        partition_function=partition_function,
        partition_count=partition_count,
    )
