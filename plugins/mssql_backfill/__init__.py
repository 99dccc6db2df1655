"""
SQL Server Keyset Backfill Utilities

This package moves rows from a SQL Server source table in fixed-size,
key-ordered batches without OFFSET paging, and can resume an interrupted
backfill from its last committed key.

Modules:
- catalog: Table and column metadata (TableInfo, TableColInfo)
- key_range: Key-range specs, restart state, partition inference
- query_builder: Limit-discovery, batch and last-row T-SQL statements
- key_advancer: Next start key from a fetched row
- projection: Copied, computed and ignored output columns
- relation: Optional join to a parent/foreign table
- checkpoint: Restart positions stored in PostgreSQL
- writer: COPY-based PostgreSQL batch sink
- runner: Batch loop tying the pieces together

Configuration Options:
- STRICT_CONSISTENCY=true: Disable the default NOLOCK hint
- BACKFILL_TABLE_HINT=...: Override the source table hint
- BACKFILL_BATCH_SIZE=N: Default rows per batch
"""

__version__ = "1.0.0"

from mssql_backfill.errors import (
    BackfillError,
    ConfigurationError,
    NotFoundError,
    SchemaDriftError,
)
from mssql_backfill.catalog import TableColInfo, TableInfo, load_table_info
from mssql_backfill.projection import ColumnProjector
from mssql_backfill.relation import JoinKind, RelationBinder
from mssql_backfill.query_builder import BatchQueries, QueryBuilder
from mssql_backfill.key_advancer import KeyAdvancer
from mssql_backfill.key_range import (
    KeyRangeSpec,
    KeysetRangeSpec,
    PartitionedKeysetRangeSpec,
    RestartState,
    new_key_range_spec,
)

# Optional: ODBC execution, checkpoints and the runner pull in database
# drivers, import them from their modules
# from mssql_backfill import odbc_helper, checkpoint, writer, runner

__all__ = [
    "BackfillError",
    "ConfigurationError",
    "NotFoundError",
    "SchemaDriftError",
    "TableColInfo",
    "TableInfo",
    "load_table_info",
    "ColumnProjector",
    "JoinKind",
    "RelationBinder",
    "BatchQueries",
    "QueryBuilder",
    "KeyAdvancer",
    "KeyRangeSpec",
    "KeysetRangeSpec",
    "PartitionedKeysetRangeSpec",
    "RestartState",
    "new_key_range_spec",
]
