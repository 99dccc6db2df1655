"""
Backfill Runner Module

Drives a key-range spec until the source table is exhausted. Each batch:

1. Limit discovery: find the end key and row count of the next batch
2. Batch fetch: read (start, end] and hand the rows to the sink
3. Last row: re-read the row at the end key and advance the start key
4. Checkpoint: persist (partition, start key) so a restart resumes here

Partition-aware specs are walked one partition at a time, starting from the
restart partition.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import time

from mssql_backfill.catalog import load_table_info
from mssql_backfill.checkpoint import CheckpointStore
from mssql_backfill.key_advancer import KeyAdvancer
from mssql_backfill.key_range import KeyRangeSpec, RestartState, new_key_range_spec
from mssql_backfill.settings import get_batch_size
from mssql_backfill.writer import PostgresBatchWriter

logger = logging.getLogger(__name__)


class BackfillRunner:
    """Run keyset batches for one spec against one source connection."""

    def __init__(
        self,
        spec: KeyRangeSpec,
        source: Any,
        sink: Callable[[List[str], List[Any]], Optional[int]],
        batch_size: Optional[int] = None,
        checkpoint: Optional[CheckpointStore] = None,
    ):
        """
        Args:
            spec: Key-range spec to scan
            source: OdbcConnectionHelper-compatible object (get_conn, release_conn, execute)
            sink: Callable receiving (column_names, rows) for every batch
            batch_size: Rows per batch; defaults to BACKFILL_BATCH_SIZE
            checkpoint: Optional store for restart positions
        """
        self.spec = spec
        self.source = source
        self.sink = sink
        self.batch_size = get_batch_size(batch_size)
        self.checkpoint = checkpoint
        self._advancer = KeyAdvancer(spec.key_column_names)

    def _partitions(self) -> List[Optional[int]]:
        if self.spec.partition_predicate() is None:
            return [None]
        first = self.spec.restart.partition if self.spec.is_restart else 1
        return list(range(first, self.spec.source_table.partition_count + 1))

    @staticmethod
    def _column_names(cursor) -> List[str]:
        return [d[0] for d in cursor.description or []]

    def run(self) -> Dict[str, Any]:
        """
        Copy every remaining batch.

        Returns:
            Dict with batches, rows, rows_written, partitions, last_key,
            batch_ranges [(start_key or None, end_key), ...] and elapsed_seconds
        """
        spec = self.spec
        if self.checkpoint is not None and not spec.is_restart:
            spec.set_restart_state(self.checkpoint.load(spec.name))

        stats: Dict[str, Any] = {
            'spec_name': spec.name,
            'batches': 0,
            'rows': 0,
            'rows_written': 0,
            'partitions': 0,
            'last_key': spec.restart.key or None,
            'batch_ranges': [],
        }
        start_time = time.time()
        logger.info(
            f"Starting backfill of {spec.name} (keys: {', '.join(spec.key_column_names)}, "
            f"batch size {self.batch_size:,}, {spec.restart!r})"
        )

        conn = None
        try:
            conn = self.source.get_conn()
            cursor = conn.cursor()
            is_first_fetch = True

            for partition in self._partitions():
                if partition is not None:
                    spec.partition_number = partition
                    logger.info(f"{spec.name}: reading partition {partition}")

                while True:
                    queries = spec.build_queries(self.batch_size, partition, is_first_fetch)

                    limit_row = self.source.execute(cursor, queries.limit_sql, queries.limit_params).fetchone()
                    if limit_row is None:
                        break
                    end_key, batch_rows = self._advancer.read_limit_row(limit_row)
                    spec.set_end_key(end_key)

                    self.source.execute(cursor, queries.batch_sql, queries.batch_params(end_key))
                    columns = self._column_names(cursor)
                    rows = cursor.fetchall()
                    written = self.sink(columns, rows)

                    self.source.execute(cursor, queries.last_row_sql, queries.last_row_params(end_key))
                    last_row = cursor.fetchone()
                    if last_row is not None:
                        next_key = spec.advance_key(last_row, self._column_names(cursor))
                    else:
                        # End row filtered out by the join or extra WHERE clause
                        logger.warning(f"{spec.name}: last row {end_key!r} not returned, advancing to end key")
                        spec.set_start_key(end_key)
                        spec.clear_end_key()
                        next_key = tuple(end_key)

                    is_first_fetch = False
                    stats['batches'] += 1
                    stats['rows'] += len(rows)
                    stats['rows_written'] += written if written is not None else len(rows)
                    stats['last_key'] = next_key
                    stats['batch_ranges'].append((queries.start_key or None, next_key))

                    if self.checkpoint is not None:
                        self.checkpoint.save(
                            spec.name,
                            RestartState.resuming(partition or spec.partition_number, next_key),
                            batches_done=stats['batches'],
                            rows_copied=stats['rows_written'],
                        )

                    logger.info(
                        f"{spec.name}: batch {stats['batches']} copied {len(rows):,} rows "
                        f"(through key {next_key!r}, {stats['rows']:,} total)"
                    )

                    if batch_rows < self.batch_size:
                        break

                stats['partitions'] += 1

            if self.checkpoint is not None:
                self.checkpoint.clear(spec.name)
        finally:
            if conn is not None:
                self.source.release_conn(conn)

        stats['elapsed_seconds'] = round(time.time() - start_time, 2)
        logger.info(
            f"Finished backfill of {spec.name}: {stats['rows']:,} rows in {stats['batches']} batches "
            f"({stats['elapsed_seconds']}s)"
        )
        return stats


def run_backfill(
    mssql_conn_id: str,
    postgres_conn_id: str,
    source_schema: str,
    source_table: str,
    target_schema: str,
    target_table: str,
    key_columns: Optional[Sequence[str]] = None,
    batch_size: Optional[int] = None,
    projection: Optional[Any] = None,
    and_where: Optional[str] = None,
    resume: bool = True,
) -> Dict[str, Any]:
    """
    Convenience function to backfill one SQL Server table into PostgreSQL.

    Args:
        mssql_conn_id: Airflow connection ID for the SQL Server source
        postgres_conn_id: Airflow connection ID for the PostgreSQL target
        source_schema: Source schema name
        source_table: Source table name
        target_schema: Target schema name
        target_table: Target table name
        key_columns: Key column names (default: clustered index key)
        batch_size: Rows per batch
        projection: Projection settings (see ColumnProjector.apply_settings)
        and_where: Extra T-SQL condition on the source rows (alias src)
        resume: Resume from, and record, checkpoints in the target database

    Returns:
        Runner stats dictionary
    """
    from mssql_backfill.odbc_helper import OdbcConnectionHelper

    source = OdbcConnectionHelper(odbc_conn_id=mssql_conn_id)
    table = load_table_info(source, source_schema, source_table)

    spec = new_key_range_spec(table, key_columns, name=f"{source_schema}.{source_table}")
    spec.projector.apply_settings(projection)
    spec.and_where = and_where

    checkpoint = None
    if resume:
        checkpoint = CheckpointStore.from_conn_id(postgres_conn_id)
        checkpoint.ensure_table()

    writer = PostgresBatchWriter.from_conn_id(postgres_conn_id, target_schema, target_table)
    return BackfillRunner(spec, source, writer, batch_size=batch_size, checkpoint=checkpoint).run()
