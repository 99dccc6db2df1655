"""
Checkpoint Store Module

Persists the restart position of each backfill scan (partition number and
last committed key tuple) in a PostgreSQL table, so an interrupted run can
resume without reprocessing committed batches.

Key tuples are stored as JSONB. Values JSON cannot represent natively
(datetime, date, time, Decimal, UUID, bytes) are written as tagged objects,
e.g. {"__type__": "decimal", "value": "12.50"}.
"""

from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence, Tuple
from uuid import UUID
import json
import logging

from psycopg2 import sql

from mssql_backfill.key_range import RestartState

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_TABLE = '_backfill_checkpoint'

CHECKPOINT_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    spec_name VARCHAR(255) PRIMARY KEY,
    partition_number INTEGER NOT NULL DEFAULT 1,
    restart_key JSONB,
    batches_done INTEGER NOT NULL DEFAULT 0,
    rows_copied BIGINT NOT NULL DEFAULT 0,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
)
"""

TYPE_TAG = '__type__'


def _encode_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return {TYPE_TAG: 'datetime', 'value': value.isoformat()}
    if isinstance(value, date):
        return {TYPE_TAG: 'date', 'value': value.isoformat()}
    if isinstance(value, dt_time):
        return {TYPE_TAG: 'time', 'value': value.isoformat()}
    if isinstance(value, Decimal):
        return {TYPE_TAG: 'decimal', 'value': str(value)}
    if isinstance(value, UUID):
        return {TYPE_TAG: 'uuid', 'value': str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {TYPE_TAG: 'bytes', 'value': bytes(value).hex()}
    raise TypeError(f"Cannot encode key value of type {type(value).__name__}")


def _decode_value(value: Any) -> Any:
    if not isinstance(value, dict) or TYPE_TAG not in value:
        return value

    kind, raw = value[TYPE_TAG], value.get('value')
    if kind == 'datetime':
        return datetime.fromisoformat(raw)
    if kind == 'date':
        return date.fromisoformat(raw)
    if kind == 'time':
        return dt_time.fromisoformat(raw)
    if kind == 'decimal':
        return Decimal(raw)
    if kind == 'uuid':
        return UUID(raw)
    if kind == 'bytes':
        return bytes.fromhex(raw)
    raise ValueError(f"Unknown key value type tag: {kind}")


def encode_key_tuple(key: Sequence[Any]) -> List[Any]:
    """Convert a key tuple into a JSON-serializable list."""
    return [_encode_value(value) for value in key]


def decode_key_tuple(encoded: Optional[Sequence[Any]]) -> Tuple[Any, ...]:
    """Inverse of encode_key_tuple()."""
    if not encoded:
        return ()
    return tuple(_decode_value(value) for value in encoded)


class CheckpointStore:
    """
    Restart positions for backfill scans, one row per spec name.

    Provides methods for:
    - Creating the checkpoint table
    - Loading the restart state of a spec
    - Saving a checkpoint after each committed batch
    - Clearing a spec's checkpoint once the scan completes
    """

    def __init__(self, conn_factory: Callable[[], Any], table_name: str = DEFAULT_CHECKPOINT_TABLE):
        """
        Args:
            conn_factory: Callable returning a new psycopg2 connection
            table_name: Checkpoint table name
        """
        self._conn_factory = conn_factory
        self._table = sql.Identifier(table_name)
        self.table_name = table_name

    @classmethod
    def from_conn_id(cls, postgres_conn_id: str, table_name: str = DEFAULT_CHECKPOINT_TABLE) -> 'CheckpointStore':
        """Create a store that connects through an Airflow PostgreSQL connection."""
        from airflow.providers.postgres.hooks.postgres import PostgresHook

        hook = PostgresHook(postgres_conn_id=postgres_conn_id)
        return cls(hook.get_conn, table_name)

    def _run(self, query, params=None, fetch: bool = False):
        conn = None
        try:
            conn = self._conn_factory()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                row = cursor.fetchone() if fetch else None
            conn.commit()
            return row
        except Exception as e:
            logger.error(f"Checkpoint query failed on {self.table_name}: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    def ensure_table(self) -> None:
        """Create the checkpoint table if it doesn't exist. Safe to call repeatedly."""
        self._run(sql.SQL(CHECKPOINT_TABLE_DDL).format(table=self._table))
        logger.info(f"Ensured {self.table_name} table exists")

    def load(self, spec_name: str) -> RestartState:
        """
        Load the restart state of a spec.

        Returns:
            RestartState.resuming(...) if a checkpoint exists, else RestartState.fresh()
        """
        query = sql.SQL(
            "SELECT partition_number, restart_key FROM {table} WHERE spec_name = %s"
        ).format(table=self._table)
        row = self._run(query, (spec_name,), fetch=True)
        if row is None:
            logger.info(f"No checkpoint for {spec_name}, starting fresh")
            return RestartState.fresh()

        partition_number, restart_key = row
        if isinstance(restart_key, str):
            restart_key = json.loads(restart_key)

        state = RestartState.resuming(partition_number, decode_key_tuple(restart_key))
        logger.info(f"Resuming {spec_name} from partition {state.partition}, key {state.key!r}")
        return state

    def save(
        self,
        spec_name: str,
        state: RestartState,
        batches_done: int = 0,
        rows_copied: int = 0,
    ) -> None:
        """
        Record the last committed position of a spec.

        Failures propagate: a lost checkpoint would make the next restart
        reprocess or skip rows.
        """
        query = sql.SQL("""
            INSERT INTO {table} (spec_name, partition_number, restart_key, batches_done, rows_copied, updated_at)
            VALUES (%s, %s, %s, %s, %s, CURRENT_TIMESTAMP)
            ON CONFLICT (spec_name) DO UPDATE SET
                partition_number = EXCLUDED.partition_number,
                restart_key = EXCLUDED.restart_key,
                batches_done = EXCLUDED.batches_done,
                rows_copied = EXCLUDED.rows_copied,
                updated_at = CURRENT_TIMESTAMP
        """).format(table=self._table)

        params = (
            spec_name,
            state.partition,
            json.dumps(encode_key_tuple(state.key)),
            batches_done,
            rows_copied,
        )
        self._run(query, params)
        logger.debug(f"Saved checkpoint: {spec_name} partition={state.partition} key={state.key!r}")

    def clear(self, spec_name: str) -> None:
        """Remove a spec's checkpoint so the next run starts fresh."""
        query = sql.SQL("DELETE FROM {table} WHERE spec_name = %s").format(table=self._table)
        self._run(query, (spec_name,))
        logger.info(f"Cleared checkpoint for {spec_name}")
