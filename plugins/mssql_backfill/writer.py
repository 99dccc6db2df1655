"""
Batch Writer Module

Writes each fetched batch into a PostgreSQL destination table with
COPY ... FROM STDIN. A batch is bounded by the batch size, so it is
formatted into one in-memory CSV buffer per call.
"""

from datetime import date, datetime, time as dt_time
from io import StringIO
from typing import Any, Callable, List, Sequence, Tuple
import csv
import logging
import math

from psycopg2 import sql

logger = logging.getLogger(__name__)

NULL_MARKER = '\\N'


def normalize_copy_value(value: Any) -> Any:
    """
    Convert a SQL Server value to its COPY CSV text, where csv's str() is not enough.

    NULL and non-finite floats become the \\N marker, so empty strings stay
    distinct from NULL. bytes become bytea hex.
    """
    if value is None:
        return NULL_MARKER
    if isinstance(value, bool):
        return 't' if value else 'f'
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat(sep=' ') if isinstance(value, datetime) else value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return '\\x' + bytes(value).hex()
    if isinstance(value, float) and not math.isfinite(value):
        return NULL_MARKER
    return value


def format_copy_rows(rows: Sequence[Sequence[Any]]) -> StringIO:
    """Render rows as tab-delimited CSV matching copy_statement(), rewound for reading."""
    buffer = StringIO()
    writer = csv.writer(buffer, delimiter='\t', lineterminator='\n')
    writer.writerows([normalize_copy_value(value) for value in row] for row in rows)
    buffer.seek(0)
    return buffer


class PostgresBatchWriter:
    """
    Batch sink writing into one PostgreSQL table.

    Called as writer(columns, rows) by the backfill runner; every call runs
    in its own transaction and returns the number of rows written.
    """

    def __init__(self, conn_factory: Callable[[], Any], schema_name: str, table_name: str):
        self._conn_factory = conn_factory
        self.schema_name = schema_name
        self.table_name = table_name

    @classmethod
    def from_conn_id(cls, postgres_conn_id: str, schema_name: str, table_name: str) -> 'PostgresBatchWriter':
        from airflow.providers.postgres.hooks.postgres import PostgresHook

        hook = PostgresHook(postgres_conn_id=postgres_conn_id)
        return cls(hook.get_conn, schema_name, table_name)

    def copy_statement(self, columns: List[str]):
        quoted_columns = sql.SQL(', ').join([sql.Identifier(col) for col in columns])
        return sql.SQL(
            "COPY {}.{} ({}) FROM STDIN WITH (FORMAT CSV, DELIMITER E'\\t', QUOTE '\"', NULL '\\N')"
        ).format(
            sql.Identifier(self.schema_name),
            sql.Identifier(self.table_name),
            quoted_columns,
        )

    def __call__(self, columns: List[str], rows: List[Tuple[Any, ...]]) -> int:
        if not rows:
            return 0

        conn = None
        try:
            conn = self._conn_factory()
            with conn.cursor() as cursor:
                cursor.copy_expert(self.copy_statement(columns), format_copy_rows(rows))
            conn.commit()
            return len(rows)
        except Exception as e:
            logger.error(f"Error writing {len(rows)} rows to {self.schema_name}.{self.table_name}: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()
