"""
ODBC Connection Helper

Thin pyodbc wrapper used to read the catalog and run backfill statements
against SQL Server. Connection settings come either from an explicit dict
of ODBC keywords or from an Airflow connection id.
"""

from typing import Any, Dict, List, Optional, Tuple
import pyodbc
import logging

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = '{ODBC Driver 18 for SQL Server}'


class OdbcConnectionHelper:
    """
    Helper class for SQL Server ODBC connections.

    Provides get_records and get_first in the style of the Airflow
    database hooks, plus get_conn/release_conn/execute for callers that keep one
    connection across several statements.
    """

    def __init__(
        self,
        odbc_conn_id: Optional[str] = None,
        conn_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the ODBC connection helper.

        Args:
            odbc_conn_id: Airflow connection ID for the database
            conn_config: Explicit ODBC keywords (DRIVER, SERVER, DATABASE, UID, PWD, ...)
        """
        if not odbc_conn_id and not conn_config:
            raise ValueError("Either odbc_conn_id or conn_config is required")
        self.conn_id = odbc_conn_id
        self._conn_config = dict(conn_config) if conn_config else None

    def _get_connection_config(self) -> dict:
        """
        Get connection configuration, reading the Airflow connection on first use.

        Returns:
            Dictionary with ODBC connection parameters
        """
        if self._conn_config is None:
            from airflow.hooks.base import BaseHook

            conn = BaseHook.get_connection(self.conn_id)

            port = conn.port or 1433
            server = f"{conn.host},{port}" if port != 1433 else conn.host

            self._conn_config = {
                'DRIVER': DEFAULT_DRIVER,
                'SERVER': server,
                'DATABASE': conn.schema,
                'TrustServerCertificate': 'yes',
            }

            if conn.login:
                # SQL Server Authentication
                self._conn_config['UID'] = conn.login
                self._conn_config['PWD'] = conn.password or ''
                self._conn_config['Trusted_Connection'] = 'no'
            else:
                # Windows Authentication (Kerberos)
                self._conn_config['Trusted_Connection'] = 'yes'

        return self._conn_config

    def _build_connection_string(self) -> str:
        config = self._get_connection_config()
        return ';'.join([f"{k}={v}" for k, v in config.items() if v])

    def get_conn(self) -> pyodbc.Connection:
        return pyodbc.connect(self._build_connection_string())

    def release_conn(self, conn: Optional[pyodbc.Connection]) -> None:
        if conn is not None:
            conn.close()

    def execute(self, cursor: pyodbc.Cursor, sql: str, parameters: Optional[List[Any]] = None) -> pyodbc.Cursor:
        """
        Execute a statement on an open cursor, logging the statement on failure.

        Args:
            cursor: Open pyodbc cursor
            sql: SQL statement with ? placeholders
            parameters: Optional list of parameters for the statement

        Returns:
            The cursor, positioned on the result set
        """
        try:
            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)
            return cursor
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise

    def get_records(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> List[Tuple[Any, ...]]:
        """Execute a query on a fresh connection and return all rows."""
        conn = None
        try:
            conn = self.get_conn()
            return self.execute(conn.cursor(), sql, parameters).fetchall()
        finally:
            self.release_conn(conn)

    def get_first(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        """Execute a query on a fresh connection and return the first row, or None."""
        conn = None
        try:
            conn = self.get_conn()
            return self.execute(conn.cursor(), sql, parameters).fetchone()
        finally:
            self.release_conn(conn)
