"""
SQL Server to PostgreSQL Keyset Backfill DAG

This DAG backfills large SQL Server tables into existing PostgreSQL tables in
key order, one bounded batch at a time:

1. Discover each table's clustered key (and partition scheme, if any)
2. Walk the key range with keyset pagination, streaming each batch via COPY
3. Checkpoint the last committed key after every batch

A failed or interrupted run resumes from the checkpoint on the next run.
Checkpoints are kept in the _backfill_checkpoint table in the target database
and cleared once a table completes.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import List, Dict, Any
import json
import logging
import os

from mssql_backfill.checkpoint import CheckpointStore
from mssql_backfill.runner import run_backfill
from mssql_backfill.settings import get_batch_size

# Configuration from environment
MAX_PARALLEL_BACKFILLS = int(os.environ.get('MAX_PARALLEL_BACKFILLS', '4'))
BATCH_SIZE = get_batch_size()

logger = logging.getLogger(__name__)


def _parse_table_list(raw: Any) -> List[str]:
    """Accept a list, a JSON array string or a comma-separated string."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = raw.split(',')
    if not isinstance(raw, list):
        return []

    tables = []
    for item in raw:
        if isinstance(item, str):
            tables.extend(t.strip() for t in item.split(',') if t.strip())
    return tables


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 3,
        "retry_delay": timedelta(seconds=30),
        "max_retry_delay": timedelta(minutes=30),
    },
    params={
        "source_conn_id": Param(
            default="mssql_source",
            type="string",
            description="SQL Server connection ID"
        ),
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "source_schema": Param(
            default="dbo",
            type="string",
            description="Source schema in SQL Server"
        ),
        "target_schema": Param(
            default="public",
            type="string",
            description="Target schema in PostgreSQL"
        ),
        "tables": Param(
            default=[],
            type="array",
            description="Source tables to backfill"
        ),
        "table_settings": Param(
            default={},
            type="object",
            description=(
                "Per-table overrides keyed by source table name: key_columns, "
                "target_table, projection, and_where"
            )
        ),
        "batch_size": Param(
            default=BATCH_SIZE,
            type="integer",
            minimum=1,
            maximum=1000000,
            description="Rows per keyset batch"
        ),
        "resume": Param(
            default=True,
            type="boolean",
            description="Resume from checkpoints left by an earlier run"
        ),
    },
    tags=["backfill", "mssql", "postgres", "etl"],
)
def mssql_keyset_backfill():
    """
    Keyset backfill DAG for SQL Server to PostgreSQL.

    Each table is backfilled by its own mapped task instance.
    """

    @task
    def initialize_checkpoints(**context) -> str:
        """Ensure the checkpoint table exists in the target database."""
        params = context["params"]
        CheckpointStore.from_conn_id(params["target_conn_id"]).ensure_table()
        return "Checkpoint table ready"

    @task
    def plan_tables(**context) -> List[Dict[str, Any]]:
        """
        Build one backfill job per requested table.

        Returns:
            List of job dicts passed to backfill_table
        """
        params = context["params"]
        settings = params.get("table_settings") or {}
        jobs = []

        for table_name in _parse_table_list(params.get("tables", [])):
            overrides = settings.get(table_name, {})
            jobs.append({
                "source_table": table_name,
                "target_table": overrides.get("target_table", table_name.lower()),
                "key_columns": overrides.get("key_columns"),
                "projection": overrides.get("projection"),
                "and_where": overrides.get("and_where"),
            })

        logger.info(f"Planned backfill of {len(jobs)} tables: {', '.join(j['source_table'] for j in jobs)}")
        return jobs

    @task(max_active_tis_per_dagrun=MAX_PARALLEL_BACKFILLS)
    def backfill_table(job: Dict[str, Any], **context) -> Dict[str, Any]:
        """
        Backfill one table, resuming from its checkpoint when present.

        Returns:
            Result dict with row and batch counts
        """
        params = context["params"]
        table_name = job["source_table"]

        try:
            stats = run_backfill(
                mssql_conn_id=params["source_conn_id"],
                postgres_conn_id=params["target_conn_id"],
                source_schema=params["source_schema"],
                source_table=table_name,
                target_schema=params["target_schema"],
                target_table=job["target_table"],
                key_columns=job.get("key_columns"),
                batch_size=params["batch_size"],
                projection=job.get("projection"),
                and_where=job.get("and_where"),
                resume=params["resume"],
            )
        except Exception as e:
            error_msg = f"Backfill of {table_name} failed: {e}"
            logger.error(error_msg)
            return {
                "table_name": table_name,
                "success": False,
                "errors": [error_msg],
            }

        return {
            "table_name": table_name,
            "success": True,
            "rows": stats["rows"],
            "batches": stats["batches"],
            "partitions": stats["partitions"],
            "elapsed_seconds": stats["elapsed_seconds"],
        }

    @task(trigger_rule="all_done")
    def collect_results(results: List[Dict[str, Any]], **context) -> Dict[str, Any]:
        """
        Summarize per-table backfill results.

        Raises:
            ValueError: If any table failed, so the DAG run is marked failed
        """
        results = list(results or [])
        tables_failed = [r["table_name"] for r in results if not r.get("success")]
        total_rows = sum(r.get("rows", 0) for r in results)

        summary = {
            "status": "success" if not tables_failed else "partial_failure",
            "tables_backfilled": len(results) - len(tables_failed),
            "tables_failed": len(tables_failed),
            "total_rows": total_rows,
            "details": results,
        }

        logger.info(
            f"Backfill complete: {summary['tables_backfilled']} tables, "
            f"{len(tables_failed)} failed, {total_rows:,} rows"
        )

        if tables_failed:
            logger.error(f"Failed tables: {', '.join(tables_failed)}")
            raise ValueError(f"Backfill failed for {len(tables_failed)} tables; rerun to resume from checkpoints")

        return summary

    # Define task flow
    checkpoints_ready = initialize_checkpoints()
    jobs = plan_tables()
    checkpoints_ready >> jobs

    results = backfill_table.expand(job=jobs)
    collect_results(results)


# Instantiate the DAG
mssql_keyset_backfill()
