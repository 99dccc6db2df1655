"""
Tests for the Keyset Backfill DAG

Validates DAG structure, parameters and table list parsing.
"""

import os
import sys
import pytest

pytest.importorskip('airflow')

# Add plugins and dags directories to path for imports
root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
for path in (os.path.join(root_dir, 'plugins'), os.path.join(root_dir, 'dags')):
    if path not in sys.path:
        sys.path.insert(0, path)

from airflow.models import DagBag


@pytest.fixture(scope="module")
def dag():
    dag_bag = DagBag(dag_folder=os.path.join(root_dir, 'dags'), include_examples=False)
    assert not dag_bag.import_errors
    return dag_bag.get_dag("mssql_keyset_backfill")


class TestDAGStructure:
    """Test DAG parameters and task layout."""

    def test_dag_loads(self, dag):
        assert dag is not None

    def test_dag_has_expected_params(self, dag):
        for param in ["source_conn_id", "target_conn_id", "source_schema", "target_schema",
                      "tables", "table_settings", "batch_size", "resume"]:
            assert param in dag.params, f"Missing expected parameter: {param}"

    def test_task_order(self, dag):
        task_ids = {task.task_id for task in dag.tasks}
        assert task_ids == {"initialize_checkpoints", "plan_tables", "backfill_table", "collect_results"}
        assert "plan_tables" in dag.get_task("initialize_checkpoints").downstream_task_ids
        assert "collect_results" in dag.get_task("backfill_table").downstream_task_ids


class TestParseTableList:

    @pytest.mark.parametrize('raw, expected', [
        (["Orders", "OrderLines"], ["Orders", "OrderLines"]),
        (["Orders, OrderLines"], ["Orders", "OrderLines"]),
        ('["Orders"]', ["Orders"]),
        ("Orders,OrderLines", ["Orders", "OrderLines"]),
        ([], []),
        (None, []),
    ])
    def test_formats(self, raw, expected):
        from mssql_keyset_backfill import _parse_table_list

        assert _parse_table_list(raw) == expected


class TestBatchSizeConfig:
    """BACKFILL_BATCH_SIZE is validated when the DAG module is imported."""

    def _reload(self):
        import importlib
        import mssql_keyset_backfill

        return importlib.reload(mssql_keyset_backfill)

    def test_env_batch_size_used(self, monkeypatch):
        monkeypatch.setenv('BACKFILL_BATCH_SIZE', '2500')
        try:
            assert self._reload().BATCH_SIZE == 2500
        finally:
            monkeypatch.undo()
            self._reload()

    @pytest.mark.parametrize('value', ['lots', '0', '-5'])
    def test_invalid_env_batch_size_rejected(self, monkeypatch, value):
        from mssql_backfill.errors import ConfigurationError

        monkeypatch.setenv('BACKFILL_BATCH_SIZE', value)
        try:
            with pytest.raises(ConfigurationError):
                self._reload()
        finally:
            monkeypatch.undo()
            self._reload()
