"""
Tests for the Column Projection Module
"""

import pytest

from mssql_backfill.catalog import TableColInfo
from mssql_backfill.errors import ConfigurationError, NotFoundError
from mssql_backfill.projection import ColumnProjector


class TestInitialProjection:
    """The initial projection is every copyable, non-ignored column in ordinal order."""

    def test_skips_non_copyable(self, orders_table):
        projector = ColumnProjector(orders_table)
        assert projector.column_names == ['OrderId', 'CustomerId', 'Amount', 'Notes']

    def test_skips_ignored(self, line_items_table):
        projector = ColumnProjector(line_items_table)
        assert projector.column_names == ['LineNo', 'OrderId', 'Sku']

    def test_columns_returns_copy(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.columns.clear()
        assert len(projector.columns) == 4


class TestAddComputedColumn:

    def test_add_by_name(self, orders_table):
        projector = ColumnProjector(orders_table)
        assert projector.add_computed_column('LoadedAt', 'SYSUTCDATETIME()') is True
        assert projector.column_names[-1] == 'LoadedAt'
        assert projector.find('LoadedAt').load_expression == 'SYSUTCDATETIME()'

    def test_add_column_info(self, orders_table):
        projector = ColumnProjector(orders_table)
        col = TableColInfo('Batch', 99, data_type='int')
        projector.add_computed_column(col, '42')
        assert projector.find('Batch').load_expression == '42'
        assert projector.find('Batch').data_type == 'int'
        assert col.load_expression is None

    def test_catalog_columns_not_modified(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.modify_column('Notes', "LEFT(src.[Notes], 10)")
        assert orders_table['Notes'].load_expression is None
        assert ColumnProjector(orders_table).find('Notes').load_expression is None

    def test_second_add_is_noop(self, orders_table):
        """First registration wins."""
        projector = ColumnProjector(orders_table)
        projector.add_computed_column('LoadedAt', 'SYSUTCDATETIME()')
        assert projector.add_computed_column('LoadedAt', 'GETDATE()') is False
        assert projector.column_names.count('LoadedAt') == 1
        assert projector.find('LoadedAt').load_expression == 'SYSUTCDATETIME()'

    def test_existing_source_column_is_noop(self, orders_table):
        projector = ColumnProjector(orders_table)
        assert projector.add_computed_column('Amount', '0') is False
        assert projector.find('Amount').load_expression is None

    def test_empty_expression_rejected(self, orders_table):
        projector = ColumnProjector(orders_table)
        with pytest.raises(ConfigurationError):
            projector.add_computed_column('LoadedAt', '  ')


class TestModifyAndRemove:

    def test_modify_column(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.modify_column('Notes', "LEFT(src.[Notes], 100)")
        assert projector.find('Notes').load_expression == "LEFT(src.[Notes], 100)"

    def test_modify_back_to_verbatim(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.modify_column('Notes', "UPPER(src.[Notes])")
        projector.modify_column('Notes', None)
        assert projector.find('Notes').load_expression is None

    def test_modify_missing_column(self, orders_table):
        projector = ColumnProjector(orders_table)
        before = projector.column_names
        with pytest.raises(NotFoundError, match='Nope'):
            projector.modify_column('Nope', '1')
        assert projector.column_names == before

    def test_modify_non_copyable_column_not_found(self, orders_table):
        projector = ColumnProjector(orders_table)
        with pytest.raises(NotFoundError):
            projector.modify_column('RowVer', 'NULL')

    def test_remove_column(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.remove_column('Notes')
        assert projector.column_names == ['OrderId', 'CustomerId', 'Amount']

    def test_remove_missing_column(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.remove_column('Notes')
        with pytest.raises(NotFoundError):
            projector.remove_column('Notes')
        assert projector.column_names == ['OrderId', 'CustomerId', 'Amount']

    def test_not_found_is_lookup_error(self, orders_table):
        projector = ColumnProjector(orders_table)
        with pytest.raises(LookupError):
            projector.remove_column('Nope')


class TestApplySettings:
    """Projection settings from DAG params or JSON strings."""

    def test_dict_settings(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.apply_settings({
            'computed': {'LoadedAt': 'SYSUTCDATETIME()'},
            'modify': {'Amount': 'ROUND(src.[Amount], 2)'},
            'ignore': ['Notes'],
        })
        assert projector.column_names == ['OrderId', 'CustomerId', 'Amount', 'LoadedAt']
        assert projector.find('Amount').load_expression == 'ROUND(src.[Amount], 2)'

    def test_json_settings(self, orders_table):
        projector = ColumnProjector(orders_table)
        projector.apply_settings('{"ignore": "Notes, CustomerId"}')
        assert projector.column_names == ['OrderId', 'Amount']

    @pytest.mark.parametrize('settings', [None, '', '   '])
    def test_empty_settings(self, orders_table, settings):
        projector = ColumnProjector(orders_table)
        projector.apply_settings(settings)
        assert len(projector.columns) == 4

    @pytest.mark.parametrize('settings', [
        '{not json',
        '[1, 2]',
        {'rename': {'A': 'B'}},
        {'computed': ['LoadedAt']},
        {'ignore': 5},
    ])
    def test_unparsable_settings(self, orders_table, settings):
        projector = ColumnProjector(orders_table)
        with pytest.raises(ConfigurationError):
            projector.apply_settings(settings)

    def test_bad_name_leaves_projection_unchanged(self, orders_table):
        projector = ColumnProjector(orders_table)
        with pytest.raises(NotFoundError):
            projector.apply_settings({'computed': {'X': '1'}, 'ignore': ['Notes', 'Missing']})
        assert projector.column_names == ['OrderId', 'CustomerId', 'Amount', 'Notes']
