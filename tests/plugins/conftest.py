"""Shared table fixtures for the backfill tests."""

import pytest

from mssql_backfill.catalog import TableColInfo, TableInfo


@pytest.fixture(autouse=True)
def clean_backfill_env(monkeypatch):
    """Keep table hint and batch size defaults independent of the host environment."""
    for var in ('STRICT_CONSISTENCY', 'BACKFILL_TABLE_HINT', 'BACKFILL_BATCH_SIZE'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def orders_table():
    """dbo.Orders keyed on OrderId, with a rowversion column that cannot be copied."""
    return TableInfo('dbo', 'Orders', [
        TableColInfo('OrderId', 1, key_ordinal=1, data_type='int'),
        TableColInfo('CustomerId', 2, data_type='int'),
        TableColInfo('Amount', 3, data_type='decimal'),
        TableColInfo('Notes', 4, data_type='nvarchar'),
        TableColInfo('RowVer', 5, data_type='timestamp', is_copyable=False),
    ])


@pytest.fixture
def line_items_table():
    """dbo.OrderLines with composite key (OrderId, LineNo); key ordinals differ from column order."""
    return TableInfo('dbo', 'OrderLines', [
        TableColInfo('LineNo', 1, key_ordinal=2, data_type='int'),
        TableColInfo('OrderId', 2, key_ordinal=1, data_type='int'),
        TableColInfo('Sku', 3, data_type='varchar'),
        TableColInfo('Legacy', 4, data_type='varchar', ignore=True),
    ])


@pytest.fixture
def customers_table():
    return TableInfo('sales', 'Customers', [
        TableColInfo('Id', 1, key_ordinal=1, data_type='int'),
        TableColInfo('Name', 2, data_type='nvarchar'),
        TableColInfo('Region', 3, data_type='varchar'),
    ])


@pytest.fixture
def partitioned_orders_table():
    """Orders partitioned on OrderId (the leading key column) into 3 partitions."""
    return TableInfo(
        'dbo', 'Orders',
        [
            TableColInfo('OrderId', 1, key_ordinal=1, data_type='int'),
            TableColInfo('Amount', 2, data_type='decimal'),
        ],
        partition_column='OrderId',
        partition_function='pfOrders',
        partition_count=3,
    )


@pytest.fixture
def partitioned_on_date_table():
    """Table partitioned on OrderDate, which is not the leading key column."""
    return TableInfo(
        'dbo', 'Events',
        [
            TableColInfo('EventId', 1, key_ordinal=1, data_type='bigint'),
            TableColInfo('OrderDate', 2, key_ordinal=2, data_type='date'),
            TableColInfo('Payload', 3, data_type='nvarchar'),
        ],
        partition_column='OrderDate',
        partition_function='pfEventDate',
        partition_count=12,
    )
