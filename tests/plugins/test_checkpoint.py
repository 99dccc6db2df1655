"""
Tests for the Checkpoint Store Module

These tests validate key tuple encoding and the load/save/clear queries
against a mocked psycopg2 connection.
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

import pytest
from unittest.mock import MagicMock, patch

from mssql_backfill.checkpoint import (
    CheckpointStore,
    decode_key_tuple,
    encode_key_tuple,
)
from mssql_backfill.key_range import RestartState


@pytest.fixture
def mock_conn():
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False
    return conn


@pytest.fixture
def store(mock_conn):
    return CheckpointStore(lambda: mock_conn)


def executed(mock_conn):
    return mock_conn.cursor.return_value.__enter__.return_value.execute


class TestKeyEncoding:

    def test_plain_values_unchanged(self):
        assert encode_key_tuple((1, 'abc', None, 2.5)) == [1, 'abc', None, 2.5]

    def test_tagged_values(self):
        encoded = encode_key_tuple((
            datetime(2024, 1, 15, 10, 30),
            date(2024, 1, 15),
            Decimal('12.50'),
        ))
        assert encoded == [
            {'__type__': 'datetime', 'value': '2024-01-15T10:30:00'},
            {'__type__': 'date', 'value': '2024-01-15'},
            {'__type__': 'decimal', 'value': '12.50'},
        ]

    def test_survives_json(self):
        key = (
            datetime(2024, 1, 15, 10, 30, 5, 123000),
            time(8, 15),
            Decimal('99.999'),
            UUID('12345678-1234-5678-1234-567812345678'),
            b'\x00\xff',
            42,
        )
        assert decode_key_tuple(json.loads(json.dumps(encode_key_tuple(key)))) == key

    def test_decode_empty(self):
        assert decode_key_tuple(None) == ()
        assert decode_key_tuple([]) == ()

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            encode_key_tuple((object(),))

    def test_unknown_tag(self):
        with pytest.raises(ValueError):
            decode_key_tuple([{'__type__': 'money', 'value': '1'}])


class TestCheckpointStore:

    def test_load_missing_is_fresh(self, store, mock_conn):
        mock_conn.cursor.return_value.__enter__.return_value.fetchone.return_value = None

        assert store.load('dbo.Orders') == RestartState.fresh()
        assert executed(mock_conn).call_args.args[1] == ('dbo.Orders',)
        mock_conn.close.assert_called_once()

    def test_load_existing(self, store, mock_conn):
        cursor = mock_conn.cursor.return_value.__enter__.return_value
        cursor.fetchone.return_value = (3, [{'__type__': 'date', 'value': '2024-03-01'}, 17])

        state = store.load('dbo.Events')

        assert state == RestartState.resuming(3, (date(2024, 3, 1), 17))

    def test_load_json_text(self, store, mock_conn):
        cursor = mock_conn.cursor.return_value.__enter__.return_value
        cursor.fetchone.return_value = (1, '[250]')
        assert store.load('dbo.Orders') == RestartState.resuming(1, (250,))

    def test_save_params(self, store, mock_conn):
        store.save('dbo.Orders', RestartState.resuming(2, (Decimal('1.5'), 7)), batches_done=4, rows_copied=400)

        params = executed(mock_conn).call_args.args[1]
        assert params[0] == 'dbo.Orders'
        assert params[1] == 2
        assert json.loads(params[2]) == [{'__type__': 'decimal', 'value': '1.5'}, 7]
        assert params[3:] == (4, 400)
        mock_conn.commit.assert_called_once()

    def test_clear(self, store, mock_conn):
        store.clear('dbo.Orders')
        assert executed(mock_conn).call_args.args[1] == ('dbo.Orders',)
        mock_conn.commit.assert_called_once()

    def test_ensure_table(self, store, mock_conn):
        store.ensure_table()
        executed(mock_conn).assert_called_once()
        mock_conn.commit.assert_called_once()

    def test_failure_rolls_back_and_raises(self, store, mock_conn):
        executed(mock_conn).side_effect = RuntimeError('connection lost')

        with pytest.raises(RuntimeError, match='connection lost'):
            store.save('dbo.Orders', RestartState.resuming(1, (1,)))

        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()
        mock_conn.close.assert_called_once()

    def test_from_conn_id_uses_postgres_hook(self):
        pytest.importorskip('airflow.providers.postgres.hooks.postgres')
        with patch('airflow.providers.postgres.hooks.postgres.PostgresHook') as MockHook:
            store = CheckpointStore.from_conn_id('postgres_target', table_name='_my_checkpoints')

        MockHook.assert_called_once_with(postgres_conn_id='postgres_target')
        assert store.table_name == '_my_checkpoints'
