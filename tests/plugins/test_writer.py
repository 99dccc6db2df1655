"""
Tests for the Batch Writer Module
"""

from datetime import date, datetime, time
from decimal import Decimal

import pytest
from unittest.mock import MagicMock

from mssql_backfill.writer import (
    NULL_MARKER,
    PostgresBatchWriter,
    format_copy_rows,
    normalize_copy_value,
)


class TestNormalizeCopyValue:

    @pytest.mark.parametrize('value, expected', [
        (None, NULL_MARKER),
        (datetime(2024, 1, 15, 10, 30), '2024-01-15 10:30:00'),
        (date(2024, 1, 15), '2024-01-15'),
        (time(8, 15), '08:15:00'),
        (True, 't'),
        (False, 'f'),
        (b'\x01\xab', '\\x01ab'),
        (float('nan'), NULL_MARKER),
        (float('inf'), NULL_MARKER),
        (42, 42),
        ('', ''),
    ])
    def test_values(self, value, expected):
        assert normalize_copy_value(value) == expected


class TestFormatCopyRows:

    def test_tab_delimited_with_null_marker(self):
        assert format_copy_rows([(1, 'a'), (2, None)]).read() == '1\ta\n2\t\\N\n'

    def test_decimal_keeps_scale(self):
        assert format_copy_rows([(Decimal('12.50'),)]).read() == '12.50\n'

    def test_empty_string_distinct_from_null(self):
        assert format_copy_rows([('', None)]).read() == '\t\\N\n'

    def test_quotes_embedded_delimiters(self):
        text = format_copy_rows([(1, 'tab\there', 'line\nbreak')]).read()
        assert text == '1\t"tab\there"\t"line\nbreak"\n'


class TestPostgresBatchWriter:

    @pytest.fixture
    def mock_conn(self):
        conn = MagicMock()
        conn.cursor.return_value.__exit__.return_value = False
        return conn

    def copy_expert(self, mock_conn):
        return mock_conn.cursor.return_value.__enter__.return_value.copy_expert

    def test_empty_batch_skips_connection(self):
        factory = MagicMock()
        writer = PostgresBatchWriter(factory, 'public', 'orders')
        assert writer(['OrderId'], []) == 0
        factory.assert_not_called()

    def test_writes_rows(self, mock_conn):
        writer = PostgresBatchWriter(lambda: mock_conn, 'public', 'orders')

        written = writer(['OrderId', 'Amount'], [(1, Decimal('1.00')), (2, None)])

        assert written == 2
        stream = self.copy_expert(mock_conn).call_args.args[1]
        assert stream.read() == '1\t1.00\n2\t\\N\n'
        mock_conn.commit.assert_called_once()
        mock_conn.close.assert_called_once()

    def test_failure_rolls_back(self, mock_conn):
        self.copy_expert(mock_conn).side_effect = RuntimeError('duplicate key')
        writer = PostgresBatchWriter(lambda: mock_conn, 'public', 'orders')

        with pytest.raises(RuntimeError, match='duplicate key'):
            writer(['OrderId'], [(1,)])

        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()
        mock_conn.close.assert_called_once()

    def test_copy_statement_quotes_identifiers(self):
        statement = PostgresBatchWriter(MagicMock(), 'public', 'orders').copy_statement(['OrderId', 'Amount'])
        text = repr(statement)
        assert "Identifier('public')" in text
        assert "Identifier('orders')" in text
        assert "Identifier('OrderId')" in text
        assert "FORMAT CSV" in text
