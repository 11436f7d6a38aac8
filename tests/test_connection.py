"""Tests for pyodbc connection helpers."""

import struct
from unittest.mock import MagicMock, patch

from mssql_runner.connection import (
    SQL_COPT_SS_ACCESS_TOKEN,
    build_connection_string,
    connect,
    execute_statement,
    pack_access_token,
)
from tests.conftest import FakeConnection


def test_pack_access_token_has_length_prefix():
    packed = pack_access_token('abc')
    (length,) = struct.unpack('<I', packed[:4])

    assert length == 6
    assert packed[4:] == 'abc'.encode('utf-16-le')


def test_connection_string_with_login():
    conn_str = build_connection_string('localhost', 'master', 'ODBC Driver 18 for SQL Server',
                                       username='sa', password='p;w', trust_server_certificate=True)

    assert conn_str.startswith('DRIVER={ODBC Driver 18 for SQL Server};SERVER=localhost;DATABASE=master;')
    assert 'Encrypt=yes' in conn_str
    assert 'TrustServerCertificate=yes' in conn_str
    assert 'UID=sa;PWD={p;w}' in conn_str
    assert 'Trusted_Connection' not in conn_str


def test_connection_string_trusted():
    conn_str = build_connection_string('localhost', 'master', 'drv', trusted=True)
    assert 'Trusted_Connection=yes' in conn_str
    assert 'TrustServerCertificate=no' in conn_str


@patch('mssql_runner.connection.pyodbc.connect')
def test_connect_with_access_token(mock_connect):
    mock_connect.return_value = MagicMock()

    conn = connect('mi.database.windows.net', 'master', driver='drv', access_token='tok', timeout=1200)

    conn_str = mock_connect.call_args.args[0]
    kwargs = mock_connect.call_args.kwargs
    assert 'UID=' not in conn_str and 'Trusted_Connection' not in conn_str
    assert kwargs['autocommit'] is True
    assert kwargs['attrs_before'] == {SQL_COPT_SS_ACCESS_TOKEN: pack_access_token('tok')}
    assert conn.timeout == 1200


@patch('mssql_runner.connection.pyodbc.connect')
def test_connect_without_login_is_trusted(mock_connect):
    connect('localhost', driver='drv')

    assert 'Trusted_Connection=yes' in mock_connect.call_args.args[0]
    assert 'attrs_before' not in mock_connect.call_args.kwargs


def test_execute_statement_returns_rows_and_relays_messages():
    conn = FakeConnection(results={'RESTORE FILELISTONLY': [
        {'LogicalName': 'data', 'Type': 'D'},
        {'LogicalName': 'log', 'Type': 'L'},
    ]})
    messages = []

    rows = execute_statement(conn, "RESTORE FILELISTONLY FROM DISK = N'x';", on_message=messages.append)

    assert rows == [{'LogicalName': 'data', 'Type': 'D'}, {'LogicalName': 'log', 'Type': 'L'}]
    assert messages == []


def test_execute_statement_strips_driver_prefix_from_messages():
    conn = FakeConnection()
    messages = []

    rows = execute_statement(conn, 'BACKUP DATABASE [db] TO URL = N\'u\';', on_message=messages.append)

    assert rows == []
    assert messages == ['10 percent processed.', '20 percent processed.']


def test_execute_statement_passes_parameters():
    conn = FakeConnection()
    execute_statement(conn, 'SELECT 1 WHERE x = ?;', ('abc',))
    assert conn.executed == [('SELECT 1 WHERE x = ?;', ('abc',))]
