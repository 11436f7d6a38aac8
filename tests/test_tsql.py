"""Tests for the T-SQL builders."""

import posixpath

import pytest

from mssql_runner import tsql
from mssql_runner.tsql import RelocationEntry


def test_backup_statement_options():
    sql = tsql.backup_to_url_statement(
        'frobelworkscheduler',
        'https://froebelsqlbackups.blob.core.windows.net/azvdevbackups/frobelworkscheduler_ch_04_07_2025_Friday.bak')

    assert sql.startswith('BACKUP DATABASE [frobelworkscheduler]')
    assert "TO URL = N'https://froebelsqlbackups.blob.core.windows.net/azvdevbackups/" in sql
    assert sql.endswith('WITH FORMAT, INIT, COMPRESSION, COPY_ONLY, STATS = 10;')


def test_quoting():
    assert tsql.quote_identifier('odd]name') == '[odd]]name]'
    assert tsql.quote_literal("it's") == "'it''s'"
    assert tsql.quote_unicode('x') == "N'x'"


def test_filelist_statement():
    assert tsql.filelist_statement('/work/a.bak') == "RESTORE FILELISTONLY FROM DISK = N'/work/a.bak';"


@pytest.mark.parametrize('file_type,extension', [
    ('D', '.mdf'), ('L', '.ldf'), ('F', '.fs'), ('S', '.ft'), ('X', '.xtp'),
    ('d', '.mdf'), ('Q', '.dat'), ('', '.dat'), (None, '.dat'),
])
def test_file_extension(file_type, extension):
    assert tsql.file_extension(file_type) == extension


def test_relocation_plan_for_data_and_log():
    manifest = [
        {'LogicalName': 'data', 'Type': 'D', 'PhysicalName': 'C:\\prod\\data.mdf'},
        {'LogicalName': 'log', 'Type': 'L', 'PhysicalName': 'C:\\prod\\log.ldf'},
    ]
    entries = tsql.relocation_entries(manifest, '/work', posixpath.join)

    assert entries == [
        RelocationEntry('data', 'D', '/work/data.mdf'),
        RelocationEntry('log', 'L', '/work/log.ldf'),
    ]
    assert tsql.relocation_plan(entries) == \
        "MOVE N'data' TO N'/work/data.mdf',\n    MOVE N'log' TO N'/work/log.ldf'"


def test_relocation_keeps_manifest_order():
    manifest = [
        {'LogicalName': 'log', 'Type': 'L'},
        {'LogicalName': 'fs', 'Type': 'F'},
        {'LogicalName': 'data', 'Type': 'D'},
    ]
    entries = tsql.relocation_entries(manifest, '/w', posixpath.join)
    assert [e.logical_name for e in entries] == ['log', 'fs', 'data']


def test_restore_statement():
    entries = [
        RelocationEntry('data', 'D', '/work/data.mdf'),
        RelocationEntry('log', 'L', '/work/log.ldf'),
    ]
    sql = tsql.restore_statement('frobelworkscheduler_ch', '/work/x.bak', entries)

    assert sql == (
        "RESTORE DATABASE [frobelworkscheduler_ch]\n"
        "FROM DISK = N'/work/x.bak'\n"
        "WITH\n"
        "    MOVE N'data' TO N'/work/data.mdf',\n"
        "    MOVE N'log' TO N'/work/log.ldf',\n"
        "    REPLACE,\n"
        "    STATS = 10;"
    )


def test_restore_statement_requires_entries():
    with pytest.raises(ValueError):
        tsql.restore_statement('db', '/x.bak', [])


def test_logical_names_with_quotes_are_escaped():
    entries = tsql.relocation_entries([{'LogicalName': "o'data", 'Type': 'D'}], '/w', posixpath.join)
    assert tsql.relocation_plan(entries) == "MOVE N'o''data' TO N'/w/o''data.mdf'"


def test_source_size_query_is_parameterised():
    assert 'DB_ID(?)' in tsql.source_size_query()


def test_relocation_keeps_non_ascii_as_unicode_literals():
    entries = tsql.relocation_entries([{'LogicalName': 'Fröbel_Daten', 'Type': 'D'}], '/arbeit/Übung',
                                      posixpath.join)
    assert tsql.relocation_plan(entries) == "MOVE N'Fröbel_Daten' TO N'/arbeit/Übung/Fröbel_Daten.mdf'"
