"""
T-SQL statement builders for backup, manifest inspection and restore
"""

import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping

FILE_EXTENSIONS = {
    'D': '.mdf',  # data
    'L': '.ldf',  # log
    'F': '.fs',   # filestream
    'S': '.ft',   # full-text catalog
    'X': '.xtp',  # in-memory OLTP checkpoint
}
DEFAULT_EXTENSION = '.dat'


@dataclass(frozen=True)
class RelocationEntry:
    logical_name: str
    file_type: str
    target_path: str


def quote_identifier(name: str) -> str:
    return '[' + name.replace(']', ']]') + ']'


def quote_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def quote_unicode(text: str) -> str:
    return 'N' + quote_literal(text)


def backup_to_url_statement(database: str, url: str) -> str:
    return (
        f"BACKUP DATABASE {quote_identifier(database)}\n"
        f"TO URL = {quote_unicode(url)}\n"
        f"WITH FORMAT, INIT, COMPRESSION, COPY_ONLY, STATS = 10;"
    )


def url_credential_query() -> str:
    """Backup to URL from a managed instance needs a credential named after the container URL"""
    return "SELECT name FROM sys.credentials WHERE name = ?;"


def filelist_statement(bak_path: str) -> str:
    return f"RESTORE FILELISTONLY FROM DISK = {quote_unicode(bak_path)};"


def file_extension(file_type: str) -> str:
    return FILE_EXTENSIONS.get((file_type or '').strip().upper(), DEFAULT_EXTENSION)


def relocation_entries(manifest: Iterable[Mapping[str, str]], target_dir: str,
                       path_join: Callable[..., str] = os.path.join) -> List[RelocationEntry]:
    """One entry per FILELISTONLY row, keeping the manifest order"""
    entries = []
    for row in manifest:
        logical_name = row['LogicalName']
        file_type = row['Type']
        target = path_join(target_dir, logical_name + file_extension(file_type))
        entries.append(RelocationEntry(logical_name, file_type, target))
    return entries


def relocation_plan(entries: Iterable[RelocationEntry]) -> str:
    return ',\n    '.join(
        f"MOVE {quote_unicode(e.logical_name)} TO {quote_unicode(e.target_path)}" for e in entries
    )


def restore_statement(database: str, bak_path: str, entries: List[RelocationEntry]) -> str:
    if not entries:
        raise ValueError("Backup manifest is empty; nothing to relocate")
    return (
        f"RESTORE DATABASE {quote_identifier(database)}\n"
        f"FROM DISK = {quote_unicode(bak_path)}\n"
        f"WITH\n"
        f"    {relocation_plan(entries)},\n"
        f"    REPLACE,\n"
        f"    STATS = 10;"
    )


def source_size_query() -> str:
    """Allocated size in MB of every file of one database (size is in 8 KB pages)"""
    return (
        "SELECT CAST(SUM(CAST(size AS BIGINT)) * 8 / 1024.0 AS FLOAT) AS size_mb "
        "FROM sys.master_files WHERE database_id = DB_ID(?);"
    )
