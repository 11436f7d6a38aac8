"""Shared fakes for runner tests."""

import os
from types import SimpleNamespace

import pytest

from mssql_runner.config import (
    LocalRestoreConfig,
    ManagedInstanceRef,
    PitrConfig,
    SnapshotConfig,
    StorageConfig,
)


class FakeCredential:
    def __init__(self):
        self.scopes = []

    def get_token(self, scope):
        self.scopes.append(scope)
        return SimpleNamespace(token=f"token-for-{scope}", expires_on=0)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.messages = []
        self._rows = []

    def execute(self, sql, *params):
        self.conn.executed.append((sql, params))
        for prefix, error in self.conn.errors.items():
            if sql.startswith(prefix):
                raise error
        if sql.startswith(('BACKUP', 'RESTORE DATABASE')):
            self.messages = [
                ('[01000] (3211)', '[Microsoft][ODBC Driver 18 for SQL Server][SQL Server]10 percent processed.'),
                ('[01000] (3211)', '[Microsoft][ODBC Driver 18 for SQL Server][SQL Server]20 percent processed.'),
            ]
        rows = []
        for prefix, result in self.conn.results.items():
            if sql.startswith(prefix):
                rows = result
                break
        if rows:
            self.description = [(column,) for column in rows[0]]
            self._rows = [tuple(row.values()) for row in rows]
        else:
            self.description = None
            self._rows = []

    def fetchall(self):
        return self._rows

    def nextset(self):
        self.messages = []
        return False

    def close(self):
        pass


class FakeConnection:
    def __init__(self, results=None, errors=None):
        self.results = results or {}
        self.errors = errors or {}
        self.executed = []
        self.closed = False
        self.timeout = 0

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True

    def statements(self):
        return [sql for sql, _ in self.executed]


class FakeConnector:
    """Stands in for connection.connect; remembers every call"""

    def __init__(self, conn):
        self.conn = conn
        self.calls = []

    def __call__(self, server, database='master', **kwargs):
        self.calls.append(SimpleNamespace(server=server, database=database, **kwargs))
        if kwargs.get('timeout'):
            self.conn.timeout = kwargs['timeout']
        return self.conn


class FakeBlobStore:
    def __init__(self, container='azvdevbackups', blobs=None, delete_error=None):
        self.container = container
        self.blobs = dict(blobs or {})
        self.delete_error = delete_error
        self.downloads = []
        self.deleted = []

    def exists(self, blob_name):
        return blob_name in self.blobs

    def download(self, blob_name, local_path):
        self.downloads.append((blob_name, local_path))
        with open(local_path, 'wb') as f:
            f.write(self.blobs[blob_name])
        return os.path.getsize(local_path)

    def delete(self, blob_name):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(blob_name)
        del self.blobs[blob_name]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeInstance:
    """ManagedInstanceClient double. Sequences are consumed one call at a time;
    the last value repeats. Exceptions in a sequence are raised."""

    def __init__(self, name='mi-test', exists=False, statuses=None, total_mb=102400.0,
                 used_mb=51200.0, fqdn='mi-test.abc123.database.windows.net', delete_error=None):
        self.name = name
        self.exists_sequence = exists if isinstance(exists, list) else [exists]
        self.statuses = statuses or ['Online']
        self.total_mb = total_mb
        self.used_mb = used_mb
        self.fqdn = fqdn
        self.delete_error = delete_error
        self.deleted = []
        self.restores = []
        self.exists_calls = 0
        self.status_calls = 0
        self.metric_windows = []

    @staticmethod
    def _next(sequence):
        value = sequence.pop(0) if len(sequence) > 1 else sequence[0]
        if isinstance(value, Exception):
            raise value
        return value

    def database_exists(self, database):
        self.exists_calls += 1
        return self._next(self.exists_sequence)

    def delete_database(self, database):
        self.deleted.append(database)
        if self.delete_error:
            raise self.delete_error

    def database_status(self, database):
        self.status_calls += 1
        return self._next(self.statuses)

    def instance_fqdn(self):
        return self.fqdn

    def instance_total_storage_mb(self):
        return self.total_mb

    def instance_used_storage_mb(self, window_minutes=2, now=None):
        self.metric_windows.append(window_minutes)
        return self.used_mb

    def begin_point_in_time_restore(self, source_database_id, target_database, restore_point):
        self.restores.append((source_database_id, target_database, restore_point))


@pytest.fixture
def credential():
    return FakeCredential()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage_config():
    return StorageConfig(account='froebelsqlbackups', container='azvdevbackups')


@pytest.fixture
def snapshot_config(storage_config):
    return SnapshotConfig(
        database='frobelworkscheduler',
        developer='ch',
        storage=storage_config,
        source_server='mi-prod.abc123.database.windows.net',
    )


@pytest.fixture
def local_restore_config(storage_config, tmp_path):
    return LocalRestoreConfig(
        database='frobelworkscheduler',
        developer='ch',
        storage=storage_config,
        work_dir=str(tmp_path / 'work'),
    )


@pytest.fixture
def pitr_config():
    return PitrConfig(
        source=ManagedInstanceRef('sub-1', 'rg-prod', 'mi-prod'),
        source_database='frobelworkscheduler',
        target=ManagedInstanceRef('sub-1', 'rg-test', 'mi-test'),
        target_database='frobelworkscheduler_test',
    )
