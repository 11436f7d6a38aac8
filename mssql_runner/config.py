"""
Runner configuration, read from environment variables
"""

from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_SQL_DRIVER = 'ODBC Driver 18 for SQL Server'
DEFAULT_ENDPOINT_SUFFIX = 'blob.core.windows.net'

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off'}


class ConfigError(Exception):
    """Raised when required settings are missing or malformed"""


class _Reader:
    """Collects every missing or malformed variable so they can be reported at once"""

    def __init__(self, environ: Mapping[str, str]):
        self.environ = environ
        self.problems = []

    def required(self, name: str, fallback: Optional[str] = None) -> str:
        value = self.environ.get(name, '').strip()
        if not value and fallback:
            value = self.environ.get(fallback, '').strip()
        if not value:
            self.problems.append(f"missing {name}")
        return value

    def optional(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(name, '').strip()
        return value or default

    def integer(self, name: str, default: int, minimum: int = 0) -> int:
        raw = self.environ.get(name, '').strip()
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError:
            self.problems.append(f"{name} must be an integer, got {raw!r}")
            return default
        if value < minimum:
            self.problems.append(f"{name} must be >= {minimum}, got {value}")
        return value

    def number(self, name: str, default: float) -> float:
        raw = self.environ.get(name, '').strip()
        if not raw:
            return default
        try:
            return float(raw)
        except ValueError:
            self.problems.append(f"{name} must be a number, got {raw!r}")
            return default

    def flag(self, name: str, default: bool) -> bool:
        raw = self.environ.get(name, '').strip().lower()
        if not raw:
            return default
        if raw in _TRUE:
            return True
        if raw in _FALSE:
            return False
        self.problems.append(f"{name} must be a boolean, got {raw!r}")
        return default

    def done(self):
        if self.problems:
            raise ConfigError(', '.join(self.problems))


@dataclass(frozen=True)
class StorageConfig:
    account: str
    container: str
    connection_string: Optional[str] = None
    endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX

    @property
    def account_url(self) -> str:
        return f"https://{self.account}.{self.endpoint_suffix}"

    @property
    def container_url(self) -> str:
        return f"{self.account_url}/{self.container}"

    @classmethod
    def read(cls, reader: _Reader) -> 'StorageConfig':
        return cls(
            account=reader.required('STORAGE_ACCOUNT'),
            container=reader.required('STORAGE_CONTAINER'),
            connection_string=reader.optional('AZURE_STORAGE_CONNECTION_STRING'),
            endpoint_suffix=reader.optional('STORAGE_ENDPOINT_SUFFIX', DEFAULT_ENDPOINT_SUFFIX),
        )


@dataclass(frozen=True)
class SnapshotConfig:
    database: str
    developer: str
    storage: StorageConfig
    source_server: str
    driver: str = DEFAULT_SQL_DRIVER

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> 'SnapshotConfig':
        reader = _Reader(environ)
        config = cls(
            database=reader.required('DB_NAME'),
            developer=reader.required('DEV_USER'),
            storage=StorageConfig.read(reader),
            source_server=reader.required('SOURCE_SQL_SERVER'),
            driver=reader.optional('SQL_DRIVER', DEFAULT_SQL_DRIVER),
        )
        reader.done()
        return config


@dataclass(frozen=True)
class LocalRestoreConfig:
    database: str
    developer: str
    storage: StorageConfig
    work_dir: str
    server: str = 'localhost'
    username: Optional[str] = None
    password: Optional[str] = None
    restore_timeout: int = 1200
    driver: str = DEFAULT_SQL_DRIVER
    trust_server_certificate: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> 'LocalRestoreConfig':
        reader = _Reader(environ)
        username = reader.optional('LOCAL_SQL_USERNAME')
        password = reader.optional('LOCAL_SQL_PASSWORD')
        if bool(username) != bool(password):
            reader.problems.append('LOCAL_SQL_USERNAME and LOCAL_SQL_PASSWORD must be set together')
        config = cls(
            database=reader.required('DB_NAME'),
            developer=reader.required('DEV_USER'),
            storage=StorageConfig.read(reader),
            work_dir=reader.required('LOCAL_WORK_DIR'),
            server=reader.optional('LOCAL_SQL_SERVER', 'localhost'),
            username=username,
            password=password,
            restore_timeout=reader.integer('RESTORE_TIMEOUT_SECONDS', 1200, minimum=1),
            driver=reader.optional('SQL_DRIVER', DEFAULT_SQL_DRIVER),
            trust_server_certificate=reader.flag('LOCAL_SQL_TRUST_CERT', True),
        )
        reader.done()
        return config


@dataclass(frozen=True)
class ManagedInstanceRef:
    subscription_id: str
    resource_group: str
    instance_name: str

    @property
    def resource_id(self) -> str:
        return (f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
                f"/providers/Microsoft.Sql/managedInstances/{self.instance_name}")

    def database_id(self, database: str) -> str:
        return f"{self.resource_id}/databases/{database}"


@dataclass(frozen=True)
class PitrConfig:
    source: ManagedInstanceRef
    source_database: str
    target: ManagedInstanceRef
    target_database: str
    poll_interval: int = 15
    delete_timeout: int = 600
    cooldown: int = 180
    poll_timeout: int = 300
    restore_point_offset_minutes: int = 15
    metric_window_minutes: int = 2
    poll_backoff: float = 1.0
    poll_max_interval: int = 60
    forbidden_retry_budget: int = 40
    state_file: Optional[str] = None
    driver: str = DEFAULT_SQL_DRIVER

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> 'PitrConfig':
        reader = _Reader(environ)
        subscription = reader.required('AZURE_SUBSCRIPTION_ID')
        target_subscription = reader.optional('TARGET_SUBSCRIPTION_ID', subscription)
        config = cls(
            source=ManagedInstanceRef(
                subscription_id=subscription,
                resource_group=reader.required('SOURCE_RESOURCE_GROUP'),
                instance_name=reader.required('SOURCE_MANAGED_INSTANCE'),
            ),
            source_database=reader.required('SOURCE_DB_NAME', fallback='DB_NAME'),
            target=ManagedInstanceRef(
                subscription_id=target_subscription,
                resource_group=reader.required('TARGET_RESOURCE_GROUP'),
                instance_name=reader.required('TARGET_MANAGED_INSTANCE'),
            ),
            target_database=reader.required('TARGET_DB_NAME'),
            poll_interval=reader.integer('POLL_INTERVAL_SECONDS', 15, minimum=1),
            delete_timeout=reader.integer('DELETE_TIMEOUT_SECONDS', 600),
            cooldown=reader.integer('COOLDOWN_SECONDS', 180),
            poll_timeout=reader.integer('PITR_POLL_TIMEOUT_SECONDS', 300),
            restore_point_offset_minutes=reader.integer('RESTORE_POINT_OFFSET_MINUTES', 15),
            metric_window_minutes=reader.integer('METRIC_WINDOW_MINUTES', 2, minimum=1),
            poll_backoff=reader.number('POLL_BACKOFF_FACTOR', 1.0),
            poll_max_interval=reader.integer('POLL_MAX_INTERVAL_SECONDS', 60, minimum=1),
            forbidden_retry_budget=reader.integer('FORBIDDEN_RETRY_BUDGET', 40),
            state_file=reader.optional('PITR_STATE_FILE'),
            driver=reader.optional('SQL_DRIVER', DEFAULT_SQL_DRIVER),
        )
        if config.poll_backoff < 1.0:
            reader.problems.append('POLL_BACKOFF_FACTOR must be >= 1.0')
        reader.done()
        return config
