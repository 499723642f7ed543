"""
Configuration loader for tablesync.

Values come from built-in defaults, an optional YAML file and TABLESYNC_*
environment variables (loaded from a .env file when present), in
increasing order of precedence.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from dotenv import load_dotenv

try:
    import yaml
except ImportError:
    yaml = None

from ..core.exceptions import ConfigError, ValidationError
from ..core.models import TableSchema


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "store": {
        "backend": "sqlserver",
        "pool_size": 4,
        "sqlserver": {
            "host": "localhost",
            "port": 1433,
            "database": "master",
            "user": "sa",
            "driver": "ODBC Driver 18 for SQL Server",
            "schema": "dbo",
            "trust_server_certificate": True,
        },
        "sqlite": {
            "path": "local/tablesync.db",
        },
    },
    "sync": {
        "max_attempts": 3,
        "timeout_seconds": 30,
        "rollback_all_on_error": False,
        "keep_connection_open": False,
        "retry": {
            "initial_delay_ms": 250,
            "max_delay_ms": 1000,
            "backoff_multiplier": 2.0,
            "jitter": True,
        },
    },
    "tables": [],
}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Environment variable -> (dotted config key, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    "TABLESYNC_BACKEND": ("store.backend", str),
    "TABLESYNC_POOL_SIZE": ("store.pool_size", int),
    "TABLESYNC_SQLSERVER_CONN_STR": ("store.sqlserver.connection_string", str),
    "TABLESYNC_SQLSERVER_HOST": ("store.sqlserver.host", str),
    "TABLESYNC_SQLSERVER_PORT": ("store.sqlserver.port", int),
    "TABLESYNC_SQLSERVER_DATABASE": ("store.sqlserver.database", str),
    "TABLESYNC_SQLSERVER_USER": ("store.sqlserver.user", str),
    "TABLESYNC_SQLSERVER_PASSWORD": ("store.sqlserver.password", str),
    "TABLESYNC_SQLSERVER_DRIVER": ("store.sqlserver.driver", str),
    "TABLESYNC_SQLSERVER_SCHEMA": ("store.sqlserver.schema", str),
    "TABLESYNC_SQLITE_PATH": ("store.sqlite.path", str),
    "TABLESYNC_MAX_ATTEMPTS": ("sync.max_attempts", int),
    "TABLESYNC_TIMEOUT": ("sync.timeout_seconds", int),
    "TABLESYNC_ROLLBACK_ALL": ("sync.rollback_all_on_error", _parse_bool),
}


class SyncConfig:
    """
    Configuration for tablesync.

    Loads and validates a YAML configuration file and applies environment
    overrides.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        env: Optional[Dict[str, str]] = None,
        use_dotenv: bool = True,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
            env: Environment mapping to read overrides from (defaults to os.environ)
            use_dotenv: Load a .env file into the environment first
        """
        if use_dotenv and env is None:
            # Existing environment variables take precedence over .env
            load_dotenv(override=False)

        self.config_path = Path(config_path) if config_path else None
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        if self.config_path:
            _merge(self.config, self._load_config())
        self._apply_env_overrides(os.environ if env is None else env)
        self._validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping")
        return config

    def _apply_env_overrides(self, env: Dict[str, str]) -> None:
        """Apply environment variable overrides to loaded config."""
        for name, (key, parser) in ENV_OVERRIDES.items():
            raw = env.get(name)
            if raw is None or raw == "":
                continue
            try:
                value = parser(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {name}: {e}") from e
            self.set(key, value)
            logger.debug(f"Config override from {name}: {key}")

        # Shared SA password variable used by the local SQL Server container
        if not self.get("store.sqlserver.password") and env.get("MSSQL_SA_PASSWORD"):
            self.set("store.sqlserver.password", env["MSSQL_SA_PASSWORD"])

    def _validate(self) -> None:
        backend = str(self.get("store.backend", "")).lower()
        if backend not in ("sqlserver", "sqlite"):
            raise ConfigError(
                f"Unknown store.backend '{backend}'. Supported: 'sqlserver', 'sqlite'"
            )
        self.set("store.backend", backend)

        self._require("store.pool_size", int, lambda v: v >= 1, "must be at least 1")
        self._require("store.sqlserver.port", int, lambda v: 0 < v < 65536, "must be a TCP port")
        self._require("sync.max_attempts", int, lambda v: v >= 1, "must be at least 1")
        self._require("sync.timeout_seconds", int, lambda v: v >= 0, "must not be negative")
        self._require("sync.retry.initial_delay_ms", (int, float), lambda v: v >= 0, "must not be negative")
        self._require("sync.retry.max_delay_ms", (int, float), lambda v: v >= 0, "must not be negative")
        self._require("sync.retry.backoff_multiplier", (int, float), lambda v: v >= 1, "must be at least 1")

        if not isinstance(self.config.get("tables") or [], list):
            raise ConfigError("'tables' must be a list of table declarations")

    def _require(self, key: str, types, check: Callable[[Any], bool], message: str) -> None:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, types) or not check(value):
            raise ConfigError(f"Invalid value for {key}: {value!r} ({message})")

    def get_store_config(self) -> Dict[str, Any]:
        """Get store configuration."""
        return self.config.get("store", {})

    def get_sync_config(self) -> Dict[str, Any]:
        """Get synchronization configuration."""
        return self.config.get("sync", {})

    def get_tables(self) -> List[TableSchema]:
        """Get the declared table schemas."""
        default_schema = None
        if self.get("store.backend") == "sqlserver":
            default_schema = self.get("store.sqlserver.schema")

        tables = []
        for declaration in self.config.get("tables") or []:
            if not isinstance(declaration, dict):
                raise ConfigError(f"Table declaration must be a mapping: {declaration!r}")
            declaration = dict(declaration)
            declaration.setdefault("schema", default_schema)
            try:
                tables.append(TableSchema.from_dict(declaration))
            except ValidationError as e:
                raise ConfigError(str(e)) from e
        return tables

    def get_table(self, name: str) -> TableSchema:
        """Get one declared table by name (optionally schema-qualified)."""
        for table in self.get_tables():
            if name in (table.name, f"{table.schema}.{table.name}"):
                return table
        raise ConfigError(f"Table '{name}' is not declared in the configuration")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key."""
        keys = key.split(".")
        target = self.config
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge ``override`` into ``base``."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def build_store(config: SyncConfig):
    """Create the configured RelationalStore."""
    from ..store import create_store

    store_config = config.get_store_config()
    backend = store_config["backend"]
    if backend == "sqlite":
        return create_store(
            "sqlite",
            pool_size=store_config["pool_size"],
            db_path=config.get("store.sqlite.path"),
        )

    sqlserver = store_config.get("sqlserver", {})
    return create_store(
        "sqlserver",
        pool_size=store_config["pool_size"],
        connection_string=sqlserver.get("connection_string"),
        host=sqlserver.get("host", "localhost"),
        port=sqlserver.get("port", 1433),
        database=sqlserver.get("database", "master"),
        username=sqlserver.get("user"),
        password=sqlserver.get("password"),
        driver=sqlserver.get("driver", "ODBC Driver 18 for SQL Server"),
        trust_server_certificate=bool(sqlserver.get("trust_server_certificate", True)),
    )


def build_retry_policy(config: SyncConfig):
    """Create the configured RetryPolicy."""
    from ..sync.executor import RetryPolicy

    return RetryPolicy(
        max_attempts=config.get("sync.max_attempts"),
        initial_delay_ms=float(config.get("sync.retry.initial_delay_ms")),
        max_delay_ms=float(config.get("sync.retry.max_delay_ms")),
        backoff_multiplier=float(config.get("sync.retry.backoff_multiplier")),
        jitter=bool(config.get("sync.retry.jitter", True)),
    )


def build_synchronizer(config: SyncConfig, store):
    """Create a ChangeSetSynchronizer using the configured retry and connection settings."""
    from ..sync.synchronizer import ChangeSetSynchronizer

    return ChangeSetSynchronizer(
        store,
        retry_policy=build_retry_policy(config),
        keep_connection_open=bool(config.get("sync.keep_connection_open", False)),
    )
