"""
Relational store implementations.

The default backend is SQL Server (SqlServerStore). SQLite (SqliteStore) is
intended for local development and tests.

To select backend, set the TABLESYNC_BACKEND environment variable:
    - TABLESYNC_BACKEND=sqlserver (default)
    - TABLESYNC_BACKEND=sqlite
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..core.store import RelationalStore


logger = logging.getLogger(__name__)


# Backends are resolved on demand
def _get_sqlite_store():
    from .sqlite_store import SqliteStore
    return SqliteStore


def _get_sqlserver_store():
    from .sqlserver_store import SqlServerStore
    return SqlServerStore


def create_store(
    backend: Optional[str] = None,
    pool_size: int = 4,
    # SQLite options
    db_path: Optional[Union[str, Path]] = None,
    # SQL Server options
    connection_string: Optional[str] = None,
    host: str = "localhost",
    port: int = 1433,
    database: str = "master",
    username: Optional[str] = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    trust_server_certificate: bool = True,
) -> RelationalStore:
    """
    Build a RelationalStore for the requested backend.

    Unset options fall back to TABLESYNC_* environment variables; the SQL
    Server password also falls back to MSSQL_SA_PASSWORD.

    Args:
        backend: Backend type ('sqlserver' or 'sqlite'). Defaults to TABLESYNC_BACKEND env var or 'sqlserver'.
        pool_size: Maximum number of pooled connections

        SQLite options:
            db_path: Database file (TABLESYNC_SQLITE_PATH, else local/tablesync.db)

        SQL Server options:
            connection_string: ODBC string that overrides the fields below
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password
            driver: ODBC driver name
            trust_server_certificate: Accept self-signed server certificates

    Returns:
        RelationalStore instance

    Raises:
        ValueError: If backend is not recognized
        ImportError: If pyodbc is missing for the sqlserver backend
    """
    if backend is None:
        backend = os.environ.get("TABLESYNC_BACKEND", "sqlserver")
    backend = backend.lower()

    if backend == "sqlite":
        SqliteStore = _get_sqlite_store()

        if db_path is None:
            db_path = os.environ.get("TABLESYNC_SQLITE_PATH", "local/tablesync.db")

        logger.debug(f"Creating SQLite store at {db_path}")
        return SqliteStore(db_path=db_path, pool_size=pool_size)

    elif backend == "sqlserver":
        SqlServerStore = _get_sqlserver_store()

        if password is None:
            password = os.environ.get("TABLESYNC_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")

        if connection_string is None:
            connection_string = os.environ.get("TABLESYNC_SQLSERVER_CONN_STR")

        logger.debug(f"Creating SQL Server store for {host},{port}/{database}")
        return SqlServerStore(
            connection_string=connection_string,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            driver=driver,
            trust_server_certificate=trust_server_certificate,
            pool_size=pool_size,
        )

    else:
        raise ValueError(
            f"Unknown backend: {backend}. "
            "Supported backends: 'sqlserver' (default), 'sqlite'"
        )


from .sqlite_store import SqliteStore
from .sqlserver_store import SqlServerStore

__all__ = ["SqliteStore", "SqlServerStore", "create_store"]
