"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sqlite3
import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tablesync.core.commands import Command
from tablesync.core.models import Column, TableSchema
from tablesync.store.sqlite_store import SqliteStore
from tablesync.sync.executor import RetryPolicy


logger = logging.getLogger(__name__)


EMPLOYEE_DDL = """
    CREATE TABLE Employee (
        Id INTEGER PRIMARY KEY AUTOINCREMENT,
        Name TEXT NOT NULL UNIQUE,
        Salary NUMERIC NOT NULL CHECK (Salary >= 0)
    )
"""


# ============================================================================
# Environment detection
# ============================================================================

def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    password = os.environ.get("TABLESYNC_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")
    if not password:
        return False

    try:
        import pyodbc

        host = os.environ.get("TABLESYNC_SQLSERVER_HOST", "localhost")
        port = int(os.environ.get("TABLESYNC_SQLSERVER_PORT", "1433"))
        database = os.environ.get("TABLESYNC_SQLSERVER_DATABASE",
                                  os.environ.get("MSSQL_DATABASE", "master"))
        username = os.environ.get("TABLESYNC_SQLSERVER_USER", "sa")
        driver = os.environ.get("TABLESYNC_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server")

        conn_str = (
            f"Driver={{{driver}}};"
            f"Server={host},{port};"
            f"Database={database};"
            f"UID={username};"
            f"PWD={password};"
            f"TrustServerCertificate=yes"
        )

        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set MSSQL_SA_PASSWORD and ensure SQL Server is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Test stores
# ============================================================================

class FlakySqliteStore(SqliteStore):
    """
    SqliteStore that fails matching statements with a transient error.

    ``failures`` is how many matching executions fail before they start
    succeeding (-1 fails forever). ``executions`` counts every matching
    attempt; ``statements`` records the text of every executed command.
    """

    def __init__(self, db_path, failures: int = 0, match: str = "", error=None, **kwargs):
        super().__init__(db_path, **kwargs)
        self.failures = failures
        self.match = match
        self.error = error or sqlite3.OperationalError("database is locked")
        self.executions = 0
        self.statements = []
        self.transactions_begun = 0

    def _begin(self, conn, isolation_level):
        self.transactions_begun += 1
        super()._begin(conn, isolation_level)

    def _execute_on(self, conn, command: Command):
        self.statements.append(command.text)
        if self.match and self.match in command.text:
            self.executions += 1
            if self.failures != 0:
                if self.failures > 0:
                    self.failures -= 1
                raise self.error
        return super()._execute_on(conn, command)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db_path(tmp_path) -> Path:
    """Path of a fresh SQLite database containing an empty Employee table."""
    path = tmp_path / "tablesync.db"
    conn = sqlite3.connect(path)
    conn.execute(EMPLOYEE_DDL)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def sqlite_store(db_path):
    """SqliteStore over the Employee database."""
    store = SqliteStore(db_path)
    yield store
    store.close()


@pytest.fixture
def flaky_store_factory(db_path):
    """Factory for FlakySqliteStore instances over the Employee database."""
    stores = []

    def factory(**kwargs) -> FlakySqliteStore:
        store = FlakySqliteStore(db_path, **kwargs)
        stores.append(store)
        return store

    yield factory

    for store in stores:
        store.close()


@pytest.fixture
def employee_schema() -> TableSchema:
    """Employee table: auto-generated integer key, unique name, decimal salary."""
    return TableSchema(
        name="Employee",
        columns=[
            Column("Id", int, is_primary_key=True, is_auto_generated=True),
            Column("Name", str, is_unique=True),
            Column("Salary", Decimal),
        ],
    )


@pytest.fixture
def seed_employees(db_path):
    """Insert rows directly into the Employee table."""
    def seed(*rows):
        conn = sqlite3.connect(db_path)
        conn.executemany(
            "INSERT INTO Employee (Name, Salary) VALUES (?, ?)",
            [(name, salary) for name, salary in rows],
        )
        conn.commit()
        conn.close()
    return seed


@pytest.fixture
def read_employees(db_path):
    """Read the Employee table straight from the database file."""
    def read():
        conn = sqlite3.connect(db_path)
        try:
            return conn.execute("SELECT Id, Name, Salary FROM Employee ORDER BY Id").fetchall()
        finally:
            conn.close()
    return read


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, initial_delay_ms=0, max_delay_ms=0, jitter=False)
