"""
Integration tests for synchronizing against SQL Server.

These tests verify that:
1. Inserts merge SCOPE_IDENTITY() values back into the snapshot
2. Constraint violations produce partial success or a full rollback
3. Stored procedures return their return value and output parameters
"""

import os
import uuid
from decimal import Decimal

import pytest

from tablesync.core.commands import Command, Parameter, ParameterDirection
from tablesync.core.models import Column, RowState, SynchronizationResult, TableSchema
from tablesync.sync.query import QueryRunner
from tablesync.sync.synchronizer import ChangeSetSynchronizer


@pytest.fixture(scope="module")
def sqlserver_store():
    from tablesync.store.sqlserver_store import SqlServerStore

    store = SqlServerStore(
        host=os.environ.get("TABLESYNC_SQLSERVER_HOST", "localhost"),
        port=int(os.environ.get("TABLESYNC_SQLSERVER_PORT", "1433")),
        database=os.environ.get("TABLESYNC_SQLSERVER_DATABASE",
                                os.environ.get("MSSQL_DATABASE", "master")),
        username=os.environ.get("TABLESYNC_SQLSERVER_USER", "sa"),
        password=os.environ.get("TABLESYNC_SQLSERVER_PASSWORD",
                                os.environ.get("MSSQL_SA_PASSWORD")),
        driver=os.environ.get("TABLESYNC_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
    )
    yield store
    store.close()


@pytest.fixture
def employee_table(sqlserver_store):
    """A uniquely named Employee table in dbo, dropped after the test."""
    name = f"Employee_{uuid.uuid4().hex[:8]}"
    sqlserver_store.execute(Command(f"""
        CREATE TABLE [dbo].[{name}] (
            Id INT IDENTITY(1,1) PRIMARY KEY,
            Name NVARCHAR(100) NOT NULL UNIQUE,
            Salary DECIMAL(18, 2) NOT NULL
        )
    """))

    yield TableSchema(
        name=name,
        schema="dbo",
        columns=[
            Column("Id", int, is_primary_key=True, is_auto_generated=True),
            Column("Name", str, is_unique=True),
            Column("Salary", Decimal),
        ],
    )

    sqlserver_store.execute(Command(f"DROP TABLE [dbo].[{name}]"))


@pytest.mark.integration
class TestSqlServerSync:
    """Synchronization round trips against SQL Server."""

    def test_insert_assigns_identity(self, sqlserver_store, employee_table):
        snapshot = employee_table.new_snapshot()
        row = snapshot.new_row(Name="Ada", Salary=Decimal("50000"))

        result, message = ChangeSetSynchronizer(sqlserver_store).synchronize(
            snapshot, rollback_all_on_error=True, timeout=30
        )

        assert result == SynchronizationResult.SUCCESS, message
        assert row["Id"] == 1
        assert row.state == RowState.UNCHANGED

    def test_partial_success(self, sqlserver_store, employee_table):
        seed = employee_table.new_snapshot()
        seed.new_row(Name="Ada", Salary=Decimal("1"))
        ChangeSetSynchronizer(sqlserver_store).synchronize(seed)

        snapshot = QueryRunner(sqlserver_store).load_snapshot(employee_table)
        valid = snapshot.new_row(Name="Grace", Salary=Decimal("2"))
        invalid = snapshot.new_row(Name="Ada", Salary=Decimal("3"))

        result, message = ChangeSetSynchronizer(sqlserver_store).synchronize(snapshot)

        assert result == SynchronizationResult.PARTIAL_SUCCESS
        assert valid.state == RowState.UNCHANGED
        assert invalid.has_error
        assert "UNIQUE" in message

    def test_rollback_all(self, sqlserver_store, employee_table):
        snapshot = employee_table.new_snapshot()
        snapshot.new_row(Name="Ada", Salary=Decimal("1"))
        snapshot.new_row(Name="Ada", Salary=Decimal("2"))

        result, _ = ChangeSetSynchronizer(sqlserver_store).synchronize(snapshot, rollback_all_on_error=True)

        assert result == SynchronizationResult.FAILED
        count = QueryRunner(sqlserver_store).get_scalar(
            f"SELECT COUNT(*) FROM [dbo].[{employee_table.name}]", int
        )
        assert count.unwrap() == 0

    def test_update_and_delete(self, sqlserver_store, employee_table):
        seed = employee_table.new_snapshot()
        seed.new_row(Name="Ada", Salary=Decimal("1"))
        seed.new_row(Name="Grace", Salary=Decimal("2"))
        ChangeSetSynchronizer(sqlserver_store).synchronize(seed)

        snapshot = QueryRunner(sqlserver_store).load_snapshot(employee_table)
        snapshot.find(Name="Ada")["Salary"] = Decimal("10.50")
        snapshot.find(Name="Grace").delete()

        outcome = ChangeSetSynchronizer(sqlserver_store).synchronize(snapshot)

        assert outcome.result == SynchronizationResult.SUCCESS
        reloaded = QueryRunner(sqlserver_store).load_snapshot(employee_table)
        assert reloaded.to_records() == [{"Id": 1, "Name": "Ada", "Salary": Decimal("10.50")}]


@pytest.mark.integration
class TestStoredProcedures:
    """Stored procedure calls."""

    def test_return_value_and_outputs(self, sqlserver_store):
        name = f"AddOne_{uuid.uuid4().hex[:8]}"
        sqlserver_store.execute(Command(f"""
            CREATE PROCEDURE [dbo].[{name}] @Value INT, @Result INT OUTPUT
            AS
            BEGIN
                SET @Result = @Value + 1;
                RETURN 7;
            END
        """))
        try:
            result_param = Parameter("Result", direction=ParameterDirection.OUT)
            result = QueryRunner(sqlserver_store).call_procedure(
                f"dbo.{name}", Parameter("Value", 41), result_param
            )

            assert result.return_value == 7
            assert result_param.value == 42
        finally:
            sqlserver_store.execute(Command(f"DROP PROCEDURE [dbo].[{name}]"))
