"""
Unit tests for the typed statement builder.
"""

import pytest
from decimal import Decimal

from tablesync.core.commands import ParameterDirection
from tablesync.core.exceptions import ValidationError
from tablesync.core.models import Column, RowState, TabularSnapshot
from tablesync.sync.statements import (
    CommandTemplate,
    SourceVersion,
    StatementBuilder,
    StatementKind,
    StatementSet,
    get_dialect,
)


@pytest.fixture
def snapshot() -> TabularSnapshot:
    return TabularSnapshot(
        name="Employee",
        schema="dbo",
        columns=[
            Column("Id", int, is_primary_key=True, is_auto_generated=True),
            Column("Name", str),
            Column("Salary", Decimal),
        ],
    )


class TestSqlServerStatements:
    """Statements derived for the SQL Server dialect."""

    def test_select(self, snapshot):
        builder = StatementBuilder(snapshot, get_dialect("sqlserver"))
        command = builder.select("[Salary] > ?", [100])

        assert command.text == "SELECT [Id], [Name], [Salary] FROM [dbo].[Employee] WHERE [Salary] > ?"
        assert command.input_values() == (100,)

    def test_insert_fetches_identity(self, snapshot):
        template = StatementBuilder(snapshot, get_dialect("sqlserver")).insert()

        assert template.text == (
            "INSERT INTO [dbo].[Employee] ([Name], [Salary]) VALUES (?, ?); "
            "SELECT SCOPE_IDENTITY();"
        )
        identity = template.output_bindings()
        assert len(identity) == 1
        assert identity[0].name == "IdentityValue"
        assert identity[0].source_column == "Id"
        assert identity[0].direction == ParameterDirection.OUT

    def test_update_matches_original_key(self, snapshot):
        template = StatementBuilder(snapshot, get_dialect("sqlserver")).update()

        assert template.text == "UPDATE [dbo].[Employee] SET [Name] = ?, [Salary] = ? WHERE [Id] = ?;"
        key = template.bindings[-1]
        assert key.name == "Original_Id"
        assert key.source_version == SourceVersion.ORIGINAL

    def test_delete(self, snapshot):
        template = StatementBuilder(snapshot, get_dialect("sqlserver")).delete()

        assert template.text == "DELETE FROM [dbo].[Employee] WHERE [Id] = ?;"
        assert [b.name for b in template.bindings] == ["Original_Id"]


class TestSqliteStatements:
    """Statements derived for the SQLite dialect."""

    def test_insert_relies_on_lastrowid(self, snapshot):
        snapshot.schema = None
        template = StatementBuilder(snapshot, get_dialect("sqlite")).insert()

        assert template.text == 'INSERT INTO "Employee" ("Name", "Salary") VALUES (?, ?);'
        assert [b.name for b in template.output_bindings()] == ["IdentityValue"]

    def test_insert_default_values(self):
        snapshot = TabularSnapshot(
            name="Counter",
            columns=[Column("Id", int, is_primary_key=True, is_auto_generated=True)],
        )
        template = StatementBuilder(snapshot, get_dialect("sqlite")).insert()

        assert template.text == 'INSERT INTO "Counter" DEFAULT VALUES;'

    def test_composite_key(self):
        snapshot = TabularSnapshot(
            name="Membership",
            columns=[
                Column("UserId", int, is_primary_key=True),
                Column("GroupId", int, is_primary_key=True),
                Column("Role", str),
            ],
        )
        template = StatementBuilder(snapshot, get_dialect("sqlite")).delete()

        assert template.text == 'DELETE FROM "Membership" WHERE "UserId" = ? AND "GroupId" = ?;'

    def test_update_without_settable_columns(self):
        snapshot = TabularSnapshot(
            name="Tag",
            columns=[Column("Label", str, is_primary_key=True)],
        )

        assert StatementBuilder(snapshot, get_dialect("sqlite")).update() is None

    def test_generated_non_key_column_is_not_fetched(self):
        snapshot = TabularSnapshot(
            name="Item",
            columns=[
                Column("Code", str, is_primary_key=True),
                Column("Label", str),
                Column("CreatedAt", str, is_auto_generated=True),
            ],
        )
        template = StatementBuilder(snapshot, get_dialect("sqlite")).insert()

        assert template.text == 'INSERT INTO "Item" ("Code", "Label") VALUES (?, ?);'
        assert template.output_bindings() == []


class TestBinding:
    """Tests for binding templates to rows."""

    def test_update_binds_current_and_original_values(self, snapshot):
        row = snapshot.load_row({"Id": 5, "Name": "Ada", "Salary": 100})
        row["Name"] = "Ada L."
        row["Id"] = 6

        command = StatementBuilder(snapshot, get_dialect("sqlite")).update().bind(row)

        assert command.input_values() == ("Ada L.", Decimal("100"), 5)

    def test_each_bind_returns_fresh_command(self, snapshot):
        template = StatementBuilder(snapshot, get_dialect("sqlite")).delete()
        first = snapshot.load_row({"Id": 1, "Name": "A", "Salary": 1})
        second = snapshot.load_row({"Id": 2, "Name": "B", "Salary": 2})

        one = template.bind(first)
        two = template.bind(second)

        assert one is not two
        assert one.input_values() == (1,)
        assert two.input_values() == (2,)


class TestValidation:
    """Tests for snapshot and identifier validation."""

    def test_rejects_unsafe_identifier(self):
        snapshot = TabularSnapshot(
            name="Employee; DROP TABLE x",
            columns=[Column("Id", int, is_primary_key=True)],
        )

        with pytest.raises(ValidationError):
            StatementBuilder(snapshot, get_dialect("sqlite"))

    def test_rejects_snapshot_without_key(self):
        snapshot = TabularSnapshot(name="Log", columns=[Column("Message", str)])

        with pytest.raises(ValidationError):
            StatementBuilder(snapshot, get_dialect("sqlserver"))

    def test_unknown_dialect(self):
        with pytest.raises(ValueError):
            get_dialect("oracle")


class TestStatementSet:
    """Tests for StatementSet derivation and timeout overrides."""

    def test_supplied_templates_win(self, snapshot):
        custom = CommandTemplate(text="EXEC dbo.InsertEmployee ?, ?")
        derived = StatementBuilder(snapshot, get_dialect("sqlserver")).derive(StatementSet(insert=custom))

        assert derived.insert is custom
        assert derived.update is not None
        assert derived.select.text.startswith("SELECT")

    def test_with_timeout_copies(self, snapshot):
        original = StatementBuilder(snapshot, get_dialect("sqlserver")).derive()
        overridden = original.with_timeout(5)

        assert overridden.delete.timeout == 5
        assert original.delete.timeout == 30
        assert overridden.delete is not original.delete

    def test_for_state(self, snapshot):
        statements = StatementBuilder(snapshot, get_dialect("sqlite")).derive()

        assert statements.for_state(RowState.ADDED) is statements.insert
        assert statements.for_state(RowState.DELETED) is statements.get(StatementKind.DELETE)
