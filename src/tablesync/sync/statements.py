"""
Typed statement builder.

Derives SELECT/INSERT/UPDATE/DELETE command templates from a snapshot's
explicit column schema. Templates bind row values as parameters (never
string concatenation); binding a template to a row yields a fresh Command
for that single statement.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..core.commands import (
    DEFAULT_TIMEOUT_SECONDS,
    Command,
    CommandKind,
    ParameterDirection,
)
from ..core.exceptions import ValidationError
from ..core.models import Column, Row, RowState, TabularSnapshot
from ..core.utils import is_valid_identifier


logger = logging.getLogger(__name__)


class SourceVersion(str, Enum):
    """Which copy of a row's values feeds a parameter."""
    CURRENT = "current"
    ORIGINAL = "original"


class StatementKind(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# Statement used to apply each pending row state
STATE_STATEMENTS = {
    RowState.ADDED: StatementKind.INSERT,
    RowState.MODIFIED: StatementKind.UPDATE,
    RowState.DELETED: StatementKind.DELETE,
}


@dataclass
class ParameterBinding:
    """
    Maps a command parameter to a snapshot column.

    Attributes:
        name: Parameter name
        source_column: Column supplying (or receiving) the value
        source_version: Current or original row values
        direction: Parameter direction; outputs are merged back into the row
        data_type: Expected value type
    """
    name: str
    source_column: str
    source_version: SourceVersion = SourceVersion.CURRENT
    direction: ParameterDirection = ParameterDirection.IN
    data_type: Optional[type] = None


@dataclass
class CommandTemplate:
    """A parameterized statement that can be bound to any row of a table."""
    text: str
    kind: CommandKind = CommandKind.TEXT
    bindings: List[ParameterBinding] = field(default_factory=list)
    timeout: int = DEFAULT_TIMEOUT_SECONDS

    def bind(self, row: Row) -> Command:
        """Create the Command for one row."""
        command = Command(text=self.text, kind=self.kind, timeout=self.timeout)
        for binding in self.bindings:
            value = None
            if binding.direction in (ParameterDirection.IN, ParameterDirection.INOUT):
                source = row.original if binding.source_version == SourceVersion.ORIGINAL else row.values
                value = source.get(binding.source_column)
            command.add_parameter(
                binding.name,
                value=value,
                data_type=binding.data_type,
                direction=binding.direction,
            )
        return command

    def output_bindings(self) -> List[ParameterBinding]:
        return [
            b for b in self.bindings
            if b.direction in (ParameterDirection.OUT, ParameterDirection.INOUT)
        ]

    def with_timeout(self, timeout: int) -> "CommandTemplate":
        """Copy of this template with another statement timeout."""
        return dataclasses.replace(self, bindings=list(self.bindings), timeout=timeout)


@dataclass
class StatementSet:
    """
    Command templates for one table, any of which may be left unset.

    Unset templates are derived from the snapshot schema when needed.
    """
    select: Optional[CommandTemplate] = None
    insert: Optional[CommandTemplate] = None
    update: Optional[CommandTemplate] = None
    delete: Optional[CommandTemplate] = None

    def get(self, kind: StatementKind) -> Optional[CommandTemplate]:
        return getattr(self, kind.value)

    def for_state(self, state: RowState) -> Optional[CommandTemplate]:
        return self.get(STATE_STATEMENTS[state])

    def with_timeout(self, timeout: int) -> "StatementSet":
        """Copy with every present template's timeout overridden."""
        return StatementSet(**{
            kind.value: (template.with_timeout(timeout) if template else None)
            for kind, template in ((k, self.get(k)) for k in StatementKind)
        })


class Dialect:
    """SQL spelling differences between stores."""

    name = "ansi"
    placeholder = "?"

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    def table_name(self, snapshot: TabularSnapshot) -> str:
        if snapshot.schema:
            return f"{self.quote(snapshot.schema)}.{self.quote(snapshot.name)}"
        return self.quote(snapshot.name)

    def identity_fetch(self) -> Optional[str]:
        """
        Trailing statement selecting the identity generated in this batch.

        None when the driver reports the generated value itself.
        """
        return None


class SqlServerDialect(Dialect):
    name = "sqlserver"

    def quote(self, identifier: str) -> str:
        return f"[{identifier}]"

    def identity_fetch(self) -> Optional[str]:
        return "SELECT SCOPE_IDENTITY();"


class SqliteDialect(Dialect):
    # The generated rowid comes back as cursor.lastrowid
    name = "sqlite"


DIALECTS: Dict[str, Dialect] = {
    "sqlserver": SqlServerDialect(),
    "sqlite": SqliteDialect(),
}


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValueError(f"Unknown SQL dialect: {name!r}")


class StatementBuilder:
    """
    Builds command templates for one snapshot's table.

    Delete and Update locate rows by the key columns' original values. No
    row-version column is compared: the last writer wins on the key.
    """

    IDENTITY_PARAMETER = "IdentityValue"

    def __init__(self, snapshot: TabularSnapshot, dialect: Dialect):
        snapshot.validate()
        for name in [snapshot.name, snapshot.schema] + [c.name for c in snapshot.columns]:
            if name is not None and not is_valid_identifier(name):
                raise ValidationError(f"Invalid SQL identifier: {name!r}")
        self.snapshot = snapshot
        self.dialect = dialect
        self.table = dialect.table_name(snapshot)
        self.keys = snapshot.key_columns()

    def column_list(self, columns: Sequence[Column]) -> str:
        return ", ".join(self.dialect.quote(c.name) for c in columns)

    def select(self, where: Optional[str] = None, parameters: Sequence[Any] = ()) -> Command:
        """
        SELECT of every snapshot column.

        ``where`` is a caller-written predicate using '?' placeholders for
        ``parameters``. Only the values are bound; the predicate text is
        trusted and inserted as written.
        """
        text = f"SELECT {self.column_list(self.snapshot.columns)} FROM {self.table}"
        if where:
            text += f" WHERE {where}"
        command = Command(text=text)
        for index, value in enumerate(parameters):
            command.add_parameter(f"p{index}", value=value)
        return command

    def select_template(self) -> CommandTemplate:
        return CommandTemplate(text=self.select().text)

    def insert(self) -> CommandTemplate:
        insertable = [c for c in self.snapshot.columns if not c.is_auto_generated]
        if insertable:
            placeholders = ", ".join(self.dialect.placeholder for _ in insertable)
            text = (
                f"INSERT INTO {self.table} ({self.column_list(insertable)}) "
                f"VALUES ({placeholders});"
            )
        else:
            text = f"INSERT INTO {self.table} DEFAULT VALUES;"

        bindings = [
            ParameterBinding(name=c.name, source_column=c.name, data_type=c.data_type)
            for c in insertable
        ]

        identity = self._identity_column()
        if identity is not None:
            fetch = self.dialect.identity_fetch()
            if fetch:
                text = f"{text} {fetch}"
            bindings.append(ParameterBinding(
                name=self.IDENTITY_PARAMETER,
                source_column=identity.name,
                direction=ParameterDirection.OUT,
                data_type=identity.data_type,
            ))
        return CommandTemplate(text=text, bindings=bindings)

    def update(self) -> Optional[CommandTemplate]:
        """UPDATE of every non-key column; None when there is nothing to set."""
        key_names = {c.name for c in self.keys}
        settable = [
            c for c in self.snapshot.columns
            if c.name not in key_names and not c.is_auto_generated
        ]
        if not settable:
            return None

        assignments = ", ".join(
            f"{self.dialect.quote(c.name)} = {self.dialect.placeholder}" for c in settable
        )
        text = f"UPDATE {self.table} SET {assignments} WHERE {self._key_predicate()};"
        bindings = [
            ParameterBinding(name=c.name, source_column=c.name, data_type=c.data_type)
            for c in settable
        ]
        bindings.extend(self._key_bindings())
        return CommandTemplate(text=text, bindings=bindings)

    def delete(self) -> CommandTemplate:
        text = f"DELETE FROM {self.table} WHERE {self._key_predicate()};"
        return CommandTemplate(text=text, bindings=self._key_bindings())

    def derive(self, supplied: Optional[StatementSet] = None) -> StatementSet:
        """Fill in every template the caller did not supply."""
        supplied = supplied or StatementSet()
        return StatementSet(
            select=supplied.select or self.select_template(),
            insert=supplied.insert or self.insert(),
            update=supplied.update or self.update(),
            delete=supplied.delete or self.delete(),
        )

    def _identity_column(self) -> Optional[Column]:
        """The auto-generated primary key, if any; other generated columns keep store defaults."""
        keyed = [c for c in self.snapshot.auto_generated_columns() if c.is_primary_key]
        return keyed[0] if keyed else None

    def _key_predicate(self) -> str:
        return " AND ".join(
            f"{self.dialect.quote(c.name)} = {self.dialect.placeholder}" for c in self.keys
        )

    def _key_bindings(self) -> List[ParameterBinding]:
        return [
            ParameterBinding(
                name=f"Original_{c.name}",
                source_column=c.name,
                source_version=SourceVersion.ORIGINAL,
                data_type=c.data_type,
            )
            for c in self.keys
        ]
