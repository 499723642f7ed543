"""
Core data models for change-tracked tabular snapshots.

A TabularSnapshot is an in-memory copy of (part of) one table. Application
code edits its rows; the synchronizer applies the pending edits to the store
and reconciles the outcome back into the snapshot.
"""

import itertools
from dataclasses import dataclass, field
from dataclasses import replace as dataclass_replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import ValidationError


class RowState(str, Enum):
    """Lifecycle tag of a snapshot row."""
    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class SynchronizationResult(str, Enum):
    """Aggregate outcome of one synchronization call."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class IsolationLevel(str, Enum):
    """Transaction isolation levels, valued by their SQL spelling."""
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"
    SNAPSHOT = "SNAPSHOT"


# Type names accepted in table schema declarations
TYPE_NAMES: Dict[str, type] = {
    "int": int,
    "integer": int,
    "bigint": int,
    "str": str,
    "string": str,
    "text": str,
    "decimal": Decimal,
    "float": float,
    "real": float,
    "bool": bool,
    "bit": bool,
    "datetime": datetime,
    "date": date,
    "bytes": bytes,
}


@dataclass
class Column:
    """
    Description of one snapshot column.

    Attributes:
        name: Column name in the store
        data_type: Python type of the column values
        is_primary_key: Part of the primary key
        is_auto_generated: Value is assigned by the store on insert
        is_unique: Has a unique constraint (used as key when no primary key exists)
    """
    name: str
    data_type: type = str
    is_primary_key: bool = False
    is_auto_generated: bool = False
    is_unique: bool = False

    def coerce(self, value: Any) -> Any:
        """Convert a store-supplied value to this column's type when possible."""
        if value is None or isinstance(value, self.data_type):
            return value
        if self.data_type is bool and isinstance(value, int):
            return bool(value)
        if self.data_type is Decimal and isinstance(value, float):
            return Decimal(str(value))
        if self.data_type in (datetime, date) and isinstance(value, str):
            try:
                return self.data_type.fromisoformat(value)
            except ValueError:
                return value
        if self.data_type in (int, float, Decimal, str):
            try:
                return self.data_type(value)
            except (TypeError, ValueError, ArithmeticError):
                return value
        return value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        """Create from a schema declaration dictionary."""
        if "name" not in data:
            raise ValidationError(f"Column declaration without a name: {data}")
        type_name = str(data.get("type", "str")).lower()
        if type_name not in TYPE_NAMES:
            raise ValidationError(f"Unknown column type '{type_name}' for column {data['name']}")
        return cls(
            name=data["name"],
            data_type=TYPE_NAMES[type_name],
            is_primary_key=bool(data.get("primary_key", False)),
            is_auto_generated=bool(data.get("auto_generated", False)),
            is_unique=bool(data.get("unique", False)),
        )


class Row:
    """
    One change-tracked row of a TabularSnapshot.

    Holds current values plus the original values the row had when it was
    loaded (used to locate the row in the store). Edits move the row forward
    through its states; accept/reject finalize them.
    """

    def __init__(
        self,
        snapshot: "TabularSnapshot",
        values: Dict[str, Any],
        state: RowState = RowState.UNCHANGED,
    ):
        self._snapshot = snapshot
        self.values: Dict[str, Any] = {c.name: values.get(c.name) for c in snapshot.columns}
        self.original: Dict[str, Any] = (
            {} if state == RowState.ADDED else dict(self.values)
        )
        self.state = state
        self.error_message: Optional[str] = None

    def __getitem__(self, column: str) -> Any:
        self._snapshot.column(column)
        return self.values[column]

    def __setitem__(self, column: str, value: Any) -> None:
        self._snapshot.column(column)
        if self.state == RowState.DELETED:
            raise ValidationError("Cannot edit a row that is pending deletion")
        self.values[column] = value
        if self.state == RowState.UNCHANGED:
            self.state = RowState.MODIFIED

    def __repr__(self) -> str:
        return f"Row(state={self.state.value}, values={self.values!r})"

    @property
    def has_error(self) -> bool:
        return self.error_message is not None

    @property
    def is_detached(self) -> bool:
        """True once the row is no longer part of its snapshot."""
        return self not in self._snapshot.rows

    def update(self, **values: Any) -> None:
        """Set several column values at once."""
        for column, value in values.items():
            self[column] = value

    def delete(self) -> None:
        """
        Mark the row for deletion.

        An Added row was never stored, so it is simply dropped from the snapshot.
        """
        if self.state == RowState.ADDED:
            self._snapshot._remove(self)
            return
        self.state = RowState.DELETED

    def set_error(self, message: str) -> None:
        self.error_message = message

    def clear_error(self) -> None:
        self.error_message = None

    def merge(self, values: Dict[str, Any]) -> None:
        """Overwrite current values with store-assigned ones, keeping the state."""
        for name, value in values.items():
            self.values[name] = self._snapshot.column(name).coerce(value)

    def accept_changes(self) -> None:
        """Make the current values the new baseline."""
        if self.state == RowState.DELETED:
            self._snapshot._remove(self)
            return
        self.original = dict(self.values)
        self.state = RowState.UNCHANGED
        self.clear_error()

    def reject_changes(self) -> None:
        """Discard pending edits and restore the baseline."""
        if self.state == RowState.ADDED:
            self._snapshot._remove(self)
            return
        self.values = dict(self.original)
        self.state = RowState.UNCHANGED
        self.clear_error()


@dataclass
class TabularSnapshot:
    """
    In-memory, change-tracked collection of rows from one table.

    Attributes:
        name: Table name in the store
        columns: Ordered column descriptions
        schema: Optional database schema (e.g. 'dbo')
        rows: Ordered rows
    """
    name: str
    columns: List[Column]
    schema: Optional[str] = None
    rows: List[Row] = field(default_factory=list)

    def __post_init__(self):
        self._placeholders = itertools.count(-1, -1)
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ValidationError(f"Duplicate column names in snapshot {self.name}")

    def __iter__(self) -> Iterator[Row]:
        return iter(list(self.rows))

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def column(self, name: str) -> Column:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(f"Snapshot {self.name} has no column '{name}'")

    def key_columns(self) -> List[Column]:
        """Primary-key columns, or the unique columns when there is no primary key."""
        keys = [c for c in self.columns if c.is_primary_key]
        if not keys:
            keys = [c for c in self.columns if c.is_unique]
        return keys

    def auto_generated_columns(self) -> List[Column]:
        return [c for c in self.columns if c.is_auto_generated]

    def validate(self) -> None:
        """Fail fast when the snapshot cannot be synchronized."""
        if not self.name:
            raise ValidationError("Snapshot has no table name")
        if not self.columns:
            raise ValidationError(f"Snapshot {self.name} has no columns")
        if not self.key_columns():
            raise ValidationError(
                f"Snapshot {self.name} has no primary-key or unique column; "
                "rows cannot be located in the store"
            )

    def new_row(self, values: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Row:
        """
        Append a new row in the Added state.

        Auto-generated integer columns that were not given a value receive a
        negative placeholder (-1, -2, ...) until the store assigns the real value.
        """
        data = dict(values or {})
        data.update(kwargs)
        for column in self.columns:
            if column.is_auto_generated and column.data_type is int and data.get(column.name) is None:
                data[column.name] = next(self._placeholders)
        unknown = set(data) - {c.name for c in self.columns}
        if unknown:
            raise KeyError(f"Snapshot {self.name} has no column(s): {sorted(unknown)}")
        row = Row(self, data, RowState.ADDED)
        self.rows.append(row)
        return row

    def load_row(self, values: Dict[str, Any]) -> Row:
        """Append a row read from the store, in the Unchanged state."""
        coerced = {
            c.name: c.coerce(values.get(c.name)) for c in self.columns
        }
        row = Row(self, coerced, RowState.UNCHANGED)
        self.rows.append(row)
        return row

    def find(self, **key: Any) -> Optional[Row]:
        """Return the first row whose current values match all given columns."""
        for row in self.rows:
            if all(row.values.get(name) == value for name, value in key.items()):
                return row
        return None

    def get_changes(self) -> List[Row]:
        return [row for row in self.rows if row.state != RowState.UNCHANGED]

    def has_changes(self) -> bool:
        return any(row.state != RowState.UNCHANGED for row in self.rows)

    def get_errors(self) -> List[Row]:
        return [row for row in self.rows if row.has_error]

    def accept_changes(self) -> None:
        for row in list(self.rows):
            row.accept_changes()

    def reject_changes(self) -> None:
        for row in list(self.rows):
            row.reject_changes()

    def to_records(self) -> List[Dict[str, Any]]:
        """Current values of every row, in row order."""
        return [dict(row.values) for row in self.rows]

    def _remove(self, row: Row) -> None:
        if row in self.rows:
            self.rows.remove(row)


@dataclass
class TableSchema:
    """
    Explicit description of a table, supplied at configuration time.

    Attributes:
        name: Table name
        columns: Ordered column descriptions
        schema: Optional database schema
    """
    name: str
    columns: List[Column]
    schema: Optional[str] = None

    def new_snapshot(self) -> TabularSnapshot:
        """Create an empty snapshot with its own copy of the columns."""
        return TabularSnapshot(
            name=self.name,
            columns=[dataclass_replace(c) for c in self.columns],
            schema=self.schema,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableSchema":
        """Create from a configuration dictionary."""
        if not data.get("name"):
            raise ValidationError(f"Table declaration without a name: {data}")
        columns = [Column.from_dict(c) for c in data.get("columns") or []]
        if not columns:
            raise ValidationError(f"Table {data['name']} declares no columns")
        return cls(name=data["name"], columns=columns, schema=data.get("schema"))
