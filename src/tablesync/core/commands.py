"""
Command, parameter and result types exchanged with a relational store.

Commands are ephemeral: one is created per statement and never shared
between threads or reused for another statement.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


DEFAULT_TIMEOUT_SECONDS = 30


class CommandKind(str, Enum):
    """How the command text is interpreted."""
    TEXT = "text"
    STORED_PROCEDURE = "stored_procedure"


class ParameterDirection(str, Enum):
    """Direction of a command parameter."""
    IN = "in"
    OUT = "out"
    INOUT = "inout"
    RETURN_VALUE = "return_value"


@dataclass
class Parameter:
    """
    A command parameter.

    Attributes:
        name: Parameter name (informational for qmark drivers; binding is positional)
        value: Bound value (set by the store for OUT/INOUT/RETURN_VALUE)
        data_type: Expected Python type of the value, if known
        direction: Parameter direction
    """
    name: str
    value: Any = None
    data_type: Optional[type] = None
    direction: ParameterDirection = ParameterDirection.IN

    @property
    def is_input(self) -> bool:
        return self.direction in (ParameterDirection.IN, ParameterDirection.INOUT)

    @property
    def is_output(self) -> bool:
        return self.direction in (ParameterDirection.OUT, ParameterDirection.INOUT)


@dataclass
class Command:
    """
    One statement to execute against a store.

    Attributes:
        text: SQL text, or the procedure name for stored procedures
        kind: Text or stored procedure
        parameters: Ordered parameters; inputs bind positionally to '?' markers
        timeout: Statement timeout in seconds (0 = no timeout)
    """
    text: str
    kind: CommandKind = CommandKind.TEXT
    parameters: List[Parameter] = field(default_factory=list)
    timeout: int = DEFAULT_TIMEOUT_SECONDS

    def add_parameter(
        self,
        name: str,
        value: Any = None,
        data_type: Optional[type] = None,
        direction: ParameterDirection = ParameterDirection.IN,
    ) -> Parameter:
        parameter = Parameter(name=name, value=value, data_type=data_type, direction=direction)
        self.parameters.append(parameter)
        return parameter

    def input_values(self) -> Tuple[Any, ...]:
        """Values of the input parameters, in binding order."""
        return tuple(p.value for p in self.parameters if p.is_input)

    def output_parameters(self) -> List[Parameter]:
        return [p for p in self.parameters if p.is_output]

    def get_parameter(self, name: str) -> Parameter:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        raise KeyError(f"Command has no parameter '{name}'")

    def describe(self) -> str:
        """Short single-line description for logs."""
        text = " ".join(self.text.split())
        return text if len(text) <= 120 else text[:117] + "..."


@dataclass
class ExecutionResult:
    """
    Outcome of executing one command.

    Attributes:
        rows_affected: Rows affected by a write (-1 when the driver cannot tell)
        columns: Column names of the returned result set, if any
        rows: Rows of the returned result set, if any
        return_value: Stored procedure return value
        outputs: Output parameter values by parameter name
    """
    rows_affected: int = -1
    columns: Optional[List[str]] = None
    rows: Optional[List[Tuple[Any, ...]]] = None
    return_value: Optional[int] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_result_set(self) -> bool:
        return self.columns is not None

    def records(self) -> List[Dict[str, Any]]:
        """Result rows as dictionaries keyed by column name."""
        if not self.columns or not self.rows:
            return []
        return [dict(zip(self.columns, row)) for row in self.rows]


class ScalarStatus(str, Enum):
    """What a scalar query actually produced."""
    PRESENT = "present"
    NO_ROWS = "no_rows"
    NULL = "null"
    TYPE_MISMATCH = "type_mismatch"


@dataclass
class ScalarResult:
    """
    Typed result of a scalar query.

    Distinguishes "no rows", "NULL", "type mismatch" and "value present"
    instead of defaulting to a zero value.
    """
    status: ScalarStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def is_present(self) -> bool:
        return self.status == ScalarStatus.PRESENT

    def unwrap(self) -> Any:
        """Return the value, raising ValueError when it is not present."""
        if not self.is_present:
            raise ValueError(f"Scalar value not available: {self.status.value}"
                             + (f" ({self.error})" if self.error else ""))
        return self.value

    def value_or(self, default: Any) -> Any:
        return self.value if self.is_present else default

    @classmethod
    def from_rows(
        cls,
        rows: Optional[Sequence[Sequence[Any]]],
        expected_type: Optional[type] = None,
    ) -> "ScalarResult":
        """Build from a result set: first column of the first row."""
        if not rows:
            return cls(ScalarStatus.NO_ROWS)
        raw = rows[0][0]
        if raw is None:
            return cls(ScalarStatus.NULL)
        if expected_type is None or isinstance(raw, expected_type):
            return cls(ScalarStatus.PRESENT, raw)
        # Lossless numeric widening (e.g. Decimal('1') -> int 1) is accepted
        try:
            converted = expected_type(raw)
        except (TypeError, ValueError, ArithmeticError) as e:
            return cls(ScalarStatus.TYPE_MISMATCH, raw, f"{type(e).__name__}: {e}")
        if expected_type in (int, float) and converted != raw:
            return cls(
                ScalarStatus.TYPE_MISMATCH,
                raw,
                f"{type(raw).__name__} value {raw!r} is not a {expected_type.__name__}",
            )
        return cls(ScalarStatus.PRESENT, converted)
