"""
Unit tests for command and result types.
"""

import pytest
from decimal import Decimal

from tablesync.core.commands import (
    Command,
    ExecutionResult,
    ParameterDirection,
    ScalarResult,
    ScalarStatus,
)


class TestCommand:
    """Tests for Command."""

    def test_input_values_skip_outputs(self):
        command = Command("INSERT INTO T (A, B) VALUES (?, ?)")
        command.add_parameter("A", 1)
        command.add_parameter("Id", direction=ParameterDirection.OUT)
        command.add_parameter("B", "x", direction=ParameterDirection.INOUT)

        assert command.input_values() == (1, "x")
        assert [p.name for p in command.output_parameters()] == ["Id", "B"]

    def test_get_parameter(self):
        command = Command("SELECT 1")
        parameter = command.add_parameter("p0", 5)

        assert command.get_parameter("p0") is parameter
        with pytest.raises(KeyError):
            command.get_parameter("missing")

    def test_describe_collapses_whitespace(self):
        command = Command("SELECT *\n    FROM   T")
        assert command.describe() == "SELECT * FROM T"

    def test_describe_truncates(self):
        command = Command("SELECT " + "x, " * 100)
        assert len(command.describe()) == 120
        assert command.describe().endswith("...")


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_records(self):
        result = ExecutionResult(columns=["Id", "Name"], rows=[(1, "Ada"), (2, "Grace")])

        assert result.has_result_set
        assert result.records() == [{"Id": 1, "Name": "Ada"}, {"Id": 2, "Name": "Grace"}]

    def test_no_result_set(self):
        result = ExecutionResult(rows_affected=3)

        assert not result.has_result_set
        assert result.records() == []


class TestScalarResult:
    """Tests for ScalarResult statuses."""

    def test_no_rows(self):
        result = ScalarResult.from_rows([], int)

        assert result.status == ScalarStatus.NO_ROWS
        assert not result.is_present
        assert result.value_or(-1) == -1

    def test_null(self):
        result = ScalarResult.from_rows([(None,)], int)

        assert result.status == ScalarStatus.NULL
        with pytest.raises(ValueError):
            result.unwrap()

    def test_present(self):
        result = ScalarResult.from_rows([(42,), (7,)], int)

        assert result.status == ScalarStatus.PRESENT
        assert result.unwrap() == 42

    def test_lossless_conversion(self):
        result = ScalarResult.from_rows([(Decimal("3"),)], int)

        assert result.is_present
        assert result.value == 3
        assert isinstance(result.value, int)

    def test_lossy_conversion_is_mismatch(self):
        result = ScalarResult.from_rows([(Decimal("3.5"),)], int)

        assert result.status == ScalarStatus.TYPE_MISMATCH
        assert result.value == Decimal("3.5")
        assert result.error

    def test_unconvertible_is_mismatch(self):
        result = ScalarResult.from_rows([("abc",)], int)

        assert result.status == ScalarStatus.TYPE_MISMATCH
        assert "ValueError" in result.error
        assert result.value_or(0) == 0

    def test_untyped_returns_raw_value(self):
        assert ScalarResult.from_rows([("abc",)]).unwrap() == "abc"
