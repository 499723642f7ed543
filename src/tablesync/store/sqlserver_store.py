"""
SQL Server-backed relational store.

This is the default store backend. Connections are made through pyodbc
and kept in the store's connection pool.
"""

import logging
from typing import Any, List, Optional, Tuple

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.commands import Command, CommandKind, ExecutionResult, ParameterDirection
from ..core.exceptions import ValidationError
from ..core.models import IsolationLevel
from ..core.store import ErrorKind, RelationalStore
from ..core.utils import split_qualified_name


logger = logging.getLogger(__name__)

# SQLSTATEs for timeouts (the SqlClient -2 "timeout expired" error)
TIMEOUT_SQLSTATES = {"HYT00", "HYT01"}

# SQLSTATEs for statements that can never succeed as written
STATEMENT_SQLSTATES = {"07001", "07002", "HY004", "HY009", "HY010", "HY090"}

# Deadlock victim: the server has already rolled back the transaction
DEADLOCK_SQLSTATES = {"40001"}


def build_connection_string(
    host: str = "localhost",
    port: int = 1433,
    database: str = "master",
    username: Optional[str] = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    trust_server_certificate: bool = True,
) -> str:
    """
    Build an ODBC connection string from discrete settings.

    Uses SQL authentication when a username is given, Windows integrated
    authentication otherwise.
    """
    trust_cert = "yes" if trust_server_certificate else "no"
    parts = [
        f"Driver={{{driver}}}",
        f"Server={host},{port}",
        f"Database={database}",
    ]
    if username:
        parts.append(f"UID={username}")
        parts.append(f"PWD={password or ''}")
    else:
        parts.append("Trusted_Connection=yes")
    parts.append(f"TrustServerCertificate={trust_cert}")
    return ";".join(parts)


class SqlServerStore(RelationalStore):
    """
    SQL Server implementation of the relational store.

    Features:
    - Pooled pyodbc connections, autocommit outside transactions
    - Per-statement query timeout (connection.timeout)
    - Stored procedure calls with return value and output parameters
    - SQLSTATE-based classification of timeouts and connectivity failures
    """

    dialect = "sqlserver"

    def __init__(
        self,
        connection_string: Optional[str] = None,
        host: str = "localhost",
        port: int = 1433,
        database: str = "master",
        username: Optional[str] = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        trust_server_certificate: bool = True,
        login_timeout: int = 15,
        pool_size: int = 4,
        checkout_timeout: Optional[float] = None,
    ):
        """
        Initialize the SQL Server store.

        Args:
            connection_string: Full ODBC connection string (if provided, other params ignored)
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username (None for integrated security)
            password: Database password
            driver: ODBC driver name
            trust_server_certificate: Whether to trust self-signed certificates (for local Docker)
            login_timeout: Seconds to wait when opening a connection
            pool_size: Maximum number of pooled connections
            checkout_timeout: Seconds to wait for a free pooled connection
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerStore. "
                "Install with: pip install pyodbc"
            )

        if connection_string:
            self.connection_string = connection_string
        else:
            self.connection_string = build_connection_string(
                host=host,
                port=port,
                database=database,
                username=username,
                password=password,
                driver=driver,
                trust_server_certificate=trust_server_certificate,
            )
        self.login_timeout = login_timeout
        super().__init__(pool_size=pool_size, checkout_timeout=checkout_timeout)

    def _connect(self):
        conn = pyodbc.connect(self.connection_string, autocommit=True, timeout=self.login_timeout)
        logger.debug("Connected to SQL Server")
        return conn

    def _disconnect(self, conn) -> None:
        conn.close()

    def _begin(self, conn, isolation_level: IsolationLevel) -> None:
        cursor = conn.cursor()
        try:
            cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {isolation_level.value}")
        finally:
            cursor.close()
        conn.autocommit = False

    def _commit(self, conn) -> None:
        conn.commit()

    def _rollback(self, conn) -> None:
        conn.rollback()

    def _end(self, conn) -> None:
        conn.autocommit = True

    def _transaction_lost(self, conn, error) -> bool:
        if error.sqlstate in DEADLOCK_SQLSTATES:
            return True
        # XACT_STATE(): 1 active, -1 doomed, 0 none
        cursor = conn.cursor()
        try:
            cursor.execute("SELECT XACT_STATE()")
            row = cursor.fetchone()
        except pyodbc.Error as e:
            logger.warning(f"Could not read transaction state: {e}")
            return True
        finally:
            cursor.close()
        return row is None or row[0] != 1

    def _execute_on(self, conn, command: Command) -> ExecutionResult:
        conn.timeout = max(int(command.timeout or 0), 0)

        if command.kind == CommandKind.STORED_PROCEDURE:
            sql, params = self._procedure_batch(command)
        else:
            sql, params = command.text, command.input_values()

        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            rows_affected = cursor.rowcount
            result_sets = self._collect_result_sets(cursor)
        finally:
            cursor.close()

        result = ExecutionResult(rows_affected=rows_affected)
        outputs = command.output_parameters()

        if command.kind == CommandKind.STORED_PROCEDURE:
            # Trailing set: return value followed by output parameters
            trailing = result_sets.pop() if result_sets else ([], [()])
            values = trailing[1][0] if trailing[1] else ()
            if values:
                result.return_value = values[0]
                for parameter in command.parameters:
                    if parameter.direction == ParameterDirection.RETURN_VALUE:
                        parameter.value = values[0]
                for parameter, value in zip(outputs, values[1:]):
                    parameter.value = value
        elif outputs and result_sets:
            # Trailing SELECT of the batch feeds the output parameters
            _, rows = result_sets.pop()
            if rows:
                for parameter, value in zip(outputs, rows[0]):
                    parameter.value = value

        if result_sets:
            result.columns, result.rows = result_sets[0]
        result.outputs = {p.name: p.value for p in outputs}
        return result

    def _collect_result_sets(self, cursor) -> List[Tuple[List[str], List[tuple]]]:
        """Read every result set the batch produced."""
        result_sets = []
        while True:
            if cursor.description:
                columns = [d[0] for d in cursor.description]
                rows = [tuple(row) for row in cursor.fetchall()]
                result_sets.append((columns, rows))
            if not cursor.nextset():
                break
        return result_sets

    def _procedure_batch(self, command: Command) -> Tuple[str, Tuple[Any, ...]]:
        """
        Wrap a stored procedure call in a batch that returns its return value.

        Output parameters are captured through SQL_VARIANT variables and
        selected after the call together with the return value.
        """
        try:
            parts = split_qualified_name(command.text)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        procedure = ".".join(f"[{part}]" for part in parts)

        declarations = ["SET NOCOUNT ON;", "DECLARE @return_value INT;"]
        arguments = []
        selects = ["@return_value"]
        # Placeholders in the declarations precede those in the EXEC arguments
        declaration_params = []
        argument_params = []
        for index, parameter in enumerate(command.parameters):
            if parameter.direction == ParameterDirection.RETURN_VALUE:
                continue
            if parameter.direction == ParameterDirection.IN:
                arguments.append("?")
                argument_params.append(parameter.value)
                continue
            variable = f"@out_{index}"
            declarations.append(f"DECLARE {variable} SQL_VARIANT;")
            if parameter.direction == ParameterDirection.INOUT:
                declarations.append(f"SET {variable} = ?;")
                declaration_params.append(parameter.value)
            arguments.append(f"{variable} OUTPUT")
            selects.append(variable)

        sql = " ".join(declarations)
        sql += f" EXEC @return_value = {procedure} {', '.join(arguments)};"
        sql += f" SELECT {', '.join(selects)};"
        return sql, tuple(declaration_params + argument_params)

    def _sqlstate(self, error: BaseException) -> Optional[str]:
        args = getattr(error, "args", ())
        if args and isinstance(args[0], str) and len(args[0]) == 5:
            return args[0]
        return None

    def _message(self, error: BaseException) -> str:
        args = getattr(error, "args", ())
        if len(args) > 1 and isinstance(args[1], str):
            return args[1]
        return str(error)

    def _classify_driver_error(self, error: BaseException) -> ErrorKind:
        if not isinstance(error, pyodbc.Error):
            return ErrorKind.FATAL

        sqlstate = self._sqlstate(error) or ""
        if sqlstate in TIMEOUT_SQLSTATES or sqlstate in DEADLOCK_SQLSTATES or sqlstate.startswith("08"):
            return ErrorKind.TRANSIENT
        if sqlstate.startswith("42") or sqlstate in STATEMENT_SQLSTATES:
            return ErrorKind.BATCH_FATAL
        if isinstance(error, pyodbc.ProgrammingError) and not sqlstate.startswith("23"):
            return ErrorKind.BATCH_FATAL
        return ErrorKind.FATAL
