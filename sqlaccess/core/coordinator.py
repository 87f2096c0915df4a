"""
Connection coordinator: one physical connection, at most one active transaction.
Commands are built per call, bound to the current connection/transaction, and released
before returning on every path. Use one coordinator per unit of work (request, job run).
"""
import asyncio
import functools
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import pandas as pd

from sqlaccess.core.bulk import BulkLoader, BulkOptions
from sqlaccess.core.commands import CommandType, build_command, render
from sqlaccess.core.parameters import DB_NULL, SqlParameters
from sqlaccess.utils.db_connector import Dialect, dialect_for
from sqlaccess.utils.errors import (
    ConfigurationError,
    InvalidStateError,
    SqlConnectionError,
    SqlDatabaseError,
)
from sqlaccess.utils.logger import get_logger

DEFAULT_TIMEOUT = 60

logger = get_logger("sqlaccess.coordinator")


class TransactionState(Enum):
    NONE = "none"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Transaction:
    state: TransactionState = TransactionState.ACTIVE


class ConnectionCoordinator:
    """Owns one connection and at most one transaction. Not safe for concurrent use.

    A second operation issued while one is running raises InvalidStateError
    instead of interleaving on the shared connection.
    """

    def __init__(
        self,
        connection_string: str,
        default_timeout: int = DEFAULT_TIMEOUT,
        db_type: str | None = None,
        dialect: Dialect | None = None,
        bulk_options: BulkOptions | None = None,
    ):
        if connection_string is None or not str(connection_string).strip():
            raise ConfigurationError("Connection string is not configured.")
        self._connection_string = connection_string
        self._dialect = dialect or dialect_for(connection_string, db_type)
        self._connection = None
        self._transaction: Transaction | None = None
        self._last_transaction: Transaction | None = None
        self._busy = threading.Lock()
        self._disposed = False
        self.default_timeout = default_timeout
        self.bulk_options = bulk_options

    def __enter__(self) -> "ConnectionCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"ConnectionCoordinator(dialect={self._dialect.name}, open={self.is_open}, transaction={self.transaction_state.value})"

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.state is TransactionState.ACTIVE

    @property
    def transaction_state(self) -> TransactionState:
        return self._transaction.state if self._transaction is not None else TransactionState.NONE

    @property
    def last_transaction_state(self) -> TransactionState:
        """State the most recent transaction ended in (NONE if there was none)."""
        return self._last_transaction.state if self._last_transaction is not None else TransactionState.NONE

    @contextmanager
    def _exclusive(self, operation: str):
        if self._disposed:
            raise InvalidStateError(f"{operation}: coordinator has been disposed.")
        if not self._busy.acquire(blocking=False):
            raise InvalidStateError(
                f"{operation}: coordinator is already running an operation; "
                "use one coordinator per concurrent unit of work."
            )
        try:
            yield
        finally:
            self._busy.release()

    # ------------------------------------------------------------------
    # connection
    # ------------------------------------------------------------------
    def open(self) -> None:
        """Open the connection if it is not open yet. Idempotent."""
        if self._disposed:
            raise InvalidStateError("open: coordinator has been disposed.")
        self._open()

    def close(self) -> None:
        """Close the connection if it is open. Idempotent."""
        self._close()

    def _open(self) -> None:
        if self._connection is not None:
            return
        try:
            self._connection = self._dialect.connect(self._connection_string)
        except Exception as exc:
            raise self._connection_error("Error opening the connection", exc) from exc
        logger.debug("Connection opened (%s)", self._dialect.name)

    def _close(self) -> None:
        if self._connection is None:
            return
        conn, self._connection = self._connection, None
        try:
            self._dialect.close(conn)
        except Exception as exc:
            raise self._connection_error("Error closing the connection", exc) from exc
        logger.debug("Connection closed (%s)", self._dialect.name)

    def _connection_error(self, message: str, exc: Exception) -> SqlConnectionError:
        if self._dialect.is_state_error(exc):
            reason = "invalid_state"
            message = f"{message}: invalid operation: {exc}"
        elif isinstance(exc, self._dialect.error_types()):
            reason = "driver"
            message = f"{message}: {exc}"
        else:
            reason = "unexpected"
            message = f"{message}: unexpected error: {exc}"
        logger.error(message)
        return SqlConnectionError(message, reason=reason)

    # ------------------------------------------------------------------
    # transactions
    # ------------------------------------------------------------------
    def begin_transaction(self) -> None:
        """Open the connection if needed and start a transaction."""
        with self._exclusive("begin_transaction"):
            if self.in_transaction:
                raise InvalidStateError("A transaction is already active on this coordinator.")
            self._open()
            try:
                self._dialect.begin(self._connection)
            except Exception as exc:
                raise self._connection_error("Error starting the transaction", exc) from exc
            self._transaction = Transaction()
            logger.info("Transaction started")

    def commit(self) -> None:
        """Commit the active transaction; no-op when there is none."""
        self._end_transaction("commit", TransactionState.COMMITTED, self._dialect.commit)

    def rollback(self) -> None:
        """Roll back the active transaction; no-op when there is none."""
        self._end_transaction("rollback", TransactionState.ROLLED_BACK, self._dialect.rollback)

    def _end_transaction(self, operation: str, final_state: TransactionState, action: Callable) -> None:
        match self.transaction_state:
            case TransactionState.ACTIVE:
                with self._exclusive(operation):
                    try:
                        action(self._connection)
                    except self._dialect.error_types() as exc:
                        raise self._database_error(f"Error ending the transaction ({final_state.value})", exc) from exc
                    self._finish_transaction(final_state)
                logger.info("Transaction %s", final_state.value.replace("_", " "))
            case _:
                logger.debug("%s: no active transaction", operation)

    def _finish_transaction(self, final_state: TransactionState) -> None:
        self._transaction.state = final_state
        self._last_transaction, self._transaction = self._transaction, None

    @contextmanager
    def transaction(self):
        """Begin; commit on success, roll back and re-raise on any exception."""
        self.begin_transaction()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def execute_statement(
        self,
        sql: str,
        command_type: CommandType = CommandType.TEXT,
        parameters: SqlParameters | None = None,
        timeout: int | None = None,
    ) -> int:
        """Run INSERT/UPDATE/DELETE (or a mutating procedure); return affected rows."""
        return self._run(sql, command_type, parameters, timeout, self._dialect.affected_rows)

    def execute_scalar(
        self,
        sql: str,
        command_type: CommandType = CommandType.TEXT,
        parameters: SqlParameters | None = None,
        timeout: int | None = None,
    ) -> Any:
        """First column of the first row, or DB_NULL if there is none (or it is NULL)."""
        return self._run(sql, command_type, parameters, timeout, _read_scalar)

    def execute_row_set(
        self,
        sql: str,
        command_type: CommandType = CommandType.TEXT,
        parameters: SqlParameters | None = None,
        timeout: int | None = None,
    ) -> pd.DataFrame:
        return self._run(sql, command_type, parameters, timeout, _read_frame)

    def execute_multi_row_set(
        self,
        sql: str,
        command_type: CommandType = CommandType.TEXT,
        parameters: SqlParameters | None = None,
        timeout: int | None = None,
    ) -> list[pd.DataFrame]:
        """Every result set the command returns, in server order."""
        return self._run(sql, command_type, parameters, timeout, self._read_frames)

    async def execute_statement_async(self, sql, command_type=CommandType.TEXT, parameters=None, timeout=None) -> int:
        return await self._in_executor(self.execute_statement, sql, command_type, parameters, timeout)

    async def execute_scalar_async(self, sql, command_type=CommandType.TEXT, parameters=None, timeout=None) -> Any:
        return await self._in_executor(self.execute_scalar, sql, command_type, parameters, timeout)

    async def execute_row_set_async(self, sql, command_type=CommandType.TEXT, parameters=None, timeout=None) -> pd.DataFrame:
        return await self._in_executor(self.execute_row_set, sql, command_type, parameters, timeout)

    async def execute_multi_row_set_async(self, sql, command_type=CommandType.TEXT, parameters=None, timeout=None) -> list[pd.DataFrame]:
        return await self._in_executor(self.execute_multi_row_set, sql, command_type, parameters, timeout)

    async def _in_executor(self, func: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _run(self, sql, command_type, parameters, timeout, read: Callable) -> Any:
        command = build_command(sql, command_type, parameters, timeout)
        with self._exclusive("execute"):
            self._open()
            rendered = render(command, self._dialect)
            effective_timeout = command.timeout if command.timeout is not None else self.default_timeout
            cursor = None
            try:
                cursor = self._dialect.cursor(self._connection)
                self._dialect.apply_timeout(self._connection, cursor, effective_timeout)
                if rendered.args is not None:
                    self._dialect.declare_types(cursor, rendered.parameters)
                self._dialect.execute(cursor, rendered.sql, rendered.args)
                return read(cursor)
            except self._dialect.error_types() as exc:
                raise self._database_error("Error executing command", exc) from exc
            finally:
                if cursor is not None:
                    self._dialect.close_cursor(cursor)

    def _database_error(self, message: str, exc: Exception) -> SqlDatabaseError:
        code = self._dialect.native_code(exc)
        if code is not None:
            message = f"{message} (SQL Error {code}): {exc}"
        else:
            message = f"{message}: {exc}"
        logger.error(message)
        return SqlDatabaseError(message, native_code=code)

    def _read_frames(self, cursor) -> list[pd.DataFrame]:
        frames = []
        while True:
            if cursor.description:
                frames.append(_read_frame(cursor))
            if not self._dialect.next_result_set(cursor):
                break
        return frames

    # ------------------------------------------------------------------
    # bulk load / scripts
    # ------------------------------------------------------------------
    def bulk_load(self, destination_table: str, rows, timeout: int | None = None, options: BulkOptions | None = None) -> int:
        """Insert many rows into destination_table, joining the active transaction if any.

        Experimental: see sqlaccess.core.bulk.
        """
        loader = BulkLoader(options if options is not None else self.bulk_options)
        frame = loader.validate(destination_table, rows)
        with self._exclusive("bulk_load"):
            self._open()
            effective_timeout = timeout if timeout is not None else self.default_timeout
            return loader.load(self._dialect, self._connection, destination_table.strip(), frame, effective_timeout)

    def execute_script(self, path: str | Path) -> int:
        """Run a ';'-separated SQL file statement by statement; return statements run."""
        with open(path, "r", encoding="utf-8") as f:
            sql = f.read()
        count = 0
        for stmt in sql.split(";"):
            stmt = stmt.strip()
            if stmt and not _is_comment_only(stmt):
                self.execute_statement(stmt)
                count += 1
        logger.info("Script %s: %d statements executed", Path(path).name, count)
        return count

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def dispose(self) -> None:
        """Release the transaction and connection together. Idempotent.

        A transaction still active here is a caller bug: it is logged and rolled back.
        """
        if self._disposed:
            return
        try:
            if self.in_transaction:
                logger.warning("Coordinator disposed with an active transaction; rolling back")
                try:
                    self._dialect.rollback(self._connection)
                except Exception as exc:
                    logger.error("Rollback during dispose failed: %s", exc)
                    self._transaction = None
                else:
                    self._finish_transaction(TransactionState.ROLLED_BACK)
            self._close()
        finally:
            self._disposed = True


def _is_comment_only(stmt: str) -> bool:
    return all(not line.strip() or line.strip().startswith("--") for line in stmt.splitlines())


def _read_scalar(cursor) -> Any:
    if not cursor.description:
        return DB_NULL
    row = cursor.fetchone()
    if row is None or row[0] is None:
        return DB_NULL
    return row[0]


def _read_frame(cursor) -> pd.DataFrame:
    columns = [d[0] for d in cursor.description]
    rows = [tuple(r) for r in cursor.fetchall()]
    return pd.DataFrame.from_records(rows, columns=columns)

