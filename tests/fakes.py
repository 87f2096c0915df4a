"""Minimal fake DB-API driver for tests that must not depend on a real database."""
import threading
import types

from sqlaccess.utils.db_connector import Dialect


class Error(Exception):
    pass


class InterfaceError(Error):
    pass


class DatabaseError(Error):
    pass


class NotSupportedError(DatabaseError):
    pass


fake_driver = types.SimpleNamespace(
    Error=Error,
    InterfaceError=InterfaceError,
    DatabaseError=DatabaseError,
    NotSupportedError=NotSupportedError,
)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self.closed = False
        self._rows = []
        self._pending = None

    def execute(self, sql, args=None):
        self.conn.executed.append((sql, args))
        if self.conn.entered is not None:
            self.conn.entered.set()
        if self.conn.release is not None:
            self.conn.release.wait(5)
        if self.conn.execute_error is not None:
            raise self.conn.execute_error
        if self.conn.result_sets is not None:
            self._pending = list(self.conn.result_sets)
            self._load(self._pending.pop(0))
            return
        self.description = self.conn.description
        self._rows = list(self.conn.rows)
        self.rowcount = self.conn.rowcount

    def _load(self, result_set):
        self.description, rows = result_set
        self._rows = list(rows)
        self.rowcount = -1 if self.description else len(self._rows)

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def nextset(self):
        if self._pending is None:
            raise NotSupportedError("nextset not supported")
        if not self._pending:
            return None
        self._load(self._pending.pop(0))
        return True

    def close(self):
        self.closed = True
        self.conn.cursors_closed += 1


class FakeConnection:
    def __init__(self):
        self.autocommit = True
        self.closed = False
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.cursors_closed = 0
        self.description = None
        self.rows = []
        self.rowcount = 0
        self.execute_error = None
        # list of (description, rows); enables nextset
        self.result_sets = None
        self.close_error = None
        self.commit_error = None
        self.entered = None
        self.release = None

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        if self.commit_error is not None:
            raise self.commit_error
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class FakeDialect(Dialect):
    name = "fake"

    def __init__(self, paramstyle="qmark", connect_error=None, cursor_error=None):
        self.driver = fake_driver
        self.paramstyle = paramstyle
        self.connect_error = connect_error
        self.cursor_error = cursor_error
        self.connections = []

    def connect(self, connection_string):
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    def cursor(self, conn):
        if self.cursor_error is not None:
            raise self.cursor_error
        return conn.cursor()


def blocking_connection(conn):
    """Make every execute on conn wait until release is set."""
    conn.entered = threading.Event()
    conn.release = threading.Event()
    return conn
