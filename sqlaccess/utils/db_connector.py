"""Database driver adapters - one dialect per supported driver.
Supports: SQL Server (pyodbc), PostgreSQL (psycopg2), DuckDB (file-based or in-memory).
The coordinator talks to drivers only through these dialects.
"""
import os

from sqlaccess.core.parameters import SqlParameter, SqlType
from sqlaccess.utils.errors import ConfigurationError

try:
    import pyodbc
    HAS_PYODBC = True
except ImportError:
    HAS_PYODBC = False

try:
    import psycopg2
    import psycopg2.extras
    HAS_PSYCOPG2 = True
except ImportError:
    HAS_PSYCOPG2 = False

try:
    import duckdb
    HAS_DUCKDB = True
except ImportError:
    HAS_DUCKDB = False


SQLSERVER_TYPES = ("sqlserver", "mssql")
POSTGRES_TYPES = ("postgresql", "postgres")
DUCKDB_TYPES = ("duckdb",)

# ODBC SQL type codes: (code, default column size, default decimal digits)
_ODBC_TYPES = {
    SqlType.BIGINT: (-5, 0, 0),
    SqlType.INT: (4, 0, 0),
    SqlType.SMALLINT: (5, 0, 0),
    SqlType.TINYINT: (-6, 0, 0),
    SqlType.BIT: (-7, 0, 0),
    SqlType.DECIMAL: (3, 38, 10),
    SqlType.NUMERIC: (2, 38, 10),
    SqlType.MONEY: (3, 19, 4),
    SqlType.FLOAT: (8, 0, 0),
    SqlType.REAL: (7, 0, 0),
    SqlType.CHAR: (1, 0, 0),
    SqlType.VARCHAR: (12, 0, 0),
    SqlType.NCHAR: (-8, 0, 0),
    SqlType.NVARCHAR: (-9, 0, 0),
    SqlType.TEXT: (-1, 0, 0),
    SqlType.NTEXT: (-10, 0, 0),
    SqlType.DATE: (91, 10, 0),
    SqlType.TIME: (-154, 16, 7),
    SqlType.DATETIME: (93, 23, 3),
    SqlType.DATETIME2: (93, 27, 7),
    SqlType.DATETIMEOFFSET: (-155, 34, 7),
    SqlType.UNIQUEIDENTIFIER: (-11, 0, 0),
    SqlType.BINARY: (-2, 0, 0),
    SqlType.VARBINARY: (-3, 0, 0),
    SqlType.XML: (-152, 0, 0),
}


def build_connection_string(db_type: str | None = None) -> str:
    """Build connection string from environment (DB_HOST, DB_PORT, DB_NAME, ...)."""
    db_type = (db_type or os.getenv("DB_TYPE", "sqlserver")).lower()
    if db_type in SQLSERVER_TYPES:
        driver = os.getenv("DB_DRIVER", "ODBC Driver 17 for SQL Server")
        return (
            f"DRIVER={{{driver}}};"
            f"SERVER={os.getenv('DB_HOST', 'localhost')},{os.getenv('DB_PORT', '1433')};"
            f"DATABASE={os.getenv('DB_NAME', 'master')};"
            f"UID={os.getenv('DB_USER', 'sa')};"
            f"PWD={os.getenv('DB_PASSWORD', '')}"
        )
    if db_type in POSTGRES_TYPES:
        return (
            f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', '')}"
            f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}/{os.getenv('DB_NAME', 'postgres')}"
        )
    if db_type in DUCKDB_TYPES:
        db_path = os.getenv("DB_PATH", "output/warehouse.duckdb")
        return f"duckdb:///{db_path}"
    raise ConfigurationError(f"Unknown DB_TYPE: {db_type}")


def detect_db_type(connection_string: str) -> str:
    """Infer the database type from the connection-string format."""
    cs = connection_string.strip().lower()
    if cs.startswith("duckdb:"):
        return "duckdb"
    if cs.startswith(("postgresql://", "postgres://")) or ("dbname=" in cs and "driver=" not in cs):
        return "postgresql"
    return "sqlserver"


class Dialect:
    """Driver adapter. Subclasses override what their DB-API driver does differently."""

    name = "generic"
    paramstyle = "qmark"
    bracket_identifiers = False
    driver = None

    # --- connection / transaction ---
    def connect(self, connection_string: str):
        raise NotImplementedError

    def close(self, conn) -> None:
        conn.close()

    def begin(self, conn) -> None:
        conn.autocommit = False

    def commit(self, conn) -> None:
        conn.commit()
        conn.autocommit = True

    def rollback(self, conn) -> None:
        conn.rollback()
        conn.autocommit = True

    # --- commands ---
    def cursor(self, conn):
        return conn.cursor()

    def close_cursor(self, cursor) -> None:
        cursor.close()

    def apply_timeout(self, conn, cursor, timeout: int | None) -> None:
        pass

    def declare_types(self, cursor, parameters: list[SqlParameter]) -> None:
        pass

    def execute(self, cursor, sql: str, args=None) -> None:
        if args is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, args)

    def affected_rows(self, cursor) -> int:
        rc = cursor.rowcount
        return rc if rc is not None and rc > 0 else 0

    def next_result_set(self, cursor) -> bool:
        nextset = getattr(cursor, "nextset", None)
        if nextset is None:
            return False
        try:
            return bool(nextset())
        except self.error_types() as exc:
            if self.is_not_supported(exc):
                return False
            raise

    def procedure_sql(self, name: str, parameters: list[SqlParameter]):
        placeholders = ", ".join("?" for _ in parameters)
        return f"{{CALL {name} ({placeholders})}}", [p.driver_value() for p in parameters] or None

    def quote_identifier(self, name: str) -> str:
        return '"' + str(name).replace('"', '""') + '"'

    # --- bulk ---
    def bulk_insert(self, conn, cursor, table: str, columns: list[str], rows: list[tuple], frame) -> int:
        cols = ", ".join(self.quote_identifier(c) for c in columns)
        marks = ", ".join("?" for _ in columns)
        cursor.executemany(f"INSERT INTO {table} ({cols}) VALUES ({marks})", rows)
        return len(rows)

    # --- errors ---
    def error_types(self) -> tuple:
        return (self.driver.Error,) if self.driver is not None else ()

    def is_state_error(self, exc: BaseException) -> bool:
        interface_error = getattr(self.driver, "InterfaceError", None)
        return interface_error is not None and isinstance(exc, interface_error)

    def is_not_supported(self, exc: BaseException) -> bool:
        not_supported = getattr(self.driver, "NotSupportedError", None)
        return not_supported is not None and isinstance(exc, not_supported)

    def native_code(self, exc: BaseException):
        return None


class SqlServerDialect(Dialect):
    name = "sqlserver"
    paramstyle = "qmark"
    bracket_identifiers = True

    def __init__(self, driver=None):
        self.driver = driver or pyodbc

    def connect(self, connection_string: str):
        return self.driver.connect(connection_string, autocommit=True)

    def apply_timeout(self, conn, cursor, timeout: int | None) -> None:
        if timeout is not None:
            conn.timeout = int(timeout)

    def declare_types(self, cursor, parameters: list[SqlParameter]) -> None:
        if not parameters:
            return
        sizes = []
        for p in parameters:
            code, size, digits = _ODBC_TYPES[p.sql_type]
            sizes.append((code, p.size if p.size is not None else size, digits))
        cursor.setinputsizes(sizes)

    def procedure_sql(self, name: str, parameters: list[SqlParameter]):
        if not parameters:
            return f"EXEC {name}", None
        assigns = ", ".join(f"@{p.key} = ?" for p in parameters)
        return f"EXEC {name} {assigns}", [p.driver_value() for p in parameters]

    def quote_identifier(self, name: str) -> str:
        return "[" + str(name).replace("]", "]]") + "]"

    def bulk_insert(self, conn, cursor, table, columns, rows, frame) -> int:
        cursor.fast_executemany = True
        return super().bulk_insert(conn, cursor, table, columns, rows, frame)

    def native_code(self, exc: BaseException):
        # pyodbc errors carry (sqlstate, message)
        args = getattr(exc, "args", ())
        return args[0] if len(args) > 1 else None


class PostgresDialect(Dialect):
    name = "postgresql"
    paramstyle = "pyformat"

    def __init__(self, driver=None):
        self.driver = driver or psycopg2

    def connect(self, connection_string: str):
        conn = self.driver.connect(connection_string)
        conn.autocommit = True
        return conn

    def apply_timeout(self, conn, cursor, timeout: int | None) -> None:
        if timeout is not None:
            cursor.execute("SET statement_timeout = %s", (int(timeout) * 1000,))

    def procedure_sql(self, name: str, parameters: list[SqlParameter]):
        if not parameters:
            return f"CALL {name}()", None
        assigns = ", ".join(f"{p.key} => %(p{i})s" for i, p in enumerate(parameters))
        return f"CALL {name}({assigns})", {f"p{i}": p.driver_value() for i, p in enumerate(parameters)}

    def bulk_insert(self, conn, cursor, table, columns, rows, frame) -> int:
        cols = ", ".join(self.quote_identifier(c) for c in columns)
        psycopg2.extras.execute_values(
            cursor, f"INSERT INTO {table} ({cols}) VALUES %s", rows, page_size=max(len(rows), 1)
        )
        return len(rows)

    def native_code(self, exc: BaseException):
        return getattr(exc, "pgcode", None)


class DuckDBDialect(Dialect):
    """DuckDB: statements run on the connection itself.

    conn.cursor() opens a second connection with its own transaction context,
    so it cannot be used for commands bound to the coordinator's transaction.
    """

    name = "duckdb"
    paramstyle = "qmark"

    def __init__(self, driver=None):
        self.driver = driver or duckdb

    def connect(self, connection_string: str):
        db_path = connection_string.strip()
        if db_path.lower().startswith("duckdb:///"):
            db_path = db_path[len("duckdb:///"):]
        elif db_path.lower().startswith("duckdb://"):
            db_path = db_path[len("duckdb://"):]
        db_path = db_path or ":memory:"
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        return self.driver.connect(db_path)

    def begin(self, conn) -> None:
        conn.begin()

    def commit(self, conn) -> None:
        conn.commit()

    def rollback(self, conn) -> None:
        conn.rollback()

    def cursor(self, conn):
        return conn

    def close_cursor(self, cursor) -> None:
        pass

    def affected_rows(self, cursor) -> int:
        # DML results come back as a single "Count" row
        description = cursor.description
        if not description or str(description[0][0]).lower() != "count":
            return 0
        row = cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def procedure_sql(self, name: str, parameters: list[SqlParameter]):
        placeholders = ", ".join("?" for _ in parameters)
        return f"SELECT * FROM {name}({placeholders})", [p.driver_value() for p in parameters] or None

    def bulk_insert(self, conn, cursor, table, columns, rows, frame) -> int:
        view = "__sqlaccess_bulk_batch"
        cols = ", ".join(self.quote_identifier(c) for c in columns)
        conn.register(view, frame)
        try:
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {view}")
        finally:
            conn.unregister(view)
        return len(frame)

    def is_state_error(self, exc: BaseException) -> bool:
        state_errors = tuple(
            t for t in (
                getattr(self.driver, "InterfaceError", None),
                getattr(self.driver, "ConnectionException", None),
                getattr(self.driver, "TransactionException", None),
            ) if t is not None
        )
        return bool(state_errors) and isinstance(exc, state_errors)


def dialect_for(connection_string: str, db_type: str | None = None) -> Dialect:
    """Pick the dialect for a connection string (or an explicit db_type)."""
    db_type = (db_type or detect_db_type(connection_string)).lower()
    if db_type in SQLSERVER_TYPES:
        if not HAS_PYODBC:
            raise ConfigurationError("SQL Server connection requested but pyodbc is not installed (pip install pyodbc).")
        return SqlServerDialect()
    if db_type in POSTGRES_TYPES:
        if not HAS_PSYCOPG2:
            raise ConfigurationError("PostgreSQL connection requested but psycopg2 is not installed (pip install psycopg2-binary).")
        return PostgresDialect()
    if db_type in DUCKDB_TYPES:
        if not HAS_DUCKDB:
            raise ConfigurationError("DuckDB connection requested but duckdb is not installed (pip install duckdb).")
        return DuckDBDialect()
    raise ConfigurationError(
        f"Unknown db_type {db_type!r}. Use sqlserver (pyodbc), postgres (psycopg2), or duckdb."
    )
