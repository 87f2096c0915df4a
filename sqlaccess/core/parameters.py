"""
Parameter sets: ordered, named, typed bind variables for commands.
Values are never interpolated into SQL text; they travel to the driver as bind values.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from sqlaccess.utils.errors import InvalidArgumentError


class DBNull:
    """Explicit database NULL. Use the DB_NULL singleton."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "DB_NULL"

    def __reduce__(self):
        return (DBNull, ())


DB_NULL = DBNull()


class SqlType(Enum):
    BIGINT = "bigint"
    INT = "int"
    SMALLINT = "smallint"
    TINYINT = "tinyint"
    BIT = "bit"
    DECIMAL = "decimal"
    NUMERIC = "numeric"
    MONEY = "money"
    FLOAT = "float"
    REAL = "real"
    CHAR = "char"
    VARCHAR = "varchar"
    NCHAR = "nchar"
    NVARCHAR = "nvarchar"
    TEXT = "text"
    NTEXT = "ntext"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    DATETIME2 = "datetime2"
    DATETIMEOFFSET = "datetimeoffset"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    BINARY = "binary"
    VARBINARY = "varbinary"
    XML = "xml"


@dataclass(frozen=True)
class SqlParameter:
    name: str
    value: Any
    sql_type: SqlType
    size: int | None = None

    @property
    def key(self) -> str:
        """Name without the leading '@', as used to match markers in SQL text."""
        return self.name.lstrip("@")

    def driver_value(self) -> Any:
        """Value as handed to a DB-API driver (DB_NULL becomes None)."""
        return None if self.value is DB_NULL else self.value


class SqlParameters:
    """Ordered parameter set. Owned by the caller; commands copy from it."""

    def __init__(self) -> None:
        self._parameters: list[SqlParameter] = []

    def add(self, name: str, value: Any, sql_type: SqlType, size: int | None = None) -> "SqlParameters":
        """Append a parameter. None is stored as DB_NULL. Duplicate names are kept as-is."""
        if name is None or not str(name).strip():
            raise InvalidArgumentError("Parameter name must not be empty.")
        if not isinstance(sql_type, SqlType):
            raise InvalidArgumentError(f"Parameter {name}: sql_type must be a SqlType, got {sql_type!r}")
        self._parameters.append(SqlParameter(
            name=name,
            value=DB_NULL if value is None else value,
            sql_type=sql_type,
            size=size,
        ))
        return self

    def clear(self) -> None:
        self._parameters.clear()

    def list(self) -> tuple[SqlParameter, ...]:
        """Read-only snapshot in insertion order."""
        return tuple(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __iter__(self) -> Iterator[SqlParameter]:
        return iter(self.list())

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self._parameters)
        return f"SqlParameters([{names}])"
