"""Error kinds raised by the data-access layer.
Driver exceptions never leave the coordinator bare: they are wrapped in one of these,
with the original exception chained as __cause__.
"""


class DataAccessError(Exception):
    """Base class for data-access failures."""


class InvalidArgumentError(DataAccessError, ValueError):
    """Bad caller input (blank SQL, blank parameter or table name, no rows)."""


class InvalidStateError(DataAccessError, RuntimeError):
    """Operation not allowed in the coordinator's current state."""


class ConfigurationError(DataAccessError):
    """Missing or unusable connection configuration."""


class SqlConnectionError(DataAccessError):
    """Open/close/begin-transaction failure.

    reason is one of "driver", "invalid_state" or "unexpected".
    """

    def __init__(self, message: str, reason: str = "driver"):
        super().__init__(message)
        self.reason = reason


class SqlDatabaseError(DataAccessError):
    """Statement or bulk-load failure reported by the database."""

    def __init__(self, message: str, native_code=None):
        super().__init__(message)
        self.native_code = native_code


class UnexpectedError(DataAccessError):
    """Anything else; always raised from the original exception."""
