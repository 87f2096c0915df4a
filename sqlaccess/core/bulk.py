"""
Bulk load: high-throughput multi-row insert into one destination table.
Columns map by identical name; rows go in fixed-size batches on the coordinator's connection,
so an active transaction covers the load and a rollback undoes it.

Still being hardened: validate behaviour against your driver before relying on it in production.
"""
from dataclasses import dataclass
from typing import Callable

import pandas as pd

from sqlaccess.utils.errors import (
    DataAccessError,
    InvalidArgumentError,
    SqlConnectionError,
    SqlDatabaseError,
    UnexpectedError,
)
from sqlaccess.utils.logger import get_logger

DEFAULT_BATCH_SIZE = 5000
DEFAULT_NOTIFY_AFTER = 1000

logger = get_logger("sqlaccess.bulk")

_warned = False


@dataclass
class BulkOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    notify_after: int = DEFAULT_NOTIFY_AFTER
    on_progress: Callable[[int], None] | None = None
    nan_as_null: bool = True


def to_frame(rows) -> pd.DataFrame:
    """Accept a DataFrame or a sequence of mappings (one per row)."""
    if isinstance(rows, pd.DataFrame):
        return rows
    rows = list(rows)
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame(rows)


class BulkLoader:
    def __init__(self, options: BulkOptions | None = None):
        self.options = options or BulkOptions()
        if self.options.batch_size <= 0:
            raise InvalidArgumentError("batch_size must be positive.")

    def validate(self, destination_table: str, rows) -> pd.DataFrame:
        """Check inputs before any connection is touched; return rows as a DataFrame."""
        if destination_table is None or not str(destination_table).strip():
            raise InvalidArgumentError("Destination table name must not be empty.")
        if rows is None:
            raise InvalidArgumentError("Rows to insert must not be None.")
        frame = to_frame(rows)
        if frame.empty:
            raise InvalidArgumentError("Rows to insert must contain at least one row.")
        if not all(isinstance(c, str) and c.strip() for c in frame.columns):
            raise InvalidArgumentError("Every column must be named; columns map to destination columns by name.")
        return frame

    def load(self, dialect, conn, destination_table: str, frame: pd.DataFrame, timeout: int | None) -> int:
        """Write frame in batches; return total rows copied."""
        global _warned
        if not _warned:
            logger.warning("bulk_load is experimental; verify results before using it in production")
            _warned = True

        columns = [str(c) for c in frame.columns]
        total = len(frame)
        copied = 0
        logger.info("Bulk load into %s: %d rows, %d columns", destination_table, total, len(columns))

        cursor = None
        try:
            cursor = dialect.cursor(conn)
            dialect.apply_timeout(conn, cursor, timeout)
            for start in range(0, total, self.options.batch_size):
                batch = frame.iloc[start:start + self.options.batch_size]
                rows = list(batch.itertuples(index=False, name=None))
                if self.options.nan_as_null:
                    rows = [tuple(_null(v) for v in row) for row in rows]
                    batch = pd.DataFrame(rows, columns=columns, dtype=object)
                dialect.bulk_insert(conn, cursor, destination_table, columns, rows, batch)
                previous, copied = copied, copied + len(rows)
                self._notify(previous, copied)
        except dialect.error_types() as exc:
            if dialect.is_state_error(exc):
                message = f"Bulk load into {destination_table} not valid; check the connection and transaction: {exc}"
                logger.error(message)
                raise SqlConnectionError(message, reason="invalid_state") from exc
            code = dialect.native_code(exc)
            message = f"Bulk load into {destination_table} failed (SQL Error {code}): {exc}"
            logger.error(message)
            raise SqlDatabaseError(message, native_code=code) from exc
        except DataAccessError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error in bulk load into %s", destination_table)
            raise UnexpectedError(f"Unexpected error in bulk load into {destination_table}: {exc}") from exc
        finally:
            if cursor is not None:
                dialect.close_cursor(cursor)

        logger.info("Bulk load into %s: %d rows copied", destination_table, copied)
        return copied

    def _notify(self, previous: int, copied: int) -> None:
        every = self.options.notify_after
        if not every or every <= 0:
            return
        # one notification per multiple crossed, even when a batch spans several
        for mark in range((previous // every + 1) * every, copied + 1, every):
            logger.debug("Rows copied: %d", mark)
            if self.options.on_progress is not None:
                self.options.on_progress(mark)


def _null(v):
    """NaN/NaT/None -> None; everything else unchanged."""
    if v is None or (pd.api.types.is_scalar(v) and pd.isna(v)):
        return None
    return v
