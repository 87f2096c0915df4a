"""Async execution primitives."""
import asyncio

import pandas as pd
import pytest

from fakes import FakeDialect, blocking_connection


def test_async_primitives_against_duckdb():
    pytest.importorskip("duckdb")
    from sqlaccess.core.coordinator import ConnectionCoordinator
    from sqlaccess.core.parameters import DB_NULL, SqlParameters, SqlType

    async def scenario():
        with ConnectionCoordinator("duckdb:///:memory:") as coord:
            await coord.execute_statement_async("CREATE TABLE T (Id INTEGER, Name VARCHAR)")
            params = SqlParameters()
            params.add("@id", 1, SqlType.INT)
            params.add("@name", "a", SqlType.NVARCHAR)
            inserted = await coord.execute_statement_async("INSERT INTO T VALUES (@id, @name)", parameters=params)
            count = await coord.execute_scalar_async("SELECT COUNT(*) FROM T")
            missing = await coord.execute_scalar_async("SELECT Name FROM T WHERE Id = 2")
            frame = await coord.execute_row_set_async("SELECT * FROM T")
            frames = await coord.execute_multi_row_set_async("SELECT * FROM T")
            return inserted, count, missing, frame, frames

    inserted, count, missing, frame, frames = asyncio.run(scenario())
    assert inserted == 1
    assert count == 1
    assert missing is DB_NULL
    assert isinstance(frame, pd.DataFrame) and len(frame) == 1
    assert len(frames) == 1


def test_async_blank_sql_raises_invalid_argument():
    from sqlaccess.core.coordinator import ConnectionCoordinator
    from sqlaccess.utils.errors import InvalidArgumentError
    coord = ConnectionCoordinator("fake://db", dialect=FakeDialect())
    with pytest.raises(InvalidArgumentError):
        asyncio.run(coord.execute_scalar_async(""))
    assert not coord.is_open


def test_async_fan_out_on_one_coordinator_is_rejected():
    from sqlaccess.core.coordinator import ConnectionCoordinator
    from sqlaccess.utils.errors import InvalidStateError
    dialect = FakeDialect()
    coord = ConnectionCoordinator("fake://db", dialect=dialect)
    coord.open()
    conn = blocking_connection(dialect.connections[0])
    conn.rowcount = 1

    async def scenario():
        loop = asyncio.get_running_loop()
        first = asyncio.ensure_future(coord.execute_statement_async("UPDATE T SET X = 1"))
        assert await loop.run_in_executor(None, conn.entered.wait, 5)
        with pytest.raises(InvalidStateError):
            await coord.execute_scalar_async("SELECT 1")
        conn.release.set()
        return await first

    assert asyncio.run(scenario()) == 1
