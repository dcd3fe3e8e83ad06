"""Tests for the pool wrapper and schema bootstrap."""
from __future__ import annotations

import pytest

from contract_studio.database import TABLES, Database, init_schema
from db_fakes import FakeConn, FakePool


def test_configured_only_for_postgres_urls():
    assert Database("postgresql://u@h/db").is_configured
    assert Database("postgres://u@h/db").is_configured
    assert not Database("").is_configured
    assert not Database("sqlite:///tmp.db").is_configured


@pytest.mark.asyncio
async def test_unconfigured_connect_fails():
    with pytest.raises(RuntimeError, match="not configured"):
        await Database("").connect()


def test_acquire_before_connect_fails():
    with pytest.raises(RuntimeError, match="not open"):
        Database("postgresql://u@h/db").acquire()


@pytest.mark.asyncio
async def test_ping_without_pool():
    assert await Database("postgresql://u@h/db").ping() is False


@pytest.mark.asyncio
async def test_dev_schema_is_applied(conn, pool):
    await init_schema(pool, "dev")

    ((method, sql, _),) = conn.calls
    assert method == "execute"
    for table in TABLES:
        assert f"CREATE TABLE IF NOT EXISTS {table} " in sql


@pytest.mark.asyncio
async def test_production_verifies_tables():
    conn = FakeConn(fetch=[[{"table_name": name} for name in TABLES]])

    await init_schema(FakePool(conn), "production")

    assert conn.statements("CREATE TABLE") == []


@pytest.mark.asyncio
async def test_production_reports_missing_tables():
    present = [{"table_name": name} for name in TABLES if name != "agents"]
    conn = FakeConn(fetch=[present])

    with pytest.raises(RuntimeError, match="Tables not found in production: agents"):
        await init_schema(FakePool(conn), "production")
