import asyncio
import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine


async def list_tables(database_url: str) -> set[str]:
    engine = create_async_engine(database_url)
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    await engine.dispose()
    return set(tables)


# env.py drives its own event loop, so this test stays synchronous
def test_migrations_apply():
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set")
    config = Config("db/alembic.ini")
    command.upgrade(config, "head")
    assert {
        "activation_codes",
        "admin_identity",
        "admin_audit_log",
        "admin_session_revocations",
    } <= asyncio.run(list_tables(database_url))


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["adminConfigured"] is True
    assert body["codesCount"] == 0


@pytest.mark.asyncio
async def test_bootstrap_retries_then_gives_up(monkeypatch):
    from sqlalchemy.exc import OperationalError

    from backend.app import main
    from backend.app.services.errors import StoreUnavailable

    calls = []

    def broken_factory():
        calls.append(1)
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError())

    async def no_sleep(delay):
        return None

    monkeypatch.setattr(main.asyncio, "sleep", no_sleep)
    with pytest.raises(StoreUnavailable):
        await main.bootstrap_with_retry(broken_factory)
    assert len(calls) == main.settings.bootstrap_retries
