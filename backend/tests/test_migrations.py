"""Tests for the connection_type backfill migration."""

import pytest
from sqlalchemy import text

from migrations.add_connection_type import migrate


@pytest.mark.asyncio
async def test_backfills_connection_type_for_legacy_rows(engine):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE mcp_conversation_servers"))
        await conn.execute(text("DROP TABLE mcp_tools"))
        await conn.execute(text("DROP TABLE mcp_servers"))
        await conn.execute(text("CREATE TABLE mcp_servers (id INTEGER PRIMARY KEY, name VARCHAR, endpoint VARCHAR)"))
        await conn.execute(text("""
            INSERT INTO mcp_servers (id, name, endpoint) VALUES
                (1, 'files', '/opt/servers/files.py'),
                (2, 'weather', 'npx -y weather-mcp'),
                (3, 'remote', 'https://mcp.example.com/sse')
        """))

    assert await migrate(engine) == 3

    async with engine.connect() as conn:
        rows = (await conn.execute(text("SELECT id, connection_type FROM mcp_servers ORDER BY id"))).fetchall()
    assert [tuple(r) for r in rows] == [(1, "FILE"), (2, "NPX"), (3, "SSE")]

    # Running again finds nothing left to backfill
    assert await migrate(engine) == 0


@pytest.mark.asyncio
async def test_skips_when_table_is_missing(engine):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE mcp_conversation_servers"))
        await conn.execute(text("DROP TABLE mcp_tools"))
        await conn.execute(text("DROP TABLE mcp_servers"))

    assert await migrate(engine) == 0
