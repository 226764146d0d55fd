"""
Database migration: Add connection_type column to mcp_servers table

Servers stored before connection types existed have no explicit type.
This migration adds the column and backfills it from the endpoint using
the same heuristics the transport layer falls back to.

To run: python backend/migrations/add_connection_type.py
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from database import engine
from models.mcp_server import infer_connection_type
from utils.logging import get_logger

logger = get_logger("migration")


def _has_column(sync_conn, table: str, column: str) -> bool:
    inspector = inspect(sync_conn)
    if not inspector.has_table(table):
        return False
    return any(c["name"] == column for c in inspector.get_columns(table))


async def migrate(target: AsyncEngine = None) -> int:
    """
    Add and backfill mcp_servers.connection_type.

    Returns:
        int: Number of rows backfilled
    """
    logger.info("Starting migration: add connection_type column to mcp_servers")

    try:
        async with (target or engine).begin() as conn:
            if not await conn.run_sync(_has_column, "mcp_servers", "endpoint"):
                logger.info("Table 'mcp_servers' does not exist yet, skipping migration")
                return 0

            if await conn.run_sync(_has_column, "mcp_servers", "connection_type"):
                logger.info("Column 'connection_type' already exists, backfilling empty values only")
            else:
                await conn.execute(text("""
                    ALTER TABLE mcp_servers
                    ADD COLUMN connection_type VARCHAR(8)
                """))
                logger.info("Successfully added 'connection_type' column to mcp_servers table")

            result = await conn.execute(text("""
                SELECT id, endpoint
                FROM mcp_servers
                WHERE connection_type IS NULL OR connection_type = ''
            """))
            rows = result.fetchall()
            logger.info(f"Found {len(rows)} servers without a connection type, backfilling...")

            for server_id, endpoint in rows:
                # Enum columns store member names
                await conn.execute(
                    text("UPDATE mcp_servers SET connection_type = :connection_type WHERE id = :id"),
                    {"connection_type": infer_connection_type(endpoint).name, "id": server_id}
                )

            logger.info(f"Backfilled {len(rows)} connection types")

        logger.info("Migration completed successfully")
        return len(rows)

    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    asyncio.run(migrate())
