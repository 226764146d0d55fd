import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings
from database import build_engine, create_tables
from modules.storage.service import StorageService
from schemas.mcp import McpServerCreateSchema

STUB_SERVER = Path(__file__).parent / "stub_mcp_server.py"


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def storage(engine) -> StorageService:
    return StorageService(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        mcp_request_timeout=10.0,
        mcp_discovery_retries=3,
        mcp_discovery_backoff=0.0,
        mcp_eviction_delay=0.05,
    )


@pytest.fixture
def stub_command():
    """Command and args launching the stub MCP server with this interpreter."""
    return sys.executable, [str(STUB_SERVER)]


@pytest.fixture
def stub_endpoint() -> str:
    return str(STUB_SERVER)


@pytest.fixture
def add_server(storage):
    async def _add(name: str, endpoint: str, is_running: bool = True, connection_type=None):
        return await storage.upsert_server(McpServerCreateSchema(
            name=name,
            endpoint=endpoint,
            is_running=is_running,
            connection_type=connection_type,
        ))
    return _add
