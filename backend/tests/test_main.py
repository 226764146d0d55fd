"""Tests for the application lifespan."""

import pytest

import main


@pytest.fixture
def shutdown_calls(monkeypatch):
    calls = []

    async def cleanup():
        calls.append("cleanup_mcp_manager")

    async def close():
        calls.append("close_database")

    monkeypatch.setattr(main, "setup_logging", lambda level: None)
    monkeypatch.setattr(main, "cleanup_mcp_manager", cleanup)
    monkeypatch.setattr(main, "close_database", close)
    return calls


@pytest.mark.asyncio
async def test_failed_table_creation_still_releases_resources(monkeypatch, shutdown_calls):
    async def broken_tables():
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(main, "create_tables", broken_tables)

    with pytest.raises(RuntimeError, match="disk I/O error"):
        async with main.lifespan(main.app):
            pass

    assert shutdown_calls == ["cleanup_mcp_manager", "close_database"]


@pytest.mark.asyncio
async def test_failed_server_startup_still_releases_resources(monkeypatch, shutdown_calls):
    class BrokenManager:
        async def initialize_all_servers(self):
            raise RuntimeError("storage unavailable")

    async def tables():
        return None

    monkeypatch.setattr(main, "create_tables", tables)
    monkeypatch.setattr(main, "get_mcp_manager", lambda: BrokenManager())

    with pytest.raises(RuntimeError, match="storage unavailable"):
        async with main.lifespan(main.app):
            pass

    assert shutdown_calls == ["cleanup_mcp_manager", "close_database"]


@pytest.mark.asyncio
async def test_clean_startup_and_shutdown(monkeypatch, shutdown_calls):
    class Manager:
        async def initialize_all_servers(self):
            return 0

    async def tables():
        return None

    monkeypatch.setattr(main, "create_tables", tables)
    monkeypatch.setattr(main, "get_mcp_manager", lambda: Manager())

    async with main.lifespan(main.app):
        assert shutdown_calls == []

    assert shutdown_calls == ["cleanup_mcp_manager", "close_database"]
