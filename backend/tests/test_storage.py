"""Tests for the storage service: servers, tool catalogs, scoping and messages."""

import pytest

from models.mcp_server import McpConnectionType, STATUS_NOT_STARTED
from modules.storage.service import parse_connection_type
from schemas.mcp import McpServerCreateSchema, McpServerUpdateSchema, ToolSchema


def _tools(*names):
    return [ToolSchema(name=n, description=f"{n} tool", input_schema={"type": "object"}) for n in names]


@pytest.mark.asyncio
async def test_upsert_same_endpoint_keeps_one_row_with_latest_name(storage):
    first = await storage.upsert_server(McpServerCreateSchema(name="weather", endpoint="npx -y weather-mcp"))
    second = await storage.upsert_server(McpServerCreateSchema(name="weather v2", endpoint="npx -y weather-mcp"))

    servers = await storage.get_all_servers()
    assert len(servers) == 1
    assert first.id == second.id
    assert servers[0].name == "weather v2"
    assert servers[0].status == STATUS_NOT_STARTED


@pytest.mark.asyncio
async def test_upsert_infers_connection_type_for_untagged_endpoints(storage):
    script = await storage.upsert_server(McpServerCreateSchema(name="a", endpoint="/opt/servers/files.py"))
    npx = await storage.upsert_server(McpServerCreateSchema(name="b", endpoint="npx @acme/mcp-server"))
    sse = await storage.upsert_server(McpServerCreateSchema(name="c", endpoint="https://mcp.example.com/sse"))

    assert script.connection_type == McpConnectionType.FILE
    assert npx.connection_type == McpConnectionType.NPX
    assert sse.connection_type == McpConnectionType.SSE


def test_parse_connection_type_rejects_unknown_values():
    with pytest.raises(ValueError, match="Invalid connection type"):
        parse_connection_type("websocket", "ws://example")
    assert parse_connection_type("SSE", "anything") == McpConnectionType.SSE


@pytest.mark.asyncio
async def test_update_server_missing_raises(storage):
    with pytest.raises(ValueError, match="not found"):
        await storage.update_server(999, McpServerUpdateSchema(name="x"))


@pytest.mark.asyncio
async def test_update_server_endpoint_collision_raises(storage, add_server):
    await add_server("a", "/srv/a.py")
    b = await add_server("b", "/srv/b.py")

    with pytest.raises(ValueError, match="already uses endpoint"):
        await storage.update_server(b.id, McpServerUpdateSchema(endpoint="/srv/a.py"))


@pytest.mark.asyncio
async def test_running_servers_newest_first(storage, add_server):
    oldest = await add_server("one", "/srv/one.py")
    await add_server("two", "/srv/two.py", is_running=False)
    newest = await add_server("three", "/srv/three.py")

    running = await storage.get_running_servers()
    assert [s.id for s in running] == [newest.id, oldest.id]


@pytest.mark.asyncio
async def test_update_server_status(storage, add_server):
    server = await add_server("one", "/srv/one.py")

    assert await storage.update_server_status(server.id, "connection failed: boom", False) is True
    assert await storage.update_server_status(12345, "running", True) is False

    stored = await storage.get_server(server.id)
    assert stored.status == "connection failed: boom"
    assert stored.is_running is False


@pytest.mark.asyncio
async def test_replace_server_tools_drops_previous_catalog(storage, add_server):
    server = await add_server("one", "/srv/one.py")

    await storage.replace_server_tools(server.id, _tools("alpha", "beta"))
    stored = await storage.replace_server_tools(server.id, _tools("gamma", "gamma"))

    tools = await storage.get_server_tools(server.id)
    assert stored == 1
    assert [t.name for t in tools] == ["gamma"]
    assert tools[0].server_id == server.id
    assert await storage.server_has_tool(server.id, "alpha") is False
    assert await storage.server_has_tool(server.id, "gamma") is True


@pytest.mark.asyncio
async def test_tool_names_are_scoped_per_server(storage, add_server):
    a = await add_server("a", "/srv/a.py")
    b = await add_server("b", "/srv/b.py")

    await storage.replace_server_tools(a.id, _tools("echo"))
    await storage.replace_server_tools(b.id, _tools("echo"))

    assert [t.name for t in await storage.get_server_tools(a.id)] == ["echo"]
    assert [t.name for t in await storage.get_server_tools(b.id)] == ["echo"]


@pytest.mark.asyncio
async def test_delete_server_removes_tools_and_links(storage, add_server):
    server = await add_server("a", "/srv/a.py")
    conversation = await storage.create_conversation("chat")
    await storage.replace_server_tools(server.id, _tools("echo"))
    await storage.add_server_to_conversation(conversation.id, server.id)

    assert await storage.delete_server(server.id) is True
    assert await storage.delete_server(server.id) is False
    assert await storage.get_server_tools(server.id) == []
    assert await storage.get_conversation_servers(conversation.id) == []


@pytest.mark.asyncio
async def test_conversation_servers_keep_association_order(storage, add_server):
    conversation = await storage.create_conversation("chat")
    b = await add_server("b", "/srv/b.py")
    a = await add_server("a", "/srv/a.py")

    assert await storage.add_server_to_conversation(conversation.id, b.id) is True
    assert await storage.add_server_to_conversation(conversation.id, a.id) is True
    assert await storage.add_server_to_conversation(conversation.id, b.id) is False

    servers = await storage.get_conversation_servers(conversation.id)
    assert [s.id for s in servers] == [b.id, a.id]

    assert await storage.remove_server_from_conversation(conversation.id, b.id) is True
    assert await storage.remove_server_from_conversation(conversation.id, b.id) is False
    assert [s.id for s in await storage.get_conversation_servers(conversation.id)] == [a.id]


@pytest.mark.asyncio
async def test_add_server_to_missing_conversation_raises(storage, add_server):
    server = await add_server("a", "/srv/a.py")
    conversation = await storage.create_conversation("chat")

    with pytest.raises(ValueError, match="Conversation"):
        await storage.add_server_to_conversation(404, server.id)
    with pytest.raises(ValueError, match="MCP server"):
        await storage.add_server_to_conversation(conversation.id, 404)


@pytest.mark.asyncio
async def test_chat_messages_append_in_order_and_bump_conversation(storage):
    conversation = await storage.create_conversation("chat")

    await storage.save_chat_message(conversation.id, "user", "hello")
    await storage.save_chat_message(conversation.id, "assistant", "hi there")

    messages = await storage.get_chat_messages(conversation.id)
    assert [(m.role.value, m.content) for m in messages] == [("user", "hello"), ("assistant", "hi there")]

    refreshed = await storage.get_conversation(conversation.id)
    assert refreshed.updated_at >= conversation.updated_at


@pytest.mark.asyncio
async def test_save_message_to_missing_conversation_raises(storage):
    with pytest.raises(ValueError):
        await storage.save_chat_message(42, "user", "hello")


@pytest.mark.asyncio
async def test_delete_conversation_removes_messages(storage):
    conversation = await storage.create_conversation("chat")
    await storage.save_chat_message(conversation.id, "user", "hello")

    assert await storage.delete_conversation(conversation.id) is True
    assert await storage.get_conversation(conversation.id) is None
    assert await storage.get_chat_messages(conversation.id) == []


@pytest.mark.asyncio
async def test_rename_conversation(storage):
    conversation = await storage.create_conversation("chat")

    renamed = await storage.rename_conversation(conversation.id, "renamed")
    assert renamed.name == "renamed"
    assert [c.name for c in await storage.get_conversations()] == ["renamed"]

    with pytest.raises(ValueError):
        await storage.rename_conversation(999, "nope")
