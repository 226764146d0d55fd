"""API tests against the FastAPI app with storage and services overridden."""

import httpx
import pytest
import pytest_asyncio

from main import app
from modules.conversation.service import ConversationService, get_conversation_service
from modules.mcp.connection import ServerConnection
from modules.mcp.manager import McpServiceManager, get_mcp_manager
from modules.storage.service import get_storage_service
from tests.fakes import FakeCompletionClient, FakeMcpServer, TransportRegistry, completion_reply


@pytest.fixture
def registry():
    return TransportRegistry()


@pytest.fixture
def manager(storage, test_settings, registry):
    def factory(config, managed):
        return ServerConnection(config, storage, test_settings, transport_factory=registry, manage_status=managed)
    return McpServiceManager(storage, connection_factory=factory, mcp_settings=test_settings)


@pytest.fixture
def completion():
    return FakeCompletionClient()


@pytest_asyncio.fixture
async def client(storage, manager, completion):
    service = ConversationService(storage, manager, completion)
    app.dependency_overrides[get_storage_service] = lambda: storage
    app.dependency_overrides[get_mcp_manager] = lambda: manager
    app.dependency_overrides[get_conversation_service] = lambda: service
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
    await manager.shutdown()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_create_server_upserts_by_endpoint(client):
    first = await client.post("/api/mcp/servers", json={"name": "files", "endpoint": "/srv/files.py"})
    second = await client.post("/api/mcp/servers", json={"name": "files v2", "endpoint": "/srv/files.py"})

    assert first.status_code == 201
    assert first.json()["connection_type"] == "file"
    assert second.json()["id"] == first.json()["id"]

    listed = (await client.get("/api/mcp/servers")).json()
    assert [s["name"] for s in listed] == ["files v2"]


@pytest.mark.asyncio
async def test_create_server_rejects_bad_input(client):
    blank = await client.post("/api/mcp/servers", json={"name": "x", "endpoint": "  "})
    bad_type = await client.post(
        "/api/mcp/servers", json={"name": "x", "endpoint": "/srv/x.py", "connection_type": "websocket"}
    )

    assert blank.status_code == 422
    assert bad_type.status_code == 400


@pytest.mark.asyncio
async def test_connect_reports_state_and_tools(client, registry):
    created = (await client.post("/api/mcp/servers", json={"name": "a", "endpoint": "/srv/a.py"})).json()
    registry.add("/srv/a.py", FakeMcpServer("a", ["echo", "add"]))

    connected = await client.post(f"/api/mcp/servers/{created['id']}/connect")
    assert connected.status_code == 200
    assert connected.json()["state"] == "connected"
    assert connected.json()["tool_count"] == 2

    tools = (await client.get(f"/api/mcp/servers/{created['id']}/tools")).json()
    assert [t["name"] for t in tools["tools"]] == ["echo", "add"]

    states = (await client.get("/api/mcp/status")).json()
    assert states[0]["server_id"] == created["id"]

    disconnected = await client.post(f"/api/mcp/servers/{created['id']}/disconnect")
    assert disconnected.status_code == 204
    server = (await client.get(f"/api/mcp/servers/{created['id']}")).json()
    assert server["status"] == "disconnected"
    assert server["is_running"] is False


@pytest.mark.asyncio
async def test_connect_unsupported_endpoint_is_bad_request(client):
    created = (await client.post(
        "/api/mcp/servers", json={"name": "ftp", "endpoint": "ftp://example.com/mcp", "connection_type": "file"}
    )).json()

    response = await client.post(f"/api/mcp/servers/{created['id']}/connect")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_missing_server_is_not_found(client):
    assert (await client.get("/api/mcp/servers/999")).status_code == 404
    assert (await client.delete("/api/mcp/servers/999")).status_code == 404
    assert (await client.post("/api/mcp/servers/999/connect")).status_code == 404
    assert (await client.get("/api/mcp/servers/999/tools")).status_code == 404


@pytest.mark.asyncio
async def test_conversation_scoping_and_query(client, registry, completion):
    server = (await client.post(
        "/api/mcp/servers", json={"name": "a", "endpoint": "/srv/a.py", "is_running": True}
    )).json()
    registry.add("/srv/a.py", FakeMcpServer("a", ["echo"]))
    await client.post(f"/api/mcp/servers/{server['id']}/connect")

    conversation = (await client.post("/api/conversations", json={"name": "chat"})).json()
    linked = await client.post(f"/api/conversations/{conversation['id']}/servers/{server['id']}")
    assert linked.status_code == 204
    scoped = (await client.get(f"/api/conversations/{conversation['id']}/servers")).json()
    assert [s["id"] for s in scoped] == [server["id"]]

    completion.replies.extend([
        completion_reply(tool_calls=[("echo", '{"message": "hi"}')]),
        completion_reply("done"),
    ])
    answer = await client.post(
        "/api/conversations/query", json={"query": "say hi", "conversation_id": conversation["id"]}
    )
    assert answer.status_code == 200
    assert answer.json()["tool_calls"] == ["echo"]
    assert answer.json()["text"].endswith("done")

    messages = (await client.get(f"/api/conversations/{conversation['id']}/messages")).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_query_for_missing_conversation_is_not_found(client):
    response = await client.post("/api/conversations/query", json={"query": "hi", "conversation_id": 404})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_conversation_crud(client):
    created = (await client.post("/api/conversations", json={"name": "chat"})).json()

    renamed = await client.put(f"/api/conversations/{created['id']}", json={"name": "renamed"})
    assert renamed.json()["name"] == "renamed"

    assert (await client.delete(f"/api/conversations/{created['id']}")).status_code == 204
    assert (await client.get(f"/api/conversations/{created['id']}")).status_code == 404
    assert (await client.put("/api/conversations/999", json={"name": "x"})).status_code == 404
