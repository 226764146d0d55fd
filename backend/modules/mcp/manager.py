"""
MCP service manager.

Holds the managed connection of every started server and routes tool calls
to the server that owns the tool. Resolution is tiered:

1. servers scoped to the conversation, in association order
2. running servers, newest first
3. the injected fallback connection

Every tier consults the persisted tool catalog except the fallback, which
only has its runtime cache.
"""

from typing import Any, Callable, Dict, List, Optional, Union

from config import Settings, settings as default_settings
from models.mcp_server import McpServerModel, STATUS_DISCONNECTED, STATUS_FAILED_PREFIX
from modules.mcp.connection import ServerConnection
from modules.mcp.errors import ToolNotFoundError
from modules.mcp.pool import ConnectionPool
from modules.storage.service import StorageService, get_storage_service, parse_connection_type
from schemas.mcp import ConnectionStatusSchema, ToolCallResult, ToolSchema
from utils.logging import get_logger, log_server_event

logger = get_logger("mcp.manager")

# (config, managed) -> connection
ConnectionFactory = Callable[[McpServerModel, bool], ServerConnection]


def build_fallback_connection(
    mcp_settings: Settings = default_settings,
) -> Optional[ServerConnection]:
    """
    Build the directly held fallback connection from settings, if configured.

    The fallback server is not stored, so nothing about it is persisted.
    """
    if not mcp_settings.mcp_fallback_endpoint:
        return None
    config = McpServerModel(
        name="fallback",
        kind="fallback",
        endpoint=mcp_settings.mcp_fallback_endpoint,
        connection_type=parse_connection_type(
            mcp_settings.mcp_fallback_connection_type, mcp_settings.mcp_fallback_endpoint
        ),
    )
    return ServerConnection(config, storage=None, mcp_settings=mcp_settings, manage_status=False)


class McpServiceManager:
    """
    Service for managing MCP server connections and tool routing.
    """

    def __init__(
        self,
        storage: StorageService,
        fallback: Optional[ServerConnection] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        mcp_settings: Settings = default_settings,
    ):
        self.storage = storage
        self.fallback = fallback
        self.settings = mcp_settings
        self._connection_factory = connection_factory or self._default_connection_factory
        self._connections: Dict[int, ServerConnection] = {}
        self.pool = ConnectionPool(
            lambda config: self._connection_factory(config, False),
            eviction_delay=mcp_settings.mcp_eviction_delay,
        )

    def _default_connection_factory(self, config: McpServerModel, managed: bool) -> ServerConnection:
        return ServerConnection(config, self.storage, self.settings, manage_status=managed)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def initialize_all_servers(self) -> int:
        """
        Connect every server flagged as running.

        One server failing never prevents the others from connecting.

        Returns:
            int: Number of servers connected
        """
        servers = await self.storage.get_running_servers()
        logger.info(f"Initializing {len(servers)} MCP servers")

        connected = 0
        for server in servers:
            try:
                if await self.connect_server(server):
                    connected += 1
            except Exception as e:
                logger.error(f"Failed to initialize MCP server {server.name}: {e}")
                await self.storage.update_server_status(server.id, f"{STATUS_FAILED_PREFIX}{e}", False)

        if self.fallback is not None and not self.fallback.is_connected:
            try:
                await self.fallback.connect()
            except Exception as e:
                logger.error(f"Failed to connect fallback MCP server: {e}")

        logger.info(f"Initialized MCP servers: {connected}/{len(servers)} connected")
        return connected

    async def connect_server(self, server: Union[McpServerModel, int]) -> bool:
        """
        Start (or restart) the managed connection for a server.

        Raises:
            ValueError: If the server does not exist
            UnsupportedEndpointError: If the endpoint cannot be served
        """
        config = await self._load_config(server)

        existing = self._connections.get(config.id)
        if existing is not None:
            if existing.is_connected and existing.config.endpoint == config.endpoint:
                return True
            await existing.disconnect(update_status=False)
            del self._connections[config.id]

        connection = self._connection_factory(config, True)
        self._connections[config.id] = connection
        return await connection.connect()

    async def disconnect_server(self, server_id: int) -> bool:
        """
        Stop a server's managed connection and mark it not running.

        Returns:
            bool: False if the server does not exist
        """
        connection = self._connections.pop(server_id, None)
        if connection is not None:
            await connection.disconnect()
            return True

        updated = await self.storage.update_server_status(server_id, STATUS_DISCONNECTED, False)
        if updated:
            log_server_event(server_id, "disconnected")
        return updated

    async def shutdown(self) -> None:
        """Close every connection without touching persisted status."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            try:
                await connection.disconnect(update_status=False)
            except Exception as e:
                logger.error(f"Error closing connection to {connection.name}: {e}")
        await self.pool.close_all()
        if self.fallback is not None:
            await self.fallback.disconnect(update_status=False)
        logger.info("MCP service manager shut down")

    async def _load_config(self, server: Union[McpServerModel, int]) -> McpServerModel:
        server_id = server.id if isinstance(server, McpServerModel) else server
        config = await self.storage.get_server(server_id)
        if config is None:
            raise ValueError(f"MCP server not found: {server_id}")
        return config

    # ── Connections ───────────────────────────────────────────────────────

    def get_connection(self, server_id: int) -> Optional[ServerConnection]:
        return self._connections.get(server_id)

    def connection_states(self) -> List[ConnectionStatusSchema]:
        return [connection.status() for connection in self._connections.values()]

    def fallback_tools(self) -> List[ToolSchema]:
        if self.fallback is None or not self.fallback.is_connected:
            return []
        return self.fallback.list_tools()

    # ── Tool routing ──────────────────────────────────────────────────────

    async def resolve_tool_server(
        self, tool_name: str, conversation_id: Optional[int] = None
    ) -> Optional[McpServerModel]:
        """
        Find the stored server whose persisted catalog contains ``tool_name``.

        Scoped servers are checked first, in association order, then running
        servers, newest first. Returns None when neither tier matches.
        """
        if conversation_id is not None:
            for server in await self.storage.get_conversation_servers(conversation_id):
                if await self.storage.server_has_tool(server.id, tool_name):
                    return server

        for server in await self.storage.get_running_servers():
            if await self.storage.server_has_tool(server.id, tool_name):
                return server

        return None

    async def call_tool(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        conversation_id: Optional[int] = None,
    ) -> ToolCallResult:
        """
        Route a tool call to the owning server.

        Raises:
            ToolNotFoundError: If no tier owns the tool
            McpError: Connection and invocation errors from the chosen server
        """
        server = await self.resolve_tool_server(tool_name, conversation_id)
        if server is not None:
            logger.info(f"Routing tool {tool_name} to server {server.name} ({server.id})")
            connection = self._connections.get(server.id)
            if connection is not None and connection.is_connected:
                return await connection.call_tool(tool_name, arguments)
            async with self.pool.acquire(server) as pooled:
                return await pooled.call_tool(tool_name, arguments)

        if self.fallback is not None and self.fallback.is_connected and self.fallback.has_tool(tool_name):
            logger.info(f"Routing tool {tool_name} to fallback server")
            return await self.fallback.call_tool(tool_name, arguments)

        raise ToolNotFoundError(tool_name)


# Global service instance
_mcp_manager: Optional[McpServiceManager] = None


def get_mcp_manager() -> McpServiceManager:
    """
    Get or create the global MCP service manager.

    Returns:
        McpServiceManager: Manager bound to the application storage
    """
    global _mcp_manager
    if _mcp_manager is None:
        _mcp_manager = McpServiceManager(get_storage_service(), fallback=build_fallback_connection())
    return _mcp_manager


async def cleanup_mcp_manager():
    """Shut down and forget the global manager."""
    global _mcp_manager
    if _mcp_manager:
        await _mcp_manager.shutdown()
        _mcp_manager = None
