"""
Server connection: one configured MCP server, its transport and protocol client.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED | FAILED
    CONNECTED -> DISCONNECTED   (explicit disconnect or transport close)
    FAILED -> CONNECTING        (connect() may be retried)

Discovery runs after the handshake and only degrades capability: a server
whose tools/list keeps failing is still CONNECTED, with an empty catalog and
``discovery_state == FAILED``.
"""

import asyncio
import enum
import time
from typing import Any, Callable, Dict, List, Optional

from config import Settings, settings as default_settings
from models.mcp_server import (
    McpServerModel,
    STATUS_DISCONNECTED,
    STATUS_FAILED_PREFIX,
    STATUS_RUNNING,
)
from modules.mcp.errors import DiscoveryError, McpError, NotConnectedError
from modules.mcp.protocol import McpProtocolClient, client_info
from modules.mcp.transport import McpTransport, create_transport
from modules.storage.service import StorageService
from schemas.mcp import ConnectionStatusSchema, ToolCallResult, ToolSchema
from utils.logging import get_logger, log_server_event, log_tool_call

logger = get_logger("mcp.connection")

TransportFactory = Callable[..., McpTransport]


class ConnectionState(enum.Enum):
    """Runtime connection state (never persisted)."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class DiscoveryState(enum.Enum):
    """Tool discovery progress for a connection."""
    NOT_STARTED = "not_started"
    PENDING = "pending"  # handshake done, tools/list running or retrying
    READY = "ready"  # catalog loaded, possibly empty
    FAILED = "failed"  # retries exhausted, catalog degraded to empty


class ServerConnection:
    """
    Owns the transport and protocol client for one MCP server.

    ``manage_status`` controls whether connect/disconnect write the server's
    status and is_running flag back to storage; pooled ad hoc connections
    leave them alone.
    """

    def __init__(
        self,
        config: McpServerModel,
        storage: Optional[StorageService] = None,
        mcp_settings: Settings = default_settings,
        transport_factory: TransportFactory = create_transport,
        manage_status: bool = True,
    ):
        self.config = config
        self.storage = storage
        self.settings = mcp_settings
        self.manage_status = manage_status
        self._transport_factory = transport_factory

        self.state = ConnectionState.DISCONNECTED
        self.discovery_state = DiscoveryState.NOT_STARTED
        self.last_error: Optional[str] = None
        self.discovery_error: Optional[DiscoveryError] = None
        self.tools: List[ToolSchema] = []

        self._transport: Optional[McpTransport] = None
        self._client: Optional[McpProtocolClient] = None

    def __repr__(self):
        return f"<ServerConnection(server={self.server_id}, name={self.name}, state={self.state.value})>"

    @property
    def server_id(self) -> Optional[int]:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def request_timeout(self) -> float:
        return self.config.timeout_seconds or self.settings.mcp_request_timeout

    @property
    def server_info(self) -> Dict[str, Any]:
        return self._client.server_info if self._client else {}

    def has_tool(self, tool_name: str) -> bool:
        return any(tool.name == tool_name for tool in self.tools)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """
        Open the transport, run the handshake and discover tools.

        Returns:
            True when connected (even if discovery degraded), False on failure

        Raises:
            UnsupportedEndpointError: If no transport can serve the endpoint
        """
        if self.is_connected and self._transport is not None and self._transport.is_alive:
            return True

        # Raised before any state change: bad endpoints are programmer errors
        transport = self._transport_factory(
            self.config.endpoint,
            self.config.connection_type,
            request_timeout=self.request_timeout,
            sse_connect_timeout=self.settings.mcp_sse_connect_timeout,
            sse_read_timeout=self.settings.mcp_sse_read_timeout,
            on_close=self._on_transport_closed,
            client_info=client_info(
                f"{self.settings.mcp_client_name}-{self.server_id}", self.settings.mcp_client_version
            ),
        )

        await self._teardown()
        self.state = ConnectionState.CONNECTING
        self.discovery_state = DiscoveryState.NOT_STARTED
        self.last_error = None
        self.discovery_error = None
        self.tools = []
        log_server_event(self.server_id, "connecting", self.name, endpoint=self.config.endpoint)

        try:
            await transport.start()
            client = McpProtocolClient(transport, request_timeout=self.request_timeout)
            await client.initialize()
        except Exception as e:
            await transport.close()
            await self._mark_failed(e)
            return False

        self._transport = transport
        self._client = client
        self.state = ConnectionState.CONNECTED

        try:
            await self._discover_tools()
            await self._persist_status(STATUS_RUNNING, True)
        except Exception as e:
            logger.error(f"Failed to record connection of server {self.name}: {e}", exc_info=True)
            await self._teardown()
            await self._mark_failed(e)
            return False

        log_server_event(
            self.server_id,
            "connected",
            self.name,
            tools=len(self.tools),
            discovery=self.discovery_state.value,
        )
        return True

    async def _discover_tools(self) -> None:
        """
        Run tools/list with bounded retries and store the catalog.

        The persisted catalog is replaced only when discovery succeeds.
        """
        self.discovery_state = DiscoveryState.PENDING
        attempts = max(self.settings.mcp_discovery_retries, 1)
        last_error: Optional[McpError] = None

        for attempt in range(1, attempts + 1):
            try:
                tools = await self._client.list_tools()
            except McpError as e:
                last_error = e
                logger.warning(
                    f"tools/list failed for server {self.name} (attempt {attempt}/{attempts}): {e}"
                )
                if self._transport is None or not self._transport.is_alive:
                    break
                if attempt < attempts:
                    await asyncio.sleep(self.settings.mcp_discovery_backoff)
                continue

            self.tools = tools
            self.discovery_state = DiscoveryState.READY
            if self.storage is not None and self.server_id is not None:
                await self.storage.replace_server_tools(self.server_id, tools)
            log_server_event(self.server_id, "discovered", self.name, tools=[t.name for t in tools])
            return

        self.tools = []
        self.discovery_state = DiscoveryState.FAILED
        self.discovery_error = DiscoveryError(f"Tool discovery failed for {self.name}: {last_error}")
        self.last_error = str(self.discovery_error)
        log_server_event(self.server_id, "discovery_failed", self.name, error=str(last_error))

    async def disconnect(self, update_status: bool = True) -> None:
        """
        Close the transport. Calling it on a disconnected connection is a no-op.

        Args:
            update_status: Persist "disconnected" / is_running=False (when status is managed)
        """
        if self.state == ConnectionState.DISCONNECTED and self._transport is None:
            return

        await self._teardown()
        self.state = ConnectionState.DISCONNECTED
        self.discovery_state = DiscoveryState.NOT_STARTED
        self.tools = []
        if update_status:
            await self._persist_status(STATUS_DISCONNECTED, False)
        log_server_event(self.server_id, "disconnected", self.name)

    async def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        self._client = None
        if transport is not None:
            transport.on_close = None
            await transport.close()

    def _on_transport_closed(self, error: Optional[Exception]) -> None:
        if self.state != ConnectionState.CONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self.discovery_state = DiscoveryState.NOT_STARTED
        if error is not None:
            self.last_error = str(error)
        log_server_event(self.server_id, "transport_closed", self.name, error=self.last_error)

    async def _mark_failed(self, error: Exception) -> None:
        self.state = ConnectionState.FAILED
        self.last_error = str(error) or type(error).__name__
        log_server_event(self.server_id, "connect_failed", self.name, error=self.last_error)
        try:
            await self._persist_status(f"{STATUS_FAILED_PREFIX}{self.last_error}", False)
        except Exception as e:
            logger.error(f"Failed to persist status of server {self.name}: {e}")

    async def _persist_status(self, status: str, is_running: bool) -> None:
        if not self.manage_status or self.storage is None or self.server_id is None:
            return
        await self.storage.update_server_status(self.server_id, status, is_running)
        self.config.status = status
        self.config.is_running = is_running

    # ── Tools ─────────────────────────────────────────────────────────────

    def list_tools(self) -> List[ToolSchema]:
        """The runtime tool cache from the last discovery."""
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """
        Invoke a tool on this server.

        Raises:
            NotConnectedError: If the connection is not CONNECTED
            McpError: Invocation, timeout and transport errors propagate unchanged
        """
        if not self.is_connected or self._client is None:
            raise NotConnectedError(f"Server {self.name} is not connected (state: {self.state.value})")

        started = time.perf_counter()
        try:
            result = await self._client.call_tool(name, arguments or {})
        except McpError as e:
            log_tool_call(name, self.server_id, False, time.perf_counter() - started, error=str(e))
            raise
        log_tool_call(name, self.server_id, True, time.perf_counter() - started)
        return result

    def status(self) -> ConnectionStatusSchema:
        return ConnectionStatusSchema(
            server_id=self.server_id or 0,
            name=self.name,
            state=self.state.value,
            discovery_state=self.discovery_state.value,
            last_error=self.last_error,
            tool_count=len(self.tools),
        )
