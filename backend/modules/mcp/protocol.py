"""MCP protocol client: session handshake, tool discovery and invocation over a transport."""

from typing import Any, Dict, List, Optional

from mcp import types

from modules.mcp.errors import InvocationError, McpError, RequestTimeoutError, TransportError
from modules.mcp.transport import McpTransport
from schemas.mcp import ToolCallResult, ToolSchema
from utils.logging import get_logger

logger = get_logger("mcp.protocol")


def client_info(name: str, version: str) -> types.Implementation:
    """Identity sent as ``clientInfo`` in the initialize request."""
    return types.Implementation(name=name, version=version)


def to_tool_schema(tool: types.Tool) -> ToolSchema:
    return ToolSchema(name=tool.name, description=tool.description or "", input_schema=tool.inputSchema or {})


class McpProtocolClient:
    """
    MCP client operations over one transport's ``ClientSession``.

    The session negotiates the protocol version and sends
    ``notifications/initialized`` as part of ``initialize()``.
    """

    def __init__(self, transport: McpTransport, request_timeout: Optional[float] = None):
        self.transport = transport
        self.request_timeout = request_timeout
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}
        self.protocol_version: Optional[str] = None

    async def initialize(self) -> types.InitializeResult:
        """Perform the MCP initialize handshake."""
        result = await self.transport.call(lambda session: session.initialize())
        self.server_info = result.serverInfo.model_dump(exclude_none=True)
        self.server_capabilities = result.capabilities.model_dump(exclude_none=True)
        self.protocol_version = str(result.protocolVersion)
        logger.info(
            "MCP session initialized",
            server=self.server_info.get("name"),
            server_version=self.server_info.get("version"),
            protocol=self.protocol_version,
        )
        return result

    async def list_tools(self) -> List[ToolSchema]:
        """
        Fetch the server's current tool catalog, following pagination.

        An empty catalog is a valid answer.
        """
        tools: List[ToolSchema] = []
        cursor: Optional[str] = None
        while True:
            result = await self.transport.call(lambda session: session.list_tools(cursor=cursor))
            tools.extend(to_tool_schema(tool) for tool in result.tools)
            cursor = result.nextCursor
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """
        Invoke a tool.

        Raises:
            RequestTimeoutError: If the server does not answer in time
            TransportError: If the channel fails
            InvocationError: If the server reports a tool or protocol error
        """
        request = types.ClientRequest(types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name=name, arguments=arguments or {}),
        ))
        try:
            result = await self.transport.send(request, types.CallToolResult, timeout=self.request_timeout)
        except (RequestTimeoutError, TransportError):
            raise
        except McpError as exc:
            raise InvocationError(
                f"Tool '{name}' failed: {exc}", tool_name=name, cause=exc, code=exc.code, data=exc.data
            )

        outcome = ToolCallResult(
            content=[block.model_dump(by_alias=True, mode="json", exclude_none=True) for block in result.content],
            is_error=bool(result.isError),
        )
        if outcome.is_error:
            raise InvocationError(
                f"Tool '{name}' reported an error: {outcome.text()}",
                tool_name=name,
                data=result.model_dump(by_alias=True, mode="json", exclude_none=True),
            )
        return outcome

    async def close(self) -> None:
        await self.transport.close()
