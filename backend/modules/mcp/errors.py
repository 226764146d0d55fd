"""
Exception hierarchy for the MCP orchestration layer.

Connection-level failures are recovered where a connection is opened;
invocation failures surface to the conversation loop, which turns them
into transcript text.
"""

from typing import Any, Optional


class McpError(Exception):
    """Base exception for MCP errors."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class TransportError(McpError):
    """Channel could not be established, or a write/read failed."""


class RequestTimeoutError(McpError):
    """No response arrived within the request's time budget."""


class DiscoveryError(McpError):
    """tools/list failed after all retries."""


class InvocationError(McpError):
    """A tool call failed on the remote side, or no server owns the tool."""

    def __init__(self, message: str, tool_name: Optional[str] = None, cause: Optional[BaseException] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.cause = cause


class ToolNotFoundError(InvocationError):
    """No scoped, running or fallback server exposes the tool."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found on any server: {tool_name}", tool_name=tool_name)


class NotConnectedError(McpError):
    """A call was attempted on a connection that is not connected."""


class UnsupportedEndpointError(McpError, ValueError):
    """The endpoint cannot be served by any transport (programmer error)."""
