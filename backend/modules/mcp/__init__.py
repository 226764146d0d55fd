"""
MCP orchestration: transports, protocol client, server connections and tool routing.
"""

from .connection import ConnectionState, DiscoveryState, ServerConnection
from .errors import (
    DiscoveryError,
    InvocationError,
    McpError,
    NotConnectedError,
    RequestTimeoutError,
    ToolNotFoundError,
    TransportError,
    UnsupportedEndpointError,
)
from .manager import McpServiceManager, get_mcp_manager
from .protocol import McpProtocolClient
from .transport import McpTransport, create_transport

__all__ = [
    "ConnectionState",
    "DiscoveryState",
    "ServerConnection",
    "McpError",
    "TransportError",
    "RequestTimeoutError",
    "DiscoveryError",
    "InvocationError",
    "ToolNotFoundError",
    "NotConnectedError",
    "UnsupportedEndpointError",
    "McpServiceManager",
    "get_mcp_manager",
    "McpProtocolClient",
    "McpTransport",
    "create_transport",
]
