"""
Database models for the smart-pet MCP backend.

This package contains SQLAlchemy models for the application.
"""

from .mcp_server import McpConnectionType, McpServerModel, infer_connection_type
from .mcp_tool import McpToolModel
from .conversation import ChatMessageModel, ConversationModel, ConversationServerModel, MessageRole

__all__ = [
    "McpConnectionType",
    "McpServerModel",
    "infer_connection_type",
    "McpToolModel",
    "ChatMessageModel",
    "ConversationModel",
    "ConversationServerModel",
    "MessageRole",
]
