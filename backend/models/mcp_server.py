"""
MCP (Model Context Protocol) server model.

This model stores MCP server configurations: identity, the polymorphic
endpoint (script path, npx command line or SSE URL), the connection type
that selects the transport, and the last-known status.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from database import Base


class McpConnectionType(enum.Enum):
    """MCP connection type enumeration (selects the transport)."""
    FILE = "file"
    NPX = "npx"
    SSE = "sse"


STATUS_NOT_STARTED = "not started"
STATUS_RUNNING = "running"
STATUS_DISCONNECTED = "disconnected"
STATUS_FAILED_PREFIX = "connection failed: "


def infer_connection_type(endpoint: Optional[str]) -> McpConnectionType:
    """
    Classify a legacy untagged endpoint by string heuristics.

    Only used when a record carries no explicit connection type.
    """
    value = (endpoint or "").strip()
    if value.lower().startswith(("http://", "https://")):
        return McpConnectionType.SSE
    if "npx " in value:
        return McpConnectionType.NPX
    return McpConnectionType.FILE


class McpServerModel(Base):
    """
    Model for storing MCP server configurations.

    Fields:
    - id: Integer primary key
    - name: Server name
    - kind: Classification tag (informational)
    - endpoint: Script path, command line or URL (unique, upsert key)
    - connection_type: file, npx or sse
    - status: Free-text last-known state
    - is_running: Whether the server should be connected at startup
    - timeout_ms: Per-request timeout override
    """

    __tablename__ = "mcp_servers"

    # Primary key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Server identity
    name = Column(String(255), nullable=False)
    kind = Column(String(64), nullable=False, default="local")

    # Same endpoint = same logical server
    endpoint = Column(String(1024), nullable=False, unique=True, index=True)

    connection_type = Column(
        Enum(McpConnectionType),
        nullable=False,
        default=McpConnectionType.FILE,
        index=True,
    )

    # Best-effort state hints, not a source of truth for liveness
    status = Column(String(1024), nullable=False, default=STATUS_NOT_STARTED)
    is_running = Column(Boolean, nullable=False, default=False, index=True)

    timeout_ms = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return (
            f"<McpServerModel(id={self.id}, name={self.name}, "
            f"type={self.connection_type.value if self.connection_type else None}, "
            f"endpoint={self.endpoint}, running={self.is_running})>"
        )

    @property
    def timeout_seconds(self) -> Optional[float]:
        """Per-request timeout in seconds, or None to use the default."""
        if not self.timeout_ms:
            return None
        return self.timeout_ms / 1000.0
