"""
MCP tool catalog model.

One row per tool discovered on a server. Rows for a server are replaced
wholesale after every successful (re)connection.
"""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text, UniqueConstraint

from database import Base


class McpToolModel(Base):
    """Model for a tool exposed by one MCP server."""

    __tablename__ = "mcp_tools"

    id = Column(Integer, primary_key=True, autoincrement=True)

    server_id = Column(
        Integer,
        ForeignKey("mcp_servers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Unique within a server only; two servers may expose the same name
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    input_schema = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("server_id", "name", name="uix_server_tool"),
    )

    def __repr__(self):
        return f"<McpToolModel(server_id={self.server_id}, name={self.name})>"
