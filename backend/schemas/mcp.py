"""
Pydantic schemas for MCP servers and tools.

This module contains the normalized tool schema produced by discovery,
tool invocation results, and request/response schemas for the MCP API.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolSchema(BaseModel):
    """Normalized tool descriptor as reported by a server's tools/list."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)

    def to_openai_tool(self) -> Dict[str, Any]:
        """Render as a chat-completions function tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


class ToolDescriptor(ToolSchema):
    """A persisted tool, tagged with its owning server."""

    model_config = ConfigDict(from_attributes=True)

    server_id: int


class ToolCallResult(BaseModel):
    """Result payload of a tools/call request."""

    content: Any = None
    is_error: bool = False

    def text(self) -> str:
        """Flatten MCP content blocks into plain text for the transcript."""
        content = self.content
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text":
                    parts.append(str(part.get("text", "")))
                elif isinstance(part, dict):
                    parts.append(json.dumps(part, ensure_ascii=False))
                else:
                    parts.append(str(part))
            return "\n".join(parts)
        return json.dumps(content, ensure_ascii=False)


class McpServerCreateSchema(BaseModel):
    """Schema for creating (or upserting by endpoint) an MCP server."""

    name: str = Field(..., description="Server name")
    kind: str = Field(default="local", description="Classification tag")
    endpoint: str = Field(..., description="Script path, npx command line or SSE URL")
    connection_type: Optional[str] = Field(
        None, description="file, npx or sse; inferred from the endpoint when omitted"
    )
    is_running: bool = Field(default=False, description="Connect at startup")
    timeout_ms: Optional[int] = Field(None, description="Per-request timeout override")

    @field_validator("endpoint")
    @classmethod
    def endpoint_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("endpoint must not be empty")
        return value


class McpServerUpdateSchema(BaseModel):
    """Schema for updating an existing MCP server."""

    name: Optional[str] = Field(None, description="Server name")
    kind: Optional[str] = Field(None, description="Classification tag")
    endpoint: Optional[str] = Field(None, description="Script path, command line or URL")
    connection_type: Optional[str] = Field(None, description="file, npx or sse")
    is_running: Optional[bool] = Field(None, description="Connect at startup")
    timeout_ms: Optional[int] = Field(None, description="Per-request timeout override")


class McpServerResponseSchema(BaseModel):
    """Schema for MCP server response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: str
    endpoint: str
    connection_type: str
    status: str
    is_running: bool
    timeout_ms: Optional[int]
    created_at: datetime
    updated_at: datetime

    @field_validator("connection_type", mode="before")
    @classmethod
    def enum_to_value(cls, value: Any) -> Any:
        return getattr(value, "value", value)


class ConnectionStatusSchema(BaseModel):
    """Runtime (non-persisted) state of one server connection."""

    server_id: int
    name: str
    state: str
    discovery_state: str
    last_error: Optional[str] = None
    tool_count: int = 0


class ToolListResponseSchema(BaseModel):
    """Tools persisted for one server."""

    server_id: int
    tools: List[ToolDescriptor]
