"""
Pydantic schemas for API validation.

This package contains Pydantic models for request/response validation
and data transformation.
"""

from .mcp import ToolSchema, ToolDescriptor, ToolCallResult, McpServerCreateSchema, McpServerUpdateSchema
from .conversation import QueryRequest, QueryResult
from .completion import CompletionRequest, CompletionResponse

__all__ = [
    "ToolSchema",
    "ToolDescriptor",
    "ToolCallResult",
    "McpServerCreateSchema",
    "McpServerUpdateSchema",
    "QueryRequest",
    "QueryResult",
    "CompletionRequest",
    "CompletionResponse",
]
