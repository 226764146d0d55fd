"""
Conversation schemas for chat sessions, scoping and query processing.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConversationCreateSchema(BaseModel):
    """Schema for creating a conversation."""

    name: str = Field(..., description="Conversation name")


class ConversationUpdateSchema(BaseModel):
    """Schema for renaming a conversation."""

    name: str = Field(..., description="New conversation name")


class ConversationResponseSchema(BaseModel):
    """Schema for conversation response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime
    updated_at: datetime


class ChatMessageSchema(BaseModel):
    """One persisted chat turn."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    role: str
    content: str
    created_at: datetime

    @field_validator("role", mode="before")
    @classmethod
    def enum_to_value(cls, value):
        return getattr(value, "value", value)


class QueryRequest(BaseModel):
    """Body of a conversational query."""

    query: str = Field(..., min_length=1, description="User query text")
    conversation_id: Optional[int] = Field(None, description="Conversation to scope and persist to")


class QueryResult(BaseModel):
    """Assistant output for one processed query."""

    text: str
    conversation_id: Optional[int] = None
    tool_calls: List[str] = Field(default_factory=list, description="Names of tools invoked")
