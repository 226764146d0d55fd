"""
Conversation models for chat sessions.

A conversation owns an ordered list of chat messages and a set of scoped
MCP servers whose tools it prefers when resolving tool calls.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base


class MessageRole(enum.Enum):
    """Role of a persisted chat message."""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationModel(Base):
    """Model for storing a logical chat session."""

    __tablename__ = "mcp_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)

    # Metadata
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    server_links = relationship(
        "ConversationServerModel",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConversationServerModel.id",
    )
    messages = relationship(
        "ChatMessageModel",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessageModel.id",
    )

    def __repr__(self):
        return f"<ConversationModel(id={self.id}, name={self.name})>"

    def touch(self):
        """Bump the updated timestamp after a scope change or new message."""
        self.updated_at = datetime.utcnow()


class ConversationServerModel(Base):
    """Many-to-many link scoping a conversation to an MCP server."""

    __tablename__ = "mcp_conversation_servers"

    # Autoincrement id doubles as association order
    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(
        Integer,
        ForeignKey("mcp_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    server_id = Column(
        Integer,
        ForeignKey("mcp_servers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("conversation_id", "server_id", name="uix_conversation_server"),
    )

    def __repr__(self):
        return f"<ConversationServerModel(conversation={self.conversation_id}, server={self.server_id})>"


class ChatMessageModel(Base):
    """Append-only chat message row."""

    __tablename__ = "mcp_chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(
        Integer,
        ForeignKey("mcp_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(Enum(MessageRole), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<ChatMessageModel(id={self.id}, conversation={self.conversation_id}, role={self.role.value})>"
