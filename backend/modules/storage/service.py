"""
Storage service for MCP servers, tool catalogs, conversations and messages.

This module provides the persistence operations the MCP core depends on.
Every method opens its own session from the injected session maker so the
service can be shared by the manager, the conversation loop and the API.
"""

from typing import List, Optional, Sequence

from sqlalchemy import delete, desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.conversation import ChatMessageModel, ConversationModel, ConversationServerModel, MessageRole
from models.mcp_server import McpConnectionType, McpServerModel, STATUS_NOT_STARTED, infer_connection_type
from models.mcp_tool import McpToolModel
from schemas.mcp import McpServerCreateSchema, McpServerUpdateSchema, ToolDescriptor, ToolSchema
from utils.logging import get_logger

logger = get_logger("storage.service")


def parse_connection_type(value: Optional[str], endpoint: Optional[str]) -> McpConnectionType:
    """
    Validate an explicit connection type, or classify a legacy untagged endpoint.

    Raises:
        ValueError: If value is not one of file, npx, sse
    """
    if value is None or value == "":
        return infer_connection_type(endpoint)
    if isinstance(value, McpConnectionType):
        return value
    try:
        return McpConnectionType(value.lower())
    except ValueError:
        raise ValueError(f"Invalid connection type: {value}. Must be 'file', 'npx' or 'sse'")


class StorageService:
    """Service for persisting MCP state."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    async def upsert_server(self, data: McpServerCreateSchema) -> McpServerModel:
        """
        Create a server, or update the existing one with the same endpoint.

        Args:
            data: Server creation data

        Returns:
            The created or updated McpServerModel
        """
        connection_type = parse_connection_type(data.connection_type, data.endpoint)

        async with self._session_maker() as session:
            result = await session.execute(
                select(McpServerModel).where(McpServerModel.endpoint == data.endpoint)
            )
            server = result.scalar_one_or_none()

            if server is None:
                server = McpServerModel(
                    name=data.name,
                    kind=data.kind,
                    endpoint=data.endpoint,
                    connection_type=connection_type,
                    status=STATUS_NOT_STARTED,
                    is_running=data.is_running,
                    timeout_ms=data.timeout_ms,
                )
                session.add(server)
                action = "Created"
            else:
                server.name = data.name
                server.kind = data.kind
                server.connection_type = connection_type
                server.is_running = data.is_running
                server.timeout_ms = data.timeout_ms
                action = "Updated"

            await session.commit()
            await session.refresh(server)

        logger.info(f"{action} MCP server '{server.name}' ({server.id})")
        return server

    async def update_server(self, server_id: int, data: McpServerUpdateSchema) -> McpServerModel:
        """
        Update fields of an existing server.

        Raises:
            ValueError: If server not found or the connection type is invalid
        """
        async with self._session_maker() as session:
            server = await session.get(McpServerModel, server_id)
            if server is None:
                raise ValueError(f"MCP server {server_id} not found")

            if data.name is not None:
                server.name = data.name
            if data.kind is not None:
                server.kind = data.kind
            if data.endpoint is not None:
                server.endpoint = data.endpoint.strip()
            if data.connection_type is not None:
                server.connection_type = parse_connection_type(data.connection_type, server.endpoint)
            if data.is_running is not None:
                server.is_running = data.is_running
            if data.timeout_ms is not None:
                server.timeout_ms = data.timeout_ms

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValueError(f"Another MCP server already uses endpoint {data.endpoint}")
            await session.refresh(server)

        logger.info(f"Updated MCP server {server_id}")
        return server

    async def update_server_status(self, server_id: int, status: str, is_running: bool) -> bool:
        """
        Persist the last-known status of a server.

        Returns:
            True if the server exists
        """
        async with self._session_maker() as session:
            result = await session.execute(
                update(McpServerModel)
                .where(McpServerModel.id == server_id)
                .values(status=status, is_running=is_running)
            )
            await session.commit()
        return result.rowcount > 0

    async def get_server(self, server_id: int) -> Optional[McpServerModel]:
        async with self._session_maker() as session:
            return await session.get(McpServerModel, server_id)

    async def get_all_servers(self) -> List[McpServerModel]:
        """
        Get all servers, most recently created first.

        Returns:
            List of McpServerModel instances
        """
        async with self._session_maker() as session:
            result = await session.execute(
                select(McpServerModel).order_by(desc(McpServerModel.created_at), desc(McpServerModel.id))
            )
            return list(result.scalars().all())

    async def get_running_servers(self) -> List[McpServerModel]:
        """Get servers marked running, in the same order as get_all_servers()."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(McpServerModel)
                .where(McpServerModel.is_running.is_(True))
                .order_by(desc(McpServerModel.created_at), desc(McpServerModel.id))
            )
            return list(result.scalars().all())

    async def delete_server(self, server_id: int) -> bool:
        """
        Delete a server together with its tools and conversation links.

        Returns:
            True if deleted, False if not found
        """
        async with self._session_maker() as session:
            server = await session.get(McpServerModel, server_id)
            if server is None:
                return False
            await session.execute(delete(McpToolModel).where(McpToolModel.server_id == server_id))
            await session.execute(
                delete(ConversationServerModel).where(ConversationServerModel.server_id == server_id)
            )
            await session.delete(server)
            await session.commit()

        logger.info(f"Deleted MCP server {server_id}")
        return True

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def replace_server_tools(self, server_id: int, tools: Sequence[ToolSchema]) -> int:
        """
        Replace the persisted tool catalog of a server (delete-then-insert).

        Both steps run in one transaction so the replace is all-or-nothing.
        Duplicate names in the reported catalog keep the first occurrence.

        Returns:
            Number of tools stored
        """
        seen = set()
        rows = []
        for tool in tools:
            if tool.name in seen:
                continue
            seen.add(tool.name)
            rows.append(McpToolModel(
                server_id=server_id,
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.input_schema or {},
            ))

        async with self._session_maker() as session:
            async with session.begin():
                await session.execute(delete(McpToolModel).where(McpToolModel.server_id == server_id))
                session.add_all(rows)

        logger.info(f"Stored {len(rows)} tools for MCP server {server_id}")
        return len(rows)

    async def get_server_tools(self, server_id: int) -> List[ToolDescriptor]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(McpToolModel).where(McpToolModel.server_id == server_id).order_by(McpToolModel.id)
            )
            return [ToolDescriptor.model_validate(row) for row in result.scalars().all()]

    async def server_has_tool(self, server_id: int, tool_name: str) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                select(McpToolModel.id)
                .where(McpToolModel.server_id == server_id, McpToolModel.name == tool_name)
                .limit(1)
            )
            return result.first() is not None

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(self, name: str) -> ConversationModel:
        async with self._session_maker() as session:
            conversation = ConversationModel(name=name)
            session.add(conversation)
            await session.commit()
            await session.refresh(conversation)

        logger.info(f"Created conversation '{name}' ({conversation.id})")
        return conversation

    async def get_conversation(self, conversation_id: int) -> Optional[ConversationModel]:
        async with self._session_maker() as session:
            return await session.get(ConversationModel, conversation_id)

    async def get_conversations(self) -> List[ConversationModel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ConversationModel).order_by(desc(ConversationModel.updated_at), desc(ConversationModel.id))
            )
            return list(result.scalars().all())

    async def rename_conversation(self, conversation_id: int, name: str) -> ConversationModel:
        async with self._session_maker() as session:
            conversation = await session.get(ConversationModel, conversation_id)
            if conversation is None:
                raise ValueError(f"Conversation {conversation_id} not found")
            conversation.name = name
            conversation.touch()
            await session.commit()
            await session.refresh(conversation)
        return conversation

    async def delete_conversation(self, conversation_id: int) -> bool:
        async with self._session_maker() as session:
            conversation = await session.get(ConversationModel, conversation_id)
            if conversation is None:
                return False
            await session.delete(conversation)
            await session.commit()

        logger.info(f"Deleted conversation {conversation_id}")
        return True

    async def add_server_to_conversation(self, conversation_id: int, server_id: int) -> bool:
        """
        Scope a conversation to a server.

        Returns:
            True if a new link was created, False if it already existed

        Raises:
            ValueError: If the conversation or server does not exist
        """
        async with self._session_maker() as session:
            conversation = await session.get(ConversationModel, conversation_id)
            if conversation is None:
                raise ValueError(f"Conversation {conversation_id} not found")
            if await session.get(McpServerModel, server_id) is None:
                raise ValueError(f"MCP server {server_id} not found")

            existing = await session.execute(
                select(ConversationServerModel.id).where(
                    ConversationServerModel.conversation_id == conversation_id,
                    ConversationServerModel.server_id == server_id,
                )
            )
            if existing.first() is not None:
                return False

            session.add(ConversationServerModel(conversation_id=conversation_id, server_id=server_id))
            conversation.touch()
            await session.commit()

        logger.info(f"Added server {server_id} to conversation {conversation_id}")
        return True

    async def remove_server_from_conversation(self, conversation_id: int, server_id: int) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                delete(ConversationServerModel).where(
                    ConversationServerModel.conversation_id == conversation_id,
                    ConversationServerModel.server_id == server_id,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                return False
            conversation = await session.get(ConversationModel, conversation_id)
            if conversation is not None:
                conversation.touch()
            await session.commit()
        return True

    async def get_conversation_servers(self, conversation_id: int) -> List[McpServerModel]:
        """Servers scoped to a conversation, in association order."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(McpServerModel)
                .join(ConversationServerModel, ConversationServerModel.server_id == McpServerModel.id)
                .where(ConversationServerModel.conversation_id == conversation_id)
                .order_by(ConversationServerModel.id)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_chat_message(self, conversation_id: int, role: str, content: str) -> ChatMessageModel:
        """
        Append a chat message and bump the conversation's updated timestamp.

        Raises:
            ValueError: If the conversation does not exist
        """
        async with self._session_maker() as session:
            conversation = await session.get(ConversationModel, conversation_id)
            if conversation is None:
                raise ValueError(f"Conversation {conversation_id} not found")
            message = ChatMessageModel(
                conversation_id=conversation_id,
                role=MessageRole(role),
                content=content,
            )
            session.add(message)
            conversation.touch()
            await session.commit()
            await session.refresh(message)
        return message

    async def get_chat_messages(self, conversation_id: int) -> List[ChatMessageModel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ChatMessageModel)
                .where(ChatMessageModel.conversation_id == conversation_id)
                .order_by(ChatMessageModel.id)
            )
            return list(result.scalars().all())


# Global service instance
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """
    Get or create the global storage service instance.

    Returns:
        StorageService: Service instance bound to the application database
    """
    global _storage_service
    if _storage_service is None:
        from database import async_session_maker
        _storage_service = StorageService(async_session_maker)
    return _storage_service
