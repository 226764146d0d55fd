"""
Conversation service: conversation scoping, message history and the
tool-use loop that turns a user query into an assistant answer.
"""

from typing import Any, Dict, List, Optional

from config import settings
from models.conversation import ChatMessageModel, ConversationModel, MessageRole
from models.mcp_server import McpServerModel
from modules.llm.completion import CompletionClient, get_completion_client
from modules.mcp.errors import McpError
from modules.mcp.manager import McpServiceManager, get_mcp_manager
from modules.storage.service import StorageService, get_storage_service
from schemas.completion import CompletionRequest, ToolCallRequest
from schemas.conversation import QueryResult
from schemas.mcp import ToolSchema
from utils.logging import get_logger

logger = get_logger("conversation.service")


class ConversationService:
    """
    Service for conversations and query processing.

    Calls for one conversation must be serialized by the caller; the
    service keeps no per-conversation state between calls.
    """

    def __init__(
        self,
        storage: StorageService,
        manager: McpServiceManager,
        completion: CompletionClient,
        model: str = settings.llm_model,
        max_tokens: Optional[int] = settings.llm_max_tokens,
    ):
        self.storage = storage
        self.manager = manager
        self.completion = completion
        self.model = model
        self.max_tokens = max_tokens

    # ── Conversations ─────────────────────────────────────────────────────

    async def create_conversation(self, name: str) -> ConversationModel:
        return await self.storage.create_conversation(name)

    async def get_conversation(self, conversation_id: int) -> Optional[ConversationModel]:
        return await self.storage.get_conversation(conversation_id)

    async def get_conversations(self) -> List[ConversationModel]:
        return await self.storage.get_conversations()

    async def rename_conversation(self, conversation_id: int, name: str) -> ConversationModel:
        return await self.storage.rename_conversation(conversation_id, name)

    async def delete_conversation(self, conversation_id: int) -> bool:
        return await self.storage.delete_conversation(conversation_id)

    async def add_server_to_conversation(self, conversation_id: int, server_id: int) -> bool:
        return await self.storage.add_server_to_conversation(conversation_id, server_id)

    async def remove_server_from_conversation(self, conversation_id: int, server_id: int) -> bool:
        return await self.storage.remove_server_from_conversation(conversation_id, server_id)

    async def get_conversation_servers(self, conversation_id: int) -> List[McpServerModel]:
        return await self.storage.get_conversation_servers(conversation_id)

    async def get_messages(self, conversation_id: int) -> List[ChatMessageModel]:
        return await self.storage.get_chat_messages(conversation_id)

    # ── Tools ─────────────────────────────────────────────────────────────

    async def get_tools(self, conversation_id: Optional[int] = None) -> List[ToolSchema]:
        """
        Resolve the tools visible to a query, deduplicated by name.

        A conversation with scoped servers sees the tools of its running
        scoped servers; otherwise every running server contributes. When no
        stored server yields a tool, the fallback connection's cache is used.
        """
        servers: List[McpServerModel] = []
        if conversation_id is not None:
            servers = await self.storage.get_conversation_servers(conversation_id)
        if servers:
            servers = [s for s in servers if s.is_running]
        else:
            servers = await self.storage.get_running_servers()

        tools: List[ToolSchema] = []
        for server in servers:
            tools.extend(await self.storage.get_server_tools(server.id))
        if not tools:
            tools = self.manager.fallback_tools()

        unique: Dict[str, ToolSchema] = {}
        for tool in tools:
            unique.setdefault(tool.name, tool)
        return list(unique.values())

    # ── Queries ───────────────────────────────────────────────────────────

    async def process_query(self, query: str, conversation_id: Optional[int] = None) -> QueryResult:
        """
        Answer a user query, running any tool calls the assistant requests.

        Tool failures are folded into the transcript as "tool failed: ..."
        results. When conversation_id is given, the user message and the
        combined assistant output are saved.
        """
        tools = await self.get_tools(conversation_id)
        messages: List[Dict[str, Any]] = [{"role": MessageRole.USER.value, "content": query}]
        logger.info(f"Processing query with {len(tools)} tools", conversation_id=conversation_id)

        try:
            response = await self.completion.complete(self._request(
                messages, [tool.to_openai_tool() for tool in tools] or None
            ))
        except Exception as e:
            logger.error(f"Completion request failed: {e}", exc_info=True)
            return QueryResult(text=f"query failed: {e}", conversation_id=conversation_id)

        output: List[str] = []
        called: List[str] = []
        reply = response.message
        if reply.content:
            output.append(reply.content)

        for tool_call in reply.tool_calls:
            name = tool_call.function.name
            called.append(name)
            output.append(f"[called tool {name} with {tool_call.function.arguments}]")

            messages.append({"role": MessageRole.USER.value, "content": await self._run_tool(tool_call, conversation_id)})
            try:
                follow_up = await self.completion.complete(self._request(messages))
            except Exception as e:
                logger.error(f"Follow-up completion failed after tool {name}: {e}")
                output.append(f"failed to process tool result: {e}")
                continue
            if follow_up.message.content:
                output.append(follow_up.message.content)
                messages.append({"role": MessageRole.ASSISTANT.value, "content": follow_up.message.content})

        text = "\n".join(output)
        if conversation_id is not None:
            await self.storage.save_chat_message(conversation_id, MessageRole.USER.value, query)
            await self.storage.save_chat_message(conversation_id, MessageRole.ASSISTANT.value, text)

        return QueryResult(text=text, conversation_id=conversation_id, tool_calls=called)

    async def _run_tool(self, tool_call: ToolCallRequest, conversation_id: Optional[int]) -> str:
        name = tool_call.function.name
        try:
            arguments = tool_call.function.parsed_arguments()
            result = await self.manager.call_tool(name, arguments, conversation_id)
        except (McpError, ValueError) as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"tool failed: {e}"
        except Exception as e:
            logger.error(f"Tool {name} failed unexpectedly: {e}", exc_info=True)
            return f"tool failed: {e}"
        return result.text()

    def _request(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> CompletionRequest:
        return CompletionRequest(
            model=self.model,
            messages=list(messages),
            tools=tools,
            max_tokens=self.max_tokens,
        )


# Global service instance
_conversation_service: Optional[ConversationService] = None


def get_conversation_service() -> ConversationService:
    """
    Get or create the global conversation service instance.

    Returns:
        ConversationService: Service wired to the global storage, manager and completion client
    """
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService(
            get_storage_service(), get_mcp_manager(), get_completion_client()
        )
    return _conversation_service
