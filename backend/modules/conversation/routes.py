"""
Conversation API routes.

Conversation CRUD, server scoping, message history and query processing.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from modules.conversation.service import ConversationService, get_conversation_service
from schemas.conversation import (
    ChatMessageSchema,
    ConversationCreateSchema,
    ConversationResponseSchema,
    ConversationUpdateSchema,
    QueryRequest,
    QueryResult,
)
from schemas.mcp import McpServerResponseSchema
from utils.logging import get_logger

logger = get_logger("conversation.routes")

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def _require_conversation(service: ConversationService, conversation_id: int):
    conversation = await service.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


# ============================================================================
# QUERY
# ============================================================================

@router.post("/query", response_model=QueryResult)
async def process_query(
    request: QueryRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    """
    Answer a query, running any tool calls the assistant asks for.

    Tool failures become part of the answer text rather than errors.
    """
    if request.conversation_id is not None:
        await _require_conversation(service, request.conversation_id)
    return await service.process_query(request.query, request.conversation_id)


# ============================================================================
# CONVERSATIONS
# ============================================================================

@router.get("", response_model=List[ConversationResponseSchema])
async def list_conversations(service: ConversationService = Depends(get_conversation_service)):
    conversations = await service.get_conversations()
    return [ConversationResponseSchema.model_validate(c) for c in conversations]


@router.post("", response_model=ConversationResponseSchema, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    data: ConversationCreateSchema,
    service: ConversationService = Depends(get_conversation_service)
):
    try:
        conversation = await service.create_conversation(data.name)
        return ConversationResponseSchema.model_validate(conversation)
    except Exception as e:
        logger.error(f"Failed to create conversation: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create conversation"
        )


@router.get("/{conversation_id}", response_model=ConversationResponseSchema)
async def get_conversation(
    conversation_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    conversation = await _require_conversation(service, conversation_id)
    return ConversationResponseSchema.model_validate(conversation)


@router.put("/{conversation_id}", response_model=ConversationResponseSchema)
async def rename_conversation(
    conversation_id: int,
    data: ConversationUpdateSchema,
    service: ConversationService = Depends(get_conversation_service)
):
    try:
        conversation = await service.rename_conversation(conversation_id, data.name)
        return ConversationResponseSchema.model_validate(conversation)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    if not await service.delete_conversation(conversation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")


# ============================================================================
# SCOPING
# ============================================================================

@router.get("/{conversation_id}/servers", response_model=List[McpServerResponseSchema])
async def list_conversation_servers(
    conversation_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    """Servers scoped to a conversation, in association order."""
    await _require_conversation(service, conversation_id)
    servers = await service.get_conversation_servers(conversation_id)
    return [McpServerResponseSchema.model_validate(s) for s in servers]


@router.post("/{conversation_id}/servers/{server_id}", status_code=status.HTTP_204_NO_CONTENT)
async def add_conversation_server(
    conversation_id: int,
    server_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    try:
        await service.add_server_to_conversation(conversation_id, server_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{conversation_id}/servers/{server_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_conversation_server(
    conversation_id: int,
    server_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    if not await service.remove_server_from_conversation(conversation_id, server_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Server is not scoped to this conversation")


# ============================================================================
# MESSAGES
# ============================================================================

@router.get("/{conversation_id}/messages", response_model=List[ChatMessageSchema])
async def list_messages(
    conversation_id: int,
    service: ConversationService = Depends(get_conversation_service)
):
    await _require_conversation(service, conversation_id)
    messages = await service.get_messages(conversation_id)
    return [ChatMessageSchema.model_validate(m) for m in messages]
