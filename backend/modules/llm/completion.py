"""
Chat-completion capability.

The conversation loop talks to a ``CompletionClient``; the default
implementation drives an OpenAI-compatible endpoint through LangChain's
ChatOpenAI and normalizes the reply into the chat-completions shape.
"""

import json
from typing import Any, Dict, List, Optional, Protocol

from langchain_core.messages import AIMessage, convert_to_messages
from langchain_openai import ChatOpenAI

from config import settings
from schemas.completion import (
    AssistantMessage,
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
    FunctionCall,
    ToolCallRequest,
)
from utils.logging import get_logger

logger = get_logger("llm.completion")

# Cache the LLM model instance (same model for all conversations)
_llm_model: Optional[ChatOpenAI] = None


def get_llm_model() -> ChatOpenAI:
    """
    Get the chat model configured by LLM_BASE_URL, LLM_API_KEY and LLM_MODEL (singleton).

    Raises:
        ValueError: If the model or API key is missing
    """
    global _llm_model

    if _llm_model is not None:
        return _llm_model

    if not settings.llm_api_key:
        raise ValueError("LLM_API_KEY is not configured. Set it in backend/.env")
    if not settings.llm_model:
        raise ValueError("LLM_MODEL is not configured. Set it in backend/.env")

    logger.info(f"Initializing LLM model: model={settings.llm_model}, base_url={settings.llm_base_url}")
    _llm_model = ChatOpenAI(
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        max_tokens=settings.llm_max_tokens,
    )
    return _llm_model


def reset_llm_model():
    """Reset the cached LLM model so the next call picks up new settings."""
    global _llm_model
    _llm_model = None
    logger.info("LLM model cache cleared")


class CompletionClient(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        ...


def _content_text(content: Any) -> Optional[str]:
    if content is None or isinstance(content, str):
        return content or None
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts) or None


def to_completion_response(message: AIMessage) -> CompletionResponse:
    """
    Normalize a LangChain AI message into a chat-completions response.

    Raw OpenAI tool calls are preferred because they carry the arguments
    string exactly as the model produced it.
    """
    tool_calls: List[ToolCallRequest] = []
    raw_calls = message.additional_kwargs.get("tool_calls") or []
    if raw_calls:
        for raw in raw_calls:
            function = raw.get("function") or {}
            tool_calls.append(ToolCallRequest(
                id=raw.get("id"),
                function=FunctionCall(name=function.get("name", ""), arguments=function.get("arguments") or "{}"),
            ))
    else:
        for call in message.tool_calls:
            tool_calls.append(ToolCallRequest(
                id=call.get("id"),
                function=FunctionCall(name=call["name"], arguments=json.dumps(call.get("args") or {})),
            ))

    return CompletionResponse(choices=[CompletionChoice(message=AssistantMessage(
        content=_content_text(message.content),
        tool_calls=tool_calls,
    ))])


class ChatOpenAICompletionClient:
    """CompletionClient backed by ChatOpenAI."""

    def __init__(self, model: Optional[ChatOpenAI] = None):
        self._model = model

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model or get_llm_model()
        payload = request.payload()
        tools = payload.pop("tools", None)
        runnable = model.bind_tools(tools) if tools else model

        bound: Dict[str, Any] = {}
        if payload.get("max_tokens"):
            bound["max_tokens"] = payload["max_tokens"]
        if payload.get("model") and payload["model"] != model.model_name:
            bound["model"] = payload["model"]
        if bound:
            runnable = runnable.bind(**bound)

        reply = await runnable.ainvoke(convert_to_messages(payload["messages"]))
        return to_completion_response(reply)


# Global client instance
_completion_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    global _completion_client
    if _completion_client is None:
        _completion_client = ChatOpenAICompletionClient()
    return _completion_client
