"""
Schemas for the chat-completion capability.

Requests and responses mirror the OpenAI chat-completions wire format that
the conversation loop is written against.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FunctionCall(BaseModel):
    """Function half of a tool call; ``arguments`` is a JSON string."""

    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Dict[str, Any]:
        """JSON-decode the arguments string (empty means no arguments)."""
        if not self.arguments or not self.arguments.strip():
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(value).__name__}")
        return value


class ToolCallRequest(BaseModel):
    """A tool invocation requested by the assistant."""

    id: Optional[str] = None
    type: str = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    """The assistant message of a completion choice."""

    role: str = "assistant"
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class CompletionChoice(BaseModel):
    message: AssistantMessage


class CompletionResponse(BaseModel):
    """Response of one completion request."""

    choices: List[CompletionChoice]

    @property
    def message(self) -> AssistantMessage:
        return self.choices[0].message


class CompletionRequest(BaseModel):
    """One completion request; ``tools`` is omitted from the payload when None."""

    model: str
    messages: List[Dict[str, Any]]
    tools: Optional[List[Dict[str, Any]]] = None
    max_tokens: Optional[int] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
