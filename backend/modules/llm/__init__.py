from .completion import (
    ChatOpenAICompletionClient,
    CompletionClient,
    get_completion_client,
    get_llm_model,
    reset_llm_model,
)

__all__ = [
    "ChatOpenAICompletionClient",
    "CompletionClient",
    "get_completion_client",
    "get_llm_model",
    "reset_llm_model",
]
