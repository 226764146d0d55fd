from .service import ConversationService, get_conversation_service

__all__ = ["ConversationService", "get_conversation_service"]
