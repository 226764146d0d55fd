"""
Persistence layer for MCP servers, tools, conversations and messages.
"""

from .service import StorageService, get_storage_service

__all__ = ["StorageService", "get_storage_service"]
