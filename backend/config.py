"""
Configuration management for the smart-pet MCP backend service.

This module uses Pydantic Settings for environment-based configuration
with validation and type checking.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    debug: bool = Field(default=False, description="Enable debug mode")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    allowed_origins: List[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Allowed CORS origins (desktop renderer dev server)"
    )

    # Database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./smart_pet.db",
        description="Database connection URL"
    )

    # Completion capability (OpenAI-compatible chat completions)
    llm_base_url: str = Field(
        default="http://localhost:3001/v1",
        description="Base URL of the OpenAI-compatible completion endpoint"
    )
    llm_api_key: str = Field(
        default="sk-fastgpt",
        description="API key for the completion endpoint"
    )
    llm_model: str = Field(default="qwen-turbo", description="Model ID to use")
    llm_max_tokens: int = Field(default=1000, description="Max tokens per completion")

    # MCP settings
    mcp_request_timeout: float = Field(
        default=60.0,
        description="Default per-request timeout in seconds when a server has no timeout_ms"
    )
    mcp_sse_connect_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for opening an SSE event stream"
    )
    mcp_discovery_retries: int = Field(
        default=3,
        description="Number of tools/list attempts after a fresh connection"
    )
    mcp_discovery_backoff: float = Field(
        default=5.0,
        description="Fixed delay in seconds between tools/list attempts"
    )
    mcp_eviction_delay: float = Field(
        default=1.0,
        description="Delay in seconds before an idle ad hoc connection is closed"
    )
    mcp_client_name: str = Field(default="smart-pet-mcp-client", description="clientInfo.name")
    mcp_client_version: str = Field(default="1.0.0", description="clientInfo.version")
    mcp_sse_read_timeout: float = Field(
        default=300.0,
        description="Seconds an open SSE stream may stay silent before it is treated as lost"
    )
    mcp_fallback_endpoint: Optional[str] = Field(
        default=None,
        description="Endpoint of a directly held server consulted when no stored server owns a tool"
    )
    mcp_fallback_connection_type: Optional[str] = Field(
        default=None,
        description="Connection type of the fallback server (inferred from the endpoint when unset)"
    )


# Global settings instance
settings = Settings()
