"""
Structured logging setup using structlog.

This module configures structured logging for the application with JSON output
in production and human-readable format in development.
"""

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logging(level: str = "INFO", json_output: Optional[bool] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines; defaults to JSON unless level is DEBUG
    """
    if json_output is None:
        json_output = level.upper() != "DEBUG"

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )
    # aiosqlite logs every cursor operation at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (optional)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_server_event(server_id: Any, event_type: str, server_name: Optional[str] = None, **kwargs) -> None:
    """
    Log an MCP server lifecycle event with structured data.

    Args:
        server_id: ServerConfig identifier
        event_type: Type of event (connected, connect_failed, disconnected, ...)
        server_name: Human-readable server name (optional)
        **kwargs: Additional context
    """
    logger = get_logger("mcp.server")
    logger.info(
        f"MCP server {event_type}",
        server_id=server_id,
        server_name=server_name,
        event_type=event_type,
        **kwargs
    )


def log_tool_call(tool_name: str, server_id: Any, success: bool, duration: float = None, **kwargs) -> None:
    """
    Log a tool invocation with structured data.

    Args:
        tool_name: Name of the invoked tool
        server_id: Owning server identifier (None for the fallback route)
        success: Whether the call succeeded
        duration: Call duration in seconds (optional)
        **kwargs: Additional context
    """
    logger = get_logger("mcp.tool")
    logger.info(
        f"Tool {tool_name}",
        tool_name=tool_name,
        server_id=server_id,
        success=success,
        duration=duration,
        **kwargs
    )
