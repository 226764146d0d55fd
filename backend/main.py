"""
FastAPI application entry point for the smart-pet MCP backend service.

This module sets up the FastAPI application with CORS, health endpoints,
and routes for MCP server management and conversations.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import check_database_health, close_database, create_tables
from modules.conversation.routes import router as conversation_router
from modules.mcp.manager import cleanup_mcp_manager, get_mcp_manager
from modules.mcp.routes import router as mcp_router
from utils.logging import setup_logging

logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks."""
    # Startup
    setup_logging(settings.log_level)
    logging.info("Starting smart-pet MCP backend service")

    try:
        await create_tables()
        logging.info("Database tables created/verified")

        # One bad server never blocks startup
        connected = await get_mcp_manager().initialize_all_servers()
        logging.info(f"Connected {connected} MCP servers")

        yield
    finally:
        # Shutdown
        logging.info("Shutting down smart-pet MCP backend service")
        try:
            await cleanup_mcp_manager()
        except Exception as e:
            logging.error(f"Error shutting down MCP connections: {e}", exc_info=True)
        await close_database()
        logging.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Smart-Pet MCP Backend",
    description="Orchestrates MCP tool servers for conversational tool use",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "smart-pet-mcp-backend"}


@app.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check with database and MCP connection state."""
    database_ok = await check_database_health()
    connections = get_mcp_manager().connection_states()
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "smart-pet-mcp-backend",
        "version": "0.1.0",
        "dependencies": {
            "database": "healthy" if database_ok else "unhealthy",
            "mcp_servers": {
                "managed": len(connections),
                "connected": sum(1 for c in connections if c.state == "connected"),
            },
        },
    }


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logging.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


# Include routers
app.include_router(mcp_router, prefix="/api")
app.include_router(conversation_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
