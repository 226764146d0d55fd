"""
MCP server API routes.

Server configuration CRUD, explicit connect/disconnect, persisted tool
catalogs and runtime connection states.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from modules.mcp.errors import UnsupportedEndpointError
from modules.mcp.manager import McpServiceManager, get_mcp_manager
from modules.storage.service import StorageService, get_storage_service
from schemas.mcp import (
    ConnectionStatusSchema,
    McpServerCreateSchema,
    McpServerResponseSchema,
    McpServerUpdateSchema,
    ToolListResponseSchema,
)
from utils.logging import get_logger

logger = get_logger("mcp.routes")

router = APIRouter(prefix="/mcp", tags=["mcp"])


# ============================================================================
# SERVER CONFIGURATION
# ============================================================================

@router.get("/servers", response_model=List[McpServerResponseSchema])
async def list_servers(storage: StorageService = Depends(get_storage_service)):
    """Get all MCP servers, newest first."""
    try:
        servers = await storage.get_all_servers()
        return [McpServerResponseSchema.model_validate(s) for s in servers]
    except Exception as e:
        logger.error(f"Failed to list MCP servers: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve MCP servers"
        )


@router.post("/servers", response_model=McpServerResponseSchema, status_code=status.HTTP_201_CREATED)
async def create_server(
    data: McpServerCreateSchema,
    storage: StorageService = Depends(get_storage_service)
):
    """
    Create an MCP server.

    A server with the same endpoint is updated in place instead.
    """
    try:
        server = await storage.upsert_server(data)
        return McpServerResponseSchema.model_validate(server)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create MCP server: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create MCP server"
        )


@router.get("/servers/{server_id}", response_model=McpServerResponseSchema)
async def get_server(server_id: int, storage: StorageService = Depends(get_storage_service)):
    server = await storage.get_server(server_id)
    if server is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MCP server not found")
    return McpServerResponseSchema.model_validate(server)


@router.put("/servers/{server_id}", response_model=McpServerResponseSchema)
async def update_server(
    server_id: int,
    data: McpServerUpdateSchema,
    storage: StorageService = Depends(get_storage_service)
):
    """Update an existing MCP server configuration."""
    try:
        server = await storage.update_server(server_id, data)
        return McpServerResponseSchema.model_validate(server)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update MCP server: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update MCP server"
        )


@router.delete("/servers/{server_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_server(
    server_id: int,
    storage: StorageService = Depends(get_storage_service),
    manager: McpServiceManager = Depends(get_mcp_manager)
):
    """Delete an MCP server, closing its connection first."""
    if manager.get_connection(server_id) is not None:
        await manager.disconnect_server(server_id)
    deleted = await storage.delete_server(server_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MCP server not found")


# ============================================================================
# CONNECTIONS
# ============================================================================

@router.post("/servers/{server_id}/connect", response_model=ConnectionStatusSchema)
async def connect_server(server_id: int, manager: McpServiceManager = Depends(get_mcp_manager)):
    """
    Connect (or reconnect) a server.

    A failed connection is reported in the returned state, not as an error.
    """
    try:
        await manager.connect_server(server_id)
    except UnsupportedEndpointError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return manager.get_connection(server_id).status()


@router.post("/servers/{server_id}/disconnect", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_server(server_id: int, manager: McpServiceManager = Depends(get_mcp_manager)):
    if not await manager.disconnect_server(server_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MCP server not found")


@router.get("/servers/{server_id}/tools", response_model=ToolListResponseSchema)
async def list_server_tools(server_id: int, storage: StorageService = Depends(get_storage_service)):
    """Get the persisted tool catalog of a server."""
    if await storage.get_server(server_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MCP server not found")
    tools = await storage.get_server_tools(server_id)
    return ToolListResponseSchema(server_id=server_id, tools=tools)


@router.get("/status", response_model=List[ConnectionStatusSchema])
async def connection_status(manager: McpServiceManager = Depends(get_mcp_manager)):
    """Runtime state of every managed connection."""
    return manager.connection_states()
