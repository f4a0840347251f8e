"""HTTP API for connecting and inspecting MCP tool servers."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from mcpchat.config import McpConfigInput
from mcpchat.core.errors import ServerConnectionError
from mcpchat.core.models import ToolDescriptor
from mcpchat.services.mcp import ConnectionRegistry
from mcpchat.runtime import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mcp", tags=["mcp"])


class ToolResponse(BaseModel):
    name: str
    description: Optional[str] = None
    inputSchema: Dict[str, Any] = Field(default_factory=dict)
    serverName: str

    @classmethod
    def from_descriptor(cls, tool: ToolDescriptor) -> "ToolResponse":
        return cls(**tool.to_dict())


class ConnectResponse(BaseModel):
    success: bool
    servers: List[str]
    tools: List[ToolResponse]


class ServersResponse(BaseModel):
    servers: List[str]
    tools: List[ToolResponse]


class ServerStatusResponse(BaseModel):
    name: str
    connected: bool
    tools: List[ToolResponse]


class DisconnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server_name: str = Field(..., alias="serverName", min_length=1)


class DisconnectResponse(BaseModel):
    success: bool
    message: str


@router.post("/connect", response_model=ConnectResponse)
async def connect_servers(
    request: McpConfigInput,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectResponse:
    """Connect every server in the bundle, stopping at the first failure."""
    tools: List[ToolDescriptor] = []
    for name, server in request.server_configs().items():
        try:
            tools.extend(await registry.connect(name, server))
        except ServerConnectionError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail={"error": f"Failed to connect to {name}", "details": str(exc)},
            ) from exc

    return ConnectResponse(
        success=True,
        servers=list(request.mcpServers),
        tools=[ToolResponse.from_descriptor(tool) for tool in tools],
    )


@router.get("/servers", response_model=ServersResponse)
async def list_servers(registry: ConnectionRegistry = Depends(get_registry)) -> ServersResponse:
    return ServersResponse(
        servers=registry.connected_names(),
        tools=[ToolResponse.from_descriptor(tool) for tool in registry.all_tools()],
    )


@router.get("/servers/{name}", response_model=ServerStatusResponse)
async def server_status(
    name: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerStatusResponse:
    return ServerStatusResponse(
        name=name,
        connected=registry.is_connected(name),
        tools=[ToolResponse.from_descriptor(tool) for tool in registry.tools_for(name)],
    )


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect_server(
    request: DisconnectRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> DisconnectResponse:
    await registry.disconnect(request.server_name)
    return DisconnectResponse(success=True, message=f"Disconnected from {request.server_name}")
