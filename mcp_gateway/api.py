"""
HTTP surface consumed by the chat UI.

    POST /api/agent/chat                     one orchestration turn
    GET  /api/agent/models                   configured model providers
    GET  /api/agent/status/{provider}        one provider's entry
    POST /api/agent/refresh-tools            re-request every connected worker's tools
    GET  /api/mcp/servers                    worker status
    GET  /api/mcp/servers/{id}               one worker's status
    GET  /api/mcp/servers/{id}/tools         one worker's tools
    POST /api/mcp/servers/{id}/reconnect     tear down and reconnect a worker
    POST /api/mcp/servers/{id}/refresh-tools re-request a worker's tool list
    POST /api/mcp/servers/{id}/test          report a worker's connection state
    GET  /api/mcp/tools                      every known tool
    GET  /health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from mcp_gateway.agent import demo_turn
from mcp_gateway.app import GatewayApp
from mcp_gateway.errors import GatewayError, ModelCapabilityFailure
from mcp_gateway.models import DEMO_PROVIDER

logger = logging.getLogger(__name__)


class HistoryMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(
        default_factory=list, validation_alias=AliasChoices("history", "chatHistory")
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(gateway_app: GatewayApp, manage_workers: bool = True) -> FastAPI:
    """
    Build the FastAPI app around an existing GatewayApp.

    With ``manage_workers`` the app's lifespan opens every enabled worker
    on startup and stops them all on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_workers:
            await gateway_app.start()
        try:
            yield
        finally:
            if manage_workers:
                await gateway_app.stop()

    app = FastAPI(title="MCP Gateway", lifespan=lifespan)
    app.state.gateway = gateway_app

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "OK", "timestamp": _now()}

    # ── agent ─────────────────────────────────────────────────

    @app.post("/api/agent/chat")
    async def chat(body: ChatRequest):
        providers = [agent["id"] for agent in gateway_app.models.available()]
        if body.provider not in providers:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": f"Invalid provider. Available: {', '.join(providers)}"},
            )

        history = [m.model_dump() for m in body.history]
        try:
            if body.provider == DEMO_PROVIDER and not gateway_app.models.providers():
                turn = demo_turn(body.message)
            else:
                turn = await gateway_app.agent.run(body.provider, body.message, history)
        except ModelCapabilityFailure as e:
            logger.error(f"Error processing message with {body.provider}: {e}")
            return JSONResponse(
                status_code=502,
                content={
                    "success": False,
                    "error": f"Agent execution failed: {e}",
                    "provider": body.provider,
                    "timestamp": _now(),
                },
            )

        return {
            "success": True,
            "response": turn.response,
            "toolsUsed": [t.to_dict() for t in turn.tools_used],
            "reasoning": turn.reasoning,
            "provider": turn.provider,
            "timestamp": _now(),
        }

    @app.get("/api/agent/models")
    async def models() -> dict[str, Any]:
        return {"success": True, "agents": gateway_app.models.available()}

    @app.get("/api/agent/status/{provider}")
    async def agent_status(provider: str) -> dict[str, Any]:
        for agent in gateway_app.models.available():
            if agent["id"] == provider:
                return {"success": True, "agent": agent}
        raise HTTPException(status_code=404, detail="Agent not found")

    @app.post("/api/agent/refresh-tools")
    async def refresh_agent_tools() -> dict[str, Any]:
        counts = await gateway_app.connections.refresh_all_tools()
        return {
            "success": True,
            "message": "Agent tools refreshed successfully",
            "workers": counts,
            "tools": len(gateway_app.gateway.list()),
        }

    # ── workers / tools ───────────────────────────────────────

    def _require_worker(worker_id: str) -> None:
        if gateway_app.connections.get(worker_id) is None:
            raise HTTPException(status_code=404, detail="MCP server not found")

    @app.get("/api/mcp/servers")
    async def servers() -> dict[str, Any]:
        return {"success": True, "servers": gateway_app.connections.status()}

    @app.get("/api/mcp/servers/{worker_id}")
    async def server(worker_id: str) -> dict[str, Any]:
        _require_worker(worker_id)
        return {"success": True, "server": gateway_app.connections.status()[worker_id]}

    @app.get("/api/mcp/servers/{worker_id}/tools")
    async def server_tools(worker_id: str) -> dict[str, Any]:
        _require_worker(worker_id)
        return {"success": True, "tools": [d.to_dict() for d in gateway_app.tools.for_worker(worker_id)]}

    @app.post("/api/mcp/servers/{worker_id}/reconnect")
    async def reconnect(worker_id: str) -> dict[str, Any]:
        _require_worker(worker_id)
        conn = await gateway_app.connections.reconnect(worker_id)
        return {
            "success": True,
            "status": conn.state.value,
            "message": f"Reconnection initiated for MCP server: {worker_id}",
        }

    @app.post("/api/mcp/servers/{worker_id}/refresh-tools")
    async def refresh_tools(worker_id: str):
        _require_worker(worker_id)
        try:
            tools = await gateway_app.connections.refresh_tools(worker_id)
        except GatewayError as e:
            return JSONResponse(status_code=502, content={"success": False, "error": str(e)})
        return {"success": True, "tools": [d.to_dict() for d in tools]}

    @app.post("/api/mcp/servers/{worker_id}/test")
    async def check_server(worker_id: str) -> dict[str, Any]:
        _require_worker(worker_id)
        state = gateway_app.connections.state(worker_id).value
        return {"success": True, "status": state, "message": f"MCP server {worker_id} is {state}"}

    @app.get("/api/mcp/tools")
    async def tools() -> dict[str, Any]:
        return {"success": True, "tools": [d.to_dict() for d in gateway_app.gateway.list()]}

    return app
