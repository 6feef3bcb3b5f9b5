"""
Invocation Gateway — the single entry point for running a tool by id.

    result = await gateway.invoke("weather:get_current_weather", {"location": "Paris"})

Lookup and connection checks fail before anything is written to a worker.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp_gateway.errors import ToolNotFound, WorkerNotConnected
from mcp_gateway.manager import ConnectionRegistry
from mcp_gateway.registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)


class InvocationGateway:
    def __init__(self, tools: ToolRegistry, connections: ConnectionRegistry):
        self._tools = tools
        self._connections = connections

    async def invoke(self, tool_id: str, arguments: dict[str, Any] | None = None) -> Any:
        """
        Run a tool and return its result.

        Raises:
            ToolNotFound: no tool with that id.
            WorkerNotConnected: the owning worker is not connected.
            CorrelationTimeout / RemoteToolError / TransportFailure:
                propagated from the request itself.
        """
        descriptor = self._tools.get(tool_id)
        if descriptor is None:
            raise ToolNotFound(tool_id)

        arguments = dict(arguments or {})
        if descriptor.is_local:
            logger.info(f"Invoking built-in tool {descriptor.name} with {arguments}")
            return await descriptor.handler(arguments)

        worker_id = descriptor.worker_id
        if not self._connections.is_connected(worker_id):
            state = self._connections.state(worker_id)
            raise WorkerNotConnected(worker_id, state.value if state else "unknown")

        logger.info(f"Invoking {tool_id} with {arguments}")
        return await self._connections.request(
            worker_id,
            "tools/call",
            {"name": descriptor.name, "arguments": arguments},
        )

    def resolve(self, name: str) -> ToolDescriptor | None:
        """Find a tool by full id or bare name."""
        return self._tools.find(name)

    def list(self) -> list[ToolDescriptor]:
        """Snapshot of every known tool, each carrying its worker id."""
        return self._tools.list()


def result_to_text(result: Any) -> str:
    """
    Flatten a tool result into text for prompts and traces.

    MCP-style ``{"content": [{"type": "text", "text": ...}]}`` results are
    reduced to their text parts; anything else non-string is JSON.
    """
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            part.get("text", "")
            for part in result["content"]
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if texts:
            return "\n".join(texts)
    return json.dumps(result, indent=2, default=str)
