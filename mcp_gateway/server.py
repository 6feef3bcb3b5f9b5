"""
Worker-side SDK: the other end of the gateway's transports.

A worker is a standalone process (or WebSocket endpoint) that:
1. Answers ``initialize`` and then advertises its tools with an
   unsolicited ``tools/list`` notification
2. Dispatches ``tools/call`` to registered ToolHandlers
3. Answers ``tools/list`` requests and ``ping``

To create a worker:

    from mcp_gateway.server import ToolWorker, ToolHandler, main

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }

        def handle(self, params: dict) -> dict:
            return {"result": f"processed: {params['input']}"}

    if __name__ == "__main__":
        worker = ToolWorker("my-worker")
        worker.register(MyTool())
        main(worker)          # stdio by default, --ws PORT for WebSocket

Requests are handled concurrently, so responses may leave in a different
order than their requests arrived.
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any

import websockets

from mcp_gateway.config import DEFAULT_PROTOCOL_VERSION

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does; the worker handles transport.
    ``handle`` may be a plain method or a coroutine.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Returns:
            The tool result (JSON-serialized into the response).
        """
        ...

    def get_schema(self) -> dict:
        """Tool descriptor as advertised in ``tools/list``."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


class ToolWorker:
    """JSON-RPC tool worker speaking newline-delimited JSON on stdio or WebSocket messages."""

    def __init__(self, name: str = "mcp-worker", version: str = "1.0.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def tool_schemas(self) -> list[dict]:
        return [h.get_schema() for h in self._handlers.values()]

    # ── protocol ──────────────────────────────────────────────

    async def handle_frame(self, frame: str | bytes) -> list[dict]:
        """Handle one raw frame and return the messages to send back."""
        try:
            message = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return [self._error(None, PARSE_ERROR, f"Parse error: {e}")]
        if not isinstance(message, dict):
            return [self._error(None, PARSE_ERROR, "Expected a JSON object")]
        return await self.handle_message(message)

    async def handle_message(self, message: dict) -> list[dict]:
        request_id = message.get("id")
        method = message.get("method", "")
        params = message.get("params") or {}

        if request_id is None:
            # notifications (e.g. notifications/initialized) need no answer
            logger.debug(f"Notification received: {method}")
            return []

        try:
            result = await self._dispatch(method, params)
        except LookupError as e:
            return [self._error(request_id, METHOD_NOT_FOUND, str(e))]
        except Exception as e:
            logger.exception(f"Error handling {method}")
            return [self._error(request_id, INTERNAL_ERROR, str(e))]

        out = [{"jsonrpc": "2.0", "id": request_id, "result": result}]
        if method == "initialize":
            out.append(self.tools_notification())
        return out

    def tools_notification(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "method": "tools/list",
            "params": {"tools": self.tool_schemas()},
        }

    async def _dispatch(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", DEFAULT_PROTOCOL_VERSION),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {"status": "ok", "tools": list(self._handlers.keys())}

        if method == "tools/list":
            return {"tools": self.tool_schemas()}

        if method == "tools/call":
            tool_name = params.get("name", "")
            handler = self._handlers.get(tool_name)
            if not handler:
                raise ValueError(
                    f"Unknown tool: '{tool_name}'. Available: {list(self._handlers.keys())}"
                )
            result = handler.handle(params.get("arguments") or {})
            if inspect.isawaitable(result):
                result = await result
            return result

        raise LookupError(f"Unknown method: '{method}'")

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    # ── transports ────────────────────────────────────────────

    async def serve_stdio(self) -> None:
        """Read requests from stdin until it closes; write messages to stdout."""
        logger.info(f"{self.name} running on stdio with tools {list(self._handlers)}")
        loop = asyncio.get_running_loop()
        tasks: set[asyncio.Task] = set()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(self._answer_stdio(line))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
        if tasks:
            await asyncio.gather(*tasks)

    async def _answer_stdio(self, line: str) -> None:
        for message in await self.handle_frame(line):
            sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()

    async def serve_websocket(self, host: str = "127.0.0.1", port: int = 8765) -> None:
        """Serve every client connection until cancelled."""
        async with websockets.serve(self._answer_websocket, host, port, max_size=None):
            logger.info(f"{self.name} listening on ws://{host}:{port}")
            await asyncio.get_running_loop().create_future()

    async def _answer_websocket(self, websocket) -> None:
        async def answer(frame):
            for message in await self.handle_frame(frame):
                await websocket.send(json.dumps(message))

        tasks: set[asyncio.Task] = set()
        try:
            async for frame in websocket:
                task = asyncio.create_task(answer(frame))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Client disconnected")
        for task in list(tasks):
            task.cancel()


def main(worker: ToolWorker, argv: list[str] | None = None) -> None:
    """Command-line entry point shared by the bundled workers."""
    parser = argparse.ArgumentParser(description=f"Run the {worker.name} MCP worker.")
    parser.add_argument("--ws", type=int, metavar="PORT", help="Serve over WebSocket instead of stdio")
    parser.add_argument("--host", default="127.0.0.1", help="WebSocket bind address")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging (on stderr)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        if args.ws:
            asyncio.run(worker.serve_websocket(args.host, args.ws))
        else:
            asyncio.run(worker.serve_stdio())
    except KeyboardInterrupt:
        pass
