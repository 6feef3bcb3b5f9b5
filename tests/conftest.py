"""
Shared fixtures for mcp_gateway tests.

Provides:
- FakeTransport: in-memory transport that records what it was sent and
  lets a test play the worker's side
- FakeTransportFactory: hands out FakeTransports per worker id
- stack: a wired ToolRegistry / CorrelationEngine / ConnectionRegistry /
  InvocationGateway built on the fake factory
"""

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from mcp_gateway.config import GatewaySettings, TransportKind, WorkerConfig
from mcp_gateway.correlation import CorrelationEngine
from mcp_gateway.errors import TransportFailure
from mcp_gateway.gateway import InvocationGateway
from mcp_gateway.manager import ConnectionRegistry
from mcp_gateway.registry import ToolRegistry
from mcp_gateway.transport import Transport

PROJECT_ROOT = Path(__file__).parent.parent.resolve()

WEATHER_TOOLS = [
    {
        "name": "get_weather",
        "description": "Current weather for a city",
        "inputSchema": {
            "type": "object",
            "properties": {"city": {"type": "string", "description": "City name"}},
            "required": ["city"],
        },
    },
    {
        "name": "get_forecast",
        "description": "Forecast for a city",
        "inputSchema": {"type": "object", "properties": {"city": {"type": "string"}}},
    },
]


# ============================================================================
# Fake transport
# ============================================================================

class FakeTransport(Transport):
    """Transport double. ``deliver`` plays the worker; ``sent`` records requests."""

    kind = TransportKind.PROCESS

    def __init__(self, worker_id: str, tools=None, fail_start=False, auto_initialize=True):
        super().__init__(worker_id)
        self.tools = tools
        self.fail_start = fail_start
        self.auto_initialize = auto_initialize
        self.sent: list[dict] = []
        self.alive = False
        self.started = False
        self.stopped = False
        self.on_start = None
        # answers tools/call params with a result when set
        self.responder = None

    async def start(self) -> None:
        if self.on_start is not None:
            self.on_start(self)
        if self.fail_start:
            raise TransportFailure(self.worker_id, "spawn failed: [Errno 2] No such file")
        self.started = True
        self.alive = True

    async def send(self, message: Any) -> None:
        if not self.alive:
            raise TransportFailure(self.worker_id, "transport not running")
        self.sent.append(message)
        if self.auto_initialize and message.get("method") == "initialize":
            loop = asyncio.get_running_loop()
            loop.call_soon(self.deliver, {
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": {"serverInfo": {"name": f"{self.worker_id}-server", "version": "1.0"}},
            })
            if self.tools is not None:
                loop.call_soon(self.deliver, {
                    "jsonrpc": "2.0",
                    "method": "tools/list",
                    "params": {"tools": self.tools},
                })
        elif self.auto_initialize and self.tools is not None and message.get("method") == "tools/list":
            asyncio.get_running_loop().call_soon(self.respond, message, {"tools": self.tools})
        elif self.responder is not None and message.get("method") == "tools/call":
            asyncio.get_running_loop().call_soon(
                self.respond, message, self.responder(message["params"])
            )

    async def stop(self) -> None:
        self._stopping = True
        self.alive = False
        self.stopped = True

    def is_alive(self) -> bool:
        return self.alive

    # worker side

    def deliver(self, message: Any) -> None:
        self._deliver(json.dumps(message))

    def deliver_raw(self, frame: str) -> None:
        self._deliver(frame)

    def respond(self, request: dict, result: Any = None, error: str | None = None) -> None:
        if error is not None:
            self.deliver({"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32603, "message": error}})
        else:
            self.deliver({"jsonrpc": "2.0", "id": request["id"], "result": result})

    def close_remote(self, error: BaseException | None = None) -> None:
        self.alive = False
        self._notify_closed(error)

    def requests(self, method: str | None = None) -> list[dict]:
        return [m for m in self.sent if method is None or m.get("method") == method]


class FakeTransportFactory:
    def __init__(self, tools: dict[str, list] | None = None, fail: set[str] = frozenset(), auto_initialize=True):
        self.tools = tools or {}
        self.fail = set(fail)
        self.auto_initialize = auto_initialize
        self.created: dict[str, list[FakeTransport]] = {}

    def __call__(self, config: WorkerConfig) -> FakeTransport:
        transport = FakeTransport(
            config.id,
            tools=self.tools.get(config.id),
            fail_start=config.id in self.fail,
            auto_initialize=self.auto_initialize,
        )
        self.created.setdefault(config.id, []).append(transport)
        return transport

    def latest(self, worker_id: str) -> FakeTransport:
        return self.created[worker_id][-1]


def worker(worker_id: str, **kwargs) -> WorkerConfig:
    kwargs.setdefault("command", f"{worker_id}-worker")
    return WorkerConfig(id=worker_id, **kwargs)


async def wait_for_pending(correlation: CorrelationEngine, worker_id: str, count: int = 1) -> None:
    """Yield to the loop until ``count`` requests are in flight for a worker."""
    for _ in range(100):
        if correlation.pending_count(worker_id) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} pending request(s) on {worker_id}")


@dataclass
class Stack:
    tools: ToolRegistry
    correlation: CorrelationEngine
    connections: ConnectionRegistry
    gateway: InvocationGateway
    factory: FakeTransportFactory


@pytest.fixture
def factory():
    return FakeTransportFactory(tools={"weather": WEATHER_TOOLS})


@pytest.fixture
def stack(factory):
    settings = GatewaySettings(request_timeout=2.0)
    tools = ToolRegistry()
    correlation = CorrelationEngine(timeout=settings.request_timeout)
    connections = ConnectionRegistry(tools, correlation, settings, transport_factory=factory)
    gateway = InvocationGateway(tools, connections)
    return Stack(tools, correlation, connections, gateway, factory)


@pytest.fixture
def echo_worker_config():
    """Config for the real echo worker subprocess."""
    return WorkerConfig(
        id="echo",
        command=sys.executable,
        args=("-m", "mcp_gateway.servers.echo"),
        env={"PYTHONPATH": str(PROJECT_ROOT)},
    )
