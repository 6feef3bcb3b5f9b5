"""
Connection Registry — opens and tracks one transport per configured worker.

Lifecycle per worker:

    disconnected ──open──▶ connecting ──▶ connected ──remote exit──▶ disconnected
                              │                └──stream error──▶ error
                              └──spawn/dial error──▶ failed

Any state can be sent back through ``reconnect()``, which tears down the
old transport first. Nothing reconnects on its own.

Usage:
    tools = ToolRegistry()
    correlation = CorrelationEngine()
    registry = ConnectionRegistry(tools, correlation)

    await registry.open(WorkerConfig(id="echo", command="python",
                                     args=("-m", "mcp_gateway.servers.echo")))
    result = await registry.request("echo", "tools/call",
                                    {"name": "echo", "arguments": {"message": "hi"}})
    await registry.close_all()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from mcp_gateway.config import GatewaySettings, TransportKind, WorkerConfig
from mcp_gateway.correlation import CorrelationEngine
from mcp_gateway.errors import (
    GatewayError,
    RemoteToolError,
    TransportFailure,
    WorkerNotConnected,
)
from mcp_gateway.registry import ToolDescriptor, ToolRegistry
from mcp_gateway.transport import Transport, create_transport, is_response

logger = logging.getLogger(__name__)

TransportFactory = Callable[[WorkerConfig], Transport]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"  # spawn/dial error
    ERROR = "error"  # transport-level error after connecting


@dataclass
class Connection:
    """Runtime state paired 1:1 with a WorkerConfig."""
    config: WorkerConfig
    state: ConnectionState = ConnectionState.DISCONNECTED
    transport: Transport | None = None
    server_info: dict[str, Any] | None = None
    initialized: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def worker_id(self) -> str:
        return self.config.id

    @property
    def kind(self) -> TransportKind:
        return self.config.transport


class ConnectionRegistry:
    """
    Owns every worker Connection.

    Responsibilities:
    - Launch/dial workers and send the ``initialize`` handshake
    - Route incoming messages: responses to the correlation engine,
      ``tools/list`` notifications to the tool registry
    - Reconnect and shutdown, always tearing the old transport down first
    """

    def __init__(
        self,
        tools: ToolRegistry,
        correlation: CorrelationEngine,
        settings: GatewaySettings | None = None,
        transport_factory: TransportFactory = create_transport,
    ):
        self._tools = tools
        self._correlation = correlation
        self._settings = settings or GatewaySettings()
        self._transport_factory = transport_factory
        self._connections: dict[str, Connection] = {}

    # ── lifecycle ─────────────────────────────────────────────

    def register(self, config: WorkerConfig) -> Connection:
        """Make a worker known without opening it."""
        conn = self._connections.get(config.id)
        if conn is None:
            conn = Connection(config=config)
            self._connections[config.id] = conn
            logger.info(f"Registered server: {config.id} ({config.transport.value})")
        return conn

    async def open(self, config: WorkerConfig) -> Connection:
        """
        Open a worker's transport and perform the handshake.

        Idempotent: a worker that is already connecting or connected is
        left alone. Failures are logged and reflected in the state; they
        are never raised.
        """
        conn = self.register(config)
        if conn.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug(f"[{config.id}] open ignored, already {conn.state.value}")
            return conn
        await self._connect(conn)
        return conn

    async def open_all(self, configs: Iterable[WorkerConfig]) -> dict[str, ConnectionState]:
        """Register every worker and open the enabled ones concurrently."""
        pending = []
        for config in configs:
            self.register(config)
            if config.enabled:
                pending.append(self.open(config))
            else:
                logger.info(f"Skipping disabled server: {config.id}")
        await asyncio.gather(*pending)
        return {wid: conn.state for wid, conn in self._connections.items()}

    async def reconnect(self, worker_id: str) -> Connection | None:
        """
        Tear down the worker's transport (if any) and connect again.

        Unknown worker ids are logged and ignored.
        """
        conn = self._connections.get(worker_id)
        if conn is None:
            logger.warning(f"Cannot reconnect unknown MCP server: {worker_id}")
            return None

        logger.info(f"Reconnecting MCP server: {worker_id}")
        await self._teardown(conn, reason="reconnecting")
        self._set_state(conn, ConnectionState.DISCONNECTED)
        await self._connect(conn)
        return conn

    async def close(self, worker_id: str) -> None:
        """Stop a worker and mark it disconnected."""
        conn = self._connections.get(worker_id)
        if conn is None:
            return
        await self._teardown(conn, reason="connection closed")
        self._set_state(conn, ConnectionState.DISCONNECTED)
        logger.info(f"Stopped {worker_id}")

    async def close_all(self) -> None:
        """Stop every worker."""
        await asyncio.gather(*(self.close(wid) for wid in list(self._connections)))

    # ── queries ───────────────────────────────────────────────

    def get(self, worker_id: str) -> Connection | None:
        return self._connections.get(worker_id)

    def state(self, worker_id: str) -> ConnectionState | None:
        conn = self._connections.get(worker_id)
        return conn.state if conn else None

    def is_connected(self, worker_id: str) -> bool:
        return self.state(worker_id) is ConnectionState.CONNECTED

    def configs(self) -> list[WorkerConfig]:
        return [conn.config for conn in self._connections.values()]

    def status(self) -> dict[str, dict[str, Any]]:
        """State plus transport metadata for every known worker. Observability only."""
        status = {}
        for wid, conn in self._connections.items():
            cfg = conn.config
            entry: dict[str, Any] = {
                "id": wid,
                "name": cfg.display_name,
                "status": conn.state.value,
                "protocol": cfg.transport.value,
                "enabled": cfg.enabled,
                "pendingRequests": self._correlation.pending_count(wid),
            }
            if cfg.transport is TransportKind.SOCKET:
                entry.update(host=cfg.host, port=cfg.port)
            else:
                entry.update(command=cfg.command, args=list(cfg.args))
            if conn.server_info:
                entry["serverInfo"] = conn.server_info.get("serverInfo", conn.server_info)
            status[wid] = entry
        return status

    # ── traffic ───────────────────────────────────────────────

    async def request(self, worker_id: str, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Send a correlated request to a connected worker.

        Waits for the worker's handshake to finish before writing anything.
        """
        conn = self._require_connected(worker_id)
        # a reconnect while waiting swaps in a fresh event for the new handshake
        while not conn.initialized.is_set():
            await conn.initialized.wait()
            conn = self._require_connected(worker_id)
        return await self._correlation.request(worker_id, conn.transport, method, params)

    async def refresh_tools(self, worker_id: str) -> list[ToolDescriptor]:
        """Ask a worker for its tool list and replace its registry entries."""
        result = await self.request(worker_id, "tools/list", {})
        tools = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(tools, list):
            raise RemoteToolError(f"Unexpected tools/list result from {worker_id}: {result!r}")
        return self._tools.update_tools(worker_id, tools)

    async def refresh_all_tools(self) -> dict[str, int]:
        """
        Refresh every connected worker's tool list concurrently.

        Returns tool counts for the workers that answered; failures are
        logged and leave that worker's previous tools in place.
        """
        worker_ids = [wid for wid in self._connections if self.is_connected(wid)]
        results = await asyncio.gather(
            *(self.refresh_tools(wid) for wid in worker_ids), return_exceptions=True
        )
        counts = {}
        for wid, result in zip(worker_ids, results):
            if isinstance(result, GatewayError):
                logger.warning(f"[{wid}] tool refresh failed: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                counts[wid] = len(result)
        logger.info(f"Refreshed tools for {len(counts)}/{len(worker_ids)} worker(s)")
        return counts

    # ── internals ─────────────────────────────────────────────

    def _require_connected(self, worker_id: str) -> Connection:
        conn = self._connections.get(worker_id)
        if conn is None:
            raise WorkerNotConnected(worker_id, "unknown")
        if conn.state is not ConnectionState.CONNECTED or conn.transport is None:
            raise WorkerNotConnected(worker_id, conn.state.value)
        return conn

    async def _connect(self, conn: Connection) -> None:
        wid = conn.worker_id
        if conn.transport is not None:
            # a transport left behind in the error state
            await self._teardown(conn, reason="reopening")
        self._set_state(conn, ConnectionState.CONNECTING)
        conn.initialized = asyncio.Event()
        conn.server_info = None

        transport = self._transport_factory(conn.config)
        transport.on_message = lambda message: self._on_message(transport, message)
        transport.on_close = self._on_close
        conn.transport = transport

        try:
            await transport.start()
        except TransportFailure as e:
            logger.error(f"Failed to connect to MCP server {wid}: {e}")
            if conn.transport is transport:
                conn.transport = None
                self._set_state(conn, ConnectionState.FAILED)
            return

        if conn.transport is not transport:
            # torn down by a concurrent reconnect/close while starting
            await transport.stop()
            return

        self._set_state(conn, ConnectionState.CONNECTED)
        await self._handshake(conn, transport)

    async def _handshake(self, conn: Connection, transport: Transport) -> None:
        wid = conn.worker_id
        initialized = conn.initialized
        params = {
            "protocolVersion": self._settings.protocol_version,
            "capabilities": {"tools": {}},
            "clientInfo": self._settings.client_info(),
        }
        try:
            result = await self._correlation.request(wid, transport, "initialize", params)
            if isinstance(result, dict):
                conn.server_info = result
            logger.info(f"Connected to MCP server: {wid}")
        except GatewayError as e:
            logger.warning(f"[{wid}] initialize handshake failed: {e}")
        finally:
            initialized.set()

    async def _teardown(self, conn: Connection, reason: str) -> None:
        transport, conn.transport = conn.transport, None
        self._correlation.fail_all(conn.worker_id, reason)
        conn.initialized.set()
        if transport is not None:
            await transport.stop()

    def _on_message(self, transport: Transport, message: Any) -> None:
        wid = transport.worker_id
        conn = self._connections.get(wid)
        if conn is None or conn.transport is not transport:
            logger.debug(f"[{wid}] dropping message from a stale transport")
            return

        if is_response(message):
            self._correlation.handle_response(wid, message)
        elif isinstance(message, dict) and message.get("method"):
            self._handle_notification(wid, message)
        else:
            logger.warning(f"[{wid}] unexpected message: {message!r}")

    def _handle_notification(self, worker_id: str, message: dict) -> None:
        method = message["method"]
        if method == "tools/list":
            params = message.get("params") or {}
            tools = params.get("tools") if isinstance(params, dict) else None
            if not isinstance(tools, list):
                logger.warning(f"[{worker_id}] tools/list notification without a tools list")
                return
            self._tools.update_tools(worker_id, tools)
        else:
            logger.debug(f"[{worker_id}] ignoring notification: {method}")

    def _on_close(self, transport: Transport, error: BaseException | None) -> None:
        wid = transport.worker_id
        conn = self._connections.get(wid)
        if conn is None or conn.transport is not transport:
            return

        if error is None:
            # process exited / socket closed: nothing left to release
            conn.transport = None
            self._set_state(conn, ConnectionState.DISCONNECTED)
            reason = "connection closed by worker"
        else:
            # keep the handle so reconnect()/close() can release it
            self._set_state(conn, ConnectionState.ERROR)
            reason = f"transport error: {error}"
        self._correlation.fail_all(wid, reason)
        conn.initialized.set()

    def _set_state(self, conn: Connection, new_state: ConnectionState) -> None:
        old_state = conn.state
        conn.state = new_state
        if old_state is not new_state:
            logger.debug(f"[{conn.worker_id}] state: {old_state.value} -> {new_state.value}")
