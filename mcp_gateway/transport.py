"""
Transport layer for MCP worker communication.

Implements:
  - StdioTransport: JSON-RPC over a child process's stdin/stdout
    (one line = one message)
  - WebSocketTransport: JSON-RPC over a persistent WebSocket
    (one socket message = one JSON message)

A transport only frames and deframes JSON values. Incoming messages are
pushed to ``on_message``; the end of the channel is reported once through
``on_close(transport, error)``, with ``error`` None for a clean remote
exit/close. Request/response matching lives in the correlation engine.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from mcp_gateway.config import TransportKind, WorkerConfig
from mcp_gateway.errors import MalformedMessage, TransportFailure

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]
CloseHandler = Callable[["Transport", "BaseException | None"], None]


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int | str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_message(cls, message: dict) -> "JsonRpcResponse":
        error = message.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"message": str(error)}
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=error,
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return str(self.error.get("message") or self.error)


def is_response(message: Any) -> bool:
    """True for ``{id, result}`` / ``{id, error}`` envelopes, False for requests and notifications."""
    return (
        isinstance(message, dict)
        and "method" not in message
        and message.get("id") is not None
        and ("result" in message or "error" in message)
    )


def encode_message(message: Any) -> str:
    return json.dumps(message)


def decode_frame(worker_id: str, frame: str | bytes) -> Any:
    """Parse one frame into a JSON value, raising MalformedMessage if it isn't one."""
    try:
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8")
        return json.loads(frame)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        preview = frame[:200] if isinstance(frame, (str, bytes)) else frame
        raise MalformedMessage(f"[{worker_id}] unparsable frame ({e}): {preview!r}") from e


class Transport(ABC):
    """Abstract bidirectional JSON channel to one worker."""

    kind: TransportKind

    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        self.on_message: MessageHandler | None = None
        self.on_close: CloseHandler | None = None
        self._closed_notified = False
        self._stopping = False

    @abstractmethod
    async def start(self) -> None:
        """Open the channel. Raises TransportFailure if it cannot be opened."""
        ...

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Write one JSON message. Raises TransportFailure if the channel is gone."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release the channel (terminate the process / close the socket)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        ...

    def _deliver(self, frame: str | bytes) -> None:
        frame = frame.strip()
        if not frame:
            return
        try:
            message = decode_frame(self.worker_id, frame)
        except MalformedMessage as e:
            logger.warning(f"Discarding malformed message: {e}")
            return
        if self.on_message is None:
            logger.debug(f"[{self.worker_id}] no message handler, dropping {message!r}")
            return
        try:
            self.on_message(message)
        except Exception:
            logger.exception(f"[{self.worker_id}] message handler failed")

    def _notify_closed(self, error: BaseException | None) -> None:
        if self._closed_notified or self._stopping:
            return
        self._closed_notified = True
        if self.on_close is not None:
            self.on_close(self, error)


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The worker runs as a child
    process; requests go to its stdin, messages come back on its stdout,
    one line per message. Lines are reassembled from raw chunks, so a
    message may be arbitrarily long.
    """

    kind = TransportKind.PROCESS
    CHUNK_SIZE = 64 * 1024
    STOP_TIMEOUT = 5.0
    STDERR_LOG_LIMIT = 2000

    def __init__(
        self,
        worker_id: str,
        command: str,
        args: list[str] | tuple[str, ...] = (),
        env: dict[str, str] | None = None,
    ):
        """
        Args:
            worker_id: Owning worker, used in logs and errors.
            command: Executable to launch, e.g. "python".
            args: Arguments, e.g. ["-m", "mcp_gateway.servers.echo"].
            env: Extra environment variables, layered over os.environ.
        """
        super().__init__(worker_id)
        self.command = command
        self.args = list(args)
        self.env = env or {}
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        """Launch the worker subprocess and start pumping its output."""
        if self.is_alive():
            logger.warning(f"[{self.worker_id}] transport already running, stopping first")
            await self.stop()

        self._stopping = False
        self._closed_notified = False
        logger.info(f"Starting stdio transport: {self.command} {' '.join(self.args)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
            )
        except OSError as e:
            raise TransportFailure(self.worker_id, f"spawn failed: {e}") from e

        self._tasks = [
            asyncio.create_task(self._pump_stdout(), name=f"{self.worker_id}-stdout"),
            asyncio.create_task(self._pump_stderr(), name=f"{self.worker_id}-stderr"),
        ]

    async def stop(self) -> None:
        """Terminate the worker subprocess."""
        self._stopping = True
        process, self._process = self._process, None
        if process is not None:
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.STOP_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.warning(f"[{self.worker_id}] force killing worker process")
                    process.kill()
                    await process.wait()
            logger.info(f"[{self.worker_id}] stdio transport stopped")

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def send(self, message: Any) -> None:
        """Write one message as a single line on the worker's stdin."""
        if not self.is_alive():
            raise TransportFailure(self.worker_id, "transport not running")

        self._process.stdin.write(encode_message(message).encode("utf-8") + b"\n")
        try:
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportFailure(self.worker_id, f"write failed: {e}") from e

    async def _pump_stdout(self) -> None:
        process = self._process
        buffer = bytearray()
        error: BaseException | None = None
        try:
            while True:
                chunk = await process.stdout.read(self.CHUNK_SIZE)
                if not chunk:
                    break
                buffer.extend(chunk)
                start = 0
                while True:
                    end = buffer.find(b"\n", start)
                    if end < 0:
                        break
                    self._deliver(bytes(buffer[start:end]))
                    start = end + 1
                if start:
                    del buffer[:start]
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.worker_id}] stdout stream error: {e}")
            error = e

        if buffer.strip():
            logger.warning(
                f"[{self.worker_id}] discarding {len(buffer)} bytes of unterminated output"
            )
        if error is None:
            code = await process.wait()
            logger.info(f"MCP server {self.worker_id} exited with code {code}")
        self._notify_closed(error)

    async def _pump_stderr(self) -> None:
        process = self._process
        buffer = bytearray()
        # inside an over-long line whose head has already been logged
        skipping = False
        try:
            while True:
                chunk = await process.stderr.read(self.CHUNK_SIZE)
                if not chunk:
                    break
                buffer.extend(chunk)
                start = 0
                while True:
                    end = buffer.find(b"\n", start)
                    if end < 0:
                        break
                    if not skipping:
                        self._log_stderr(bytes(buffer[start:end]))
                    skipping = False
                    start = end + 1
                if start:
                    del buffer[:start]
                if len(buffer) > self.CHUNK_SIZE:
                    if not skipping:
                        self._log_stderr(bytes(buffer))
                    skipping = True
                    buffer.clear()
        except asyncio.CancelledError:
            raise
        except OSError as e:
            logger.debug(f"[{self.worker_id}] stderr pipe closed: {e}")
            return
        if buffer and not skipping:
            self._log_stderr(bytes(buffer))

    def _log_stderr(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip()
        if len(text) > self.STDERR_LOG_LIMIT:
            text = f"{text[:self.STDERR_LOG_LIMIT]}... ({len(line)} bytes)"
        if text:
            logger.warning(f"[{self.worker_id}] stderr: {text}")


class WebSocketTransport(Transport):
    """
    JSON-RPC over a persistent WebSocket connection.

    Each WebSocket message carries exactly one JSON message. Frame size
    is unbounded (``max_size=None``).
    """

    kind = TransportKind.SOCKET

    def __init__(self, worker_id: str, url: str, open_timeout: float = 10.0):
        super().__init__(worker_id)
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._open = False

    async def start(self) -> None:
        """Dial the worker endpoint."""
        if self.is_alive():
            logger.warning(f"[{self.worker_id}] transport already open, closing first")
            await self.stop()

        self._stopping = False
        self._closed_notified = False
        logger.info(f"Connecting websocket transport: {self.url}")
        try:
            self._ws = await websockets.connect(
                self.url, max_size=None, open_timeout=self.open_timeout
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportFailure(self.worker_id, f"dial failed: {e}") from e

        self._open = True
        self._reader = asyncio.create_task(self._pump(), name=f"{self.worker_id}-ws")

    async def stop(self) -> None:
        """Close the socket."""
        self._stopping = True
        self._open = False
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"[{self.worker_id}] error while closing socket: {e}")
            logger.info(f"[{self.worker_id}] websocket transport closed")

        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    def is_alive(self) -> bool:
        return self._ws is not None and self._open

    async def send(self, message: Any) -> None:
        if not self.is_alive():
            raise TransportFailure(self.worker_id, "socket not open")
        try:
            await self._ws.send(encode_message(message))
        except ConnectionClosed as e:
            raise TransportFailure(self.worker_id, f"socket closed: {e}") from e

    async def _pump(self) -> None:
        error: BaseException | None = None
        try:
            async for frame in self._ws:
                self._deliver(frame)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            logger.info(f"Disconnected from WebSocket MCP server {self.worker_id}: {e}")
        except Exception as e:
            logger.error(f"[{self.worker_id}] websocket stream error: {e}")
            error = e
        self._open = False
        self._notify_closed(error)


def create_transport(config: WorkerConfig) -> Transport:
    """Build the transport described by a worker config."""
    if config.transport is TransportKind.PROCESS:
        return StdioTransport(config.id, config.command, config.args, config.env)
    if config.transport is TransportKind.SOCKET:
        return WebSocketTransport(config.id, config.url)
    raise ValueError(f"Unsupported transport kind: {config.transport}")
