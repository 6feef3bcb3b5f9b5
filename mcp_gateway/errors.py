"""
Error taxonomy for the tool gateway.

Nothing in here is process-fatal. The worst outcome of any of these is
a failed or degraded answer for a single agent turn.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error raised by mcp_gateway."""


class TransportFailure(GatewayError):
    """Spawn/dial error, broken stream, or a connection lost mid-request."""

    def __init__(self, worker_id: str, message: str):
        self.worker_id = worker_id
        super().__init__(f"[{worker_id}] {message}")


class MalformedMessage(GatewayError):
    """A frame from a worker that is not valid JSON. Logged, never raised to callers."""


class CorrelationTimeout(GatewayError, TimeoutError):
    """A pending request received no response within the request timeout."""

    def __init__(self, worker_id: str, method: str, timeout: float):
        self.worker_id = worker_id
        self.method = method
        self.timeout = timeout
        super().__init__(
            f"Tool invocation timeout: {worker_id}/{method} after {timeout:g}s"
        )


class RemoteToolError(GatewayError):
    """The worker answered with a JSON-RPC ``error`` object."""

    def __init__(self, message: str, code: int | None = None):
        self.code = code
        super().__init__(message)


class ToolNotFound(GatewayError, LookupError):
    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        super().__init__(f"Tool not found: {tool_id}")


class WorkerNotConnected(GatewayError):
    def __init__(self, worker_id: str, state: str | None = None):
        self.worker_id = worker_id
        self.state = state
        suffix = f" (state: {state})" if state else ""
        super().__init__(f"MCP server {worker_id} not connected{suffix}")


class ModelCapabilityFailure(GatewayError):
    """The language model provider is unconfigured or the call failed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")
