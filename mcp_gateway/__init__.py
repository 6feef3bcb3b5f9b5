"""
MCP Gateway — out-of-process tool workers for a conversational agent.

Architecture:
    ┌──────────────┐              ┌─────────────────────┐   stdio / ws   ┌─────────┐
    │  AgentLoop   │ ──invoke──▶  │ InvocationGateway   │ ─────────────▶ │ Worker  │
    │ (model text) │              │ Correlation Engine  │   JSON-RPC     │ process │
    └──────────────┘              │ ConnectionRegistry  │ ◀───────────── └─────────┘
                                  └─────────────────────┘

Each worker is a standalone process (stdin/stdout, one JSON message per
line) or a WebSocket endpoint (one JSON message per socket message).
Workers advertise their tools with a ``tools/list`` notification after
the ``initialize`` handshake; the ToolRegistry collects them under
``<worker>:<tool>`` ids.

The AgentLoop asks a model for an answer, runs any tool calls it finds
in that answer through the gateway, then asks the model to phrase the
results.
"""

from mcp_gateway.agent import AgentLoop, AgentTurn, ToolTrace
from mcp_gateway.app import GatewayApp
from mcp_gateway.config import GatewaySettings, TransportKind, WorkerConfig, load_workers
from mcp_gateway.correlation import CorrelationEngine
from mcp_gateway.errors import (
    CorrelationTimeout,
    GatewayError,
    MalformedMessage,
    ModelCapabilityFailure,
    RemoteToolError,
    ToolNotFound,
    TransportFailure,
    WorkerNotConnected,
)
from mcp_gateway.gateway import InvocationGateway
from mcp_gateway.manager import ConnectionRegistry, ConnectionState
from mcp_gateway.parser import ToolCall, parse_tool_calls
from mcp_gateway.registry import ToolDescriptor, ToolRegistry

__all__ = [
    "AgentLoop",
    "AgentTurn",
    "ConnectionRegistry",
    "ConnectionState",
    "CorrelationEngine",
    "CorrelationTimeout",
    "GatewayApp",
    "GatewayError",
    "GatewaySettings",
    "InvocationGateway",
    "MalformedMessage",
    "ModelCapabilityFailure",
    "RemoteToolError",
    "ToolCall",
    "ToolDescriptor",
    "ToolNotFound",
    "ToolRegistry",
    "ToolTrace",
    "TransportFailure",
    "TransportKind",
    "WorkerConfig",
    "WorkerNotConnected",
    "load_workers",
    "parse_tool_calls",
]
