"""
Worker configuration and gateway settings.

Workers can be declared in a YAML file:

    workers:
      - id: weather
        name: Weather Service
        transport: process          # or "stdio"
        command: python
        args: ["-m", "mcp_gateway.servers.weather"]
        env: {WEATHER_UNITS: metric}
      - id: remote
        transport: socket           # or "ws"
        host: 127.0.0.1
        port: 8765
        enabled: false

or passed as a plain dict keyed by worker id, the same shape the CLI
uses for its built-in defaults.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_REQUEST_TIMEOUT = 30.0
RESERVED_WORKER_ID = "local"


class TransportKind(str, Enum):
    PROCESS = "process"
    SOCKET = "socket"

    @classmethod
    def parse(cls, value: str | "TransportKind") -> "TransportKind":
        if isinstance(value, TransportKind):
            return value
        aliases = {"stdio": cls.PROCESS, "ws": cls.SOCKET, "websocket": cls.SOCKET}
        key = str(value).strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown transport kind: '{value}'") from None


@dataclass(frozen=True)
class WorkerConfig:
    """Static description of one tool-providing worker."""
    id: str
    transport: TransportKind = TransportKind.PROCESS
    name: str = ""
    command: str = ""
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    host: str = "127.0.0.1"
    port: int | None = None
    path: str = "/"
    enabled: bool = True

    def __post_init__(self):
        if not self.id:
            raise ValueError("WorkerConfig requires an id")
        if ":" in self.id:
            # tool ids are "<worker>:<tool>"
            raise ValueError(f"Worker id may not contain ':': '{self.id}'")
        if self.id == RESERVED_WORKER_ID:
            raise ValueError(f"Worker id '{RESERVED_WORKER_ID}' is reserved for built-in tools")
        if self.transport is TransportKind.PROCESS and not self.command:
            raise ValueError(f"Worker '{self.id}': process transport requires a command")
        if self.transport is TransportKind.SOCKET and self.port is None:
            raise ValueError(f"Worker '{self.id}': socket transport requires a port")

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def url(self) -> str:
        """WebSocket URL for socket workers."""
        return f"ws://{self.host}:{self.port}{self.path}"

    @classmethod
    def from_dict(cls, data: dict[str, Any], worker_id: str | None = None) -> "WorkerConfig":
        data = dict(data)
        wid = worker_id or data.pop("id", None)
        data.pop("id", None)
        # "protocol" is accepted as an older spelling of "transport"
        kind = TransportKind.parse(data.pop("transport", data.pop("protocol", "process")))

        command = data.get("command", "")
        args = data.get("args") or ()
        if isinstance(command, (list, tuple)):
            # ["python", "-m", "pkg.mod"]
            command, args = command[0], tuple(command[1:]) + tuple(args)

        return cls(
            id=wid,
            transport=kind,
            name=data.get("name", ""),
            command=command,
            args=tuple(str(a) for a in args),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            host=data.get("host", "127.0.0.1"),
            port=int(data["port"]) if data.get("port") is not None else None,
            path=data.get("path", "/"),
            enabled=bool(data.get("enabled", True)),
        )


def load_workers(source: str | Path | dict | Iterable[dict]) -> list[WorkerConfig]:
    """
    Build WorkerConfigs from a YAML file path, a {worker_id: {...}} dict,
    or a list of dicts each carrying an ``id``.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"Loaded worker config from {path}")
        source = data.get("workers", data) if isinstance(data, dict) else data

    if isinstance(source, dict):
        configs = [WorkerConfig.from_dict(spec, worker_id=wid) for wid, spec in source.items()]
    else:
        configs = [WorkerConfig.from_dict(spec) for spec in source]

    seen: set[str] = set()
    for cfg in configs:
        if cfg.id in seen:
            raise ValueError(f"Duplicate worker id: '{cfg.id}'")
        seen.add(cfg.id)
    return configs


@dataclass(frozen=True)
class GatewaySettings:
    """Runtime knobs shared by the registry and the correlation engine."""
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    client_name: str = "mcp-gateway"
    client_version: str = "1.0.0"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "GatewaySettings":
        env = os.environ if environ is None else environ
        return cls(
            request_timeout=float(env.get("MCP_GATEWAY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
            protocol_version=env.get("MCP_GATEWAY_PROTOCOL_VERSION", DEFAULT_PROTOCOL_VERSION),
            client_name=env.get("MCP_GATEWAY_CLIENT_NAME", "mcp-gateway"),
            client_version=env.get("MCP_GATEWAY_CLIENT_VERSION", "1.0.0"),
        )

    def client_info(self) -> dict[str, str]:
        return {"name": self.client_name, "version": self.client_version}
