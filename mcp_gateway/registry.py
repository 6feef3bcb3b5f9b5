"""
Tool Registry — one flat namespace over every worker's advertised tools.

Tool ids are ``<worker_id>:<tool_name>``. Each worker's set of tools is
replaced wholesale whenever it advertises a new list; readers always see
either the old set or the new one, never a mix.

Built-in tools live under the reserved worker id ``local`` and carry a
``handler`` coroutine instead of a connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from mcp_gateway.config import RESERVED_WORKER_ID

logger = logging.getLogger(__name__)

LOCAL_WORKER_ID = RESERVED_WORKER_ID

ToolFunction = Callable[[dict[str, Any]], Awaitable[Any]]


def qualify(worker_id: str, tool_name: str) -> str:
    return f"{worker_id}:{tool_name}"


@dataclass(frozen=True)
class ToolDescriptor:
    """An advertised capability. Replaced as a whole, never patched."""
    id: str
    name: str
    description: str
    worker_id: str
    parameters: dict[str, Any] = field(default_factory=dict)
    handler: ToolFunction | None = field(default=None, compare=False, repr=False)

    @property
    def is_local(self) -> bool:
        return self.handler is not None

    @classmethod
    def from_advertised(cls, worker_id: str, tool: dict[str, Any]) -> "ToolDescriptor":
        """Build a descriptor from one entry of a worker's ``tools/list``."""
        name = tool["name"]
        # MCP says "inputSchema"; older workers send "parameters"
        schema = tool.get("inputSchema") or tool.get("parameters") or {}
        return cls(
            id=qualify(worker_id, name),
            name=name,
            description=tool.get("description", ""),
            worker_id=worker_id,
            parameters=dict(schema),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "serverId": self.worker_id,
            "parameters": self.parameters,
        }


class ToolRegistry:
    """Ordered mapping of worker id → {tool id → ToolDescriptor}."""

    def __init__(self):
        self._by_worker: dict[str, dict[str, ToolDescriptor]] = {}

    def update_tools(self, worker_id: str, tools: list[dict[str, Any]]) -> list[ToolDescriptor]:
        """
        Replace every tool advertised by ``worker_id`` with ``tools``.

        Entries without a name are skipped with a warning.
        """
        entries: dict[str, ToolDescriptor] = {}
        for raw in tools or []:
            if not isinstance(raw, dict) or not raw.get("name"):
                logger.warning(f"[{worker_id}] skipping malformed tool descriptor: {raw!r}")
                continue
            descriptor = ToolDescriptor.from_advertised(worker_id, raw)
            entries[descriptor.id] = descriptor

        self._by_worker[worker_id] = entries
        logger.info(f"[{worker_id}] tools updated: {[d.name for d in entries.values()]}")
        return list(entries.values())

    def register_local(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: ToolFunction,
    ) -> ToolDescriptor:
        """Register a built-in tool executed in-process."""
        descriptor = ToolDescriptor(
            id=qualify(LOCAL_WORKER_ID, name),
            name=name,
            description=description,
            worker_id=LOCAL_WORKER_ID,
            parameters=parameters,
            handler=handler,
        )
        entries = dict(self._by_worker.get(LOCAL_WORKER_ID, {}))
        entries[descriptor.id] = descriptor
        self._by_worker[LOCAL_WORKER_ID] = entries
        logger.info(f"Registered built-in tool: {name}")
        return descriptor

    def remove_worker(self, worker_id: str) -> None:
        self._by_worker.pop(worker_id, None)

    def get(self, tool_id: str) -> ToolDescriptor | None:
        worker_id, _, _ = tool_id.partition(":")
        return self._by_worker.get(worker_id, {}).get(tool_id)

    def find(self, name: str) -> ToolDescriptor | None:
        """Resolve a fully-qualified id, or else the first tool with that bare name."""
        descriptor = self.get(name)
        if descriptor is not None:
            return descriptor
        for entries in self._by_worker.values():
            for candidate in entries.values():
                if candidate.name == name:
                    return candidate
        return None

    def for_worker(self, worker_id: str) -> list[ToolDescriptor]:
        return list(self._by_worker.get(worker_id, {}).values())

    def list(self) -> list[ToolDescriptor]:
        """Snapshot of every known tool, in registration order."""
        return [d for entries in list(self._by_worker.values()) for d in entries.values()]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._by_worker.values())

    def __contains__(self, tool_id: str) -> bool:
        return self.get(tool_id) is not None
