"""
Composition root: builds and owns one instance of every component.

    app = GatewayApp.build(load_workers("workers.yaml"), ModelRegistry.from_env())
    await app.start()
    turn = await app.agent.run("openai", "What's the weather in Paris?")
    await app.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mcp_gateway.agent import AgentLoop
from mcp_gateway.builtins import register_builtin_tools
from mcp_gateway.config import GatewaySettings, WorkerConfig
from mcp_gateway.correlation import CorrelationEngine
from mcp_gateway.gateway import InvocationGateway
from mcp_gateway.manager import ConnectionRegistry, TransportFactory
from mcp_gateway.models import ModelRegistry
from mcp_gateway.registry import ToolRegistry
from mcp_gateway.transport import create_transport

logger = logging.getLogger(__name__)


@dataclass
class GatewayApp:
    settings: GatewaySettings
    tools: ToolRegistry
    correlation: CorrelationEngine
    connections: ConnectionRegistry
    gateway: InvocationGateway
    models: ModelRegistry
    agent: AgentLoop
    workers: list[WorkerConfig] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        workers: list[WorkerConfig],
        models: ModelRegistry | None = None,
        settings: GatewaySettings | None = None,
        transport_factory: TransportFactory = create_transport,
        builtin_tools: bool = True,
    ) -> "GatewayApp":
        settings = settings or GatewaySettings()
        models = models if models is not None else ModelRegistry()
        tools = ToolRegistry()
        if builtin_tools:
            register_builtin_tools(tools)
        correlation = CorrelationEngine(timeout=settings.request_timeout)
        connections = ConnectionRegistry(tools, correlation, settings, transport_factory)
        for config in workers:
            connections.register(config)
        gateway = InvocationGateway(tools, connections)
        return cls(
            settings=settings,
            tools=tools,
            correlation=correlation,
            connections=connections,
            gateway=gateway,
            models=models,
            agent=AgentLoop(models, gateway),
            workers=list(workers),
        )

    async def start(self) -> None:
        states = await self.connections.open_all(self.workers)
        summary = ", ".join(f"{wid}={state.value}" for wid, state in states.items())
        logger.info(f"Workers: {summary or 'none configured'}")

    async def stop(self) -> None:
        await self.connections.close_all()
        logger.info("All workers stopped")
