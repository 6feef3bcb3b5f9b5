"""
Bridge between the tool gateway and LangChain.

Exports every registered tool as a LangChain StructuredTool whose
coroutine goes through the InvocationGateway, and renders the tool
catalogue text the orchestration loop puts in front of the model.

Usage:
    from mcp_gateway.bridge import as_langchain_tools

    tools = as_langchain_tools(gateway)
    llm_with_tools = chat_model.bind_tools(tools)
"""

from __future__ import annotations

from typing import Any, Iterable

from langchain_core.tools import StructuredTool

from mcp_gateway.gateway import InvocationGateway, result_to_text
from mcp_gateway.registry import ToolDescriptor

EMPTY_SCHEMA = {"type": "object", "properties": {}}


def langchain_name(descriptor: ToolDescriptor) -> str:
    """LangChain/OpenAI tool names may not contain ':'."""
    return descriptor.id.replace(":", "__")


def to_langchain_tool(
    gateway: InvocationGateway,
    descriptor: ToolDescriptor,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to ``gateway.invoke``.

    Failures come back as text rather than exceptions, so an agent sees
    them as an observation instead of aborting.
    """
    tool_id = descriptor.id

    async def _call_tool(**kwargs: Any) -> str:
        try:
            result = await gateway.invoke(tool_id, kwargs)
            return result_to_text(result)
        except Exception as e:
            return f"Error calling {tool_id}: {e}"

    return StructuredTool.from_function(
        coroutine=_call_tool,
        name=langchain_name(descriptor),
        description=description_override or descriptor.description or f"MCP tool: {tool_id}",
        args_schema=descriptor.parameters or EMPTY_SCHEMA,
    )


def as_langchain_tools(gateway: InvocationGateway) -> list[StructuredTool]:
    """Wrap every tool the gateway currently knows about."""
    return [to_langchain_tool(gateway, d) for d in gateway.list()]


def describe_tool(descriptor: ToolDescriptor) -> str:
    """Prompt text for one tool, generated from its schema."""
    lines = [f"- {descriptor.name}: {descriptor.description} (Server: {descriptor.worker_id})"]
    properties = descriptor.parameters.get("properties", {}) or {}
    required = set(descriptor.parameters.get("required", []) or [])
    for pname, pinfo in properties.items():
        ptype = pinfo.get("type", "any") if isinstance(pinfo, dict) else "any"
        pdesc = pinfo.get("description", "") if isinstance(pinfo, dict) else ""
        flag = ", required" if pname in required else ""
        lines.append(f"    - {pname} ({ptype}{flag}): {pdesc}".rstrip())
    return "\n".join(lines)


def render_tool_catalog(descriptors: Iterable[ToolDescriptor]) -> str:
    text = "\n".join(describe_tool(d) for d in descriptors)
    return text or "(no tools available)"
