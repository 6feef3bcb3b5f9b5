"""
Agent orchestration loop.

One turn:
  1. ask the model, showing it the tool catalogue
  2. parse tool-call expressions out of its answer
  3. no calls → that answer is final
  4. run each call through the InvocationGateway, in order
  5. ask the model once more to turn the tool results into a reply

Tool failures never abort a turn; they become that tool's result text.
If the follow-up model call fails, the first answer is returned along
with whatever the tools produced.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from mcp_gateway.bridge import render_tool_catalog
from mcp_gateway.errors import ModelCapabilityFailure
from mcp_gateway.gateway import InvocationGateway, result_to_text
from mcp_gateway.models import DEMO_PROVIDER, ModelReply
from mcp_gateway.parser import ToolCall, parse_tool_calls

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an intelligent AI agent with access to various tools through MCP (Model Context Protocol) servers.

Available tools:
{tools}

To use a tool, write the call in a tool_code block, one call per line, with every argument as a quoted string:

```tool_code
tool_name(param="value", other="value")
```

If no tool is needed, answer the user directly.

Current conversation:
{history}

User: {message}
"""

FOLLOW_UP_PROMPT = """Original user question: "{message}"

I executed the following tools and got these results:

{results}

Please provide a natural, helpful response to the user based on these tool results. Be conversational and informative."""


class ModelCapability(Protocol):
    async def invoke_model(self, provider: str, prompt: str) -> ModelReply: ...


@dataclass
class ToolTrace:
    """One executed tool call, exposed verbatim to callers."""
    tool: str
    input: dict[str, str]
    output: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AgentTurn:
    response: str
    provider: str
    tools_used: list[ToolTrace] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)


DEMO_RESPONSE = """I'm currently in demo mode. To use the full AI agent capabilities, set up your API keys in the environment:

**Required API Keys:**
- OPENAI_API_KEY for GPT-4
- ANTHROPIC_API_KEY for Claude
- GOOGLE_API_KEY for Gemini

**Your message:** "{message}"

Once you add the API keys and restart the server, I'll be able to process your requests using the selected AI model and available MCP tools."""


def demo_turn(message: str) -> AgentTurn:
    """The canned reply used while no model provider is configured."""
    return AgentTurn(response=DEMO_RESPONSE.format(message=message), provider=DEMO_PROVIDER)


class AgentLoop:
    def __init__(self, models: ModelCapability, gateway: InvocationGateway):
        self._models = models
        self._gateway = gateway

    async def run(
        self,
        provider: str,
        message: str,
        history: list[dict[str, str]] | None = None,
    ) -> AgentTurn:
        """
        Run one orchestration turn.

        Raises:
            ModelCapabilityFailure: the first model call failed.
        """
        prompt = self.build_prompt(message, history or [])
        logger.info(f"Processing message with {provider} agent: {message}")
        reply = await self._models.invoke_model(provider, prompt)
        raw = reply.content

        calls = parse_tool_calls(raw)
        if not calls:
            logger.debug("No tool calls found in model output")
            return AgentTurn(response=raw, provider=provider)

        logger.info(f"Found tool calls: {[c.expression for c in calls]}")
        trace, results = await self._execute(calls)

        summary = "\n\n".join(f"Tool: {name}\nResult: {result}" for name, result in results)
        try:
            follow_up = await self._models.invoke_model(
                provider, FOLLOW_UP_PROMPT.format(message=message, results=summary)
            )
        except ModelCapabilityFailure as e:
            logger.error(f"Error getting LLM response for tool results: {e}")
            return AgentTurn(
                response=raw,
                provider=provider,
                tools_used=trace,
                reasoning=[f"Executed {len(trace)} tool(s) but LLM processing failed"],
            )

        return AgentTurn(
            response=follow_up.content,
            provider=provider,
            tools_used=trace,
            reasoning=[f"Executed {len(trace)} tool(s) and processed results with LLM"],
        )

    async def _execute(self, calls: list[ToolCall]) -> tuple[list[ToolTrace], list[tuple[str, str]]]:
        trace: list[ToolTrace] = []
        results: list[tuple[str, str]] = []
        for call in calls:
            descriptor = self._gateway.resolve(call.name)
            if descriptor is None:
                logger.warning(f"Tool {call.name} not found")
                results.append((call.name, f"Tool {call.name} not found"))
                continue

            try:
                output = result_to_text(await self._gateway.invoke(descriptor.id, call.arguments))
                logger.info(f"Tool {call.name} executed successfully")
            except Exception as e:
                logger.error(f"Error executing tool call {call.expression}: {e}")
                output = f"Error invoking tool {call.name}: {e}"

            trace.append(ToolTrace(tool=call.name, input=dict(call.arguments), output=output))
            results.append((call.name, output))
        return trace, results

    def build_prompt(self, message: str, history: list[dict[str, str]]) -> str:
        lines = [f"{item.get('role', 'user')}: {item.get('content', '')}" for item in history]
        return SYSTEM_PROMPT.format(
            tools=render_tool_catalog(self._gateway.list()),
            history="\n".join(lines) or "(none)",
            message=message,
        )
