"""
Tests for the InvocationGateway and result flattening.
"""

import asyncio
import json

import pytest

from conftest import wait_for_pending, worker
from mcp_gateway.errors import RemoteToolError, ToolNotFound, WorkerNotConnected
from mcp_gateway.gateway import result_to_text


@pytest.mark.asyncio
async def test_invoke_sends_tools_call_with_bare_name(stack):
    """A worker tool is called by its bare name with the given arguments."""
    await stack.connections.open(worker("weather"))
    await asyncio.sleep(0)
    transport = stack.factory.latest("weather")

    call = asyncio.create_task(stack.gateway.invoke("weather:get_weather", {"city": "Paris"}))
    await wait_for_pending(stack.correlation, "weather")

    request = transport.requests("tools/call")[0]
    assert request["params"] == {"name": "get_weather", "arguments": {"city": "Paris"}}

    transport.respond(request, result={"content": [{"type": "text", "text": "Sunny, 22°C"}]})
    assert await call == {"content": [{"type": "text", "text": "Sunny, 22°C"}]}


@pytest.mark.asyncio
async def test_unknown_tool_raises_before_sending(stack):
    await stack.connections.open(worker("weather"))
    sent_before = list(stack.factory.latest("weather").sent)

    with pytest.raises(ToolNotFound) as exc_info:
        await stack.gateway.invoke("weather:nope", {})

    assert str(exc_info.value) == "Tool not found: weather:nope"
    assert stack.factory.latest("weather").sent == sent_before


@pytest.mark.asyncio
async def test_disconnected_worker_raises_before_sending(stack):
    """A known tool whose worker is gone fails with WorkerNotConnected and writes nothing."""
    await stack.connections.open(worker("weather"))
    await asyncio.sleep(0)
    transport = stack.factory.latest("weather")
    transport.close_remote(OSError("stream reset"))
    sent_before = list(transport.sent)

    with pytest.raises(WorkerNotConnected) as exc_info:
        await stack.gateway.invoke("weather:get_weather", {"city": "Paris"})

    assert exc_info.value.state == "error"
    assert transport.sent == sent_before


@pytest.mark.asyncio
async def test_remote_error_propagates(stack):
    await stack.connections.open(worker("weather"))
    await asyncio.sleep(0)
    transport = stack.factory.latest("weather")

    call = asyncio.create_task(stack.gateway.invoke("weather:get_forecast", {"city": "Oslo"}))
    await wait_for_pending(stack.correlation, "weather")
    transport.respond(transport.requests("tools/call")[0], error="forecast service down")

    with pytest.raises(RemoteToolError, match="forecast service down"):
        await call


@pytest.mark.asyncio
async def test_local_tool_runs_in_process(stack):
    calls = []

    async def handler(arguments):
        calls.append(arguments)
        return f"hello {arguments['name']}"

    stack.tools.register_local("greet", "Say hello", {"type": "object"}, handler)

    assert await stack.gateway.invoke("local:greet", {"name": "Ada"}) == "hello Ada"
    assert calls == [{"name": "Ada"}]


@pytest.mark.asyncio
async def test_concurrent_invocations_on_one_worker(stack):
    """Two calls in flight on one worker each get their own answer."""
    await stack.connections.open(worker("weather"))
    await asyncio.sleep(0)
    transport = stack.factory.latest("weather")

    paris = asyncio.create_task(stack.gateway.invoke("weather:get_weather", {"city": "Paris"}))
    rome = asyncio.create_task(stack.gateway.invoke("weather:get_weather", {"city": "Rome"}))
    await wait_for_pending(stack.correlation, "weather", 2)

    for request in reversed(transport.requests("tools/call")):
        city = request["params"]["arguments"]["city"]
        transport.respond(request, result=f"weather in {city}")

    assert await paris == "weather in Paris"
    assert await rome == "weather in Rome"


def test_resolve_by_bare_name_and_id(stack):
    stack.tools.update_tools("weather", [{"name": "get_weather"}])

    assert stack.gateway.resolve("get_weather").id == "weather:get_weather"
    assert stack.gateway.resolve("weather:get_weather").name == "get_weather"
    assert stack.gateway.resolve("get_time") is None


def test_result_to_text_string_passthrough():
    assert result_to_text("plain") == "plain"


def test_result_to_text_joins_content_parts():
    result = {
        "content": [
            {"type": "text", "text": "line one"},
            {"type": "image", "data": "..."},
            {"type": "text", "text": "line two"},
        ]
    }
    assert result_to_text(result) == "line one\nline two"


def test_result_to_text_json_for_structured_results():
    assert json.loads(result_to_text({"echoed": "hi", "length": 2})) == {"echoed": "hi", "length": 2}
    assert result_to_text(None) == "null"
