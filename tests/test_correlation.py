"""
Tests for the correlation engine.

Covers:
- request/response matching by id, including out-of-order responses
- timeouts (never early, late responses dropped)
- error responses and connection loss
- isolation between workers
"""

import asyncio

import pytest

from conftest import FakeTransport, wait_for_pending
from mcp_gateway.correlation import CorrelationEngine
from mcp_gateway.errors import CorrelationTimeout, RemoteToolError, TransportFailure


pytestmark = pytest.mark.asyncio


async def _transport(worker_id: str = "calc") -> FakeTransport:
    transport = FakeTransport(worker_id, auto_initialize=False)
    await transport.start()
    return transport


async def test_request_resolves_with_result():
    """A response with the request's id resolves it with the unmodified result."""
    engine = CorrelationEngine(timeout=1.0)
    transport = await _transport()

    task = asyncio.create_task(engine.request("calc", transport, "tools/call", {"name": "add"}))
    await wait_for_pending(engine, "calc")

    sent = transport.sent[0]
    assert sent["jsonrpc"] == "2.0"
    assert sent["method"] == "tools/call"
    assert sent["params"] == {"name": "add"}

    transport.on_message = lambda msg: engine.handle_response("calc", msg)
    transport.respond(sent, result={"sum": 3, "nested": [1, {"a": None}]})

    assert await task == {"sum": 3, "nested": [1, {"a": None}]}
    assert engine.pending_count() == 0


async def test_out_of_order_responses_match_by_id():
    """Responses arriving in reverse order still reach the right callers."""
    engine = CorrelationEngine(timeout=1.0)
    transport = await _transport()
    transport.on_message = lambda msg: engine.handle_response("calc", msg)

    first = asyncio.create_task(engine.request("calc", transport, "tools/call", {"n": 1}))
    second = asyncio.create_task(engine.request("calc", transport, "tools/call", {"n": 2}))
    await wait_for_pending(engine, "calc", 2)

    req1, req2 = transport.sent
    assert req1["id"] != req2["id"]

    transport.respond(req2, result="second")
    transport.respond(req1, result="first")

    assert await first == "first"
    assert await second == "second"


async def test_timeout_fires_after_limit_not_before():
    """A request with no answer fails with CorrelationTimeout once the limit passes."""
    engine = CorrelationEngine(timeout=0.1)
    transport = await _transport()

    task = asyncio.create_task(engine.request("calc", transport, "tools/call"))
    await asyncio.sleep(0.03)
    assert not task.done()

    with pytest.raises(CorrelationTimeout) as exc_info:
        await task
    assert "Tool invocation timeout" in str(exc_info.value)
    assert exc_info.value.method == "tools/call"
    assert engine.pending_count("calc") == 0


async def test_late_response_after_timeout_is_dropped():
    """A response arriving after the timeout is ignored."""
    engine = CorrelationEngine(timeout=0.02)
    transport = await _transport()

    with pytest.raises(CorrelationTimeout):
        await engine.request("calc", transport, "tools/call")

    late = {"jsonrpc": "2.0", "id": transport.sent[0]["id"], "result": "too late"}
    assert engine.handle_response("calc", late) is False


async def test_per_request_timeout_overrides_default():
    engine = CorrelationEngine(timeout=10.0)
    transport = await _transport()

    with pytest.raises(CorrelationTimeout):
        await engine.request("calc", transport, "ping", timeout=0.02)


async def test_error_response_becomes_remote_tool_error():
    """An error envelope rejects the request with the worker's message and code."""
    engine = CorrelationEngine(timeout=1.0)
    transport = await _transport()
    transport.on_message = lambda msg: engine.handle_response("calc", msg)

    task = asyncio.create_task(engine.request("calc", transport, "tools/call"))
    await wait_for_pending(engine, "calc")
    transport.deliver({
        "jsonrpc": "2.0",
        "id": transport.sent[0]["id"],
        "error": {"code": -32601, "message": "Unknown tool: 'divide'"},
    })

    with pytest.raises(RemoteToolError) as exc_info:
        await task
    assert str(exc_info.value) == "Unknown tool: 'divide'"
    assert exc_info.value.code == -32601


async def test_duplicate_response_settles_once():
    """Only the first response for an id is used."""
    engine = CorrelationEngine(timeout=1.0)
    transport = await _transport()

    task = asyncio.create_task(engine.request("calc", transport, "tools/call"))
    await wait_for_pending(engine, "calc")
    request_id = transport.sent[0]["id"]

    assert engine.handle_response("calc", {"id": request_id, "result": "one"}) is True
    assert engine.handle_response("calc", {"id": request_id, "result": "two"}) is False
    assert await task == "one"


async def test_unknown_id_is_ignored():
    engine = CorrelationEngine(timeout=1.0)
    assert engine.handle_response("calc", {"id": 999, "result": "?"}) is False


async def test_fail_all_rejects_pending_with_transport_failure():
    """Connection loss rejects every pending request of that worker immediately."""
    engine = CorrelationEngine(timeout=10.0)
    transport = await _transport()

    tasks = [
        asyncio.create_task(engine.request("calc", transport, "tools/call", {"n": i}))
        for i in range(3)
    ]
    await wait_for_pending(engine, "calc", 3)

    assert engine.fail_all("calc", "connection closed by worker") == 3

    for task in tasks:
        with pytest.raises(TransportFailure) as exc_info:
            await task
        assert "connection closed by worker" in str(exc_info.value)
    assert engine.pending_count() == 0


async def test_fail_all_leaves_other_workers_alone():
    """Two workers with in-flight requests do not affect each other."""
    engine = CorrelationEngine(timeout=10.0)
    calc = await _transport("calc")
    weather = await _transport("weather")

    calc_task = asyncio.create_task(engine.request("calc", calc, "tools/call"))
    weather_task = asyncio.create_task(engine.request("weather", weather, "tools/call"))
    await wait_for_pending(engine, "calc")
    await wait_for_pending(engine, "weather")

    engine.fail_all("calc", "stream error")
    with pytest.raises(TransportFailure):
        await calc_task

    assert not weather_task.done()
    # a response carrying the weather id but arriving on calc is not a match
    weather_id = weather.sent[0]["id"]
    assert engine.handle_response("calc", {"id": weather_id, "result": "wrong"}) is False

    engine.handle_response("weather", {"id": weather_id, "result": "sunny"})
    assert await weather_task == "sunny"


async def test_send_failure_cleans_up_pending():
    """A write that fails leaves nothing pending and raises TransportFailure."""
    engine = CorrelationEngine(timeout=1.0)
    transport = FakeTransport("calc", auto_initialize=False)  # never started

    with pytest.raises(TransportFailure):
        await engine.request("calc", transport, "tools/call")
    assert engine.pending_count() == 0


async def test_cancelled_caller_discards_pending():
    engine = CorrelationEngine(timeout=10.0)
    transport = await _transport()

    task = asyncio.create_task(engine.request("calc", transport, "tools/call"))
    await wait_for_pending(engine, "calc")
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert engine.pending_count("calc") == 0


async def test_ids_are_unique_across_requests():
    engine = CorrelationEngine()
    ids = {engine.next_id() for _ in range(1000)}
    assert len(ids) == 1000
