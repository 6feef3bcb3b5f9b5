"""
Correlation engine — matches asynchronous responses to the requests that caused them.

Every outbound request gets an id and a PendingRequest holding an
asyncio.Future. The future is completed exactly once, by whichever comes
first:

  - a response with the same id on the same worker  → result / RemoteToolError
  - the request timeout                             → CorrelationTimeout
  - the connection going away                       → TransportFailure

Pending requests are kept per worker, so ids only need to be unique
among one worker's in-flight requests. Matching is by id, never by
arrival order.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any

from mcp_gateway.config import DEFAULT_REQUEST_TIMEOUT
from mcp_gateway.errors import CorrelationTimeout, RemoteToolError, TransportFailure
from mcp_gateway.transport import JsonRpcRequest, JsonRpcResponse, Transport

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """One in-flight correlated request."""
    id: int
    worker_id: str
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None

    def settle(self, result: Any = None, error: BaseException | None = None) -> bool:
        """Complete the future unless it already is. Returns True if this call completed it."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        if self.future.done():
            return False
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)
        return True


class CorrelationEngine:
    """
    Owns all PendingRequests across all workers.

    Usage:
        engine = CorrelationEngine(timeout=30.0)
        transport.on_message = lambda msg: engine.handle_response("calc", msg)
        result = await engine.request("calc", transport, "tools/call", {...})
    """

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.timeout = timeout
        self._pending: dict[str, dict[int, PendingRequest]] = {}
        # Time-seeded so ids from one process run don't repeat a previous run's.
        self._ids = itertools.count(int(time.time() * 1000))

    def next_id(self) -> int:
        return next(self._ids)

    async def request(
        self,
        worker_id: str,
        transport: Transport,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send a request on ``transport`` and wait for its correlated response.

        Returns:
            The response's ``result`` value, unchanged.

        Raises:
            RemoteToolError: the worker answered with an ``error``.
            CorrelationTimeout: no answer within the timeout.
            TransportFailure: the write failed or the connection was lost.
        """
        loop = asyncio.get_running_loop()
        request = JsonRpcRequest(method=method, params=params or {}, id=self.next_id())
        pending = PendingRequest(
            id=request.id,
            worker_id=worker_id,
            method=method,
            future=loop.create_future(),
        )
        delay = self.timeout if timeout is None else timeout
        pending.timer = loop.call_later(delay, self._expire, worker_id, request.id, delay)
        self._pending.setdefault(worker_id, {})[request.id] = pending

        logger.debug(f"[{worker_id}] → {method} id={request.id}")
        try:
            await transport.send(request.to_dict())
            return await pending.future
        finally:
            # no-op unless the write failed or the caller was cancelled
            self._discard(worker_id, request.id)

    def handle_response(self, worker_id: str, message: dict) -> bool:
        """
        Complete the PendingRequest matching ``message['id']`` on this worker.

        Returns:
            True if a pending request was found, False for late or unknown ids.
        """
        response = JsonRpcResponse.from_message(message)
        pending = self._pending.get(worker_id, {}).pop(response.id, None)
        if pending is None:
            logger.debug(
                f"[{worker_id}] ignoring response for unknown or expired id={response.id}"
            )
            return False

        if response.is_error:
            code = response.error.get("code") if response.error else None
            pending.settle(error=RemoteToolError(response.error_message, code=code))
        else:
            pending.settle(result=response.result)
        logger.debug(f"[{worker_id}] ← {pending.method} id={response.id}")
        return True

    def fail_all(self, worker_id: str, reason: str) -> int:
        """Reject every pending request of one worker with TransportFailure."""
        pending = self._pending.pop(worker_id, {})
        for entry in pending.values():
            entry.settle(error=TransportFailure(worker_id, f"{reason} ({entry.method})"))
        if pending:
            logger.warning(f"[{worker_id}] failed {len(pending)} pending request(s): {reason}")
        return len(pending)

    def pending_count(self, worker_id: str | None = None) -> int:
        if worker_id is not None:
            return len(self._pending.get(worker_id, {}))
        return sum(len(p) for p in self._pending.values())

    def _expire(self, worker_id: str, request_id: int, delay: float) -> None:
        pending = self._pending.get(worker_id, {}).pop(request_id, None)
        if pending is None:
            return
        pending.timer = None
        logger.warning(f"[{worker_id}] {pending.method} id={request_id} timed out after {delay:g}s")
        pending.settle(error=CorrelationTimeout(worker_id, pending.method, delay))

    def _discard(self, worker_id: str, request_id: int) -> None:
        bucket = self._pending.get(worker_id)
        if not bucket:
            return
        pending = bucket.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        if not bucket:
            self._pending.pop(worker_id, None)
