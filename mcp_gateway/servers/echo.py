"""
Echo worker — minimal reference implementation.

Use this as a template for new workers and for exercising the transports.

Launch:
    python -m mcp_gateway.servers.echo            # stdio
    python -m mcp_gateway.servers.echo --ws 8765  # WebSocket

Test:
    echo '{"jsonrpc":"2.0","method":"ping","params":{},"id":1}' | python -m mcp_gateway.servers.echo
"""

import asyncio

from mcp_gateway.server import ToolHandler, ToolWorker, main


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = params.get("message", "")
        return {"echoed": message, "length": len(message)}


class SlowEchoTool(ToolHandler):
    name = "slow_echo"
    description = "Echoes the message after waiting the given number of seconds."
    parameters = {
        "message": {"type": "string", "description": "The message to echo back"},
        "delay": {"type": "string", "description": "Seconds to wait, e.g. \"0.5\""},
    }
    required = ["message"]

    async def handle(self, params: dict) -> dict:
        await asyncio.sleep(float(params.get("delay") or 0))
        return {"echoed": params.get("message", "")}


def build_worker() -> ToolWorker:
    worker = ToolWorker("echo-server")
    worker.register(EchoTool())
    worker.register(SlowEchoTool())
    return worker


if __name__ == "__main__":
    main(build_worker())
