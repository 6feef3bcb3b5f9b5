"""
Run Gateway — end-to-end: workers → tool registry → agent turn / HTTP API.

It:
1. Loads worker definitions (a YAML file, or the built-in defaults below)
2. Launches/dials every enabled worker and performs the handshake
3. Either prints status/tools, runs one agent turn, or serves the HTTP API
4. Stops every worker on the way out

Usage:
    # Show workers and the tools they advertised
    python run_gateway.py --status --list-tools

    # One agent turn
    python run_gateway.py --provider openai --message "What's the weather in Paris?"

    # Serve the chat API
    python run_gateway.py --config workers.yaml --serve --port 3000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from mcp_gateway.app import GatewayApp
from mcp_gateway.config import GatewaySettings, load_workers
from mcp_gateway.errors import ModelCapabilityFailure
from mcp_gateway.models import ModelRegistry

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.resolve()
DEFAULT_CONFIG = PROJECT_ROOT / "workers.yaml"


# ============================================================
# DEFAULT WORKERS
# ============================================================
# Used when no --config is given and workers.yaml is missing.

DEFAULT_WORKERS = {
    "echo": {
        "name": "Echo",
        "transport": "process",
        "command": [sys.executable, "-m", "mcp_gateway.servers.echo"],
    },
    "weather": {
        "name": "Weather Service",
        "transport": "process",
        "command": [sys.executable, "-m", "mcp_gateway.servers.weather"],
    },
}


def print_status(app: GatewayApp) -> None:
    print("\nWorkers:\n")
    for wid, info in app.connections.status().items():
        where = (
            f"{info['host']}:{info['port']}"
            if info["protocol"] == "socket"
            else " ".join([info["command"], *info["args"]])
        )
        print(f"  {wid:<15} {info['status']:<13} {info['protocol']:<8} {where}")
    print()


def print_tools(app: GatewayApp) -> None:
    tools = app.gateway.list()
    print(f"\nAvailable tools ({len(tools)}):\n")
    for tool in tools:
        print(f"  {tool.id:<40} {tool.description}")
    print()


async def run_turn(app: GatewayApp, provider: str, message: str) -> int:
    try:
        turn = await app.agent.run(provider, message)
    except ModelCapabilityFailure as e:
        print(f"Agent invocation failed: {e}")
        return 1

    print("=" * 60)
    print(turn.response)
    print("=" * 60)
    if turn.tools_used:
        print("Tools used:")
        print(json.dumps([t.to_dict() for t in turn.tools_used], indent=2, ensure_ascii=False))
    return 0


async def run(args: argparse.Namespace) -> int:
    config_path = args.config or (DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None)
    workers = load_workers(config_path if config_path else DEFAULT_WORKERS)
    if args.workers:
        workers = [w for w in workers if w.id in args.workers]

    app = GatewayApp.build(workers, ModelRegistry.from_env(), GatewaySettings.from_env())

    if args.serve:
        import uvicorn

        from mcp_gateway.api import create_app

        server = uvicorn.Server(uvicorn.Config(create_app(app), host=args.host, port=args.port))
        await server.serve()
        return 0

    print("Starting MCP workers...")
    await app.start()
    try:
        if args.status:
            print_status(app)
        if args.list_tools:
            print_tools(app)
        if args.message:
            if not args.provider:
                print("Error: --provider is required with --message")
                return 2
            return await run_turn(app, args.provider, args.message)
        return 0
    finally:
        await app.stop()
        print("\nMCP workers stopped.")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the MCP tool gateway.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_gateway.py --status --list-tools
  python run_gateway.py --provider anthropic --message "Forecast for Rome?"
  python run_gateway.py --serve --port 3000
        """,
    )
    parser.add_argument("--config", "-c", type=Path, default=None, help="Worker config YAML (default: workers.yaml)")
    parser.add_argument("--workers", type=str, nargs="*", default=None, help="Only start these worker ids")
    parser.add_argument("--status", action="store_true", help="Print worker status after startup")
    parser.add_argument("--list-tools", action="store_true", help="Print every discovered tool")
    parser.add_argument("--provider", "-p", type=str, default=None, help="Model provider (openai, anthropic, google)")
    parser.add_argument("--message", "-m", type=str, default=None, help="Run one agent turn with this message")
    parser.add_argument("--serve", action="store_true", help="Serve the HTTP API")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="HTTP bind address")
    parser.add_argument("--port", type=int, default=3000, help="HTTP port")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nShutting down MCP workers...")


if __name__ == "__main__":
    main()
