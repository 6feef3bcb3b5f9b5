"""Reference workers, runnable with ``python -m mcp_gateway.servers.<name>``."""
