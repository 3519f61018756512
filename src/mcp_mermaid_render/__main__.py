from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Awaitable

import uvicorn

from .utils.logging import setup_logging

async def _run_until_terminated(serve: Awaitable[None]) -> None:
    """Await `serve`, cancelling it on SIGTERM so cleanup still runs."""
    task = asyncio.ensure_future(serve)
    loop = asyncio.get_running_loop()
    terminated = False

    def _terminate() -> None:
        nonlocal terminated
        terminated = True
        task.cancel()

    try:
        loop.add_signal_handler(signal.SIGTERM, _terminate)
    except (NotImplementedError, RuntimeError):
        # no signal handlers on this platform/thread; SIGINT still arrives as KeyboardInterrupt
        pass
    try:
        await task
    except asyncio.CancelledError:
        if not terminated:
            raise
        logging.getLogger("mcp.mermaid.render.main").info("server.terminated")
    finally:
        try:
            loop.remove_signal_handler(signal.SIGTERM)
        except (NotImplementedError, RuntimeError):
            pass

async def _serve_mcp(transport: str) -> None:
    from .server import mcp, runtime

    await runtime.start()
    try:
        if transport == "sse":
            await _run_until_terminated(mcp.run_sse_async())
        else:
            await _run_until_terminated(mcp.run_stdio_async())
    finally:
        await runtime.close()

def main() -> None:
    """
    Entry point for running the render server.

    Examples:
      MCP_TRANSPORT=stdio           python -m mcp_mermaid_render
      MCP_TRANSPORT=streamable-http python -m mcp_mermaid_render   # REST + /mcp
      RENDER_BACKEND=local MCP_TRANSPORT=streamable-http python -m mcp_mermaid_render
    """
    if any(a in ("-h", "--help") for a in sys.argv[1:]):
        sys.stderr.write("mcp-mermaid-render: renders Mermaid diagrams over MCP (stdio/sse) or HTTP (REST + /mcp).\n")
        sys.stderr.flush()
        return

    transport = os.getenv("MCP_TRANSPORT", "stdio").strip().lower()

    # stdout carries the protocol on stdio
    setup_logging(stream=sys.stderr if transport == "stdio" else None)
    log = logging.getLogger("mcp.mermaid.render.main")

    from .server import mcp, runtime

    host = os.getenv("MCP_HOST", runtime.settings.http_host)
    port = int(os.getenv("MCP_PORT", str(runtime.settings.http_port)))
    mcp.settings.host = host
    mcp.settings.port = port

    if transport in ("streamable-http", "http"):
        mcp.settings.streamable_http_path = os.getenv("MCP_MOUNT_PATH", "/mcp")
    elif transport == "sse":
        mcp.settings.sse_path = os.getenv("MCP_SSE_PATH", "/sse")

    # Optional: stateless JSON mode for quick curl/browser tests
    if os.getenv("MCP_STATELESS_JSON", "").lower() in {"1", "true", "yes"}:
        mcp.settings.stateless_http = True
        mcp.settings.json_response = True

    log.info(
        "server.start",
        extra={
            "transport": transport,
            "backend": runtime.backend_name,
            "host": host,
            "port": port,
        },
    )

    if transport in ("streamable-http", "http"):
        from .transports.app import create_app
        uvicorn.run(create_app(runtime, mcp), host=host, port=port, log_level="info")
    elif transport in ("stdio", "sse"):
        asyncio.run(_serve_mcp(transport))
    else:
        sys.stderr.write(f"mcp-mermaid-render: unknown MCP_TRANSPORT {transport!r}\n")
        sys.exit(2)

if __name__ == "__main__":
    main()
