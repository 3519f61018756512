from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from .runtime import RenderRuntime
from .settings import Settings
from .tools import register as register_tools

logger = logging.getLogger("mcp.mermaid.render.server")

def create_server(runtime: RenderRuntime) -> FastMCP:
    server = FastMCP("mermaid-render")
    register_tools(server, runtime)
    return server

# One runtime and one FastMCP instance per process, built at import time
runtime = RenderRuntime.from_settings(Settings.from_env())
mcp = create_server(runtime)
