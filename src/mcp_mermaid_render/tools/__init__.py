from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from ..runtime import RenderRuntime
from .mermaid_render import register_mermaid_render

def register(mcp: FastMCP, runtime: RenderRuntime) -> None:
    register_mermaid_render(mcp, runtime)
