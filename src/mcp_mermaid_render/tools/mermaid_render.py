from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from ..engine import codec
from ..errors import RenderError, as_render_error
from ..runtime import RenderRuntime
from ..utils.logging import preview

log = logging.getLogger("mcp.mermaid.render.tools")

def _error(e: Exception) -> Dict[str, Any]:
    if isinstance(e, RenderError):
        log.warning("tool.error", extra={"kind": e.kind, "error": e.message})
    else:
        log.exception("tool.error.unexpected")
    err = as_render_error(e)
    # -32602 covers both validation_error and decode_error; kind tells them apart
    return {"error": {"kind": err.kind, **err.to_json_rpc_error()["error"]}}

def register_mermaid_render(mcp: FastMCP, runtime: RenderRuntime) -> None:
    settings = runtime.settings
    log.info("tool.register", extra={
        "tools": ["mermaid.render", "mermaid.encode", "mermaid.decode"],
        "backend": runtime.backend_name,
        "mermaid_ink": settings.mermaid_ink_base_url,
    })

    @mcp.tool(name="mermaid.render", title="Render Mermaid Diagram")
    async def mermaid_render(
        mermaid_code: str,
        format: str = "png",
        width: Optional[int] = None,
        height: Optional[int] = None,
        inline: bool = True,
    ) -> Dict[str, Any]:
        """
        Render a Mermaid diagram to PNG or SVG.
          - mermaid_code: the Mermaid diagram source
          - format: "png" (default) or "svg"
          - width/height: viewport for local rendering (default 1200x800)
          - inline: return the image as a base64 data URL; when false and the
            server uses mermaid.ink, only the verified image URL is returned
        """
        t0 = time.time()
        try:
            request = runtime.dispatcher.build_request({
                "mermaid_code": mermaid_code,
                "format": format,
                "width": width,
                "height": height,
            })
            encoded = codec.encode_mermaid(request.source_text)
            out: Dict[str, Any] = {
                "format": request.format.value,
                "content_type": request.format.content_type,
                "encoded": encoded,
                "image_url": codec.image_url(encoded, request.format, settings.mermaid_ink_base_url),
            }

            remote = runtime.remote
            if not inline and remote is not None:
                out["image_url"] = await remote.probe(request)
                out["backend"] = remote.name
            else:
                result = await runtime.dispatcher.render_diagram(request)
                out.update({
                    "backend": result.backend,
                    "content_type": result.content_type,
                    "size_bytes": result.size,
                    "data": result.data_url(),
                })
        except Exception as e:
            return _error(e)

        log.info("tool.response", extra={
            "tool": "mermaid.render",
            "took_ms": int((time.time() - t0) * 1000),
            "inline": "data" in out,
        })
        return out

    @mcp.tool(name="mermaid.encode", title="Encode Mermaid Code")
    async def mermaid_encode(mermaid_code: str) -> Dict[str, Any]:
        """Encode Mermaid code to the `pako:` format used by mermaid.ink."""
        try:
            encoded = runtime.dispatcher.encode(mermaid_code)
        except Exception as e:
            return _error(e)
        log.info("tool.response", extra={"tool": "mermaid.encode", "len": len(encoded)})
        return {
            "encoded": encoded,
            "urls": codec.image_urls(encoded, settings.mermaid_ink_base_url),
        }

    @mcp.tool(name="mermaid.decode", title="Decode Mermaid Code")
    async def mermaid_decode(encoded_string: str) -> Dict[str, Any]:
        """Decode a mermaid.ink string (with or without the 'pako:' prefix) back to Mermaid code."""
        try:
            decoded = runtime.dispatcher.decode(encoded_string)
        except Exception as e:
            return _error(e)
        log.info("tool.response", extra={"tool": "mermaid.decode", "preview": preview(decoded, 120)})
        return {"mermaid_code": decoded}
