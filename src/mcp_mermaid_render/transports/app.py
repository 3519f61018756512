from __future__ import annotations

import contextlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .. import __version__
from ..engine import codec
from ..errors import (
    DecodeError,
    NetworkError,
    RemoteRenderError,
    RenderError,
    RenderTimeoutError,
    ValidationError,
)
from ..models.io_contracts import SUPPORTED_FORMATS
from ..runtime import RenderRuntime
from ..utils.logging import setup_logging

logger = logging.getLogger("mcp.mermaid.render.app")

SERVICE_NAME = "mermaid-render-mcp"

def status_for(error: RenderError) -> int:
    if isinstance(error, (ValidationError, DecodeError)):
        return 400
    if isinstance(error, RemoteRenderError):
        return error.status if 400 <= error.status <= 599 else 502
    if isinstance(error, RenderTimeoutError):
        return 504
    if isinstance(error, NetworkError):
        return 502
    return 500

async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"request body must be valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body

def create_app(runtime: RenderRuntime, mcp_server: Optional[FastMCP] = None) -> Starlette:
    dispatcher = runtime.dispatcher
    base_url = runtime.settings.mermaid_ink_base_url

    async def root(_request: Request) -> JSONResponse:
        return JSONResponse({
            "service": SERVICE_NAME,
            "version": __version__,
            "backend": runtime.backend_name,
            "endpoints": {
                "health": "GET /health",
                "render": "POST /render",
                "render_image": "POST /render/image",
                "render_base64": "POST /render/base64",
                "encode": "POST /encode",
                "decode": "POST /decode",
                "mcp": "POST /mcp" if mcp_server is not None else None,
            },
            "documentation": {
                "render": {
                    "method": "POST",
                    "path": "/render",
                    "body": {
                        "mermaidCode": "string (required, alias: code)",
                        "format": 'string (optional: "png" or "svg", default: "png")',
                        "width": "integer (optional, default: 1200)",
                        "height": "integer (optional, default: 800)",
                    },
                },
            },
        })

    async def health(_request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__,
            "backend": runtime.backend_name,
            "supportedFormats": SUPPORTED_FORMATS,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _render_response(request: Request, disposition: str, filename: str) -> Response:
        result = await dispatcher.render_diagram(await _json_body(request))
        return Response(
            content=result.data,
            media_type=result.content_type,
            headers={"Content-Disposition": f'{disposition}; filename="{filename}.{result.format.extension}"'},
        )

    async def render(request: Request) -> Response:
        return await _render_response(request, "inline", "diagram")

    async def render_image(request: Request) -> Response:
        return await _render_response(request, "attachment", "mermaid")

    async def render_base64(request: Request) -> JSONResponse:
        diagram = dispatcher.build_request(await _json_body(request))
        result = await dispatcher.render_diagram(diagram)
        return JSONResponse({
            "format": f"{result.format.value}-base64",
            "data": result.data_url(),
            "width": diagram.width,
            "height": diagram.height,
        })

    async def encode(request: Request) -> JSONResponse:
        body = await _json_body(request)
        encoded = dispatcher.encode(body.get("mermaidCode") or body.get("code"))
        return JSONResponse({"encoded": encoded, "urls": codec.image_urls(encoded, base_url)})

    async def decode(request: Request) -> JSONResponse:
        body = await _json_body(request)
        return JSONResponse({"mermaidCode": dispatcher.decode(body.get("encodedString"))})

    async def render_error(request: Request, exc: RenderError) -> JSONResponse:
        status = status_for(exc)
        logger.warning("http.error", extra={
            "path": request.url.path,
            "status": status,
            "kind": exc.kind,
            "error": exc.message,
        })
        return JSONResponse({"error": exc.kind, **exc.to_dict()}, status_code=status)

    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        if isinstance(exc, HTTPException) and exc.status_code != 404:
            return JSONResponse({"error": exc.detail}, status_code=exc.status_code)
        return JSONResponse({"error": "Not found", "path": request.url.path}, status_code=404)

    routes = [
        Route("/", endpoint=root, methods=["GET"]),
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/render", endpoint=render, methods=["POST"]),
        Route("/render/image", endpoint=render_image, methods=["POST"]),
        Route("/render/base64", endpoint=render_base64, methods=["POST"]),
        Route("/encode", endpoint=encode, methods=["POST"]),
        Route("/decode", endpoint=decode, methods=["POST"]),
    ]

    if mcp_server is not None:
        # FastMCP serves its streamable HTTP endpoint at /mcp inside this sub-app
        mcp_app = mcp_server.streamable_http_app()
        routes.append(Route(mcp_server.settings.streamable_http_path, endpoint=mcp_app))

    # Lifespan: browser session / HTTP client, then the MCP session manager
    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette):
        async with contextlib.AsyncExitStack() as stack:
            await runtime.start()
            stack.push_async_callback(runtime.close)
            if mcp_server is not None:
                await stack.enter_async_context(mcp_server.session_manager.run())
            logger.info("http.ready", extra={"backend": runtime.backend_name, "mcp": mcp_server is not None})
            yield

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=runtime.settings.cors_allow_origins,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
        ),
    ]

    return Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
        exception_handlers={RenderError: render_error, 404: not_found, 405: not_found},
    )

def build_default_app() -> Starlette:
    from ..server import mcp, runtime
    return create_app(runtime, mcp)

def main() -> None:
    setup_logging()
    from ..server import runtime
    settings = runtime.settings
    logger.info("http.start", extra={"host": settings.http_host, "port": settings.http_port, "backend": runtime.backend_name})
    uvicorn.run(build_default_app(), host=settings.http_host, port=settings.http_port, log_level="info")

if __name__ == "__main__":
    main()
