from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional, Protocol, Union

import httpx

from ..errors import RenderError, ValidationError
from ..models.io_contracts import DiagramRequest, RenderResult
from ..settings import Settings
from ..utils.logging import preview, want_verbose_inputs
from . import codec
from .local import BrowserSession, LocalRenderer
from .remote import RemoteRenderer

log = logging.getLogger("mcp.mermaid.render.dispatcher")

# Keys accepted for the diagram source when a plain mapping is dispatched
_SOURCE_KEYS = ("source_text", "code", "mermaid_code", "mermaidCode")

class RenderBackend(Protocol):
    name: str

    async def render(self, request: DiagramRequest) -> RenderResult: ...


def create_backend(
    settings: Settings,
    *,
    session: Optional[BrowserSession] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Union[RemoteRenderer, LocalRenderer]:
    """A deployment runs exactly one backend, picked by RENDER_BACKEND."""
    if settings.render_backend == "remote":
        return RemoteRenderer(settings, client=client)
    if settings.render_backend == "local":
        if session is None:
            session = BrowserSession(headless=settings.browser_headless)
        return LocalRenderer(session, settings)
    raise ValueError(f"Unknown RENDER_BACKEND: {settings.render_backend!r} (expected 'remote' or 'local')")


class RenderDispatcher:
    def __init__(self, backend: RenderBackend, settings: Optional[Settings] = None) -> None:
        self.backend = backend
        self.settings = settings or Settings()

    def build_request(self, payload: Union[DiagramRequest, Mapping[str, Any]]) -> DiagramRequest:
        if isinstance(payload, DiagramRequest):
            return payload
        source = next((payload[k] for k in _SOURCE_KEYS if payload.get(k) is not None), None)
        return DiagramRequest.build(
            source,
            payload.get("format"),
            payload.get("width"),
            payload.get("height"),
            default_width=self.settings.default_width,
            default_height=self.settings.default_height,
        )

    async def render_diagram(self, payload: Union[DiagramRequest, Mapping[str, Any]]) -> RenderResult:
        request = self.build_request(payload)
        t0 = time.time()
        if want_verbose_inputs():
            log.info("render.request.verbose", extra={
                "backend": self.backend.name,
                "format": request.format.value,
                "width": request.width,
                "height": request.height,
                "source": request.source_text,
            })
        else:
            log.info("render.request", extra={
                "backend": self.backend.name,
                "format": request.format.value,
                "source_preview": preview(request.source_text, 120),
                "source_size": len(request.source_text),
            })

        try:
            result = await self.backend.render(request)
        except RenderError as e:
            e.data.setdefault("operation", "render")
            e.data.setdefault("format", request.format.value)
            e.data.setdefault("backend", self.backend.name)
            log.warning("render.failed", extra={
                "kind": e.kind,
                "error": e.message,
                "took_ms": int((time.time() - t0) * 1000),
            })
            raise

        log.info("render.response", extra={
            "backend": result.backend,
            "content_type": result.content_type,
            "bytes": result.size,
            "took_ms": int((time.time() - t0) * 1000),
        })
        return result

    def encode(self, source_text: Optional[str]) -> str:
        if not isinstance(source_text, str) or not source_text.strip():
            raise ValidationError("mermaid code is required", data={"operation": "encode"})
        return codec.encode_mermaid(source_text)

    def decode(self, token: Optional[str]) -> Any:
        if not isinstance(token, str) or not token.strip():
            raise ValidationError("encoded string is required", data={"operation": "decode"})
        try:
            return codec.decode(token)
        except RenderError as e:
            e.data.setdefault("operation", "decode")
            raise
