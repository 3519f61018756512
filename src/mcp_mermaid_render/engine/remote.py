from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import NetworkError, RemoteRenderError, RenderTimeoutError
from ..models.io_contracts import DiagramRequest, RenderResult
from ..settings import Settings
from . import codec

log = logging.getLogger("mcp.mermaid.render.remote")

class RemoteRenderer:
    """
    Delegates rendering to mermaid.ink: the source is encoded into a `pako:`
    token and fetched from the svg or img endpoint. Stateless apart from the
    pooled HTTP client; never retries.
    """

    name = "remote"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, request: DiagramRequest) -> str:
        token = codec.encode(request.source_text)
        return codec.image_url(token, request.format, self.settings.mermaid_ink_base_url)

    def _headers(self) -> dict[str, str]:
        return {"user-agent": self.settings.user_agent}

    async def render(self, request: DiagramRequest) -> RenderResult:
        url = self.url_for(request)
        log.info("remote.fetch", extra={"format": request.format.value, "url_len": len(url)})
        resp = await self._send("GET", url, timeout=self.settings.request_timeout_seconds)
        return RenderResult(
            data=resp.content,
            content_type=request.format.content_type,
            format=request.format,
            backend=self.name,
        )

    async def probe(self, request: DiagramRequest) -> str:
        """HEAD the image URL with the short probe timeout and return it when reachable."""
        url = self.url_for(request)
        log.info("remote.probe", extra={"format": request.format.value, "url_len": len(url)})
        await self._send("HEAD", url, timeout=self.settings.probe_timeout_seconds)
        return url

    async def _send(self, method: str, url: str, *, timeout: float) -> httpx.Response:
        try:
            resp = await self._client.request(
                method,
                url,
                headers=self._headers(),
                timeout=httpx.Timeout(timeout),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.warning("remote.status", extra={"method": method, "status": status})
            raise RemoteRenderError(
                f"Failed to render diagram. HTTP status: {status}",
                status=status,
            ) from e
        except httpx.TimeoutException as e:
            log.warning("remote.timeout", extra={"method": method, "timeout": timeout})
            raise RenderTimeoutError(
                "Request timeout. The mermaid.ink service might be slow or unavailable.",
                data={"timeout_seconds": timeout},
            ) from e
        except httpx.RequestError as e:
            log.warning("remote.unreachable", extra={"method": method, "error": str(e)})
            raise NetworkError(f"Failed to reach mermaid.ink: {e}") from e
        return resp
