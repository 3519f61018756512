from __future__ import annotations

import asyncio
import html
import json
import logging
import time
from contextlib import asynccontextmanager
from string import Template
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..errors import RenderFailure
from ..models.io_contracts import DiagramFormat, DiagramRequest, RenderResult
from ..settings import Settings
from ..utils.logging import preview

log = logging.getLogger("mcp.mermaid.render.local")

SVG_SELECTOR = "#container > svg"

CHROMIUM_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",  # /dev/shm is tiny in containers
    "--font-render-hinting=none",
]

# CJK fonts first so non-Latin labels have glyphs in headless containers
FONT_FAMILY = (
    '"Noto Sans CJK SC", "Source Han Sans SC", "Microsoft YaHei", "微软雅黑", '
    '"SimHei", "黑体", "DejaVu Sans", Arial, sans-serif'
)

_DOCUMENT = Template("""<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8" />
    <style>
      body {
        margin: 0;
        padding: 20px;
        display: flex;
        justify-content: center;
        align-items: center;
        height: calc(100vh - 40px);
      }
      #container {
        max-width: 100%;
        max-height: 100%;
      }
    </style>
  </head>
  <body>
    <div id="container" class="mermaid">$source</div>
    <script src="$script_url"></script>
    <script type="module">
      mermaid.initialize(Object.assign({ startOnLoad: false }, $config));
      await mermaid.run({ nodes: [document.getElementById("container")] });
    </script>
  </body>
</html>
""")

def escape_for_embedding(text: str) -> str:
    """HTML-escape & < > " ' so diagram source can sit inside the container div."""
    return html.escape(text, quote=True)

def mermaid_config(width: int) -> Dict[str, Any]:
    return {
        "theme": "default",
        "fontFamily": FONT_FAMILY,
        "gantt": {"useWidth": width},
    }

def build_document(source_text: str, width: int, mermaid_js_url: str) -> str:
    return _DOCUMENT.substitute(
        source=escape_for_embedding(source_text),
        script_url=escape_for_embedding(mermaid_js_url),
        config=json.dumps(mermaid_config(width), ensure_ascii=False),
    )

def error_svg(message: str, width: int, height: int) -> str:
    return (
        f'<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">'
        f'<text x="10" y="20" fill="red">Render error: {escape_for_embedding(message)}</text>'
        "</svg>"
    )


class BrowserSession:
    """
    One Chromium instance shared by the whole process. Pages are opened per
    request through `open_page` and always closed when the block exits.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        launch_args: Optional[List[str]] = None,
        browser: Optional[Browser] = None,
    ) -> None:
        self.headless = headless
        self.launch_args = list(launch_args if launch_args is not None else CHROMIUM_ARGS)
        self._browser = browser
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()
        self.open_page_count = 0

    @property
    def is_started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        async with self._lock:
            if self._browser is not None:
                return
            log.info("browser.start", extra={"headless": self.headless, "launch_args": self.launch_args})
            self._playwright = await async_playwright().start()
            try:
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=self.launch_args,
                )
            except Exception:
                await self._playwright.stop()
                self._playwright = None
                raise
            log.info("browser.ready")

    async def close(self) -> None:
        async with self._lock:
            browser, self._browser = self._browser, None
            pw, self._playwright = self._playwright, None
            if browser is not None:
                log.info("browser.close", extra={"open_pages": self.open_page_count})
                await browser.close()
            if pw is not None:
                await pw.stop()

    @asynccontextmanager
    async def open_page(self, width: int, height: int) -> AsyncIterator[Page]:
        if self._browser is None:
            raise RenderFailure("Browser session is not started")
        page = await self._browser.new_page(viewport={"width": width, "height": height})
        self.open_page_count += 1
        try:
            yield page
        finally:
            self.open_page_count -= 1
            try:
                await page.close()
            except PlaywrightError as e:
                # browser already gone; nothing left to release
                log.warning("browser.page.close_failed", extra={"error": str(e)})


async def _extract_svg(element: Any) -> bytes:
    markup = await element.evaluate("el => el.outerHTML")
    return str(markup).encode("utf-8")

async def _extract_png(element: Any) -> bytes:
    return await element.screenshot(omit_background=True, type="png")

_EXTRACTORS: Dict[DiagramFormat, Callable[[Any], Awaitable[bytes]]] = {
    DiagramFormat.SVG: _extract_svg,
    DiagramFormat.PNG: _extract_png,
}


class LocalRenderer:
    """Renders with mermaid.js inside a page of the shared browser session."""

    name = "local"

    def __init__(self, session: BrowserSession, settings: Settings) -> None:
        self.session = session
        self.settings = settings

    async def render(self, request: DiagramRequest) -> RenderResult:
        t0 = time.time()
        try:
            data = await self._render_in_page(request)
        except Exception as e:
            log.warning("local.render.failed", extra={
                "format": request.format.value,
                "error": preview(str(e), 400),
                "took_ms": int((time.time() - t0) * 1000),
            })
            if request.format is DiagramFormat.SVG:
                svg = error_svg(str(e), request.width, request.height)
                return RenderResult(
                    data=svg.encode("utf-8"),
                    content_type=DiagramFormat.SVG.content_type,
                    format=DiagramFormat.SVG,
                    backend=self.name,
                )
            # no rasterized error image: png callers get the failure
            raise RenderFailure(f"Local render failed: {e}", data={"format": request.format.value}) from e

        log.info("local.render.done", extra={
            "format": request.format.value,
            "bytes": len(data),
            "took_ms": int((time.time() - t0) * 1000),
        })
        return RenderResult(
            data=data,
            content_type=request.format.content_type,
            format=request.format,
            backend=self.name,
        )

    async def _render_in_page(self, request: DiagramRequest) -> bytes:
        async with self.session.open_page(request.width, request.height) as page:
            document = build_document(request.source_text, request.width, self.settings.mermaid_js_url)
            await page.set_content(document)
            element = await page.wait_for_selector(SVG_SELECTOR, timeout=self.settings.render_timeout_ms)
            if element is None:
                raise RenderFailure("Mermaid render failed: SVG element not found")
            return await _EXTRACTORS[request.format](element)
