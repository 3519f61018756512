"""Shared fixtures: a fake mermaid.ink and a fake Playwright browser."""

import asyncio
import html

import httpx
import pytest

from mcp_mermaid_render.engine import codec
from mcp_mermaid_render.engine.local import BrowserSession
from mcp_mermaid_render.runtime import RenderRuntime
from mcp_mermaid_render.settings import Settings

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

CONTAINER_OPEN = '<div id="container" class="mermaid">'


def fake_ink_handler(request: httpx.Request) -> httpx.Response:
    """Answers like mermaid.ink: decodes the token and echoes the source back."""
    kind, token = request.url.path.strip("/").split("/", 1)
    source = codec.decode(token)
    if kind == "svg":
        body = f'<svg xmlns="http://www.w3.org/2000/svg"><text>{html.escape(source)}</text></svg>'
        return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": "text/plain"})
    return httpx.Response(200, content=PNG_MAGIC + source.encode("utf-8"), headers={"content-type": "image/jpeg"})


class FakeElement:
    def __init__(self, page):
        self.page = page

    async def evaluate(self, script):
        self.page.evaluated = script
        return f'<svg xmlns="http://www.w3.org/2000/svg"><g>{self.page.container_text}</g></svg>'

    async def screenshot(self, **kwargs):
        self.page.screenshot_kwargs = kwargs
        return PNG_MAGIC + self.page.container_text.encode("utf-8")


class FakePage:
    def __init__(self, browser, viewport):
        self.browser = browser
        self.viewport = viewport
        self.content = ""
        self.closed = False
        self.waited_for = None
        self.screenshot_kwargs = None
        self.evaluated = None

    @property
    def container_text(self):
        start = self.content.index(CONTAINER_OPEN) + len(CONTAINER_OPEN)
        return self.content[start:self.content.index("</div>", start)]

    async def set_content(self, document):
        self.content = document

    async def wait_for_selector(self, selector, timeout=None):
        self.waited_for = (selector, timeout)
        # let concurrent renders interleave while their pages are open
        await asyncio.sleep(0)
        if self.browser.fail_with is not None:
            raise self.browser.fail_with
        if self.browser.no_element:
            return None
        return FakeElement(self)

    async def close(self):
        self.closed = True
        self.browser.closed += 1


class FakeBrowser:
    def __init__(self):
        self.pages = []
        self.closed = 0
        self.max_open = 0
        self.fail_with = None
        self.no_element = False
        self.shut_down = False

    async def new_page(self, viewport=None):
        page = FakePage(self, viewport)
        self.pages.append(page)
        self.max_open = max(self.max_open, len(self.pages) - self.closed)
        return page

    async def close(self):
        self.shut_down = True


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def local_settings():
    return Settings(render_backend="local", render_timeout_ms=5000)


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def session(fake_browser):
    return BrowserSession(browser=fake_browser)


@pytest.fixture
def ink_client():
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_ink_handler))


@pytest.fixture
def remote_runtime(settings, ink_client):
    return RenderRuntime.from_settings(settings, client=ink_client)


@pytest.fixture
def local_runtime(local_settings, session):
    return RenderRuntime.from_settings(local_settings, session=session)
