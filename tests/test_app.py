import base64

import httpx
import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mcp_mermaid_render.engine import codec
from mcp_mermaid_render.runtime import RenderRuntime
from mcp_mermaid_render.transports.app import create_app

from .conftest import PNG_MAGIC


def _client(runtime):
    transport = httpx.ASGITransport(app=create_app(runtime))
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


def _runtime(settings, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RenderRuntime.from_settings(settings, client=client)


@pytest.mark.asyncio
async def test_health(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["backend"] == "remote"
    assert body["supportedFormats"] == ["png", "svg"]
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_root_lists_endpoints(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["endpoints"]["render"] == "POST /render"


@pytest.mark.asyncio
async def test_render_svg_inline(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/render", json={"mermaidCode": "graph TD; A-->B;", "format": "svg"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("image/svg+xml")
    assert r.headers["content-disposition"] == 'inline; filename="diagram.svg"'
    assert r.text.startswith("<svg")


@pytest.mark.asyncio
async def test_render_png_defaults(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(PNG_MAGIC)


@pytest.mark.asyncio
async def test_render_image_is_attachment(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/render/image", json={"code": "graph TD; A-->B;", "format": "png"})
    assert r.status_code == 200
    assert r.headers["content-disposition"] == 'attachment; filename="mermaid.png"'


@pytest.mark.asyncio
async def test_render_base64(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/render/base64", json={"code": "graph TD; A-->B;", "format": "svg", "width": 640})
    assert r.status_code == 200
    body = r.json()
    assert body["format"] == "svg-base64"
    assert (body["width"], body["height"]) == (640, 800)
    prefix = "data:image/svg+xml;base64,"
    assert body["data"].startswith(prefix)
    assert base64.b64decode(body["data"][len(prefix):]).startswith(b"<svg")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"format": "png"},
    {"code": "   ", "format": "png"},
    {"code": "graph TD; A-->B;", "format": "gif"},
])
async def test_render_rejects_bad_input(remote_runtime, payload):
    async with _client(remote_runtime) as client:
        r = await client.post("/render", json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_render_rejects_invalid_json(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/render", content=b"{not json", headers={"content-type": "application/json"})
        r2 = await client.post("/render", json=["graph TD; A-->B;"])
    assert r.status_code == 400
    assert r2.status_code == 400


@pytest.mark.asyncio
async def test_remote_status_passes_through(settings):
    runtime = _runtime(settings, lambda req: httpx.Response(503, text="busy"))
    async with _client(runtime) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;", "format": "svg"})
    assert r.status_code == 503
    body = r.json()
    assert body["error"] == "remote_render_error"
    assert body["status"] == 503
    assert body["backend"] == "remote"


@pytest.mark.asyncio
async def test_remote_timeout_is_gateway_timeout(settings):
    def _slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with _client(_runtime(settings, _slow)) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;"})
    assert r.status_code == 504


@pytest.mark.asyncio
async def test_remote_unreachable_is_bad_gateway(settings):
    def _down(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(_runtime(settings, _down)) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;"})
    assert r.status_code == 502
    assert r.json()["error"] == "network_error"


@pytest.mark.asyncio
async def test_encode_and_decode(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/encode", json={"mermaidCode": "graph TD; A-->B;"})
        assert r.status_code == 200
        encoded = r.json()["encoded"]
        assert encoded == codec.encode_mermaid("graph TD; A-->B;")
        assert r.json()["urls"]["svg"] == f"https://mermaid.ink/svg/{encoded}"

        r = await client.post("/decode", json={"encodedString": encoded})
    assert r.status_code == 200
    assert r.json() == {"mermaidCode": "graph TD; A-->B;"}


@pytest.mark.asyncio
async def test_decode_garbage_is_bad_request(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.post("/decode", json={"encodedString": "pako:abc$%^"})
        r2 = await client.post("/encode", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "decode_error"
    assert r.json()["stage"] == "base64"
    assert r2.status_code == 400


@pytest.mark.asyncio
async def test_unknown_path_is_json_404(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.get("/nope")
    assert r.status_code == 404
    assert r.json() == {"error": "Not found", "path": "/nope"}


@pytest.mark.asyncio
async def test_cors_preflight(remote_runtime):
    async with _client(remote_runtime) as client:
        r = await client.options("/render", headers={
            "Origin": "http://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        })
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_local_svg_failure_returns_error_image(local_runtime, fake_browser):
    fake_browser.fail_with = PlaywrightTimeoutError("Timeout 5000ms exceeded")
    async with _client(local_runtime) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;", "format": "svg"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("image/svg+xml")
    assert "Render error" in r.text


@pytest.mark.asyncio
async def test_local_png_failure_is_server_error(local_runtime, fake_browser):
    fake_browser.fail_with = PlaywrightTimeoutError("Timeout 5000ms exceeded")
    async with _client(local_runtime) as client:
        r = await client.post("/render", json={"code": "graph TD; A-->B;", "format": "png"})
    assert r.status_code == 500
    assert r.json()["error"] == "render_failure"
