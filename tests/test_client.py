import logging

import httpx
import pytest

from mcp_mermaid_render.client import SAMPLE_DIAGRAMS, RenderClient
from mcp_mermaid_render.transports.app import create_app

from .conftest import PNG_MAGIC


def _render_client(runtime, tmp_path):
    transport = httpx.ASGITransport(app=create_app(runtime))
    return RenderClient(
        base_url="http://testserver",
        output_dir=tmp_path / "output",
        client=httpx.AsyncClient(transport=transport),
    )


@pytest.mark.asyncio
async def test_run_suite_writes_every_sample(remote_runtime, tmp_path):
    client = _render_client(remote_runtime, tmp_path)
    try:
        report = await client.run_suite()
    finally:
        await client.close()

    assert report.ok
    assert report.total == len(SAMPLE_DIAGRAMS) * 2
    assert not report.failures
    flowchart_png = tmp_path / "output" / "flowchart.png"
    assert flowchart_png.read_bytes().startswith(PNG_MAGIC)
    gantt_svg = (tmp_path / "output" / "gantt-chart.svg").read_text(encoding="utf-8")
    assert "项目开发时间线" in gantt_svg


@pytest.mark.asyncio
async def test_run_suite_records_failures(settings, tmp_path):
    from mcp_mermaid_render.runtime import RenderRuntime

    def _handler(request):
        if "/svg/" in request.url.path:
            return httpx.Response(400, text="bad")
        return httpx.Response(200, content=PNG_MAGIC)

    runtime = RenderRuntime.from_settings(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(_handler)))
    client = _render_client(runtime, tmp_path)
    try:
        report = await client.run_suite({"tiny": "graph TD; A-->B;"})
    finally:
        await client.close()

    assert report.total == 2
    assert report.passed == 1
    assert list(report.failures) == ["tiny.svg"]
    assert not report.ok


@pytest.mark.asyncio
async def test_suite_logs_at_info(settings, tmp_path, caplog):
    from mcp_mermaid_render.runtime import RenderRuntime

    caplog.set_level(logging.INFO)

    def _handler(request):
        if "/svg/" in request.url.path:
            return httpx.Response(500, text="down")
        return httpx.Response(200, content=PNG_MAGIC)

    runtime = RenderRuntime.from_settings(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(_handler)))
    client = _render_client(runtime, tmp_path)
    try:
        report = await client.run_suite({"flow": "graph TD; A-->B;"})
    finally:
        await client.close()

    assert report.passed == 1
    assert (tmp_path / "output" / "flow.png").read_bytes() == PNG_MAGIC
    failed = [r for r in caplog.records if r.getMessage() == "client.render.failed"]
    assert [(r.diagram, r.format) for r in failed] == [("flow", "svg")]


@pytest.mark.asyncio
async def test_render_to_file_at_info(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    client = RenderClient(
        output_dir=tmp_path,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<svg/>"))),
    )
    try:
        path = await client.render_to_file("graph TD; A-->B;", "flow", "svg")
    finally:
        await client.close()
    assert path.read_text() == "<svg/>"
    assert any(getattr(r, "diagram", None) == "flow" for r in caplog.records)


@pytest.mark.asyncio
async def test_unreachable_server(tmp_path):
    def _down(request):
        raise httpx.ConnectError("refused", request=request)

    client = RenderClient(
        base_url="http://localhost:1",
        output_dir=tmp_path,
        client=httpx.AsyncClient(transport=httpx.MockTransport(_down)),
    )
    report = await client.run_suite()
    await client.close()

    assert report.total == 0
    assert not report.ok


@pytest.mark.asyncio
async def test_render_base64(remote_runtime, tmp_path):
    client = _render_client(remote_runtime, tmp_path)
    try:
        data = await client.render_base64("graph TD; A-->B;", "svg", width=400)
    finally:
        await client.close()
    assert data.startswith(b"<svg")
