#!/usr/bin/env python3
"""HTTP test harness: renders sample diagrams through a running server and saves them."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .settings import _float_env
from .utils.logging import setup_logging

log = logging.getLogger("mcp.mermaid.render.client")

SAMPLE_DIAGRAMS: Dict[str, str] = {
    "flowchart": """graph TD
    A[用户访问] --> B{是否登录?}
    B -->|是| C[显示首页]
    B -->|否| D[跳转登录页]
    D --> E[用户登录]
    E --> F{验证成功?}
    F -->|是| C
    F -->|否| G[显示错误信息]
    G --> D
    C --> H[用户操作]
    H --> I[处理请求]
    I --> J[返回结果]""",
    "sequence-diagram": """sequenceDiagram
    participant 客户端
    participant 服务器
    participant 数据库
    participant 缓存

    客户端->>服务器: 发送请求
    服务器->>缓存: 检查缓存
    alt 缓存命中
        缓存-->>服务器: 返回数据
    else 缓存未命中
        服务器->>数据库: 查询数据
        数据库-->>服务器: 返回结果
        服务器->>缓存: 更新缓存
    end
    服务器-->>客户端: 返回响应""",
    "class-diagram": """classDiagram
    class 用户 {
        -String 用户名
        -String 邮箱
        +登录() boolean
        +注册() boolean
    }
    class 管理员 {
        -String 权限级别
        +管理用户() void
    }
    class 订单 {
        -String 订单ID
        -Double 总金额
        +创建订单() void
    }
    用户 <|-- 管理员
    用户 "1" --> "*" 订单 : 创建""",
    "pie-chart": """pie title 网站访问来源统计
    "搜索引擎" : 42.5
    "直接访问" : 28.7
    "社交媒体" : 15.3
    "推荐链接" : 8.9
    "广告投放" : 4.6""",
    "gantt-chart": """gantt
    title 项目开发时间线
    dateFormat  YYYY-MM-DD
    section 需求分析
    需求收集           :a1, 2024-01-01, 10d
    需求分析           :after a1, 7d
    section 开发阶段
    后端开发           :2024-02-01, 20d
    前端开发           :2024-02-05, 18d
    section 测试阶段
    单元测试           :2024-02-21, 5d
    集成测试           :2024-02-26, 7d""",
}

@dataclass
class SuiteReport:
    passed: int = 0
    total: int = 0
    files: List[Path] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.total > 0 and self.passed == self.total


class RenderClient:
    """Talks to the REST endpoints of a running render server."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        output_dir: str | Path = "./output",
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.client = client or httpx.AsyncClient()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def ensure_output_dir(self) -> None:
        if not self.output_dir.exists():
            self.output_dir.mkdir(parents=True, exist_ok=True)
            log.info("client.output_dir.created", extra={"path": str(self.output_dir)})

    async def health(self) -> Dict[str, Any]:
        """Check server health."""
        response = await self.client.get(f"{self.base_url}/health", timeout=self.health_timeout)
        response.raise_for_status()
        return response.json()

    async def render_to_file(self, mermaid_code: str, name: str, format: str = "png") -> Path:
        """Stream POST /render into <output_dir>/<name>.<format>."""
        self.ensure_output_dir()
        path = self.output_dir / f"{name}.{format.lower()}"
        log.info("client.render", extra={"diagram": name, "format": format, "url": f"{self.base_url}/render"})
        async with self.client.stream(
            "POST",
            f"{self.base_url}/render",
            json={"mermaidCode": mermaid_code, "format": format},
            timeout=self.timeout,
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()
            with open(path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
        log.info("client.saved", extra={"path": str(path)})
        return path

    async def render_base64(self, mermaid_code: str, format: str = "png", **size: int) -> bytes:
        """POST /render/base64 and return the decoded image bytes."""
        response = await self.client.post(
            f"{self.base_url}/render/base64",
            json={"code": mermaid_code, "format": format, **size},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data_url = response.json()["data"]
        return base64.b64decode(data_url.split(",", 1)[1])

    async def run_suite(
        self,
        samples: Optional[Dict[str, str]] = None,
        formats: Iterable[str] = ("png", "svg"),
    ) -> SuiteReport:
        samples = samples if samples is not None else SAMPLE_DIAGRAMS
        report = SuiteReport()

        try:
            await self.health()
        except httpx.HTTPError as e:
            log.error("client.unreachable", extra={"base_url": self.base_url, "error": str(e)})
            return report

        jobs = [(name, code, fmt) for name, code in samples.items() for fmt in formats]
        report.total = len(jobs)
        results = await asyncio.gather(
            *(self.render_to_file(code, name, fmt) for name, code, fmt in jobs),
            return_exceptions=True,
        )
        for (name, _code, fmt), res in zip(jobs, results):
            if isinstance(res, BaseException):
                report.failures[f"{name}.{fmt}"] = str(res)
                log.error("client.render.failed", extra={"diagram": name, "format": fmt, "error": str(res)})
            else:
                report.passed += 1
                report.files.append(res)

        log.info("client.suite.done", extra={"passed": report.passed, "total": report.total})
        return report


async def _main() -> int:
    client = RenderClient(
        base_url=os.getenv("TEST_SERVER_URL", "http://localhost:3000"),
        output_dir=os.getenv("OUTPUT_DIR", "./output"),
        timeout=_float_env("REQUEST_TIMEOUT", 30.0),
        health_timeout=_float_env("HEALTH_CHECK_TIMEOUT", 5.0),
    )
    try:
        report = await client.run_suite()
    finally:
        await client.close()
    for path in report.files:
        print(f"   - {path}")
    print(f"Test Results: {report.passed}/{report.total} renders passed")
    return 0 if report.ok else 1

def main() -> None:
    setup_logging()
    sys.exit(asyncio.run(_main()))

if __name__ == "__main__":
    main()
