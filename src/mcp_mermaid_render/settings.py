from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from . import __version__

DEFAULT_MERMAID_JS_URL = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js"

def _truthy(v: str | None) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "y", "on"}

def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default

def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default

@dataclass
class Settings:
    # "remote" (mermaid.ink) or "local" (headless browser); never both
    render_backend: str = "remote"

    # Remote backend
    mermaid_ink_base_url: str = "https://mermaid.ink"
    request_timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 10.0
    user_agent: str = f"mermaid-render-mcp/{__version__}"

    # Local backend
    mermaid_js_url: str = DEFAULT_MERMAID_JS_URL
    render_timeout_ms: int = 30000
    browser_headless: bool = True

    # Request defaults
    default_width: int = 1200
    default_height: int = 800

    # HTTP shell
    http_host: str = "0.0.0.0"
    http_port: int = 3000
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_local(self) -> bool:
        return self.render_backend == "local"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = os.getenv("RENDER_BACKEND", "remote").strip().lower() or "remote"
        base_url = os.getenv("MERMAID_INK_BASE_URL", "https://mermaid.ink").strip().rstrip("/")
        origins_raw = (os.getenv("CORS_ALLOW_ORIGINS") or "*").strip()
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]
        return cls(
            render_backend=backend,
            mermaid_ink_base_url=base_url or "https://mermaid.ink",
            request_timeout_seconds=_float_env("REQUEST_TIMEOUT", 30.0),
            probe_timeout_seconds=_float_env("PROBE_TIMEOUT", 10.0),
            user_agent=(os.getenv("USER_AGENT") or "").strip() or f"mermaid-render-mcp/{__version__}",
            mermaid_js_url=(os.getenv("MERMAID_JS_URL") or "").strip() or DEFAULT_MERMAID_JS_URL,
            render_timeout_ms=_int_env("RENDER_TIMEOUT_MS", 30000),
            browser_headless=_truthy(os.getenv("BROWSER_HEADLESS", "true")),
            default_width=_int_env("DEFAULT_WIDTH", 1200),
            default_height=_int_env("DEFAULT_HEIGHT", 800),
            http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
            http_port=_int_env("HTTP_PORT", 3000),
            cors_allow_origins=origins or ["*"],
        )
