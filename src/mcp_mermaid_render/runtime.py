from __future__ import annotations

import logging
from typing import Optional

import httpx

from .engine.dispatcher import RenderDispatcher, create_backend
from .engine.local import BrowserSession, LocalRenderer
from .engine.remote import RemoteRenderer
from .settings import Settings

log = logging.getLogger("mcp.mermaid.render.runtime")

class RenderRuntime:
    """
    Process-wide handles: settings, the dispatcher and whatever its backend
    needs (browser session or HTTP client). Shells get it by reference.
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: RenderDispatcher,
        session: Optional[BrowserSession] = None,
    ) -> None:
        self.settings = settings
        self.dispatcher = dispatcher
        self.session = session
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session: Optional[BrowserSession] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "RenderRuntime":
        backend = create_backend(settings, session=session, client=client)
        session = backend.session if isinstance(backend, LocalRenderer) else None
        return cls(settings, RenderDispatcher(backend, settings), session=session)

    @property
    def backend_name(self) -> str:
        return self.dispatcher.backend.name

    @property
    def remote(self) -> Optional[RemoteRenderer]:
        backend = self.dispatcher.backend
        return backend if isinstance(backend, RemoteRenderer) else None

    async def start(self) -> None:
        if self._started:
            return
        if self.session is not None:
            await self.session.start()
        self._started = True
        log.info("runtime.started", extra={"backend": self.backend_name})

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
        remote = self.remote
        if remote is not None:
            await remote.aclose()
        self._started = False
        log.info("runtime.closed", extra={"backend": self.backend_name})
