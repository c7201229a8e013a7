from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from pagepilot.core.capture import ArtifactCapture
from pagepilot.core.config import EngineConfig
from pagepilot.core.extraction import ExtractionPipeline
from pagepilot.core.interaction import InteractionEngine
from pagepilot.core.navigation import NavigationController
from pagepilot.core.page import Page
from pagepilot.core.session_manager import RemoteFactory, Session, SessionManager

logger = logging.getLogger("pagepilot")


class BrowserEngine:
    """Composes the orchestration components around one SessionManager.

    Typical use::

        async with engine.session() as session:
            async with engine.page(session, "https://example.com") as page:
                title = await engine.extraction.title(page)
    """

    def __init__(self, config: EngineConfig | None = None, remote_factory: RemoteFactory | None = None) -> None:
        self.config = config or EngineConfig()
        self.navigation = NavigationController(self.config)
        self.sessions = SessionManager(self.config, remote_factory=remote_factory, navigation=self.navigation)
        self.interaction = InteractionEngine(self.navigation, self.config)
        self.extraction = ExtractionPipeline(self.config)
        self.capture = ArtifactCapture(self.config)
        self._default_session: Optional[Session] = None

    async def open(self) -> Session:
        return await self.sessions.open()

    async def close(self) -> None:
        self._default_session = None
        await self.sessions.close_all()

    async def default_session(self) -> Session:
        if self._default_session is None or self._default_session.closed:
            self._default_session = await self.sessions.open()
        return self._default_session

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[Session, None]:
        session = await self.sessions.open()
        try:
            yield session
        finally:
            await self.sessions.close(session)

    @asynccontextmanager
    async def page(
        self,
        session: Session,
        url: str | None = None,
        timeout_ms: int | None = None,
    ) -> AsyncGenerator[Page, None]:
        """Open a page (navigated to ``url`` when given) and release it on exit."""
        page = await self.sessions.new_page(session, url, timeout_ms=timeout_ms)
        try:
            yield page
        finally:
            await self.sessions.release_page(page)
