from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable
from uuid import uuid4

from pagepilot.core.config import EngineConfig
from pagepilot.core.errors import BrowserConnectionError, PageCreationError, SessionClosedError
from pagepilot.core.event_bus import EventBus
from pagepilot.core.navigation import NavigationController
from pagepilot.core.page import Page
from pagepilot.core.protocol import BrowserEvent, EventKind, ProtocolError, RemoteBrowser

logger = logging.getLogger("pagepilot.session")

RemoteFactory = Callable[[EngineConfig], RemoteBrowser]


def _default_remote_factory(config: EngineConfig) -> RemoteBrowser:
    from pagepilot.core.playwright_backend import PlaywrightRemoteBrowser

    return PlaywrightRemoteBrowser(config)


@dataclass
class Session:
    session_id: str
    remote: RemoteBrowser
    bus: EventBus
    pages: dict[str, Page] = field(default_factory=dict)
    closed: bool = False

    @property
    def page_ids(self) -> list[str]:
        return list(self.pages.keys())

    def ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError(f"session {self.session_id} is closed")


class SessionManager:
    def __init__(
        self,
        config: EngineConfig | None = None,
        remote_factory: RemoteFactory | None = None,
        navigation: NavigationController | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._remote_factory = remote_factory or _default_remote_factory
        self._sessions: dict[str, Session] = {}
        self.navigation = navigation or NavigationController(self._config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    async def open(self) -> Session:
        remote = self._remote_factory(self._config)
        startup_ms = self._config.timeouts.startup_timeout_ms
        try:
            await asyncio.wait_for(remote.start(), timeout=startup_ms / 1000.0)
        except TimeoutError as exc:
            await self._discard_remote(remote)
            raise BrowserConnectionError(f"remote browser not reachable within {startup_ms}ms") from exc
        except (ProtocolError, OSError) as exc:
            await self._discard_remote(remote)
            raise BrowserConnectionError(f"remote browser failed to start: {exc}") from exc

        session_id = f"sess_{uuid4().hex[:12]}"
        bus = EventBus(remote, history_size=self._config.event_history_size, name=session_id)
        session = Session(session_id=session_id, remote=remote, bus=bus)
        bus.add_listener(partial(self._on_event, session))
        bus.start()
        self._sessions[session_id] = session
        logger.info("[Session] Opened %s", session_id)
        return session

    async def _discard_remote(self, remote: RemoteBrowser) -> None:
        try:
            await asyncio.wait_for(remote.stop(), timeout=self._config.timeouts.shutdown_timeout_ms / 1000.0)
        except (TimeoutError, ProtocolError, OSError) as exc:
            logger.warning("[Session] Failed to stop unreachable remote: %s", exc)

    def _on_event(self, session: Session, event: BrowserEvent) -> None:
        if event.kind == EventKind.TARGET_CLOSED:
            page = session.pages.get(event.target_id or "")
            if page is not None:
                page.mark_closed(event.payload.get("reason", "target closed by browser"))
                session.bus.fail_target(page.target_id, page.closed_error())
            return
        if event.kind == EventKind.DISCONNECTED:
            logger.warning("[Session] Remote browser disconnected from %s", session.session_id)
            session.closed = True
            for page in session.pages.values():
                page.mark_closed("browser disconnected")
            session.bus.fail_target(None, SessionClosedError(f"session {session.session_id} lost its browser"))

    def get_session(self, session_id: str) -> Session:
        if session_id not in self._sessions:
            raise KeyError(f"Unknown session: {session_id}")
        return self._sessions[session_id]

    def active_session_count(self) -> int:
        return len(self._sessions)

    async def new_page(self, session: Session, url: str | None = None, timeout_ms: int | None = None) -> Page:
        session.ensure_open()
        if len(session.pages) >= self._config.max_pages_per_session:
            raise PageCreationError(
                f"session {session.session_id} already has {len(session.pages)} pages "
                f"(limit {self._config.max_pages_per_session})",
            )

        command_ms = self._config.timeouts.command_timeout_ms
        try:
            target_id = await asyncio.wait_for(session.remote.create_target(), timeout=command_ms / 1000.0)
        except TimeoutError as exc:
            raise PageCreationError(f"browser did not create a tab within {command_ms}ms") from exc
        except ProtocolError as exc:
            session.ensure_open()
            raise PageCreationError(f"browser refused to create a tab: {exc}") from exc

        page = Page(session, target_id)
        session.pages[target_id] = page
        logger.debug("[Session] Created page %s in %s", target_id, session.session_id)

        if url:
            try:
                await self.navigation.navigate(page, url, timeout_ms=timeout_ms)
            except BaseException:
                await self.release_page(page)
                raise
        return page

    async def release_page(self, page: Page) -> None:
        session = page.session
        if session.pages.get(page.target_id) is not page:
            page.mark_closed("released")
            return
        session.pages.pop(page.target_id, None)
        page.mark_closed("released")
        if session.closed:
            return
        try:
            await asyncio.wait_for(
                session.remote.close_target(page.target_id),
                timeout=self._config.timeouts.command_timeout_ms / 1000.0,
            )
        except (TimeoutError, ProtocolError) as exc:
            logger.warning("[Session] Failed to close target %s: %s", page.target_id, exc)

    async def close(self, session: Session) -> None:
        if self._sessions.pop(session.session_id, None) is None:
            return
        session.closed = True
        for page in list(session.pages.values()):
            page.mark_closed("session closed")
        session.pages.clear()

        await session.bus.stop()
        try:
            await asyncio.wait_for(
                session.remote.stop(),
                timeout=self._config.timeouts.shutdown_timeout_ms / 1000.0,
            )
        except (TimeoutError, ProtocolError, OSError) as exc:
            logger.warning("[Session] Remote shutdown for %s did not complete cleanly: %s", session.session_id, exc)
        logger.info("[Session] Closed %s", session.session_id)

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await self.close(session)
