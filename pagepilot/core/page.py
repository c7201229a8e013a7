from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncGenerator

from pagepilot.core.errors import EngineError, NotReadyError, PageClosedError, SessionClosedError
from pagepilot.core.protocol import Command, CommandTimeout

if TYPE_CHECKING:
    from pagepilot.core.session_manager import Session

logger = logging.getLogger("pagepilot.page")


class PageState(str, Enum):
    CREATED = "created"
    NAVIGATING = "navigating"
    READY = "ready"
    CLOSED = "closed"


class Page:
    """One browsing tab bound to a Session.

    Operations on a page are serialized through ``exclusive()``: the state is
    checked when the call is issued (so a call against a navigating or closed
    page fails before touching the browser) and again once the page lock is
    held.
    """

    def __init__(self, session: "Session", target_id: str) -> None:
        self._session = session
        self.target_id = target_id
        self.url = ""
        self.closed_reason: str | None = None
        self._state = PageState.CREATED
        self._epoch = 0
        self._focused: tuple[str, int] | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Page(target_id={self.target_id!r}, state={self._state.value}, url={self.url!r})"

    @property
    def session(self) -> "Session":
        return self._session

    @property
    def state(self) -> PageState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def is_ready(self) -> bool:
        return self._state is PageState.READY and not self._session.closed

    def closed_error(self) -> EngineError:
        if self._session.closed:
            return SessionClosedError(f"session {self._session.session_id} is closed")
        return PageClosedError(f"page {self.target_id} is closed ({self.closed_reason or 'released'})")

    def ensure_open(self) -> None:
        if self._session.closed or self._state is PageState.CLOSED:
            raise self.closed_error()

    def ensure_ready(self, operation: str) -> None:
        self.ensure_open()
        if self._state is not PageState.READY:
            raise NotReadyError(f"{operation} requires a ready page; page {self.target_id} is {self._state.value}")

    @asynccontextmanager
    async def exclusive(self, operation: str, require_ready: bool = True) -> AsyncGenerator["Page", None]:
        check = self.ensure_ready if require_ready else (lambda _operation: self.ensure_open())
        check(operation)
        async with self._lock:
            check(operation)
            yield self

    def checkpoint(self) -> tuple[PageState, int, tuple[str, int] | None, str]:
        return (self._state, self._epoch, self._focused, self.url)

    def rollback_navigation(self, checkpoint: tuple[PageState, int, tuple[str, int] | None, str], epoch: int) -> bool:
        """Undo ``begin_navigation`` when the browser never started navigating."""
        if self._state is not PageState.NAVIGATING or epoch != self._epoch:
            return False
        self._state, self._epoch, self._focused, self.url = checkpoint
        return True

    def begin_navigation(self, url: str | None = None) -> int:
        self.ensure_open()
        self._state = PageState.NAVIGATING
        self._epoch += 1
        self._focused = None
        if url:
            self.url = url
        return self._epoch

    def mark_ready(self, epoch: int, url: str | None = None) -> bool:
        if self._state is not PageState.NAVIGATING or epoch != self._epoch:
            return False
        self._state = PageState.READY
        if url:
            self.url = url
        return True

    def mark_closed(self, reason: str) -> None:
        if self._state is PageState.CLOSED:
            return
        self._state = PageState.CLOSED
        self.closed_reason = reason
        self._focused = None
        logger.debug("[Page] %s closed: %s", self.target_id, reason)

    def mark_focused(self, node_id: str, epoch: int) -> None:
        self._focused = (node_id, epoch)

    def has_focus(self, node_id: str, epoch: int) -> bool:
        return self._focused == (node_id, epoch)

    async def call(self, method: Command, params: dict[str, Any] | None = None, timeout_ms: float | None = None) -> Any:
        """Issue one command against this page's target."""
        self.ensure_open()
        coro = self._session.remote.call(self.target_id, method, params or {})
        if timeout_ms is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=max(0.0, timeout_ms / 1000.0))
        except TimeoutError as exc:
            raise CommandTimeout(f"{method.value} timed out after {int(timeout_ms)}ms") from exc
