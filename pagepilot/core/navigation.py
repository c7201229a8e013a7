from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from pagepilot.core.config import EngineConfig
from pagepilot.core.errors import EngineError, NavigationError, NavigationTimeout
from pagepilot.core.page import Page
from pagepilot.core.protocol import READY_EVENT_KINDS, Command, CommandTimeout, ProtocolError, TargetClosedError

logger = logging.getLogger("pagepilot.navigation")

NavigationTrigger = Callable[[float], Awaitable[Any]]


class NavigationController:
    """Drives pages to READY using the protocol's load signal plus a settle bound."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._ready_kind = READY_EVENT_KINDS[self._config.ready_event]

    def settle_delay_ms(self, override: int | None = None) -> int:
        value = self._config.settle_delay_ms if override is None else override
        return max(0, min(int(value), self._config.max_settle_delay_ms))

    async def navigate(
        self,
        page: Page,
        url: str,
        timeout_ms: int | None = None,
        settle_ms: int | None = None,
    ) -> Page:
        if not url:
            raise NavigationError("navigate requires a url")
        async with page.exclusive("navigate", require_ready=False):

            async def trigger(remaining_ms: float) -> Any:
                return await page.call(Command.NAVIGATE, {"url": url, "timeout_ms": int(remaining_ms)}, timeout_ms=remaining_ms)

            return await self.drive_to_ready(page, trigger, url=url, timeout_ms=timeout_ms, settle_ms=settle_ms)

    async def drive_to_ready(
        self,
        page: Page,
        trigger: NavigationTrigger,
        url: str | None = None,
        timeout_ms: int | None = None,
        settle_ms: int | None = None,
    ) -> Page:
        """Reset readiness, run ``trigger`` and wait for the page to settle.

        The caller must hold ``page.lock``. The ready waiter is armed before the
        trigger runs so a fast load cannot be missed. On timeout the page is
        left NAVIGATING. A trigger that raises an ``EngineError`` has rejected
        the action before the browser navigated, so the page is restored.
        """
        budget_ms = self._config.timeouts.navigation_timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + budget_ms / 1000.0
        target = url or page.url or "<in-page navigation>"

        checkpoint = page.checkpoint()
        epoch = page.begin_navigation(url)
        waiter = page.session.bus.expect(self._ready_kind, target_id=page.target_id)
        logger.debug("[Navigation] %s -> %s (epoch %d)", page.target_id, target, epoch)
        try:
            try:
                await trigger(self._remaining_ms(deadline))
            except CommandTimeout as exc:
                raise NavigationTimeout(f"navigation to {target} not committed within {budget_ms}ms") from exc
            except TargetClosedError as exc:
                raise page.closed_error() from exc
            except ProtocolError as exc:
                if page.session.closed:
                    raise page.closed_error() from exc
                raise NavigationError(f"navigation to {target} failed: {exc}") from exc
            except EngineError:
                if page.rollback_navigation(checkpoint, epoch):
                    logger.debug("[Navigation] %s trigger rejected, restored %s", page.target_id, page.state.value)
                raise

            try:
                event = await waiter.wait(self._remaining_ms(deadline))
            except TimeoutError as exc:
                page.ensure_open()
                raise NavigationTimeout(
                    f"no {self._ready_kind.value} signal for {target} within {budget_ms}ms"
                ) from exc
        finally:
            waiter.cancel()

        await asyncio.sleep(self.settle_delay_ms(settle_ms) / 1000.0)
        page.ensure_open()
        if page.mark_ready(epoch, url=event.payload.get("url")):
            logger.info("[Navigation] Page %s ready at %s", page.target_id, page.url)
        return page

    @staticmethod
    def _remaining_ms(deadline: float) -> float:
        return max(0.0, (deadline - time.monotonic()) * 1000.0)
