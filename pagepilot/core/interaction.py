from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pagepilot.core.config import EngineConfig, RetryPolicy
from pagepilot.core.errors import (
    ElementNotFound,
    EngineError,
    FocusRequiredError,
    InteractionError,
    InteractionTimeout,
    StaleElementError,
)
from pagepilot.core.navigation import NavigationController
from pagepilot.core.page import Page
from pagepilot.core.protocol import (
    CAP_EVALUATE_ON,
    CAP_PRESS_KEY,
    Command,
    CommandTimeout,
    NodeDetachedError,
    ProtocolError,
    ScriptExecutionError,
    TargetClosedError,
)

logger = logging.getLogger("pagepilot.interaction")

SUBMIT_FORM_SCRIPT = """
(el) => {
    const form = el.form || el.closest('form');
    if (!form) throw new Error('element is not inside a form');
    if (typeof form.requestSubmit === 'function') form.requestSubmit();
    else form.submit();
    return true;
}
"""


@dataclass(frozen=True)
class ElementHandle:
    page: Page
    node_id: str
    selector: str
    epoch: int

    @property
    def is_stale(self) -> bool:
        return self.epoch != self.page.epoch


class InteractionEngine:
    def __init__(self, navigation: NavigationController, config: EngineConfig | None = None) -> None:
        self._navigation = navigation
        self._config = config or EngineConfig()

    def _command_ms(self, timeout_ms: int | None) -> int:
        return self._config.timeouts.command_timeout_ms if timeout_ms is None else timeout_ms

    def _translate(self, page: Page, exc: ProtocolError, what: str) -> EngineError:
        if page.session.closed or isinstance(exc, TargetClosedError):
            return page.closed_error()
        if isinstance(exc, NodeDetachedError):
            return StaleElementError(f"{what}: node is no longer attached to the document")
        if isinstance(exc, CommandTimeout):
            return InteractionTimeout(f"{what}: {exc}")
        return InteractionError(f"{what}: {exc}")

    def _check_fresh(self, handle: ElementHandle, operation: str) -> None:
        if handle.is_stale:
            raise StaleElementError(
                f"{operation}: handle for {handle.selector!r} was resolved before the page last navigated"
            )

    async def find_element(
        self,
        page: Page,
        selector: str,
        retry: RetryPolicy | None = None,
        timeout_ms: int | None = None,
    ) -> ElementHandle:
        policy = retry or self._config.retry
        delays = policy.backoff_schedule()
        command_ms = self._command_ms(timeout_ms)

        async with page.exclusive("find_element"):
            for attempt in range(1, policy.max_attempts + 1):
                page.ensure_ready("find_element")
                try:
                    node_id = await page.call(Command.QUERY_SELECTOR, {"selector": selector}, timeout_ms=command_ms)
                except ProtocolError as exc:
                    raise self._translate(page, exc, f"find_element({selector!r})") from exc
                if node_id:
                    logger.debug("[Interaction] %r resolved on attempt %d", selector, attempt)
                    return ElementHandle(page=page, node_id=str(node_id), selector=selector, epoch=page.epoch)
                if attempt < policy.max_attempts:
                    await asyncio.sleep(delays[attempt - 1] / 1000.0)

        raise ElementNotFound(f"no element matches {selector!r} after {policy.max_attempts} attempts")

    async def click(self, handle: ElementHandle, timeout_ms: int | None = None) -> None:
        await self._focus_action(handle, Command.CLICK, "click", timeout_ms)

    async def focus(self, handle: ElementHandle, timeout_ms: int | None = None) -> None:
        await self._focus_action(handle, Command.FOCUS, "focus", timeout_ms)

    async def _focus_action(self, handle: ElementHandle, command: Command, operation: str, timeout_ms: int | None) -> None:
        page = handle.page
        async with page.exclusive(operation):
            self._check_fresh(handle, operation)
            command_ms = self._command_ms(timeout_ms)
            try:
                await page.call(command, {"node_id": handle.node_id, "timeout_ms": command_ms}, timeout_ms=command_ms)
            except ProtocolError as exc:
                raise self._translate(page, exc, f"{operation}({handle.selector!r})") from exc
            page.mark_focused(handle.node_id, handle.epoch)

    async def type(self, handle: ElementHandle, text: str, timeout_ms: int | None = None) -> None:
        page = handle.page
        async with page.exclusive("type"):
            self._check_fresh(handle, "type")
            if not page.has_focus(handle.node_id, handle.epoch):
                raise FocusRequiredError(
                    f"type({handle.selector!r}) requires a click or focus on the same element first"
                )
            command_ms = self._command_ms(timeout_ms)
            try:
                await page.call(
                    Command.TYPE_TEXT,
                    {"node_id": handle.node_id, "text": text, "timeout_ms": command_ms},
                    timeout_ms=command_ms,
                )
            except ProtocolError as exc:
                raise self._translate(page, exc, f"type({handle.selector!r})") from exc

    def submit_backend(self, page: Page) -> str:
        """Pick how a form is submitted on this page's browser."""
        capabilities = page.session.remote.capabilities
        if CAP_PRESS_KEY in capabilities and self._config.prefer_native_submit:
            return CAP_PRESS_KEY
        if CAP_EVALUATE_ON in capabilities:
            return CAP_EVALUATE_ON
        if CAP_PRESS_KEY in capabilities:
            return CAP_PRESS_KEY
        raise InteractionError("remote browser supports neither key dispatch nor element scripts for form submission")

    async def submit_form(self, handle: ElementHandle, timeout_ms: int | None = None) -> Page:
        """Submit the form owning ``handle`` and wait for the resulting navigation."""
        page = handle.page
        async with page.exclusive("submit_form"):
            self._check_fresh(handle, "submit_form")
            backend = self.submit_backend(page)
            logger.debug("[Interaction] Submitting form of %r via %s", handle.selector, backend)

            async def trigger(remaining_ms: float) -> Any:
                try:
                    if backend == CAP_PRESS_KEY:
                        return await page.call(
                            Command.PRESS_KEY,
                            {"node_id": handle.node_id, "key": "Enter", "timeout_ms": int(remaining_ms)},
                            timeout_ms=remaining_ms,
                        )
                    return await page.call(
                        Command.EVALUATE_ON,
                        {"node_id": handle.node_id, "expression": SUBMIT_FORM_SCRIPT},
                        timeout_ms=remaining_ms,
                    )
                except (NodeDetachedError, ScriptExecutionError) as exc:
                    raise self._translate(page, exc, f"submit_form({handle.selector!r})") from exc

            return await self._navigation.drive_to_ready(page, trigger, timeout_ms=timeout_ms)
