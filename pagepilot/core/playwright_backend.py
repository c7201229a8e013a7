"""Playwright implementation of the remote browser protocol.

Tabs are exposed as opaque target ids and resolved elements as opaque node
ids, so nothing above this module touches Playwright objects. Page events
are forwarded into a bounded queue that the session's EventBus drains.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Callable, Optional
from uuid import uuid4

from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    ElementHandle,
    Frame,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pagepilot.core.config import EngineConfig
from pagepilot.core.protocol import (
    CAP_EVALUATE_ON,
    CAP_PRESS_KEY,
    BrowserEvent,
    Command,
    CommandTimeout,
    EventKind,
    NodeDetachedError,
    ProtocolError,
    ScriptExecutionError,
    TargetClosedError,
)

logger = logging.getLogger("pagepilot.playwright")

_CLOSED_MARKERS = (
    "target closed",
    "has been closed",
    "browser has disconnected",
    "connection closed",
)
_DETACHED_MARKERS = (
    "not attached to the dom",
    "element is detached",
    "jshandle is disposed",
    "execution context was destroyed",
    "node is detached",
)
_NODE_COMMANDS = {Command.CLICK, Command.FOCUS, Command.TYPE_TEXT, Command.PRESS_KEY, Command.EVALUATE_ON}
# Resolved handles kept per target before the oldest is disposed.
_MAX_NODES_PER_TARGET = 256


def classify_error(exc: PlaywrightError, method: Command) -> ProtocolError:
    message = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
    lowered = str(exc).lower()
    if isinstance(exc, PlaywrightTimeoutError):
        return CommandTimeout(message)
    if any(marker in lowered for marker in _CLOSED_MARKERS):
        return TargetClosedError(message)
    if method in _NODE_COMMANDS and any(marker in lowered for marker in _DETACHED_MARKERS):
        return NodeDetachedError(message)
    if method in (Command.EVALUATE, Command.EVALUATE_ON):
        return ScriptExecutionError(message)
    return ProtocolError(message)


class PlaywrightRemoteBrowser:
    capabilities = frozenset({CAP_PRESS_KEY, CAP_EVALUATE_ON})

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._pages: dict[str, Page] = {}
        self._listeners: dict[str, list[tuple[str, Callable[..., None]]]] = {}
        self._nodes: dict[str, tuple[str, ElementHandle]] = {}
        self._node_counter = itertools.count(1)
        self._queue: asyncio.Queue[Optional[BrowserEvent]] = asyncio.Queue(maxsize=self._config.event_queue_size)
        self._dropped_events = 0
        self._stopping = False
        self._closed = False

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    async def start(self) -> None:
        if self._browser:
            return
        try:
            self._playwright = await async_playwright().start()
            if self._config.cdp_url:
                self._browser = await self._playwright.chromium.connect_over_cdp(self._config.cdp_url)
            else:
                self._browser = await self._playwright.chromium.launch(
                    headless=self._config.headless,
                    args=self._config.browser_args(),
                )
            self._browser.on("disconnected", self._on_disconnected)
            self._context = await self._browser.new_context(
                viewport={"width": self._config.window_width, "height": self._config.window_height},
            )
        except PlaywrightError as exc:
            raise ProtocolError(f"browser launch failed: {exc}") from exc
        logger.info("[Playwright] Browser ready (headless=%s)", self._config.headless)

    async def stop(self) -> None:
        if self._closed:
            return
        self._stopping = True
        for target_id in list(self._pages):
            self._detach(target_id)
        self._pages.clear()
        self._nodes.clear()
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        except PlaywrightError as exc:
            logger.warning("[Playwright] Error while closing browser: %s", exc)
        finally:
            self._context = None
            self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            self._closed = True
            self._push(None)

    async def create_target(self) -> str:
        if not self._context:
            raise TargetClosedError("browser context is not running")
        try:
            page = await self._context.new_page()
        except PlaywrightError as exc:
            raise classify_error(exc, Command.NAVIGATE) from exc
        target_id = f"target_{uuid4().hex[:12]}"
        page.set_default_timeout(self._config.timeouts.command_timeout_ms)
        self._pages[target_id] = page
        self._attach(target_id, page)
        return target_id

    async def close_target(self, target_id: str) -> None:
        page = self._pages.pop(target_id, None)
        if page is None:
            return
        self._detach(target_id, page)
        self._forget_nodes(target_id)
        try:
            await page.close()
        except PlaywrightError as exc:
            raise classify_error(exc, Command.NAVIGATE) from exc

    async def events(self) -> AsyncIterator[BrowserEvent]:
        while True:
            if self._closed and self._queue.empty():
                return
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def call(self, target_id: str, method: Command, params: dict[str, Any] | None = None) -> Any:
        command = Command(method)
        page = self._pages.get(target_id)
        if page is None or page.is_closed():
            raise TargetClosedError(f"target {target_id} is closed")
        try:
            return await self._dispatch(target_id, page, command, params or {})
        except PlaywrightError as exc:
            raise classify_error(exc, command) from exc

    async def _dispatch(self, target_id: str, page: Page, command: Command, params: dict[str, Any]) -> Any:
        timeout = params.get("timeout_ms")

        if command == Command.NAVIGATE:
            self._forget_nodes(target_id)
            await page.goto(params["url"], wait_until="commit", timeout=timeout)
            return page.url

        if command == Command.QUERY_SELECTOR:
            handle = await page.query_selector(params["selector"])
            if handle is None:
                return None
            return await self._register_node(target_id, handle)

        if command == Command.EVALUATE:
            return await page.evaluate(params["expression"], params.get("arg"))

        if command == Command.SCREENSHOT:
            return await page.screenshot(
                type=params.get("format", "png"),
                quality=params.get("quality"),
                full_page=bool(params.get("full_page", False)),
                timeout=timeout,
            )

        handle = await self._live_node(target_id, params["node_id"])

        if command == Command.CLICK:
            await handle.click(timeout=timeout)
            return None

        if command == Command.FOCUS:
            await handle.focus()
            return None

        if command == Command.TYPE_TEXT:
            await handle.type(params.get("text", ""), timeout=timeout)
            return None

        if command == Command.PRESS_KEY:
            await handle.press(params.get("key", "Enter"), timeout=timeout)
            return None

        if command == Command.EVALUATE_ON:
            return await handle.evaluate(params["expression"], params.get("arg"))

        raise ProtocolError(f"Unsupported command: {command.value}")

    async def _live_node(self, target_id: str, node_id: str) -> ElementHandle:
        entry = self._nodes.get(node_id)
        if entry is None or entry[0] != target_id:
            raise NodeDetachedError(f"node {node_id} is not known on {target_id}")
        handle = entry[1]
        if not await handle.evaluate("(el) => el.isConnected"):
            await self._dispose_node(node_id)
            raise NodeDetachedError(f"node {node_id} is no longer attached to the document")
        return handle

    async def _register_node(self, target_id: str, handle: ElementHandle) -> str:
        owned = [key for key, (owner, _) in self._nodes.items() if owner == target_id]
        for node_id in owned[: max(0, len(owned) - _MAX_NODES_PER_TARGET + 1)]:
            await self._dispose_node(node_id)
        node_id = f"{target_id}:{next(self._node_counter)}"
        self._nodes[node_id] = (target_id, handle)
        return node_id

    async def _dispose_node(self, node_id: str) -> None:
        entry = self._nodes.pop(node_id, None)
        if entry is None:
            return
        try:
            await entry[1].dispose()
        except PlaywrightError as exc:
            logger.debug("[Playwright] Could not dispose %s: %s", node_id, exc)

    # Handles die with their document, so navigation and close only drop the ids.
    def _forget_nodes(self, target_id: str) -> None:
        for node_id in [key for key, (owner, _) in self._nodes.items() if owner == target_id]:
            self._nodes.pop(node_id, None)

    def _push(self, event: Optional[BrowserEvent]) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._dropped_events += 1
            logger.debug("[Playwright] Event queue full, dropped oldest event")
            self._queue.put_nowait(event)

    def _emit(self, kind: EventKind, target_id: str | None, **payload: Any) -> None:
        if self._closed:
            return
        self._push(BrowserEvent(kind=kind, target_id=target_id, payload=payload))

    def _attach(self, target_id: str, page: Page) -> None:
        def on_load(_page: Page) -> None:
            self._emit(EventKind.LOAD, target_id, url=page.url)

        def on_dom_content_loaded(_page: Page) -> None:
            self._emit(EventKind.DOM_CONTENT_LOADED, target_id, url=page.url)

        def on_frame_navigated(frame: Frame) -> None:
            if frame == page.main_frame:
                self._emit(EventKind.NAVIGATED, target_id, url=frame.url)

        def on_console(message: ConsoleMessage) -> None:
            self._emit(EventKind.CONSOLE, target_id, level=message.type, text=message.text[:240])

        def on_page_error(error: Any) -> None:
            self._emit(EventKind.PAGE_ERROR, target_id, message=str(error)[:240])

        def on_close(_page: Page) -> None:
            self._pages.pop(target_id, None)
            self._emit(EventKind.TARGET_CLOSED, target_id, reason="target closed by browser")

        def on_crash(_page: Page) -> None:
            self._emit(EventKind.TARGET_CLOSED, target_id, reason="target crashed")

        listeners: list[tuple[str, Callable[..., None]]] = [
            ("load", on_load),
            ("domcontentloaded", on_dom_content_loaded),
            ("framenavigated", on_frame_navigated),
            ("console", on_console),
            ("pageerror", on_page_error),
            ("close", on_close),
            ("crash", on_crash),
        ]
        for event_name, handler in listeners:
            page.on(event_name, handler)
        self._listeners[target_id] = listeners

    def _detach(self, target_id: str, page: Page | None = None) -> None:
        page = page or self._pages.get(target_id)
        listeners = self._listeners.pop(target_id, [])
        if page is None:
            return
        for event_name, handler in listeners:
            page.remove_listener(event_name, handler)

    def _on_disconnected(self, _browser: Browser) -> None:
        if self._stopping:
            return
        logger.warning("[Playwright] Browser disconnected")
        self._emit(EventKind.DISCONNECTED, None)
