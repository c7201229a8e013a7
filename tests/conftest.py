"""
Shared fixtures: an in-memory remote browser that speaks the engine protocol.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import pytest

from pagepilot.core import BrowserEngine, EngineConfig, RetryPolicy, TimeoutPolicy
from pagepilot.core.protocol import (
    CAP_EVALUATE_ON,
    CAP_PRESS_KEY,
    BrowserEvent,
    Command,
    EventKind,
    NodeDetachedError,
    ProtocolError,
    ScriptExecutionError,
    TargetClosedError,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@dataclass
class FakeDocument:
    title: str = ""
    elements: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    scripts: dict[str, Any] = field(default_factory=dict)
    form_action: Optional[str] = None
    # selector -> number of queries that miss before the element shows up
    late_elements: dict[str, int] = field(default_factory=dict)


@dataclass
class FakeTarget:
    target_id: str
    url: str = "about:blank"
    document: FakeDocument = field(default_factory=FakeDocument)
    generation: int = 0
    nodes: dict[str, tuple[int, str]] = field(default_factory=dict)
    misses: dict[str, int] = field(default_factory=dict)


class FakeRemoteBrowser:
    def __init__(
        self,
        documents: dict[str, FakeDocument] | None = None,
        capabilities: frozenset[str] = frozenset({CAP_PRESS_KEY, CAP_EVALUATE_ON}),
        load_delay: float = 0.0,
        max_targets: int = 8,
    ) -> None:
        self.documents = documents or {}
        self.capabilities = capabilities
        self.load_delay = load_delay
        self.max_targets = max_targets
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.targets: dict[str, FakeTarget] = {}
        self.closed_targets: list[str] = []
        self.values: dict[str, str] = {}
        self.focus_log: list[str] = []
        self.detached: set[str] = set()
        self.hanging_urls: set[str] = set()
        self.broken_urls: set[str] = set()
        self.fail_screenshot = False
        self.screenshot_bytes = PNG_BYTES
        self.hang_start = False
        self.fail_start = False
        self.started = False
        self.stopped = False
        self._queue: asyncio.Queue[Optional[BrowserEvent]] = asyncio.Queue()
        self._ids = itertools.count(1)

    # lifecycle

    async def start(self) -> None:
        if self.hang_start:
            await asyncio.sleep(3600)
        if self.fail_start:
            raise ProtocolError("connection refused")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True
        self._queue.put_nowait(None)

    async def create_target(self) -> str:
        if len(self.targets) >= self.max_targets:
            raise ProtocolError("resource exhausted: too many targets")
        target_id = f"t{next(self._ids)}"
        self.targets[target_id] = FakeTarget(target_id=target_id)
        return target_id

    async def close_target(self, target_id: str) -> None:
        self.targets.pop(target_id, None)
        self.closed_targets.append(target_id)

    async def events(self) -> AsyncIterator[BrowserEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    # test controls

    def emit(self, kind: EventKind, target_id: str | None = None, **payload: Any) -> None:
        self._queue.put_nowait(BrowserEvent(kind=kind, target_id=target_id, payload=payload))

    def detach_nodes(self, selector: str) -> None:
        for target in self.targets.values():
            for node_id, (_, node_selector) in target.nodes.items():
                if node_selector == selector:
                    self.detached.add(node_id)

    def close_externally(self, target_id: str) -> None:
        self.targets.pop(target_id, None)
        self.emit(EventKind.TARGET_CLOSED, target_id, reason="tab crashed")

    def calls_for(self, target_id: str) -> list[str]:
        return [method for owner, method, _ in self.calls if owner == target_id]

    # protocol

    def _load(self, target: FakeTarget, url: str) -> None:
        target.generation += 1
        target.url = url
        target.nodes.clear()
        target.misses.clear()
        target.document = self.documents.get(url, FakeDocument(title=url))
        if url in self.hanging_urls:
            return
        generation = target.generation
        asyncio.get_running_loop().call_later(self.load_delay, self._finish_load, target, generation, url)

    def _finish_load(self, target: FakeTarget, generation: int, url: str) -> None:
        if target.generation != generation or target.target_id not in self.targets:
            return
        self.emit(EventKind.DOM_CONTENT_LOADED, target.target_id, url=url)
        self.emit(EventKind.LOAD, target.target_id, url=url)

    def _node(self, target: FakeTarget, node_id: str) -> str:
        entry = target.nodes.get(node_id)
        if entry is None or entry[0] != target.generation or node_id in self.detached:
            raise NodeDetachedError(f"node {node_id} is detached")
        return entry[1]

    def _submit(self, target: FakeTarget) -> bool:
        action = target.document.form_action
        if not action:
            raise ScriptExecutionError("Error: element is not inside a form")
        self._load(target, action)
        return True

    async def call(self, target_id: str, method: Command, params: dict[str, Any] | None = None) -> Any:
        params = params or {}
        command = Command(method)
        self.calls.append((target_id, command.value, dict(params)))
        target = self.targets.get(target_id)
        if target is None:
            raise TargetClosedError(f"target {target_id} closed")
        document = target.document

        if command == Command.NAVIGATE:
            if params["url"] in self.broken_urls:
                raise ProtocolError("net::ERR_NAME_NOT_RESOLVED")
            self._load(target, params["url"])
            return params["url"]

        if command == Command.QUERY_SELECTOR:
            selector = params["selector"]
            missed = target.misses.get(selector, 0)
            if missed < document.late_elements.get(selector, 0):
                target.misses[selector] = missed + 1
                return None
            if not document.elements.get(selector):
                return None
            node_id = f"{target_id}:n{next(self._ids)}"
            target.nodes[node_id] = (target.generation, selector)
            return node_id

        if command == Command.EVALUATE:
            arg = params.get("arg")
            expression = params["expression"]
            if isinstance(arg, dict) and "selector" in arg:
                elements = document.elements.get(arg["selector"], [])
                if "attribute" in arg:
                    return [element.get(arg["attribute"], "") for element in elements]
                return [element.get("text", "") for element in elements]
            if expression in document.scripts:
                value = document.scripts[expression]
                if isinstance(value, Exception):
                    raise ScriptExecutionError(str(value))
                return value
            if expression == "document.title":
                return document.title
            raise ScriptExecutionError(f"ReferenceError: cannot evaluate {expression!r}")

        if command == Command.SCREENSHOT:
            if self.fail_screenshot:
                raise ProtocolError("Unable to capture screenshot")
            return self.screenshot_bytes

        node_id = params["node_id"]
        self._node(target, node_id)

        if command in (Command.CLICK, Command.FOCUS):
            self.focus_log.append(node_id)
            return None

        if command == Command.TYPE_TEXT:
            self.values[node_id] = self.values.get(node_id, "") + params["text"]
            return None

        if command == Command.PRESS_KEY:
            if params.get("key") == "Enter":
                return self._submit(target)
            return None

        if command == Command.EVALUATE_ON:
            if "requestSubmit" in params["expression"]:
                return self._submit(target)
            return None

        raise ProtocolError(f"unsupported command {command.value}")


FAST_CONFIG = EngineConfig(
    settle_delay_ms=0,
    retry=RetryPolicy(max_attempts=3, initial_backoff_ms=10, max_backoff_ms=10),
    timeouts=TimeoutPolicy(
        startup_timeout_ms=200,
        navigation_timeout_ms=300,
        command_timeout_ms=300,
        capture_timeout_ms=300,
        shutdown_timeout_ms=200,
    ),
)

WIKI_HOME = "https://en.wikipedia.org"
WIKI_ARTICLE = "https://en.wikipedia.org/wiki/Rust_(programming_language)"
BOOKS_PAGE = "https://books.toscrape.com/catalogue/category/books/science_22/index.html"
BOOK_TITLES = [f"Science Book {index:02d}" for index in range(1, 17)]


def site_documents() -> dict[str, FakeDocument]:
    return {
        "https://example.test/": FakeDocument(
            title="Example",
            elements={
                "#go": [{"text": "Go"}],
                "input[name='q']": [{}],
                "li.item": [{"text": "one"}, {"text": "two"}, {"text": "three"}],
            },
            form_action="https://example.test/results",
        ),
        "https://example.test/other": FakeDocument(
            title="Other",
            elements={"#go": [{"text": "Go again"}]},
        ),
        "https://example.test/results": FakeDocument(title="Results"),
        WIKI_HOME: FakeDocument(
            title="Wikipedia, the free encyclopedia",
            elements={"#p-search > a": [{}], "input[name='search']": [{"name": "search"}]},
            form_action=WIKI_ARTICLE,
        ),
        WIKI_ARTICLE: FakeDocument(title="Rust (programming language) - Wikipedia"),
        BOOKS_PAGE: FakeDocument(
            title="Science | Books to Scrape",
            elements={".product_pod h3 a": [{"title": title, "text": title[:10]} for title in BOOK_TITLES]},
        ),
    }


@pytest.fixture
def remote() -> FakeRemoteBrowser:
    return FakeRemoteBrowser(documents=site_documents())


@pytest.fixture
def engine(remote: FakeRemoteBrowser) -> BrowserEngine:
    return BrowserEngine(FAST_CONFIG, remote_factory=lambda _config: remote)
