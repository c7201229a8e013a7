from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Protocol, runtime_checkable


class EventKind(str, Enum):
    NAVIGATED = "navigated"
    DOM_CONTENT_LOADED = "dom_content_loaded"
    LOAD = "load"
    CONSOLE = "console"
    PAGE_ERROR = "page_error"
    TARGET_CLOSED = "target_closed"
    DISCONNECTED = "disconnected"


READY_EVENT_KINDS = {
    "load": EventKind.LOAD,
    "domcontentloaded": EventKind.DOM_CONTENT_LOADED,
}


class Command(str, Enum):
    NAVIGATE = "navigate"
    QUERY_SELECTOR = "query_selector"
    CLICK = "click"
    FOCUS = "focus"
    TYPE_TEXT = "type_text"
    PRESS_KEY = "press_key"
    EVALUATE = "evaluate"
    EVALUATE_ON = "evaluate_on"
    SCREENSHOT = "screenshot"


# Optional commands a backend may advertise through ``capabilities``.
CAP_PRESS_KEY = "press_key"
CAP_EVALUATE_ON = "evaluate_on"


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class BrowserEvent:
    kind: EventKind
    target_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=_utc_now)
    seq: int = 0


class ProtocolError(Exception):
    """Untyped failure reported by the remote browser."""


class CommandTimeout(ProtocolError):
    pass


class TargetClosedError(ProtocolError):
    pass


class NodeDetachedError(ProtocolError):
    pass


class ScriptExecutionError(ProtocolError):
    pass


@runtime_checkable
class RemoteBrowser(Protocol):
    """What the engine needs from a remote browser client.

    ``call`` issues one command against a target and returns its response.
    ``events`` yields browser-originated events until the connection stops.
    """

    capabilities: frozenset[str]

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def create_target(self) -> str: ...

    async def close_target(self, target_id: str) -> None: ...

    async def call(self, target_id: str, method: Command, params: dict[str, Any] | None = None) -> Any: ...

    def events(self) -> AsyncIterator[BrowserEvent]: ...
