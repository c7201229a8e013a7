from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pagepilot.core import playwright_backend
from pagepilot.core.config import EngineConfig
from pagepilot.core.playwright_backend import PlaywrightRemoteBrowser, classify_error
from pagepilot.core.protocol import (
    CAP_EVALUATE_ON,
    CAP_PRESS_KEY,
    BrowserEvent,
    Command,
    CommandTimeout,
    EventKind,
    NodeDetachedError,
    ProtocolError,
    RemoteBrowser,
    ScriptExecutionError,
    TargetClosedError,
)


@pytest.mark.parametrize(
    "exc, method, expected",
    [
        (PlaywrightTimeoutError("Timeout 30000ms exceeded."), Command.NAVIGATE, CommandTimeout),
        (PlaywrightError("Target page, context or browser has been closed"), Command.CLICK, TargetClosedError),
        (PlaywrightError("Element is not attached to the DOM"), Command.CLICK, NodeDetachedError),
        (PlaywrightError("Execution context was destroyed, most likely because of a navigation"), Command.EVALUATE_ON, NodeDetachedError),
        (PlaywrightError("ReferenceError: foo is not defined"), Command.EVALUATE, ScriptExecutionError),
        (PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://down.test/"), Command.NAVIGATE, ProtocolError),
    ],
)
def test_classify_error(exc, method, expected) -> None:
    classified = classify_error(exc, method)

    assert type(classified) is expected
    assert "\n" not in str(classified)


def test_detached_marker_ignored_for_page_commands() -> None:
    classified = classify_error(PlaywrightError("Execution context was destroyed"), Command.EVALUATE)
    assert type(classified) is ScriptExecutionError


def test_backend_satisfies_remote_protocol() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig())

    assert isinstance(backend, RemoteBrowser)
    assert backend.capabilities == {CAP_PRESS_KEY, CAP_EVALUATE_ON}


@pytest.mark.asyncio
async def test_event_queue_drops_oldest_when_full() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig(event_queue_size=2))

    for index in range(3):
        backend._push(BrowserEvent(kind=EventKind.CONSOLE, target_id="t1", payload={"text": str(index)}))

    assert backend.dropped_events == 1
    assert backend._queue.get_nowait().payload["text"] == "1"
    assert backend._queue.get_nowait().payload["text"] == "2"


@pytest.mark.asyncio
async def test_call_on_unknown_target_is_target_closed() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig())
    with pytest.raises(TargetClosedError):
        await backend.call("target_missing", Command.EVALUATE, {"expression": "1"})


@pytest.mark.asyncio
async def test_create_target_before_start_fails() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig())
    with pytest.raises(TargetClosedError):
        await backend.create_target()


def _handle() -> MagicMock:
    handle = MagicMock()
    handle.dispose = AsyncMock()
    return handle


@pytest.mark.asyncio
async def test_resolved_nodes_are_capped_per_target(monkeypatch) -> None:
    monkeypatch.setattr(playwright_backend, "_MAX_NODES_PER_TARGET", 2)
    backend = PlaywrightRemoteBrowser(EngineConfig())
    handles = [_handle() for _ in range(3)]
    other = _handle()

    first = await backend._register_node("t1", handles[0])
    await backend._register_node("t2", other)
    second = await backend._register_node("t1", handles[1])
    third = await backend._register_node("t1", handles[2])

    handles[0].dispose.assert_awaited_once()
    handles[1].dispose.assert_not_awaited()
    other.dispose.assert_not_awaited()
    assert first not in backend._nodes
    assert {second, third} <= set(backend._nodes)
    with pytest.raises(NodeDetachedError):
        await backend._live_node("t1", first)


@pytest.mark.asyncio
async def test_detached_node_is_disposed() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig())
    handle = _handle()
    handle.evaluate = AsyncMock(return_value=False)
    node_id = await backend._register_node("t1", handle)

    with pytest.raises(NodeDetachedError):
        await backend._live_node("t1", node_id)

    handle.dispose.assert_awaited_once()
    assert node_id not in backend._nodes


@pytest.mark.asyncio
async def test_dispose_failure_is_tolerated() -> None:
    backend = PlaywrightRemoteBrowser(EngineConfig())
    handle = _handle()
    handle.dispose = AsyncMock(side_effect=PlaywrightError("Target page, context or browser has been closed"))
    node_id = await backend._register_node("t1", handle)

    await backend._dispose_node(node_id)

    assert backend._nodes == {}
