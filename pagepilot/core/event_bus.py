from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Optional

from pagepilot.core.errors import SessionClosedError
from pagepilot.core.protocol import BrowserEvent, EventKind, RemoteBrowser

logger = logging.getLogger("pagepilot.events")

EventListener = Callable[[BrowserEvent], None]
EventPredicate = Callable[[BrowserEvent], bool]


class EventWaiter:
    """A pre-armed subscription for the next event matching kind/target."""

    def __init__(
        self,
        bus: "EventBus",
        kind: EventKind,
        target_id: str | None,
        predicate: EventPredicate | None,
    ) -> None:
        self._bus = bus
        self.kind = kind
        self.target_id = target_id
        self._predicate = predicate
        self._future: asyncio.Future[BrowserEvent] = asyncio.get_running_loop().create_future()

    def matches(self, event: BrowserEvent) -> bool:
        if event.kind != self.kind:
            return False
        if self.target_id is not None and event.target_id != self.target_id:
            return False
        if self._predicate is not None and not self._predicate(event):
            return False
        return True

    @property
    def done(self) -> bool:
        return self._future.done()

    def _resolve(self, event: BrowserEvent) -> None:
        if not self._future.done():
            self._future.set_result(event)

    def _fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    async def wait(self, timeout_ms: float | None = None) -> BrowserEvent:
        """Wait for the event; raises ``TimeoutError`` when ``timeout_ms`` elapses."""
        if timeout_ms is None:
            return await asyncio.shield(self._future)
        return await asyncio.wait_for(asyncio.shield(self._future), timeout=max(0.0, timeout_ms / 1000.0))

    def cancel(self) -> None:
        self._bus._discard(self)
        if not self._future.done():
            self._future.cancel()


class EventBus:
    """Drains one remote browser's event stream on a dedicated task.

    Foreground code never polls: it arms an ``EventWaiter`` before issuing the
    command whose completion it needs, then awaits the waiter.
    """

    def __init__(self, remote: RemoteBrowser, history_size: int = 256, name: str = "session") -> None:
        self._remote = remote
        self._name = name
        self._history: Deque[BrowserEvent] = deque(maxlen=history_size)
        self._seq = 0
        self._waiters: list[EventWaiter] = []
        self._listeners: list[EventListener] = []
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = False

    @property
    def sequence(self) -> int:
        return self._seq

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self) -> None:
        if self._stopped:
            raise SessionClosedError(f"event bus for {self._name} already stopped")
        if self._task is not None:
            raise RuntimeError(f"event bus for {self._name} already started")
        self._task = asyncio.create_task(self._drain(), name=f"pagepilot-events-{self._name}")
        logger.debug("[EventBus] Consumer started for %s", self._name)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._fail_waiters(SessionClosedError(f"session {self._name} closed"))
        logger.debug("[EventBus] Consumer stopped for %s", self._name)

    def expect(
        self,
        kind: EventKind,
        target_id: str | None = None,
        predicate: EventPredicate | None = None,
    ) -> EventWaiter:
        if self._stopped:
            raise SessionClosedError(f"session {self._name} closed")
        waiter = EventWaiter(self, kind, target_id, predicate)
        self._waiters.append(waiter)
        return waiter

    def events_since(self, seq: int) -> list[BrowserEvent]:
        return [event for event in self._history if event.seq > seq]

    def fail_target(self, target_id: str | None, exc: BaseException) -> int:
        """Fail pending waiters bound to ``target_id`` (every waiter when ``None``)."""
        failed = [waiter for waiter in self._waiters if target_id is None or waiter.target_id == target_id]
        for waiter in failed:
            self._waiters.remove(waiter)
            waiter._fail(exc)
        return len(failed)

    def _discard(self, waiter: EventWaiter) -> None:
        if waiter in self._waiters:
            self._waiters.remove(waiter)

    def _fail_waiters(self, exc: BaseException) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter._fail(exc)

    async def _drain(self) -> None:
        try:
            async for event in self._remote.events():
                if self._stopped:
                    break
                self._dispatch(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[EventBus] Event stream for %s failed", self._name)
            self._fail_waiters(SessionClosedError(f"event stream for {self._name} failed: {exc}"))
            return
        self._fail_waiters(SessionClosedError(f"event stream for {self._name} ended"))

    def _dispatch(self, event: BrowserEvent) -> None:
        self._seq += 1
        event = replace(event, seq=self._seq)
        self._history.append(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[EventBus] Listener failed on %s", event.kind.value)

        for waiter in list(self._waiters):
            if waiter.done:
                self._discard(waiter)
                continue
            try:
                matched = waiter.matches(event)
            except Exception as exc:
                waiter._fail(exc)
                self._discard(waiter)
                continue
            if matched:
                waiter._resolve(event)
                self._discard(waiter)
