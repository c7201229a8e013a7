from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

READY_EVENTS = ("load", "domcontentloaded")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    initial_backoff_ms: int = 250
    max_backoff_ms: int = 500
    multiplier: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff values must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def backoff_schedule(self) -> list[int]:
        """Delays slept between attempts, in milliseconds."""
        delays: list[int] = []
        backoff_ms = self.initial_backoff_ms
        for _ in range(self.max_attempts - 1):
            delays.append(min(backoff_ms, self.max_backoff_ms))
            backoff_ms = int(backoff_ms * self.multiplier)
        return delays


@dataclass(frozen=True)
class TimeoutPolicy:
    startup_timeout_ms: int = 30_000
    navigation_timeout_ms: int = 30_000
    command_timeout_ms: int = 10_000
    capture_timeout_ms: int = 15_000
    shutdown_timeout_ms: int = 5_000

    def __post_init__(self) -> None:
        for item in fields(self):
            if getattr(self, item.name) <= 0:
                raise ValueError(f"{item.name} must be > 0")


@dataclass(frozen=True)
class EngineConfig:
    headless: bool = True
    cdp_url: str = ""
    window_width: int = 1280
    window_height: int = 800
    launch_args: tuple[str, ...] = ("--disable-blink-features=AutomationControlled",)
    ready_event: str = "load"
    settle_delay_ms: int = 500
    max_settle_delay_ms: int = 1_000
    max_pages_per_session: int = 16
    event_queue_size: int = 1_024
    event_history_size: int = 256
    prefer_native_submit: bool = True
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.ready_event not in READY_EVENTS:
            raise ValueError(f"ready_event must be one of {READY_EVENTS}, got {self.ready_event!r}")
        if self.window_width <= 0 or self.window_height <= 0:
            raise ValueError("window dimensions must be positive")
        if self.max_settle_delay_ms < 0:
            raise ValueError("max_settle_delay_ms must be >= 0")
        if not 0 <= self.settle_delay_ms <= self.max_settle_delay_ms:
            raise ValueError("settle_delay_ms must be within [0, max_settle_delay_ms]")
        if self.max_pages_per_session < 1:
            raise ValueError("max_pages_per_session must be >= 1")
        if self.event_queue_size < 1 or self.event_history_size < 1:
            raise ValueError("event queue and history sizes must be >= 1")

    def browser_args(self) -> list[str]:
        args = list(self.launch_args)
        if not any(arg.startswith("--window-size=") for arg in args):
            args.append(f"--window-size={self.window_width},{self.window_height}")
        return args

    @classmethod
    def from_env(cls, prefix: str = "PAGEPILOT_", environ: dict[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        base = cls()

        def read(name: str, current: Any) -> Any:
            raw = env.get(prefix + name.upper())
            if raw is None or raw == "":
                return current
            if isinstance(current, bool):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            if isinstance(current, int):
                return int(raw)
            if isinstance(current, float):
                return float(raw)
            if isinstance(current, tuple):
                return tuple(part.strip() for part in raw.split(",") if part.strip())
            return raw

        timeouts = replace(
            base.timeouts,
            **{item.name: read(item.name, getattr(base.timeouts, item.name)) for item in fields(TimeoutPolicy)},
        )
        retry = RetryPolicy(
            max_attempts=read("retry_max_attempts", base.retry.max_attempts),
            initial_backoff_ms=read("retry_initial_backoff_ms", base.retry.initial_backoff_ms),
            max_backoff_ms=read("retry_max_backoff_ms", base.retry.max_backoff_ms),
            multiplier=read("retry_multiplier", base.retry.multiplier),
        )
        scalars = {
            item.name: read(item.name, getattr(base, item.name))
            for item in fields(cls)
            if item.name not in ("timeouts", "retry")
        }
        return cls(**scalars, timeouts=timeouts, retry=retry)
