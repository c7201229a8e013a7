"""PagePilot browser automation engine."""

from pagepilot.core import BrowserEngine, EngineConfig

__all__ = ["BrowserEngine", "EngineConfig"]
