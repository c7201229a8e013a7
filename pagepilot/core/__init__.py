"""Browser orchestration engine: sessions, navigation, interaction, extraction and capture."""

from pagepilot.core.capture import (
    Artifact,
    ArtifactCapture,
    ArtifactRecord,
    ArtifactSink,
    CaptureOptions,
    FileArtifactSink,
)
from pagepilot.core.config import EngineConfig, RetryPolicy, TimeoutPolicy
from pagepilot.core.engine import BrowserEngine
from pagepilot.core.errors import (
    BrowserConnectionError,
    CaptureError,
    DecodeFault,
    ElementNotFound,
    EngineError,
    EvaluationError,
    FocusRequiredError,
    InteractionError,
    InteractionTimeout,
    NavigationError,
    NavigationTimeout,
    NotReadyError,
    PageClosedError,
    PageCreationError,
    ScriptFault,
    SessionClosedError,
    StaleElementError,
)
from pagepilot.core.event_bus import EventBus, EventWaiter
from pagepilot.core.extraction import ExtractionPipeline, ExtractionResult
from pagepilot.core.interaction import ElementHandle, InteractionEngine
from pagepilot.core.navigation import NavigationController
from pagepilot.core.page import Page, PageState
from pagepilot.core.protocol import BrowserEvent, Command, EventKind, RemoteBrowser
from pagepilot.core.session_manager import Session, SessionManager

__all__ = [
    "Artifact",
    "ArtifactCapture",
    "ArtifactRecord",
    "ArtifactSink",
    "BrowserConnectionError",
    "BrowserEngine",
    "BrowserEvent",
    "CaptureError",
    "CaptureOptions",
    "Command",
    "DecodeFault",
    "ElementHandle",
    "ElementNotFound",
    "EngineConfig",
    "EngineError",
    "EvaluationError",
    "EventBus",
    "EventKind",
    "EventWaiter",
    "ExtractionPipeline",
    "ExtractionResult",
    "FileArtifactSink",
    "FocusRequiredError",
    "InteractionEngine",
    "InteractionError",
    "InteractionTimeout",
    "NavigationController",
    "NavigationError",
    "NavigationTimeout",
    "NotReadyError",
    "Page",
    "PageClosedError",
    "PageCreationError",
    "PageState",
    "RemoteBrowser",
    "RetryPolicy",
    "ScriptFault",
    "Session",
    "SessionClosedError",
    "SessionManager",
    "StaleElementError",
    "TimeoutPolicy",
]
