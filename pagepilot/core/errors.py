"""Public error taxonomy.

Every engine operation either returns a typed result or raises one of these.
Each class carries a stable ``code`` string so callers (and the MCP server)
can report failures without matching on message text.
"""

from __future__ import annotations


class EngineError(Exception):
    code = "ENGINE_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "error": str(self), "kind": type(self).__name__}


class BrowserConnectionError(EngineError, ConnectionError):
    code = "CONNECTION_FAILED"


class SessionClosedError(EngineError):
    code = "SESSION_CLOSED"


class PageCreationError(EngineError):
    code = "PAGE_CREATION_FAILED"


class PageClosedError(EngineError):
    code = "PAGE_CLOSED"


class NotReadyError(EngineError):
    code = "PAGE_NOT_READY"


class NavigationError(EngineError):
    code = "NAVIGATION_FAILED"


class NavigationTimeout(NavigationError):
    code = "NAVIGATION_TIMEOUT"


class InteractionError(EngineError):
    code = "INTERACTION_FAILED"


class ElementNotFound(InteractionError):
    code = "ELEMENT_NOT_FOUND"


class StaleElementError(InteractionError):
    code = "STALE_ELEMENT"


class FocusRequiredError(InteractionError):
    code = "FOCUS_REQUIRED"


class InteractionTimeout(InteractionError):
    code = "INTERACTION_TIMEOUT"


class EvaluationError(EngineError):
    code = "EVALUATION_FAILED"


class ScriptFault(EvaluationError):
    code = "SCRIPT_FAULT"


class DecodeFault(EvaluationError):
    code = "DECODE_FAULT"


class CaptureError(EngineError):
    code = "CAPTURE_FAILED"
