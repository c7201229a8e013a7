from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Generic, TypeVar

from pydantic import PydanticUserError, TypeAdapter, ValidationError

from pagepilot.core.config import EngineConfig
from pagepilot.core.errors import DecodeFault, EvaluationError, ScriptFault
from pagepilot.core.page import Page
from pagepilot.core.protocol import Command, ProtocolError

logger = logging.getLogger("pagepilot.extraction")

T = TypeVar("T")

ATTRIBUTE_ALL_SCRIPT = """
({selector, attribute}) => Array.from(document.querySelectorAll(selector))
    .map((el) => el.getAttribute(attribute) ?? '')
"""

TEXT_ALL_SCRIPT = """
({selector}) => Array.from(document.querySelectorAll(selector))
    .map((el) => (el.textContent || '').trim())
"""


@dataclass(frozen=True)
class ExtractionResult(Generic[T]):
    value: T | None = None
    error: EvaluationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@lru_cache(maxsize=128)
def _adapter(result_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(result_type)


def _build_adapter(result_type: Any) -> TypeAdapter[Any]:
    try:
        hash(result_type)
    except TypeError:
        return TypeAdapter(result_type)
    return _adapter(result_type)


def decode(raw: Any, result_type: Any) -> Any:
    """Convert a script's JSON-like result into ``result_type`` or raise DecodeFault."""
    if result_type is Any:
        return raw
    type_name = getattr(result_type, "__name__", result_type)
    try:
        adapter = _build_adapter(result_type)
    except PydanticUserError as exc:
        raise DecodeFault(f"no decoder can be built for {type_name}: {exc.message}") from exc
    try:
        return adapter.validate_python(raw, strict=True)
    except ValidationError as exc:
        raise DecodeFault(
            f"cannot decode {type(raw).__name__} result as {type_name}: "
            f"{exc.error_count()} error(s), first: {exc.errors()[0]['msg']}"
        ) from exc


class ExtractionPipeline:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()

    async def evaluate(
        self,
        page: Page,
        script: str,
        result_type: Any = Any,
        arg: Any = None,
        timeout_ms: int | None = None,
    ) -> Any:
        command_ms = self._config.timeouts.command_timeout_ms if timeout_ms is None else timeout_ms
        async with page.exclusive("evaluate"):
            try:
                raw = await page.call(Command.EVALUATE, {"expression": script, "arg": arg}, timeout_ms=command_ms)
            except ProtocolError as exc:
                if page.session.closed:
                    raise page.closed_error() from exc
                raise ScriptFault(f"script failed on {page.url or page.target_id}: {exc}") from exc
        return decode(raw, result_type)

    async def evaluate_result(
        self,
        page: Page,
        script: str,
        result_type: Any = Any,
        arg: Any = None,
        timeout_ms: int | None = None,
    ) -> ExtractionResult[Any]:
        try:
            value = await self.evaluate(page, script, result_type=result_type, arg=arg, timeout_ms=timeout_ms)
        except EvaluationError as exc:
            logger.debug("[Extraction] %s on %s: %s", exc.code, page.target_id, exc)
            return ExtractionResult(error=exc)
        return ExtractionResult(value=value)

    async def query_attribute_all(self, page: Page, selector: str, attribute: str) -> list[str]:
        return await self.evaluate(
            page,
            ATTRIBUTE_ALL_SCRIPT,
            result_type=list[str],
            arg={"selector": selector, "attribute": attribute},
        )

    async def query_text_all(self, page: Page, selector: str) -> list[str]:
        return await self.evaluate(page, TEXT_ALL_SCRIPT, result_type=list[str], arg={"selector": selector})

    async def title(self, page: Page) -> str:
        return await self.evaluate(page, "document.title", result_type=str)
