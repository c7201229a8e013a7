"""PagePilot MCP server.

Exposes page navigation, interaction, extraction and capture as MCP tools
over stdio. One engine session is shared by all tool calls; pages are
addressed by the ``page_id`` returned from ``open_page``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from pagepilot.core import BrowserEngine, CaptureOptions, EngineConfig, EngineError, FileArtifactSink, Page

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("pagepilot.server")

_engine: BrowserEngine | None = None
_sink: FileArtifactSink | None = None


async def get_engine() -> BrowserEngine:
    global _engine
    if _engine is None:
        _engine = BrowserEngine(EngineConfig.from_env())
        await _engine.default_session()
    return _engine


def get_sink() -> FileArtifactSink:
    global _sink
    if _sink is None:
        _sink = FileArtifactSink(root_dir=os.getenv("PAGEPILOT_ARTIFACT_DIR", "/tmp/pagepilot-artifacts"))
    return _sink


async def cleanup_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None


async def _page(engine: BrowserEngine, page_id: str) -> Page:
    session = await engine.default_session()
    page = session.pages.get(page_id)
    if page is None:
        raise KeyError(f"Unknown page_id: {page_id}")
    return page


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_PAGE_ID = {"type": "string", "description": "Page id returned by open_page"}
_SELECTOR = {"type": "string", "description": "CSS selector"}
_TIMEOUT = {"type": "integer", "description": "Timeout in milliseconds"}

server = Server("pagepilot")


@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="open_page",
            description="Open a new page, navigate it to a URL and wait until it is ready.",
            inputSchema=_schema({"url": {"type": "string"}, "timeout_ms": _TIMEOUT}, ["url"]),
        ),
        Tool(
            name="navigate",
            description="Navigate an open page to a URL and wait until it is ready.",
            inputSchema=_schema({"page_id": _PAGE_ID, "url": {"type": "string"}, "timeout_ms": _TIMEOUT}, ["page_id", "url"]),
        ),
        Tool(
            name="click",
            description="Click the first element matching a selector.",
            inputSchema=_schema({"page_id": _PAGE_ID, "selector": _SELECTOR}, ["page_id", "selector"]),
        ),
        Tool(
            name="type_text",
            description="Focus the element matching a selector and type text into it.",
            inputSchema=_schema(
                {"page_id": _PAGE_ID, "selector": _SELECTOR, "text": {"type": "string"}},
                ["page_id", "selector", "text"],
            ),
        ),
        Tool(
            name="submit_form",
            description="Submit the form containing the element matching a selector and wait for the next page.",
            inputSchema=_schema({"page_id": _PAGE_ID, "selector": _SELECTOR, "timeout_ms": _TIMEOUT}, ["page_id", "selector"]),
        ),
        Tool(
            name="evaluate",
            description="Evaluate a JavaScript expression in the page and return its JSON result.",
            inputSchema=_schema({"page_id": _PAGE_ID, "script": {"type": "string"}}, ["page_id", "script"]),
        ),
        Tool(
            name="extract_attribute",
            description="Collect an attribute from every element matching a selector, in document order.",
            inputSchema=_schema(
                {"page_id": _PAGE_ID, "selector": _SELECTOR, "attribute": {"type": "string"}},
                ["page_id", "selector", "attribute"],
            ),
        ),
        Tool(
            name="screenshot",
            description="Capture the page and store it in the artifact directory.",
            inputSchema=_schema(
                {
                    "page_id": _PAGE_ID,
                    "name": {"type": "string"},
                    "format": {"type": "string", "enum": ["png", "jpeg"]},
                    "full_page": {"type": "boolean"},
                },
                ["page_id", "name"],
            ),
        ),
        Tool(
            name="close_page",
            description="Release an open page.",
            inputSchema=_schema({"page_id": _PAGE_ID}, ["page_id"]),
        ),
        Tool(
            name="list_pages",
            description="List open pages with their state and URL.",
            inputSchema=_schema({}, []),
        ),
    ]


async def dispatch(engine: BrowserEngine, name: str, arguments: dict[str, Any]) -> Any:
    if name == "open_page":
        session = await engine.default_session()
        page = await engine.sessions.new_page(session, arguments["url"], timeout_ms=arguments.get("timeout_ms"))
        return {"page_id": page.target_id, "url": page.url, "state": page.state.value}

    if name == "list_pages":
        session = await engine.default_session()
        return [
            {"page_id": page.target_id, "url": page.url, "state": page.state.value}
            for page in session.pages.values()
        ]

    page = await _page(engine, arguments["page_id"])

    if name == "navigate":
        await engine.navigation.navigate(page, arguments["url"], timeout_ms=arguments.get("timeout_ms"))
        return {"url": page.url, "state": page.state.value}

    if name == "click":
        handle = await engine.interaction.find_element(page, arguments["selector"])
        await engine.interaction.click(handle)
        return {"ok": True}

    if name == "type_text":
        handle = await engine.interaction.find_element(page, arguments["selector"])
        await engine.interaction.focus(handle)
        await engine.interaction.type(handle, arguments["text"])
        return {"ok": True}

    if name == "submit_form":
        handle = await engine.interaction.find_element(page, arguments["selector"])
        await engine.interaction.submit_form(handle, timeout_ms=arguments.get("timeout_ms"))
        return {"url": page.url, "state": page.state.value}

    if name == "evaluate":
        return {"result": await engine.extraction.evaluate(page, arguments["script"])}

    if name == "extract_attribute":
        values = await engine.extraction.query_attribute_all(page, arguments["selector"], arguments["attribute"])
        return {"count": len(values), "values": values}

    if name == "screenshot":
        options = CaptureOptions(
            format=arguments.get("format", "png"),
            full_page=bool(arguments.get("full_page", False)),
        )
        record = await engine.capture.capture_to(page, get_sink(), arguments["name"], options=options)
        return {"artifact_id": record.artifact_id, "path": record.path, "size": record.size, "sha256": record.sha256}

    if name == "close_page":
        await engine.sessions.release_page(page)
        return {"ok": True}

    raise KeyError(f"Unknown tool: {name}")


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    try:
        engine = await get_engine()
        return _text(await dispatch(engine, name, arguments))
    except EngineError as exc:
        logger.warning("[Server] Tool %s failed: %s", name, exc)
        return _text({**exc.to_dict(), "tool": name})
    except (KeyError, ValueError) as exc:
        logger.warning("[Server] Bad arguments for %s: %s", name, exc)
        return _text({"error": str(exc), "code": "BAD_REQUEST", "tool": name})


async def main() -> None:
    logger.info("[Server] Starting PagePilot MCP Server...")
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await cleanup_engine()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
