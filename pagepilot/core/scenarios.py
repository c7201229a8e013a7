"""Reference scraping flows: site search, page screenshot and catalogue extraction."""

from __future__ import annotations

import logging

from pagepilot.core.capture import ArtifactRecord, ArtifactSink
from pagepilot.core.config import RetryPolicy
from pagepilot.core.engine import BrowserEngine
from pagepilot.core.errors import ElementNotFound, InteractionTimeout
from pagepilot.core.session_manager import Session

logger = logging.getLogger("pagepilot.scenarios")

WIKIPEDIA_URL = "https://en.wikipedia.org"
SEARCH_TOGGLE_SELECTOR = "#p-search > a"
SEARCH_INPUT_SELECTOR = "input[name='search']"

BOOKS_URL = "https://books.toscrape.com/catalogue/category/books/science_22/index.html"
BOOK_TITLE_SELECTOR = ".product_pod h3 a"

# The search toggle only exists on narrow layouts; don't spend the full retry budget on it.
_TOGGLE_RETRY = RetryPolicy(max_attempts=2, initial_backoff_ms=250, max_backoff_ms=250)
_TOGGLE_CLICK_TIMEOUT_MS = 2_000


async def wikipedia_search(
    engine: BrowserEngine,
    session: Session,
    term: str,
    base_url: str = WIKIPEDIA_URL,
) -> str:
    """Search ``term`` on the wiki and return the resulting page title."""
    async with engine.page(session, base_url) as page:
        try:
            toggle = await engine.interaction.find_element(page, SEARCH_TOGGLE_SELECTOR, retry=_TOGGLE_RETRY)
            await engine.interaction.click(toggle, timeout_ms=_TOGGLE_CLICK_TIMEOUT_MS)
        except (ElementNotFound, InteractionTimeout) as exc:
            logger.info("[Scenario] Search toggle unavailable (%s), using inline search box", exc.code)

        search_input = await engine.interaction.find_element(page, SEARCH_INPUT_SELECTOR)
        await engine.interaction.click(search_input)
        await engine.interaction.type(search_input, term)
        await engine.interaction.submit_form(search_input)
        return await engine.extraction.title(page)


async def take_screenshot(
    engine: BrowserEngine,
    session: Session,
    url: str,
    sink: ArtifactSink,
    name: str,
) -> ArtifactRecord:
    async with engine.page(session, url) as page:
        return await engine.capture.capture_to(page, sink, name)


async def extract_books(engine: BrowserEngine, session: Session, url: str = BOOKS_URL) -> list[str]:
    async with engine.page(session, url) as page:
        return await engine.extraction.query_attribute_all(page, BOOK_TITLE_SELECTOR, "title")
