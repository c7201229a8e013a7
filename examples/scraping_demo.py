"""
Example usage of the PagePilot engine.

Runs three flows against live sites: a Wikipedia search, a screenshot of
rust-lang.org written to ./artifacts, and book titles from a catalogue page.
"""

import asyncio
import logging

from pagepilot.core import BrowserEngine, EngineConfig, FileArtifactSink
from pagepilot.core.scenarios import extract_books, take_screenshot, wikipedia_search

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


async def main():
    print("Starting web scraper...")

    config = EngineConfig.from_env()
    engine = BrowserEngine(config)
    sink = FileArtifactSink(root_dir="artifacts")

    async with engine.session() as session:
        print("\n" + "="*60)
        print("Example 1: Wikipedia Search")
        print("="*60)
        title = await wikipedia_search(engine, session, "Rust programming language")
        print(f"Search result title: {title}")

        print("\n" + "="*60)
        print("Example 2: Taking Screenshots")
        print("="*60)
        record = await take_screenshot(engine, session, "https://rust-lang.org", sink, "rust-homepage.png")
        print(f"Screenshot saved to {record.path} ({record.size} bytes)")

        print("\n" + "="*60)
        print("Example 3: Extracting Structured Data")
        print("="*60)
        books = await extract_books(engine, session)
        print(f"Found {len(books)} books:")
        for i, book in enumerate(books[:5], start=1):
            print(f"{i}. {book}")
        if len(books) > 5:
            print(f"... and {len(books) - 5} more")

    print("\nScraper finished successfully!")


if __name__ == "__main__":
    asyncio.run(main())
