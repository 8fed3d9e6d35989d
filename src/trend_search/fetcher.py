"""Trend sources: Google Trends RSS, SerpApi and a Playwright headless browser.

Every source returns a list of scraped topics and never raises; failures are
logged and produce an empty list.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
from playwright.async_api import async_playwright, Browser, Page, Playwright

from .config import Settings
from .models import ScrapedTopic
from .parser import parse_browser_row, parse_rss_feed, parse_serpapi_response

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


class TrendSource(ABC):
    """A source of trending topics."""

    name: str = "source"

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def fetch(self) -> List[ScrapedTopic]:
        """Fetch the current trending topics."""

    async def close(self) -> None:
        """Release any resources held by the source."""


class RssSource(TrendSource):
    """Google Trends daily RSS feed. Always available, lowest quality."""

    name = "rss"
    URL = "https://trends.google.com/trending/rss"

    def __init__(self, geo: str = "US", timeout: float = 30.0):
        self.geo = geo
        self.timeout = timeout

    async def fetch(self) -> List[ScrapedTopic]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.URL,
                    params={"geo": self.geo},
                    headers={"User-Agent": random_user_agent()},
                )
                response.raise_for_status()
            topics = parse_rss_feed(response.text)
        except Exception as e:
            logger.error(f"RSS scrape failed: {e}")
            return []

        logger.info(f"RSS: fetched {len(topics)} topics for {self.geo}")
        return topics


class SerpApiSource(TrendSource):
    """SerpApi Google Trends "trending now". Enabled only with an API key."""

    name = "serpApi"
    URL = "https://serpapi.com/search.json"

    def __init__(self, api_key: Optional[str], geo: str = "US", timeout: float = 30.0):
        self.api_key = api_key
        self.geo = geo
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch(self) -> List[ScrapedTopic]:
        if not self.enabled:
            return []

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.URL,
                    params={
                        "engine": "google_trends_trending_now",
                        "geo": self.geo,
                        "hl": "en",
                        "api_key": self.api_key,
                    },
                )
                response.raise_for_status()
            topics = parse_serpapi_response(response.json())
        except Exception as e:
            logger.error(f"SerpApi scrape failed: {e}")
            return []

        logger.info(f"SerpApi: fetched {len(topics)} topics for {self.geo}")
        return topics


# Extracts one dict per table row of the trending page
_EXTRACT_ROWS_JS = """
() => {
    const skip = /^(select row|select|explore|search it|more_vert|checklist|query_stats|more actions)$/i;
    const rows = document.querySelectorAll('table tbody tr');
    const data = [];
    for (const row of rows) {
        if (row.querySelectorAll('td').length < 3) continue;
        const q = row.querySelector('.mZ3RIc');
        const query = q ? q.textContent.trim() : '';
        if (!query) continue;
        const text = (sel) => {
            const el = row.querySelector(sel);
            return el ? el.textContent.trim() : '';
        };
        const breakdown = [];
        row.querySelectorAll('button').forEach((b) => {
            const t = b.textContent.trim();
            if (skip.test(t) || /^\\d+\\s*(hours?|days?|min)/i.test(t) || /^see \\d+/i.test(t)
                || t.startsWith('+') || t.includes('arrow_upward') || t === query
                || t.length <= 1 || t.length >= 200) return;
            breakdown.push(t);
        });
        data.push({
            query: query,
            volume: text('.lqv0Cb'),
            percent: text('.TXt85b'),
            started: text('.vdw3Ld'),
            active: row.textContent.includes('Active'),
            breakdown: breakdown,
        });
    }
    return data;
}
"""


class BrowserFetcher(TrendSource):
    """Scrapes the Google Trends trending page with a Playwright headless browser."""

    name = "browser"

    def __init__(self, geo: str = "US", max_pages: int = 20, enabled: bool = True):
        self.geo = geo
        self.max_pages = max_pages
        self._enabled = enabled
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._initialized = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def initialize(self) -> None:
        """Initialize the browser instance (reusable)."""
        if self._initialized:
            return

        logger.info("Initializing Playwright browser...")
        self._playwright = await async_playwright().start()

        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                "--disable-gpu",
                "--disable-dev-shm-usage",
                "--disable-setuid-sandbox",
                "--no-sandbox",
            ]
        )

        self._initialized = True
        logger.info("Browser initialized successfully")

    async def close(self) -> None:
        """Close browser and cleanup."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        if self._initialized:
            self._initialized = False
            logger.info("Browser closed")

    async def fetch(self) -> List[ScrapedTopic]:
        if not self.enabled:
            return []

        page = None
        try:
            await self.initialize()
            page = await self._browser.new_page(user_agent=random_user_agent())

            # Block unnecessary resources for speed
            await page.route("**/*.{png,jpg,jpeg,gif,svg,ico,woff,woff2}", lambda route: route.abort())

            url = f"https://trends.google.com/trending?geo={self.geo}&hl=en"
            await page.goto(url, wait_until="domcontentloaded", timeout=60000)
            await page.wait_for_selector("table tbody tr", timeout=30000)

            topics = await self._walk_pages(page)
        except Exception as e:
            logger.error(f"Browser scrape failed: {e}")
            return []
        finally:
            if page:
                await page.close()

        logger.info(f"Browser: fetched {len(topics)} topics for {self.geo}")
        return topics

    async def _walk_pages(self, page: Page) -> List[ScrapedTopic]:
        """Extract every result page, following the next-page button."""
        topics: List[ScrapedTopic] = []

        for page_number in range(self.max_pages):
            rows = await page.evaluate(_EXTRACT_ROWS_JS)
            for row in rows:
                topic = parse_browser_row(row)
                if topic:
                    topics.append(topic)

            next_button = await page.query_selector('button[aria-label="Go to next page"]')
            if not next_button or await next_button.is_disabled():
                break
            await next_button.click()
            # Wait for the table to re-render
            await asyncio.sleep(2)
            logger.debug(f"Browser: moved to result page {page_number + 2}")

        return topics


def build_sources(settings: Settings) -> List[TrendSource]:
    """Sources in priority order: SerpApi, browser, RSS."""
    return [
        SerpApiSource(settings.serpapi_key, geo=settings.geo),
        BrowserFetcher(
            geo=settings.geo,
            max_pages=settings.scrape_max_pages,
            enabled=settings.browser_enabled,
        ),
        RssSource(geo=settings.geo),
    ]
