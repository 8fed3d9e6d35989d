"""Parsers for Google Trends feeds and page text."""

import html
import logging
import re
import xml.etree.ElementTree as ET
from typing import List, Optional

from .models import Category, ScrapedTopic

logger = logging.getLogger(__name__)

_VOLUME_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([KMB])?\+?", re.IGNORECASE)
_PERCENT_RE = re.compile(r"(\d{1,3}(?:,\d{3})*|\d+)\s*%")
_HOURS_RE = re.compile(r"(\d+)\s*hours?", re.IGNORECASE)
_DAYS_RE = re.compile(r"(\d+)\s*days?", re.IGNORECASE)

_MULTIPLIERS = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}


def clean_text(text: Optional[str]) -> str:
    """Unescape HTML entities and collapse whitespace."""
    if not text:
        return ""
    return " ".join(html.unescape(text).split())


def parse_volume(text: str) -> int:
    """
    Parse a search volume label.

    Examples:
        "500+" -> 500
        "2K+" -> 2000
        "1.5M+" -> 1500000
        "200,000+" -> 200000
    """
    if not text:
        return 0
    cleaned = text.replace(",", "").strip()
    match = _VOLUME_RE.search(cleaned)
    if not match:
        return 0
    value = float(match.group(1))
    suffix = (match.group(2) or "").upper()
    return int(value * _MULTIPLIERS.get(suffix, 1))


def parse_percent(text: str) -> float:
    """Parse an increase label like "1,000%" into a number."""
    if not text:
        return 0.0
    match = _PERCENT_RE.search(text)
    if not match:
        return 0.0
    return float(match.group(1).replace(",", ""))


def parse_hours_ago(text: str) -> Optional[int]:
    """Parse "3 hours ago" / "2 days ago" into hours."""
    if not text:
        return None
    hours_match = _HOURS_RE.search(text)
    if hours_match:
        return int(hours_match.group(1))
    days_match = _DAYS_RE.search(text)
    if days_match:
        return int(days_match.group(1)) * 24
    return None


def parse_rss_feed(xml_text: str) -> List[ScrapedTopic]:
    """Parse the Google Trends daily RSS feed into scraped topics."""
    topics = []

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.error(f"Malformed trends RSS feed: {e}")
        return topics

    for item in root.iter("item"):
        title = clean_text(item.findtext("title"))
        if not title:
            continue

        traffic = item.findtext("{*}approx_traffic") or ""
        breakdown = [
            clean_text(node.text)
            for node in item.iter()
            if node.tag.endswith("}news_item_title") and clean_text(node.text)
        ]

        topics.append(
            ScrapedTopic(
                query=title,
                search_volume=int(re.sub(r"[^0-9]", "", traffic) or 0),
                increase_percentage=0,
                categories=[],
                trend_breakdown=breakdown,
                active=True,
            )
        )

    return topics


def parse_serpapi_response(data: dict) -> List[ScrapedTopic]:
    """Map a SerpApi google_trends_trending_now response to scraped topics."""
    topics = []

    for item in data.get("trending_searches") or []:
        query = (item.get("query") or "").strip()
        if not query:
            continue
        try:
            topics.append(
                ScrapedTopic(
                    query=query,
                    search_volume=int(item.get("search_volume") or 0),
                    increase_percentage=float(item.get("increase_percentage") or 0),
                    categories=[
                        Category(id=c["id"], name=c["name"])
                        for c in item.get("categories") or []
                        if "id" in c and "name" in c
                    ],
                    trend_breakdown=[
                        t for t in item.get("trend_breakdown") or [] if isinstance(t, str)
                    ],
                    active=item.get("active", True) is not False,
                )
            )
        except (ValueError, TypeError) as e:
            logger.debug(f"Skipping malformed SerpApi item {query!r}: {e}")

    return topics


def parse_browser_row(row: dict) -> Optional[ScrapedTopic]:
    """Build a scraped topic from one row extracted from the trending page."""
    query = clean_text(row.get("query"))
    if not query:
        return None
    return ScrapedTopic(
        query=query,
        search_volume=parse_volume(row.get("volume", "")),
        increase_percentage=parse_percent(row.get("percent", "")),
        categories=[],
        trend_breakdown=[
            t for t in (clean_text(b) for b in row.get("breakdown", []))
            if t and t != query
        ],
        active=bool(row.get("active", True)),
        hours_ago=parse_hours_ago(row.get("started", "")),
    )
