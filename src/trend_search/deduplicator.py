"""Cross-source deduplication of scraped topics."""

import logging
from typing import Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field

from .fetcher import RssSource, TrendSource
from .merge import normalize_query
from .models import ScrapedTopic

logger = logging.getLogger(__name__)


class CollectedTopics(BaseModel):
    """Topics gathered from every source, with per-source contributions."""

    topics: List[ScrapedTopic] = Field(default_factory=list)
    sources: Dict[str, int] = Field(default_factory=dict)


def dedupe_topics(topics: Iterable[ScrapedTopic]) -> List[ScrapedTopic]:
    """Keep the first occurrence of each query, compared case-insensitively."""
    seen = set()
    unique = []
    for topic in topics:
        key = normalize_query(topic.query)
        if key in seen:
            continue
        seen.add(key)
        unique.append(topic)
    return unique


async def collect_topics(sources: Sequence[TrendSource]) -> CollectedTopics:
    """
    Fetch every source in priority order and combine the results.

    The RSS feed is a fallback: it only contributes queries no earlier source
    already produced, and its count reports those new topics only.
    """
    collected = CollectedTopics()
    combined: List[ScrapedTopic] = []

    for source in sources:
        topics = await source.fetch()

        if isinstance(source, RssSource):
            known = {normalize_query(t.query) for t in combined}
            fresh = [t for t in topics if normalize_query(t.query) not in known]
            logger.info(f"RSS: {len(fresh)} new topics ({len(topics)} total)")
            topics = fresh
        else:
            logger.info(f"{source.name}: {len(topics)} topics")

        collected.sources[source.name] = len(topics)
        combined.extend(topics)

    collected.topics = dedupe_topics(combined)
    return collected
