"""Topic merge engine: folds a scraped batch into the trends document."""

import logging
from typing import Dict, List, Sequence

from .models import (
    AddTopicsResult,
    ScrapedTopic,
    ScrapeHistoryEntry,
    ScrapeRecord,
    Topic,
    TrendsDocument,
)
from .store import DAY_MS, DocumentStore

logger = logging.getLogger(__name__)


def normalize_query(query: str) -> str:
    """Identity key of a topic. Matching is case-insensitive only."""
    return query.lower()


def _history_entry(topic: ScrapedTopic, scrape_id: str, now: int) -> ScrapeHistoryEntry:
    return ScrapeHistoryEntry(
        scrape_id=scrape_id,
        timestamp=now,
        search_volume=topic.search_volume,
        active=topic.active,
    )


def observe(existing: Topic, topic: ScrapedTopic, scrape_id: str, now: int) -> None:
    """Apply a fresh observation to a known topic in place."""
    existing.last_seen = now
    existing.search_volume = topic.search_volume
    existing.increase_percentage = topic.increase_percentage
    existing.active = topic.active
    existing.scrape_history.append(_history_entry(topic, scrape_id, now))
    for term in topic.trend_breakdown:
        if term not in existing.trend_breakdown:
            existing.trend_breakdown.append(term)


def new_topic(topic: ScrapedTopic, scrape_id: str, now: int) -> Topic:
    """Create a stored topic from its first observation."""
    return Topic(
        **topic.model_dump(),
        first_seen=now,
        last_seen=now,
        embedding=None,
        scrape_history=[_history_entry(topic, scrape_id, now)],
    )


def prune(document: TrendsDocument, cutoff: int) -> int:
    """Drop topics and scrapes not seen after cutoff. Returns topics removed."""
    before = len(document.topics)
    document.topics = [t for t in document.topics if t.last_seen > cutoff]
    document.scrapes = [s for s in document.scrapes if s.timestamp > cutoff]
    return before - len(document.topics)


def merge_batch(
    document: TrendsDocument,
    batch: Sequence[ScrapedTopic],
    scrape_id: str,
    now: int,
    retention_ms: int,
) -> AddTopicsResult:
    """Merge a batch into document in place."""
    document.scrapes.append(
        ScrapeRecord(id=scrape_id, timestamp=now, topic_count=len(batch))
    )

    index: Dict[str, Topic] = {normalize_query(t.query): t for t in document.topics}
    created = 0

    for topic in batch:
        key = normalize_query(topic.query)
        existing = index.get(key)
        if existing is not None:
            observe(existing, topic, scrape_id, now)
        else:
            stored = new_topic(topic, scrape_id, now)
            document.topics.append(stored)
            index[key] = stored
            created += 1

    pruned = prune(document, now - retention_ms)

    document.meta.last_scrape = now
    document.meta.total_scrapes = len(document.scrapes)

    logger.info(
        f"Merged scrape {scrape_id}: {len(batch)} observed, {created} new, "
        f"{pruned} pruned, {len(document.topics)} total"
    )
    return AddTopicsResult(added=len(batch), total_topics=len(document.topics))


class TopicMergeEngine:
    """Sole writer of the document's topics and scrapes."""

    def __init__(self, store: DocumentStore, retention_days: int = 30):
        self.store = store
        self.retention_ms = retention_days * DAY_MS

    async def add_topics(self, batch: List[ScrapedTopic], scrape_id: str) -> AddTopicsResult:
        """
        Load, merge, prune and save in one cycle.

        Returns the batch size (not the number of topics actually changed)
        and the topic count after pruning. A failed save leaves the stored
        document untouched.
        """
        async with self.store.write_lock:
            document = await self.store.load()
            result = merge_batch(
                document, batch, scrape_id, self.store.clock(), self.retention_ms
            )
            await self.store.save(document)
        return result
