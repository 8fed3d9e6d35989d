"""Semantic search over topic embeddings, plus the stats and trending views."""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, List, Sequence

import numpy as np

from .models import SearchResult, Stats, Topic, TrendingTopic
from .store import DAY_MS, HOUR_MS, DocumentStore

logger = logging.getLogger(__name__)

# Scores every topic against the query vector, same order as the topics
VectorScan = Callable[[Sequence[float], Sequence[Topic]], List[float]]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when the vectors differ in length or either has zero magnitude.
    This is the reference definition; brute_force_scan must score the same.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def pairwise_scan(query_vector: Sequence[float], topics: Sequence[Topic]) -> List[float]:
    """Scores topics one at a time with cosine_similarity."""
    return [cosine_similarity(query_vector, t.embedding or []) for t in topics]


def brute_force_scan(query_vector: Sequence[float], topics: Sequence[Topic]) -> List[float]:
    """Linear scan: one cosine similarity per topic, vectorized per dimension."""
    scores = [0.0] * len(topics)
    query = np.asarray(query_vector, dtype=np.float64)
    query_norm = np.linalg.norm(query) if query.size else 0.0
    if query_norm == 0:
        return scores

    same_dim = [i for i, t in enumerate(topics) if t.embedding and len(t.embedding) == query.size]
    if not same_dim:
        return scores

    matrix = np.asarray([topics[i].embedding for i in same_dim], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * query_norm
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)

    for i, sim in zip(same_dim, sims):
        scores[i] = float(sim)
    return scores


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class SemanticSearchEngine:
    """Ranks stored topics by cosine similarity to a query embedding."""

    def __init__(self, store: DocumentStore, scan: VectorScan = brute_force_scan):
        self.store = store
        self.scan = scan

    async def search(
        self,
        query_vector: Sequence[float],
        limit: int = 20,
        min_similarity: float = 0.25,
    ) -> List[SearchResult]:
        """
        Score every embedded topic, drop those below min_similarity, rank and cap.

        Ties on similarity are ordered by most recently seen, then by query.
        """
        document = await self.store.load()
        now = self.store.clock()

        topics = [t for t in document.topics if t.has_embedding]
        scores = self.scan(query_vector, topics)

        scored = [(s, t) for s, t in zip(scores, topics) if s >= min_similarity]
        scored.sort(key=lambda pair: (-pair[0], -pair[1].last_seen, pair[1].query.lower()))

        results = [
            SearchResult(
                query=topic.query,
                similarity=similarity,
                search_volume=topic.search_volume,
                increase_percentage=topic.increase_percentage,
                categories=topic.categories,
                trend_breakdown=topic.trend_breakdown,
                first_seen=topic.first_seen,
                last_seen=topic.last_seen,
                active=topic.active,
                days_ago=round_half_up((now - topic.last_seen) / DAY_MS),
            )
            for similarity, topic in scored[:max(limit, 0)]
        ]
        logger.debug(f"Search scanned {len(topics)} topics, {len(scored)} above {min_similarity}")
        return results

    async def get_stats(self) -> Stats:
        """Counts and timestamps describing the stored document."""
        document = await self.store.load()
        topics = document.topics
        return Stats(
            total_topics=len(topics),
            total_scrapes=len(document.scrapes),
            topics_with_embeddings=sum(1 for t in topics if t.has_embedding),
            last_scrape=_iso(document.meta.last_scrape) if document.meta.last_scrape else None,
            oldest_topic=_iso(min(t.first_seen for t in topics)) if topics else None,
        )

    async def get_trending(self, limit: int = 50) -> List[TrendingTopic]:
        """Topics seen in the last 24 hours, highest search volume first."""
        document = await self.store.load()
        now = self.store.clock()
        recent = [t for t in document.topics if t.last_seen > now - DAY_MS]
        recent.sort(key=lambda t: t.search_volume, reverse=True)

        return [
            TrendingTopic(
                query=t.query,
                search_volume=t.search_volume,
                increase_percentage=t.increase_percentage,
                categories=t.categories,
                trend_breakdown=t.trend_breakdown,
                first_seen=t.first_seen,
                last_seen=t.last_seen,
                active=t.active,
                hours_ago=round_half_up((now - t.last_seen) / HOUR_MS),
            )
            for t in recent[:max(limit, 0)]
        ]
