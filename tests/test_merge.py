"""Tests for the topic merge engine."""

import asyncio
import json

import pytest

from trend_search.errors import BlobStoreError
from trend_search.merge import TopicMergeEngine, normalize_query
from trend_search.models import Category
from trend_search.store import DocumentCache, DocumentStore

from conftest import DOC_KEY, START_MS, YieldingBlobStore, make_topic


@pytest.fixture
def engine(store):
    return TopicMergeEngine(store, retention_days=30)


class TestAddTopics:
    """Insert-or-update semantics of add_topics."""

    @pytest.mark.asyncio
    async def test_first_topic_on_empty_document(self, engine, store, clock):
        result = await engine.add_topics([make_topic("AI", search_volume=1000)], "scrape-1")

        assert result.added == 1
        assert result.total_topics == 1

        doc = await store.load()
        topic = doc.topics[0]
        assert topic.query == "AI"
        assert topic.first_seen == topic.last_seen == clock.now
        assert topic.embedding is None
        assert len(topic.scrape_history) == 1
        assert topic.scrape_history[0].scrape_id == "scrape-1"
        assert topic.scrape_history[0].search_volume == 1000
        assert doc.scrapes[0].id == "scrape-1"
        assert doc.scrapes[0].topic_count == 1
        assert doc.meta.last_scrape == clock.now
        assert doc.meta.total_scrapes == 1

    @pytest.mark.asyncio
    async def test_reingest_is_idempotent_for_identity(self, engine, store, clock):
        batch = [
            make_topic("AI", trend_breakdown=["chatgpt", "openai"]),
            make_topic("Taylor Swift", trend_breakdown=["eras tour"]),
        ]
        await engine.add_topics(batch, "scrape-1")
        first_seen = clock.now
        clock.advance(3_600_000)

        result = await engine.add_topics(batch, "scrape-2")

        assert result.total_topics == 2
        doc = await store.load()
        ai = next(t for t in doc.topics if t.query == "AI")
        assert ai.trend_breakdown == ["chatgpt", "openai"]
        assert ai.first_seen == first_seen
        assert ai.last_seen == clock.now
        assert [h.scrape_id for h in ai.scrape_history] == ["scrape-1", "scrape-2"]

    @pytest.mark.asyncio
    async def test_observation_overwrites_metrics(self, engine, store):
        await engine.add_topics(
            [make_topic("AI", search_volume=1000, increase_percentage=200, active=True)], "s1"
        )
        await engine.add_topics(
            [make_topic("AI", search_volume=50, increase_percentage=10, active=False)], "s2"
        )

        topic = (await store.load()).topics[0]
        assert topic.search_volume == 50
        assert topic.increase_percentage == 10
        assert topic.active is False
        assert topic.scrape_history[-1].search_volume == 50
        assert topic.scrape_history[-1].active is False

    @pytest.mark.asyncio
    async def test_breakdown_appends_only_new_terms_in_order(self, engine, store):
        await engine.add_topics([make_topic("AI", trend_breakdown=["b", "a"])], "s1")
        await engine.add_topics([make_topic("AI", trend_breakdown=["c", "a", "B", "d"])], "s2")

        topic = (await store.load()).topics[0]
        assert topic.trend_breakdown == ["b", "a", "c", "B", "d"]

    @pytest.mark.asyncio
    async def test_case_insensitive_identity_keeps_first_casing(self, engine, store):
        await engine.add_topics([make_topic("Taylor Swift")], "s1")
        result = await engine.add_topics([make_topic("taylor swift")], "s2")

        doc = await store.load()
        assert result.total_topics == 1
        assert [t.query for t in doc.topics] == ["Taylor Swift"]

    @pytest.mark.asyncio
    async def test_categories_kept_from_first_observation(self, engine, store):
        await engine.add_topics(
            [make_topic("AI", categories=[Category(id=18, name="Technology")])], "s1"
        )
        await engine.add_topics(
            [make_topic("AI", categories=[Category(id=3, name="Business")])], "s2"
        )

        topic = (await store.load()).topics[0]
        assert [c.name for c in topic.categories] == ["Technology"]

    @pytest.mark.asyncio
    async def test_duplicates_within_one_batch_merge(self, engine, store):
        result = await engine.add_topics(
            [make_topic("AI", trend_breakdown=["x"]), make_topic("ai", trend_breakdown=["y"])],
            "s1",
        )

        doc = await store.load()
        assert result.added == 2
        assert result.total_topics == 1
        assert doc.topics[0].trend_breakdown == ["x", "y"]
        assert len(doc.topics[0].scrape_history) == 2

    @pytest.mark.asyncio
    async def test_embedding_survives_reobservation(self, engine, store):
        await engine.add_topics([make_topic("AI")], "s1")
        doc = await store.load()
        doc.topics[0].embedding = [0.1, 0.2]
        await store.save(doc)

        await engine.add_topics([make_topic("ai")], "s2")

        assert (await store.load()).topics[0].embedding == [0.1, 0.2]


class TestPruning:
    """Retention window pruning."""

    @pytest.mark.asyncio
    async def test_stale_topic_removed_even_if_absent_from_batch(self, engine, store, clock):
        await engine.add_topics([make_topic("Old News")], "s1")
        clock.advance_days(31)

        result = await engine.add_topics([make_topic("Fresh")], "s2")

        doc = await store.load()
        assert result.total_topics == 1
        assert [t.query for t in doc.topics] == ["Fresh"]
        assert [s.id for s in doc.scrapes] == ["s2"]
        assert doc.meta.total_scrapes == 1

    @pytest.mark.asyncio
    async def test_topic_exactly_at_cutoff_is_pruned(self, engine, store, clock):
        await engine.add_topics([make_topic("Edge")], "s1")
        clock.advance_days(30)

        await engine.add_topics([make_topic("Fresh")], "s2")

        assert [t.query for t in (await store.load()).topics] == ["Fresh"]

    @pytest.mark.asyncio
    async def test_reobserved_topic_is_kept(self, engine, store, clock):
        await engine.add_topics([make_topic("Evergreen")], "s1")
        clock.advance_days(31)

        await engine.add_topics([make_topic("evergreen")], "s2")

        doc = await store.load()
        assert len(doc.topics) == 1
        assert len(doc.topics[0].scrape_history) == 2

    @pytest.mark.asyncio
    async def test_total_scrapes_tracks_scrape_log(self, engine, store, clock):
        for i in range(3):
            await engine.add_topics([make_topic("AI")], f"s{i}")
            clock.advance_days(12)

        doc = await store.load()
        assert doc.meta.total_scrapes == len(doc.scrapes) == 3

        clock.advance_days(10)
        await engine.add_topics([make_topic("AI")], "s3")
        doc = await store.load()
        assert [s.id for s in doc.scrapes] == ["s2", "s3"]
        assert doc.meta.total_scrapes == 2


class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_save_leaves_persisted_document(self, engine, store, blob_store):
        await engine.add_topics([make_topic("AI")], "s1")
        before = blob_store.blobs[DOC_KEY]
        blob_store.fail_writes = True

        with pytest.raises(BlobStoreError):
            await engine.add_topics([make_topic("Crypto")], "s2")

        assert blob_store.blobs[DOC_KEY] == before
        assert [t["query"] for t in json.loads(before)["topics"]] == ["AI"]
        assert [t.query for t in (await store.load()).topics] == ["AI"]


def test_normalize_query_lowercases_only():
    assert normalize_query("Taylor Swift") == "taylor swift"
    assert normalize_query("AI ") == "ai "


class TestConcurrentWriters:

    @pytest.mark.asyncio
    async def test_concurrent_batches_both_survive(self, clock):
        blob_store = YieldingBlobStore()
        store = DocumentStore(blob_store, DOC_KEY, DocumentCache(60_000, clock=clock), clock=clock)
        engine = TopicMergeEngine(store)

        await asyncio.gather(
            engine.add_topics([make_topic("AI")], "s1"),
            engine.add_topics([make_topic("Crypto")], "s2"),
        )

        stored = json.loads(blob_store.blobs[DOC_KEY])
        assert sorted(t["query"] for t in stored["topics"]) == ["AI", "Crypto"]
        assert sorted(s["id"] for s in stored["scrapes"]) == ["s1", "s2"]
        assert stored["revision"] == 2

    @pytest.mark.asyncio
    async def test_uncached_store_still_serializes(self, clock):
        blob_store = YieldingBlobStore()
        store = DocumentStore(blob_store, DOC_KEY, DocumentCache(0, clock=clock), clock=clock)
        engine = TopicMergeEngine(store)

        await asyncio.gather(*(
            engine.add_topics([make_topic(f"topic {i}")], f"s{i}") for i in range(5)
        ))

        stored = json.loads(blob_store.blobs[DOC_KEY])
        assert len(stored["topics"]) == 5
        assert stored["revision"] == 5


class TestOlderDocuments:

    @pytest.mark.asyncio
    async def test_merge_into_document_with_odd_topics(self, engine, store, blob_store):
        blob_store.blobs[DOC_KEY] = json.dumps({
            "version": 1,
            "scrapes": [],
            "topics": [
                {"query": "", "searchVolume": 0, "firstSeen": 1, "lastSeen": START_MS},
                {"query": "Election", "searchVolume": 2350.0000000000005,
                 "firstSeen": 1, "lastSeen": START_MS},
            ],
            "meta": {"lastScrape": None, "totalScrapes": 0},
        }).encode()

        result = await engine.add_topics(
            [make_topic("election", search_volume=3000), make_topic("Crypto")], "s1"
        )

        assert result.total_topics == 3
        doc = await store.load()
        assert [t.query for t in doc.topics] == ["", "Election", "Crypto"]
        assert doc.topics[1].search_volume == 3000
        assert doc.revision == 1
