"""Shared fixtures: in-memory blob store, fake clock and fake embedding provider."""

import asyncio
from typing import Dict, List, Optional

import pytest

from trend_search.blob import BlobObject, BlobStore
from trend_search.config import Settings
from trend_search.embeddings import EmbeddingProvider
from trend_search.errors import BlobStoreError, EmbeddingProviderError
from trend_search.models import Category, ScrapedTopic
from trend_search.service import TrendService
from trend_search.store import DAY_MS, DocumentCache, DocumentStore

DOC_KEY = "now-trending/trends.json"
START_MS = 1_760_000_000_000


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    def advance_days(self, days: float) -> None:
        self.now += int(days * DAY_MS)


class MemoryBlobStore(BlobStore):
    """Dict-backed blob store that counts reads and can be told to fail."""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.list_calls = 0
        self.get_calls = 0
        self.put_calls = 0
        self.fail_reads = False
        self.fail_writes = False

    async def put(self, key, content, content_type="application/octet-stream", overwrite=True):
        if self.fail_writes:
            raise BlobStoreError("write refused")
        if not overwrite and key in self.blobs:
            raise BlobStoreError(f"Blob already exists: {key}")
        self.put_calls += 1
        self.blobs[key] = content
        return BlobObject(pathname=key, url=f"memory://{key}", size=len(content))

    async def list(self, prefix=""):
        self.list_calls += 1
        if self.fail_reads:
            raise BlobStoreError("list refused")
        return [
            BlobObject(pathname=k, url=f"memory://{k}", size=len(v))
            for k, v in sorted(self.blobs.items())
            if k.startswith(prefix)
        ]

    async def get(self, url):
        self.get_calls += 1
        if self.fail_reads:
            raise BlobStoreError("get refused")
        return self.blobs[url[len("memory://"):]]

    async def delete(self, url):
        self.blobs.pop(url[len("memory://"):], None)


class YieldingBlobStore(MemoryBlobStore):
    """Gives other tasks a chance to run between every read and write."""

    async def list(self, prefix=""):
        await asyncio.sleep(0)
        return await super().list(prefix)

    async def get(self, url):
        await asyncio.sleep(0)
        return await super().get(url)

    async def put(self, key, content, content_type="application/octet-stream", overwrite=True):
        await asyncio.sleep(0)
        return await super().put(key, content, content_type, overwrite)


class FakeEmbeddingProvider(EmbeddingProvider):
    """Returns preset vectors per text, or a vector derived from the text length."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dim: int = 3):
        self.vectors = vectors or {}
        self.dim = dim
        self.calls: List[List[str]] = []
        self.fail_on_call: set = set()

    async def embed_many(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) in self.fail_on_call:
            raise EmbeddingProviderError("provider unavailable")
        return [self.vectors.get(t, [float(len(t)), 1.0, 0.0][: self.dim]) for t in texts]


def make_topic(query: str, **kwargs) -> ScrapedTopic:
    """Helper to create a ScrapedTopic with sensible defaults."""
    return ScrapedTopic(
        query=query,
        search_volume=kwargs.pop("search_volume", 1000),
        increase_percentage=kwargs.pop("increase_percentage", 100),
        categories=kwargs.pop("categories", [Category(id=18, name="Technology")]),
        trend_breakdown=kwargs.pop("trend_breakdown", []),
        active=kwargs.pop("active", True),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def cache(clock):
    return DocumentCache(60_000, clock=clock)


@pytest.fixture
def store(blob_store, cache, clock):
    return DocumentStore(blob_store, DOC_KEY, cache, clock=clock)


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def settings():
    return Settings(cron_secret="test-secret", openai_api_key="sk-test")


@pytest.fixture
def service(settings, blob_store, provider, clock):
    return TrendService.from_settings(
        settings, blob_store=blob_store, provider=provider, sources=[], clock=clock
    )
