"""Service wiring: scrape, ingest and search orchestration."""

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from pydantic import Field

from .blob import BlobStore, create_blob_store
from .config import Settings
from .deduplicator import collect_topics
from .embeddings import EmbeddingPipeline, EmbeddingProvider, OpenAIEmbeddingProvider
from .errors import NoTopicsScrapedError
from .fetcher import TrendSource, build_sources
from .merge import TopicMergeEngine
from .models import AddTopicsResult, CamelModel, ScrapedTopic, SearchResult
from .search import SemanticSearchEngine
from .store import Clock, DocumentCache, DocumentStore, system_clock

logger = logging.getLogger(__name__)


class ScrapeResult(CamelModel):
    success: bool = True
    scraped: int
    sources: Dict[str, int] = Field(default_factory=dict)
    added: int
    total_topics: int
    embedded: int = 0


class IngestResult(CamelModel):
    success: bool = True
    added: int
    total_topics: int
    embedded: int = 0


class TrendService:
    """Holds the per-process components and runs the ingest and query flows."""

    def __init__(
        self,
        store: DocumentStore,
        provider: EmbeddingProvider,
        sources: Sequence[TrendSource] = (),
        retention_days: int = 30,
        embedding_batch_size: int = 100,
    ):
        self.store = store
        self.provider = provider
        self.sources = list(sources)
        self.merge_engine = TopicMergeEngine(store, retention_days=retention_days)
        self.pipeline = EmbeddingPipeline(store, provider, batch_size=embedding_batch_size)
        self.search_engine = SemanticSearchEngine(store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        blob_store: Optional[BlobStore] = None,
        provider: Optional[EmbeddingProvider] = None,
        sources: Optional[Sequence[TrendSource]] = None,
        clock: Clock = system_clock,
    ) -> "TrendService":
        cache = DocumentCache(settings.cache_ttl_ms, clock=clock)
        store = DocumentStore(
            blob_store or create_blob_store(settings),
            settings.document_key,
            cache,
            clock=clock,
        )
        return cls(
            store,
            provider or OpenAIEmbeddingProvider(settings.openai_api_key, settings.embedding_model),
            sources=build_sources(settings) if sources is None else sources,
            retention_days=settings.retention_days,
            embedding_batch_size=settings.embedding_batch_size,
        )

    async def start(self) -> None:
        await self.store.blob_store.connect()

    async def close(self) -> None:
        for source in self.sources:
            await source.close()
        close_provider = getattr(self.provider, "close", None)
        if close_provider:
            await close_provider()
        await self.store.blob_store.close()

    async def ingest(self, topics: List[ScrapedTopic]) -> IngestResult:
        """Store externally scraped topics under a fresh scrape id."""
        scrape_id = str(uuid.uuid4())
        logger.info(f"Receiving {len(topics)} externally scraped topics (scrape {scrape_id})")
        result = await self.merge_engine.add_topics(topics, scrape_id)
        embedded = await self.pipeline.generate_embeddings()
        return IngestResult(
            added=result.added, total_topics=result.total_topics, embedded=embedded
        )

    async def scrape_and_store(self) -> ScrapeResult:
        """Scrape every source, merge the unique topics and embed the new ones."""
        collected = await collect_topics(self.sources)

        if not collected.topics:
            raise NoTopicsScrapedError("No topics scraped from any source")

        scrape_id = str(uuid.uuid4())
        result: AddTopicsResult = await self.merge_engine.add_topics(collected.topics, scrape_id)
        logger.info(f"Stored: {result.added} topics ({result.total_topics} total)")

        embedded = await self.pipeline.generate_embeddings()

        return ScrapeResult(
            scraped=len(collected.topics),
            sources=collected.sources,
            added=result.added,
            total_topics=result.total_topics,
            embedded=embedded,
        )

    async def search(
        self, query: str, limit: int = 20, min_similarity: float = 0.25
    ) -> List[SearchResult]:
        """Embed free text and rank stored topics against it."""
        query_vector = await self.provider.embed(query)
        return await self.search_engine.search(query_vector, limit, min_similarity)
