"""Embedding generation using the OpenAI embeddings API."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from .errors import EmbeddingProviderError
from .models import Topic
from .store import DocumentStore

logger = logging.getLogger(__name__)

RELATED_TERMS_IN_TEXT = 5


class EmbeddingProvider(ABC):
    """Turns text into fixed-length float vectors."""

    @abstractmethod
    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts, returning vectors in input order."""

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_many([text])
        return vectors[0]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings. The client is created on first use."""

    def __init__(self, api_key: Optional[str], model: str = "text-embedding-3-small"):
        self.api_key = api_key
        self.model = model
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            response = await self._get_client().embeddings.create(model=self.model, input=texts)
        except OpenAIError as e:
            raise EmbeddingProviderError(f"OpenAI embeddings request failed: {e}") from e

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingProviderError(
                f"Expected {len(texts)} embeddings, provider returned {len(data)}"
            )
        return [item.embedding for item in data]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def embedding_text(topic: Topic) -> str:
    """
    Text submitted for a topic's embedding.

    The query, then up to five related terms, then the category names, e.g.
    "AI. Related: chatgpt, openai. Category: Technology".
    """
    parts = [topic.query]
    if topic.trend_breakdown:
        parts.append(f"Related: {', '.join(topic.trend_breakdown[:RELATED_TERMS_IN_TEXT])}")
    if topic.categories:
        parts.append(f"Category: {', '.join(c.name for c in topic.categories)}")
    return ". ".join(parts)


class EmbeddingPipeline:
    """Fills in missing topic embeddings in bounded batches."""

    def __init__(self, store: DocumentStore, provider: EmbeddingProvider, batch_size: int = 100):
        self.store = store
        self.provider = provider
        self.batch_size = batch_size

    async def get_topics_without_embeddings(self) -> List[Topic]:
        document = await self.store.load()
        return [t for t in document.topics if not t.has_embedding]

    async def update_embeddings(self, embedding_map: Dict[str, List[float]]) -> int:
        """Overwrite the embedding of every topic whose query is a key. Returns topics updated."""
        async with self.store.write_lock:
            document = await self.store.load()
            updated = 0
            for topic in document.topics:
                vector = embedding_map.get(topic.query)
                if vector:
                    topic.embedding = list(vector)
                    updated += 1
            await self.store.save(document)
        return updated

    async def generate_embeddings(self) -> int:
        """
        Embed every topic that lacks a vector.

        A failed batch is logged and skipped; its topics stay unembedded until
        the next run. Returns the number of embeddings saved.
        """
        # The embeddings API rejects empty input; blank queries only come from older documents
        topics = [t for t in await self.get_topics_without_embeddings() if t.query.strip()]

        if not topics:
            logger.info("All topics already have embeddings.")
            return 0

        logger.info(f"Generating embeddings for {len(topics)} topics...")
        embedding_map: Dict[str, List[float]] = {}

        for start in range(0, len(topics), self.batch_size):
            batch = topics[start:start + self.batch_size]
            batch_number = start // self.batch_size + 1
            try:
                vectors = await self.provider.embed_many([embedding_text(t) for t in batch])
            except Exception as e:
                logger.error(f"Embedding batch {batch_number} failed: {e}")
                continue

            for topic, vector in zip(batch, vectors):
                embedding_map[topic.query] = vector
            logger.info(f"Embedding batch {batch_number}: {len(batch)} embeddings")

        if not embedding_map:
            logger.warning("No embeddings generated")
            return 0

        updated = await self.update_embeddings(embedding_map)
        logger.info(f"Embeddings saved for {updated} topics.")
        return updated
