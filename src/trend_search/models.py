"""Pydantic data models for topics and the trends document."""

import math

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, RootModel, field_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Optional, Union


def _round_number(value):
    """Accept float counts such as 1100000.0000000002 by rounding to the nearest integer."""
    if isinstance(value, float) and math.isfinite(value):
        return int(round(value))
    return value


# Integer field that tolerates the float values scrapers and older documents produce
WholeNumber = Annotated[int, BeforeValidator(_round_number)]


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, as stored in the document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Category(CamelModel):
    """A Google Trends category."""

    id: int
    name: str


class ScrapedTopic(CamelModel):
    """A fresh observation of a topic, as produced by a source or pushed by a client."""

    query: str = Field(..., description="Trending search term")
    search_volume: WholeNumber = Field(default=0, ge=0, description="Estimated search volume")
    increase_percentage: float = Field(default=0, ge=0, description="Search increase in percent")
    categories: List[Category] = Field(default_factory=list)
    trend_breakdown: List[str] = Field(default_factory=list, description="Related search terms")
    active: bool = Field(default=True, description="Whether the trend is still active")
    hours_ago: Optional[WholeNumber] = Field(default=None, description="Hours since the trend started")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value


class ScrapeHistoryEntry(CamelModel):
    """One observation of a topic within a scrape batch."""

    scrape_id: str
    timestamp: int
    search_volume: WholeNumber = 0
    active: bool = True


class Topic(CamelModel):
    """
    A tracked topic stored in the document.

    Stored topics are read back as they were written, including documents
    from earlier writers: a blank query or a negative metric is kept rather
    than rejected, so one odd entry never makes the document unreadable.
    """

    query: str = ""
    search_volume: WholeNumber = 0
    increase_percentage: float = 0
    categories: List[Category] = Field(default_factory=list)
    trend_breakdown: List[str] = Field(default_factory=list)
    active: bool = True
    hours_ago: Optional[WholeNumber] = None
    first_seen: int
    last_seen: int
    embedding: Optional[List[float]] = None
    scrape_history: List[ScrapeHistoryEntry] = Field(default_factory=list)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class ScrapeRecord(CamelModel):
    """One ingest event."""

    id: str
    timestamp: int
    topic_count: int


class DocumentMeta(CamelModel):
    last_scrape: Optional[int] = None
    total_scrapes: int = 0


class TrendsDocument(CamelModel):
    """The whole database: every known topic, the scrape log and metadata."""

    version: int = 1
    revision: int = Field(default=0, description="Save counter for optimistic concurrency")
    scrapes: List[ScrapeRecord] = Field(default_factory=list)
    topics: List[Topic] = Field(default_factory=list)
    meta: DocumentMeta = Field(default_factory=DocumentMeta)


class AddTopicsResult(CamelModel):
    added: int
    total_topics: int


class SearchResult(CamelModel):
    """A topic scored against a search query."""

    query: str
    similarity: float
    search_volume: int
    increase_percentage: float
    categories: List[Category]
    trend_breakdown: List[str]
    first_seen: int
    last_seen: int
    active: bool
    days_ago: int


class TrendingTopic(CamelModel):
    query: str
    search_volume: int
    increase_percentage: float
    categories: List[Category]
    trend_breakdown: List[str]
    first_seen: int
    last_seen: int
    active: bool
    hours_ago: int


class Stats(CamelModel):
    total_topics: int
    total_scrapes: int
    topics_with_embeddings: int
    last_scrape: Optional[str] = None
    oldest_topic: Optional[str] = None


class TopicsEnvelope(BaseModel):
    """Ingest body wrapped as {"topics": [...]}."""

    model_config = ConfigDict(extra="forbid")

    topics: List[ScrapedTopic]


class DataEnvelope(BaseModel):
    """Ingest body wrapped as {"data": [...]}."""

    model_config = ConfigDict(extra="forbid")

    data: List[ScrapedTopic]


class IngestPayload(RootModel[Union[List[ScrapedTopic], TopicsEnvelope, DataEnvelope]]):
    """Body of an external push: a bare list of topics or one of the known envelopes."""

    @property
    def topics(self) -> List[ScrapedTopic]:
        if isinstance(self.root, TopicsEnvelope):
            return self.root.topics
        if isinstance(self.root, DataEnvelope):
            return self.root.data
        return self.root
