"""Document store: the whole trends database as one JSON blob."""

import asyncio
import json
import logging
import time
from typing import Callable, Optional

from .blob import BlobObject, BlobStore
from .errors import DocumentConflictError
from .models import TrendsDocument

logger = logging.getLogger(__name__)

# Returns the current time in epoch milliseconds
Clock = Callable[[], int]

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000


def system_clock() -> int:
    return int(time.time() * 1000)


def empty_document() -> TrendsDocument:
    """A freshly initialized document."""
    return TrendsDocument()


class DocumentCache:
    """Holds the last loaded or saved document for a freshness window."""

    def __init__(self, ttl_ms: int, clock: Clock = system_clock):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._document: Optional[TrendsDocument] = None
        self._stored_at = 0

    def get(self) -> Optional[TrendsDocument]:
        """Return the cached document, or None when empty or stale."""
        if self._document is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_ms:
            return None
        return self._document

    def put(self, document: TrendsDocument) -> None:
        self._document = document
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._document = None
        self._stored_at = 0


class DocumentStore:
    """
    Loads and saves the trends document through a blob store.

    Reads fail soft (an unreadable document is treated as empty). Writes fail
    hard and are rejected with DocumentConflictError when the stored revision
    moved past the revision the caller loaded.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        key: str,
        cache: DocumentCache,
        clock: Clock = system_clock,
    ):
        self.blob_store = blob_store
        self.key = key
        self.cache = cache
        self.clock = clock
        # Serializes load-modify-save cycles within this process
        self.write_lock = asyncio.Lock()

    @property
    def prefix(self) -> str:
        return self.key.rsplit(".", 1)[0]

    async def _find_blob(self) -> Optional[BlobObject]:
        blobs = await self.blob_store.list(self.prefix)
        for blob in blobs:
            if blob.pathname == self.key:
                return blob
        return None

    async def _read(self) -> Optional[TrendsDocument]:
        """Fetch and parse the persisted document. Errors propagate."""
        blob = await self._find_blob()
        if blob is None:
            return None
        raw = await self.blob_store.get(blob.url)
        return TrendsDocument.model_validate_json(raw)

    async def _stored_revision(self) -> int:
        """
        Revision of the persisted document, without validating its contents.

        A missing or unparseable document counts as revision 0. Listing or
        fetching errors propagate.
        """
        blob = await self._find_blob()
        if blob is None:
            return 0
        raw = await self.blob_store.get(blob.url)
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Stored trends document {self.key} is not valid JSON: {e}")
            return 0
        revision = data.get("revision", 0) if isinstance(data, dict) else 0
        return revision if isinstance(revision, int) else 0

    async def load(self) -> TrendsDocument:
        """Return a private copy of the current document."""
        cached = self.cache.get()
        if cached is not None:
            return cached.model_copy(deep=True)

        try:
            document = await self._read()
        except Exception as e:
            logger.error(f"Failed to load trends document {self.key}: {e}")
            return empty_document()

        if document is None:
            logger.info(f"No trends document at {self.key}, starting empty")
            return empty_document()

        self.cache.put(document)
        return document.model_copy(deep=True)

    async def save(self, document: TrendsDocument) -> None:
        """Write the whole document, overwriting the stored copy."""
        try:
            stored_revision = await self._stored_revision()
        except Exception as e:
            logger.error(f"Failed to read trends document before save: {e}")
            raise

        if stored_revision > document.revision:
            self.cache.invalidate()
            raise DocumentConflictError(document.revision, stored_revision)

        document.revision = stored_revision + 1
        payload = json.dumps(document.to_json_dict(), separators=(",", ":")).encode("utf-8")

        try:
            await self.blob_store.put(
                self.key, payload, content_type="application/json", overwrite=True
            )
        except Exception as e:
            document.revision = stored_revision
            logger.error(f"Failed to save trends document {self.key}: {e}")
            raise

        self.cache.put(document.model_copy(deep=True))
        logger.debug(f"Saved trends document revision {document.revision} ({len(payload)} bytes)")
