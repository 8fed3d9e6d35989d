"""Blob store adapters: SQLite for local development, Vercel Blob for production."""

import aiosqlite
import asyncio
import httpx
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from pydantic import BaseModel

from .config import Settings
from .errors import BlobStoreError

logger = logging.getLogger(__name__)


class BlobObject(BaseModel):
    """Metadata of a stored blob."""

    pathname: str
    url: str
    size: int = 0
    uploaded_at: Optional[datetime] = None


class BlobStore(ABC):
    """Generic key/value object store."""

    async def connect(self) -> None:
        """Open any underlying connections."""

    async def close(self) -> None:
        """Release any underlying connections."""

    @abstractmethod
    async def put(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> BlobObject:
        """Store content under key."""

    @abstractmethod
    async def list(self, prefix: str = "") -> List[BlobObject]:
        """List blobs whose pathname starts with prefix."""

    @abstractmethod
    async def get(self, url: str) -> bytes:
        """Fetch blob content by URL."""

    @abstractmethod
    async def delete(self, url: str) -> None:
        """Delete the blob at URL."""


class SqliteBlobStore(BlobStore):
    """Blob store kept in a local SQLite database with WAL mode."""

    URL_SCHEME = "sqlite-blob://"

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and create the blobs table."""
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        async with self._lock:
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    pathname TEXT PRIMARY KEY,
                    content BLOB NOT NULL,
                    content_type TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL
                )
            """)
            await self._connection.commit()
        logger.info(f"Blob store connected: {self.db_path}")

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Blob store connection closed")

    async def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.connect()
        return self._connection

    def _url_for(self, pathname: str) -> str:
        return f"{self.URL_SCHEME}{pathname}"

    def _pathname_for(self, url: str) -> str:
        if not url.startswith(self.URL_SCHEME):
            raise BlobStoreError(f"Not a local blob URL: {url}")
        return url[len(self.URL_SCHEME):]

    async def put(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> BlobObject:
        conn = await self._conn()
        uploaded_at = datetime.now(timezone.utc)
        verb = "INSERT OR REPLACE" if overwrite else "INSERT"

        async with self._lock:
            try:
                await conn.execute(
                    f"""
                    {verb} INTO blobs (pathname, content, content_type, uploaded_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, content, content_type, uploaded_at.isoformat()),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as e:
                raise BlobStoreError(f"Blob already exists: {key}") from e

        return BlobObject(
            pathname=key, url=self._url_for(key), size=len(content), uploaded_at=uploaded_at
        )

    async def list(self, prefix: str = "") -> List[BlobObject]:
        conn = await self._conn()
        async with self._lock:
            cursor = await conn.execute(
                """
                SELECT pathname, length(content), uploaded_at FROM blobs
                WHERE substr(pathname, 1, ?) = ?
                ORDER BY pathname
                """,
                (len(prefix), prefix),
            )
            rows = await cursor.fetchall()

        return [
            BlobObject(
                pathname=pathname,
                url=self._url_for(pathname),
                size=size,
                uploaded_at=datetime.fromisoformat(uploaded_at),
            )
            for pathname, size, uploaded_at in rows
        ]

    async def get(self, url: str) -> bytes:
        pathname = self._pathname_for(url)
        conn = await self._conn()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT content FROM blobs WHERE pathname = ?", (pathname,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise BlobStoreError(f"Blob not found: {pathname}")
        return bytes(row[0])

    async def delete(self, url: str) -> None:
        pathname = self._pathname_for(url)
        conn = await self._conn()
        async with self._lock:
            await conn.execute("DELETE FROM blobs WHERE pathname = ?", (pathname,))
            await conn.commit()


class VercelBlobStore(BlobStore):
    """Client for the Vercel Blob HTTP API."""

    API_URL = "https://blob.vercel-storage.com"
    API_VERSION = "7"

    def __init__(self, token: str, api_url: str = API_URL, timeout: float = 30.0):
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.connect()
        return self._client

    def _headers(self) -> dict:
        return {
            "authorization": f"Bearer {self._token}",
            "x-api-version": self.API_VERSION,
        }

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._http()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Vercel Blob {method} failed: {e}") from e
        if response.status_code >= 400:
            raise BlobStoreError(
                f"Vercel Blob {method} {response.status_code}: {response.text[:200]}"
            )
        return response

    async def put(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> BlobObject:
        headers = self._headers()
        headers.update({
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1" if overwrite else "0",
        })
        response = await self._request(
            "PUT", f"{self._api_url}/{quote(key)}", content=content, headers=headers
        )
        data = response.json()
        return BlobObject(pathname=data.get("pathname", key), url=data["url"], size=len(content))

    async def list(self, prefix: str = "") -> List[BlobObject]:
        blobs: List[BlobObject] = []
        cursor: Optional[str] = None

        while True:
            params = {"prefix": prefix, "limit": "1000"}
            if cursor:
                params["cursor"] = cursor
            response = await self._request(
                "GET", f"{self._api_url}/", params=params, headers=self._headers()
            )
            data = response.json()
            for item in data.get("blobs", []):
                blobs.append(
                    BlobObject(
                        pathname=item["pathname"],
                        url=item["url"],
                        size=item.get("size", 0),
                        uploaded_at=item.get("uploadedAt"),
                    )
                )
            if not data.get("hasMore"):
                break
            cursor = data.get("cursor")

        return blobs

    async def get(self, url: str) -> bytes:
        response = await self._request("GET", url)
        return response.content

    async def delete(self, url: str) -> None:
        await self._request(
            "POST", f"{self._api_url}/delete", json={"urls": [url]}, headers=self._headers()
        )


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the blob store selected by settings."""
    if settings.blob_backend == "vercel":
        if not settings.blob_read_write_token:
            raise ValueError("BLOB_READ_WRITE_TOKEN is required for the vercel blob backend")
        return VercelBlobStore(settings.blob_read_write_token)
    return SqliteBlobStore(settings.blob_sqlite_path)
