"""FastAPI application: scrape/ingest, search, stats, trending and health endpoints."""

import json
import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Settings
from .errors import DocumentConflictError, NoTopicsScrapedError
from .models import IngestPayload
from .service import TrendService

logger = logging.getLogger(__name__)


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class Unauthorized(Exception):
    pass


def get_service(request: Request) -> TrendService:
    return request.app.state.service


def require_bearer(request: Request, authorization: Optional[str] = Header(default=None)) -> None:
    """Static bearer-token check for the scrape endpoints."""
    settings: Settings = request.app.state.settings
    if authorization != f"Bearer {settings.cron_secret}":
        raise Unauthorized()


def create_app(service: TrendService, settings: Settings) -> FastAPI:
    """Build the API around an already constructed service."""
    app = FastAPI(title="Trend Search", version="1.0.0")
    app.state.service = service
    app.state.settings = settings
    app.state.started_at = datetime.now()

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized):
        return error_response("Unauthorized", 401)

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return error_response(f"Invalid request: {problems}", 400)

    @app.exception_handler(DocumentConflictError)
    async def conflict_handler(request: Request, exc: DocumentConflictError):
        logger.warning(f"Write conflict on {request.url.path}: {exc}")
        return error_response(str(exc), 409)

    @app.get("/api/scrape", dependencies=[Depends(require_bearer)])
    async def scrape(service: TrendService = Depends(get_service)):
        """Scrape every configured source and store the results."""
        logger.info(f"=== Scrape triggered === {datetime.now().isoformat()}")
        try:
            result = await service.scrape_and_store()
        except NoTopicsScrapedError as e:
            return error_response(str(e), 500)
        except DocumentConflictError:
            raise
        except Exception as e:
            logger.error(f"Scrape failed: {e}")
            return error_response(str(e), 500)
        return result.to_json_dict()

    @app.post("/api/scrape", dependencies=[Depends(require_bearer)])
    async def ingest(request: Request, service: TrendService = Depends(get_service)):
        """Accept topics scraped elsewhere and pushed to this service."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response("Request body must be JSON", 400)

        try:
            payload = IngestPayload.model_validate(body)
        except ValidationError as e:
            return error_response(
                f"Body must be a list of topics or an object with a 'topics' or 'data' list "
                f"({e.error_count()} validation errors)",
                400,
            )

        topics = payload.topics
        if not topics:
            return error_response("No topics in request body", 400)

        try:
            result = await service.ingest(topics)
        except DocumentConflictError:
            raise
        except Exception as e:
            logger.error(f"Ingest failed: {e}")
            return error_response(str(e), 500)
        return result.to_json_dict()

    @app.get("/api/search")
    async def search(
        q: Optional[str] = None,
        limit: int = Query(default=20, ge=0),
        min_sim: float = Query(default=0.25),
        service: TrendService = Depends(get_service),
    ):
        """Semantic search over stored topics."""
        if not q or not q.strip():
            return error_response('Missing query parameter "q"', 400)

        try:
            results = await service.search(q, limit=limit, min_similarity=min_sim)
        except Exception as e:
            logger.error(f"Search error: {e}")
            return error_response(str(e), 500)

        return {
            "query": q,
            "results": [r.to_json_dict() for r in results],
            "count": len(results),
            "timestamp": int(time.time() * 1000),
        }

    @app.get("/api/stats")
    async def stats(service: TrendService = Depends(get_service)):
        """Counts and timestamps of the stored document."""
        result = await service.search_engine.get_stats()
        return result.to_json_dict()

    @app.get("/api/trending")
    async def trending(
        limit: int = Query(default=50, ge=0),
        service: TrendService = Depends(get_service),
    ):
        """Topics seen in the last day, by search volume."""
        topics = await service.search_engine.get_trending(limit)
        return {
            "trending": [t.to_json_dict() for t in topics],
            "count": len(topics),
            "timestamp": int(time.time() * 1000),
        }

    @app.get("/healthz")
    async def healthcheck(service: TrendService = Depends(get_service)):
        """Health check endpoint for container orchestration."""
        uptime_seconds = (datetime.now() - app.state.started_at).total_seconds()

        store_healthy = True
        try:
            await service.store.blob_store.list(service.store.prefix)
        except Exception as e:
            store_healthy = False
            logger.error(f"Blob store health check failed: {e}")

        return {
            "status": "healthy" if store_healthy else "unhealthy",
            "uptimeSeconds": int(uptime_seconds),
            "store": "connected" if store_healthy else "disconnected",
        }

    return app
