"""Main entry point - HTTP server plus an optional scheduled scrape loop."""

import asyncio
import logging
import random
import signal
import sys

import uvicorn

from .api import create_app
from .config import Settings, settings
from .errors import TrendSearchError
from .service import TrendService

# Configure structured JSON logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)
logger = logging.getLogger(__name__)

# Shutdown flag
_shutdown = asyncio.Event()


async def scheduled_scrape(service: TrendService, interval_minutes: int) -> None:
    """Scrape on a fixed interval (with jitter) until shutdown is signaled."""
    logger.info(f"Scheduled scraping every {interval_minutes} minutes")

    while not _shutdown.is_set():
        try:
            result = await service.scrape_and_store()
            logger.info(
                f"Scheduled scrape stored {result.scraped} topics "
                f"({result.total_topics} total, {result.embedded} embedded)"
            )
        except TrendSearchError as e:
            logger.error(f"Scheduled scrape failed: {e}")
        except Exception as e:
            logger.exception(f"Scheduled scrape crashed: {e}")

        sleep_time = interval_minutes * 60 + random.uniform(0, 30)
        try:
            await asyncio.wait_for(_shutdown.wait(), timeout=sleep_time)
        except asyncio.TimeoutError:
            pass  # Normal timeout, scrape again


async def run_server(service: TrendService, config: Settings) -> None:
    """Run the FastAPI server. Uvicorn handles SIGINT/SIGTERM while it serves."""
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(service, config),
            host=config.host,
            port=config.port,
            log_level="warning",
        )
    )

    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        # The process ends with the server
        _shutdown.set()


def handle_shutdown(sig, frame):
    """Signal handler for graceful shutdown."""
    logger.info(f"Received signal {sig}, initiating shutdown...")
    _shutdown.set()


async def main() -> None:
    """Main entry point."""
    logger.info("=" * 60)
    logger.info("Trend Search starting...")
    logger.info(f"Blob backend: {settings.blob_backend} ({settings.document_key})")
    logger.info(f"Retention: {settings.retention_days} days, cache TTL: {settings.cache_ttl_seconds}s")
    logger.info(f"Listening on {settings.host}:{settings.port}")
    logger.info("=" * 60)

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    service = TrendService.from_settings(settings)
    await service.start()

    tasks = [asyncio.create_task(run_server(service, settings))]
    if settings.scrape_interval_minutes > 0:
        tasks.append(
            asyncio.create_task(scheduled_scrape(service, settings.scrape_interval_minutes))
        )

    logger.info(f"Started {len(tasks)} tasks")

    await _shutdown.wait()

    logger.info("Shutting down...")

    # Cancel all tasks
    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)
    await service.close()

    logger.info("Shutdown complete")


def run():
    """Entry point for running the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
