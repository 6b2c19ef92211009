"""Process-wide catalog ingest entry points used by the API router and the CLI.

One ingest runs at a time per process. `trigger_ingest` claims the run slot
synchronously and schedules the crawl on the running event loop, so the HTTP
caller gets an answer immediately and polls `get_ingest_status` afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Tuple

from app.config import IngestSettings
from app.services.crawl.fetcher import Fetcher
from app.services.crawl.gateway import CatalogGateway, InMemoryCatalogGateway
from app.services.crawl.orchestrator import CatalogIngestor
from app.services.crawl.status import CrawlRun, IngestionStatusTracker
from app.services.crawl.translation_memo import TranslationMemo
from app.services.translator import get_translator

logger = logging.getLogger(__name__)

_tracker = IngestionStatusTracker()
_tasks: Set[asyncio.Task] = set()
_memory_gateway: Optional[InMemoryCatalogGateway] = None


def get_tracker() -> IngestionStatusTracker:
    return _tracker


def build_gateway(settings: IngestSettings) -> CatalogGateway:
    global _memory_gateway
    if settings.store == "memory":
        if _memory_gateway is None:
            _memory_gateway = InMemoryCatalogGateway()
        return _memory_gateway
    if settings.store == "neo4j":
        from app.services.graph.catalog import GraphCatalogGateway

        return GraphCatalogGateway()
    raise RuntimeError(f"Unknown CATALOG_STORE: {settings.store!r} (expected neo4j or memory)")


async def run_ingest(
    settings: Optional[IngestSettings] = None,
    *,
    tracker: Optional[IngestionStatusTracker] = None,
    fetcher: Any = None,
    gateway: Optional[CatalogGateway] = None,
    translator: Any = None,
) -> CrawlRun:
    """Run one full ingest on an already-claimed tracker and return its final state."""
    settings = settings or IngestSettings.from_env()
    tracker = tracker or _tracker
    owns_fetcher = fetcher is None
    try:
        gateway = gateway or build_gateway(settings)
        translator = translator or get_translator(settings)
        if owns_fetcher:
            fetcher = Fetcher(timeout=settings.timeout, headers=settings.headers)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Catalog ingest setup failed")
        return tracker.fail(str(exc))

    ingestor = CatalogIngestor(
        fetcher=fetcher,
        gateway=gateway,
        memo=TranslationMemo(translator, batch_limit=settings.translate_batch_limit),
        base_url=settings.base_url,
        batch_size=settings.batch_size,
        tracker=tracker,
    )
    try:
        return await ingestor.run()
    finally:
        if owns_fetcher:
            await fetcher.aclose()


def trigger_ingest(
    settings: Optional[IngestSettings] = None,
    *,
    tracker: Optional[IngestionStatusTracker] = None,
    **deps: Any,
) -> Tuple[bool, CrawlRun]:
    """Start a background ingest unless one is already running.

    Must be called from inside a running event loop. Returns (started, snapshot).
    """
    tracker = tracker or _tracker
    # Raises before the run slot is claimed when there is no loop to run on
    loop = asyncio.get_running_loop()
    started, snapshot = tracker.try_start()
    if not started:
        logger.info("Ingest already running (%s%%), not starting another", snapshot.progress)
        return False, snapshot
    coro = run_ingest(settings, tracker=tracker, **deps)
    try:
        task = loop.create_task(coro)
    except Exception as exc:
        coro.close()
        tracker.fail(str(exc), message="Crawl could not be scheduled")
        raise
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return True, snapshot


def get_ingest_status(tracker: Optional[IngestionStatusTracker] = None) -> Dict[str, Any]:
    return (tracker or _tracker).snapshot().to_dict()


async def wait_idle() -> None:
    """Wait for background ingests started by this process to finish."""
    while _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)
