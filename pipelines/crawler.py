"""Domain crawler feeding the ingestion pipeline.

Seeds the frontier from sitemaps, renders pages with a bounded pool of
workers, and hands each page's cleaned text to the ingestion pipeline.
Only URLs on the seed hostname are ever enqueued.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set

from config.settings import CrawlConfig
from indexer.errors import ConfigurationError
from indexer.models import Client
from observability import prometheus_metrics as metrics
from .ingestion import IngestionPipeline
from .parser import parse_html, extract_links
from .policy import RobotsPolicy
from .rendering import HttpFetcher, PageRenderer, RenderSession, create_renderer
from .sitemaps import fetch_sitemap_urls
from .urls import (
    normalize_start_url,
    extract_domain,
    normalize_url_for_dedup,
    should_skip_url,
    is_same_domain,
)

logger = logging.getLogger(__name__)


class UrlState(str, Enum):
    """Lifecycle of a URL within one crawl run."""
    QUEUED = "queued"
    FETCHED = "fetched"
    SKIPPED = "skipped"
    RENDER_FAILED = "render_failed"
    INGEST_FAILED = "ingest_failed"
    INGESTED = "ingested"
    LINKS_ENQUEUED = "links_enqueued"


@dataclass(frozen=True)
class FrontierEntry:
    """A URL waiting to be processed and the link depth it was found at."""
    url: str
    depth: int


@dataclass
class CrawlProgress:
    """Counter snapshot handed to progress callbacks."""
    pages_visited: int
    pages_stored: int
    chunks_stored: int
    total_discovered: int


@dataclass
class CrawlStats:
    """Statistics for a finished crawl."""
    domain: str
    start_url: str
    pages_visited: int = 0
    pages_stored: int = 0
    pages_skipped: int = 0
    pages_failed: int = 0
    chunks_stored: int = 0
    total_discovered: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['start_time'] = self.start_time.isoformat() if self.start_time else None
        data['end_time'] = self.end_time.isoformat() if self.end_time else None
        data['duration'] = self.duration
        return data


ProgressCallback = Callable[[CrawlProgress], Awaitable[None]]


class CrawlRun:
    """Mutable state of one crawl, shared by all workers.

    Counters, the discovered set and the dispatch budget are only touched
    under ``lock``.
    """

    def __init__(self, client: Client, domain: str, start_url: str, max_pages: int):
        self.client = client
        self.domain = domain
        self.start_url = start_url
        self.max_pages = max_pages
        self.lock = asyncio.Lock()

        self.pages_visited = 0
        self.pages_stored = 0
        self.pages_skipped = 0
        self.pages_failed = 0
        self.chunks_stored = 0
        self.dispatched = 0

        self.url_states: Dict[str, UrlState] = {}
        self.discovered: Set[str] = set()
        self.start_time = datetime.now(timezone.utc)
        self._started = time.monotonic()

    async def add_discovered(self, url: str) -> bool:
        """Register a normalized URL; False if already seen or the page cap is reached."""
        async with self.lock:
            if url in self.discovered or len(self.discovered) >= self.max_pages:
                return False
            self.discovered.add(url)
            self.url_states[url] = UrlState.QUEUED
            return True

    async def try_dispatch(self) -> bool:
        """Take one unit of the page budget."""
        async with self.lock:
            if self.dispatched >= self.max_pages:
                return False
            self.dispatched += 1
            return True

    async def set_state(self, url: str, state: UrlState):
        async with self.lock:
            self.url_states[url] = state
        if state in (UrlState.SKIPPED, UrlState.RENDER_FAILED, UrlState.INGEST_FAILED, UrlState.INGESTED):
            metrics.record_page_outcome(state.value)

    async def record_visit(self):
        async with self.lock:
            self.pages_visited += 1

    async def record_skip(self, url: str):
        async with self.lock:
            self.pages_skipped += 1
        await self.set_state(url, UrlState.SKIPPED)

    async def record_failure(self, url: str, state: UrlState):
        async with self.lock:
            self.pages_failed += 1
        await self.set_state(url, state)

    async def record_ingest(self, url: str, chunks_created: int, chunks_stored: int):
        async with self.lock:
            if chunks_created > 0:
                self.pages_stored += 1
                self.chunks_stored += chunks_stored
        await self.set_state(url, UrlState.INGESTED)

    async def snapshot(self) -> CrawlProgress:
        async with self.lock:
            return CrawlProgress(
                pages_visited=self.pages_visited,
                pages_stored=self.pages_stored,
                chunks_stored=self.chunks_stored,
                total_discovered=len(self.discovered),
            )

    def finish(self) -> CrawlStats:
        """Freeze the counters into a CrawlStats."""
        stats = CrawlStats(
            domain=self.domain,
            start_url=self.start_url,
            pages_visited=self.pages_visited,
            pages_stored=self.pages_stored,
            pages_skipped=self.pages_skipped,
            pages_failed=self.pages_failed,
            chunks_stored=self.chunks_stored,
            total_discovered=len(self.discovered),
            start_time=self.start_time,
            end_time=datetime.now(timezone.utc),
        )
        metrics.crawl_duration.observe(time.monotonic() - self._started)
        return stats


class Crawler:
    """Breadth-first same-domain crawler with bounded concurrency."""

    def __init__(self,
                 config: CrawlConfig,
                 pipeline: IngestionPipeline,
                 renderer_factory: Callable[[CrawlConfig], PageRenderer] = create_renderer,
                 fetcher: Optional[HttpFetcher] = None):
        """Initialize crawler.

        Args:
            config: Crawl limits and rendering options
            pipeline: Ingestion pipeline receiving each page's cleaned text
            renderer_factory: Builds the page renderer for a crawl
            fetcher: HTTP fetcher for robots.txt and sitemaps; one is created per crawl if omitted
        """
        self.config = config
        self.pipeline = pipeline
        self.renderer_factory = renderer_factory
        self.fetcher = fetcher

    async def crawl(self, domain_or_url: str, client: Client,
                    on_progress: Optional[ProgressCallback] = None) -> CrawlStats:
        """Crawl a domain and ingest its pages for ``client``.

        Raises:
            ConfigurationError: client has no id or the domain is empty/invalid
        """
        if client is None or not client.id:
            raise ConfigurationError("client id is required to crawl")
        if not domain_or_url or not domain_or_url.strip():
            raise ConfigurationError("domain is required to crawl")

        start_url = normalize_start_url(domain_or_url)
        domain = extract_domain(domain_or_url)
        config = self.config

        logger.info(
            f"Starting crawl for domain: {domain} (start URL: {start_url}, "
            f"client={client.id}, model={client.embedding_model.value})"
        )
        logger.info(
            f"Limits: max_pages={config.max_pages}, max_depth={config.max_depth}, "
            f"concurrency={config.concurrency}"
        )

        owns_fetcher = self.fetcher is None
        fetcher = self.fetcher or HttpFetcher(config.user_agent, config.fetch_timeout)
        robots = RobotsPolicy(fetcher, config.user_agent, enabled=config.respect_robots_txt)
        run = CrawlRun(client, domain, start_url, config.max_pages)

        try:
            seeds = [start_url]
            if config.enable_sitemap:
                seeds += await fetch_sitemap_urls(start_url, domain, fetcher, robots)
            else:
                logger.info("Sitemap support disabled via config")

            queue: asyncio.Queue = asyncio.Queue()
            for url in seeds:
                await self._enqueue(run, queue, url, depth=0)

            logger.info(f"Seeded frontier with {queue.qsize()} URLs")

            async with self.renderer_factory(config) as renderer:
                workers = [
                    asyncio.create_task(self._worker(n, run, queue, renderer, robots, on_progress))
                    for n in range(config.concurrency)
                ]
                await queue.join()
                for _ in workers:
                    queue.put_nowait(None)
                await asyncio.gather(*workers)
        finally:
            if owns_fetcher:
                await fetcher.close()

        stats = run.finish()
        logger.info(
            f"Crawl finished for domain={domain}, client={client.id}. "
            f"pages_visited={stats.pages_visited}, pages_stored={stats.pages_stored}, "
            f"chunks_stored={stats.chunks_stored}, skipped={stats.pages_skipped}, "
            f"failed={stats.pages_failed}, total_discovered={stats.total_discovered}"
        )
        return stats

    async def _enqueue(self, run: CrawlRun, queue: asyncio.Queue, url: str, depth: int) -> bool:
        if not is_same_domain(url, run.domain) or should_skip_url(url):
            return False
        normalized = normalize_url_for_dedup(url)
        if not await run.add_discovered(normalized):
            return False
        queue.put_nowait(FrontierEntry(url=normalized, depth=depth))
        return True

    async def _worker(self, worker_id: int, run: CrawlRun, queue: asyncio.Queue,
                      renderer: PageRenderer, robots: RobotsPolicy,
                      on_progress: Optional[ProgressCallback]):
        finished = False
        try:
            async with renderer.session() as session:
                finished = await self._drain(run, queue, session, robots, on_progress)
        except Exception as e:
            logger.error(f"Worker {worker_id} renderer session failed: {e}")

        # Keep consuming so queue.join() returns even when no session could be opened
        if not finished:
            await self._drain(run, queue, None, robots, on_progress)

    async def _drain(self, run: CrawlRun, queue: asyncio.Queue,
                     session: Optional[RenderSession], robots: RobotsPolicy,
                     on_progress: Optional[ProgressCallback]) -> bool:
        """Process entries until the stop sentinel arrives."""
        while True:
            entry = await queue.get()
            try:
                if entry is None:
                    return True
                await self._process(run, queue, entry, session, robots)
                if on_progress is not None:
                    await self._report_progress(run, on_progress)
            except Exception as e:
                logger.error(f"Unexpected error processing {entry.url}: {e}")
                await run.record_failure(entry.url, UrlState.RENDER_FAILED)
            finally:
                queue.task_done()

    async def _report_progress(self, run: CrawlRun, on_progress: ProgressCallback):
        try:
            await on_progress(await run.snapshot())
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    async def _process(self, run: CrawlRun, queue: asyncio.Queue, entry: FrontierEntry,
                       session: Optional[RenderSession], robots: RobotsPolicy):
        url, depth = entry.url, entry.depth

        if depth > self.config.max_depth:
            logger.info(f"Skipping {url}, depth {depth} > {self.config.max_depth}")
            await run.record_skip(url)
            return

        if not await robots.can_fetch(url):
            await run.record_skip(url)
            return

        if not await run.try_dispatch():
            logger.debug(f"Page budget of {self.config.max_pages} reached, skipping {url}")
            await run.record_skip(url)
            return

        if session is None:
            await run.record_failure(url, UrlState.RENDER_FAILED)
            return

        logger.info(f"Processing {url} (depth {depth})")
        try:
            html = await session.render(url)
        except Exception as e:
            logger.error(f"Failed to render {url}: {e}")
            await run.record_failure(url, UrlState.RENDER_FAILED)
            return

        await run.record_visit()
        await run.set_state(url, UrlState.FETCHED)

        parsed = parse_html(html, url, run.domain)
        ingested = False
        if len(parsed.cleaned_text) < self.config.min_chars:
            logger.info(f"Skipping {url} - cleaned text too short ({len(parsed.cleaned_text)} chars)")
            await run.record_skip(url)
        else:
            try:
                result = await self.pipeline.ingest(parsed.cleaned_text, parsed.url, parsed.domain, run.client)
            except Exception as e:
                logger.error(f"Ingestion failed for URL {url}: {e}")
                await run.record_failure(url, UrlState.INGEST_FAILED)
            else:
                await run.record_ingest(url, result.chunks_created, result.chunks_stored)
                ingested = True

        if depth < self.config.max_depth:
            added = 0
            for link in extract_links(html, url):
                if await self._enqueue(run, queue, link, depth + 1):
                    added += 1
            if added:
                logger.debug(f"Enqueued {added} links at depth {depth + 1} from {url}")
            if ingested:
                await run.set_state(url, UrlState.LINKS_ENQUEUED)
