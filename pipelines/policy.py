"""robots.txt compliance for the crawler."""

import asyncio
import logging
import re
import urllib.robotparser
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse

from .rendering import HttpFetcher

logger = logging.getLogger(__name__)

SITEMAP_LINE = re.compile(r'^sitemap:\s*(.+)$', re.IGNORECASE)


@dataclass
class RobotsCache:
    """Cache entry for robots.txt data.

    ``robots_parser`` is None when the file was missing or unreachable,
    which allows every URL on the origin.
    """
    robots_parser: Optional[urllib.robotparser.RobotFileParser]
    sitemaps: List[str]
    fetched_at: datetime
    ttl_hours: int = 24

    def is_expired(self) -> bool:
        """Check if the cache entry has expired."""
        return datetime.now() - self.fetched_at > timedelta(hours=self.ttl_hours)


def get_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def get_robots_txt_url(url: str) -> str:
    """Get the robots.txt URL for a given URL."""
    return urljoin(get_origin(url), '/robots.txt')


def parse_sitemap_lines(robots_txt: str, base_url: str) -> List[str]:
    """Absolute URLs of the ``Sitemap:`` lines in a robots.txt body."""
    urls = []
    for line in robots_txt.splitlines():
        match = SITEMAP_LINE.match(line.strip())
        if not match:
            continue
        value = match.group(1).strip()
        if value:
            urls.append(urljoin(base_url, value))
    return urls


class RobotsPolicy:
    """Answers whether the crawler may fetch a URL.

    robots.txt is fetched once per origin and cached with a TTL.
    """

    def __init__(self,
                 fetcher: HttpFetcher,
                 user_agent: str,
                 enabled: bool = True,
                 ttl_hours: int = 24):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.enabled = enabled
        self.ttl_hours = ttl_hours
        self.robots_cache: Dict[str, RobotsCache] = {}
        self._lock = asyncio.Lock()

    async def _load(self, url: str) -> RobotsCache:
        origin = get_origin(url)

        async with self._lock:
            cache_entry = self.robots_cache.get(origin)
            if cache_entry is not None and not cache_entry.is_expired():
                return cache_entry

            robots_url = get_robots_txt_url(url)
            parser = None
            sitemaps: List[str] = []
            try:
                logger.info(f"Fetching robots.txt from {robots_url}")
                response = await self.fetcher.fetch(robots_url)
                if response.ok:
                    parser = urllib.robotparser.RobotFileParser()
                    parser.set_url(robots_url)
                    parser.parse(response.text.splitlines())
                    sitemaps = parse_sitemap_lines(response.text, origin)
                else:
                    logger.info(f"No robots.txt at {robots_url} (HTTP {response.status}), allowing all")
            except Exception as e:
                logger.warning(f"Error fetching robots.txt from {robots_url}: {e}, allowing all")

            cache_entry = RobotsCache(
                robots_parser=parser,
                sitemaps=sitemaps,
                fetched_at=datetime.now(),
                ttl_hours=self.ttl_hours,
            )
            self.robots_cache[origin] = cache_entry
            return cache_entry

    async def can_fetch(self, url: str) -> bool:
        """Check robots.txt rules for ``url`` and the configured user agent."""
        if not self.enabled:
            return True

        cache_entry = await self._load(url)
        if cache_entry.robots_parser is None:
            return True

        allowed = cache_entry.robots_parser.can_fetch(self.user_agent, url)
        if not allowed:
            logger.info(f"robots.txt disallows {url}")
        return allowed

    async def sitemap_urls(self, url: str) -> List[str]:
        """Sitemap URLs advertised in the origin's robots.txt."""
        cache_entry = await self._load(url)
        return list(cache_entry.sitemaps)
