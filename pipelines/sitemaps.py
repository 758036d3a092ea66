"""Sitemap discovery used to seed the crawl frontier."""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .policy import RobotsPolicy, get_origin
from .rendering import HttpFetcher
from .urls import hostname_of

logger = logging.getLogger(__name__)

COMMON_SITEMAP_PATHS = [
    '/sitemap.xml',
    '/sitemap_index.xml',
    '/wp-sitemap.xml',
    '/index.php/sitemap_index.xml',
]

MAX_SITEMAPS_TO_FETCH = 50


@dataclass
class ParsedSitemap:
    urls: List[str] = field(default_factory=list)
    sitemap_indexes: List[str] = field(default_factory=list)


def parse_sitemap_xml(xml: str) -> ParsedSitemap:
    """Split a sitemap body into page URLs or nested sitemap URLs.

    A document with ``<sitemap><loc>`` entries is treated as an index and its
    plain ``<loc>`` entries are ignored.
    """
    soup = BeautifulSoup(xml or "", 'html.parser')

    index_locs = [loc.get_text().strip() for loc in soup.select('sitemap > loc')]
    index_locs = [loc for loc in index_locs if loc]
    if index_locs:
        return ParsedSitemap(sitemap_indexes=index_locs)

    urls = [loc.get_text().strip() for loc in soup.find_all('loc')]
    return ParsedSitemap(urls=[url for url in urls if url])


def _resolve(raw: str, base_url: str) -> Optional[str]:
    try:
        return urljoin(base_url, raw.strip())
    except ValueError:
        return None


def build_sitemap_candidates(start_url: str, robots_sitemaps: List[str]) -> List[str]:
    origin = get_origin(start_url)
    candidates = list(robots_sitemaps) + [urljoin(origin, path) for path in COMMON_SITEMAP_PATHS]
    # Keep first occurrence order
    return list(dict.fromkeys(candidates))


async def fetch_sitemap_urls(start_url: str,
                             domain: str,
                             fetcher: HttpFetcher,
                             robots: Optional[RobotsPolicy] = None,
                             max_sitemaps: int = MAX_SITEMAPS_TO_FETCH) -> List[str]:
    """Collect in-domain page URLs from the site's sitemaps.

    Args:
        start_url: Normalized start URL of the crawl
        domain: Hostname URLs must match exactly
        fetcher: HTTP fetcher for sitemap bodies
        robots: Optional robots policy whose ``Sitemap:`` lines are tried first
        max_sitemaps: Upper bound on sitemap files fetched, indexes included

    Returns:
        Deduplicated page URLs in discovery order; empty when nothing usable was found
    """
    robots_sitemaps: List[str] = []
    if robots is not None:
        try:
            robots_sitemaps = [url for url in await robots.sitemap_urls(start_url)
                               if hostname_of(url) == domain]
        except Exception as e:
            logger.warning(f"Error reading robots.txt for sitemap discovery ({start_url}): {e}")

    queue = deque(build_sitemap_candidates(start_url, robots_sitemaps))
    seen_sitemaps = set()
    page_urls = {}

    while queue and len(seen_sitemaps) < max_sitemaps:
        sitemap_url = queue.popleft()
        if sitemap_url in seen_sitemaps:
            continue
        seen_sitemaps.add(sitemap_url)

        try:
            response = await fetcher.fetch(sitemap_url)
            if not response.ok:
                logger.debug(f"Sitemap {sitemap_url} returned HTTP {response.status}")
                continue
            parsed = parse_sitemap_xml(response.text)
        except Exception as e:
            logger.warning(f"Error while fetching/parsing sitemap ({sitemap_url}): {e}")
            continue

        if parsed.sitemap_indexes:
            for raw in parsed.sitemap_indexes:
                nested = _resolve(raw, sitemap_url)
                if nested and hostname_of(nested) == domain:
                    queue.append(nested)
        else:
            for raw in parsed.urls:
                url = _resolve(raw, sitemap_url)
                if url and hostname_of(url) == domain:
                    page_urls[url] = None

    if queue and len(seen_sitemaps) >= max_sitemaps:
        logger.warning(f"Sitemap discovery capped at {max_sitemaps} files; some sitemaps were skipped")

    if page_urls:
        logger.info(f"Parsed {len(page_urls)} URLs from sitemap discovery for {domain}")

    return list(page_urls)
