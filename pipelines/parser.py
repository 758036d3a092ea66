"""HTML to clean text.

Strips boilerplate (navigation, cookie banners, forms) and extracts the main
readable text of a page. A heuristic, not a full readability port.
"""

import logging
import re
from typing import List
from urllib.parse import urljoin, urldefrag

from bs4 import BeautifulSoup

from indexer.models import ParsedPage
from .urls import is_http_url

logger = logging.getLogger(__name__)

REMOVAL_SELECTORS = ", ".join([
    'script',
    'style',
    'noscript',
    'svg',
    'nav',
    'header',
    'footer',
    'aside',
    'form',
    'iframe',
    '[id*="cookie"]',
    '[class*="cookie"]',
    '[id*="banner"]',
    '[class*="banner"]',
    '[role="navigation"]',
    '[aria-label="Breadcrumb"]',
])

# Below this many characters a <main>/<article> is treated as a shell
MIN_CONTAINER_CHARS = 200


def clean_text(text: str) -> str:
    """Normalize whitespace while keeping paragraph breaks."""
    text = (text or "").replace('\r\n', '\n')
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n[ \t]+', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def _container_text(soup: BeautifulSoup, selector: str) -> str:
    return "".join(el.get_text() for el in soup.select(selector))


def parse_html(markup: str, url: str, domain: str) -> ParsedPage:
    """Parse rendered markup into a ParsedPage.

    Args:
        markup: Full HTML of the page
        url: URL the markup was fetched from
        domain: Seed domain the page belongs to

    Returns:
        ParsedPage with raw and cleaned text
    """
    soup = BeautifulSoup(markup or "", 'html.parser')

    title = None
    if soup.title is not None:
        title = soup.title.get_text().strip() or None

    for element in soup.select(REMOVAL_SELECTORS):
        if not element.decomposed:
            element.decompose()

    text = _container_text(soup, 'main')
    if len(text.strip()) < MIN_CONTAINER_CHARS:
        text = _container_text(soup, 'article')
    if len(text.strip()) < MIN_CONTAINER_CHARS:
        body = soup.body
        text = body.get_text() if body is not None else soup.get_text()

    return ParsedPage(
        url=url,
        domain=domain,
        title=title,
        raw_html=markup,
        raw_text=text,
        cleaned_text=clean_text(text),
    )


def extract_links(markup: str, base_url: str) -> List[str]:
    """Absolute, fragment-free http(s) links in document order, deduplicated."""
    links: List[str] = []
    seen = set()

    try:
        soup = BeautifulSoup(markup or "", 'html.parser')
    except Exception as e:
        logger.warning(f"Failed to parse links from {base_url}: {e}")
        return links

    for anchor in soup.find_all('a', href=True):
        href = anchor['href'].strip()
        if not href:
            continue
        try:
            absolute_url, _ = urldefrag(urljoin(base_url, href))
        except ValueError:
            logger.debug(f"Ignoring malformed link {href!r} on {base_url}")
            continue
        if not is_http_url(absolute_url) or absolute_url in seen:
            continue
        seen.add(absolute_url)
        links.append(absolute_url)

    return links
