"""URL helpers shared by the crawler and sitemap discovery."""

import re
from typing import Optional
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from indexer.errors import ConfigurationError

# Query parameters that only track campaigns and never change page content
TRACKING_PARAMS = {
    'gclid', 'fbclid', 'igshid', 'mc_cid', 'mc_eid', 'ref', 'ref_src', 'mkt_tok',
}

SKIPPED_EXTENSIONS = re.compile(
    r'\.(pdf|docx?|xlsx?|pptx?|jpe?g|png|gif|webp|svg|bmp|tiff?)$',
    re.IGNORECASE,
)


def _with_scheme(domain_or_url: str) -> str:
    value = (domain_or_url or "").strip()
    if not value:
        raise ConfigurationError("domain is required")
    if not re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*://', value):
        value = f"https://{value}"
    return value


def normalize_start_url(domain_or_url: str) -> str:
    """Turn a bare domain or any URL on it into the site root URL.

    ``example.com/docs?x=1`` becomes ``https://example.com/``.
    """
    parsed = urlparse(_with_scheme(domain_or_url))
    if not parsed.hostname:
        raise ConfigurationError(f"Invalid domain: {domain_or_url}")
    return urlunparse((parsed.scheme, parsed.netloc, '/', '', '', ''))


def extract_domain(domain_or_url: str) -> str:
    """Hostname of a bare domain or URL, lowercased."""
    parsed = urlparse(_with_scheme(domain_or_url))
    if not parsed.hostname:
        raise ConfigurationError(f"Invalid domain: {domain_or_url}")
    return parsed.hostname.lower()


def hostname_of(url: str) -> Optional[str]:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def is_same_domain(url: str, domain: str) -> bool:
    return hostname_of(url) == domain.lower()


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith('utm_') or lowered in TRACKING_PARAMS


def normalize_url_for_dedup(url: str) -> str:
    """Canonical form used to detect already-seen URLs.

    Drops the fragment and tracking parameters, sorts the remaining query
    parameters and trims a trailing slash on non-root paths.
    """
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
              if not _is_tracking_param(k)]
    params.sort()
    path = parsed.path or '/'
    if path != '/' and path.endswith('/'):
        path = path.rstrip('/') or '/'
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        path,
        parsed.params,
        urlencode(params),
        '',
    ))


def should_skip_url(url: str) -> bool:
    """True for links to binaries and office documents the crawler cannot parse."""
    path = urlparse(url).path
    return bool(SKIPPED_EXTENSIONS.search(path))


def is_http_url(url: str) -> bool:
    return urlparse(url).scheme in ('http', 'https')
