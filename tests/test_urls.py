"""Tests for crawler URL helpers."""

import pytest

from indexer.errors import ConfigurationError
from pipelines.urls import (
    extract_domain,
    is_http_url,
    is_same_domain,
    normalize_start_url,
    normalize_url_for_dedup,
    should_skip_url,
)


class TestStartUrl:

    def test_bare_domain_gets_https_root(self):
        assert normalize_start_url("example.com") == "https://example.com/"

    def test_path_query_and_fragment_are_dropped(self):
        assert normalize_start_url("http://example.com/docs/intro?x=1#top") == "http://example.com/"

    def test_empty_domain_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_start_url("   ")

    def test_extract_domain_lowercases_host(self):
        assert extract_domain("https://Docs.Example.COM/page") == "docs.example.com"
        assert extract_domain("example.com") == "example.com"


class TestDedupNormalization:

    def test_fragment_and_tracking_params_removed(self):
        url = "https://example.com/pricing/?utm_source=mail&b=2&a=1&gclid=xyz#plans"
        assert normalize_url_for_dedup(url) == "https://example.com/pricing?a=1&b=2"

    def test_root_keeps_slash(self):
        assert normalize_url_for_dedup("https://example.com/") == "https://example.com/"
        assert normalize_url_for_dedup("https://example.com") == "https://example.com/"

    def test_equivalent_urls_collapse(self):
        first = normalize_url_for_dedup("https://Example.com/about/")
        second = normalize_url_for_dedup("https://example.com/about#team")
        assert first == second


class TestUrlFilters:

    @pytest.mark.parametrize("url", [
        "https://example.com/files/report.pdf",
        "https://example.com/img/logo.PNG",
        "https://example.com/docs/brochure.docx",
    ])
    def test_binary_links_skipped(self, url):
        assert should_skip_url(url)

    def test_html_pages_not_skipped(self):
        assert not should_skip_url("https://example.com/pdf-guide")
        assert not should_skip_url("https://example.com/about.html")

    def test_same_domain_is_exact_hostname(self):
        assert is_same_domain("https://example.com/a", "example.com")
        assert not is_same_domain("https://blog.example.com/a", "example.com")

    def test_only_http_schemes(self):
        assert is_http_url("https://example.com")
        assert not is_http_url("mailto:sales@example.com")
        assert not is_http_url("javascript:void(0)")
