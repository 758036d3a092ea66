"""Pipelines package for the knowledge crawler.

Provides crawling, parsing, chunking, document extraction and ingestion.
"""

from .crawler import Crawler, CrawlRun, CrawlStats, CrawlProgress, FrontierEntry, UrlState
from .policy import RobotsCache, RobotsPolicy
from .chunker import TextChunker, chunk_text
from .parser import parse_html, clean_text, extract_links
from .ingestion import IngestionPipeline
from .documents import DocumentIngestor, DocumentIngestResult, extract_text

__all__ = [
    # Crawler
    'Crawler',
    'CrawlRun',
    'CrawlStats',
    'CrawlProgress',
    'FrontierEntry',
    'UrlState',

    # Policy
    'RobotsCache',
    'RobotsPolicy',

    # Parsing and chunking
    'parse_html',
    'clean_text',
    'extract_links',
    'TextChunker',
    'chunk_text',

    # Ingestion
    'IngestionPipeline',
    'DocumentIngestor',
    'DocumentIngestResult',
    'extract_text',
]
