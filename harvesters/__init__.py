"""
Table harvesting.

This package turns web documents into typed tables:
- Document fetching with retries
- HTML table extraction
- Harvest orchestration (fetch -> extract -> infer)
"""

from .document_fetcher import DocumentFetcher
from .table_extractor import ExtractionResult, TableExtractor
from .table_harvester import HarvestResult, TableHarvester

__all__ = [
    'DocumentFetcher',
    'ExtractionResult',
    'TableExtractor',
    'HarvestResult',
    'TableHarvester'
]
