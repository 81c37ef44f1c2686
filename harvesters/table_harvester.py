#!/usr/bin/env python3
"""
Table Harvester
Fetch -> extract -> infer: turns a URL (or an already fetched document) into
typed tables. Tables that cannot be extracted are skipped and reported; cells
that do not parse under their column type are stored as NULL.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from core.errors import ParseError
from core.schema import InferredTable
from core.type_inference import infer_table

from .document_fetcher import DocumentFetcher
from .table_extractor import TableExtractor

logger = logging.getLogger(__name__)


@dataclass
class HarvestResult:
    source: str
    tables: List[InferredTable] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)

    def select(self, table_index: int = 0) -> Optional[InferredTable]:
        """Pick the n-th usable table (0 = first), None when there are not enough"""
        if 0 <= table_index < len(self.tables):
            return self.tables[table_index]
        return None


class TableHarvester:
    """Compose a DocumentFetcher and a TableExtractor with type inference"""

    def __init__(self, fetcher: Optional[DocumentFetcher] = None, extractor: Optional[TableExtractor] = None):
        self.fetcher = fetcher or DocumentFetcher()
        self.extractor = extractor or TableExtractor()

    def harvest(self, url: str) -> HarvestResult:
        """Fetch ``url`` and harvest its tables; FetchError propagates"""
        logger.info(f"Fetching HTML from URL: {url}")
        document = self.fetcher.fetch(url)
        return self.harvest_document(document, source=url)

    def harvest_document(self, document: Union[bytes, str], source: str = "") -> HarvestResult:
        extraction = self.extractor.extract(document)
        result = HarvestResult(source=source, errors=list(extraction.errors))

        for extracted in extraction.tables:
            result.tables.append(infer_table(extracted))

        logger.info(f"Found {len(result.tables)} usable tables ({len(result.errors)} skipped)")
        return result

    def stop(self) -> None:
        self.fetcher.stop()
