#!/usr/bin/env python3
"""
Table Extractor

Turns a raw HTML document into header/row text for every <table> in it:
- the first row supplies the headers; blank header cells become column_<n>
- citation markers like [1] or [note 2] are stripped and whitespace collapsed
- repeated header rows (common in long scraped tables) are dropped
- rows that are empty after cleaning are dropped

Null sentinels ("", "-", "N/A") are kept as text here; they become NULL when
the type inference engine converts the cells.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Union

from bs4 import BeautifulSoup, Tag

from core.errors import ParseError
from core.schema import ExtractedTable

logger = logging.getLogger(__name__)

CITATION_PATTERN = re.compile(r"\[[^\]]*\]")
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_text(value: str) -> str:
    """Strip citation brackets and collapse internal whitespace"""
    value = CITATION_PATTERN.sub("", value)
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def own_rows(table: Tag) -> List[Tag]:
    """<tr> elements of ``table`` itself, skipping rows of nested tables"""
    return [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]


def row_cells(row: Tag) -> List[str]:
    return [clean_text(cell.get_text(" ")) for cell in row.find_all(["th", "td"], recursive=False)]


def is_repeated_header(cells: List[str], headers: List[str]) -> bool:
    """True when every cell, padded to the header width, matches its header text"""
    padded = list(cells[:len(headers)]) + [""] * (len(headers) - len(cells))
    return all(cell.lower() == header.lower() for cell, header in zip(padded, headers))


@dataclass
class ExtractionResult:
    """Tables found in a document plus the tables that had to be skipped"""
    tables: List[ExtractedTable] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tables)


class TableExtractor:
    """Extract every table of a markup document as header/row text"""

    name = "TableExtractor"

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    def extract(self, document: Union[bytes, str]) -> ExtractionResult:
        soup = BeautifulSoup(document, self.parser)
        result = ExtractionResult()

        for table_index, table in enumerate(soup.find_all("table")):
            try:
                extracted = self.extract_table(table, table_index)
            except ParseError as exc:
                exc.table_index = table_index
                logger.error(f"Failed to parse table {table_index + 1}: {exc}")
                result.errors.append(exc)
                continue
            except (ValueError, AttributeError, TypeError) as exc:
                error = ParseError(f"Malformed table: {exc}", table_index=table_index)
                logger.error(f"Failed to parse table {table_index + 1}: {exc}")
                result.errors.append(error)
                continue

            if extracted is None:
                logger.debug(f"Table {table_index + 1} has no data rows, skipping")
                continue
            result.tables.append(extracted)
            logger.info(
                f"Successfully parsed table {table_index + 1} with {len(extracted.rows)} rows "
                f"and {len(extracted.headers)} columns"
            )

        if not result.tables:
            logger.warning("No tables found in document")
        return result

    def extract_table(self, table: Tag, table_index: int = 0) -> Optional[ExtractedTable]:
        """Extract one <table>; None when it has no data rows"""
        rows = [cells for cells in (row_cells(tr) for tr in own_rows(table)) if cells]
        if not rows:
            return None

        first = rows[0]
        if any(first):
            header_text = first
            headers = [cell or f"column_{position}" for position, cell in enumerate(first, 1)]
            body = rows[1:]
        else:
            width = max(len(cells) for cells in rows)
            header_text = None
            headers = [f"column_{position}" for position in range(1, width + 1)]
            body = rows

        data_rows = []
        for cells in body:
            if not any(cells):
                continue
            if header_text is not None and is_repeated_header(cells, header_text):
                logger.debug(f"Dropping repeated header row in table {table_index + 1}")
                continue
            data_rows.append(cells)

        if not data_rows:
            return None
        return ExtractedTable(headers=headers, rows=data_rows, index=table_index)
