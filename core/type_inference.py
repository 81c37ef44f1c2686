"""
Type Inference Engine

Derives a typed TableSchema from header/cell text and converts the cells
into typed values once every column's type is known.

Each non-null value is classified on its own and the per-column type is the
join (least upper bound) of all classifications under
BOOLEAN < DATE < TIMESTAMP < INT < BIGINT < FLOAT < VARCHAR < TEXT.
Join is commutative, associative and idempotent, so the resolved type does
not depend on the order rows are scanned in.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

from .errors import ConversionError
from .schema import (
    DEFAULT_VARCHAR_LENGTH,
    IMPLICIT_COLUMNS,
    MAX_IDENTIFIER_LENGTH,
    NULL_SENTINELS,
    ColumnSchema,
    ExtractedTable,
    InferredTable,
    InferredType,
    TableSchema,
    TypedRow,
    join,
)

logger = logging.getLogger(__name__)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1
TEXT_THRESHOLD = 255

BOOLEAN_PATTERN = re.compile(r"^(true|false|yes|no)$", re.IGNORECASE)
TRUE_PATTERN = re.compile(r"^(true|yes)$", re.IGNORECASE)
INTEGER_PATTERN = re.compile(r"^-?[0-9]+$")
FLOAT_PATTERN = re.compile(r"^-?[0-9]+\.[0-9]+$")
ISO_DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
TIMESTAMP_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}[T ][0-9]{2}:[0-9]{2}(:[0-9]{2})?$")
LOOSE_DATE_PATTERN = re.compile(r"^([0-9]{1,2})[/-]([0-9]{1,2})[/-]([0-9]{2,4})$")

_WHITESPACE = re.compile(r"\s+")
_NON_IDENTIFIER = re.compile(r"[^a-z0-9_]")


def is_null(value: Optional[str]) -> bool:
    return value is None or value.strip() in NULL_SENTINELS


def _strip_grouping(value: str) -> str:
    return value.replace(",", "")


def classify_value(value: str) -> InferredType:
    """Classify one cleaned, non-null cell value"""
    if BOOLEAN_PATTERN.match(value):
        return InferredType.BOOLEAN

    numeric = _strip_grouping(value)
    if INTEGER_PATTERN.match(numeric):
        number = int(numeric)
        if INT32_MIN <= number <= INT32_MAX:
            return InferredType.INT
        return InferredType.BIGINT
    if FLOAT_PATTERN.match(numeric):
        return InferredType.FLOAT

    if ISO_DATE_PATTERN.match(value):
        return InferredType.DATE
    if TIMESTAMP_PATTERN.match(value):
        return InferredType.TIMESTAMP
    if LOOSE_DATE_PATTERN.match(value):
        return InferredType.DATE

    if len(value) > TEXT_THRESHOLD:
        return InferredType.TEXT
    return InferredType.VARCHAR


@dataclass
class ColumnProfile:
    """Running type/length summary of one column"""

    header: str
    type: Optional[InferredType] = None
    max_length: int = 0
    non_null: int = 0

    def observe(self, value: Optional[str]) -> None:
        if is_null(value):
            return
        cleaned = value.strip()
        value_type = classify_value(cleaned)
        self.type = value_type if self.type is None else join(self.type, value_type)
        self.max_length = max(self.max_length, len(cleaned))
        self.non_null += 1

    def merge(self, other: "ColumnProfile") -> "ColumnProfile":
        """Combine two profiles of the same column built over disjoint rows"""
        if self.type is None:
            merged_type = other.type
        elif other.type is None:
            merged_type = self.type
        else:
            merged_type = join(self.type, other.type)
        return ColumnProfile(
            header=self.header,
            type=merged_type,
            max_length=max(self.max_length, other.max_length),
            non_null=self.non_null + other.non_null,
        )

    def resolve(self, name: str) -> ColumnSchema:
        column_type = self.type or InferredType.VARCHAR
        if column_type is InferredType.VARCHAR:
            return ColumnSchema(
                name=name,
                type=column_type,
                max_length=max(DEFAULT_VARCHAR_LENGTH, self.max_length),
            )
        return ColumnSchema(name=name, type=column_type)


def sanitize_column_name(name: str) -> str:
    """Lower-case, underscore whitespace, keep [a-z0-9_], prefix leading digits"""
    sanitized = _WHITESPACE.sub("_", name.strip().lower())
    sanitized = _NON_IDENTIFIER.sub("", sanitized)
    if sanitized[:1].isdigit():
        sanitized = f"col_{sanitized}"
    return sanitized[:MAX_IDENTIFIER_LENGTH]


def unique_column_names(headers: Sequence[str]) -> List[str]:
    """Sanitize every header, resolving blanks and collisions by position/suffix"""
    taken = set(IMPLICIT_COLUMNS)
    names = []
    for position, header in enumerate(headers, 1):
        base = sanitize_column_name(header) or f"column_{position}"
        candidate = base
        suffix = 2
        while candidate in taken:
            tail = f"_{suffix}"
            candidate = base[:MAX_IDENTIFIER_LENGTH - len(tail)] + tail
            suffix += 1
        if candidate != base:
            logger.debug(f"Renamed column '{header}' to '{candidate}' to keep names unique")
        taken.add(candidate)
        names.append(candidate)
    return names


def profile_columns(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[ColumnProfile]:
    profiles = [ColumnProfile(header) for header in headers]
    for row in rows:
        for profile, value in zip(profiles, row):
            profile.observe(value)
    return profiles


def infer_schema(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> TableSchema:
    """Infer a TableSchema whose column order matches ``headers``"""
    profiles = profile_columns(headers, rows)
    names = unique_column_names(headers)
    return TableSchema(columns=tuple(p.resolve(n) for p, n in zip(profiles, names)))


def normalize_date(value: str) -> str:
    """
    Normalize a D/M/Y (or M/D/Y when day-first is impossible) date to ISO.

    ISO dates and anything that is not slash/dash shaped pass through.
    """
    match = LOOSE_DATE_PATTERN.match(value)
    if not match:
        return value
    first, second, year_text = match.groups()
    year = int(year_text)
    if len(year_text) == 2:
        # Same pivot as strptime's %y
        year += 1900 if year >= 69 else 2000
    for day, month in ((int(first), int(second)), (int(second), int(first))):
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            continue
    raise ValueError(f"Not a calendar date: {value}")


def convert_value(value: Optional[str], column_type: InferredType, column: str = "") -> Any:
    """Convert one cell under its column's resolved type; NULL sentinels become None"""
    if is_null(value):
        return None
    cleaned = value.strip()

    if column_type in (InferredType.INT, InferredType.BIGINT):
        numeric = _strip_grouping(cleaned)
        if not INTEGER_PATTERN.match(numeric):
            raise ConversionError(column, cleaned, column_type.value)
        return int(numeric)

    if column_type is InferredType.FLOAT:
        numeric = _strip_grouping(cleaned)
        if not (INTEGER_PATTERN.match(numeric) or FLOAT_PATTERN.match(numeric)):
            raise ConversionError(column, cleaned, column_type.value)
        return float(numeric)

    if column_type is InferredType.BOOLEAN:
        if not BOOLEAN_PATTERN.match(cleaned):
            raise ConversionError(column, cleaned, column_type.value)
        return TRUE_PATTERN.match(cleaned) is not None

    if column_type in (InferredType.DATE, InferredType.TIMESTAMP):
        try:
            normalized = normalize_date(cleaned)
            if column_type is InferredType.DATE:
                date.fromisoformat(normalized)
            else:
                datetime.fromisoformat(normalized.replace(" ", "T", 1))
        except ValueError as exc:
            raise ConversionError(column, cleaned, column_type.value) from exc
        return normalized

    return cleaned


def convert_rows(schema: TableSchema, rows: Sequence[Sequence[str]]) -> Tuple[List[TypedRow], int]:
    """
    Convert raw rows under ``schema``.

    A cell that does not parse under its column's type is stored as None and
    logged; returns the typed rows and the number of such cells.
    """
    typed_rows = []
    unparsed = 0
    for row_number, row in enumerate(rows, 1):
        typed: TypedRow = {}
        for idx, column in enumerate(schema.columns):
            raw = row[idx] if idx < len(row) else ""
            try:
                typed[column.name] = convert_value(raw, column.type, column.name)
            except ConversionError as exc:
                logger.warning(f"Row {row_number}: {exc}, storing NULL")
                typed[column.name] = None
                unparsed += 1
        typed_rows.append(typed)
    return typed_rows, unparsed


def infer_table(table: ExtractedTable) -> InferredTable:
    """Infer the schema of an extracted table and convert all of its rows"""
    schema = infer_schema(table.headers, table.rows)
    rows, unparsed = convert_rows(schema, table.rows)
    if unparsed:
        logger.warning(f"Table {table.index + 1}: {unparsed} cells did not match their column type")
    logger.debug(f"Inferred table {table.index}: {schema.describe()}")
    return InferredTable(schema=schema, rows=rows, index=table.index, unparsed_cells=unparsed)
