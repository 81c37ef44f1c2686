"""
Table data model shared by the producer and consumer sides.

ExtractedTable holds raw header/cell text as it comes out of a document,
TableSchema/ColumnSchema describe the inferred relational layout, and
InferredTable pairs a schema with its typed rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import reduce
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Cell values treated as NULL when converting
NULL_SENTINELS = frozenset({"", "-", "N/A"})

DEFAULT_VARCHAR_LENGTH = 255
MAX_IDENTIFIER_LENGTH = 63

# Columns the storage layer adds to every table
IMPLICIT_COLUMNS: Tuple[str, ...] = ("id", "created_at")

TypedRow = Dict[str, Any]


class InferredType(str, Enum):
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    INT = "INT"
    BIGINT = "BIGINT"
    FLOAT = "FLOAT"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"

    @property
    def rank(self) -> int:
        return TYPE_ORDER.index(self)


# Lowest to highest; join picks the higher of two
TYPE_ORDER: Tuple[InferredType, ...] = (
    InferredType.BOOLEAN,
    InferredType.DATE,
    InferredType.TIMESTAMP,
    InferredType.INT,
    InferredType.BIGINT,
    InferredType.FLOAT,
    InferredType.VARCHAR,
    InferredType.TEXT,
)


def join(a: InferredType, b: InferredType) -> InferredType:
    """Least upper bound of two types under TYPE_ORDER"""
    return a if a.rank >= b.rank else b


def join_all(types: Iterable[InferredType]) -> Optional[InferredType]:
    """Join every type in ``types``; None when there is nothing to join"""
    return reduce(lambda acc, t: t if acc is None else join(acc, t), types, None)


class ColumnSchema(BaseModel):
    """A single typed column; max_length is only carried by VARCHAR columns"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type: InferredType
    max_length: Optional[int] = Field(default=None, alias="maxLength")

    @model_validator(mode="before")
    @classmethod
    def _default_varchar_length(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        length = data.get("maxLength", data.get("max_length"))
        if data.get("type") in (InferredType.VARCHAR, "VARCHAR") and length is None:
            data = {k: v for k, v in data.items() if k not in ("maxLength", "max_length")}
            data["max_length"] = DEFAULT_VARCHAR_LENGTH
        return data

    @model_validator(mode="after")
    def _check_length(self) -> "ColumnSchema":
        if not self.name:
            raise ValueError("Column name cannot be empty")
        if self.type is InferredType.VARCHAR:
            if self.max_length < 1:
                raise ValueError("maxLength must be positive")
        elif self.max_length is not None:
            raise ValueError(f"maxLength is only valid for VARCHAR columns, not {self.type.value}")
        return self


class TableSchema(BaseModel):
    """Ordered, uniquely named columns; order matches the source headers"""

    model_config = ConfigDict(frozen=True)

    columns: Tuple[ColumnSchema, ...]

    @field_validator("columns")
    @classmethod
    def _unique_names(cls, columns: Tuple[ColumnSchema, ...]) -> Tuple[ColumnSchema, ...]:
        seen = set()
        for column in columns:
            if column.name in seen:
                raise ValueError(f"Duplicate column name: {column.name}")
            seen.add(column.name)
        return columns

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def column(self, name: str) -> ColumnSchema:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(name)

    def describe(self) -> List[Dict[str, Any]]:
        """Plain-dict view used for logging"""
        return [column.model_dump(by_alias=True, exclude_none=True, mode="json") for column in self.columns]


@dataclass
class ExtractedTable:
    """Header and cell text of one table found in a document"""

    headers: List[str]
    rows: List[List[str]]
    index: int = 0

    def __post_init__(self):
        width = len(self.headers)
        aligned = []
        for row in self.rows:
            if len(row) < width:
                row = list(row) + [""] * (width - len(row))
            elif len(row) > width:
                row = list(row[:width])
            aligned.append(row)
        self.rows = aligned


@dataclass
class InferredTable:
    """A schema together with the typed rows converted under it"""

    schema: TableSchema
    rows: List[TypedRow] = field(default_factory=list)
    index: int = 0
    unparsed_cells: int = 0


class SchemaDriftPolicy(str, Enum):
    """What a consumer does when a unit's schema differs from its session schema"""

    REJECT = "reject"
    NEW_SESSION = "new_session"
