"""
Transport unit: the record that crosses the broker channel.

Wire shape (JSON, UTF-8):
    {"schema": {"columns": [{"name": ..., "type": ..., "maxLength": ...}, ...]},
     "row": {<column>: <value or null>, ...},
     "emittedAt": <epoch millis>,
     "provenance": <source identifier>}

The full schema travels with every unit so a consumer with no prior state
can provision storage from the first unit it reads.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.errors import DecodeError
from core.schema import TableSchema

SCALAR_TYPES = (str, int, float, bool, type(None))


class TransportUnit(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table_schema: TableSchema = Field(alias="schema")
    row: Dict[str, Any]
    emitted_at: int = Field(alias="emittedAt")
    provenance: str

    @field_validator("row")
    @classmethod
    def _scalar_values(cls, row: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in row.items():
            if not isinstance(value, SCALAR_TYPES):
                raise ValueError(f"Row value for '{key}' must be a scalar, got {type(value).__name__}")
        return row

    @model_validator(mode="after")
    def _row_matches_schema(self) -> "TransportUnit":
        expected = set(self.table_schema.column_names)
        actual = set(self.row)
        if expected != actual:
            missing = sorted(expected - actual)
            extra = sorted(actual - expected)
            raise ValueError(f"Row does not match schema (missing={missing}, unexpected={extra})")
        return self


def routing_key(emitted_at: int, index: int) -> str:
    """Message key derived from emission time and row position, not content"""
    return f"row_{emitted_at}_{index}"


def encode_unit(unit: TransportUnit) -> bytes:
    return unit.model_dump_json(by_alias=True).encode("utf-8")


def decode_unit(payload: bytes) -> TransportUnit:
    """Parse a broker payload; raises DecodeError when it is not a valid unit"""
    if payload is None:
        raise DecodeError("Empty message payload")
    try:
        return TransportUnit.model_validate_json(payload)
    except ValidationError as exc:
        raise DecodeError(f"Invalid transport unit: {exc.error_count()} validation errors") from exc
