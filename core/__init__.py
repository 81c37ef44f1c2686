"""
Core pipeline components.

This package contains the building blocks shared by every stage:
- Column type lattice and table schema models
- Type inference and value conversion
- Configuration and logging setup
- Storage sink (PostgreSQL)
"""

from .config import ConfigManager, PipelineConfig
from .errors import (
    PipelineError,
    ConfigError,
    FetchError,
    ParseError,
    DeliveryError,
    DecodeError,
    SchemaDriftError,
    StorageError,
)
from .schema import ColumnSchema, InferredType, SchemaDriftPolicy, TableSchema, join
from .type_inference import infer_schema, infer_table

__all__ = [
    'ConfigManager',
    'PipelineConfig',
    'PipelineError',
    'ConfigError',
    'FetchError',
    'ParseError',
    'DeliveryError',
    'DecodeError',
    'SchemaDriftError',
    'StorageError',
    'ColumnSchema',
    'InferredType',
    'SchemaDriftPolicy',
    'TableSchema',
    'join',
    'infer_schema',
    'infer_table'
]
