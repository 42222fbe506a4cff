# ========================
# src/pipeline/__init__.py
# ========================

"""
Ingestion Pipeline Package

This package contains the components of the streaming CSV ingestion pipeline:
- validation: Required-header checks
- coercion: Raw cell to typed value conversion
- ingestion: Pausable, batched CSV decoding
- cache: Result caching keyed by file identity
- orchestrator: Pipeline coordination, progress and backpressure
"""

from .errors import (
    IngestionError,
    IngestionErrorKind,
    MissingColumnsError,
    SourceReadError,
    ParserStateError,
    CacheWriteError,
    CacheReadCorruption,
)
from .models import (
    INVALID,
    TypedRow,
    RowError,
    ProgressSnapshot,
    ProgressStatus,
    IngestionResult,
    IngestionStats,
)
from .validation import REQUIRED_COLUMNS, SchemaValidator
from .coercion import FieldCoercer
from .ingestion import CSVSource, ChunkParser, ParseOptions, ParserState
from .cache import CacheStore, InMemoryCacheStore, FileCacheStore, cache_key, create_cache_store
from .orchestrator import IngestionPipeline, IngestionOptions, IngestionRun

__all__ = [
    'IngestionError',
    'IngestionErrorKind',
    'MissingColumnsError',
    'SourceReadError',
    'ParserStateError',
    'CacheWriteError',
    'CacheReadCorruption',
    'INVALID',
    'TypedRow',
    'RowError',
    'ProgressSnapshot',
    'ProgressStatus',
    'IngestionResult',
    'IngestionStats',
    'REQUIRED_COLUMNS',
    'SchemaValidator',
    'FieldCoercer',
    'CSVSource',
    'ChunkParser',
    'ParseOptions',
    'ParserState',
    'CacheStore',
    'InMemoryCacheStore',
    'FileCacheStore',
    'cache_key',
    'create_cache_store',
    'IngestionPipeline',
    'IngestionOptions',
    'IngestionRun',
]

__version__ = "1.0.0"
