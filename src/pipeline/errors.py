# ========================
# src/pipeline/errors.py
# ========================

"""
Pipeline Errors

Exception types raised by the ingestion pipeline. Fatal errors derive from
IngestionError; cache errors are non-fatal and handled inside the pipeline.
"""

from enum import Enum
from typing import Sequence


class IngestionErrorKind(str, Enum):
    """Categories of fatal ingestion failures."""
    MISSING_COLUMNS = "missing_columns"
    IO_FAILURE = "io_failure"
    ABORTED = "aborted"


class IngestionError(Exception):
    """
    A fatal failure that aborts an ingestion run.
    No partial rows are ever returned alongside one of these.
    """

    def __init__(self, kind: IngestionErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class MissingColumnsError(IngestionError):
    """Raised when the header row lacks one or more required columns."""

    def __init__(self, names: Sequence[str]):
        self.names = list(names)
        super().__init__(
            IngestionErrorKind.MISSING_COLUMNS,
            f"Missing required columns: {', '.join(self.names)}"
        )


class SourceReadError(Exception):
    """Raised by the parser when the underlying source cannot be read."""


class ParserStateError(RuntimeError):
    """Raised on an illegal ChunkParser state transition."""


class CacheWriteError(Exception):
    """Raised by a cache store when a value cannot be persisted."""


class CacheReadCorruption(ValueError):
    """Raised when a cached value cannot be decoded back into rows."""
