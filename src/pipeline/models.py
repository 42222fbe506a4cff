# ========================
# src/pipeline/models.py
# ========================

"""
Pipeline Data Model

Typed records, progress snapshots and results exchanged between the
ingestion components and their callers.
"""

from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# A raw CSV record: column name -> cell text
RawRow = Dict[str, str]


class InvalidValue:
    """
    Sentinel for a numeric cell that failed to parse.
    It is falsy, equal only to itself and never equal to zero.
    """
    _instance = None
    __slots__ = ()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "INVALID"

    def __reduce__(self):
        return (InvalidValue, ())


INVALID = InvalidValue()

Decimal = Union[float, InvalidValue]
Integer = Union[int, InvalidValue]


@dataclass(frozen=True)
class TypedRow:
    """A fully coerced listing record."""
    asin: str
    price: Decimal
    reviews: Integer
    rating: Decimal
    conversion_rate: Decimal
    click_through_rate: Decimal
    brands: str
    keywords: str
    niche: str

    TEXT_FIELDS = ('asin', 'brands', 'keywords', 'niche')
    NUMERIC_FIELDS = ('price', 'reviews', 'rating', 'conversion_rate', 'click_through_rate')

    def invalid_fields(self) -> List[str]:
        """Names of numeric fields holding the INVALID sentinel, in schema order."""
        return [name for name in self.NUMERIC_FIELDS if getattr(self, name) is INVALID]

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-compatible dict; INVALID becomes None."""
        return {
            f.name: (None if getattr(self, f.name) is INVALID else getattr(self, f.name))
            for f in fields(self)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TypedRow':
        """Inverse of to_dict(). None in a numeric field becomes INVALID."""
        values = {}
        for f in fields(cls):
            value = data[f.name]
            if f.name in cls.NUMERIC_FIELDS and value is None:
                value = INVALID
            values[f.name] = value
        return cls(**values)


@dataclass(frozen=True)
class RowError:
    """A non-fatal problem with one data row."""
    row_index: int
    message: str
    column: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressSnapshot:
    """
    Progress of one ingestion run at a batch boundary.

    total_rows is None while the stream is still being read; it is set to
    processed_rows once the terminal batch has been seen.
    """
    processed_rows: int = 0
    total_rows: Optional[int] = None
    current_batch: int = 0
    memory_usage_bytes: int = 0
    error_count: int = 0
    status: ProgressStatus = ProgressStatus.IDLE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class IngestionStats:
    """Run statistics reported alongside the result."""
    total_processed: int = 0
    error_count: int = 0
    batch_count: int = 0
    processing_time_seconds: float = 0.0
    memory_peak_bytes: int = 0
    max_undrained_rows: int = 0
    memory_pauses: int = 0
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IngestionResult:
    """Final output of a successful ingestion."""
    rows: List[TypedRow]
    errors: List[RowError]
    stats: IngestionStats = field(default_factory=IngestionStats)

    def error_summary(self, limit: int = 5) -> Dict[str, Any]:
        """
        Aggregate view of the non-fatal errors.

        Args:
            limit (int): Maximum number of messages to include in the sample

        Returns:
            dict: error_count plus a sampled list of messages
        """
        return {
            'error_count': len(self.errors),
            'sampled_errors': [
                f"Row {error.row_index}: {error.message}" for error in self.errors[:limit]
            ]
        }
