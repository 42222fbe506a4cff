# ========================
# src/pipeline/validation.py
# ========================

"""
Schema Validation Module

Checks that an input file's header row carries every required column.
"""

import logging
from typing import Iterable, Optional, Sequence

from .errors import MissingColumnsError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = (
    'asin',
    'price',
    'reviews',
    'rating',
    'conversion_rate',
    'click_through_rate',
    'brands',
    'keywords',
    'niche',
)


class SchemaValidator:
    """
    Validates a header set against an ordered list of required column names.
    Column order within the file does not matter; presence does.
    """

    def __init__(self, required: Optional[Sequence[str]] = None):
        self.required = tuple(required) if required is not None else REQUIRED_COLUMNS

    def missing_columns(self, headers: Iterable[str]) -> list:
        """Required names absent from headers, in required-list order."""
        present = set(headers)
        return [name for name in self.required if name not in present]

    def validate(self, headers: Iterable[str]) -> None:
        """
        Raise MissingColumnsError if any required column is absent.

        Args:
            headers: Column names observed in the file
        """
        missing = self.missing_columns(headers)
        if missing:
            logger.error(f"Header validation failed, missing: {missing}")
            raise MissingColumnsError(missing)
        logger.debug(f"Header validation passed for {len(self.required)} required columns")
