# ========================
# src/pipeline/coercion.py
# ========================

"""
Field Coercion Module

Converts raw CSV cells into typed listing records. Numeric parsing is
strict and locale-insensitive; anything unparseable becomes INVALID.
"""

import re
import math
import logging
from typing import Any, Dict, List, Optional, Tuple

from .models import INVALID, Decimal, Integer, RawRow, TypedRow

logger = logging.getLogger(__name__)

_DECIMAL_RE = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
_INTEGER_RE = re.compile(r'^[+-]?\d+$')


class FieldCoercer:
    """
    Applies the fixed nine-field schema to raw records.
    Coercion never raises on bad cells; it produces INVALID instead.
    """

    DECIMAL_FIELDS = ('price', 'rating', 'conversion_rate', 'click_through_rate')
    INTEGER_FIELDS = ('reviews',)
    TEXT_FIELDS = ('asin', 'brands', 'keywords', 'niche')
    NON_NEGATIVE_FIELDS = ('price', 'reviews')

    def __init__(self):
        """Initialize the field coercer."""
        self.rows_coerced = 0
        self.invalid_cells = 0

    def coerce(self, row: RawRow) -> TypedRow:
        """
        Coerce a single raw record.

        Args:
            row (dict): Column name -> raw cell text

        Returns:
            TypedRow: The typed record, possibly holding INVALID values
        """
        values: Dict[str, Any] = {}
        for name in self.TEXT_FIELDS:
            values[name] = self._clean_text(row.get(name))
        for name in self.DECIMAL_FIELDS:
            values[name] = self._clean_decimal(row.get(name))
        for name in self.INTEGER_FIELDS:
            values[name] = self._clean_integer(row.get(name))

        typed = TypedRow(**values)
        self.rows_coerced += 1
        invalid = typed.invalid_fields()
        if invalid:
            self.invalid_cells += len(invalid)
            logger.debug(f"Unparsed numeric fields {invalid} in record: {row}")
        return typed

    def find_issues(self, row: TypedRow) -> List[Tuple[str, str]]:
        """
        List the problems a coerced record carries.

        Returns:
            list: (column, message) pairs, in schema order
        """
        issues = []
        for name in row.NUMERIC_FIELDS:
            value = getattr(row, name)
            if value is INVALID:
                issues.append((name, f"Invalid numeric value for {name}"))
            elif name in self.NON_NEGATIVE_FIELDS and value < 0:
                issues.append((name, f"{name} must be non-negative (got {value})"))
        return issues

    def _clean_text(self, value: Optional[str]) -> str:
        """Text passes through verbatim; a missing cell becomes an empty string."""
        return value if isinstance(value, str) else ""

    def _clean_decimal(self, value: Optional[str]) -> Decimal:
        """Parse a decimal number, or return INVALID."""
        if not isinstance(value, str):
            return INVALID
        text = value.strip()
        if not _DECIMAL_RE.match(text):
            return INVALID
        number = float(text)
        return number if math.isfinite(number) else INVALID

    def _clean_integer(self, value: Optional[str]) -> Integer:
        """Parse a whole number, or return INVALID."""
        if not isinstance(value, str):
            return INVALID
        text = value.strip()
        if not _INTEGER_RE.match(text):
            return INVALID
        return int(text)

    def get_statistics(self) -> Dict[str, int]:
        """Get coercion statistics."""
        return {
            'rows_coerced': self.rows_coerced,
            'invalid_cells': self.invalid_cells,
        }
