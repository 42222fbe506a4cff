# ========================
# src/pipeline/ingestion.py
# ========================

"""
Data Ingestion Module

Incremental, pausable decoding of CSV sources into bounded row batches.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional, TextIO, Union

from .errors import ParserStateError, SourceReadError
from .models import RawRow, RowError

logger = logging.getLogger(__name__)


class SourceIdentity(NamedTuple):
    """File identity used to key cached results."""
    name: str
    size_bytes: int
    last_modified_ms: int


class CSVSource:
    """
    A delimited text source: either a file on disk or an in-memory upload.
    Content is decoded as UTF-8; a leading byte-order mark is ignored.
    """

    def __init__(self,
                 name: str,
                 size_bytes: int,
                 last_modified_ms: int,
                 path: Optional[Union[str, Path]] = None,
                 data: Optional[bytes] = None):
        if path is None and data is None:
            raise ValueError("CSVSource needs either a path or data")
        self.name = name
        self.size_bytes = size_bytes
        self.last_modified_ms = last_modified_ms
        self.path = Path(path) if path is not None else None
        self.data = data

    @classmethod
    def from_path(cls, path: Union[str, Path], name: Optional[str] = None) -> 'CSVSource':
        """
        Build a source from a file, reading its identity from the filesystem.

        Raises:
            SourceReadError: If the file cannot be stat'ed
        """
        file_path = Path(path)
        try:
            stat = file_path.stat()
        except OSError as e:
            raise SourceReadError(f"Cannot access '{file_path}': {e}") from e
        return cls(
            name=name or file_path.name,
            size_bytes=stat.st_size,
            last_modified_ms=stat.st_mtime_ns // 1_000_000,
            path=file_path
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, last_modified_ms: int = 0) -> 'CSVSource':
        """Build a source from uploaded content."""
        return cls(name=name, size_bytes=len(data), last_modified_ms=last_modified_ms, data=data)

    @property
    def identity(self) -> SourceIdentity:
        return SourceIdentity(self.name, self.size_bytes, self.last_modified_ms)

    def open(self) -> TextIO:
        """Open the source as a text stream suitable for csv.reader."""
        if self.path is not None:
            return open(self.path, 'r', newline='', encoding='utf-8-sig')
        return io.TextIOWrapper(io.BytesIO(self.data), encoding='utf-8-sig', newline='')

    def __repr__(self) -> str:
        return f"CSVSource({self.name!r}, size={self.size_bytes}, mtime_ms={self.last_modified_ms})"


@dataclass
class ParseOptions:
    """Decoding options for ChunkParser."""
    delimiter: str = ','
    batch_size: int = 1000
    has_header: bool = True
    skip_empty_lines: bool = True
    trim_headers: bool = True

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if not self.has_header:
            raise ValueError("Headerless input is not supported")


class ParserState(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Batch:
    """
    Rows decoded in one parser step.

    row_indices[i] is the 0-based data-row index of rows[i]. Records that
    failed to decode are reported in errors and not included in rows.
    """
    index: int
    rows: List[RawRow]
    row_indices: List[int]
    errors: List[RowError] = field(default_factory=list)
    is_last: bool = False


class ChunkParser:
    """
    A pausable CSV reader that yields bounded batches of rows.

    State machine: IDLE -> PARSING -> (PAUSED <-> PARSING) -> COMPLETED | FAILED.
    The open stream and a one-record look-ahead survive a pause, so resuming
    continues exactly where decoding stopped.
    """

    def __init__(self, options: Optional[ParseOptions] = None):
        """
        Initialize the parser.

        Args:
            options (ParseOptions): Delimiter, batch size and line handling
        """
        self.options = options or ParseOptions()
        self.state = ParserState.IDLE
        self.headers: List[str] = []
        self.current_batch = 0
        self.rows_emitted = 0
        self.decode_errors = 0
        self.source_name: Optional[str] = None
        self._stream: Optional[TextIO] = None
        self._reader = None
        self._lookahead = None
        self._next_row_index = 0

    def start(self, source: CSVSource) -> None:
        """
        Open the source and read its header row.

        Raises:
            ParserStateError: If the parser was already started
            SourceReadError: If the source cannot be opened or decoded
        """
        if self.state != ParserState.IDLE:
            raise ParserStateError(f"Cannot start parser in state '{self.state.value}'")

        self.source_name = source.name
        try:
            self._stream = source.open()
            self._reader = csv.reader(self._stream, delimiter=self.options.delimiter)
            header = self._read_record()
            if isinstance(header, csv.Error):
                raise SourceReadError(f"Malformed header row in '{source.name}': {header}")
            header = header or []
            self.headers = [h.strip() for h in header] if self.options.trim_headers else list(header)
            self._lookahead = self._read_record()
        except (OSError, UnicodeDecodeError) as e:
            self._fail()
            raise SourceReadError(f"Error reading '{source.name}': {e}") from e
        except SourceReadError:
            self._fail()
            raise

        self.state = ParserState.PARSING
        logger.info(f"CSV header: {self.headers}")

    def next_batch(self) -> Optional[Batch]:
        """
        Decode the next batch of rows.

        Returns:
            Batch or None: None once the input is exhausted (parser COMPLETED)

        Raises:
            ParserStateError: If the parser is paused, idle or failed
            SourceReadError: If reading the source fails mid-stream
        """
        if self.state == ParserState.COMPLETED:
            return None
        if self.state != ParserState.PARSING:
            raise ParserStateError(f"Cannot read a batch in state '{self.state.value}'")

        rows: List[RawRow] = []
        row_indices: List[int] = []
        errors: List[RowError] = []
        expected = len(self.headers)

        try:
            while len(rows) < self.options.batch_size and self._lookahead is not None:
                record = self._lookahead
                row_index = self._next_row_index
                self._next_row_index += 1

                if isinstance(record, csv.Error):
                    errors.append(RowError(row_index, f"Malformed row: {record}"))
                elif len(record) != expected:
                    errors.append(RowError(
                        row_index, f"Expected {expected} fields but found {len(record)}"
                    ))
                else:
                    rows.append(dict(zip(self.headers, record)))
                    row_indices.append(row_index)

                self._lookahead = self._read_record()
        except (OSError, UnicodeDecodeError) as e:
            self._fail()
            raise SourceReadError(f"Error reading '{self.source_name}': {e}") from e

        if not rows and not errors:
            self._complete()
            return None

        self.current_batch += 1
        self.rows_emitted += len(rows)
        self.decode_errors += len(errors)
        batch = Batch(
            index=self.current_batch,
            rows=rows,
            row_indices=row_indices,
            errors=errors,
            is_last=self._lookahead is None
        )
        logger.debug(f"Yielding batch {batch.index} with {len(rows)} rows, {len(errors)} decode errors")
        return batch

    def pause(self) -> None:
        """Suspend decoding between batches."""
        if self.state != ParserState.PARSING:
            raise ParserStateError(f"Cannot pause parser in state '{self.state.value}'")
        self.state = ParserState.PAUSED

    def resume(self) -> None:
        """Continue decoding from the next unread record."""
        if self.state != ParserState.PAUSED:
            raise ParserStateError(f"Cannot resume parser in state '{self.state.value}'")
        self.state = ParserState.PARSING

    def abort(self) -> None:
        """Release the source and move to FAILED. No-op once terminal."""
        if self.state in (ParserState.COMPLETED, ParserState.FAILED):
            return
        logger.warning(f"Parser for '{self.source_name}' aborted after batch {self.current_batch}")
        self._fail()

    @property
    def is_terminal(self) -> bool:
        return self.state in (ParserState.COMPLETED, ParserState.FAILED)

    def _read_record(self):
        """
        Next record as a list of cells, None at end of input, or the
        csv.Error raised for a malformed record.
        """
        while True:
            try:
                record = next(self._reader)
            except StopIteration:
                return None
            except csv.Error as e:
                return e
            if self.options.skip_empty_lines and self._is_empty(record):
                continue
            return record

    @staticmethod
    def _is_empty(record: List[str]) -> bool:
        return not record or (len(record) == 1 and record[0] == '')

    def _complete(self) -> None:
        self._close()
        self.state = ParserState.COMPLETED
        logger.info(
            f"Total rows parsed from '{self.source_name}': {self.rows_emitted} "
            f"({self.decode_errors} decode errors)"
        )

    def _fail(self) -> None:
        self._close()
        self.state = ParserState.FAILED

    def _close(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                logger.debug(f"Error closing source stream: {e}")
            self._stream = None
        self._reader = None
        self._lookahead = None
