# ========================
# src/pipeline/cache.py
# ========================

"""
Result Cache Module

Key/value stores for decoded ingestion results, keyed by file identity.
Values are JSON objects holding the typed rows and row errors of a run.
"""

import os
import json
import hashlib
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import CacheReadCorruption, CacheWriteError
from .ingestion import SourceIdentity
from .models import INVALID, RowError, TypedRow

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "csv_cache_"


def cache_key(identity: SourceIdentity, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """
    Build the cache key for a source.

    Args:
        identity (SourceIdentity): (name, size in bytes, mtime in epoch ms)
        prefix (str): Key namespace prefix

    Returns:
        str: "{prefix}{name}_{size}_{mtime_ms}"
    """
    return f"{prefix}{identity.name}_{identity.size_bytes}_{identity.last_modified_ms}"


def serialize_result(rows: List[TypedRow], errors: List[RowError]) -> str:
    """Serialize typed rows and their row errors to a JSON object."""
    return json.dumps({
        'rows': [row.to_dict() for row in rows],
        'errors': [error.to_dict() for error in errors]
    }, ensure_ascii=False)


def deserialize_result(payload: str) -> Tuple[List[TypedRow], List[RowError]]:
    """
    Decode a payload produced by serialize_result().

    Raises:
        CacheReadCorruption: If the payload is not a valid cache entry
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise CacheReadCorruption(f"Cached payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CacheReadCorruption("Cached payload is not an object")
    if not isinstance(data.get('rows'), list) or not isinstance(data.get('errors'), list):
        raise CacheReadCorruption("Cached payload lacks 'rows' and 'errors' lists")

    return _decode_rows(data['rows']), _decode_errors(data['errors'])


def _decode_rows(items: list) -> List[TypedRow]:
    rows = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise CacheReadCorruption(f"Cached row {position} is not an object")
        try:
            row = TypedRow.from_dict(item)
        except (KeyError, TypeError) as e:
            raise CacheReadCorruption(f"Cached row {position} is malformed: {e}") from e
        if not _has_valid_types(row):
            raise CacheReadCorruption(f"Cached row {position} has unexpected value types")
        rows.append(row)
    return rows


def _decode_errors(items: list) -> List[RowError]:
    errors = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise CacheReadCorruption(f"Cached row error {position} is not an object")
        row_index = item.get('row_index')
        message = item.get('message')
        column = item.get('column')
        if (isinstance(row_index, bool) or not isinstance(row_index, int)
                or not isinstance(message, str)
                or not (column is None or isinstance(column, str))):
            raise CacheReadCorruption(f"Cached row error {position} is malformed")
        errors.append(RowError(row_index, message, column))
    return errors


def _has_valid_types(row: TypedRow) -> bool:
    for name in row.TEXT_FIELDS:
        if not isinstance(getattr(row, name), str):
            return False
    for name in row.NUMERIC_FIELDS:
        value = getattr(row, name)
        if value is INVALID:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
    return isinstance(row.reviews, int) or row.reviews is INVALID


class CacheStore(ABC):
    """Abstract key/value store for serialized ingestion results."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None on a miss."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """
        Store a value, overwriting any existing entry.

        Raises:
            CacheWriteError: If the value cannot be stored
        """

    @abstractmethod
    def evict(self, key: str) -> bool:
        """Remove an entry. Returns True if one was removed."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryCacheStore(CacheStore):
    """
    Thread-safe in-process store with least-recently-used eviction.

    Args:
        max_entries (int): Keep at most this many entries (None = unbounded)
        max_bytes (int): Reject values larger than this many bytes (None = no quota)
    """

    def __init__(self, max_entries: Optional[int] = None, max_bytes: Optional[int] = None):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: str) -> None:
        size = len(value.encode('utf-8'))
        if self.max_bytes is not None and size > self.max_bytes:
            raise CacheWriteError(
                f"Value for '{key}' is {size} bytes, exceeding the {self.max_bytes} byte quota"
            )
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while self.max_entries is not None and len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info(f"Cache capacity reached, evicted '{evicted}'")

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FileCacheStore(CacheStore):
    """
    Stores each entry as a JSON file in a directory.

    File names are the SHA-256 of the key; the key itself is stored inside
    the file. Writes go to a temporary file first and are renamed into place.
    """

    def __init__(self,
                 cache_dir: str = "data/cache",
                 max_entries: Optional[int] = None,
                 max_bytes: Optional[int] = None):
        """
        Initialize the file cache.

        Args:
            cache_dir (str): Directory holding cache files
            max_entries (int): Keep at most this many entries, oldest evicted first
            max_bytes (int): Reject values larger than this many bytes
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._lock = threading.Lock()
        logger.info(f"FileCacheStore initialized at {self.cache_dir}")

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return self.cache_dir / f"{digest}.json"

    def get(self, key: str) -> Optional[str]:
        file_path = self._path_for(key)
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                entry = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            # unreadable entries decode as corrupt
            logger.warning(f"Could not read cache file {file_path}: {e}")
            return ""

        if not isinstance(entry, dict) or entry.get('key') != key:
            return None
        value = entry.get('value')
        return value if isinstance(value, str) else ""

    def put(self, key: str, value: str) -> None:
        size = len(value.encode('utf-8'))
        if self.max_bytes is not None and size > self.max_bytes:
            raise CacheWriteError(
                f"Value for '{key}' is {size} bytes, exceeding the {self.max_bytes} byte quota"
            )

        file_path = self._path_for(key)
        with self._lock:
            tmp_path = None
            try:
                fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix='.tmp')
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump({'key': key, 'value': value}, f, ensure_ascii=False)
                os.replace(tmp_path, file_path)
            except OSError as e:
                if tmp_path is not None:
                    Path(tmp_path).unlink(missing_ok=True)
                raise CacheWriteError(f"Error writing cache file {file_path}: {e}") from e
            logger.debug(f"Cached {size} bytes under '{key}'")
            self._enforce_capacity()

    def evict(self, key: str) -> bool:
        file_path = self._path_for(key)
        with self._lock:
            try:
                file_path.unlink()
                return True
            except FileNotFoundError:
                return False

    def clear(self) -> None:
        with self._lock:
            for file_path in self.cache_dir.glob("*.json"):
                file_path.unlink(missing_ok=True)

    def _enforce_capacity(self) -> None:
        """Drop the oldest entries beyond max_entries. Entries removed concurrently are skipped."""
        if self.max_entries is None:
            return
        entries = []
        for file_path in self.cache_dir.glob("*.json"):
            try:
                entries.append((file_path.stat().st_mtime_ns, file_path))
            except FileNotFoundError:
                continue
        entries.sort(key=lambda entry: entry[0])
        for _, file_path in entries[:max(0, len(entries) - self.max_entries)]:
            try:
                file_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not evict cache file {file_path.name}: {e}")
                continue
            logger.info(f"Cache capacity reached, evicted {file_path.name}")


def create_cache_store(config) -> CacheStore:
    """
    Build the cache store selected by configuration.

    Args:
        config (Config): Pipeline configuration (CACHE_BACKEND, CACHE_DIR, limits)

    Returns:
        CacheStore: A FileCacheStore for "file", an InMemoryCacheStore for "memory"
    """
    max_entries = config.CACHE_MAX_ENTRIES or None
    max_bytes = config.CACHE_MAX_BYTES or None
    backend = config.CACHE_BACKEND.lower()

    if backend == 'file':
        return FileCacheStore(config.CACHE_DIR, max_entries=max_entries, max_bytes=max_bytes)
    if backend == 'memory':
        return InMemoryCacheStore(max_entries=max_entries, max_bytes=max_bytes)
    raise ValueError(f"Unknown cache backend: {config.CACHE_BACKEND}")
