# ========================
# tests/test_cache.py
# ========================

import unittest
import tempfile
import json
import sys
import os
from pathlib import Path
from unittest import mock

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.cache import (
    FileCacheStore,
    InMemoryCacheStore,
    cache_key,
    create_cache_store,
    deserialize_result,
    serialize_result,
)
from src.pipeline.errors import CacheReadCorruption, CacheWriteError
from src.pipeline.ingestion import SourceIdentity
from src.pipeline.models import INVALID, RowError, TypedRow
from src.pipeline.orchestrator import IngestionPipeline
from src.pipeline.validation import REQUIRED_COLUMNS
from src.utils.config import Config


def make_row(**overrides):
    values = {
        'asin': 'B01', 'price': 12.5, 'reviews': 3, 'rating': 4.2,
        'conversion_rate': 0.1, 'click_through_rate': 0.05,
        'brands': 'Acme', 'keywords': 'usb, hub', 'niche': 'electronics',
    }
    values.update(overrides)
    return TypedRow(**values)


class TestResultSerialization(unittest.TestCase):

    def _entry(self, rows=None, errors=None):
        return {
            'rows': rows if rows is not None else [make_row().to_dict()],
            'errors': errors if errors is not None else [],
        }

    def test_invalid_is_stored_as_null(self):
        payload = serialize_result([make_row(rating=INVALID)], [RowError(0, "Invalid numeric value for rating", "rating")])
        self.assertIsNone(json.loads(payload)['rows'][0]['rating'])
        rows, errors = deserialize_result(payload)
        self.assertIs(rows[0].rating, INVALID)
        self.assertEqual(rows[0].keywords, 'usb, hub')
        self.assertEqual(errors, [RowError(0, "Invalid numeric value for rating", "rating")])

    def test_row_errors_round_trip(self):
        errors = [RowError(1, "Expected 9 fields but found 3"), RowError(4, "price must be non-negative (got -1.0)", "price")]
        _, decoded = deserialize_result(serialize_result([], errors))
        self.assertEqual(decoded, errors)

    def test_corrupt_payloads_are_rejected(self):
        row = make_row().to_dict()
        bad_payloads = [
            "",
            "{not json",
            '[]',
            json.dumps({'rows': []}),
            json.dumps({'rows': {}, 'errors': []}),
            json.dumps(self._entry(rows=[1, 2])),
            json.dumps(self._entry(rows=[{"asin": "B01"}])),
            json.dumps(self._entry(rows=[dict(row, price="12.5")])),
            json.dumps(self._entry(rows=[dict(row, reviews=3.5)])),
            json.dumps(self._entry(rows=[dict(row, brands=None)])),
            json.dumps(self._entry(errors=["Row 1: bad"])),
            json.dumps(self._entry(errors=[{"row_index": "1", "message": "bad", "column": None}])),
            json.dumps(self._entry(errors=[{"row_index": 1, "message": None, "column": None}])),
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(CacheReadCorruption):
                    deserialize_result(payload)

    def test_cache_key_format(self):
        identity = SourceIdentity("listings.csv", 2048, 1712345678901)
        self.assertEqual(cache_key(identity), "csv_cache_listings.csv_2048_1712345678901")
        self.assertEqual(cache_key(identity, prefix="x_"), "x_listings.csv_2048_1712345678901")


class TestInMemoryCacheStore(unittest.TestCase):

    def test_put_get_evict(self):
        store = InMemoryCacheStore()
        self.assertIsNone(store.get("k"))
        store.put("k", "v1")
        store.put("k", "v2")
        self.assertEqual(store.get("k"), "v2")
        self.assertIn("k", store)
        self.assertTrue(store.evict("k"))
        self.assertFalse(store.evict("k"))
        self.assertNotIn("k", store)

    def test_least_recently_used_entry_is_dropped(self):
        store = InMemoryCacheStore(max_entries=2)
        store.put("a", "1")
        store.put("b", "2")
        store.get("a")
        store.put("c", "3")
        self.assertEqual(len(store), 2)
        self.assertIsNone(store.get("b"))
        self.assertEqual(store.get("a"), "1")

    def test_quota_exceeded_raises(self):
        store = InMemoryCacheStore(max_bytes=4)
        with self.assertRaises(CacheWriteError):
            store.put("k", "12345")
        self.assertEqual(len(store), 0)

    def test_clear(self):
        store = InMemoryCacheStore()
        store.put("a", "1")
        store.clear()
        self.assertEqual(len(store), 0)


class TestFileCacheStore(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.cache_dir = Path(self.temp_dir.name) / "cache"

    def test_round_trip_survives_new_instance(self):
        FileCacheStore(self.cache_dir).put("csv_cache_a.csv_1_2", '[{"x": 1}]')
        store = FileCacheStore(self.cache_dir)
        self.assertEqual(store.get("csv_cache_a.csv_1_2"), '[{"x": 1}]')
        self.assertIsNone(store.get("csv_cache_other"))

    def test_evict_and_clear(self):
        store = FileCacheStore(self.cache_dir)
        store.put("a", "1")
        store.put("b", "2")
        self.assertTrue(store.evict("a"))
        self.assertFalse(store.evict("a"))
        store.clear()
        self.assertEqual(list(self.cache_dir.glob("*.json")), [])

    def test_capacity_drops_oldest_entry(self):
        store = FileCacheStore(self.cache_dir, max_entries=2)
        for key in ("a", "b", "c"):
            store.put(key, key)
            path = store._path_for(key)
            stamp = {"a": 1, "b": 2, "c": 3}[key] * 1_000_000_000
            os.utime(path, ns=(stamp, stamp))
            store._enforce_capacity()

        self.assertIsNone(store.get("a"))
        self.assertEqual(store.get("b"), "b")
        self.assertEqual(store.get("c"), "c")

    def test_capacity_sweep_skips_vanished_entries(self):
        store = FileCacheStore(self.cache_dir, max_entries=1)
        store.put("a", "1")
        os.utime(store._path_for("a"), ns=(1_000_000_000, 1_000_000_000))
        vanished = self.cache_dir / "gone.json"
        real_glob = Path.glob

        def glob_with_vanished(path, pattern):
            return list(real_glob(path, pattern)) + [vanished]

        with mock.patch.object(Path, 'glob', glob_with_vanished):
            store.put("b", "2")

        self.assertEqual(store.get("b"), "2")
        self.assertFalse(vanished.exists())

    def test_ingestion_survives_concurrent_cache_sweep(self):
        store = FileCacheStore(self.cache_dir, max_entries=1)
        csv_path = Path(self.temp_dir.name) / "listings.csv"
        csv_path.write_text(
            ",".join(REQUIRED_COLUMNS) + "\nB01,12.5,3,4.2,0.1,0.05,Acme,usb,electronics\n",
            encoding="utf-8"
        )
        real_glob = Path.glob

        def glob_with_vanished(path, pattern):
            return list(real_glob(path, pattern)) + [self.cache_dir / "gone.json"]

        with mock.patch.object(Path, 'glob', glob_with_vanished):
            result = IngestionPipeline(cache=store).process(csv_path)

        self.assertEqual(len(result.rows), 1)
        self.assertEqual(len(list(self.cache_dir.glob("*.json"))), 1)

    def test_failed_rename_removes_temp_file(self):
        store = FileCacheStore(self.cache_dir)
        with mock.patch('src.pipeline.cache.os.replace', side_effect=OSError("disk full")):
            with self.assertRaises(CacheWriteError):
                store.put("k", "value")

        self.assertEqual(list(self.cache_dir.glob("*.tmp")), [])
        self.assertIsNone(store.get("k"))

    def test_quota_exceeded_raises(self):
        store = FileCacheStore(self.cache_dir, max_bytes=2)
        with self.assertRaises(CacheWriteError):
            store.put("k", "long value")
        self.assertIsNone(store.get("k"))

    def test_unreadable_file_reads_as_corrupt(self):
        store = FileCacheStore(self.cache_dir)
        store.put("k", "[]")
        store._path_for("k").write_text("garbage", encoding="utf-8")
        self.assertEqual(store.get("k"), "")
        with self.assertRaises(CacheReadCorruption):
            deserialize_result(store.get("k"))


class TestCreateCacheStore(unittest.TestCase):

    def test_backends(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            file_store = create_cache_store(Config({'cache_backend': 'file', 'cache_dir': temp_dir}))
            self.assertIsInstance(file_store, FileCacheStore)
            self.assertEqual(file_store.max_entries, 100)

        memory_store = create_cache_store(Config({'cache_backend': 'MEMORY', 'cache_max_bytes': 0}))
        self.assertIsInstance(memory_store, InMemoryCacheStore)
        self.assertIsNone(memory_store.max_bytes)

        with self.assertRaises(ValueError):
            create_cache_store(Config({'cache_backend': 'redis'}))


if __name__ == '__main__':
    unittest.main()
