# ========================
# tests/test_ingestion.py
# ========================

import unittest
import tempfile
import sys
import os
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.ingestion import ChunkParser, CSVSource, ParseOptions, ParserState
from src.pipeline.errors import ParserStateError, SourceReadError

HEADER = "asin,price,reviews,rating,conversion_rate,click_through_rate,brands,keywords,niche\n"


def make_rows(count, start=0):
    return "".join(
        f"B{i:09d},{i}.99,{i},4.5,0.10,0.02,Acme,kw {i},pets\n" for i in range(start, start + count)
    )


class TestChunkParser(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)

    def _write(self, content, name="listings.csv", encoding="utf-8"):
        path = Path(self.temp_dir.name) / name
        with open(path, "w", encoding=encoding, newline="") as f:
            f.write(content)
        return path

    def _parser(self, batch_size=3, **kwargs):
        return ChunkParser(ParseOptions(batch_size=batch_size, **kwargs))

    def test_batches_are_bounded_and_ordered(self):
        """
        Tests that seven rows with batch size three arrive as 3, 3, 1.
        """
        path = self._write(HEADER + make_rows(7))
        parser = self._parser(batch_size=3)
        parser.start(CSVSource.from_path(path))

        batches = []
        while True:
            batch = parser.next_batch()
            if batch is None:
                break
            batches.append(batch)

        self.assertEqual([len(b.rows) for b in batches], [3, 3, 1])
        self.assertEqual([b.index for b in batches], [1, 2, 3])
        self.assertEqual([b.is_last for b in batches], [False, False, True])
        self.assertEqual(batches[1].row_indices, [3, 4, 5])
        self.assertEqual(batches[0].rows[0]['asin'], 'B000000000')
        self.assertEqual(parser.state, ParserState.COMPLETED)
        self.assertEqual(parser.rows_emitted, 7)

    def test_headers_are_trimmed(self):
        path = self._write(" asin , price\nA1,2\n")
        parser = self._parser()
        parser.start(CSVSource.from_path(path))
        self.assertEqual(parser.headers, ['asin', 'price'])
        batch = parser.next_batch()
        self.assertEqual(batch.rows, [{'asin': 'A1', 'price': '2'}])

    def test_byte_order_mark_is_ignored(self):
        path = self._write(HEADER + make_rows(1), encoding="utf-8-sig")
        parser = self._parser()
        parser.start(CSVSource.from_path(path))
        self.assertEqual(parser.headers[0], 'asin')

    def test_pause_and_resume_continue_from_same_record(self):
        """
        Tests that no row is lost or repeated across a pause.
        """
        path = self._write(HEADER + make_rows(6))
        parser = self._parser(batch_size=2)
        parser.start(CSVSource.from_path(path))

        first = parser.next_batch()
        parser.pause()
        self.assertEqual(parser.state, ParserState.PAUSED)
        with self.assertRaises(ParserStateError):
            parser.next_batch()
        parser.resume()
        second = parser.next_batch()

        self.assertEqual(first.row_indices, [0, 1])
        self.assertEqual(second.row_indices, [2, 3])
        self.assertEqual(second.rows[0]['asin'], 'B000000002')

    def test_illegal_transitions_raise(self):
        parser = self._parser()
        with self.assertRaises(ParserStateError):
            parser.pause()
        with self.assertRaises(ParserStateError):
            parser.resume()
        with self.assertRaises(ParserStateError):
            parser.next_batch()

        path = self._write(HEADER)
        parser.start(CSVSource.from_path(path))
        with self.assertRaises(ParserStateError):
            parser.start(CSVSource.from_path(path))

    def test_abort_moves_to_failed(self):
        path = self._write(HEADER + make_rows(5))
        parser = self._parser(batch_size=2)
        parser.start(CSVSource.from_path(path))
        parser.next_batch()
        parser.abort()

        self.assertEqual(parser.state, ParserState.FAILED)
        self.assertTrue(parser.is_terminal)
        with self.assertRaises(ParserStateError):
            parser.next_batch()
        parser.abort()  # no-op once terminal
        self.assertEqual(parser.state, ParserState.FAILED)

    def test_wrong_field_count_is_reported_with_row_index(self):
        content = HEADER + make_rows(1) + "B1,1.0,2\n" + make_rows(1, start=1)
        path = self._write(content)
        parser = self._parser(batch_size=10)
        parser.start(CSVSource.from_path(path))
        batch = parser.next_batch()

        self.assertEqual(len(batch.rows), 2)
        self.assertEqual(batch.row_indices, [0, 2])
        self.assertEqual(len(batch.errors), 1)
        self.assertEqual(batch.errors[0].row_index, 1)
        self.assertEqual(batch.errors[0].message, "Expected 9 fields but found 3")

    def test_empty_lines_are_skipped(self):
        path = self._write(HEADER + make_rows(1) + "\n\n" + make_rows(1, start=1) + "\n")
        parser = self._parser(batch_size=10)
        parser.start(CSVSource.from_path(path))
        batch = parser.next_batch()

        self.assertEqual(len(batch.rows), 2)
        self.assertEqual(batch.errors, [])
        self.assertTrue(batch.is_last)

    def test_quoted_cells_keep_delimiters(self):
        path = self._write(HEADER + 'B1,1.0,2,4.0,0.1,0.2,Acme,"usb hub, charger",office\n')
        parser = self._parser()
        parser.start(CSVSource.from_path(path))
        batch = parser.next_batch()
        self.assertEqual(batch.rows[0]['keywords'], 'usb hub, charger')

    def test_custom_delimiter(self):
        source = CSVSource.from_bytes("semi.csv", b"asin;price\nA1;3.5\n")
        parser = self._parser(delimiter=';')
        parser.start(source)
        self.assertEqual(parser.next_batch().rows, [{'asin': 'A1', 'price': '3.5'}])

    def test_empty_file_has_no_headers(self):
        path = self._write("")
        parser = self._parser()
        parser.start(CSVSource.from_path(path))
        self.assertEqual(parser.headers, [])
        self.assertIsNone(parser.next_batch())
        self.assertEqual(parser.state, ParserState.COMPLETED)

    def test_invalid_utf8_raises_source_read_error(self):
        source = CSVSource.from_bytes("bad.csv", b"asin,price\nA1,\xff\xfe\xfa\n")
        parser = self._parser()
        with self.assertRaises(SourceReadError):
            parser.start(source)
            parser.next_batch()
        self.assertEqual(parser.state, ParserState.FAILED)

    def test_missing_file_raises_source_read_error(self):
        with self.assertRaises(SourceReadError):
            CSVSource.from_path(Path(self.temp_dir.name) / "missing.csv")

    def test_source_identity_from_path(self):
        path = self._write(HEADER)
        source = CSVSource.from_path(path)
        self.assertEqual(source.identity.name, "listings.csv")
        self.assertEqual(source.identity.size_bytes, len(HEADER.encode("utf-8")))
        self.assertEqual(source.identity.last_modified_ms, path.stat().st_mtime_ns // 1_000_000)

    def test_invalid_batch_size_rejected(self):
        with self.assertRaises(ValueError):
            ParseOptions(batch_size=0)
        with self.assertRaises(ValueError):
            ParseOptions(has_header=False)


if __name__ == '__main__':
    unittest.main()
