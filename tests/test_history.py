"""Tests for meter.history -- JSON-lines run history."""

import os
import tempfile
import unittest
from datetime import datetime, timezone
from unittest import mock

from meter.history import format_history_table, load_history, save_result, sparkline
from meter.results import Sample, aggregate

TS = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


def _result(down=100.0, server="A"):
    return aggregate([Sample(down, 20.0, 10.0, 1.0, server, TS)])


class TestHistoryFile(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "sub", "history.jsonl")
        patcher = mock.patch("meter.history._history_path", return_value=self.path)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)

    def test_empty_when_missing(self):
        self.assertEqual(load_history(), [])

    def test_append_and_load(self):
        save_result(_result(100.0))
        save_result(_result(50.0, server="B"))
        entries = load_history()
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[0]["timestamp"], TS.isoformat())
        self.assertEqual(entries[1]["summary"]["download_mbps"], 50.0)
        self.assertEqual(entries[1]["samples"][0]["server_id"], "B")

    def test_limit_keeps_newest(self):
        for down in (10.0, 20.0, 30.0):
            save_result(_result(down))
        entries = load_history(limit=2)
        self.assertEqual([e["summary"]["download_mbps"] for e in entries], [20.0, 30.0])

    def test_corrupt_line_skipped(self):
        save_result(_result())
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write("{broken\n\n")
        save_result(_result())
        self.assertEqual(len(load_history()), 2)


class TestFormatHistory(unittest.TestCase):
    def test_rows(self):
        entry = {"timestamp": TS.isoformat(), **_result().to_dict()}
        rows = format_history_table([entry])
        self.assertEqual(rows[0]["timestamp"], "2024-05-01 12:30")
        self.assertEqual(rows[0]["servers"], "A")
        self.assertEqual(rows[0]["download"], 100.0)
        self.assertFalse(rows[0]["degraded"])

    def test_bad_timestamp(self):
        rows = format_history_table([{"timestamp": "yesterday-ish"}])
        self.assertEqual(rows[0]["timestamp"], "yesterday-ish")
        self.assertEqual(rows[0]["servers"], "?")

    def test_sparkline(self):
        self.assertEqual(sparkline([]), "")
        line = sparkline([1.0, 5.0, 9.0])
        self.assertEqual(len(line), 3)
        self.assertEqual(line[0], "▁")
        self.assertEqual(line[-1], "█")

    def test_sparkline_flat(self):
        self.assertEqual(sparkline([3.0, 3.0]), "▁▁")


if __name__ == "__main__":
    unittest.main()
