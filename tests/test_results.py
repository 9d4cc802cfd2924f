"""Tests for meter.results -- samples and aggregation."""

import unittest
from datetime import datetime, timezone

from meter.errors import AggregationError
from meter.results import IterationFailure, Sample, aggregate

TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _sample(down=100.0, up=20.0, ping=10.0, jitter=1.0, server="A", iteration=1, degraded=False):
    return Sample(
        download_mbps=down,
        upload_mbps=up,
        ping_ms=ping,
        jitter_ms=jitter,
        server_id=server,
        timestamp=TS,
        iteration=iteration,
        degraded=degraded,
    )


class TestSample(unittest.TestCase):
    def test_rejects_negative(self):
        with self.assertRaises(ValueError):
            _sample(down=-1.0)
        with self.assertRaises(ValueError):
            _sample(jitter=-0.1)

    def test_to_row_order_and_rounding(self):
        row = _sample(down=123.456, up=7.891, ping=10.555, jitter=0.123).to_row()
        self.assertEqual(
            list(row),
            ["timestamp", "download_speed_mbps", "upload_speed_mbps",
             "ping_ms", "server_id", "jitter_ms"],
        )
        self.assertEqual(row["download_speed_mbps"], 123.46)
        self.assertEqual(row["timestamp"], "2024-05-01T12:00:00+00:00")

    def test_to_dict_includes_iteration(self):
        d = _sample(iteration=3, degraded=True).to_dict()
        self.assertEqual(d["iteration"], 3)
        self.assertTrue(d["degraded"])


class TestAggregate(unittest.TestCase):
    def test_empty_raises(self):
        with self.assertRaises(AggregationError):
            aggregate([])

    def test_empty_keeps_failures(self):
        failure = IterationFailure(1, "A", "measure_download", "timeout")
        with self.assertRaises(AggregationError) as ctx:
            aggregate([], [failure])
        self.assertEqual(ctx.exception.failures, [failure])

    def test_single_sample_echoes_values(self):
        s = _sample(down=93.2, up=18.7, ping=11.0, jitter=0.8)
        r = aggregate([s])
        self.assertEqual(r.mean_download_mbps, 93.2)
        self.assertEqual(r.mean_upload_mbps, 18.7)
        self.assertEqual(r.mean_ping_ms, 11.0)
        self.assertEqual(r.mean_jitter_ms, 0.8)
        self.assertEqual(r.samples, (s,))
        self.assertFalse(r.degraded)

    def test_means_and_order(self):
        samples = [
            _sample(down=100.0, up=10.0, ping=10.0, jitter=1.0, iteration=1),
            _sample(down=200.0, up=30.0, ping=20.0, jitter=3.0, iteration=2),
        ]
        r = aggregate(samples)
        self.assertAlmostEqual(r.mean_download_mbps, 150.0)
        self.assertAlmostEqual(r.mean_upload_mbps, 20.0)
        self.assertAlmostEqual(r.mean_ping_ms, 15.0)
        self.assertAlmostEqual(r.mean_jitter_ms, 2.0)
        self.assertEqual([s.iteration for s in r.samples], [1, 2])
        self.assertEqual(r.iterations, 2)

    def test_explicit_iteration_count(self):
        r = aggregate([_sample()], iterations=3)
        self.assertEqual(r.iterations, 3)

    def test_degraded_by_sample_or_failure(self):
        self.assertTrue(aggregate([_sample(degraded=True)]).degraded)
        failure = IterationFailure(2, "A", "probe_latency", "all_probes_failed")
        self.assertTrue(aggregate([_sample()], [failure]).degraded)

    def test_per_server(self):
        samples = [
            _sample(down=100.0, server="A", iteration=1),
            _sample(down=50.0, server="B", iteration=1),
            _sample(down=300.0, server="A", iteration=2),
        ]
        r = aggregate(samples)
        self.assertEqual(r.server_ids, ("A", "B"))
        per = r.per_server()
        self.assertEqual(list(per), ["A", "B"])
        self.assertAlmostEqual(per["A"].mean_download_mbps, 200.0)
        self.assertAlmostEqual(per["B"].mean_download_mbps, 50.0)

    def test_to_dict(self):
        failure = IterationFailure(2, "A", "measure_upload", "connection_refused", "boom")
        d = aggregate([_sample()], [failure], iterations=2).to_dict()
        self.assertEqual(d["summary"]["samples"], 1)
        self.assertEqual(d["summary"]["iterations"], 2)
        self.assertTrue(d["summary"]["degraded"])
        self.assertEqual(d["failures"][0]["kind"], "connection_refused")
        self.assertEqual(len(d["samples"]), 1)


if __name__ == "__main__":
    unittest.main()
