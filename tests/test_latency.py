"""Tests for meter.latency -- HTTP and WebSocket probe bursts."""

import unittest

from aiohttp.test_utils import AioHTTPTestCase, unused_port
from fakes import endpoint, make_endpoint_app

from meter.api import KIND_OOKLA, Endpoint
from meter.errors import LatencyError
from meter.latency import LatencyProber, LatencySample


class TestLatencySample(unittest.TestCase):
    def test_metrics(self):
        s = LatencySample(endpoint=endpoint("A"), rtts=[10.0, 12.0, 9.0], attempts=4)
        self.assertAlmostEqual(s.ping_ms, 31.0 / 3)
        self.assertAlmostEqual(s.jitter_ms, 2.5)
        self.assertEqual(s.min_ms, 9.0)
        self.assertAlmostEqual(s.packet_loss, 25.0)

    def test_single_rtt_has_zero_jitter(self):
        s = LatencySample(endpoint=endpoint("A"), rtts=[15.0], attempts=1)
        self.assertEqual(s.jitter_ms, 0.0)
        self.assertEqual(s.ping_ms, 15.0)

    def test_to_dict(self):
        d = LatencySample(endpoint=endpoint("A"), rtts=[1.0, 2.0], attempts=2).to_dict()
        self.assertEqual(d["server_id"], "A")
        self.assertEqual(d["packet_loss"], 0.0)


class TestUnreachable(unittest.IsolatedAsyncioTestCase):
    async def test_http_all_failed(self):
        closed = Endpoint(id="X", url=f"http://127.0.0.1:{unused_port()}")
        with self.assertRaises(LatencyError) as ctx:
            await LatencyProber(probe_timeout=1.0).probe(closed, sample_count=3, deadline=2.0)
        self.assertEqual(ctx.exception.attempts, 3)

    async def test_ws_all_failed(self):
        closed = Endpoint(id="X", url=f"http://127.0.0.1:{unused_port()}", kind=KIND_OOKLA)
        with self.assertRaises(LatencyError):
            await LatencyProber(probe_timeout=1.0).probe(closed, sample_count=3, deadline=2.0)


class TestProbeEndpoint(AioHTTPTestCase):
    async def get_application(self):
        return make_endpoint_app()

    def _endpoint(self, kind="cloudflare"):
        return Endpoint(id="A", url=str(self.server.make_url("/")), kind=kind)

    async def test_http_probe(self):
        sample = await LatencyProber().probe(self._endpoint(), sample_count=5, deadline=5.0)
        self.assertEqual(len(sample.rtts), 5)
        self.assertEqual(sample.attempts, 5)
        self.assertTrue(all(r >= 0 for r in sample.rtts))
        # warm-up plus five probes, all zero-byte downloads
        self.assertEqual(self.app["downloads"], [0] * 6)

    async def test_ws_probe(self):
        sample = await LatencyProber().probe(
            self._endpoint(KIND_OOKLA), sample_count=4, deadline=5.0
        )
        self.assertEqual(len(sample.rtts), 4)
        self.assertEqual(sample.server_version, "2.11")
        self.assertEqual(sample.packet_loss, 0.0)


class TestLatePong(AioHTTPTestCase):
    async def get_application(self):
        # first PONG arrives 300 ms after its PING, the rest after 50 ms
        return make_endpoint_app(pong_delays=[0.3, 0.05, 0.05, 0.05])

    async def test_late_pong_is_not_credited_to_the_next_ping(self):
        ep = Endpoint(id="A", url=str(self.server.make_url("/")), kind=KIND_OOKLA)
        sample = await LatencyProber(probe_timeout=0.2).probe(ep, sample_count=4, deadline=5.0)

        self.assertEqual(sample.attempts, 4)
        self.assertEqual(len(sample.rtts), 3)
        # PING 2 waits behind the late PONG 1 plus its own 50 ms
        self.assertGreater(sample.rtts[0], 125)
        for rtt in sample.rtts[1:]:
            self.assertGreater(rtt, 40)
            self.assertLess(rtt, 120)
        self.assertAlmostEqual(sample.packet_loss, 25.0)


class TestProbeServerError(AioHTTPTestCase):
    async def get_application(self):
        return make_endpoint_app(status=503)

    async def test_http_errors_fail_the_burst(self):
        ep = Endpoint(id="A", url=str(self.server.make_url("/")))
        with self.assertRaises(LatencyError) as ctx:
            await LatencyProber().probe(ep, sample_count=2, deadline=5.0)
        self.assertEqual(ctx.exception.attempts, 2)
        self.assertIsNotNone(ctx.exception.last_error)


if __name__ == "__main__":
    unittest.main()
