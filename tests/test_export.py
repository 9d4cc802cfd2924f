"""Tests for meter.export against a fake ClickHouse HTTP interface."""

import asyncio
import json
import unittest
from datetime import datetime, timezone

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase, unused_port

from meter.export import (
    CREATE_TABLE_SQL,
    INSERT_SQL,
    ClickHouseExporter,
    ExportError,
    sample_to_row,
)
from meter.results import Sample, aggregate

TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _samples():
    return [
        Sample(100.0, 20.0, 10.0, 1.0, "A", TS, iteration=1),
        Sample(90.0, 18.0, 11.0, 2.0, "A", TS, iteration=2),
    ]


class TestSampleToRow(unittest.TestCase):
    def test_clickhouse_timestamp(self):
        row = sample_to_row(_samples()[0])
        self.assertEqual(row["timestamp"], "2024-05-01 12:00:00")
        self.assertEqual(row["server_id"], "A")


class TestClickHouseExporter(AioHTTPTestCase):
    async def get_application(self):
        app = web.Application()
        app["queries"] = []

        async def handler(request):
            body = await request.text()
            app["queries"].append({
                "query": request.query.get("query"),
                "database": request.query.get("database"),
                "user": request.headers.get("X-ClickHouse-User"),
                "key": request.headers.get("X-ClickHouse-Key"),
                "body": body,
            })
            if "sleep" in request.query.get("query", ""):
                await asyncio.sleep(1.0)
            if "broken" in request.query.get("query", ""):
                return web.Response(status=500, text="Code: 62. Syntax error")
            return web.Response(text="")

        app.router.add_post("/", handler)
        return app

    def _exporter(self, **kwargs):
        return ClickHouseExporter(str(self.server.make_url("/")), **kwargs)

    async def test_export_creates_table_then_inserts(self):
        async with self._exporter(database="metrics", user="u", password="p") as exporter:
            count = await exporter.export(aggregate(_samples()))

        self.assertEqual(count, 2)
        queries = self.app["queries"]
        self.assertEqual(queries[0]["query"], CREATE_TABLE_SQL)
        self.assertEqual(queries[1]["query"], INSERT_SQL)
        self.assertEqual(queries[1]["database"], "metrics")
        self.assertEqual(queries[1]["user"], "u")
        self.assertEqual(queries[1]["key"], "p")

        rows = [json.loads(line) for line in queries[1]["body"].splitlines()]
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1]["download_speed_mbps"], 90.0)
        self.assertEqual(rows[1]["timestamp"], "2024-05-01 12:00:00")

    async def test_no_credentials_no_headers(self):
        async with self._exporter() as exporter:
            await exporter.ensure_table()
        self.assertIsNone(self.app["queries"][0]["user"])
        self.assertEqual(self.app["queries"][0]["database"], "default")

    async def test_insert_nothing(self):
        async with self._exporter() as exporter:
            self.assertEqual(await exporter.insert([]), 0)
        self.assertEqual(self.app["queries"], [])

    async def test_server_error(self):
        async with self._exporter() as exporter:
            with self.assertRaises(ExportError) as ctx:
                await exporter._query("SELECT broken")
        self.assertIn("500", str(ctx.exception))

    async def test_stalled_server_times_out(self):
        async with self._exporter(timeout=0.2) as exporter:
            with self.assertRaises(ExportError) as ctx:
                await exporter._query("SELECT sleep(1)")
        self.assertIn("did not answer", str(ctx.exception))


class TestUnreachableClickHouse(unittest.IsolatedAsyncioTestCase):
    async def test_connection_error(self):
        async with ClickHouseExporter(f"http://127.0.0.1:{unused_port()}") as exporter:
            with self.assertRaises(ExportError):
                await exporter.ensure_table()

    async def test_requires_context_manager(self):
        with self.assertRaises(RuntimeError):
            await ClickHouseExporter("http://localhost:8123").ensure_table()


if __name__ == "__main__":
    unittest.main()
