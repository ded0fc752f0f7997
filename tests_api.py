#!/usr/bin/env python3
"""
Plinko Lounge — Storage API, HTTP store and CLI tests

Run: python tests_api.py

Test categories:
  TestStorageRoutes  — Flask blueprint GET/POST semantics
  TestHttpBlobStore  — httpx client against mock and in-process transports
  TestCli            — operator commands against an in-memory store
"""

import io
import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx
from rich.console import Console

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from sim_engine.plinko.trajectory import Position, RecordedPath
from tools import plinko_cli
from tools.blob_store import (
    DEFAULT_PROBABILITIES, PATHS_KEY, PROBABILITIES_KEY, FileBlobStore, HttpBlobStore,
    MemoryBlobStore, StoreError,
)
from tools.plinko_paths import PathLibrary
from tools.plinko_probabilities import BucketProbabilityTable
from web_app import create_app


def _path_doc(bucket):
    return RecordedPath((Position(310.0, 0.0), Position(310.0, 525.0)), bucket).to_dict()


# ============================================================
# Routes
# ============================================================

class TestStorageRoutes(unittest.TestCase):

    def setUp(self):
        self.store = MemoryBlobStore()
        self.app = create_app(self.store)
        self.client = self.app.test_client()

    def test_get_paths_default_skeleton(self):
        resp = self.client.get("/api/plinko/paths")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"8": {}, "12": {}, "16": {}})

    def test_post_paths_replaces_wholesale(self):
        first = {"8": {"4": [_path_doc(4)]}, "12": {}, "16": {}}
        second = {"8": {}, "12": {"0": [_path_doc(0)]}, "16": {}}
        self.assertEqual(self.client.post("/api/plinko/paths", json=first).get_json(),
                         {"success": True})
        self.client.post("/api/plinko/paths", json=second)
        self.assertEqual(self.client.get("/api/plinko/paths").get_json(), second)
        self.assertEqual(self.store.get(PATHS_KEY), second)

    def test_post_rejects_non_json(self):
        resp = self.client.post("/api/plinko/paths", data="not json",
                                content_type="text/plain")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"error": "Invalid JSON"})
        resp = self.client.post("/api/plinko/probabilities", data="{broken",
                                content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertIsNone(self.store.get(PROBABILITIES_KEY))

    def test_probabilities_round_trip(self):
        self.assertEqual(self.client.get("/api/plinko/probabilities").get_json(),
                         DEFAULT_PROBABILITIES)
        table = {"8": [0, 0, 0, 0, 100, 0, 0, 0, 0]}
        self.client.post("/api/plinko/probabilities", json=table)
        self.assertEqual(self.client.get("/api/plinko/probabilities").get_json(), table)

    def test_store_failures(self):
        self.store.fail_reads = True
        self.assertEqual(self.client.get("/api/plinko/paths").status_code, 500)
        self.assertEqual(self.client.get("/api/plinko/health").status_code, 503)
        self.store.fail_reads = False
        self.store.fail_writes = True
        self.assertEqual(self.client.post("/api/plinko/paths", json={}).status_code, 500)

    def test_health_and_unknown_routes(self):
        self.assertEqual(self.client.get("/api/plinko/health").get_json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/plinko/nope").status_code, 404)
        self.assertEqual(self.client.delete("/api/plinko/paths").status_code, 405)

    def test_file_backed_app_creates_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            client = create_app(FileBlobStore(tmp)).test_client()
            self.assertEqual(client.get("/api/plinko/paths").get_json(),
                             {"8": {}, "12": {}, "16": {}})
            self.assertTrue((Path(tmp) / "plinko_paths.json").exists())
            self.assertTrue((Path(tmp) / "plinko_probabilities.json").exists())


# ============================================================
# HTTP store
# ============================================================

class TestHttpBlobStore(unittest.TestCase):

    def _mock_store(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpBlobStore("http://store.test/api/plinko/", client=client)

    def test_get_and_put(self):
        docs = {}

        def handler(request):
            key = request.url.path.rsplit("/", 1)[-1]
            if request.method == "POST":
                docs[key] = json.loads(request.content)
                return httpx.Response(200, json={"success": True})
            if key not in docs:
                return httpx.Response(404, json={"error": "Not found"})
            return httpx.Response(200, json=docs[key])

        store = self._mock_store(handler)
        self.assertIsNone(store.get(PATHS_KEY))
        store.put(PATHS_KEY, {"8": {}})
        self.assertEqual(store.get(PATHS_KEY), {"8": {}})
        self.assertEqual(docs, {"paths": {"8": {}}})
        store.close()

    def test_errors_raise_store_error(self):
        store = self._mock_store(lambda request: httpx.Response(500))
        with self.assertRaises(StoreError):
            store.get(PROBABILITIES_KEY)
        with self.assertRaises(StoreError):
            store.put(PROBABILITIES_KEY, {})

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = self._mock_store(refuse)
        with self.assertRaises(StoreError):
            store.get(PATHS_KEY)
        with self.assertRaises(StoreError):
            store.put(PATHS_KEY, {})

    def test_non_json_body(self):
        store = self._mock_store(lambda request: httpx.Response(200, text="<html>"))
        with self.assertLogs("plinko.store", level="WARNING"):
            self.assertIsNone(store.get(PATHS_KEY))

    def test_library_shared_through_storage_api(self):
        """Two libraries on different 'machines' meet through the Flask app."""
        backend = MemoryBlobStore()
        app = create_app(backend)

        def remote():
            client = httpx.Client(transport=httpx.WSGITransport(app=app))
            return HttpBlobStore("http://plinko.test/api/plinko", client=client)

        writer = PathLibrary(remote(), paths_per_bucket=2)
        writer.ensure_loaded()
        writer.add_paths_batch(8, [RecordedPath.from_dict(_path_doc(4))] * 2)

        reader = PathLibrary(remote(), paths_per_bucket=2)
        reader.ensure_loaded()
        self.assertEqual(reader.path_count(8, 4), 2)
        self.assertEqual(backend.get(PATHS_KEY)["8"]["4"][0]["finalBucket"], 4)

        table = BucketProbabilityTable(remote())
        table.set(8, [1] * 9)
        self.assertEqual(backend.get(PROBABILITIES_KEY)["8"], [1] * 9)


# ============================================================
# CLI
# ============================================================

class TestCli(unittest.TestCase):

    def setUp(self):
        self.store = MemoryBlobStore()
        self.output = io.StringIO()
        self.console_patch = patch.object(plinko_cli, "console",
                                          Console(file=self.output, width=200))
        self.console_patch.start()

    def tearDown(self):
        self.console_patch.stop()

    def run_cli(self, *argv):
        return plinko_cli.main(list(argv), store=self.store)

    def test_probs_set_show_reset(self):
        self.assertEqual(self.run_cli("probs", "set", "--rows", "8",
                                      "--weights", "0,0,0,0,100,0,0,0,0"), 0)
        self.assertEqual(self.store.get(PROBABILITIES_KEY)["8"], [0, 0, 0, 0, 100, 0, 0, 0, 0])
        self.assertEqual(self.run_cli("probs", "show", "--rows", "8"), 0)
        self.assertIn("40.00%", self.output.getvalue())
        self.assertEqual(self.run_cli("probs", "reset"), 0)
        self.assertEqual(self.store.get(PROBABILITIES_KEY), DEFAULT_PROBABILITIES)

    def test_probs_set_rejects_bad_input(self):
        self.assertEqual(self.run_cli("probs", "set", "--rows", "8", "--weights", "1,2,3"), 2)
        self.assertEqual(self.run_cli("probs", "set", "--rows", "8",
                                      "--weights", "a,b,c,d,e,f,g,h,i"), 2)
        self.assertEqual(self.run_cli("probs", "set", "--rows", "8"), 2)
        self.assertIsNone(self.store.get(PROBABILITIES_KEY))

    def test_status_and_clear(self):
        lib = PathLibrary(self.store)
        lib.add_paths_batch(8, [RecordedPath.from_dict(_path_doc(4))] * 3)
        self.assertEqual(self.run_cli("status", "--rows", "8"), 0)
        self.assertIn("B4:3/6", self.output.getvalue())
        self.assertEqual(self.run_cli("clear", "--rows", "8"), 0)
        self.assertEqual(self.store.get(PATHS_KEY)["8"], {})

    def test_audit(self):
        self.assertEqual(self.run_cli("audit", "--rows", "8", "--draws", "2000",
                                      "--seed", "3"), 0)
        self.assertIn("Chi-square", self.output.getvalue())

    def test_drop_session_replays(self):
        lib = PathLibrary(self.store)
        lib.add_paths_batch(8, [RecordedPath.from_dict(_path_doc(b))
                                for b in range(9) for _ in range(6)])
        self.assertEqual(self.run_cli("drop", "--rows", "8", "--count", "5", "--bet", "10",
                                      "--manual-bucket", "0", "--seed", "1"), 0)
        out = self.output.getvalue()
        self.assertIn("PLAYBACK", out)
        self.assertIn("Paid: 650", out)

    def test_drop_rejects_bad_manual_bucket(self):
        self.assertEqual(self.run_cli("drop", "--rows", "8", "--manual-bucket", "12"), 2)

    def test_unknown_command_exits(self):
        with patch("sys.stderr", io.StringIO()):
            with self.assertRaises(SystemExit):
                self.run_cli("launch")


if __name__ == "__main__":
    unittest.main()
