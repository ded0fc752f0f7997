#!/usr/bin/env python3
"""
Plinko Lounge — Unit Test Suite

Run: python tests.py
     python tests.py -v              # verbose
     python tests.py TestPathLibrary # run specific class

Test categories:
  TestBoardGeometry      — layout math, bucket slots, drop bounds
  TestPhysicsWorld       — pymunk world construction and ball filters
  TestRecordedPath       — persisted shape, validation
  TestBlobStores         — memory and file stores
  TestPathLibrary        — cap, batch, merge-on-load, failures
  TestProbabilityTable   — set/reset/draw, fallbacks
  TestPayouts            — settlement arithmetic, RTP, chi-square audit
  TestBoardSettings      — pydantic validation
"""

import json
import math
import random
import sys
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from sim_engine.plinko.geometry import build_geometry
from sim_engine.plinko.payouts import (
    PLINKO_MULTIPLIERS, audit_draws, chi_squared, chi_squared_critical,
    expected_return, multipliers_for, settle,
)
from sim_engine.plinko.physics import BALL_CATEGORY, BALL_FILTER, build_board
from sim_engine.plinko.trajectory import Position, RecordedPath
from tools.blob_store import (
    DEFAULT_PROBABILITIES, PATHS_KEY, PROBABILITIES_KEY, FileBlobStore, MemoryBlobStore,
    StoreError, default_document,
)
from tools.plinko_config import BoardSettings, PhysicsConfig, Risk, RowCount
from tools.plinko_paths import PathLibrary, merge_libraries, parse_library
from tools.plinko_probabilities import BucketProbabilityTable


def make_path(rows, bucket, samples=5):
    """Synthetic trajectory from the drop point to the centre of `bucket`."""
    g = build_geometry(rows)
    target_x = g.bucket_center_x(bucket)
    positions = tuple(
        Position(g.center_x + (target_x - g.center_x) * i / (samples - 1),
                 g.ground_y * i / (samples - 1))
        for i in range(samples)
    )
    return RecordedPath(positions, bucket)


def filled_library(rows=8, per_bucket=6, store=None):
    lib = PathLibrary(store or MemoryBlobStore(), paths_per_bucket=per_bucket)
    lib.add_paths_batch(rows, [make_path(rows, b) for b in range(rows + 1)
                               for _ in range(per_bucket)])
    return lib


# ============================================================
# Geometry
# ============================================================

class TestBoardGeometry(unittest.TestCase):

    def test_same_rows_same_geometry(self):
        """Geometry is a pure function of the row count."""
        for rows in (8, 12, 16):
            self.assertEqual(build_geometry.__wrapped__(rows), build_geometry(rows))

    def test_peg_counts(self):
        """Row r carries r + 3 pegs."""
        self.assertEqual(len(build_geometry(8).pegs), sum(r + 3 for r in range(8)))
        self.assertEqual(len(build_geometry(16).pegs), sum(r + 3 for r in range(16)))

    def test_buckets_sit_between_bottom_row_pegs(self):
        g = build_geometry(12)
        bottom_y = max(y for _, y in g.pegs)
        bottom = sorted(x for x, y in g.pegs if y == bottom_y)
        self.assertEqual(len(bottom), g.bucket_count + 1)
        self.assertAlmostEqual(bottom[0], g.bucket_start_x)
        for b in range(g.bucket_count):
            self.assertEqual(g.bucket_for_x((bottom[b] + bottom[b + 1]) / 2), b)

    def test_bucket_for_x_clamps(self):
        g = build_geometry(8)
        self.assertEqual(g.bucket_for_x(-1000), 0)
        self.assertEqual(g.bucket_for_x(5000), 8)
        for b in range(g.bucket_count):
            self.assertEqual(g.bucket_for_x(g.bucket_center_x(b)), b)

    def test_ground_line(self):
        for rows in (8, 12, 16):
            g = build_geometry(rows)
            self.assertEqual(g.bucket_y, 535.0)
            self.assertEqual(g.ground_y, 525.0)
            self.assertTrue(g.is_landed(525.0))
            self.assertFalse(g.is_landed(524.9))

    def test_drop_bounds_inside_top_cup(self):
        for rows in (8, 12, 16):
            g = build_geometry(rows)
            lo, hi = g.drop_bounds()
            self.assertLess(lo, g.center_x)
            self.assertGreater(hi, g.center_x)
            self.assertEqual(g.clamp_drop_x(-50), lo)
            self.assertEqual(g.clamp_drop_x(1e6), hi)

    def test_scale_by_rows(self):
        self.assertEqual(build_geometry(8).ball_radius, 14.0)
        self.assertEqual(build_geometry(12).peg_radius, 6.0)
        self.assertEqual(build_geometry(16).ball_radius, 7.0)

    def test_invalid_rows(self):
        with self.assertRaises(ValueError):
            build_geometry(0)


# ============================================================
# Physics world
# ============================================================

class TestPhysicsWorld(unittest.TestCase):

    def test_two_boards_match(self):
        """Same row count → same static bodies, sizes and elasticity."""
        a, b = build_board(12), build_board(12)
        self.assertEqual(a.describe(), b.describe())
        self.assertNotEqual(a.describe(), build_board(8).describe())

    def test_board_contents(self):
        world = build_board(8)
        self.assertEqual(len(world.pegs), len(world.geometry.pegs))
        self.assertEqual(len(world.walls), 5)
        self.assertTrue(world.ground.sensor)
        self.assertEqual(tuple(world.space.gravity), (0, PhysicsConfig().gravity))

    def test_balls_ignore_each_other(self):
        self.assertEqual(BALL_FILTER.mask & BALL_CATEGORY, 0)

    def test_ball_lifecycle(self):
        world = build_board(8)
        ball = world.add_ball(310.0)
        self.assertIn(ball.id, world.balls)
        world.step()
        self.assertEqual(ball.steps, 1)
        self.assertGreater(ball.position.y, 0.0)
        world.remove_ball(ball)
        self.assertEqual(world.balls, {})
        world.remove_ball(ball)   # second removal is a no-op

    def test_clear(self):
        world = build_board(16)
        for x in (300.0, 310.0, 320.0):
            world.add_ball(x)
        world.clear()
        self.assertEqual(world.balls, {})


# ============================================================
# Recorded paths
# ============================================================

class TestRecordedPath(unittest.TestCase):

    def test_persisted_shape(self):
        path = RecordedPath((Position(1.0, 2.0), Position(3.0, 525.0)), 4)
        doc = path.to_dict()
        self.assertEqual(doc, {"positions": [{"x": 1.0, "y": 2.0}, {"x": 3.0, "y": 525.0}],
                               "finalBucket": 4})
        self.assertEqual(RecordedPath.from_dict(json.loads(json.dumps(doc))), path)

    def test_list_positions_become_tuple(self):
        path = RecordedPath([Position(0, 0)], 0)
        self.assertIsInstance(path.positions, tuple)
        self.assertEqual(path.last, Position(0, 0))

    def test_rejects_empty(self):
        with self.assertRaises(ValueError):
            RecordedPath((), 0)

    def test_from_dict_rejects_malformed(self):
        bad = [
            {"finalBucket": 1},
            {"positions": "nope", "finalBucket": 1},
            {"positions": [{"x": 1}], "finalBucket": 1},
            {"positions": [{"x": 1, "y": 2}], "finalBucket": "1"},
            {"positions": [{"x": 1, "y": 2}], "finalBucket": True},
            {"positions": [], "finalBucket": 0},
        ]
        for entry in bad:
            with self.assertRaises((KeyError, TypeError, ValueError)):
                RecordedPath.from_dict(entry)


# ============================================================
# Blob stores
# ============================================================

class TestBlobStores(unittest.TestCase):

    def test_memory_store_copies(self):
        store = MemoryBlobStore()
        doc = {"8": {"0": []}}
        store.put(PATHS_KEY, doc)
        doc["8"]["0"].append("mutated")
        self.assertEqual(store.get(PATHS_KEY), {"8": {"0": []}})
        fetched = store.get(PATHS_KEY)
        fetched["8"] = None
        self.assertEqual(store.get(PATHS_KEY), {"8": {"0": []}})
        self.assertIsNone(store.get(PROBABILITIES_KEY))

    def test_memory_store_failures(self):
        store = MemoryBlobStore()
        store.fail_writes = True
        with self.assertRaises(StoreError):
            store.put(PATHS_KEY, {})
        store.fail_reads = True
        with self.assertRaises(StoreError):
            store.get(PATHS_KEY)

    def test_file_store_creates_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            data_dir = Path(tmp) / "data"
            store = FileBlobStore(data_dir)
            self.assertEqual(store.get(PATHS_KEY), {"8": {}, "12": {}, "16": {}})
            self.assertEqual(store.get(PROBABILITIES_KEY), DEFAULT_PROBABILITIES)
            self.assertTrue((data_dir / "plinko_paths.json").exists())
            self.assertTrue((data_dir / "plinko_probabilities.json").exists())

    def test_file_store_put_replaces(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = FileBlobStore(tmp)
            store.put(PROBABILITIES_KEY, {"8": [1] * 9})
            self.assertEqual(store.get(PROBABILITIES_KEY), {"8": [1] * 9})
            self.assertEqual(list(Path(tmp).glob("*.tmp")), [])

    def test_file_store_corrupt_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = FileBlobStore(tmp)
            store.get(PATHS_KEY)
            (Path(tmp) / "plinko_paths.json").write_text("{not json", encoding="utf-8")
            with self.assertLogs("plinko.store", level="WARNING"):
                self.assertIsNone(store.get(PATHS_KEY))

    def test_file_store_unknown_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(StoreError):
                FileBlobStore(tmp).get("sessions")

    def test_default_document(self):
        self.assertEqual(default_document(PATHS_KEY), {"8": {}, "12": {}, "16": {}})
        defaults = default_document(PROBABILITIES_KEY)
        defaults["8"][0] = 999
        self.assertEqual(DEFAULT_PROBABILITIES["8"][0], 1)
        with self.assertRaises(KeyError):
            default_document("other")


# ============================================================
# Path library
# ============================================================

class TestPathLibrary(unittest.TestCase):

    def setUp(self):
        self.store = MemoryBlobStore()
        self.lib = PathLibrary(self.store, paths_per_bucket=6)

    def test_add_path_respects_cap(self):
        results = [self.lib.add_path(8, make_path(8, 2)) for _ in range(10)]
        self.assertEqual(results, [True] * 6 + [False] * 4)
        self.assertEqual(self.lib.path_count(8, 2), 6)
        self.assertEqual(self.store.puts, 6)

    def test_out_of_range_bucket_rejected(self):
        start = Position(310.0, 0.0)
        end = Position(310.0, build_geometry(8).ground_y)
        for bucket in (9, 12, -1):
            path = RecordedPath((start, end), bucket)
            with self.assertLogs("plinko.paths", level="WARNING"):
                self.assertFalse(self.lib.add_path(8, path))
            self.assertEqual(self.lib.add_paths_batch(8, [path]), 0)
            self.assertEqual(self.lib.path_count(8, bucket), 0)
        self.assertEqual(self.store.puts, 0)
        self.assertNotIn("12", self.lib.to_document()["8"])
        self.assertTrue(self.lib.add_path(8, RecordedPath((start, end), 8)))

    def test_add_path_without_persist(self):
        self.assertTrue(self.lib.add_path(8, make_path(8, 0), persist=False))
        self.assertEqual(self.store.puts, 0)
        self.assertEqual(self.lib.path_count(8, 0), 1)

    def test_batch_caps_and_persists_once(self):
        offered = [make_path(8, b % 3) for b in range(30)]
        added = self.lib.add_paths_batch(8, offered)
        self.assertEqual(added, 18)
        for b in range(3):
            self.assertEqual(self.lib.path_count(8, b), 6)
        self.assertEqual(self.store.puts, 1)

    def test_batch_nothing_accepted_skips_save(self):
        lib = filled_library(8, store=self.store)
        puts = self.store.puts
        self.assertEqual(lib.add_paths_batch(8, [make_path(8, 4)] * 3), 0)
        self.assertEqual(self.store.puts, puts)

    def test_has_enough_paths(self):
        self.assertFalse(self.lib.has_enough_paths(8, 9))
        lib = filled_library(8)
        self.assertTrue(lib.has_enough_paths(8, 9))
        self.assertFalse(lib.has_enough_paths(12, 13))

    def test_full_library_always_has_a_path(self):
        for rows in (8, 12, 16):
            lib = filled_library(rows, per_bucket=2)
            g = build_geometry(rows)
            for b in range(rows + 1):
                path = lib.get_random_path(rows, b)
                self.assertIsNotNone(path)
                self.assertEqual(path.final_bucket, b)
                self.assertGreaterEqual(path.last.y, g.ground_y)

    def test_get_random_path_missing(self):
        self.assertIsNone(self.lib.get_random_path(16, 3))
        self.assertIsNone(self.lib.get_random_path(10, 0))

    def test_bucket_queries(self):
        self.lib.add_paths_batch(8, [make_path(8, 0)] * 6 + [make_path(8, 1)] * 2)
        self.assertFalse(self.lib.bucket_needs_paths(8, 0))
        self.assertTrue(self.lib.bucket_needs_paths(8, 1))
        self.assertEqual(self.lib.bucket_needing_paths(8, 9), 2)
        self.assertIsNotNone(self.lib.get_path_by_index(8, 1, 1))
        self.assertIsNone(self.lib.get_path_by_index(8, 1, 2))
        self.assertEqual(len(self.lib.all_paths_for_bucket(8, 0)), 6)
        self.assertTrue(self.lib.status_line(8, 9).startswith("B0:6/6 | B1:2/6 | B2:0/6"))
        self.assertEqual(self.lib.stats()[8], {"buckets": 2, "total_paths": 8})
        self.assertIsNone(filled_library(8).bucket_needing_paths(8, 9))

    def test_clear_one_row_count(self):
        lib = filled_library(8, store=self.store)
        lib.add_path(12, make_path(12, 5))
        lib.clear(8)
        self.assertEqual(lib.path_count(8, 4), 0)
        self.assertEqual(lib.path_count(12, 5), 1)
        self.assertEqual(self.store.get(PATHS_KEY)["8"], {})

    def test_clear_everything(self):
        lib = filled_library(8, store=self.store)
        lib.clear()
        self.assertEqual(self.store.get(PATHS_KEY), {"8": {}, "12": {}, "16": {}})

    def test_load_merges_longer_list(self):
        remote = PathLibrary(self.store)
        remote.add_paths_batch(8, [make_path(8, 0)] * 3 + [make_path(8, 1)] * 4)

        for _ in range(5):
            self.lib.add_path(8, make_path(8, 0), persist=False)
        self.lib.load()
        self.assertEqual(self.lib.path_count(8, 0), 5)   # local richer, kept
        self.assertEqual(self.lib.path_count(8, 1), 4)   # remote richer, taken
        self.assertTrue(self.lib.is_loaded)

    def test_ensure_loaded_only_once(self):
        self.lib.ensure_loaded()
        self.store.put(PATHS_KEY, filled_library(8).to_document())
        self.lib.ensure_loaded()
        self.assertEqual(self.lib.path_count(8, 0), 0)

    def test_persisted_document_round_trips(self):
        lib = filled_library(12, per_bucket=2, store=self.store)
        fresh = PathLibrary(self.store, paths_per_bucket=2)
        fresh.load()
        self.assertEqual(fresh.to_document(), lib.to_document())
        self.assertTrue(fresh.has_enough_paths(12, 13))

    def test_save_failure_keeps_memory(self):
        self.store.fail_writes = True
        with self.assertLogs("plinko.paths", level="WARNING"):
            self.assertTrue(self.lib.add_path(8, make_path(8, 3)))
        self.assertEqual(self.lib.path_count(8, 3), 1)
        self.assertFalse(self.lib.save())

    def test_load_failure_uses_memory(self):
        self.lib.add_path(8, make_path(8, 3), persist=False)
        self.store.fail_reads = True
        with self.assertLogs("plinko.paths", level="WARNING"):
            self.lib.load()
        self.assertTrue(self.lib.is_loaded)
        self.assertEqual(self.lib.path_count(8, 3), 1)

    def test_invalid_cap(self):
        with self.assertRaises(ValueError):
            PathLibrary(self.store, paths_per_bucket=0)


class TestLibraryParsingAndMerge(unittest.TestCase):

    def _lib(self, counts):
        """{bucket: n} → parsed library for 8 rows with n paths per bucket."""
        return {"8": {str(b): [make_path(8, b) for _ in range(n)] for b, n in counts.items()}}

    def test_merge_local_wins(self):
        local, remote = self._lib({0: 5}), self._lib({0: 2})
        merged = merge_libraries(local, remote)
        self.assertEqual(len(merged["8"]["0"]), 5)
        self.assertIs(merged["8"]["0"][0], local["8"]["0"][0])

    def test_merge_remote_wins(self):
        local, remote = self._lib({0: 1}), self._lib({0: 4, 3: 2})
        merged = merge_libraries(local, remote)
        self.assertEqual(len(merged["8"]["0"]), 4)
        self.assertIs(merged["8"]["0"][0], remote["8"]["0"][0])
        self.assertEqual(len(merged["8"]["3"]), 2)

    def test_merge_tie_keeps_local(self):
        local, remote = self._lib({2: 3}), self._lib({2: 3})
        merged = merge_libraries(local, remote)
        self.assertIs(merged["8"]["2"][0], local["8"]["2"][0])

    def test_merge_idempotent_and_monotonic(self):
        a = self._lib({0: 6, 1: 2, 5: 4})
        self.assertEqual(merge_libraries(a, a), a)
        smaller = self._lib({0: 1, 1: 1})
        merged = merge_libraries(a, smaller)
        for bucket, paths in a["8"].items():
            self.assertGreaterEqual(len(merged["8"][bucket]), len(paths))
        merged["8"]["0"].append("x")
        self.assertEqual(len(a["8"]["0"]), 6)

    def test_parse_non_dict_is_empty(self):
        with self.assertLogs("plinko.paths", level="WARNING"):
            self.assertEqual(parse_library(["junk"]), {"8": {}, "12": {}, "16": {}})
        self.assertEqual(parse_library(None), {"8": {}, "12": {}, "16": {}})

    def test_parse_skips_bad_entries(self):
        good = make_path(8, 2).to_dict()
        raw = {
            "8": {
                "2": [good, {"positions": []}, "junk", make_path(8, 3).to_dict()],
                "4": "not a list",
            },
            "12": "not a dict",
        }
        with self.assertLogs("plinko.paths", level="WARNING"):
            library = parse_library(raw)
        self.assertEqual(len(library["8"]["2"]), 1)
        self.assertEqual(library["8"]["2"][0].final_bucket, 2)
        self.assertNotIn("4", library["8"])
        self.assertEqual(library["12"], {})

    def test_parse_skips_buckets_past_the_last_slot(self):
        stray = RecordedPath((Position(310.0, 0.0), Position(310.0, 525.0)), 12).to_dict()
        with self.assertLogs("plinko.paths", level="WARNING"):
            library = parse_library({"8": {"12": [stray]}, "12": {"12": [stray]}})
        self.assertEqual(library["8"].get("12", []), [])
        self.assertEqual(len(library["12"]["12"]), 1)


# ============================================================
# Probability table
# ============================================================

class TestProbabilityTable(unittest.TestCase):

    def setUp(self):
        self.store = MemoryBlobStore()
        self.table = BucketProbabilityTable(self.store, rng=random.Random(42))

    def test_defaults(self):
        self.assertEqual(self.table.get(8), [1, 4, 12, 24, 26, 24, 12, 4, 1])
        self.assertEqual(len(self.table.get(12)), 13)
        self.assertEqual(len(self.table.get(16)), 17)
        self.assertEqual(self.table.get(10), [])

    def test_set_persists(self):
        weights = [0, 0, 0, 0, 100, 0, 0, 0, 0]
        self.assertTrue(self.table.set(8, weights))
        self.assertEqual(self.table.get(8), weights)
        self.assertEqual(self.store.get(PROBABILITIES_KEY)["8"], weights)

    def test_set_rejects_bad_weights(self):
        with self.assertRaises(ValueError):
            self.table.set(8, [1] * 8)
        with self.assertRaises(ValueError):
            self.table.set(8, [1] * 8 + [-1])
        with self.assertRaises(ValueError):
            self.table.set(8, [1] * 8 + [math.nan])
        self.assertEqual(self.store.puts, 0)

    def test_reset(self):
        self.table.set(8, [1] * 9)
        self.table.reset()
        self.assertEqual(self.table.get(8), DEFAULT_PROBABILITIES["8"])
        self.assertEqual(self.store.get(PROBABILITIES_KEY), DEFAULT_PROBABILITIES)

    def test_zero_weights_never_drawn(self):
        self.table.set(8, [0, 0, 0, 0, 100, 0, 0, 0, 0])
        self.assertEqual({self.table.draw_bucket(8, 9) for _ in range(1000)}, {4})
        self.table.set(8, [5, 0, 0, 0, 0, 0, 0, 0, 5])
        self.assertEqual({self.table.draw_bucket(8, 9) for _ in range(1000)}, {0, 8})

    def test_length_mismatch_falls_back_to_uniform(self):
        draws = {self.table.draw_bucket(8, 5) for _ in range(500)}
        self.assertEqual(draws, set(range(5)))
        draws = {self.table.draw_bucket(10, 11) for _ in range(500)}
        self.assertEqual(draws, set(range(11)))

    def test_zero_total_falls_back_to_uniform(self):
        self.table.set(8, [0] * 9)
        self.assertEqual({self.table.draw_bucket(8, 9) for _ in range(1000)}, set(range(9)))

    def test_equal_weights_are_uniform(self):
        """Chi-square over 20,000 draws stays under the 99.9% critical value."""
        self.table.set(8, [1] * 9)
        audit = audit_draws(self.table, 8, draws=20_000, rng=random.Random(7))
        self.assertEqual(sum(audit.counts), 20_000)
        self.assertTrue(audit.chi_squared_pass,
                        f"chi2={audit.chi_squared:.2f} >= {audit.chi_squared_critical:.2f}")

    def test_load_replaces_and_sanitizes(self):
        self.store.put(PROBABILITIES_KEY, {"8": [1] * 9, "12": "bad", "16": [-1, 2]})
        with self.assertLogs("plinko.probabilities", level="WARNING"):
            self.table.load()
        self.assertEqual(self.table.get(8), [1] * 9)
        self.assertEqual(self.table.get(12), DEFAULT_PROBABILITIES["12"])
        self.assertEqual(self.table.get(16), DEFAULT_PROBABILITIES["16"])

    def test_load_failure_keeps_defaults(self):
        self.store.fail_reads = True
        with self.assertLogs("plinko.probabilities", level="WARNING"):
            self.table.ensure_loaded()
        self.assertEqual(self.table.get(8), DEFAULT_PROBABILITIES["8"])

    def test_save_failure_keeps_memory(self):
        self.store.fail_writes = True
        with self.assertLogs("plinko.probabilities", level="WARNING"):
            self.assertFalse(self.table.set(8, [2] * 9))
        self.assertEqual(self.table.get(8), [2] * 9)


# ============================================================
# Payouts
# ============================================================

class TestPayouts(unittest.TestCase):

    def test_settle_floors(self):
        self.assertEqual(settle(10, 1.1), 11)
        self.assertEqual(settle(10, 0.3), 3)
        self.assertEqual(settle(7, 0.5), 3)
        self.assertEqual(settle(3, 0.2), 0)
        self.assertEqual(settle(1, 1000), 1000)

    def test_breakeven_multiplier(self):
        for bet in (0, 1, 10, 999):
            self.assertEqual(settle(bet, 1.0) - bet, 0)

    def test_tables_symmetric_and_sized(self):
        for risk, tables in PLINKO_MULTIPLIERS.items():
            for rows, mults in tables.items():
                self.assertEqual(len(mults), rows + 1)
                self.assertEqual(mults, mults[::-1])

    def test_multipliers_for(self):
        self.assertEqual(multipliers_for(8, Risk.HIGH)[0], 29)
        self.assertEqual(multipliers_for(16, "low")[8], 0.5)
        with self.assertRaises(ValueError):
            multipliers_for(10, "medium")
        with self.assertRaises(ValueError):
            multipliers_for(8, "extreme")

    def test_expected_return(self):
        self.assertAlmostEqual(expected_return([0, 1], [3, 5]), 5.0)
        self.assertAlmostEqual(expected_return([0, 0], [3, 5]), 4.0)
        with self.assertRaises(ValueError):
            expected_return([1], [1, 2])

    def test_chi_squared(self):
        self.assertEqual(chi_squared([50, 50], [1, 1]), 0.0)
        self.assertEqual(chi_squared([1, 99], [0, 1]), math.inf)
        self.assertEqual(chi_squared([0, 100], [0, 1]), 0.0)
        # Wilson–Hilferty is within 1% of the tabulated 99.9% value
        self.assertAlmostEqual(chi_squared_critical(8), 26.12, delta=0.3)
        self.assertAlmostEqual(chi_squared_critical(16), 39.25, delta=0.4)

    def test_audit_centre_only(self):
        table = BucketProbabilityTable(MemoryBlobStore())
        table.set(8, [0, 0, 0, 0, 100, 0, 0, 0, 0])
        audit = audit_draws(table, 8, draws=1000, risk="medium", rng=random.Random(1))
        self.assertEqual(audit.counts[4], 1000)
        self.assertTrue(audit.chi_squared_pass)
        self.assertAlmostEqual(audit.measured_rtp, 0.4)
        self.assertAlmostEqual(audit.theoretical_rtp, 0.4)
        self.assertEqual(audit.to_dict()["risk"], "medium")

    def test_audit_leaves_table_rng_alone(self):
        shared = random.Random(5)
        table = BucketProbabilityTable(MemoryBlobStore(), rng=shared)
        audit_draws(table, 8, draws=200, rng=random.Random(1))
        self.assertIs(table.rng, shared)
        before = random.Random(5).random()
        self.assertEqual(table.rng.random(), before)


# ============================================================
# Settings
# ============================================================

class TestBoardSettings(unittest.TestCase):

    def test_defaults(self):
        s = BoardSettings()
        self.assertEqual(s.rows, RowCount.SIXTEEN)
        self.assertEqual(s.bucket_count, 17)
        self.assertEqual(s.paths_per_bucket, 6)

    def test_manual_bucket_range(self):
        self.assertEqual(BoardSettings(rows=8, manual_bucket=8).manual_bucket, 8)
        with self.assertRaises(ValidationError):
            BoardSettings(rows=8, manual_bucket=9)
        with self.assertRaises(ValidationError):
            BoardSettings(rows=8, manual_bucket=-1)

    def test_rejects_bad_values(self):
        with self.assertRaises(ValidationError):
            BoardSettings(rows=10)
        with self.assertRaises(ValidationError):
            BoardSettings(bet=-5)
        with self.assertRaises(ValidationError):
            BoardSettings(paths_per_bucket=0)
        with self.assertRaises(ValidationError):
            BoardSettings(risk="extreme")
        with self.assertRaises(ValidationError):
            PhysicsConfig(substeps=0)


if __name__ == "__main__":
    unittest.main()
