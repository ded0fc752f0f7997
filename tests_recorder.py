#!/usr/bin/env python3
"""
Tests for the trajectory recorders

Validates:
1.  Targeting visits the edge buckets first, then the most under-filled
2.  Drop x leans toward the target and stays inside the top cup
3.  FastRecorder fills every bucket to the cap and commits once
4.  Buckets already in the library are not re-recorded
5.  Stalls are discarded and counted
6.  An exhausted attempt budget reports unfilled buckets instead of raising
7.  VisualRecorder fills the library with many balls in flight
8.  VisualRecorder.cancel() persists nothing
9.  BallSimulator follows a real pymunk ball to the ground line
10. Two simulators fed the same drop produce the same path
11. On a 16-row board edge drops keep their jitter inside the narrow cup
12. A target that keeps missing widens its jitter, then yields its turn
13. Real pymunk boards of every row count are filled bucket by bucket
"""

import itertools
import logging
import random
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import PlinkoConfig
from sim_engine.plinko.geometry import build_geometry
from sim_engine.plinko.recorder import (
    BallSimulator, FastRecorder, RecordingReport, VisualRecorder, bias_x, record_until_filled,
)
from sim_engine.plinko.render import NullRenderer
from sim_engine.plinko.trajectory import Position, RecordedPath
from tools.blob_store import PATHS_KEY, MemoryBlobStore
from tools.plinko_paths import PathLibrary


# ── Fakes: land where the drop bias points, no physics ──

def _biased_bucket(geometry, drop_x):
    """Inverse of the recorder's drop bias, rounded to the nearest bucket."""
    n = geometry.bucket_count
    half = bias_x(geometry, n - 1) - geometry.center_x
    ratio = (drop_x - geometry.center_x) / (2 * half) + 0.5
    return max(0, min(n - 1, round(ratio * (n - 1))))


class FakeSimulator:

    def __init__(self, rows, stall_every=0, fixed_bucket=None):
        self.geometry = build_geometry(rows)
        self.stall_every = stall_every
        self.fixed_bucket = fixed_bucket
        self.drops = []

    def __call__(self, drop_x):
        self.drops.append(drop_x)
        if self.stall_every and len(self.drops) % self.stall_every == 0:
            return None
        g = self.geometry
        bucket = self.fixed_bucket if self.fixed_bucket is not None else _biased_bucket(g, drop_x)
        positions = (Position(drop_x, 0.0), Position(g.bucket_center_x(bucket), g.ground_y))
        return RecordedPath(positions, bucket)


class FakeBall:

    def __init__(self, ball_id, x, y):
        self.id = ball_id
        self.x = x
        self.y = y
        self.steps = 0

    @property
    def position(self):
        return Position(self.x, self.y)


class FakeWorld:
    """Balls fall straight into the bucket the drop bias points at."""

    def __init__(self, rows, speed=60.0):
        self.geometry = build_geometry(rows)
        self.speed = speed
        self.balls = {}
        self._ids = itertools.count(1)

    def add_ball(self, x, y=0.0):
        ball = FakeBall(next(self._ids),
                        self.geometry.bucket_center_x(_biased_bucket(self.geometry, x)), y)
        self.balls[ball.id] = ball
        return ball

    def remove_ball(self, ball):
        self.balls.pop(ball.id, None)

    def step(self):
        for ball in self.balls.values():
            ball.y += self.speed
            ball.steps += 1

    def has_landed(self, ball):
        return self.geometry.is_landed(ball.y)

    def clear(self):
        self.balls.clear()


class _Capture(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _library(per_bucket=6):
    store = MemoryBlobStore()
    return store, PathLibrary(store, paths_per_bucket=per_bucket, rng=random.Random(3))


# ============================================================
# Tests
# ============================================================

def test_targets_edges_first():
    """Order is 0, n-1, 1, n-2, then the bucket furthest from its quota."""
    _, lib = _library()
    rec = FastRecorder(lib, 8, simulator=FakeSimulator(8), rng=random.Random(1))
    order = []
    for _ in range(4):
        target = rec.target_bucket()
        order.append(target)
        rec.local[target].extend([None] * rec.needed[target])
    assert order == [0, 8, 1, 7], order

    rec.local[5].extend([None] * 5)
    rec.local[3].extend([None] * 2)
    assert rec.target_bucket() in (2, 4, 6)
    for b in range(9):
        rec.local[b] = [None] * rec.needed[b]
    assert rec.target_bucket() is None
    assert rec.all_filled()
    print("✅ Targeting: edges first, then most under-filled")


def test_drop_x_bias_and_bounds():
    _, lib = _library()
    for rows in PlinkoConfig.ROW_COUNTS:
        rec = FastRecorder(lib, rows, simulator=FakeSimulator(rows), rng=random.Random(rows))
        g = rec.geometry
        lo, hi = g.drop_bounds()
        left = [rec.drop_x_for(0) for _ in range(200)]
        right = [rec.drop_x_for(rows) for _ in range(200)]
        middle = [rec.drop_x_for(rows // 2) for _ in range(200)]
        assert all(lo <= x <= hi for x in left + right + middle)
        assert max(left) < g.center_x < min(right)
        assert abs(sum(middle) / len(middle) - g.center_x) < 2.0
    print("✅ Drop x leans toward the target and stays in the cup")


def test_edge_drops_vary_on_narrow_cup():
    """16 rows: the cup is narrower than the bias range, drops still spread."""
    _, lib = _library()
    rec = FastRecorder(lib, 16, simulator=FakeSimulator(16), rng=random.Random(16))
    g = rec.geometry
    lo, hi = g.drop_bounds()
    assert hi - lo < 2 * PlinkoConfig.DROP_RANGE
    assert bias_x(g, 0) < bias_x(g, 8) < bias_x(g, 16)
    assert abs(bias_x(g, 0) - lo) < 1e-6 and abs(bias_x(g, 16) - hi) < 1e-6
    left = [rec.drop_x_for(0) for _ in range(200)]
    right = [rec.drop_x_for(16) for _ in range(200)]
    assert all(lo <= x <= hi for x in left + right)
    assert len({round(x, 6) for x in left}) > 150, "edge drops pinned to one x"
    assert len({round(x, 6) for x in right}) > 150
    assert sum(left) / len(left) < g.center_x - 10 < g.center_x + 10 < sum(right) / len(right)
    print("✅ Edge drops on a 16-row board keep their jitter")


def test_missed_target_widens_then_rotates():
    _, lib = _library(per_bucket=1)
    sim = FakeSimulator(16, fixed_bucket=8)
    rec = FastRecorder(lib, 16, simulator=sim, miss_limit=5, rng=random.Random(2))
    lo, hi = rec.geometry.drop_bounds()
    narrow = [rec.drop_x_for(0) for _ in range(300)]

    for _ in range(5):
        assert rec.target_bucket() == 0
        rec.observe(0, sim(rec.drop_x_for(0)))
    assert rec.misses[0] == 5
    assert rec.target_bucket() == 16, "bucket 0 should be passed over"
    wide = [rec.drop_x_for(0) for _ in range(300)]
    assert max(narrow) - min(narrow) <= PlinkoConfig.DROP_JITTER
    assert max(wide) - min(wide) > 0.8 * (hi - lo)

    landed = RecordedPath((Position(lo, 0.0), Position(lo, rec.geometry.ground_y)), 0)
    assert rec.observe(16, landed)
    assert rec.misses[0] == 0 and rec.misses[16] == 1
    print("✅ Missed targets widen their jitter, then yield to other buckets")


def test_every_open_bucket_missing_falls_back_to_random_target():
    _, lib = _library(per_bucket=1)
    rec = FastRecorder(lib, 8, simulator=FakeSimulator(8), miss_limit=1, rng=random.Random(3))
    rec.misses = [1] * 9
    rec.local[4] = [None]
    picks = {rec.target_bucket() for _ in range(200)}
    assert 4 not in picks
    assert picks <= set(range(9)) and len(picks) > 4
    print("✅ All targets exhausted → random open bucket")


def test_fast_recorder_fills_sixteen_rows():
    store, lib = _library(per_bucket=3)
    report = record_until_filled(lib, 16, 3, simulator=FakeSimulator(16), rng=random.Random(12))
    assert report.complete, report.summary()
    assert all(lib.path_count(16, b) == 3 for b in range(17))
    assert store.puts == 1
    print(f"✅ 16-row fake fill complete in {report.attempts} attempts")


def test_fast_recorder_fills_every_bucket():
    """Row count 8, six paths per bucket: every bucket ends at exactly six."""
    store, lib = _library(per_bucket=6)
    report = record_until_filled(lib, 8, 6, simulator=FakeSimulator(8), rng=random.Random(11))

    assert isinstance(report, RecordingReport)
    assert report.complete, report.summary()
    assert lib.has_enough_paths(8, 9)
    assert report.counts == [6] * 9
    assert all(lib.path_count(8, b) == 6 for b in range(9))
    assert report.committed == report.recorded == 54
    assert report.attempts >= 54
    assert store.puts == 1, f"expected one batch commit, got {store.puts}"
    for b in range(9):
        for path in lib.all_paths_for_bucket(8, b):
            assert path.final_bucket == b
    print(f"✅ Fast recorder filled 9 buckets in {report.attempts} attempts, one save")


def test_fast_recorder_tops_up_partial_library():
    store, lib = _library(per_bucket=4)
    lib.add_paths_batch(12, [FakeSimulator(12, fixed_bucket=0)(300.0)] * 4
                        + [FakeSimulator(12, fixed_bucket=6)(310.0)] * 2)
    sim = FakeSimulator(12)
    rec = FastRecorder(lib, 12, simulator=sim, rng=random.Random(5))
    assert rec.needed[0] == 0 and rec.needed[6] == 2 and rec.needed[1] == 4
    report = rec.record_until_filled()
    assert report.complete
    assert report.committed == 13 * 4 - 6
    assert all(lib.path_count(12, b) == 4 for b in range(13))
    print("✅ Partially filled library is topped up, not overfilled")


def test_stalls_are_discarded():
    _, lib = _library(per_bucket=3)
    report = FastRecorder(lib, 8, simulator=FakeSimulator(8, stall_every=3),
                          rng=random.Random(2)).record_until_filled()
    assert report.complete
    assert report.stalls > 0
    assert report.attempts >= report.stalls + report.recorded
    assert all(lib.path_count(8, b) == 3 for b in range(9))
    print(f"✅ {report.stalls} stalls discarded, library still filled")


def test_attempt_budget_reports_unfilled():
    store, lib = _library(per_bucket=6)
    logger = logging.getLogger("plinko.recorder")
    handler = _Capture()
    logger.addHandler(handler)
    try:
        report = FastRecorder(lib, 8, simulator=FakeSimulator(8, fixed_bucket=4),
                              max_attempts=40, rng=random.Random(9)).record_until_filled()
    finally:
        logger.removeHandler(handler)

    assert not report.complete
    assert report.attempts == 40
    assert report.unfilled == [0, 1, 2, 3, 5, 6, 7, 8]
    assert report.counts[4] == 6
    assert lib.path_count(8, 4) == 6
    assert store.puts == 1
    assert any(r.levelno == logging.WARNING and "bucket 0" in r.getMessage() for r in handler.records)
    assert report.to_dict()["complete"] is False
    print("✅ Attempt budget exhausted → unfilled buckets reported, nothing raised")


def test_progress_callback():
    _, lib = _library(per_bucket=2)
    lines = []
    FastRecorder(lib, 8, simulator=FakeSimulator(8), rng=random.Random(4),
                 on_progress=lines.append, progress_every=5).record_until_filled()
    assert lines
    assert "buckets left" in lines[0]
    print("✅ Progress lines emitted")


def test_visual_recorder_fills_library():
    store, lib = _library(per_bucket=6)
    renderer = NullRenderer()
    rec = VisualRecorder(lib, 8, balls_per_second=50, world=FakeWorld(8),
                         renderer=renderer, rng=random.Random(8))
    assert rec.max_in_flight == 100
    rec.start()
    frame = 0
    peak = 0
    while rec.tick(frame / 60.0):
        peak = max(peak, len(rec.in_flight))
        frame += 1
        assert frame < 5000, "visual recorder did not finish"

    report = rec.result
    assert rec.finished and report.complete, report.summary()
    assert all(lib.path_count(8, b) == 6 for b in range(9))
    assert store.puts == 1
    assert peak > 1, "expected several balls in flight"
    assert rec.world.balls == {}
    assert renderer.frames == frame + 1
    assert renderer.last.mode == "RECORDING"
    print(f"✅ Visual recorder filled the library in {frame + 1} frames (peak {peak} in flight)")


def test_visual_recorder_run_paces_frames():
    _, lib = _library(per_bucket=2)
    rec = VisualRecorder(lib, 8, balls_per_second=50, world=FakeWorld(8),
                         rng=random.Random(6))
    clock = itertools.count(0.0, 0.005)
    sleeps = []
    report = rec.run(frame_rate=60, clock=lambda: next(clock), sleep=sleeps.append)
    assert report.complete
    assert sleeps and all(s > 0 for s in sleeps)
    print("✅ run() paces frames and finishes")


def test_visual_recorder_cancel_saves_nothing():
    store, lib = _library(per_bucket=6)
    rec = VisualRecorder(lib, 8, world=FakeWorld(8, speed=5.0), rng=random.Random(1))
    rec.start()
    for frame in range(120):
        rec.tick(frame / 60.0)
    assert rec.in_flight
    report = rec.cancel()

    assert report.cancelled and not report.complete
    assert report.committed == 0
    assert store.puts == 0
    assert all(lib.path_count(8, b) == 0 for b in range(9))
    assert rec.world.balls == {} and rec.in_flight == {}
    assert rec.tick(3.0) is False
    print("✅ Cancel tears down the world and persists nothing")


def test_visual_recorder_stalls():
    store, lib = _library(per_bucket=1)
    rec = VisualRecorder(lib, 8, world=FakeWorld(8, speed=0.0), max_steps=10,
                         max_attempts=5, rng=random.Random(1))
    rec.start()
    frame = 0
    while rec.tick(frame * 0.05):
        frame += 1
        assert frame < 1000
    assert rec.result.stalls == 5
    assert rec.result.committed == 0
    assert store.puts == 0
    print("✅ Visual stalls counted and discarded")


def test_ball_simulator_real_physics():
    """A real ball reaches the ground line and is tagged with the bucket under it."""
    geometry = build_geometry(8)
    sim = BallSimulator(8, max_steps=3000)
    path = sim(geometry.center_x + 3.0)
    assert path is not None, "ball stalled"
    assert path.positions[0] == Position(geometry.center_x + 3.0, 0.0)
    assert path.last.y >= geometry.ground_y
    assert all(p.y < geometry.ground_y for p in path.positions[:-1])
    assert path.final_bucket == geometry.bucket_for_x(path.last.x)
    assert sim.world.balls == {}
    print(f"✅ Real pymunk drop landed in bucket {path.final_bucket} "
          f"after {len(path)} samples")


def test_ball_simulator_sampling():
    geometry = build_geometry(16)
    every = BallSimulator(16, max_steps=3000, sample_every=1)(geometry.center_x - 2.0)
    second = BallSimulator(16, max_steps=3000, sample_every=2)(geometry.center_x - 2.0)
    assert every is not None and second is not None
    assert len(second) < len(every)
    assert second.last == every.last
    assert len(second) <= len(every) // 2 + 2
    print("✅ Sampling every other step halves the path and keeps the landing sample")


def test_simulator_determinism():
    """Fresh worlds built alike give the same trajectory for the same drop."""
    x = build_geometry(12).center_x + 4.5
    a = BallSimulator(12, max_steps=3000)(x)
    b = BallSimulator(12, max_steps=3000)(x)
    assert a is not None and a == b
    print("✅ Same drop, same board → same path")


def test_ball_simulator_stall_budget():
    sim = BallSimulator(8, max_steps=5)
    assert sim(build_geometry(8).center_x) is None
    assert sim.world.balls == {}
    print("✅ Step budget exhausted → None")


def test_fast_recorder_real_physics_smoke():
    """A short real recording commits whatever it caught in one save."""
    store, lib = _library(per_bucket=1)
    report = FastRecorder(lib, 8, max_attempts=30, max_steps=3000,
                          rng=random.Random(21)).record_until_filled()
    assert report.attempts <= 30
    assert report.committed == sum(report.counts)
    assert report.committed > 0
    assert store.puts == 1
    assert store.get(PATHS_KEY)["8"]
    print(f"✅ Real physics smoke: {report.summary()}")


def _assert_real_paths(lib, rows, per_bucket):
    g = build_geometry(rows)
    for b in range(rows + 1):
        paths = lib.all_paths_for_bucket(rows, b)
        assert len(paths) == per_bucket, f"rows={rows} bucket {b}: {len(paths)}"
        for path in paths:
            assert path.final_bucket == b
            assert path.last.y >= g.ground_y
            assert g.bucket_for_x(path.last.x) == b


def test_fast_recorder_real_physics_fills_every_row_count():
    """Real pymunk boards of 8, 12 and 16 rows reach every bucket."""
    for rows in PlinkoConfig.ROW_COUNTS:
        store, lib = _library(per_bucket=2)
        report = record_until_filled(lib, rows, 2, max_attempts=4000,
                                     rng=random.Random(rows))
        assert report.complete, report.summary()
        assert store.puts == 1
        _assert_real_paths(lib, rows, 2)
        print(f"✅ Real physics rows={rows}: {report.summary()}")


def test_visual_recorder_real_physics_sixteen_rows():
    store, lib = _library(per_bucket=1)
    rec = VisualRecorder(lib, 16, max_attempts=4000, rng=random.Random(160))
    rec.start()
    frame = 0
    while rec.tick(frame / 60.0):
        frame += 1
        assert frame < 200_000, "visual recorder did not finish"
    report = rec.result
    assert report.complete, report.summary()
    assert store.puts == 1
    _assert_real_paths(lib, 16, 1)
    print(f"✅ Visual real physics rows=16: {report.summary()} in {frame + 1} frames")


if __name__ == "__main__":
    tests = [
        test_targets_edges_first,
        test_drop_x_bias_and_bounds,
        test_edge_drops_vary_on_narrow_cup,
        test_missed_target_widens_then_rotates,
        test_every_open_bucket_missing_falls_back_to_random_target,
        test_fast_recorder_fills_sixteen_rows,
        test_fast_recorder_fills_every_bucket,
        test_fast_recorder_tops_up_partial_library,
        test_stalls_are_discarded,
        test_attempt_budget_reports_unfilled,
        test_progress_callback,
        test_visual_recorder_fills_library,
        test_visual_recorder_run_paces_frames,
        test_visual_recorder_cancel_saves_nothing,
        test_visual_recorder_stalls,
        test_ball_simulator_real_physics,
        test_ball_simulator_sampling,
        test_simulator_determinism,
        test_ball_simulator_stall_budget,
        test_fast_recorder_real_physics_smoke,
        test_fast_recorder_real_physics_fills_every_row_count,
        test_visual_recorder_real_physics_sixteen_rows,
    ]

    print(f"\n{'='*60}")
    print(f"Recorder Tests — {len(tests)} tests")
    print(f"{'='*60}\n")

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"❌ {test.__name__}: {e}")
            failed += 1
        print()

    print(f"{'='*60}")
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")
    print(f"{'='*60}")

    sys.exit(0 if failed == 0 else 1)
