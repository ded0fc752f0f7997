#!/usr/bin/env python3
"""
Plinko Lounge — Playback Driver Tests

Run: python tests_playback.py
     python tests_playback.py TestEndToEnd

Test categories:
  TestTasks        — LiveBallTask / ReplayTask stepping
  TestBoardModes   — RECORDING / PLAYBACK selection and transitions
  TestSettlement   — debit at drop, floor(bet × multiplier) at landing
  TestEndToEnd     — record-then-replay sessions on real pymunk boards
"""

import io
import itertools
import random
import sys
import unittest
from pathlib import Path

from rich.console import Console

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from sim_engine.plinko.geometry import build_geometry
from sim_engine.plinko.payouts import multipliers_for
from sim_engine.plinko.playback import (
    Balance, BoardMode, DropResult, GameLoop, LiveBallTask, PlinkoBoard, ReplayTask,
)
from sim_engine.plinko.recorder import record_until_filled
from sim_engine.plinko.render import ConsoleRenderer, FrameSnapshot, NullRenderer
from sim_engine.plinko.trajectory import Position, RecordedPath
from tools.blob_store import MemoryBlobStore
from tools.plinko_config import BoardSettings, Risk
from tools.plinko_paths import PathLibrary
from tools.plinko_probabilities import BucketProbabilityTable


def make_path(rows, bucket, samples=5):
    g = build_geometry(rows)
    target_x = g.bucket_center_x(bucket)
    positions = tuple(
        Position(g.center_x + (target_x - g.center_x) * i / (samples - 1),
                 g.ground_y * i / (samples - 1))
        for i in range(samples)
    )
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


class StraightDropWorld:
    """No pegs: balls fall straight down at a fixed speed."""

    def __init__(self, rows, speed=50.0):
        self.geometry = build_geometry(rows)
        self.speed = speed
        self.balls = {}
        self.steps = 0
        self._ids = itertools.count(1)

    def add_ball(self, x, y=0.0):
        ball = FakeBall(next(self._ids), x, y)
        self.balls[ball.id] = ball
        return ball

    def remove_ball(self, ball):
        self.balls.pop(ball.id, None)

    def step(self):
        self.steps += 1
        for ball in self.balls.values():
            ball.y += self.speed
            ball.steps += 1

    def has_landed(self, ball):
        return self.geometry.is_landed(ball.y)

    def clear(self):
        self.balls.clear()


def _board(rows=8, filled=True, world=None, ledger=None, seed=1, **settings):
    store = MemoryBlobStore()
    library = PathLibrary(store, paths_per_bucket=6, rng=random.Random(seed))
    if filled:
        library.add_paths_batch(rows, [make_path(rows, b) for b in range(rows + 1)
                                       for _ in range(6)])
    table = BucketProbabilityTable(store, rng=random.Random(seed))
    board = PlinkoBoard(library, table, BoardSettings(rows=rows, **settings),
                        ledger=ledger or Balance(10_000), world=world,
                        rng=random.Random(seed))
    return store, library, table, board


# ============================================================
# Tasks
# ============================================================

class TestTasks(unittest.TestCase):

    def test_replay_advances_one_sample_per_frame(self):
        path = make_path(8, 3, samples=7)
        task = ReplayTask(1, path, 10, multipliers_for(8, "medium"))
        seen = [task.position]
        frames = 0
        while not task.advance():
            seen.append(task.position)
            frames += 1
        self.assertEqual(frames + 1, len(path))
        self.assertEqual(seen, list(path.positions)[:len(seen)])
        self.assertEqual(task.position, path.last)
        self.assertEqual(task.bucket, 3)

    def test_live_task_records_until_landing(self):
        world = StraightDropWorld(8, speed=100.0)
        ball = world.add_ball(310.0)
        task = LiveBallTask(1, ball, 10, multipliers_for(8, "low"))
        while True:
            world.step()
            if task.advance(world):
                break
        self.assertEqual(task.bucket, world.geometry.bucket_for_x(310.0))
        self.assertIsNotNone(task.path)
        self.assertEqual(task.path.final_bucket, task.bucket)
        self.assertEqual(task.path.positions[0], Position(310.0, 0.0))
        self.assertGreaterEqual(task.path.last.y, world.geometry.ground_y)
        self.assertEqual(world.balls, {})

    def test_live_task_stall(self):
        world = StraightDropWorld(8, speed=0.0)
        task = LiveBallTask(1, world.add_ball(20.0), 10, multipliers_for(8, "low"), max_steps=4)
        done = False
        for _ in range(4):
            world.step()
            done = task.advance(world)
        self.assertTrue(done)
        self.assertTrue(task.stalled)
        self.assertIsNone(task.path)
        self.assertEqual(task.bucket, 0)

    def test_game_loop_steps_only_with_live_balls(self):
        world = StraightDropWorld(8)
        loop = GameLoop(world)
        loop.add(ReplayTask(1, make_path(8, 0), 1, [1] * 9))
        loop.tick()
        self.assertEqual(world.steps, 0)
        loop.add(LiveBallTask(2, world.add_ball(300.0), 1, [1] * 9))
        loop.tick()
        self.assertEqual(world.steps, 1)
        self.assertEqual(loop.cancel(), 2)
        self.assertTrue(loop.idle)


# ============================================================
# Modes
# ============================================================

class TestBoardModes(unittest.TestCase):

    def test_start_picks_mode(self):
        _, _, _, empty = _board(filled=False, world=StraightDropWorld(8))
        self.assertEqual(empty.start(), BoardMode.RECORDING)
        _, _, _, full = _board(world=StraightDropWorld(8))
        self.assertEqual(full.start(), BoardMode.PLAYBACK)

    def test_start_hydrates_from_store(self):
        store, library, _, _ = _board(rows=8)
        fresh = PathLibrary(store, paths_per_bucket=6)
        board = PlinkoBoard(fresh, BucketProbabilityTable(store),
                            BoardSettings(rows=8), world=StraightDropWorld(8))
        self.assertEqual(board.start(), BoardMode.PLAYBACK)
        self.assertTrue(fresh.is_loaded)

    def test_recording_drop_is_live(self):
        _, _, _, board = _board(filled=False, world=StraightDropWorld(8))
        board.start()
        task = board.drop()
        self.assertIsInstance(task, LiveBallTask)
        result, = board.run_until_idle()
        self.assertEqual(result.source, "live")
        self.assertTrue(result.recorded)

    def test_transition_after_completing_insert(self):
        """The landing that fills the last bucket flips the board to PLAYBACK."""
        world = StraightDropWorld(8, speed=100.0)
        store, library, _, board = _board(filled=False, world=world)
        centre = world.geometry.bucket_for_x(world.geometry.center_x)
        library.add_paths_batch(8, [make_path(8, b) for b in range(9)
                                    for _ in range(6 if b != centre else 5)])
        self.assertEqual(board.start(), BoardMode.RECORDING)

        board.drop()
        while board.in_flight:
            self.assertEqual(board.mode, BoardMode.RECORDING)
            board.tick()
        self.assertEqual(board.mode, BoardMode.PLAYBACK)
        self.assertEqual(library.path_count(8, centre), 6)
        self.assertIsInstance(board.drop(), ReplayTask)

    def test_same_tick_landings_persist_once(self):
        store, library, _, board = _board(filled=False, world=StraightDropWorld(8))
        board.start()
        puts = store.puts
        board.drop()
        board.drop()
        results = board.run_until_idle()
        self.assertEqual(len(results), 2)
        self.assertTrue(all(r.recorded for r in results))
        self.assertEqual(store.puts, puts + 1)

    def test_reset_paths_forces_recording(self):
        store, library, _, board = _board(world=StraightDropWorld(8))
        self.assertEqual(board.start(), BoardMode.PLAYBACK)
        board.drop()
        board.reset_paths()
        self.assertEqual(board.mode, BoardMode.RECORDING)
        self.assertEqual(board.in_flight, 0)
        self.assertFalse(library.has_enough_paths(8, 9))
        self.assertIsInstance(board.drop(), LiveBallTask)

    def test_stop_discards_live_recordings(self):
        world = StraightDropWorld(8, speed=10.0)
        store, library, _, board = _board(filled=False, world=world, ledger=Balance(100))
        board.start()
        puts = store.puts
        board.drop()
        board.drop()
        board.tick()
        self.assertEqual(board.stop(), 2)
        self.assertEqual(world.balls, {})
        self.assertEqual(store.puts, puts)
        self.assertEqual(sum(library.path_count(8, b) for b in range(9)), 0)
        self.assertEqual(board.ledger.amount, 80)   # bets stay debited
        self.assertEqual(board.run_until_idle(), [])

    def test_stalled_live_ball_settles_without_recording(self):
        _, library, _, board = _board(filled=False, world=StraightDropWorld(8, speed=0.0),
                                      max_steps=20)
        board.start()
        board.drop()
        with self.assertLogs("plinko.board", level="WARNING"):
            result, = board.run_until_idle()
        self.assertTrue(result.stalled)
        self.assertFalse(result.recorded)
        self.assertEqual(sum(library.path_count(8, b) for b in range(9)), 0)

    def test_missing_path_falls_back_to_live(self):
        world = StraightDropWorld(8)
        _, library, _, board = _board(world=world, manual_bucket=0)
        board.start()
        library.clear(8)
        with self.assertLogs("plinko.board", level="WARNING"):
            task = board.drop()
        self.assertIsInstance(task, LiveBallTask)
        self.assertEqual(board.mode, BoardMode.PLAYBACK)


# ============================================================
# Settlement
# ============================================================

class TestSettlement(unittest.TestCase):

    def test_debit_then_credit(self):
        ledger = Balance(1000)
        _, _, _, board = _board(ledger=ledger, manual_bucket=0, risk="medium", bet=10)
        board.start()
        board.drop()
        self.assertEqual(ledger.amount, 990)
        result, = board.run_until_idle()
        self.assertEqual(result.multiplier, 13)
        self.assertEqual(result.payout, 130)
        self.assertEqual(ledger.amount, 1120)
        self.assertEqual(result.net, 120)

    def test_manual_override_ignores_table(self):
        _, _, table, board = _board(manual_bucket=8, risk=Risk.HIGH, bet=7)
        table.set(8, [0, 0, 0, 0, 100, 0, 0, 0, 0])
        board.start()
        for _ in range(20):
            board.drop()
        results = board.run_until_idle()
        self.assertEqual({r.bucket for r in results}, {8})
        self.assertEqual({r.payout for r in results}, {7 * 29})

    def test_breakeven_multiplier(self):
        """Low risk, 8 rows: bucket 3 pays exactly 1x."""
        ledger = Balance(500)
        _, _, _, board = _board(ledger=ledger, manual_bucket=3, risk="low", bet=25)
        board.start()
        board.drop()
        board.run_until_idle()
        self.assertEqual(ledger.amount, 500)

    def test_floor_of_fractional_payout(self):
        ledger = Balance(100)
        _, _, _, board = _board(ledger=ledger, manual_bucket=4, risk="medium", bet=7)
        board.start()
        board.drop()
        result, = board.run_until_idle()
        self.assertEqual(result.payout, 2)            # floor(7 × 0.4)
        self.assertEqual(ledger.amount, 100 - 7 + 2)

    def test_bet_and_risk_captured_at_drop(self):
        ledger = Balance(1000)
        _, _, _, board = _board(ledger=ledger, manual_bucket=0, risk="low", bet=10)
        board.start()
        board.drop()
        board.set_bet(500)
        board.set_risk("high")
        result, = board.run_until_idle()
        self.assertEqual(result.bet, 10)
        self.assertEqual(result.payout, 56)           # 10 × 5.6, low table
        self.assertEqual(board.bet, 500)

    def test_refused_debit_starts_nothing(self):
        ledger = Balance(5)
        _, _, _, board = _board(ledger=ledger, bet=10)
        board.start()
        self.assertIsNone(board.drop())
        self.assertEqual(board.in_flight, 0)
        self.assertEqual(ledger.amount, 5)
        self.assertIsNotNone(board.drop(bet=5))
        self.assertEqual(ledger.amount, 0)

    def test_settings_validation(self):
        _, _, _, board = _board()
        with self.assertRaises(Exception):
            board.set_manual_bucket(9)
        with self.assertRaises(Exception):
            board.set_bet(-1)
        with self.assertRaises(ValueError):
            board.set_risk("extreme")
        board.set_manual_bucket(None)
        self.assertIsNone(board.manual_bucket)
        with self.assertRaises(ValueError):
            board.drop(bet=-3)

    def test_result_callback_and_snapshot(self):
        seen = []
        renderer = NullRenderer()
        store = MemoryBlobStore()
        library = PathLibrary(store)
        library.add_paths_batch(8, [make_path(8, b) for b in range(9) for _ in range(6)])
        board = PlinkoBoard(library, BucketProbabilityTable(store), BoardSettings(rows=8),
                            renderer=renderer, world=StraightDropWorld(8),
                            on_result=seen.append)
        board.start()
        board.drop()
        board.run_until_idle()
        self.assertEqual(len(seen), 1)
        self.assertIsInstance(seen[0], DropResult)
        self.assertEqual(seen[0].to_dict()["source"], "replay")
        snapshot = renderer.last
        self.assertIsInstance(snapshot, FrameSnapshot)
        self.assertEqual(snapshot.mode, "PLAYBACK")
        self.assertEqual(snapshot.highlighted, [seen[0].bucket])
        self.assertEqual(len(snapshot.bucket_labels), 9)

    def test_console_renderer(self):
        buf = io.StringIO()
        renderer = ConsoleRenderer(Console(file=buf, width=120), every=1)
        renderer.draw(FrameSnapshot(frame=3, mode="RECORDING", rows=8,
                                    bucket_labels=["1/6"] * 9, highlighted=[2],
                                    status="50% (27/54)"))
        out = buf.getvalue()
        self.assertIn("RECORDING", out)
        self.assertIn("50% (27/54)", out)
        quiet = ConsoleRenderer(Console(file=io.StringIO()), every=10)
        quiet.draw(FrameSnapshot(frame=3, mode="PLAYBACK", rows=8))
        self.assertEqual(quiet.console.file.getvalue(), "")


# ============================================================
# End to end
# ============================================================

class TestEndToEnd(unittest.TestCase):

    def test_record_until_full_with_six_per_bucket(self):
        """Row count 8 filled to six paths per bucket, then the board replays."""
        store = MemoryBlobStore()
        library = PathLibrary(store, paths_per_bucket=6)

        geometry = build_geometry(8)

        def simulator(drop_x):
            ratio = (drop_x - geometry.center_x) / 80 + 0.5
            bucket = max(0, min(8, round(ratio * 8)))
            return make_path(8, bucket)

        report = record_until_filled(library, 8, 6, simulator=simulator, rng=random.Random(3))
        self.assertTrue(report.complete)
        self.assertTrue(library.has_enough_paths(8, 9))
        for b in range(9):
            self.assertEqual(library.path_count(8, b), 6)
        # more paths offered later never push a bucket past the cap
        self.assertEqual(library.add_paths_batch(8, [make_path(8, b) for b in range(9)]), 0)

        board = PlinkoBoard(library, BucketProbabilityTable(store), BoardSettings(rows=8))
        self.assertEqual(board.start(), BoardMode.PLAYBACK)

    def test_centre_only_table_lands_centre(self):
        """1000 drops against [0,0,0,0,100,0,0,0,0] all resolve to bucket 4."""
        _, _, table, board = _board(bet=1, ledger=Balance(10_000))
        table.set(8, [0, 0, 0, 0, 100, 0, 0, 0, 0])
        board.start()
        for _ in range(1000):
            self.assertIsInstance(board.drop(), ReplayTask)
        results = board.run_until_idle()
        self.assertEqual(len(results), 1000)
        self.assertEqual({r.bucket for r in results}, {4})
        self.assertTrue(all(r.source == "replay" for r in results))

    def test_clear_returns_to_recording_and_records_live(self):
        """Row count 12: reset → RECORDING, next drop is live and gets stored."""
        _, library, _, board = _board(rows=12, max_steps=5000)
        self.assertEqual(board.start(), BoardMode.PLAYBACK)
        board.reset_paths()
        self.assertEqual(board.mode, BoardMode.RECORDING)

        task = board.drop()
        self.assertIsInstance(task, LiveBallTask)
        result, = board.run_until_idle(max_frames=6000)
        self.assertEqual(result.source, "live")
        self.assertFalse(result.stalled)
        self.assertTrue(result.recorded)
        self.assertIn(result.bucket, range(13))
        self.assertEqual(library.path_count(12, result.bucket), 1)
        stored = library.get_random_path(12, result.bucket)
        self.assertEqual(stored.final_bucket, result.bucket)
        self.assertGreaterEqual(stored.last.y, build_geometry(12).ground_y)
        self.assertEqual(board.mode, BoardMode.RECORDING)

    def test_missing_bucket_falls_back_and_self_heals(self):
        """Row count 16, bucket 3 empty: live fallback records where it lands."""
        _, library, _, board = _board(rows=16, manual_bucket=3, max_steps=5000)
        board.start()
        library.clear(16)
        self.assertIsNone(library.get_random_path(16, 3))

        with self.assertLogs("plinko.board", level="WARNING"):
            task = board.drop()
        self.assertIsInstance(task, LiveBallTask)
        result, = board.run_until_idle(max_frames=6000)
        self.assertEqual(result.source, "live")
        self.assertIn(result.bucket, range(17))
        self.assertTrue(result.recorded)
        self.assertEqual(library.path_count(16, result.bucket), 1)
        self.assertEqual(library.get_random_path(16, result.bucket).final_bucket, result.bucket)
        self.assertEqual(result.multiplier, multipliers_for(16, "medium")[result.bucket])


if __name__ == "__main__":
    unittest.main()
