"""
Plinko Lounge - Trajectory Recorder

Fills the path library for one row count until every bucket holds the
paths-per-bucket cap.

Per attempt:
  1. pick a target bucket: edge buckets first (hardest to hit), then the
     most under-filled one. A target that misses TARGET_MISS_LIMIT times in
     a row is passed over until some ball lands in it
  2. bias the drop x toward it:
         x = centre + (target/(n-1) - 0.5) * 2 * half + jitter
     where half is DROP_RANGE narrowed to the top cup. The jitter window
     widens with each miss and is reflected back inside the cup, so no
     two drops pin to the same wall
  3. simulate the ball until it crosses the ground line or the step
     budget runs out (a stall: discarded, counted against the budget)
  4. keep the trajectory only if the bucket it actually reached has room

Two pacings share this logic:
  FastRecorder   - headless, one ball at a time, as fast as the CPU allows
  VisualRecorder - real time: one physics step per frame, balls dropped at
                   a fixed rate, many in flight, progress rendered

Both commit everything they recorded with a single add_paths_batch call.
The drop bias is a heuristic with no convergence guarantee. A run that
exhausts its attempts is reported as unfilled, never raised.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from config.settings import PlinkoConfig
from sim_engine.plinko.geometry import BoardGeometry, build_geometry
from sim_engine.plinko.physics import PlinkoWorld, build_board
from sim_engine.plinko.render import FrameSnapshot, NullRenderer
from sim_engine.plinko.trajectory import RecordedPath
from tools.plinko_config import PhysicsConfig
from tools.plinko_paths import PathLibrary

logger = logging.getLogger("plinko.recorder")

Simulator = Callable[[float], Optional[RecordedPath]]


@dataclass
class RecordingReport:
    rows: int
    paths_per_bucket: int
    counts: list                     # library count per bucket after the run
    attempts: int = 0
    recorded: int = 0                # accepted into the local batch
    committed: int = 0               # accepted by the library
    stalls: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def unfilled(self) -> list:
        return [b for b, c in enumerate(self.counts) if c < self.paths_per_bucket]

    @property
    def complete(self) -> bool:
        return not self.unfilled and not self.cancelled

    def summary(self) -> str:
        status = "complete" if self.complete else (
            "cancelled" if self.cancelled else f"unfilled buckets {self.unfilled}")
        return (f"rows={self.rows}: {self.committed} paths committed, "
                f"{self.attempts} attempts, {self.stalls} stalls, {status}")

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "paths_per_bucket": self.paths_per_bucket,
            "counts": self.counts,
            "attempts": self.attempts,
            "recorded": self.recorded,
            "committed": self.committed,
            "stalls": self.stalls,
            "cancelled": self.cancelled,
            "unfilled": self.unfilled,
            "complete": self.complete,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def bias_x(geometry: BoardGeometry, target: int) -> float:
    """Drop x that leans toward `target`, scaled to fit inside the top cup.

    Bucket 0 maps to the left end of the bias range and bucket n-1 to the
    right end. The range is DROP_RANGE either side of centre, narrowed to
    the cup on boards whose cup is smaller than that.
    """
    lo, hi = geometry.drop_bounds()
    half = min(PlinkoConfig.DROP_RANGE, (hi - lo) / 2)
    ratio = target / (geometry.bucket_count - 1)
    return geometry.center_x + (ratio - 0.5) * 2 * half


def _reflect(x: float, lo: float, hi: float) -> float:
    width = hi - lo
    if width <= 0:
        return lo
    t = (x - lo) % (2 * width)
    return min(hi, lo + (t if t <= width else 2 * width - t))


class BallSimulator:
    """Drops one ball at a time into a private world and follows it down."""

    def __init__(self, rows: int, physics: Optional[PhysicsConfig] = None,
                 max_steps: int = PlinkoConfig.MAX_STEPS,
                 sample_every: int = PlinkoConfig.SAMPLE_EVERY,
                 world: Optional[PlinkoWorld] = None):
        self.world = world or build_board(rows, physics)
        self.max_steps = max_steps
        self.sample_every = max(1, sample_every)

    def __call__(self, drop_x: float) -> Optional[RecordedPath]:
        world = self.world
        ball = world.add_ball(drop_x, 0.0)
        positions = [ball.position]
        try:
            for step in range(1, self.max_steps + 1):
                world.step()
                pos = ball.position
                if world.has_landed(ball):
                    positions.append(pos)
                    return RecordedPath(tuple(positions), world.geometry.bucket_for_x(pos.x))
                if step % self.sample_every == 0:
                    positions.append(pos)
            return None
        finally:
            world.remove_ball(ball)


class _RecorderBase:

    def __init__(self, library: PathLibrary, rows: int,
                 paths_per_bucket: Optional[int] = None,
                 max_attempts: int = PlinkoConfig.MAX_ATTEMPTS,
                 rng: Optional[random.Random] = None,
                 geometry: Optional[BoardGeometry] = None,
                 miss_limit: int = PlinkoConfig.TARGET_MISS_LIMIT):
        self.library = library
        self.rows = rows
        self.geometry = geometry or build_geometry(rows)
        self.bucket_count = rows + 1
        self.paths_per_bucket = min(paths_per_bucket or library.paths_per_bucket,
                                    library.paths_per_bucket)
        self.max_attempts = max_attempts
        self.rng = rng or random.Random()

        # Only record what the library is still missing
        self.needed = [
            max(0, self.paths_per_bucket - library.path_count(rows, b))
            for b in range(self.bucket_count)
        ]
        self.local = {b: [] for b in range(self.bucket_count)}
        self.misses = [0] * self.bucket_count
        self.miss_limit = max(1, miss_limit)
        self.attempts = 0
        self.stalls = 0
        self.cancelled = False
        self._started = time.monotonic()

    # ── Targeting ───────────────────────────────

    def has_room(self, bucket: int) -> bool:
        return len(self.local[bucket]) < self.needed[bucket]

    def all_filled(self) -> bool:
        return not any(self.has_room(b) for b in range(self.bucket_count))

    def target_bucket(self) -> Optional[int]:
        n = self.bucket_count
        open_buckets = [b for b in range(n) if self.has_room(b)]
        if not open_buckets:
            return None
        edges = [b for b in dict.fromkeys((0, n - 1, 1, n - 2)) if 0 <= b < n]
        rest = sorted(open_buckets, key=lambda b: len(self.local[b]) - self.needed[b])
        for b in edges + rest:
            if self.has_room(b) and self.misses[b] < self.miss_limit:
                return b
        # Every open bucket keeps missing: spread drops across the whole cup
        return self.rng.choice(open_buckets)

    def drop_x_for(self, target: Optional[int]) -> float:
        g = self.geometry
        lo, hi = g.drop_bounds()
        if target is None:
            return g.clamp_drop_x(g.center_x + (self.rng.random() - 0.5) * 10)
        # Repeated misses widen the jitter until it covers the whole cup
        widen = min(1.0, self.misses[target] / self.miss_limit)
        spread = PlinkoConfig.DROP_JITTER + (2 * (hi - lo) - PlinkoConfig.DROP_JITTER) * widen
        jitter = (self.rng.random() - 0.5) * spread
        return _reflect(bias_x(g, target) + jitter, lo, hi)

    def observe(self, target: Optional[int], path: Optional[RecordedPath]) -> bool:
        """Record one attempt's outcome. Returns True if the path was kept."""
        if path is None:
            self.stalls += 1
            kept = False
        else:
            kept = self.accept(path)
            if kept:
                self.misses[path.final_bucket] = 0
        if target is not None and (path is None or path.final_bucket != target):
            self.misses[target] += 1
        return kept

    # ── Acceptance & commit ─────────────────────

    def accept(self, path: RecordedPath) -> bool:
        bucket = path.final_bucket
        if not 0 <= bucket < self.bucket_count or not self.has_room(bucket):
            return False
        self.local[bucket].append(path)
        recorded = self.recorded
        if recorded <= 20 or recorded % 10 == 0:
            logger.debug(f"rows={self.rows} path {recorded}: bucket {bucket} "
                         f"{len(self.local[bucket])}/{self.needed[bucket]}")
        return True

    @property
    def recorded(self) -> int:
        return sum(len(p) for p in self.local.values())

    @property
    def target_total(self) -> int:
        return sum(self.needed)

    def progress_line(self) -> str:
        pct = round(100 * self.recorded / self.target_total) if self.target_total else 100
        left = sum(1 for b in range(self.bucket_count) if self.has_room(b))
        counts = "|".join(str(len(self.local[b])) for b in range(self.bucket_count))
        return (f"{pct}% ({self.recorded}/{self.target_total}) | "
                f"{left} buckets left | [{counts}]")

    def commit(self) -> int:
        batch = [p for b in range(self.bucket_count) for p in self.local[b]]
        if not batch:
            return 0
        return self.library.add_paths_batch(self.rows, batch)

    def report(self, committed: int) -> RecordingReport:
        report = RecordingReport(
            rows=self.rows,
            paths_per_bucket=self.paths_per_bucket,
            counts=[self.library.path_count(self.rows, b) for b in range(self.bucket_count)],
            attempts=self.attempts,
            recorded=self.recorded,
            committed=committed,
            stalls=self.stalls,
            cancelled=self.cancelled,
            duration_seconds=time.monotonic() - self._started,
        )
        if report.cancelled:
            logger.info(f"Recording cancelled: {report.summary()}")
        elif report.unfilled:
            for b in report.unfilled:
                logger.warning(f"rows={self.rows} bucket {b} only has "
                               f"{report.counts[b]}/{self.paths_per_bucket} paths")
            logger.warning(f"Recording stopped before all buckets filled: {report.summary()}")
        else:
            logger.info(f"Recording complete: {report.summary()}")
        return report


# ═══════════════════════════════════════════════
# Fast (headless)
# ═══════════════════════════════════════════════

class FastRecorder(_RecorderBase):
    """Runs the simulation flat out, one ball per attempt."""

    def __init__(self, library: PathLibrary, rows: int,
                 paths_per_bucket: Optional[int] = None,
                 simulator: Optional[Simulator] = None,
                 physics: Optional[PhysicsConfig] = None,
                 max_steps: int = PlinkoConfig.MAX_STEPS,
                 sample_every: int = PlinkoConfig.SAMPLE_EVERY,
                 on_progress: Optional[Callable[[str], None]] = None,
                 progress_every: int = 10,
                 **kw):
        super().__init__(library, rows, paths_per_bucket, **kw)
        self.simulator = simulator or BallSimulator(
            rows, physics, max_steps=max_steps, sample_every=sample_every)
        self.on_progress = on_progress
        self.progress_every = progress_every

    def record_until_filled(self) -> RecordingReport:
        logger.info(f"Fast recording rows={self.rows}: target {self.target_total} paths")
        while not self.all_filled() and self.attempts < self.max_attempts:
            target = self.target_bucket()
            self.observe(target, self.simulator(self.drop_x_for(target)))
            self.attempts += 1
            if self.on_progress and self.attempts % self.progress_every == 0:
                self.on_progress(self.progress_line())

        logger.info(f"Loop finished. Attempts: {self.attempts}, Recorded: {self.recorded}")
        return self.report(self.commit())


def record_until_filled(library: PathLibrary, rows: int,
                        paths_per_bucket: Optional[int] = None, **kw) -> RecordingReport:
    """Headless fill of one row count. See FastRecorder for keyword options."""
    return FastRecorder(library, rows, paths_per_bucket, **kw).record_until_filled()


# ═══════════════════════════════════════════════
# Visual (real-time)
# ═══════════════════════════════════════════════

@dataclass
class _InFlight:
    ball: object
    target: Optional[int] = None
    positions: list = field(default_factory=list)


class VisualRecorder(_RecorderBase):
    """Same algorithm as FastRecorder, paced by a frame clock.

    Drive it with run() for real time, or call tick(now) from an existing
    loop. One physics step per tick; every in-flight ball is sampled once
    per tick.
    """

    def __init__(self, library: PathLibrary, rows: int,
                 paths_per_bucket: Optional[int] = None,
                 balls_per_second: int = PlinkoConfig.BALLS_PER_SECOND,
                 world: Optional[PlinkoWorld] = None,
                 physics: Optional[PhysicsConfig] = None,
                 max_steps: int = PlinkoConfig.MAX_STEPS,
                 renderer=None,
                 **kw):
        super().__init__(library, rows, paths_per_bucket, **kw)
        self.world = world or build_board(rows, physics)
        self.max_steps = max_steps
        self.renderer = renderer or NullRenderer()
        self.balls_per_second = balls_per_second
        self.in_flight: dict = {}
        self.running = False
        self.frames = 0
        self._last_drop = None
        self._report: Optional[RecordingReport] = None

    @property
    def max_in_flight(self) -> int:
        return max(50, self.balls_per_second * 2)

    @property
    def finished(self) -> bool:
        return self._report is not None

    @property
    def result(self) -> Optional[RecordingReport]:
        return self._report

    def start(self):
        self.running = True
        logger.info(f"Visual recording rows={self.rows}: target {self.target_total} paths "
                    f"at {self.balls_per_second} balls/sec")

    def _drop(self):
        target = self.target_bucket()
        ball = self.world.add_ball(self.drop_x_for(target), 0.0)
        self.in_flight[ball.id] = _InFlight(ball, target, [ball.position])
        self.attempts += 1

    def _advance_balls(self):
        for ball_id, flight in list(self.in_flight.items()):
            ball = flight.ball
            pos = ball.position
            flight.positions.append(pos)
            if self.world.has_landed(ball):
                bucket = self.world.geometry.bucket_for_x(pos.x)
                self.observe(flight.target, RecordedPath(tuple(flight.positions), bucket))
            elif ball.steps >= self.max_steps:
                self.observe(flight.target, None)
            else:
                continue
            self.world.remove_ball(ball)
            del self.in_flight[ball_id]

    def tick(self, now: float) -> bool:
        """Advance one frame. Returns False once recording has ended."""
        if not self.running:
            return False
        self.frames += 1
        self.world.step()
        self._advance_balls()

        interval = 1.0 / self.balls_per_second
        if (self._last_drop is None or now - self._last_drop >= interval) \
                and len(self.in_flight) < self.max_in_flight \
                and self.attempts < self.max_attempts \
                and not self.all_filled():
            self._drop()
            self._last_drop = now

        self.renderer.draw(self.snapshot())

        if self.all_filled() or (self.attempts >= self.max_attempts and not self.in_flight):
            self._finish()
            return False
        return True

    def _finish(self):
        self.running = False
        self.world.clear()
        self.in_flight.clear()
        self._report = self.report(self.commit())

    def cancel(self) -> RecordingReport:
        """Tear down without committing anything."""
        self.running = False
        self.cancelled = True
        self.world.clear()
        self.in_flight.clear()
        self._report = self.report(0)
        return self._report

    def snapshot(self) -> FrameSnapshot:
        g = self.world.geometry
        return FrameSnapshot(
            frame=self.frames,
            mode="RECORDING",
            rows=self.rows,
            pegs=g.pegs,
            live_balls=[f.ball.position for f in self.in_flight.values()],
            bucket_labels=[f"{len(self.local[b])}/{self.needed[b]}"
                           for b in range(self.bucket_count)],
            status=self.progress_line(),
        )

    def run(self, frame_rate: int = 60, clock: Callable[[], float] = time.monotonic,
            sleep: Callable[[float], None] = time.sleep) -> RecordingReport:
        self.start()
        frame = 1.0 / frame_rate
        while True:
            began = clock()
            if not self.tick(began):
                break
            spare = frame - (clock() - began)
            if spare > 0:
                sleep(spare)
        return self._report
