"""
Plinko Lounge - Playback Driver

One PlinkoBoard per row count. The board runs in one of two modes:

  RECORDING  every drop is a live physics ball; its trajectory is recorded
             and added to the path library when it lands
  PLAYBACK   the outcome is chosen first (manual bucket or the weighted
             draw), then a recorded trajectory ending in that bucket is
             replayed one sample per frame; if the bucket has no path yet
             the drop falls back to a live, recorded ball

The board switches RECORDING -> PLAYBACK at the end of the landing step
whose path insertion completed the library. It never switches back on its
own; reset_paths() does that.

Money flows through a Ledger: the bet is debited when the ball is dropped
and floor(bet x multiplier) is credited when it lands, using the bet and
risk table captured at drop time.

Usage:
    board = PlinkoBoard(library, table, BoardSettings(rows=8), ledger=Balance(1000))
    board.start()
    board.drop()
    results = board.run_until_idle()
"""

from __future__ import annotations

import itertools
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from config.settings import PlinkoConfig
from sim_engine.plinko.payouts import multipliers_for, settle
from sim_engine.plinko.physics import Ball, PlinkoWorld, build_board
from sim_engine.plinko.render import FrameSnapshot, NullRenderer
from sim_engine.plinko.trajectory import Position, RecordedPath
from tools.plinko_config import BoardSettings, Risk
from tools.plinko_paths import PathLibrary
from tools.plinko_probabilities import BucketProbabilityTable

logger = logging.getLogger("plinko.board")


class BoardMode(str, Enum):
    RECORDING = "RECORDING"
    PLAYBACK = "PLAYBACK"


# ═══════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════

class Ledger(Protocol):
    def debit(self, amount: int) -> bool: ...
    def credit(self, amount: int) -> None: ...


class Balance:
    """In-memory ledger. Refuses debits larger than the balance."""

    def __init__(self, amount: int = 1000):
        self.amount = amount
        self.wagered = 0
        self.paid = 0

    def debit(self, amount: int) -> bool:
        if amount < 0 or amount > self.amount:
            return False
        self.amount -= amount
        self.wagered += amount
        return True

    def credit(self, amount: int) -> None:
        self.amount += amount
        self.paid += amount


@dataclass
class DropResult:
    drop_id: int
    bucket: int
    bet: int
    multiplier: float
    payout: int
    source: str          # "replay" or "live"
    recorded: bool       # a new path was added to the library
    stalled: bool = False
    frames: int = 0

    @property
    def net(self) -> int:
        return self.payout - self.bet

    def to_dict(self) -> dict:
        return {
            "drop_id": self.drop_id,
            "bucket": self.bucket,
            "bet": self.bet,
            "multiplier": self.multiplier,
            "payout": self.payout,
            "net": self.net,
            "source": self.source,
            "recorded": self.recorded,
            "stalled": self.stalled,
            "frames": self.frames,
        }


# ═══════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════

class LiveBallTask:
    """A physics ball. Samples its own position once per frame."""

    source = "live"

    def __init__(self, drop_id: int, ball: Ball, bet: int, multipliers: list,
                 record: bool = True, max_steps: int = PlinkoConfig.MAX_STEPS):
        self.drop_id = drop_id
        self.ball = ball
        self.bet = bet
        self.multipliers = multipliers
        self.record = record
        self.max_steps = max_steps
        self.positions = [ball.position] if record else []
        self.frames = 0
        self.done = False
        self.stalled = False
        self.bucket: Optional[int] = None
        self.path: Optional[RecordedPath] = None

    @property
    def position(self) -> Position:
        return self.ball.position

    def advance(self, world: PlinkoWorld) -> bool:
        self.frames += 1
        pos = self.ball.position
        if self.record:
            self.positions.append(pos)

        if world.has_landed(self.ball):
            self.bucket = world.geometry.bucket_for_x(pos.x)
            if self.record:
                self.path = RecordedPath(tuple(self.positions), self.bucket)
            self.done = True
        elif self.ball.steps >= self.max_steps:
            self.stalled = True
            self.bucket = world.geometry.bucket_for_x(pos.x)
            self.positions = []
            self.done = True

        if self.done:
            world.remove_ball(self.ball)
        return self.done


class ReplayTask:
    """A recorded trajectory played back one sample per frame."""

    source = "replay"
    stalled = False
    path = None

    def __init__(self, drop_id: int, recorded: RecordedPath, bet: int, multipliers: list):
        self.drop_id = drop_id
        self.recorded = recorded
        self.bet = bet
        self.multipliers = multipliers
        self.bucket = recorded.final_bucket
        self.cursor = 0
        self.frames = 0
        self.done = False

    @property
    def position(self) -> Position:
        positions = self.recorded.positions
        return positions[min(self.cursor, len(positions) - 1)]

    def advance(self, world: Optional[PlinkoWorld] = None) -> bool:
        self.frames += 1
        self.cursor += 1
        if self.cursor >= len(self.recorded.positions):
            self.done = True
        return self.done


# ═══════════════════════════════════════════════
# Loop
# ═══════════════════════════════════════════════

class GameLoop:
    """Single cooperative tick over every in-flight task.

    Per tick: physics step, advance each task, hand finished tasks to
    `on_finish` in drop order, call `on_tick_end`, draw.
    """

    def __init__(self, world: PlinkoWorld, renderer=None,
                 on_finish: Optional[Callable] = None,
                 on_tick_end: Optional[Callable] = None,
                 snapshot: Optional[Callable[[int], FrameSnapshot]] = None):
        self.world = world
        self.renderer = renderer or NullRenderer()
        self.on_finish = on_finish
        self.on_tick_end = on_tick_end
        self.snapshot = snapshot
        self.tasks: list = []
        self.frame = 0

    @property
    def idle(self) -> bool:
        return not self.tasks

    def add(self, task):
        self.tasks.append(task)

    def tick(self) -> list:
        self.frame += 1
        if self.world.balls:
            self.world.step()

        finished = [task for task in self.tasks if task.advance(self.world)]
        if finished:
            self.tasks = [task for task in self.tasks if not task.done]
        if self.on_finish:
            for task in finished:
                self.on_finish(task)
        if self.on_tick_end:
            self.on_tick_end(finished)
        if self.snapshot:
            self.renderer.draw(self.snapshot(self.frame))
        return finished

    def cancel(self) -> int:
        dropped = len(self.tasks)
        self.tasks.clear()
        self.world.clear()
        return dropped


# ═══════════════════════════════════════════════
# Board
# ═══════════════════════════════════════════════

class PlinkoBoard:

    def __init__(self, library: PathLibrary, table: BucketProbabilityTable,
                 settings: Optional[BoardSettings] = None,
                 ledger: Optional[Ledger] = None,
                 renderer=None,
                 world: Optional[PlinkoWorld] = None,
                 rng: Optional[random.Random] = None,
                 on_result: Optional[Callable[[DropResult], None]] = None):
        self.settings = settings or BoardSettings()
        self.rows = int(self.settings.rows)
        self.library = library
        self.table = table
        self.ledger = ledger or Balance()
        self.rng = rng or random.Random()
        self.on_result = on_result
        self.world = world or build_board(self.rows, self.settings.physics)
        self.geometry = self.world.geometry
        self.loop = GameLoop(self.world, renderer,
                             on_finish=self._settle,
                             on_tick_end=self._end_tick,
                             snapshot=self.snapshot)

        self.mode = BoardMode.RECORDING
        self.started = False
        self.results: list = []
        self._drop_ids = itertools.count(1)
        self._dirty = False
        self._highlight: list = []

    # ── Properties ──────────────────────────────

    @property
    def bucket_count(self) -> int:
        return self.rows + 1

    @property
    def bet(self) -> int:
        return self.settings.bet

    @property
    def risk(self) -> Risk:
        return self.settings.risk

    @property
    def manual_bucket(self) -> Optional[int]:
        return self.settings.manual_bucket

    @property
    def multipliers(self) -> list:
        return multipliers_for(self.rows, self.settings.risk)

    @property
    def in_flight(self) -> int:
        return len(self.loop.tasks)

    # ── Lifecycle ───────────────────────────────

    def start(self) -> BoardMode:
        """Hydrate the library and table, then pick the mode."""
        self.library.ensure_loaded()
        self.table.ensure_loaded()
        if self.library.has_enough_paths(self.rows, self.bucket_count):
            self.mode = BoardMode.PLAYBACK
        else:
            self.mode = BoardMode.RECORDING
        self.started = True
        logger.info(f"Board rows={self.rows} started in {self.mode.value} mode "
                    f"({self.library.status_line(self.rows, self.bucket_count)})")
        return self.mode

    def stop(self) -> int:
        """Cancel every in-flight ball. Their bets are not refunded and
        partial recordings are discarded."""
        dropped = self.loop.cancel()
        if dropped:
            logger.info(f"Board rows={self.rows} stopped with {dropped} balls in flight")
        return dropped

    def reset_paths(self):
        """Clear this row count's paths and go back to recording."""
        self.stop()
        self.library.clear(self.rows)
        self.mode = BoardMode.RECORDING
        logger.info(f"Board rows={self.rows} reset to RECORDING")

    # ── Settings ────────────────────────────────

    def _update(self, **changes):
        data = self.settings.model_dump()
        data.update(changes)
        self.settings = BoardSettings(**data)

    def set_manual_bucket(self, bucket: Optional[int]):
        """Force every playback drop into `bucket`; None restores the draw."""
        self._update(manual_bucket=bucket)

    def set_risk(self, risk):
        self._update(risk=Risk(getattr(risk, "value", risk)))

    def set_bet(self, bet: int):
        self._update(bet=bet)

    # ── Play ────────────────────────────────────

    def _live_task(self, drop_id: int, bet: int, multipliers: list) -> LiveBallTask:
        x = self.geometry.clamp_drop_x(
            self.geometry.center_x + (self.rng.random() - 0.5) * 10)
        ball = self.world.add_ball(x, 0.0)
        return LiveBallTask(drop_id, ball, bet, multipliers,
                            record=True, max_steps=self.settings.max_steps)

    def drop(self, bet: Optional[int] = None):
        """Start one ball. Returns its task, or None if the ledger refused the bet."""
        if not self.started:
            self.start()
        bet = self.bet if bet is None else bet
        if bet < 0:
            raise ValueError("bet must be >= 0")
        if not self.ledger.debit(bet):
            logger.info(f"Drop refused: insufficient balance for bet {bet}")
            return None

        drop_id = next(self._drop_ids)
        multipliers = self.multipliers

        if self.mode == BoardMode.RECORDING:
            task = self._live_task(drop_id, bet, multipliers)
            logger.debug(f"Drop {drop_id}: recording live ball")
        else:
            if self.manual_bucket is not None:
                target = self.manual_bucket
            else:
                target = self.table.draw_bucket(self.rows, self.bucket_count)
            path = self.library.get_random_path(self.rows, target)
            if path is not None:
                task = ReplayTask(drop_id, path, bet, multipliers)
                logger.debug(f"Drop {drop_id}: replaying {len(path)} samples "
                             f"into bucket {target}")
            else:
                logger.warning(f"No path for rows={self.rows} bucket {target}, "
                               f"falling back to live physics and recording")
                task = self._live_task(drop_id, bet, multipliers)

        self.loop.add(task)
        return task

    def tick(self) -> list:
        """Advance one frame. Returns the DropResults settled in it."""
        settled_before = len(self.results)
        self.loop.tick()
        return self.results[settled_before:]

    def run_until_idle(self, max_frames: int = 10_000) -> list:
        settled_before = len(self.results)
        frames = 0
        while not self.loop.idle and frames < max_frames:
            self.tick()
            frames += 1
        if not self.loop.idle:
            logger.warning(f"{self.in_flight} balls still in flight after {max_frames} frames")
        return self.results[settled_before:]

    # ── Landing ─────────────────────────────────

    def _settle(self, task):
        recorded = False
        if task.path is not None:
            recorded = self.library.add_path(self.rows, task.path, persist=False)
            if recorded:
                self._dirty = True
                if self.mode == BoardMode.RECORDING and \
                        self.library.has_enough_paths(self.rows, self.bucket_count):
                    self.mode = BoardMode.PLAYBACK
                    logger.info(f"All buckets for rows={self.rows} have paths, "
                                f"switching to PLAYBACK")
        if task.stalled:
            logger.warning(f"Drop {task.drop_id} stalled, recording discarded; "
                           f"settling on bucket {task.bucket}")

        multiplier = task.multipliers[task.bucket]
        payout = settle(task.bet, multiplier)
        self.ledger.credit(payout)
        result = DropResult(
            drop_id=task.drop_id,
            bucket=task.bucket,
            bet=task.bet,
            multiplier=multiplier,
            payout=payout,
            source=task.source,
            recorded=recorded,
            stalled=task.stalled,
            frames=task.frames,
        )
        self.results.append(result)
        self._highlight.append(task.bucket)
        logger.debug(f"Drop {task.drop_id} landed in bucket {task.bucket}: "
                     f"{multiplier}x -> {payout}")
        if self.on_result:
            self.on_result(result)

    def _end_tick(self, finished: list):
        if self._dirty:
            self.library.save()
            self._dirty = False

    def snapshot(self, frame: int) -> FrameSnapshot:
        highlighted, self._highlight = self._highlight, []
        return FrameSnapshot(
            frame=frame,
            mode=self.mode.value,
            rows=self.rows,
            pegs=self.geometry.pegs,
            live_balls=[t.position for t in self.loop.tasks if t.source == "live"],
            replay_balls=[t.position for t in self.loop.tasks if t.source == "replay"],
            bucket_labels=[f"{m}x" for m in self.multipliers],
            highlighted=highlighted,
            status=f"balance={getattr(self.ledger, 'amount', '?')}",
        )
