"""
Plinko Lounge - Board Geometry

Pure layout math for a board: peg grid, bucket slots, ground line and
containment walls. Everything is a deterministic function of the row count
and the fixed canvas, so a path recorded on one board replays on any other
board built with the same row count.

    row r (0-based) has r + 3 pegs, spaced `gap` apart and centred
    bucket b spans [bucket_start_x + b*gap, bucket_start_x + (b+1)*gap)
    a ball has landed once its centre reaches ground_y
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache

from config.settings import PlinkoConfig

WALL_THICKNESS = 10.0
TOP_WALL_HEIGHT = 150.0
WALL_OVERHANG = 40.0


@dataclass(frozen=True)
class BoxSpec:
    """A static rectangle: centre, size and rotation (radians)."""
    cx: float
    cy: float
    width: float
    height: float
    angle: float = 0.0


@dataclass(frozen=True)
class BoardGeometry:
    rows: int
    width: int
    height: int
    scale: float
    peg_radius: float
    ball_radius: float
    gap: float
    vertical_gap: float
    pegs: tuple            # ((x, y), ...)
    bucket_start_x: float
    bucket_y: float
    ground_y: float
    ground: BoxSpec
    walls: tuple           # (BoxSpec, ...)
    drop_min_x: float
    drop_max_x: float

    @property
    def bucket_count(self) -> int:
        return self.rows + 1

    @property
    def center_x(self) -> float:
        return self.width / 2

    def bucket_for_x(self, x: float) -> int:
        """Bucket index under horizontal position x, clamped to the board."""
        idx = math.floor((x - self.bucket_start_x) / self.gap)
        return max(0, min(self.bucket_count - 1, idx))

    def bucket_center_x(self, bucket: int) -> float:
        return self.bucket_start_x + (bucket + 0.5) * self.gap

    def drop_bounds(self) -> tuple:
        """Spawn interval inside the top cup that keeps a ball off the walls."""
        return self.drop_min_x, self.drop_max_x

    def clamp_drop_x(self, x: float) -> float:
        return max(self.drop_min_x, min(self.drop_max_x, x))

    def is_landed(self, y: float) -> bool:
        return y >= self.ground_y


def _angled_wall(x_top: float, y_top: float, x_bottom: float, y_bottom: float,
                 outward: float) -> BoxSpec:
    dx = x_bottom - x_top
    dy = y_bottom - y_top
    length = math.hypot(dx, dy) + WALL_OVERHANG
    angle = math.atan2(dy, dx)
    return BoxSpec(
        cx=(x_top + x_bottom) / 2 + outward,
        cy=(y_top + y_bottom) / 2,
        width=WALL_THICKNESS,
        height=length,
        angle=angle - math.pi / 2,
    )


@lru_cache(maxsize=16)
def build_geometry(rows: int, width: int = PlinkoConfig.WIDTH,
                   height: int = PlinkoConfig.HEIGHT) -> BoardGeometry:
    """Lay out a board for `rows` peg rows on a width x height canvas."""
    if rows < 1:
        raise ValueError(f"rows must be positive, got {rows}")

    scale = PlinkoConfig.scale_for(rows)
    peg_r = 4 * scale
    ball_r = 7 * scale
    available = width - 2 * PlinkoConfig.MARGIN
    gap = available / (rows + 1)
    vgap = (height - 80) / (rows + 1)

    pegs = []
    for r in range(rows):
        count = r + 3
        start_x = (width - (count - 1) * gap) / 2
        y = 40 + vgap * (r + 1)
        for c in range(count):
            pegs.append((start_x + c * gap, y))

    bottom_width = (rows + 1) * gap
    bottom_start_x = (width - bottom_width) / 2
    bottom_end_x = bottom_start_x + bottom_width
    bottom_y = 40 + vgap * rows

    top_start_x = (width - 2 * gap) / 2
    top_end_x = top_start_x + 2 * gap
    top_y = 40 + vgap

    bucket_y = height - 45.0
    ground = BoxSpec(cx=width / 2, cy=bucket_y - 5, width=width * 2, height=10.0)

    offset = peg_r + WALL_THICKNESS / 2
    walls = (
        _angled_wall(top_start_x, top_y, bottom_start_x, bottom_y, -offset),
        _angled_wall(top_end_x, top_y, bottom_end_x, bottom_y, offset),
        BoxSpec(top_start_x - offset, top_y - TOP_WALL_HEIGHT / 2,
                WALL_THICKNESS, TOP_WALL_HEIGHT),
        BoxSpec(top_end_x + offset, top_y - TOP_WALL_HEIGHT / 2,
                WALL_THICKNESS, TOP_WALL_HEIGHT),
        BoxSpec(width / 2, top_y - TOP_WALL_HEIGHT + WALL_THICKNESS / 2,
                (top_end_x + offset) - (top_start_x - offset) + WALL_THICKNESS,
                WALL_THICKNESS),
    )

    # Inner faces of the top cup sit one peg radius outside the top row
    return BoardGeometry(
        rows=rows,
        width=width,
        height=height,
        scale=scale,
        peg_radius=peg_r,
        ball_radius=ball_r,
        gap=gap,
        vertical_gap=vgap,
        pegs=tuple(pegs),
        bucket_start_x=bottom_start_x,
        bucket_y=bucket_y,
        ground_y=bucket_y - 10,
        ground=ground,
        walls=walls,
        drop_min_x=top_start_x - peg_r + ball_r + 1,
        drop_max_x=top_end_x + peg_r - ball_r - 1,
    )
