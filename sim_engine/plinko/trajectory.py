"""Recorded ball trajectories: immutable positions tagged with a landing bucket."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class RecordedPath:
    """One captured drop. `positions` is never empty."""
    positions: tuple
    final_bucket: int

    def __post_init__(self):
        if not self.positions:
            raise ValueError("RecordedPath needs at least one position")
        if not isinstance(self.positions, tuple):
            object.__setattr__(self, "positions", tuple(self.positions))

    @property
    def last(self) -> Position:
        return self.positions[-1]

    def __len__(self) -> int:
        return len(self.positions)

    def to_dict(self) -> dict:
        return {
            "positions": [p.to_dict() for p in self.positions],
            "finalBucket": self.final_bucket,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecordedPath":
        """Build from the persisted JSON shape. Raises ValueError/TypeError/KeyError if malformed."""
        raw_positions = data["positions"]
        if not isinstance(raw_positions, list):
            raise TypeError("positions must be a list")
        positions = tuple(Position(float(p["x"]), float(p["y"])) for p in raw_positions)
        bucket = data["finalBucket"]
        if isinstance(bucket, bool) or not isinstance(bucket, (int, float)) or int(bucket) != bucket:
            raise ValueError(f"finalBucket must be an integer, got {bucket!r}")
        return cls(positions=positions, final_bucket=int(bucket))
