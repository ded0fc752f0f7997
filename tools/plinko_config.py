"""
Plinko Lounge - Board Configuration Models

Type-safe configuration for one Plinko board instance: row count, risk
table, bet, paths-per-bucket target, manual bucket override and the
physics knobs shared by the recorders and the live board.

Usage:
    from tools.plinko_config import BoardSettings, RowCount, Risk
    settings = BoardSettings(rows=RowCount.EIGHT, risk=Risk.HIGH, bet=25)
    print(settings.bucket_count)   # 9
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config.settings import PlinkoConfig


# ═══════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════

class RowCount(IntEnum):
    EIGHT   = 8
    TWELVE  = 12
    SIXTEEN = 16


class Risk(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


# ═══════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════

class PhysicsConfig(BaseModel):
    """Physics parameters shared by recording and live play."""
    gravity: float = Field(PlinkoConfig.GRAVITY, gt=0)
    substeps: int = Field(PlinkoConfig.SUBSTEPS, ge=1)
    frame_dt: float = Field(PlinkoConfig.FRAME_DT, gt=0)
    ball_elasticity: float = Field(PlinkoConfig.BALL_ELASTICITY, ge=0, le=1)
    ball_friction: float = Field(PlinkoConfig.BALL_FRICTION, ge=0)
    ball_mass: float = Field(PlinkoConfig.BALL_MASS, gt=0)


class BoardSettings(BaseModel):
    """Operator-facing configuration surface of a board."""
    rows: RowCount = RowCount(PlinkoConfig.DEFAULT_ROWS)
    risk: Risk = Risk(PlinkoConfig.DEFAULT_RISK)
    bet: int = Field(PlinkoConfig.DEFAULT_BET, ge=0)
    paths_per_bucket: int = Field(PlinkoConfig.PATHS_PER_BUCKET, ge=1)
    manual_bucket: Optional[int] = None    # disables the weighted draw
    sample_every: int = Field(PlinkoConfig.SAMPLE_EVERY, ge=1)
    max_steps: int = Field(PlinkoConfig.MAX_STEPS, ge=1)
    physics: PhysicsConfig = Field(default_factory=PhysicsConfig)

    @field_validator("manual_bucket")
    @classmethod
    def _non_negative_bucket(cls, v):
        if v is not None and v < 0:
            raise ValueError("manual_bucket must be >= 0")
        return v

    @model_validator(mode="after")
    def _bucket_in_range(self):
        if self.manual_bucket is not None and self.manual_bucket >= self.bucket_count:
            raise ValueError(
                f"manual_bucket {self.manual_bucket} out of range for {int(self.rows)} rows"
            )
        return self

    @property
    def bucket_count(self) -> int:
        return int(self.rows) + 1
