"""Plinko payouts — multiplier tables, settlement and draw audits."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

# Multiplier maps by risk level and row count (symmetric, edges pay most)
PLINKO_MULTIPLIERS = {
    "low": {
        8:  [5.6, 2.1, 1.1, 1, 0.5, 1, 1.1, 2.1, 5.6],
        12: [10, 3, 1.6, 1.4, 1.1, 1, 0.5, 1, 1.1, 1.4, 1.6, 3, 10],
        16: [16, 9, 2, 1.4, 1.4, 1.2, 1.1, 1, 0.5, 1, 1.1, 1.2, 1.4, 1.4, 2, 9, 16],
    },
    "medium": {
        8:  [13, 3, 1.3, 0.7, 0.4, 0.7, 1.3, 3, 13],
        12: [33, 11, 4, 2, 1.1, 0.6, 0.3, 0.6, 1.1, 2, 4, 11, 33],
        16: [110, 41, 10, 5, 3, 1.5, 1, 0.5, 0.3, 0.5, 1, 1.5, 3, 5, 10, 41, 110],
    },
    "high": {
        8:  [29, 4, 1.5, 0.3, 0.2, 0.3, 1.5, 4, 29],
        12: [170, 24, 8.1, 2, 0.7, 0.2, 0.2, 0.2, 0.7, 2, 8.1, 24, 170],
        16: [1000, 130, 26, 9, 4, 2, 0.2, 0.2, 0.2, 0.2, 0.2, 2, 4, 9, 26, 130, 1000],
    },
}

# z-score for a 0.1% upper tail, used by the chi-square critical value
_Z_999 = 3.0902


def multipliers_for(rows: int, risk: str = "medium") -> list:
    risk = getattr(risk, "value", risk)
    try:
        return list(PLINKO_MULTIPLIERS[risk][rows])
    except KeyError:
        raise ValueError(f"No multiplier table for risk={risk!r}, rows={rows}") from None


def settle(bet, multiplier) -> int:
    """Payout credited at landing: floor(bet × multiplier).

    Computed in decimal so a table value like 1.1 never loses a unit to
    binary rounding (10 × 1.1 pays 11, not 10).
    """
    return math.floor(Decimal(str(bet)) * Decimal(str(multiplier)))


def expected_return(weights: Sequence[float], multipliers: Sequence[float]) -> float:
    """RTP implied by drawing buckets with `weights` and paying `multipliers`."""
    if len(weights) != len(multipliers):
        raise ValueError("weights and multipliers must have the same length")
    total = sum(weights)
    if total <= 0:
        return sum(multipliers) / len(multipliers)
    return sum(w * m for w, m in zip(weights, multipliers)) / total


def chi_squared(observed: Sequence[int], weights: Sequence[float]) -> float:
    """Pearson statistic of observed counts against weight-proportional expectation.

    Buckets with zero expected count are left out; a hit in one shows up
    as an infinite statistic.
    """
    n = sum(observed)
    total = sum(weights)
    stat = 0.0
    for obs, w in zip(observed, weights):
        expected = n * w / total
        if expected == 0:
            if obs:
                return math.inf
            continue
        stat += (obs - expected) ** 2 / expected
    return stat


def chi_squared_critical(df: int) -> float:
    """Wilson–Hilferty approximation of the 99.9th percentile of chi-square(df)."""
    k = 2.0 / (9.0 * df)
    return df * (1 - k + _Z_999 * math.sqrt(k)) ** 3


@dataclass
class DrawAudit:
    """Monte Carlo check of a probability table."""
    rows: int
    draws: int
    weights: list
    counts: list
    chi_squared: float
    chi_squared_critical: float
    theoretical_rtp: float
    measured_rtp: float
    risk: str = "medium"
    frequencies: list = field(default_factory=list)

    @property
    def chi_squared_pass(self) -> bool:
        return self.chi_squared < self.chi_squared_critical

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "risk": self.risk,
            "draws": self.draws,
            "counts": self.counts,
            "frequencies": [round(f, 4) for f in self.frequencies],
            "chi_squared": round(self.chi_squared, 4),
            "chi_squared_critical": round(self.chi_squared_critical, 4),
            "chi_squared_pass": self.chi_squared_pass,
            "theoretical_rtp": round(self.theoretical_rtp, 6),
            "measured_rtp": round(self.measured_rtp, 6),
        }


def audit_draws(table, rows: int, draws: int = 10_000, risk: str = "medium",
                rng: Optional[random.Random] = None) -> DrawAudit:
    """Sample table.draw_bucket `draws` times and compare with its weights."""
    bucket_count = rows + 1
    weights = table.get(rows)
    if len(weights) != bucket_count:
        weights = [1] * bucket_count       # what draw_bucket falls back to
    counts = [0] * bucket_count
    shared_rng = table.rng
    if rng is not None:
        table.rng = rng
    try:
        for _ in range(draws):
            counts[table.draw_bucket(rows, bucket_count)] += 1
    finally:
        table.rng = shared_rng

    multipliers = multipliers_for(rows, risk)
    measured = sum(c * m for c, m in zip(counts, multipliers)) / draws if draws else 0.0
    return DrawAudit(
        rows=rows,
        draws=draws,
        weights=list(weights),
        counts=counts,
        chi_squared=chi_squared(counts, weights),
        chi_squared_critical=chi_squared_critical(sum(1 for w in weights if w > 0) - 1 or 1),
        theoretical_rtp=expected_return(weights, multipliers),
        measured_rtp=measured,
        risk=getattr(risk, "value", risk),
        frequencies=[c / draws for c in counts] if draws else [],
    )
