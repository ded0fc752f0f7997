"""
Plinko Lounge - Bucket Probability Table

Per-row-count weight vectors used to pick a landing bucket before a
recorded trajectory is replayed. Weights need not sum to anything: the
chance of bucket i is weight[i] / sum(weights).

Defaults approximate the binomial spread of a real Galton board (centre
buckets most likely). Operators may edit a row count's weights or reset
everything back to the defaults; both persist through the blob store.

Usage:
    from tools.plinko_probabilities import BucketProbabilityTable
    table = BucketProbabilityTable(store)
    table.set(8, [0, 0, 0, 0, 100, 0, 0, 0, 0])
    table.draw_bucket(8, 9)   # always 4
"""

from __future__ import annotations

import bisect
import copy
import itertools
import logging
import math
import random
from typing import Optional, Sequence

from tools.blob_store import DEFAULT_PROBABILITIES, PROBABILITIES_KEY, BlobStore, StoreError

logger = logging.getLogger("plinko.probabilities")


def _valid_weights(weights) -> bool:
    if not isinstance(weights, list) or not weights:
        return False
    for w in weights:
        if isinstance(w, bool) or not isinstance(w, (int, float)):
            return False
        if not math.isfinite(w) or w < 0:
            return False
    return True


def parse_table(raw) -> dict:
    """Stored document → {"<rows>": [weights]}. Bad rows fall back to defaults."""
    table = copy.deepcopy(DEFAULT_PROBABILITIES)
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning(f"Ignoring malformed probability table ({type(raw).__name__})")
        return table
    for rows, weights in raw.items():
        if _valid_weights(weights):
            table[str(rows)] = list(weights)
        else:
            logger.warning(f"Ignoring malformed weights for rows={rows}")
    return table


class BucketProbabilityTable:

    def __init__(self, store: BlobStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()
        self._table = copy.deepcopy(DEFAULT_PROBABILITIES)
        self._loaded = False

    # ── Persistence ──────────────────────────────

    def load(self):
        """Stored table replaces the cache (no merge: operators own it)."""
        try:
            raw = self.store.get(PROBABILITIES_KEY)
        except StoreError as e:
            logger.warning(f"Probability table load failed, using memory only: {e}")
            raw = None
        if raw is not None:
            self._table = parse_table(raw)
        self._loaded = True

    def ensure_loaded(self):
        if not self._loaded:
            self.load()

    def save(self) -> bool:
        try:
            self.store.put(PROBABILITIES_KEY, copy.deepcopy(self._table))
        except StoreError as e:
            logger.warning(f"Probability table save failed (kept in memory): {e}")
            return False
        return True

    # ── Operations ───────────────────────────────

    def get(self, rows: int) -> list:
        return list(self._table.get(str(rows), []))

    def set(self, rows: int, weights: Sequence[float]) -> bool:
        """Replace one row count's weights. Length must be rows + 1."""
        weights = list(weights)
        if len(weights) != rows + 1:
            raise ValueError(f"Expected {rows + 1} weights for {rows} rows, got {len(weights)}")
        if not _valid_weights(weights):
            raise ValueError("Weights must be finite non-negative numbers")
        self._table[str(rows)] = weights
        logger.info(f"Updated probabilities for {rows} rows")
        return self.save()

    def reset(self) -> bool:
        self._table = copy.deepcopy(DEFAULT_PROBABILITIES)
        logger.info("Reset probabilities to defaults")
        return self.save()

    def to_document(self) -> dict:
        return copy.deepcopy(self._table)

    def draw_bucket(self, rows: int, bucket_count: int) -> int:
        """Weighted draw over buckets; uniform if the stored weights don't fit."""
        weights = self._table.get(str(rows))
        if not weights or len(weights) != bucket_count:
            return self.rng.randrange(bucket_count)
        cumulative = list(itertools.accumulate(weights))
        total = cumulative[-1]
        if total <= 0:
            return self.rng.randrange(bucket_count)
        r = self.rng.random() * total
        # First bucket whose cumulative weight exceeds r; zero weights never win
        return min(bisect.bisect_right(cumulative, r), bucket_count - 1)
