"""
Plinko Lounge - Path Library

Capped store of recorded ball trajectories keyed by row count and landing
bucket. This is the lookup table playback draws from: pick the outcome
first, then fetch a trajectory that is known to end there.

Persisted shape (the "paths" blob):
    {"<rows>": {"<bucket>": [{"positions": [{"x":..,"y":..}, ...],
                              "finalBucket": <bucket>}, ...]}}

Rules:
  • A bucket never holds more than `paths_per_bucket` paths; inserts past
    the cap are rejected without mutation.
  • The in-memory cache is authoritative for readers. It is updated before
    any persistence call, so callers see new paths immediately.
  • Loading merges storage into the cache per bucket, keeping whichever
    side has more paths (merge_libraries). Nothing is blindly overwritten.
  • Store failures are logged and the library carries on in memory.

Usage:
    from tools.blob_store import MemoryBlobStore
    from tools.plinko_paths import PathLibrary
    lib = PathLibrary(MemoryBlobStore(), paths_per_bucket=6)
    lib.ensure_loaded()
    lib.add_path(8, path)
    lib.get_random_path(8, 4)
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, Optional

from config.settings import PlinkoConfig
from sim_engine.plinko.trajectory import RecordedPath
from tools.blob_store import PATHS_KEY, BlobStore, StoreError

logger = logging.getLogger("plinko.paths")


# ═══════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════

def empty_library(row_counts: Iterable[int] = PlinkoConfig.ROW_COUNTS) -> dict:
    return {str(rows): {} for rows in row_counts}


def bucket_in_range(rows, bucket: int) -> bool:
    """A board with `rows` peg rows has buckets 0..rows."""
    try:
        return 0 <= bucket <= int(rows)
    except (TypeError, ValueError):
        return False


def parse_library(raw, row_counts: Iterable[int] = PlinkoConfig.ROW_COUNTS) -> dict:
    """Turn a stored document into {rows: {bucket: [RecordedPath]}}.

    Anything that is not the expected shape degrades to empty: a non-dict
    document yields the empty skeleton, a bad entry is skipped.
    """
    library = empty_library(row_counts)
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning(f"Ignoring malformed path library ({type(raw).__name__})")
        return library

    skipped = 0
    for row_key, buckets in raw.items():
        if not isinstance(buckets, dict):
            logger.warning(f"Ignoring malformed bucket map for rows={row_key}")
            continue
        row_data = library.setdefault(str(row_key), {})
        for bucket_key, entries in buckets.items():
            if not isinstance(entries, list):
                skipped += 1
                continue
            parsed = []
            for entry in entries:
                try:
                    path = RecordedPath.from_dict(entry)
                except (KeyError, TypeError, ValueError):
                    skipped += 1
                    continue
                if str(path.final_bucket) != str(bucket_key) \
                        or not bucket_in_range(row_key, path.final_bucket):
                    skipped += 1
                    continue
                parsed.append(path)
            row_data[str(bucket_key)] = parsed

    if skipped:
        logger.warning(f"Skipped {skipped} malformed path entries while loading")
    return library


def merge_libraries(local: dict, remote: dict) -> dict:
    """Per bucket, keep whichever side holds more paths. Ties keep local.

    Idempotent (merge(a, a) == a) and monotonic: no bucket of either input
    ends up with fewer paths than it had.
    """
    merged = {
        rows: {bucket: list(paths) for bucket, paths in buckets.items()}
        for rows, buckets in local.items()
    }
    for rows, remote_buckets in remote.items():
        target = merged.setdefault(rows, {})
        for bucket, remote_paths in remote_buckets.items():
            if len(remote_paths) > len(target.get(bucket, [])):
                target[bucket] = list(remote_paths)
    return merged


def library_document(library: dict) -> dict:
    return {
        rows: {bucket: [p.to_dict() for p in paths] for bucket, paths in buckets.items()}
        for rows, buckets in library.items()
    }


# ═══════════════════════════════════════════════
# Library
# ═══════════════════════════════════════════════

class PathLibrary:
    """Process-wide cache of recorded paths, persisted through a BlobStore."""

    def __init__(self, store: BlobStore, paths_per_bucket: int = PlinkoConfig.PATHS_PER_BUCKET,
                 rng: Optional[random.Random] = None,
                 row_counts: Iterable[int] = PlinkoConfig.ROW_COUNTS):
        if paths_per_bucket < 1:
            raise ValueError("paths_per_bucket must be >= 1")
        self.store = store
        self.paths_per_bucket = paths_per_bucket
        self.rng = rng or random.Random()
        self.row_counts = tuple(row_counts)
        self._library = empty_library(self.row_counts)
        self._loaded = False

    # ── Persistence ──────────────────────────────

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self):
        """Pull the stored library and merge it into the cache."""
        try:
            raw = self.store.get(PATHS_KEY)
        except StoreError as e:
            logger.warning(f"Path library load failed, using memory only: {e}")
            raw = None
        remote = parse_library(raw, self.row_counts)
        self._library = merge_libraries(self._library, remote)
        self._loaded = True
        logger.info(f"Path library loaded: {self._totals()}")

    def ensure_loaded(self):
        if not self._loaded:
            self.load()

    def save(self) -> bool:
        try:
            self.store.put(PATHS_KEY, self.to_document())
        except StoreError as e:
            logger.warning(f"Path library save failed (kept in memory): {e}")
            return False
        logger.debug(f"Path library saved: {self._totals()}")
        return True

    def to_document(self) -> dict:
        return library_document(self._library)

    # ── Queries ──────────────────────────────────

    def _bucket(self, rows: int, bucket: int) -> list:
        return self._library.get(str(rows), {}).get(str(bucket), [])

    def path_count(self, rows: int, bucket: int) -> int:
        return len(self._bucket(rows, bucket))

    def bucket_needs_paths(self, rows: int, bucket: int) -> bool:
        return self.path_count(rows, bucket) < self.paths_per_bucket

    def has_enough_paths(self, rows: int, bucket_count: int) -> bool:
        """True iff every bucket 0..bucket_count-1 holds the cap."""
        for b in range(bucket_count):
            if self.bucket_needs_paths(rows, b):
                logger.debug(f"rows={rows} bucket {b} has "
                             f"{self.path_count(rows, b)}/{self.paths_per_bucket}")
                return False
        return True

    def bucket_needing_paths(self, rows: int, bucket_count: int) -> Optional[int]:
        """Least-filled bucket still under the cap, or None when all are full."""
        needy, lowest = None, self.paths_per_bucket
        for b in range(bucket_count):
            count = self.path_count(rows, b)
            if count < lowest:
                needy, lowest = b, count
        return needy

    def get_random_path(self, rows: int, bucket: int) -> Optional[RecordedPath]:
        paths = self._bucket(rows, bucket)
        if not paths:
            return None
        return self.rng.choice(paths)

    def get_path_by_index(self, rows: int, bucket: int, index: int) -> Optional[RecordedPath]:
        paths = self._bucket(rows, bucket)
        if 0 <= index < len(paths):
            return paths[index]
        return None

    def all_paths_for_bucket(self, rows: int, bucket: int) -> list:
        return list(self._bucket(rows, bucket))

    def status_line(self, rows: int, bucket_count: int) -> str:
        return " | ".join(
            f"B{b}:{self.path_count(rows, b)}/{self.paths_per_bucket}"
            for b in range(bucket_count)
        )

    def stats(self) -> dict:
        out = {}
        for rows in self.row_counts:
            buckets = self._library.get(str(rows), {})
            out[rows] = {
                "buckets": len(buckets),
                "total_paths": sum(len(p) for p in buckets.values()),
            }
        return out

    def _totals(self) -> dict:
        return {rows: s["total_paths"] for rows, s in self.stats().items()}

    # ── Mutations ────────────────────────────────

    def _insert(self, rows: int, path: RecordedPath) -> bool:
        if not bucket_in_range(rows, path.final_bucket):
            logger.warning(f"Rejected path for rows={rows}: bucket {path.final_bucket} "
                           f"is outside 0..{rows}")
            return False
        bucket = self._library.setdefault(str(rows), {}).setdefault(str(path.final_bucket), [])
        if len(bucket) >= self.paths_per_bucket:
            return False
        bucket.append(path)
        return True

    def add_path(self, rows: int, path: RecordedPath, persist: bool = True) -> bool:
        """Insert one path. Returns False (no mutation) if its bucket is full.

        With persist=False the caller owns the save, e.g. one save per frame.
        """
        accepted = self._insert(rows, path)
        if accepted and persist:
            self.save()
        return accepted

    def add_paths_batch(self, rows: int, paths: Iterable[RecordedPath]) -> int:
        """Insert many paths with the same cap check, then persist once."""
        paths = list(paths)
        added = sum(1 for path in paths if self._insert(rows, path))
        logger.info(f"Batch insert rows={rows}: {added}/{len(paths)} accepted")
        if added:
            self.save()
        return added

    def clear(self, rows: Optional[int] = None):
        """Drop every path, or only those for one row count, and persist."""
        if rows is None:
            self._library = empty_library(self.row_counts)
            logger.info("Cleared entire path library")
        else:
            self._library[str(rows)] = {}
            logger.info(f"Cleared path library for {rows} rows")
        self.save()
