"""
Plinko Lounge - Blob Store

Narrow get/put contract the path library and probability table persist
through. Two keys exist: "paths" and "probabilities". A put replaces the
stored document wholesale; merging is the reader's job.

Implementations:
    MemoryBlobStore  - in-process, for tests and headless sessions
    FileBlobStore    - JSON files on disk (one file per key)
    HttpBlobStore    - GET/POST against the storage API (api/plinko_routes.py)

Usage:
    from tools.blob_store import FileBlobStore
    store = FileBlobStore("./data")
    doc = store.get("paths")
    store.put("paths", doc)
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

import httpx

from config.settings import PlinkoConfig

logger = logging.getLogger("plinko.store")

PATHS_KEY = "paths"
PROBABILITIES_KEY = "probabilities"

DEFAULT_PROBABILITIES = {
    "8": [1, 4, 12, 24, 26, 24, 12, 4, 1],
    "12": [1, 3, 8, 16, 22, 26, 28, 26, 22, 16, 8, 3, 1],
    "16": [1, 2, 5, 10, 16, 22, 28, 32, 34, 32, 28, 22, 16, 10, 5, 2, 1],
}


class StoreError(Exception):
    """The blob store could not be read or written."""


def empty_paths_document() -> dict:
    return {str(rows): {} for rows in PlinkoConfig.ROW_COUNTS}


def default_document(key: str) -> dict:
    """Skeleton returned for a key that has never been written."""
    if key == PATHS_KEY:
        return empty_paths_document()
    if key == PROBABILITIES_KEY:
        return copy.deepcopy(DEFAULT_PROBABILITIES)
    raise KeyError(f"Unknown store key: {key}")


class BlobStore(Protocol):
    def get(self, key: str) -> Optional[object]: ...

    def put(self, key: str, data: object) -> None: ...


# ═══════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════

class MemoryBlobStore:
    """Dict-backed store. Copies on the way in and out like a real remote."""

    def __init__(self, initial: Optional[dict] = None):
        self._docs = copy.deepcopy(initial) if initial else {}
        self.puts = 0
        self.fail_writes = False
        self.fail_reads = False

    def get(self, key: str) -> Optional[object]:
        if self.fail_reads:
            raise StoreError(f"read of '{key}' failed")
        if key not in self._docs:
            return None
        return copy.deepcopy(self._docs[key])

    def put(self, key: str, data: object) -> None:
        if self.fail_writes:
            raise StoreError(f"write of '{key}' failed")
        self._docs[key] = copy.deepcopy(data)
        self.puts += 1


# ═══════════════════════════════════════════════
# Files on disk
# ═══════════════════════════════════════════════

class FileBlobStore:
    """One JSON file per key inside a data directory.

    Missing files are created with the default skeleton on first use.
    Writes go to a .tmp sibling and are renamed into place.
    """

    FILES = {
        PATHS_KEY: PlinkoConfig.PATHS_FILE,
        PROBABILITIES_KEY: PlinkoConfig.PROBS_FILE,
    }

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self._initialized = False

    def _path(self, key: str) -> Path:
        try:
            return self.data_dir / self.FILES[key]
        except KeyError:
            raise StoreError(f"Unknown store key: {key}") from None

    def _ensure_files(self):
        if self._initialized:
            return
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            for key in self.FILES:
                path = self._path(key)
                if not path.exists():
                    self._write(path, default_document(key))
        except OSError as e:
            raise StoreError(f"Cannot initialize {self.data_dir}: {e}") from e
        self._initialized = True

    @staticmethod
    def _write(path: Path, data: object):
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def get(self, key: str) -> Optional[object]:
        self._ensure_files()
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Error reading {path}: {e}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            # Corrupt file: callers treat None as "use defaults"
            logger.warning(f"Corrupt JSON in {path}: {e}")
            return None

    def put(self, key: str, data: object) -> None:
        self._ensure_files()
        path = self._path(key)
        try:
            self._write(path, data)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Error writing {path}: {e}") from e
        logger.debug(f"Saved {key} to {path}")


# ═══════════════════════════════════════════════
# HTTP
# ═══════════════════════════════════════════════

class HttpBlobStore:
    """Client for the storage API: GET/POST {base_url}/{key}."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def get(self, key: str) -> Optional[object]:
        try:
            resp = self.client.get(self._url(key))
        except httpx.HTTPError as e:
            raise StoreError(f"GET {key} failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise StoreError(f"GET {key} returned {resp.status_code}")
        try:
            return resp.json()
        except ValueError:
            logger.warning(f"GET {key} returned non-JSON body")
            return None

    def put(self, key: str, data: object) -> None:
        try:
            resp = self.client.post(self._url(key), json=data)
        except httpx.HTTPError as e:
            raise StoreError(f"POST {key} failed: {e}") from e
        if resp.status_code >= 400:
            raise StoreError(f"POST {key} returned {resp.status_code}")

    def close(self):
        self.client.close()
