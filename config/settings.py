"""
Plinko Lounge - Configuration

Environment-driven settings for the Plinko path subsystem.

LAYOUT
======
- Canvas is fixed at 620x580; board geometry is a pure function of the
  row count and this canvas, so recorded paths stay valid across runs.
- Row counts are an enumerated set (8 / 12 / 16).
- Storage is a blob store: HTTP when PLINKO_STORE_URL is set, otherwise
  JSON files under PLINKO_DATA_DIR.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("PLINKO_DATA_DIR", "./data"))

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class PlinkoConfig:

    # --- Canvas (fixed) ---
    WIDTH = 620
    HEIGHT = 580
    MARGIN = 20
    ROW_COUNTS = (8, 12, 16)

    # --- Simulation ---
    FRAME_DT = 1.0 / 60.0
    GRAVITY = float(os.getenv("PLINKO_GRAVITY", "700"))        # px/s^2
    SUBSTEPS = int(os.getenv("PLINKO_SUBSTEPS", "3"))
    BALL_ELASTICITY = 0.6
    BALL_FRICTION = 0.1
    BALL_MASS = 1.0

    # --- Recording ---
    PATHS_PER_BUCKET = int(os.getenv("PLINKO_PATHS_PER_BUCKET", "6"))
    MAX_ATTEMPTS = int(os.getenv("PLINKO_MAX_ATTEMPTS", "10000"))
    MAX_STEPS = int(os.getenv("PLINKO_MAX_STEPS", "600"))
    SAMPLE_EVERY = int(os.getenv("PLINKO_SAMPLE_EVERY", "1"))
    BALLS_PER_SECOND = int(os.getenv("PLINKO_BALLS_PER_SECOND", "50"))
    DROP_RANGE = 40.0       # max lateral bias in px
    DROP_JITTER = 15.0      # total width of the random jitter window
    TARGET_MISS_LIMIT = int(os.getenv("PLINKO_TARGET_MISS_LIMIT", "20"))  # misses before a target is rotated out

    # --- Storage ---
    STORE_URL = os.getenv("PLINKO_STORE_URL", "")
    STORE_TIMEOUT = float(os.getenv("PLINKO_STORE_TIMEOUT", "10"))
    PATHS_FILE = "plinko_paths.json"
    PROBS_FILE = "plinko_probabilities.json"

    # --- Play ---
    DEFAULT_BET = 10
    DEFAULT_ROWS = 16
    DEFAULT_RISK = "medium"

    @classmethod
    def scale_for(cls, rows: int) -> float:
        """Peg/ball scale so smaller boards fill the canvas."""
        return {8: 2.0, 12: 1.5}.get(rows, 1.0)

    @classmethod
    def is_supported(cls, rows: int) -> bool:
        return rows in cls.ROW_COUNTS


def configure_logging(level: str = None) -> logging.Logger:
    """Configure root logging once and return the package logger."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format=LOG_FORMAT, datefmt="%H:%M:%S")
    return logging.getLogger("plinko")


def get_store():
    """Build the configured blob store (HTTP if a URL is set, else files)."""
    from tools.blob_store import FileBlobStore, HttpBlobStore

    if PlinkoConfig.STORE_URL:
        return HttpBlobStore(PlinkoConfig.STORE_URL, timeout=PlinkoConfig.STORE_TIMEOUT)
    return FileBlobStore(DATA_DIR)
