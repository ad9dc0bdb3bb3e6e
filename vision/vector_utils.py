"""
vision/vector_utils.py
----------------------
Small vector and file helpers shared by the encoder, cache and ranker.
"""

import os
import tempfile
from pathlib import Path

import numpy as np


def normalize(vec) -> np.ndarray:
    """L2-normalize a vector as float32 (safe for zero-length)."""
    vec = np.asarray(vec, dtype=np.float32).reshape(-1)
    norm = np.linalg.norm(vec)
    return vec / norm if norm > 0 else vec


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def atomic_write_bytes(dst: Path, data: bytes):
    """Write to a temp file beside `dst`, then replace `dst` in one step."""
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=dst.name + ".", suffix=".tmp", dir=dst.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            # mkstemp is owner-only; match what a plain open() would create
            os.fchmod(f.fileno(), 0o666 & ~_current_umask())
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, dst)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
