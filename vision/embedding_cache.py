"""
vision/embedding_cache.py
-------------------------
In-memory product-id -> image-embedding map, mirrored to a JSON file.

 - One lock serializes every mutation and copy
 - All stored vectors share one length, fixed by the first vector
 - Stored arrays are read-only, so snapshots can share them
 - Durable file: {"<id>": [floats, ...], ...}, written via .tmp + replace
"""

from __future__ import annotations
import json
import logging
import math
import threading
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from .errors import CacheLoadError, CacheSaveError, EmbeddingDimensionError
from .vector_utils import atomic_write_bytes

logger = logging.getLogger(__name__)


class EmbeddingCache:
    def __init__(self, dim: Optional[int] = None):
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._vectors: Dict[int, np.ndarray] = {}
        self._dim = dim

    @property
    def dim(self) -> Optional[int]:
        return self._dim

    def __len__(self):
        with self._lock:
            return len(self._vectors)

    def __contains__(self, item_id):
        with self._lock:
            return int(item_id) in self._vectors

    # ---------------------------------------------------
    # get / put / snapshot
    # ---------------------------------------------------
    def _coerce(self, vector, dim: Optional[int]) -> np.ndarray:
        arr = np.array(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.size == 0:
            raise EmbeddingDimensionError(f"Expected a non-empty 1-D vector, got shape {arr.shape}")
        if dim is not None and arr.size != dim:
            raise EmbeddingDimensionError(f"Vector length {arr.size} does not match cache dimension {dim}")
        if not np.all(np.isfinite(arr)):
            raise EmbeddingDimensionError("Vector contains non-finite components")
        arr.flags.writeable = False
        return arr

    def get(self, item_id) -> Optional[np.ndarray]:
        with self._lock:
            return self._vectors.get(int(item_id))

    def put(self, item_id, vector):
        """Insert or overwrite the vector for `item_id`."""
        with self._lock:
            arr = self._coerce(vector, self._dim)
            if self._dim is None:
                self._dim = arr.size
            self._vectors[int(item_id)] = arr

    def snapshot(self) -> Dict[int, np.ndarray]:
        """Point-in-time copy, safe to iterate while writers continue."""
        with self._lock:
            return dict(self._vectors)

    # ---------------------------------------------------
    # Durable store
    # ---------------------------------------------------
    def _parse(self, raw: bytes, path: Path) -> Dict[int, np.ndarray]:
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise CacheLoadError(f"Malformed embedding cache {path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheLoadError(f"Embedding cache {path} is not a JSON object")

        dim = self._dim
        parsed = {}
        for key, values in data.items():
            try:
                item_id = int(key)
            except ValueError:
                raise CacheLoadError(f"Non-integer product id {key!r} in {path}")
            try:
                numeric = isinstance(values, list) and all(
                    isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
                    for v in values
                )
            except (OverflowError, TypeError):
                # ints beyond float range
                numeric = False
            if not numeric:
                raise CacheLoadError(f"Entry {key} in {path} is not a numeric array")
            try:
                arr = self._coerce(values, dim)
            except (EmbeddingDimensionError, OverflowError, TypeError) as e:
                raise CacheLoadError(f"Entry {key} in {path}: {e}") from e
            dim = arr.size
            parsed[item_id] = arr
        return parsed

    def load_from(self, path) -> int:
        """
        Merge a persisted snapshot into memory; returns the number of entries read.
        On any error nothing from the file is merged and CacheLoadError is raised.
        Entries already in memory win over the file (they are newer).
        """
        path = Path(path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise CacheLoadError(f"No embedding cache at {path}") from e
        except OSError as e:
            raise CacheLoadError(f"Cannot read embedding cache {path}: {e}") from e

        parsed = self._parse(raw, path)
        with self._lock:
            if parsed:
                file_dim = next(iter(parsed.values())).size
                if self._dim is not None and file_dim != self._dim:
                    raise CacheLoadError(
                        f"Embedding cache {path} has dimension {file_dim}, expected {self._dim}"
                    )
                self._dim = file_dim
            for item_id, arr in parsed.items():
                self._vectors.setdefault(item_id, arr)
        logger.info("Loaded %d embeddings from %s", len(parsed), path)
        return len(parsed)

    def save_to(self, path) -> int:
        """Atomically replace `path` with the full current mapping."""
        path = Path(path)
        # writers queue up so an older snapshot never replaces a newer one
        with self._save_lock:
            snap = self.snapshot()
            payload = {str(item_id): vec.tolist() for item_id, vec in sorted(snap.items())}
            try:
                atomic_write_bytes(path, json.dumps(payload).encode("utf-8"))
            except OSError as e:
                raise CacheSaveError(f"Cannot write embedding cache {path}: {e}") from e
        logger.info("Saved %d embeddings to %s", len(payload), path)
        return len(payload)
