"""
vision/image_match.py
---------------------
Rank cached products by visual similarity to a query embedding.

Both sides are unit-normalized, so the dot product is the cosine
similarity. Order: score descending, then product id ascending.
"""

from typing import List, Mapping, Tuple

import numpy as np

from .errors import EmbeddingDimensionError


def dot(a, b) -> float:
    return float(np.dot(np.asarray(a, dtype=np.float32), np.asarray(b, dtype=np.float32)))


def rank(query, entries: Mapping[int, np.ndarray], k: int) -> List[Tuple[int, float]]:
    """Return up to `k` (product_id, score) pairs, best first."""
    if not entries or k <= 0:
        return []

    query = np.asarray(query, dtype=np.float32).reshape(-1)
    ids = np.fromiter(entries.keys(), dtype=np.int64, count=len(entries))
    matrix = np.stack([entries[i] for i in ids.tolist()]).astype(np.float32, copy=False)
    if matrix.shape[1] != query.size:
        raise EmbeddingDimensionError(
            f"Query length {query.size} does not match cached length {matrix.shape[1]}"
        )

    sims = matrix @ query
    # lexsort: last key is primary
    order = np.lexsort((ids, -sims))[:k]
    return [(int(ids[i]), float(sims[i])) for i in order]


def format_result(row: dict, score: float) -> dict:
    result = dict(row)
    result["score"] = round(float(score), 4)
    return result
