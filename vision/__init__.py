"""
vision/__init__.py
------------------
Visual-similarity search over the product catalog.
"""

from .embedding_cache import EmbeddingCache
from .errors import (
    CacheLoadError,
    CacheSaveError,
    EmbeddingDimensionError,
    ExtractionError,
    SearchFailed,
    ServiceWarming,
)
from .image_match import rank
from .image_paths import ImagePathResolver
from .search import VisualSearchService
from .warmup import ReadinessState, WarmupCoordinator

__all__ = [
    "EmbeddingCache", "ImagePathResolver", "ReadinessState", "VisualSearchService",
    "WarmupCoordinator", "rank", "CacheLoadError", "CacheSaveError",
    "EmbeddingDimensionError", "ExtractionError", "SearchFailed", "ServiceWarming",
]
