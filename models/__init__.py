
"""
models/__init__.py
------------------
Expose unified model interface.
"""

from .vision_encoder import FeatureExtractor, get_extractor, load_clip_encoder

__all__ = ["FeatureExtractor", "get_extractor", "load_clip_encoder"]
