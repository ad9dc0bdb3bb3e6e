"""
models/vision_encoder.py
------------------------
Process-wide handle around the open_clip vision encoder.
Default: open_clip ViT-B/32, moderate speed/accuracy balance.

The model is loaded on first use. Loading is guarded by a lock so
concurrent first callers trigger exactly one load and wait for it.
Each extraction is timeboxed; a stuck image fails with ExtractionError
instead of hanging the caller.
"""

from __future__ import annotations
import io
import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np
import requests
from PIL import Image

from vision.errors import ExtractionError
from vision.image_paths import is_remote
from vision.vector_utils import normalize

logger = logging.getLogger(__name__)

MODEL_NAME = "ViT-B-32"
PRETRAINED = "openai"

ImageSource = Union[str, Path]
Encoder = Callable[[Image.Image], np.ndarray]


# -------------------------------------------------------
# 1. Model loading
# -------------------------------------------------------
def load_clip_encoder(model_name=MODEL_NAME, pretrained=PRETRAINED, device=None) -> Encoder:
    """Load CLIP model + preprocess transforms, return an image -> vector callable."""
    import open_clip
    import torch

    device = device or ("cuda" if torch.cuda.is_available() else "cpu")
    model, _, preprocess = open_clip.create_model_and_transforms(model_name, pretrained=pretrained)
    model.to(device).eval()
    logger.info("Loaded %s/%s on %s", model_name, pretrained, device)

    def encode(image: Image.Image) -> np.ndarray:
        with torch.no_grad():
            image_tensor = preprocess(image).unsqueeze(0).to(device)
            features = model.encode_image(image_tensor)
            features /= features.norm(dim=-1, keepdim=True)
        return features[0].float().cpu().numpy()

    return encode


def load_image(source: ImageSource, fetch_timeout: float = 20.0) -> Image.Image:
    """Open a local path or fetch an http(s) URL, returning an RGB image."""
    source = str(source)
    try:
        if is_remote(source):
            r = requests.get(source, timeout=fetch_timeout)
            r.raise_for_status()
            img = Image.open(io.BytesIO(r.content))
        else:
            img = Image.open(source)
        return img.convert("RGB")
    except Exception as e:
        # PIL raises plain Exception subclasses too (DecompressionBombError)
        raise ExtractionError(f"Cannot load image {source}: {e}", source=source) from e


# -------------------------------------------------------
# 2. Extractor handle
# -------------------------------------------------------
class FeatureExtractor:
    """image source -> unit-length float32 vector."""

    def __init__(self, loader: Optional[Callable[[], Encoder]] = None,
                 timeout: float = 30.0, fetch_timeout: float = 20.0):
        self._loader = loader or load_clip_encoder
        self.timeout = timeout
        self.fetch_timeout = fetch_timeout
        self._encoder: Optional[Encoder] = None
        self._init_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._encoder is not None

    def _ensure_encoder(self) -> Encoder:
        if self._encoder is not None:
            return self._encoder
        with self._init_lock:
            if self._encoder is None:
                try:
                    self._encoder = self._loader()
                except Exception as e:
                    logger.exception("Vision model initialization failed")
                    raise ExtractionError(f"Model initialization failed: {e}") from e
        return self._encoder

    def _embed_now(self, source: ImageSource) -> np.ndarray:
        image = load_image(source, fetch_timeout=self.fetch_timeout)
        try:
            raw = self._encoder(image)
        except Exception as e:
            raise ExtractionError(f"Model call failed for {source}: {e}", source=str(source)) from e
        vec = normalize(raw)
        if vec.size == 0 or not np.all(np.isfinite(vec)) or np.linalg.norm(vec) == 0:
            raise ExtractionError(f"Model returned an unusable vector for {source}", source=str(source))
        return vec

    def _run(self, future: Future, source: ImageSource):
        try:
            future.set_result(self._embed_now(source))
        except Exception as e:
            future.set_exception(e)

    def embed(self, source: ImageSource) -> np.ndarray:
        """Return the normalized embedding of `source` or raise ExtractionError."""
        # model init is outside the timebox: it is seconds-scale and one-off
        self._ensure_encoder()
        # one thread per call: an abandoned stuck call never delays the next one
        future = Future()
        threading.Thread(
            target=self._run, args=(future, source), name="extract", daemon=True,
        ).start()
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            raise ExtractionError(
                f"Extraction timed out after {self.timeout}s for {source}",
                source=str(source), timed_out=True,
            )


# -------------------------------------------------------
# 3. Process-wide accessor
# -------------------------------------------------------
_extractor: Optional[FeatureExtractor] = None
_extractor_lock = threading.Lock()


def get_extractor(model_name=MODEL_NAME, pretrained=PRETRAINED, device=None,
                  timeout: float = 30.0, fetch_timeout: float = 20.0) -> FeatureExtractor:
    """Return the shared extractor, creating it on first call (arguments apply once)."""
    global _extractor
    with _extractor_lock:
        if _extractor is None:
            _extractor = FeatureExtractor(
                loader=partial(load_clip_encoder, model_name, pretrained, device),
                timeout=timeout,
                fetch_timeout=fetch_timeout,
            )
        return _extractor
