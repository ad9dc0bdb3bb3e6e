# tests/conftest.py
import threading

import numpy as np
import pytest
from PIL import Image

from catalog.store import CatalogStore
from models.vision_encoder import FeatureExtractor
from vision.embedding_cache import EmbeddingCache
from vision.image_paths import ImagePathResolver
from vision.search import VisualSearchService
from vision.warmup import WarmupCoordinator

COLORS = {
    "red": (220, 30, 30),
    "green": (30, 200, 40),
    "blue": (20, 40, 210),
    "orange": (240, 140, 20),
}


def color_encoder(image):
    """Deterministic stand-in for CLIP: mean colour of each 2x2 quadrant."""
    small = np.asarray(image.resize((2, 2)), dtype=np.float32) / 255.0
    return small.reshape(-1) + 0.01


class CountingLoader:
    def __init__(self, encoder=color_encoder, delay=None):
        self.encoder = encoder
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        if self.delay is not None:
            self.delay.wait(5)
        return self.encoder


@pytest.fixture
def make_image(tmp_path):
    def _make(name, color="red", directory=None, size=(32, 32)):
        directory = directory or tmp_path / "extracted"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        Image.new("RGB", size, COLORS.get(color, color)).save(path)
        return path
    return _make


@pytest.fixture
def color_encode():
    return color_encoder


@pytest.fixture
def loader_factory():
    return CountingLoader


@pytest.fixture
def loader():
    return CountingLoader()


@pytest.fixture
def extractor(loader):
    return FeatureExtractor(loader=loader, timeout=5.0)


@pytest.fixture
def store(tmp_path):
    s = CatalogStore(str(tmp_path / "app.db"))
    yield s
    s.close()


@pytest.fixture
def resolver(tmp_path):
    return ImagePathResolver.from_dirs(tmp_path / "extracted", tmp_path / "uploads")


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "embeddings.json"


@pytest.fixture
def coordinator(store, extractor, cache_path, resolver):
    return WarmupCoordinator(EmbeddingCache(), store, extractor, cache_path, resolver)


@pytest.fixture
def service(coordinator, store):
    return VisualSearchService(coordinator, store, top_k=6)


@pytest.fixture
def add_product(store):
    def _add(unit, image_url, name=None):
        return store.create_product({
            "unit_number": unit,
            "name": name or f"Product {unit}",
            "price": 10.0,
            "image_url": image_url,
        })
    return _add


@pytest.fixture(autouse=True)
def event_log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr("core.logger.LOG_DIR", tmp_path / "logs")
    return tmp_path / "logs"
