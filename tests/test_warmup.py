# tests/test_warmup.py
import json
import logging
import threading

import numpy as np

from models.vision_encoder import FeatureExtractor
from vision.embedding_cache import EmbeddingCache
from vision.warmup import ReadinessState, WarmupCoordinator


def _catalog(make_image, add_product, colors=("red", "green", "blue")):
    ids = []
    for n, color in enumerate(colors, start=1):
        make_image(f"{n}.png", color)
        ids.append(add_product(str(n), f"/images/{n}.png"))
    return ids


def test_scenario_a_full_warmup_persists(coordinator, make_image, add_product, cache_path):
    ids = _catalog(make_image, add_product)
    assert ids == [1, 2, 3]
    assert coordinator.state is ReadinessState.COLD

    assert coordinator.ensure_ready() is True

    assert coordinator.state is ReadinessState.READY
    assert set(coordinator.cache.snapshot()) == {1, 2, 3}
    reloaded = EmbeddingCache()
    assert reloaded.load_from(cache_path) == 3
    for i in ids:
        np.testing.assert_allclose(reloaded.get(i), coordinator.cache.get(i), rtol=1e-6)
    report = coordinator.last_report
    assert report.computed == 3 and report.failed == [] and report.saved


def test_scenario_b_missing_image_is_skipped_and_logged(coordinator, make_image, add_product, caplog):
    make_image("1.png", "red")
    make_image("3.png", "blue")
    add_product("1", "/images/1.png")
    add_product("2", "/images/missing.png")
    add_product("3", "/images/3.png")

    with caplog.at_level(logging.WARNING, logger="vision.warmup"):
        coordinator.ensure_ready()

    assert set(coordinator.cache.snapshot()) == {1, 3}
    assert coordinator.cache.get(2) is None
    assert coordinator.last_report.failed == [2]
    assert any("product 2" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)
    assert coordinator.is_ready


def test_ensure_ready_is_idempotent(coordinator, make_image, add_product, loader, monkeypatch):
    _catalog(make_image, add_product)
    calls = []
    original = coordinator.extractor.embed
    monkeypatch.setattr(coordinator.extractor, "embed", lambda src: calls.append(src) or original(src))

    assert coordinator.ensure_ready() is True
    assert coordinator.ensure_ready() is False
    assert len(calls) == 3
    assert loader.calls == 1


def test_failure_does_not_affect_neighbours(coordinator, make_image, add_product, tmp_path):
    make_image("1.png", "red")
    bad = tmp_path / "extracted" / "2.png"
    bad.write_bytes(b"not an image")
    make_image("3.png", "blue")
    for n in (1, 2, 3):
        add_product(str(n), f"/images/{n}.png")

    coordinator.ensure_ready()

    snap = coordinator.cache.snapshot()
    assert set(snap) == {1, 3}
    for vec in snap.values():
        assert abs(float(np.linalg.norm(vec)) - 1.0) < 1e-5


def test_existing_snapshot_is_reused(store, extractor, resolver, make_image, add_product, cache_path):
    _catalog(make_image, add_product)
    first = WarmupCoordinator(EmbeddingCache(), store, extractor, cache_path, resolver)
    first.ensure_ready()

    second = WarmupCoordinator(EmbeddingCache(), store, extractor, cache_path, resolver)
    second.ensure_ready()
    assert second.last_report.loaded == 3
    assert second.last_report.computed == 0
    assert len(second.cache) == 3


def test_corrupt_snapshot_does_not_abort_warmup(coordinator, make_image, add_product, cache_path, caplog):
    _catalog(make_image, add_product)
    cache_path.write_text("{truncated")

    with caplog.at_level(logging.WARNING, logger="vision.warmup"):
        coordinator.ensure_ready()

    assert coordinator.is_ready
    assert len(coordinator.cache) == 3
    assert any("not loaded" in r.getMessage() for r in caplog.records)
    assert set(json.loads(cache_path.read_text())) == {"1", "2", "3"}


def test_products_without_image_are_not_enumerated(coordinator, make_image, add_product):
    make_image("1.png")
    add_product("1", "/images/1.png")
    add_product("2", None)
    add_product("3", "")
    coordinator.ensure_ready()
    assert set(coordinator.cache.snapshot()) == {1}


def test_catalog_failure_still_reaches_ready(coordinator, caplog):
    def broken():
        raise RuntimeError("database is locked")

    coordinator.catalog.list_image_refs = broken
    with caplog.at_level(logging.ERROR, logger="vision.warmup"):
        coordinator.ensure_ready()
    assert coordinator.is_ready
    assert any("aborted" in r.getMessage() for r in caplog.records)


def test_save_failure_keeps_memory(store, extractor, resolver, make_image, add_product, tmp_path):
    _catalog(make_image, add_product)
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    coordinator = WarmupCoordinator(EmbeddingCache(), store, extractor, blocker / "embeddings.json", resolver)
    coordinator.ensure_ready()
    assert coordinator.is_ready
    assert len(coordinator.cache) == 3
    assert coordinator.last_report.saved is False


def test_background_pass(coordinator, make_image, add_product):
    _catalog(make_image, add_product)
    thread = coordinator.start_background()
    assert thread is not None
    assert coordinator.start_background() is None
    assert coordinator.wait(timeout=10)
    assert len(coordinator.cache) == 3


def test_progress_wrapper_sees_pending_items(coordinator, make_image, add_product):
    _catalog(make_image, add_product)
    seen = []

    def progress(items):
        seen.extend(items)
        return items

    coordinator.ensure_ready(progress=progress)
    assert [item_id for item_id, _ in seen] == [1, 2, 3]


def test_oversized_image_is_skipped_not_fatal(coordinator, make_image, add_product, monkeypatch):
    make_image("1.png", "red")
    make_image("2.png", "green", size=(200, 200))
    make_image("3.png", "blue")
    for n in (1, 2, 3):
        add_product(str(n), f"/images/{n}.png")
    monkeypatch.setattr("PIL.Image.MAX_IMAGE_PIXELS", 10000)

    coordinator.ensure_ready()

    assert set(coordinator.cache.snapshot()) == {1, 3}
    assert coordinator.last_report.failed == [2]
    assert coordinator.last_report.saved


def test_unexpected_extractor_error_skips_only_that_item(coordinator, make_image, add_product, monkeypatch):
    _catalog(make_image, add_product)
    original = coordinator.extractor.embed

    def flaky(source):
        if str(source).endswith("2.png"):
            raise RuntimeError("driver reset")
        return original(source)

    monkeypatch.setattr(coordinator.extractor, "embed", flaky)
    coordinator.ensure_ready()
    assert set(coordinator.cache.snapshot()) == {1, 3}
    assert coordinator.last_report.failed == [2]


def test_out_of_range_snapshot_is_recomputed(coordinator, make_image, add_product, cache_path):
    _catalog(make_image, add_product)
    cache_path.write_text('{"1": [' + "9" * 400 + "]}")

    coordinator.ensure_ready()

    assert coordinator.last_report.computed == 3
    assert coordinator.last_report.saved
    assert set(json.loads(cache_path.read_text())) == {"1", "2", "3"}


def test_stuck_images_do_not_starve_the_rest(store, resolver, cache_path, make_image, add_product,
                                             loader_factory, color_encode):
    release = threading.Event()

    def hangs_on_red(image):
        if np.asarray(image)[0, 0, 0] > 200:
            release.wait(5)
        return color_encode(image)

    _catalog(make_image, add_product, colors=("red", "red", "blue"))
    extractor = FeatureExtractor(loader=loader_factory(encoder=hangs_on_red), timeout=0.5)
    coordinator = WarmupCoordinator(EmbeddingCache(), store, extractor, cache_path, resolver)
    try:
        coordinator.ensure_ready()
    finally:
        release.set()

    assert coordinator.last_report.failed == [1, 2]
    assert set(coordinator.cache.snapshot()) == {3}
