"""
catalog/sync_catalog_embeddings.py
----------------------------------
Precomputes image embeddings for every catalog product and writes the
durable cache file, so the API starts warm.

    python -m catalog.sync_catalog_embeddings --verify
"""

import argparse
import logging

import numpy as np
from tqdm import tqdm

from api.config import get_settings
from api.main import build_components
from core.logger import setup_logging
from vision.embedding_cache import EmbeddingCache
from vision.errors import CacheLoadError

logger = logging.getLogger(__name__)


def verify_embeddings(path, tolerance=1e-2) -> bool:
    """Reload the cache file and check every vector is unit length."""
    cache = EmbeddingCache()
    try:
        count = cache.load_from(path)
    except CacheLoadError as e:
        logger.error("Verification failed: %s", e)
        return False
    if not count:
        logger.warning("Embedding cache %s is empty", path)
        return True
    norms = np.linalg.norm(np.stack(list(cache.snapshot().values())), axis=1)
    bad = int(np.sum(~np.isclose(norms, 1.0, atol=tolerance)))
    logger.info("Verified %d embeddings of dim %d, mean norm %.4f", count, cache.dim, float(norms.mean()))
    if bad:
        logger.error("%d embeddings are not normalized", bad)
    return bad == 0


def rebuild_embeddings(verify: bool = False, settings=None, extractor=None) -> int:
    cfg = settings or get_settings()
    setup_logging(cfg.log_level, cfg.log_dir)
    store, coordinator, _ = build_components(cfg, extractor)
    try:
        coordinator.ensure_ready(progress=lambda items: tqdm(items, desc="Encoding images"))
    finally:
        store.close()

    report = coordinator.last_report
    print(f"[OK] {len(coordinator.cache)} embeddings → {cfg.embeddings_path}")
    print(f"[OK] Computed {report.computed} | Reused {report.cached} | Failed {len(report.failed)}")
    if report.failed:
        print(f"[WARN] Failed product ids: {report.failed}")

    if verify and not verify_embeddings(cfg.embeddings_path):
        return 1
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Precompute catalog image embeddings")
    parser.add_argument("--verify", action="store_true", help="Run post-build verification")
    args = parser.parse_args()
    raise SystemExit(rebuild_embeddings(verify=args.verify))
