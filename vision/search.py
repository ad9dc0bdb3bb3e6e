"""
vision/search.py
----------------
Search-by-image orchestration:

  readiness check -> query embedding -> rank cache snapshot -> catalog rows

The uploaded temp file is removed on every exit path. Background
embedding for newly created products runs on detached threads whose
failures are logged at the thread boundary.
"""

from __future__ import annotations
import logging
import os
import threading
import time
from typing import Dict, List, Optional

from core.logger import log_event
from .errors import ExtractionError, SearchFailed, ServiceWarming
from .image_match import format_result, rank
from .warmup import ReadinessState, WarmupCoordinator

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 6


def _discard(path):
    if path is None:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove upload %s: %s", path, e)


class VisualSearchService:
    def __init__(self, coordinator: WarmupCoordinator, catalog, top_k: int = DEFAULT_TOP_K):
        self.coordinator = coordinator
        self.catalog = catalog
        self.top_k = top_k

    @property
    def cache(self):
        return self.coordinator.cache

    @property
    def extractor(self):
        return self.coordinator.extractor

    def search(self, upload_path) -> List[Dict]:
        """
        Return catalog rows (with 'score') most similar to the uploaded image.

        Raises ServiceWarming if the cache is not ready (and starts the warmup),
        SearchFailed if the upload cannot be embedded.
        """
        try:
            state = self.coordinator.state
            if state is not ReadinessState.READY:
                if state is ReadinessState.COLD:
                    self.coordinator.start_background()
                raise ServiceWarming(state=self.coordinator.state.value)

            t0 = time.perf_counter()
            try:
                query = self.extractor.embed(upload_path)
            except ExtractionError as e:
                logger.warning("Query image could not be embedded: %s", e)
                raise SearchFailed(f"Could not analyse the uploaded image: {e}", cause=e) from e

            ranked = rank(query, self.cache.snapshot(), self.top_k)
            rows = self.catalog.fetch_by_ids([item_id for item_id, _ in ranked])
            by_id = {row["id"]: row for row in rows}
            results = []
            for item_id, score in ranked:
                row = by_id.get(item_id)
                if row is None:
                    logger.warning("Cached embedding for product %s has no catalog row", item_id)
                    continue
                results.append(format_result(row, score))

            latency_ms = (time.perf_counter() - t0) * 1000
            log_event("search_performed", {
                "latency_ms": round(latency_ms, 2),
                "k": self.top_k,
                "results": len(results),
                "cache_size": len(self.cache),
            })
            return results
        finally:
            _discard(upload_path)

    # ---------------------------------------------------
    # Incremental embedding on product creation
    # ---------------------------------------------------
    def _embed_and_save(self, item_id: int, image_ref: str):
        try:
            if self.coordinator.embed_item(item_id, image_ref):
                self.cache.save_to(self.coordinator.store_path)
                log_event("item_embedded", {"id": item_id})
        except Exception:
            logger.exception("Background embedding failed for product %s", item_id)

    def on_product_created(self, item_id: int, image_ref: Optional[str]) -> Optional[threading.Thread]:
        """
        Embed a new product on a detached thread when the cache is ready.
        Before that the warmup pass takes it over and None is returned.
        """
        if not image_ref or self.coordinator.defer(item_id, image_ref):
            return None
        thread = threading.Thread(
            target=self._embed_and_save, args=(item_id, image_ref),
            name=f"embed-product-{item_id}", daemon=True,
        )
        thread.start()
        return thread
