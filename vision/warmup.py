"""
vision/warmup.py
----------------
Drives first-time population of the embedding cache.

    cold --(first ensure_ready / start_background)--> warming --> ready

A pass: load the durable snapshot, embed every catalog product that is
not cached yet (one failure never aborts the pass), embed products created
while the pass was running, save once, mark ready.
Exactly one caller wins the cold -> warming transition.
"""

from __future__ import annotations
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from core.logger import log_event
from .embedding_cache import EmbeddingCache
from .errors import CacheLoadError, CacheSaveError, EmbeddingDimensionError, ExtractionError
from .image_paths import ImagePathResolver

logger = logging.getLogger(__name__)


class ReadinessState(str, Enum):
    COLD = "cold"
    WARMING = "warming"
    READY = "ready"


@dataclass
class WarmupReport:
    started: str = field(default_factory=lambda: datetime.now().isoformat())
    loaded: int = 0
    cached: int = 0
    computed: int = 0
    failed: List[int] = field(default_factory=list)
    duration_sec: float = 0.0
    saved: bool = False

    @property
    def throughput_img_s(self) -> float:
        return round(self.computed / max(self.duration_sec, 1e-9), 3) if self.computed else 0.0

    def as_dict(self) -> dict:
        data = asdict(self)
        data["throughput_img_s"] = self.throughput_img_s
        return data


class WarmupCoordinator:
    def __init__(self, cache: EmbeddingCache, catalog, extractor, store_path,
                 resolver: ImagePathResolver):
        self.cache = cache
        self.catalog = catalog
        self.extractor = extractor
        self.store_path = Path(store_path)
        self.resolver = resolver
        self._state = ReadinessState.COLD
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._deferred: List[Tuple[int, str]] = []
        self.last_report: Optional[WarmupReport] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ReadinessState.READY

    def _claim(self) -> bool:
        """Atomically move cold -> warming; True only for the winning caller."""
        with self._state_lock:
            if self._state is not ReadinessState.COLD:
                return False
            self._state = ReadinessState.WARMING
            return True

    # ---------------------------------------------------
    # Entry points
    # ---------------------------------------------------
    def ensure_ready(self, progress: Optional[Callable] = None) -> bool:
        """
        Run the warmup pass on the calling thread if the state is cold.
        Returns True if this call performed the pass; no-op when warming/ready.
        `progress` optionally wraps the list of pending items (e.g. tqdm).
        """
        if not self._claim():
            return False
        self._run_pass(progress)
        return True

    def start_background(self) -> Optional[threading.Thread]:
        """Kick off the pass on a detached thread; None if already started."""
        if not self._claim():
            return None
        thread = threading.Thread(target=self._run_pass, name="embedding-warmup", daemon=True)
        self._thread = thread
        thread.start()
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a background pass finishes (mainly for scripts/tests)."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.is_ready

    # ---------------------------------------------------
    # Per-item embedding
    # ---------------------------------------------------
    def embed_item(self, item_id: int, image_ref: str) -> bool:
        """Resolve, embed and cache one product. Failures are logged, never raised."""
        try:
            source = self.resolver.resolve(image_ref)
            vec = self.extractor.embed(source)
            self.cache.put(item_id, vec)
        except (ExtractionError, EmbeddingDimensionError) as e:
            logger.warning("Embedding failed for product %s (%s): %s", item_id, image_ref, e)
            return False
        except Exception:
            logger.exception("Unexpected error embedding product %s (%s)", item_id, image_ref)
            return False
        return True

    def defer(self, item_id: int, image_ref: str) -> bool:
        """
        Hand a newly created product to the running pass.
        False once ready: the caller embeds it itself.
        """
        with self._state_lock:
            if self._state is ReadinessState.READY:
                return False
            if self._state is ReadinessState.WARMING:
                self._deferred.append((item_id, image_ref))
            # cold: the next pass enumerates it from the catalog
            return True

    def _take_deferred(self) -> list:
        with self._state_lock:
            items, self._deferred = self._deferred, []
        return items

    def _embed_all(self, items, report: WarmupReport):
        for item_id, ref in items:
            if item_id in self.cache:
                continue
            if self.embed_item(item_id, ref):
                report.computed += 1
            else:
                report.failed.append(item_id)

    def _run_pass(self, progress: Optional[Callable] = None) -> WarmupReport:
        report = WarmupReport()
        t0 = time.perf_counter()
        late = []
        logger.info("Embedding warmup started")
        try:
            try:
                report.loaded = self.cache.load_from(self.store_path)
            except CacheLoadError as e:
                logger.warning("Embedding cache not loaded, recomputing: %s", e)

            items = self.catalog.list_image_refs()
            pending = [(item_id, ref) for item_id, ref in items if item_id not in self.cache]
            report.cached = len(items) - len(pending)
            self._embed_all(progress(pending) if progress else pending, report)
            # products created while the pass was running
            deferred = self._take_deferred()
            while deferred:
                self._embed_all(deferred, report)
                deferred = self._take_deferred()

            report.saved = self._save()
        except Exception:
            # ready with whatever was loaded; a stuck 'warming' would never recover
            logger.exception("Embedding warmup aborted")
        finally:
            report.duration_sec = round(time.perf_counter() - t0, 3)
            self.last_report = report
            with self._state_lock:
                late, self._deferred = self._deferred, []
                self._state = ReadinessState.READY

        if late:
            # created between the last drain and the ready flip
            self._embed_all(late, report)
            report.saved = self._save()

        logger.info(
            "Embedding warmup finished: %d loaded, %d computed, %d failed in %.2fs",
            report.loaded, report.computed, len(report.failed), report.duration_sec,
        )
        log_event("warmup_completed", report.as_dict())
        return report

    def _save(self) -> bool:
        try:
            self.cache.save_to(self.store_path)
        except CacheSaveError as e:
            logger.error("Embedding cache save failed: %s", e)
            return False
        return True
