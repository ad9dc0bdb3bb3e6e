"""
api/main.py
-----------
Catalog Visual Search - REST API Layer
--------------------------------------
Wires the catalog store, embedding cache, warmup coordinator and the
search-by-image handler into one FastAPI application.
"""

import logging
import shutil
import sqlite3
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.config import Settings, get_settings
from catalog.loader import load_catalog
from catalog.store import CatalogStore
from core.logger import setup_logging
from models.vision_encoder import get_extractor
from vision.embedding_cache import EmbeddingCache
from vision.errors import SearchFailed, ServiceWarming
from vision.image_paths import ImagePathResolver
from vision.search import VisualSearchService
from vision.warmup import WarmupCoordinator

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"

# ─────────────────────────────────────────────────────────────────────────────
# 📥 1. Request Schemas
# ─────────────────────────────────────────────────────────────────────────────

class ProductCreate(BaseModel):
    unit_number: str = Field(..., description="Vendor unit number (unique)")
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    vendor: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    image_url: Optional[str] = Field(None, description="URL, /images/... or /uploads/... path")


def _fail(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


# ─────────────────────────────────────────────────────────────────────────────
# 🧠 2. Component Factory
# ─────────────────────────────────────────────────────────────────────────────

def build_components(cfg: Settings, extractor=None):
    """Create store, cache, coordinator and search service from settings."""
    Path(cfg.uploads_dir).mkdir(parents=True, exist_ok=True)

    store = CatalogStore(cfg.db_path)
    if cfg.seed_catalog:
        store.seed_if_empty(load_catalog(cfg.seed_path))

    if extractor is None:
        extractor = get_extractor(
            model_name=cfg.model_name,
            pretrained=cfg.pretrained,
            device=cfg.device,
            timeout=cfg.extraction_timeout,
            fetch_timeout=cfg.fetch_timeout,
        )
    resolver = ImagePathResolver.from_dirs(
        cfg.extracted_dir, cfg.uploads_dir, cfg.extracted_prefix, cfg.uploads_prefix
    )
    coordinator = WarmupCoordinator(
        cache=EmbeddingCache(),
        catalog=store,
        extractor=extractor,
        store_path=cfg.embeddings_path,
        resolver=resolver,
    )
    service = VisualSearchService(coordinator, store, top_k=cfg.top_k)
    return store, coordinator, service


# ─────────────────────────────────────────────────────────────────────────────
# 🌐 3. Application
# ─────────────────────────────────────────────────────────────────────────────

def create_app(settings: Optional[Settings] = None, extractor=None) -> FastAPI:
    config = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(config.log_level, config.log_dir)
        store, coordinator, service = build_components(config, extractor)
        app.state.store = store
        app.state.coordinator = coordinator
        app.state.search = service
        if config.warmup_on_startup:
            coordinator.start_background()
        logger.info("Catalog visual search ready to serve (%d products)", store.count())
        yield
        logger.info("Catalog visual search shutting down...")
        store.close()

    app = FastAPI(
        title="Catalog Visual Search",
        version="1.0.0",
        description="Product catalog with search-by-image over cached CLIP embeddings.",
        lifespan=lifespan,
    )
    app.state.settings = config

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _fail(500, str(exc) or "Internal Server Error")

    # ── Search ──────────────────────────────────────────────────────────────
    @app.post("/api/search-by-image")
    def search_by_image(request: Request, image: Optional[UploadFile] = File(None)):
        if image is None:
            return _fail(400, "No image uploaded")

        suffix = Path(image.filename or "").suffix
        tmp = tempfile.NamedTemporaryFile(delete=False, dir=config.uploads_dir, suffix=suffix)
        upload_path = tmp.name
        try:
            with tmp:
                shutil.copyfileobj(image.file, tmp)
        except Exception:
            Path(upload_path).unlink(missing_ok=True)
            raise
        if Path(upload_path).stat().st_size == 0:
            Path(upload_path).unlink()
            return _fail(400, "Uploaded image is empty")

        service: VisualSearchService = request.app.state.search
        try:
            results = service.search(upload_path)
        except ServiceWarming as e:
            return JSONResponse(
                status_code=503,
                headers={"Retry-After": RETRY_AFTER_SECONDS},
                content={"success": False, "warming": True, "state": e.state, "message": str(e)},
            )
        except SearchFailed as e:
            return _fail(422, str(e))

        keywords = ["Visual Match"] if results else []
        return {"success": True, "keywords": keywords, "results": results}

    # ── Catalog ─────────────────────────────────────────────────────────────
    @app.get("/api/products")
    def list_products(
        request: Request,
        vendor: Optional[str] = None,
        type: Optional[str] = None,
        min_price: Optional[float] = Query(None, alias="minPrice"),
        max_price: Optional[float] = Query(None, alias="maxPrice"),
        search: Optional[str] = None,
    ):
        return request.app.state.store.list_products(vendor, type, min_price, max_price, search)

    @app.post("/api/products")
    def create_product(request: Request, product: ProductCreate):
        try:
            product_id = request.app.state.store.create_product(product.model_dump())
        except sqlite3.IntegrityError as e:
            return _fail(400, str(e))
        request.app.state.search.on_product_created(product_id, product.image_url)
        return {"success": True, "id": product_id}

    # ── Embeddings / health ─────────────────────────────────────────────────
    @app.post("/api/embeddings/warmup")
    def trigger_warmup(request: Request):
        coordinator: WarmupCoordinator = request.app.state.coordinator
        started = coordinator.start_background() is not None
        return {"success": True, "started": started, "state": coordinator.state.value}

    @app.get("/health")
    def health_check(request: Request):
        coordinator: WarmupCoordinator = request.app.state.coordinator
        report = coordinator.last_report
        return {
            "status": "healthy",
            "readiness": coordinator.state.value,
            "cache_size": len(coordinator.cache),
            "model": config.model_name,
            "last_warmup": report.as_dict() if report else None,
        }

    @app.get("/api/config")
    def get_current_config():
        return config.model_dump()

    @app.get("/")
    def root():
        return {
            "message": "Catalog visual search running.",
            "model": config.model_name,
            "endpoints": [
                "/api/search-by-image", "/api/products", "/api/embeddings/warmup",
                "/api/config", "/health",
            ],
        }

    @app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def api_not_found(path: str):
        return _fail(404, "API route not found")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=3000)
