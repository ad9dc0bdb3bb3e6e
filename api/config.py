"""
api/config.py
-------------
Runtime configuration, overridable through CATALOG_* environment variables.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    db_path: str = "app.db"
    embeddings_path: str = "embeddings.json"        # durable embedding cache
    extracted_dir: str = "extracted"                # served as /images/...
    uploads_dir: str = "uploads"                    # served as /uploads/...
    extracted_prefix: str = "/images/"
    uploads_prefix: str = "/uploads/"

    model_name: str = "ViT-B-32"
    pretrained: str = "openai"
    device: Optional[str] = None                    # None -> cuda if available
    extraction_timeout: float = 30.0
    fetch_timeout: float = 20.0

    top_k: int = 6
    warmup_on_startup: bool = False
    seed_catalog: bool = True
    seed_path: Optional[str] = None

    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_", env_file=".env", extra="ignore", protected_namespaces=()
    )


def get_settings() -> Settings:
    return Settings()
