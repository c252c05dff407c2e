"""Configuration objects and constants for the import pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_MODEL_ID = "gpt-4o-mini"
DEFAULT_MLX_MODEL_ID = "mlx-community/Qwen2.5-7B-Instruct-4bit"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml"
DEFAULT_IMAGE = "default-recipe.jpg"
TRUNCATION_MARKER = "[CONTENT TRUNCATED FOR LENGTH]"
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
MAX_MEDIA_BYTES = 10 * 1024 * 1024


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _to_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class ImportConfig:
    """Top-level settings that control retrieval, extraction and media ingestion."""

    fetch_timeout: float = 15.0
    max_document_bytes: int = MAX_DOCUMENT_BYTES
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = DEFAULT_ACCEPT

    min_region_chars: int = 200
    max_extraction_chars: int = 30_000
    truncation_marker: str = TRUNCATION_MARKER

    extraction_backend: str = "openai"
    model_id: str = DEFAULT_MODEL_ID
    openai_api_key: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 4096
    extraction_timeout: float = 60.0
    model_dir: Optional[str] = None

    media_concurrency: int = 5
    media_max_retries: int = 2
    media_retry_delay: float = 0.5
    media_timeout: float = 15.0
    max_media_bytes: int = MAX_MEDIA_BYTES
    ingest_full_text_media: bool = False
    default_image: str = DEFAULT_IMAGE

    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    cdn_domain: Optional[str] = None
    store_dir: Optional[str] = None
    store_base_url: Optional[str] = None
    key_prefix: str = "recipe-images"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "ImportConfig":
        """Build a config from process environment variables, once, at startup."""
        env = os.environ if environ is None else environ
        backend = env.get("RECIPE_IMPORT_BACKEND", "openai").strip().lower() or "openai"
        default_model = DEFAULT_MLX_MODEL_ID if backend == "mlx" else DEFAULT_MODEL_ID
        values = dict(
            extraction_backend=backend,
            model_id=env.get("RECIPE_IMPORT_MODEL") or default_model,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            model_dir=env.get("MODEL_DIR") or None,
            max_extraction_chars=_to_int(env, "RECIPE_IMPORT_MAX_CHARS", 30_000),
            ingest_full_text_media=_to_bool(env.get("RECIPE_IMPORT_FULL_TEXT_MEDIA"), False),
            s3_bucket=env.get("AWS_S3_BUCKET_IMAGES") or None,
            s3_region=env.get("AWS_REGION") or None,
            cdn_domain=env.get("AWS_CLOUDFRONT_DOMAIN") or None,
            store_dir=env.get("RECIPE_IMPORT_STORE_DIR") or None,
            store_base_url=env.get("RECIPE_IMPORT_STORE_URL") or None,
        )
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
