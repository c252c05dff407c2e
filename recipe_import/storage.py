"""Owned object storage: S3 behind a CDN, or a local directory."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Optional, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ImportConfig
from .errors import MediaFailure

logger = logging.getLogger("recipe_import")


class ObjectStore(Protocol):
    """Append-only blob storage whose public URL derives from the key alone."""

    def put(self, body: BinaryIO, key: str, content_type: str) -> str:
        """Store ``body`` under ``key`` and return the owned URL."""
        ...

    def owns(self, url: str) -> bool:
        """Whether ``url`` already points into this store."""
        ...


class S3ObjectStore:
    """Uploads to an S3 bucket and serves objects from a CDN domain."""

    def __init__(
        self,
        bucket: str,
        public_base_url: str,
        region: Optional[str] = None,
        timeout: float = 15.0,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        if "://" not in self.public_base_url:
            self.public_base_url = f"https://{self.public_base_url}"
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            config=BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 1},
            ),
        )

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def owns(self, url: str) -> bool:
        return url.startswith(self.public_base_url + "/")

    def put(self, body: BinaryIO, key: str, content_type: str) -> str:
        try:
            self._client.upload_fileobj(
                body,
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as exc:
            raise MediaFailure(f"Upload of {key} to s3://{self.bucket} failed: {exc}") from exc
        logger.debug("Uploaded s3://%s/%s", self.bucket, key)
        return self.url_for(key)


class LocalObjectStore:
    """Writes objects beneath a directory and serves them from a base URL."""

    def __init__(self, root: Path, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root).resolve()
        self.public_base_url = (public_base_url or self.root.as_uri()).rstrip("/")

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def owns(self, url: str) -> bool:
        return url.startswith(self.public_base_url + "/")

    def put(self, body: BinaryIO, key: str, content_type: str) -> str:
        destination = self.root / key
        if destination.exists():
            raise MediaFailure(f"Refusing to overwrite existing object {key}")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with destination.open("xb") as handle:
                shutil.copyfileobj(body, handle)
        except OSError as exc:
            raise MediaFailure(f"Failed to write {destination}: {exc}") from exc
        logger.debug("Stored %s (%s) at %s", key, content_type, destination)
        return self.url_for(key)


def build_object_store(config: ImportConfig) -> ObjectStore:
    """Pick S3 when a bucket is configured, otherwise a local directory."""
    if config.s3_bucket:
        if not config.cdn_domain:
            raise ValueError("AWS_CLOUDFRONT_DOMAIN is required when a bucket is configured")
        return S3ObjectStore(
            config.s3_bucket,
            config.cdn_domain,
            region=config.s3_region,
            timeout=config.media_timeout,
        )
    root = Path(config.store_dir or "media")
    return LocalObjectStore(root, config.store_base_url)
