"""Media ingestion: resolve, download, classify and re-host recipe images."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
import tempfile
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from filetype import guess
from requests.utils import requote_uri

from .config import ImportConfig
from .errors import MediaFailure
from .models import MediaAsset, MediaStatus
from .storage import ObjectStore
from .utils import slugify

logger = logging.getLogger("recipe_import")

DEFAULT_MEDIA_TYPE = ("jpg", "image/jpeg")
CONTENT_TYPE_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}
EXTENSION_CONTENT_TYPES: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
}
_INLINE_PREFIXES = ("data:", "blob:", "<svg")
_SIGNATURE_BYTES = 262
_CHUNK_SIZE = 64 * 1024


def is_inline_reference(reference: str) -> bool:
    """data:/blob: URIs and inline SVG markup are never re-ingested."""
    return reference.strip().lower().startswith(_INLINE_PREFIXES)


def resolve_reference(reference: str, origin: Optional[str]) -> Optional[str]:
    """Resolve ``reference`` against the page URL; None when no valid URL results."""
    reference = reference.strip()
    if not reference:
        return None
    try:
        if origin:
            resolved = urljoin(origin, reference)
        elif reference.startswith("//"):
            resolved = "https:" + reference
        else:
            resolved = reference
        parsed = urlparse(resolved)
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return requote_uri(resolved)


def classify_media(content_type: str, url: str, head: bytes = b"") -> Tuple[str, str]:
    """Pick (extension, MIME type) from the header, then URL extension, then byte signature."""
    media_type = content_type.split(";")[0].strip().lower()
    if media_type in CONTENT_TYPE_EXTENSIONS:
        extension = CONTENT_TYPE_EXTENSIONS[media_type]
        return extension, EXTENSION_CONTENT_TYPES[extension]

    suffix = PurePosixPath(urlparse(url).path).suffix.lower().lstrip(".")
    if suffix in EXTENSION_CONTENT_TYPES:
        return ("jpg" if suffix == "jpeg" else suffix), EXTENSION_CONTENT_TYPES[suffix]

    kind = guess(head) if head else None
    if kind and kind.mime.startswith("image/"):
        extension = "jpg" if kind.extension == "jpeg" else kind.extension.lower()
        return extension, kind.mime

    return DEFAULT_MEDIA_TYPE


def build_object_key(
    prefix: str,
    extension: str,
    source_url: str = "",
    now: Optional[dt.datetime] = None,
) -> str:
    """Generate a fresh, never-reused key scoped by ingestion time."""
    now = now or dt.datetime.now(dt.timezone.utc)
    stem = PurePosixPath(urlparse(source_url).path).stem if source_url else ""
    name_hint = slugify(stem, fallback="image")[:40].strip("-") or "image"
    millis = int(now.timestamp() * 1000)
    filename = f"recipe-{millis}-{uuid.uuid4().hex[:12]}-{name_hint}.{extension}"
    return f"{prefix.strip('/')}/{now:%Y/%m/%d}/{filename}"


class MediaIngestor:
    """Copies third-party media into owned storage with bounded concurrency and retries."""

    def __init__(
        self,
        store: ObjectStore,
        config: ImportConfig,
        session_factory: Callable[[], requests.Session] = requests.Session,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.config = config
        self._session_factory = session_factory
        self.temp_dir = temp_dir

    def discover(self, references: Iterable[str], origin: Optional[str]) -> List[MediaAsset]:
        """Create one asset per distinct reference, settling those that need no download."""
        assets: List[MediaAsset] = []
        seen = set()
        for reference in references:
            if not isinstance(reference, str) or not reference.strip():
                continue
            reference = reference.strip()
            if reference in seen:
                continue
            seen.add(reference)

            if is_inline_reference(reference) or self.store.owns(reference):
                assets.append(
                    MediaAsset(
                        original_url=reference,
                        resolved_url=reference,
                        owned_url=reference,
                        status=MediaStatus.SUCCEEDED,
                    )
                )
                continue

            resolved = resolve_reference(reference, origin)
            if resolved is None:
                logger.warning("Could not resolve media reference %r against %s", reference, origin)
                assets.append(
                    MediaAsset(
                        original_url=reference,
                        resolved_url=reference,
                        status=MediaStatus.FAILED,
                    )
                )
                continue

            if self.store.owns(resolved):
                assets.append(
                    MediaAsset(
                        original_url=reference,
                        resolved_url=resolved,
                        owned_url=resolved,
                        status=MediaStatus.SUCCEEDED,
                    )
                )
                continue
            assets.append(MediaAsset(original_url=reference, resolved_url=resolved))
        return assets

    async def ingest(self, references: Iterable[str], origin: Optional[str]) -> List[MediaAsset]:
        """Ingest every distinct reference; failures degrade to the resolved URL."""
        assets = self.discover(references, origin)
        pending = [asset for asset in assets if asset.status is MediaStatus.PENDING]
        batch_size = max(1, self.config.media_concurrency)
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            logger.debug(
                "Ingesting media batch %d of %d (size: %d)",
                (start // batch_size) + 1,
                (len(pending) + batch_size - 1) // batch_size,
                len(batch),
            )
            results = await asyncio.gather(
                *(asyncio.to_thread(self._ingest_one, asset) for asset in batch),
                return_exceptions=True,
            )
            for asset, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Unexpected error ingesting %s",
                        asset.resolved_url,
                        exc_info=result,
                    )
                    asset.owned_url = None
                    asset.status = MediaStatus.FAILED
        succeeded = sum(1 for asset in assets if asset.status is MediaStatus.SUCCEEDED)
        if assets:
            logger.info("Ingested %d/%d media assets", succeeded, len(assets))
        return assets

    async def rewrite_html(self, html: str, origin: Optional[str]) -> Tuple[str, List[MediaAsset]]:
        """Ingest images embedded in rich text and point them at their new locations."""
        soup = BeautifulSoup(html, "html.parser")
        images = soup.find_all("img")
        references = [(img.get("src") or img.get("data-src") or "").strip() for img in images]
        assets = await self.ingest(references, origin)
        by_reference = {asset.original_url: asset for asset in assets}
        for img, reference in zip(images, references):
            asset = by_reference.get(reference)
            if asset is None:
                continue
            img["src"] = asset.effective_url
            for attribute in ("data-src", "srcset", "data-srcset", "sizes"):
                if attribute in img.attrs:
                    del img[attribute]
        return str(soup), assets

    def _ingest_one(self, asset: MediaAsset) -> None:
        max_attempts = self.config.media_max_retries + 1
        for attempt in range(1, max_attempts + 1):
            asset.attempts = attempt
            try:
                asset.owned_url = self._transfer(asset.resolved_url)
            except MediaFailure as exc:
                logger.warning(
                    "Attempt %d/%d for %s failed: %s",
                    attempt,
                    max_attempts,
                    asset.resolved_url,
                    exc,
                )
            except Exception:  # pylint: disable=broad-except
                logger.exception(
                    "Attempt %d/%d for %s raised unexpectedly",
                    attempt,
                    max_attempts,
                    asset.resolved_url,
                )
            else:
                asset.status = MediaStatus.SUCCEEDED
                logger.debug("Ingested %s -> %s", asset.resolved_url, asset.owned_url)
                return
            if attempt < max_attempts and self.config.media_retry_delay:
                time.sleep(self.config.media_retry_delay * attempt)
        asset.owned_url = None
        asset.status = MediaStatus.FAILED
        logger.warning("Giving up on %s; keeping the original URL", asset.resolved_url)

    def _download(self, session: requests.Session, url: str, destination: Path) -> Tuple[str, bytes]:
        """Stream ``url`` into ``destination``; returns the Content-Type and leading bytes."""
        deadline = time.monotonic() + self.config.media_timeout
        try:
            response = session.get(
                url,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.media_timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            raise MediaFailure(f"Failed to fetch {url}: {exc}") from exc

        with response:
            if response.status_code >= 400:
                raise MediaFailure(f"{url} responded with HTTP {response.status_code}")
            content_type = response.headers.get("Content-Type", "")
            if content_type.lower().startswith("text/"):
                raise MediaFailure(f"{url} is not an image (Content-Type={content_type})")
            size = 0
            head = b""
            try:
                with destination.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if time.monotonic() > deadline:
                            raise MediaFailure(f"{url} exceeded the download deadline")
                        if not chunk:
                            continue
                        size += len(chunk)
                        if size > self.config.max_media_bytes:
                            raise MediaFailure(
                                f"{url} is larger than {self.config.max_media_bytes} bytes"
                            )
                        if len(head) < _SIGNATURE_BYTES:
                            head += chunk[: _SIGNATURE_BYTES - len(head)]
                        handle.write(chunk)
            except requests.RequestException as exc:
                raise MediaFailure(f"Failed while reading {url}: {exc}") from exc
            except OSError as exc:
                raise MediaFailure(f"Failed to buffer {url}: {exc}") from exc
        if not size:
            raise MediaFailure(f"{url} returned an empty body")
        return content_type, head

    def _transfer(self, url: str) -> str:
        """Download one resource to a temporary file and upload it to owned storage."""
        try:
            fd, name = tempfile.mkstemp(prefix="recipe-image-", dir=self.temp_dir)
        except OSError as exc:
            raise MediaFailure(f"Could not create a temporary file: {exc}") from exc
        os.close(fd)
        temp_path = Path(name)
        try:
            with self._session_factory() as session:
                content_type, head = self._download(session, url, temp_path)
            extension, media_type = classify_media(content_type, url, head)
            key = build_object_key(self.config.key_prefix, extension, url)
            with temp_path.open("rb") as body:
                return self.store.put(body, key, media_type)
        finally:
            temp_path.unlink(missing_ok=True)
