"""Fetch raw page markup over HTTP with size, time and content-type limits."""

from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import UnicodeDammit

from .config import ImportConfig
from .errors import FetchFailure, FetchFailureReason
from .models import SourceDocument

logger = logging.getLogger("recipe_import")

TEXT_CONTENT_TYPES = (
    "text/html",
    "application/xhtml+xml",
    "application/xml",
    "text/xml",
    "text/plain",
)
_CHUNK_SIZE = 64 * 1024


def normalize_url(url: str) -> str:
    """Trim a URL and assume https:// when no protocol is given."""
    url = (url or "").strip()
    if not url:
        raise FetchFailure(FetchFailureReason.INVALID_URL, "URL is empty")
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise FetchFailure(FetchFailureReason.INVALID_URL, f"{url}: {exc}") from exc
    if not parsed.netloc:
        raise FetchFailure(FetchFailureReason.INVALID_URL, f"URL has no host: {url}")
    return url


def _is_text_content_type(content_type: str) -> bool:
    media_type = content_type.split(";")[0].strip().lower()
    return not media_type or media_type in TEXT_CONTENT_TYPES


def _declared_charset(content_type: str) -> Optional[str]:
    for part in content_type.split(";")[1:]:
        key, _, value = part.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return None


def _read_capped(response: requests.Response, url: str, limit: int, deadline: float) -> bytes:
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise FetchFailure(
            FetchFailureReason.TOO_LARGE,
            f"{url} declares {declared} bytes (limit {limit})",
        )
    buffer = bytearray()
    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
        if time.monotonic() > deadline:
            raise FetchFailure(FetchFailureReason.TIMEOUT, f"{url} exceeded the fetch deadline")
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise FetchFailure(
                FetchFailureReason.TOO_LARGE,
                f"{url} returned more than {limit} bytes",
            )
    return bytes(buffer)


def fetch(
    url: str,
    config: ImportConfig,
    session: Optional[requests.Session] = None,
) -> SourceDocument:
    """Issue a single GET for ``url`` and return its markup as a SourceDocument."""
    url = normalize_url(url)
    http = session or requests.Session()
    headers = {"User-Agent": config.user_agent, "Accept": config.accept}
    deadline = time.monotonic() + config.fetch_timeout

    logger.info("Fetching HTML from %s", url)
    try:
        response = http.get(
            url,
            headers=headers,
            timeout=config.fetch_timeout,
            stream=True,
            allow_redirects=True,
        )
    except requests.Timeout as exc:
        raise FetchFailure(FetchFailureReason.TIMEOUT, f"{url}: {exc}") from exc
    except requests.RequestException as exc:
        raise FetchFailure(FetchFailureReason.NETWORK_ERROR, f"{url}: {exc}") from exc

    try:
        if not 200 <= response.status_code < 400:
            raise FetchFailure(
                FetchFailureReason.BAD_STATUS,
                f"{url} responded with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("Content-Type", "")
        if not _is_text_content_type(content_type):
            raise FetchFailure(
                FetchFailureReason.NOT_TEXT,
                f"{url} returned unsupported Content-Type {content_type!r}",
            )
        try:
            raw = _read_capped(response, url, config.max_document_bytes, deadline)
        except requests.Timeout as exc:
            raise FetchFailure(FetchFailureReason.TIMEOUT, f"{url}: {exc}") from exc
        except requests.RequestException as exc:
            raise FetchFailure(FetchFailureReason.NETWORK_ERROR, f"{url}: {exc}") from exc
    finally:
        response.close()

    charset = _declared_charset(content_type)
    dammit = UnicodeDammit(raw, known_definite_encodings=[charset] if charset else [], is_html=True)
    markup = dammit.unicode_markup
    if markup is None:
        raise FetchFailure(FetchFailureReason.NOT_TEXT, f"{url} could not be decoded as text")
    if not markup.strip():
        raise FetchFailure(FetchFailureReason.NOT_TEXT, f"{url} returned an empty document")

    logger.info("Fetched %s (%d characters)", url, len(markup))
    return SourceDocument(
        origin=response.url or url,
        raw_markup=markup,
        fetched_at=dt.datetime.now(dt.timezone.utc),
    )


def source_from_text(text: str) -> SourceDocument:
    """Wrap pasted HTML or plain text as a SourceDocument without an origin."""
    return SourceDocument(
        origin=None,
        raw_markup=text,
        fetched_at=dt.datetime.now(dt.timezone.utc),
    )
