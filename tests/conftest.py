from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
import requests

from recipe_import.config import ImportConfig
from recipe_import.errors import MediaFailure
from recipe_import.models import Tag

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 600
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 600


class FakeResponse:
    def __init__(
        self,
        body: Union[bytes, str] = b"",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        url: str = "",
        error_after_chunks: Optional[Exception] = None,
    ) -> None:
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Type": "text/html; charset=utf-8"}
        self.url = url
        self.error_after_chunks = error_after_chunks
        self.closed = False

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]
        if self.error_after_chunks is not None:
            raise self.error_after_chunks

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


Route = Union[FakeResponse, Exception, Callable[[], Union[FakeResponse, Exception]]]


class FakeSession:
    """Stands in for requests.Session, answering from a route table."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None) -> None:
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        with self._lock:
            self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route for {url}")
        if callable(route) and not isinstance(route, FakeResponse):
            route = route()
        if isinstance(route, Exception):
            raise route
        if not route.url:
            route.url = url
        return route

    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]

    def close(self) -> None:
        pass

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc_info) -> None:
        pass


class FakeExtractor:
    """Returns canned responses and records every request."""

    def __init__(self, response: Union[str, dict, Exception]) -> None:
        self.response = response
        self.calls: List[Dict[str, str]] = []

    def complete_json(self, system_instruction: str, text: str, schema_hint: str) -> str:
        self.calls.append(
            {"system_instruction": system_instruction, "text": text, "schema_hint": schema_hint}
        )
        if isinstance(self.response, Exception):
            raise self.response
        if isinstance(self.response, dict):
            return json.dumps(self.response)
        return self.response


class FakeObjectStore:
    """In-memory append-only store served from a fake CDN."""

    def __init__(self, base_url: str = "https://cdn.example.net", failures: int = 0) -> None:
        self.base_url = base_url
        self.failures = failures
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.put_calls = 0
        self._lock = threading.Lock()

    def owns(self, url: str) -> bool:
        return url.startswith(self.base_url + "/")

    def put(self, body, key: str, content_type: str) -> str:
        with self._lock:
            self.put_calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise MediaFailure("storage unavailable")
            assert key not in self.objects
            self.objects[key] = (body.read(), content_type)
        return f"{self.base_url}/{key}"


@pytest.fixture
def config() -> ImportConfig:
    return ImportConfig(media_retry_delay=0.0)


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def tags() -> List[Tag]:
    return [
        Tag(id="t-dessert", name="Dessert"),
        Tag(id="t-chocolate", name="Chocolate"),
        Tag(id="t-quick", name="Quick"),
    ]


@pytest.fixture
def recipe_payload() -> dict:
    return {
        "title": "Chocolate Chip Cookies",
        "description": "Chewy cookies.",
        "ingredients": ["2 cups flour", "1 cup chocolate chips"],
        "instructions": ["Mix everything.", "Bake at 350F for 12 minutes."],
        "cookingTimeMinutes": "25 minutes",
        "servings": 24,
        "imageUrl": "/img/cookies.jpg",
        "tags": ["dessert", "CHOCOLATE", "vegan"],
    }
