from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

import pytest

from conftest import JPEG_BYTES, FakeExtractor, FakeObjectStore, FakeResponse, FakeSession
from recipe_import.config import ImportConfig
from recipe_import.errors import (
    ExtractionFailure,
    FetchFailure,
    FetchFailureReason,
    ImportFailure,
    NoRecipeFound,
)
from recipe_import.models import MediaStatus, Tag
from recipe_import.pipeline import RecipeImporter

PAGE_URL = "https://example.com/blog/cookies"
IMAGE_URL = "https://example.com/img/cookies.jpg"

RECIPE_PAGE = """
<html><body>
<nav>Home</nav>
<article>
  <h1>Chocolate Chip Cookies</h1>
  <img src="/img/cookies.jpg" alt="Cookies on a tray">
  <h2>Ingredients</h2><ul><li>2 cups flour</li><li>1 cup chocolate chips</li></ul>
  <h2>Instructions</h2><ol><li>Mix everything.</li><li>Bake at 350F for 12 minutes.</li></ol>
  <p>These cookies are chewy in the middle and crisp at the edges, and they keep for a week.</p>
</article>
<script>trackPageView()</script>
</body></html>
"""

NEWS_PAGE = """
<html><body><article><h1>Council approves new bridge</h1>
<p>The city council voted on Tuesday to fund a new pedestrian bridge across the river.</p>
</article></body></html>
"""


def _importer(config, extractor, store, tags, session, tmp_path: Path) -> RecipeImporter:
    return RecipeImporter(
        config,
        extractor,
        store,
        tags,
        session_factory=lambda: session,
        temp_dir=tmp_path,
    )


def _image_route() -> FakeResponse:
    return FakeResponse(JPEG_BYTES, headers={"Content-Type": "image/jpeg"})


def test_clean_recipe_page(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    session = FakeSession({PAGE_URL: FakeResponse(RECIPE_PAGE), IMAGE_URL: _image_route()})
    extractor = FakeExtractor(recipe_payload)

    recipe = asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert recipe.title == "Chocolate Chip Cookies"
    assert recipe.ingredients and recipe.instructions
    assert recipe.cooking_time_minutes == 25
    assert recipe.tag_ids == ["t-dessert", "t-chocolate"]
    assert recipe.source_url == PAGE_URL
    assert recipe.original_image_url == "/img/cookies.jpg"
    assert recipe.hero_image_url.startswith("https://cdn.example.net/recipe-images/")
    (asset,) = recipe.media
    assert asset.status is MediaStatus.SUCCEEDED
    assert asset.owned_url == recipe.hero_image_url
    assert asset.resolved_url == IMAGE_URL

    sent = extractor.calls[0]["text"]
    assert "trackPageView" not in sent
    assert "[img: Cookies on a tray]" in sent
    assert "Dessert" in extractor.calls[0]["schema_hint"]
    assert list(tmp_path.iterdir()) == []


def test_non_recipe_page_reports_no_recipe(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], tmp_path: Path
) -> None:
    session = FakeSession({PAGE_URL: FakeResponse(NEWS_PAGE)})
    extractor = FakeExtractor({"error": "No recipe found"})

    with pytest.raises(NoRecipeFound) as excinfo:
        asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert "No recipe found" in excinfo.value.user_message
    assert store.objects == {}


def test_oversized_page_is_truncated_not_rejected(
    store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    config = ImportConfig(media_retry_delay=0.0, max_extraction_chars=20_000)
    filler = "<p>" + "Whisk the eggs until pale and fluffy. " * 20 + "</p>"
    page = "<html><body><article>" + filler * 700 + "</article></body></html>"
    assert len(page) > 500_000
    recipe_payload["imageUrl"] = ""
    session = FakeSession({PAGE_URL: FakeResponse(page)})
    extractor = FakeExtractor(recipe_payload)

    recipe = asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert recipe.title == "Chocolate Chip Cookies"
    assert recipe.hero_image_url == config.default_image
    assert recipe.media == []
    sent = extractor.calls[0]["text"]
    assert sent.endswith(config.truncation_marker)
    assert len(sent) < 20_000 + 200


def test_broken_image_degrades_without_aborting(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    recipe_payload["imageUrl"] = "http://[broken/cookies.jpg"
    session = FakeSession({PAGE_URL: FakeResponse(RECIPE_PAGE)})
    extractor = FakeExtractor(recipe_payload)

    recipe = asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert recipe.ingredients == ["2 cups flour", "1 cup chocolate chips"]
    (asset,) = recipe.media
    assert asset.status is MediaStatus.FAILED
    assert asset.owned_url is None
    assert recipe.hero_image_url == "http://[broken/cookies.jpg"
    assert session.urls() == [PAGE_URL]


def test_unreachable_image_falls_back_to_resolved_url(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    session = FakeSession({PAGE_URL: FakeResponse(RECIPE_PAGE)})

    recipe = asyncio.run(
        _importer(config, FakeExtractor(recipe_payload), store, tags, session, tmp_path).import_from_url(PAGE_URL)
    )

    assert recipe.hero_image_url == IMAGE_URL
    assert recipe.media[0].attempts == 3
    assert recipe.media[0].status is MediaStatus.FAILED


def test_fetch_failure_aborts_before_extraction(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    session = FakeSession({PAGE_URL: FakeResponse("gone", status_code=404)})
    extractor = FakeExtractor(recipe_payload)

    with pytest.raises(FetchFailure) as excinfo:
        asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert excinfo.value.reason is FetchFailureReason.BAD_STATUS
    assert extractor.calls == []


def test_malformed_extraction_output_aborts(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], tmp_path: Path
) -> None:
    session = FakeSession({PAGE_URL: FakeResponse(RECIPE_PAGE)})

    with pytest.raises(ExtractionFailure):
        asyncio.run(
            _importer(config, FakeExtractor("Sure! Here is the recipe"), store, tags, session, tmp_path)
            .import_from_url(PAGE_URL)
        )


def test_import_from_text_without_origin(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    session = FakeSession()
    extractor = FakeExtractor(recipe_payload)
    pasted = "Chocolate Chip Cookies\n2 cups flour\n1 cup chocolate chips\nMix. Bake."

    recipe = asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_text(pasted))

    assert recipe.source_url is None
    assert "Source URL" not in extractor.calls[0]["text"]
    assert recipe.media[0].status is MediaStatus.FAILED
    assert recipe.hero_image_url == "/img/cookies.jpg"
    assert session.calls == []


def test_import_from_text_ingests_absolute_image(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    recipe_payload["imageUrl"] = IMAGE_URL
    session = FakeSession({IMAGE_URL: _image_route()})

    recipe = asyncio.run(
        _importer(config, FakeExtractor(recipe_payload), store, tags, session, tmp_path).import_from_text(
            "<p>Cookies</p>"
        )
    )

    assert recipe.media[0].status is MediaStatus.SUCCEEDED
    assert store.owns(recipe.hero_image_url)


@pytest.mark.parametrize("text", ["", "   \n"])
def test_import_from_text_requires_content(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], tmp_path: Path, text: str
) -> None:
    extractor = FakeExtractor({"error": "No recipe found"})

    with pytest.raises(ImportFailure):
        asyncio.run(_importer(config, extractor, store, tags, FakeSession(), tmp_path).import_from_text(text))

    assert extractor.calls == []


def test_import_from_text_enforces_size_cap(
    store: FakeObjectStore, tags: List[Tag], tmp_path: Path
) -> None:
    config = ImportConfig(max_document_bytes=100)

    with pytest.raises(FetchFailure) as excinfo:
        asyncio.run(
            _importer(config, FakeExtractor({}), store, tags, FakeSession(), tmp_path).import_from_text("x" * 101)
        )

    assert excinfo.value.reason is FetchFailureReason.TOO_LARGE


def test_full_text_media_is_rewritten_when_enabled(
    store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    config = ImportConfig(media_retry_delay=0.0, ingest_full_text_media=True)
    recipe_payload["imageUrl"] = ""
    recipe_payload["fullText"] = '<p>Step 1</p><img src="/img/step1.jpg">'
    session = FakeSession(
        {
            PAGE_URL: FakeResponse(RECIPE_PAGE),
            "https://example.com/img/step1.jpg": _image_route(),
        }
    )
    extractor = FakeExtractor(recipe_payload)

    recipe = asyncio.run(_importer(config, extractor, store, tags, session, tmp_path).import_from_url(PAGE_URL))

    assert "fullText" in extractor.calls[0]["schema_hint"]
    assert "https://cdn.example.net/recipe-images/" in recipe.full_text
    assert [asset.status for asset in recipe.media] == [MediaStatus.SUCCEEDED]


def test_full_text_is_untouched_when_disabled(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    recipe_payload["imageUrl"] = ""
    recipe_payload["fullText"] = '<img src="/img/step1.jpg">'
    session = FakeSession({PAGE_URL: FakeResponse(RECIPE_PAGE)})

    recipe = asyncio.run(
        _importer(config, FakeExtractor(recipe_payload), store, tags, session, tmp_path).import_from_url(PAGE_URL)
    )

    assert recipe.full_text == '<img src="/img/step1.jpg">'
    assert recipe.media == []


def test_concurrent_imports_do_not_share_state(
    config: ImportConfig, store: FakeObjectStore, tags: List[Tag], recipe_payload: dict, tmp_path: Path
) -> None:
    other_url = "https://example.com/blog/brownies"
    session = FakeSession(
        {PAGE_URL: FakeResponse(RECIPE_PAGE), other_url: FakeResponse(RECIPE_PAGE), IMAGE_URL: _image_route()}
    )
    importer = _importer(config, FakeExtractor(recipe_payload), store, tags, session, tmp_path)

    async def run_both():
        return await asyncio.gather(importer.import_from_url(PAGE_URL), importer.import_from_url(other_url))

    first, second = asyncio.run(run_both())

    assert first.source_url == PAGE_URL
    assert second.source_url == other_url
    assert first.media is not second.media
    assert first.hero_image_url != second.hero_image_url
    assert len(store.objects) == 2
