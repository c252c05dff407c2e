"""High-level orchestration: retrieve, reduce, extract, normalize, ingest media."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests

from .config import ImportConfig
from .content import reduce_markup
from .errors import FetchFailure, FetchFailureReason, ImportFailure, NoRecipeFound
from .extraction import extract
from .images import MediaIngestor
from .llm import Extractor
from .models import ExtractionMiss, NormalizedRecipe, SourceDocument, Tag
from .normalize import normalize
from .retriever import fetch, source_from_text
from .storage import ObjectStore

logger = logging.getLogger("recipe_import")


class RecipeImporter:
    """Runs one import per call; concurrent calls share no mutable state."""

    def __init__(
        self,
        config: ImportConfig,
        extractor: Extractor,
        store: ObjectStore,
        tags: Sequence[Tag] = (),
        session_factory: Callable[[], requests.Session] = requests.Session,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.extractor = extractor
        self.tags: List[Tag] = list(tags)
        self._session_factory = session_factory
        self.media = MediaIngestor(store, config, session_factory, temp_dir)

    async def import_from_url(self, url: str) -> NormalizedRecipe:
        """Fetch a recipe page and turn it into a normalized recipe."""
        document = await asyncio.to_thread(self._fetch, url)
        return await self._run(document)

    async def import_from_text(self, text: str) -> NormalizedRecipe:
        """Turn pasted HTML or plain text into a normalized recipe."""
        if not text or not text.strip():
            raise ImportFailure("Pasted content is empty", "Content is required.")
        size = len(text.encode("utf-8"))
        if size > self.config.max_document_bytes:
            raise FetchFailure(
                FetchFailureReason.TOO_LARGE,
                f"Pasted content is {size} bytes (limit {self.config.max_document_bytes})",
            )
        logger.info("Processing pasted content (%d characters)", len(text))
        return await self._run(source_from_text(text))

    def _fetch(self, url: str) -> SourceDocument:
        with self._session_factory() as session:
            return fetch(url, self.config, session=session)

    async def _run(self, document: SourceDocument) -> NormalizedRecipe:
        start = time.perf_counter()
        reduced = await asyncio.to_thread(
            reduce_markup, document.raw_markup, self.config.min_region_chars
        )
        tag_names = [tag.name for tag in self.tags]

        extract_start = time.perf_counter()
        result = await asyncio.to_thread(
            extract, reduced, document.origin, tag_names, self.extractor, self.config
        )
        extract_elapsed = time.perf_counter() - extract_start
        if isinstance(result, ExtractionMiss):
            raise NoRecipeFound(result.reason)

        recipe = normalize(
            result,
            self.tags,
            source_url=document.origin,
            default_image=self.config.default_image,
        )
        await self._ingest_media(recipe, document.origin)

        logger.debug(
            "Imported %r in %.2fs (extraction: %.2fs)",
            recipe.title,
            time.perf_counter() - start,
            extract_elapsed,
        )
        return recipe

    async def _ingest_media(self, recipe: NormalizedRecipe, origin: Optional[str]) -> None:
        if recipe.hero_image_url != self.config.default_image:
            assets = await self.media.ingest([recipe.hero_image_url], origin)
            recipe.media.extend(assets)
            if assets:
                recipe.hero_image_url = assets[0].effective_url

        if self.config.ingest_full_text_media and recipe.full_text:
            recipe.full_text, embedded = await self.media.rewrite_html(recipe.full_text, origin)
            recipe.media.extend(embedded)
