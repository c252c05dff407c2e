"""Coerce an extracted draft into a strictly typed recipe record."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_IMAGE
from .errors import NormalizationFailure
from .extraction import coerce_positive_int
from .models import NormalizedRecipe, RecipeDraft, Tag

logger = logging.getLogger("recipe_import")


def resolve_tags(names: Iterable[str], vocabulary: Sequence[Tag]) -> List[str]:
    """Map tag names to known tag ids case-insensitively; unknown names are dropped."""
    by_name: Dict[str, str] = {tag.name.strip().lower(): tag.id for tag in vocabulary}
    resolved: List[str] = []
    for name in names:
        tag_id = by_name.get(name.strip().lower())
        if tag_id is None:
            logger.debug("Tag %r is not in the vocabulary, skipping", name)
            continue
        if tag_id not in resolved:
            resolved.append(tag_id)
    return resolved


def _clean_lines(lines: Iterable[str]) -> List[str]:
    return [line.strip() for line in lines if isinstance(line, str) and line.strip()]


def normalize(
    draft: RecipeDraft,
    vocabulary: Sequence[Tag],
    source_url: Optional[str] = None,
    default_image: str = DEFAULT_IMAGE,
) -> NormalizedRecipe:
    """Validate mandatory fields, resolve tags and fill defaults."""
    title = (draft.title or "").strip()
    ingredients = _clean_lines(draft.ingredients)
    instructions = _clean_lines(draft.instructions)
    missing = [
        name
        for name, value in (
            ("title", title),
            ("ingredients", ingredients),
            ("instructions", instructions),
        )
        if not value
    ]
    if missing:
        raise NormalizationFailure(missing)

    tag_ids = resolve_tags(draft.tags, vocabulary)
    if len(tag_ids) < len(draft.tags):
        logger.info("Kept %d of %d suggested tags", len(tag_ids), len(draft.tags))

    image_url = (draft.hero_image_url or "").strip()
    if not image_url or image_url.lower() in ("default", default_image.lower()):
        image_url = default_image
    return NormalizedRecipe(
        title=title,
        description=(draft.description or "").strip(),
        ingredients=ingredients,
        instructions=instructions,
        cooking_time_minutes=coerce_positive_int(draft.cooking_time_minutes),
        servings=coerce_positive_int(draft.servings),
        hero_image_url=image_url,
        tag_ids=tag_ids,
        full_text=draft.full_text,
        source_url=source_url,
        original_image_url=None if image_url == default_image else image_url,
    )
