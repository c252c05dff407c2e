"""Turn reduced page text into a recipe draft via the extraction capability."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, List, Optional, Sequence, Union

from .config import ImportConfig
from .errors import ExtractionFailure, ExtractionFailureReason
from .llm import Extractor, load_json_object
from .models import ExtractionMiss, RecipeDraft, ReducedContent

logger = logging.getLogger("recipe_import")

NO_RECIPE_SENTINEL = "No recipe found"

SYSTEM_INSTRUCTION = (
    "You are a specialized recipe extraction assistant. Extract complete recipe information "
    "from the provided web page text and return it as a single JSON object using only the "
    "fields described. Do not add commentary. If the content does not contain a recipe, "
    f'return exactly {{"error": "{NO_RECIPE_SENTINEL}"}} instead of any other text.'
)

_FIELD_LINES = (
    "- title: string (required) - The recipe title",
    "- description: string - A brief description of the recipe",
    "- ingredients: array of strings (required) - One entry per ingredient formatted as "
    "'[amount] [ingredient] (extra info, if needed)'. Keep the original order. Don't add "
    "substitutes. Use imperial units when both imperial and metric are given.",
    "- instructions: array of strings (required) - One entry per preparation step, in order",
    "- cookingTimeMinutes: number (optional) - Total cooking time in minutes. Omit if not found.",
    "- servings: number (optional) - Number of servings. Omit if not found.",
    "- imageUrl: string (optional) - URL of the main recipe image, usually the first image "
    'in the article. Use "" if there is no image.',
)
_FULL_TEXT_LINE = (
    "- fullText: string (optional) - The full recipe article as simple HTML, keeping <img> "
    "tags with their original src attributes."
)
_LEADING_INT_PATTERN = re.compile(r"^\s*\+?(\d+)")
_SECTION_KEYS = ("ingredients", "items", "steps", "instructions")


def truncate_text(text: str, limit: int, marker: str) -> str:
    """Keep the head of ``text`` so that text plus marker fits in ``limit`` characters."""
    if len(text) <= limit:
        return text
    suffix = f"\n{marker}"
    head = text[: max(limit - len(suffix), 0)]
    logger.info("Content exceeds %d characters (%d); truncating", limit, len(text))
    return head + suffix


def build_schema_hint(tag_names: Sequence[str], include_full_text: bool = False) -> str:
    """Describe the fixed output schema, including the closed tag vocabulary."""
    lines: List[str] = ["Return a valid JSON object with these fields:", *_FIELD_LINES]
    if tag_names:
        lines.append(
            "- tags: array of strings (optional) - Relevant tags chosen ONLY from this list: "
            + ", ".join(tag_names)
            + ". Never invent tags that are not in the list."
        )
    if include_full_text:
        lines.append(_FULL_TEXT_LINE)
    lines.append(
        "Maintain the original measurements and ingredient names. If the content doesn't "
        f'contain recipe information, return {{"error": "{NO_RECIPE_SENTINEL}"}}.'
    )
    return "\n".join(lines)


def build_user_payload(text: str, origin: Optional[str]) -> str:
    sections: List[str] = []
    if origin:
        sections.append(f"Source URL: {origin}")
    sections.append("Here's the content:\n" + text)
    return "\n\n".join(sections)


def coerce_text_list(value: Any) -> List[str]:
    """Flatten strings, ``{"text"}`` objects and ingredient sections into an ordered list."""
    if value is None or isinstance(value, bool):
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, (int, float)):
        return [str(value)]
    if isinstance(value, dict):
        for key in _SECTION_KEYS:
            if isinstance(value.get(key), list):
                return coerce_text_list(value[key])
        return coerce_text_list(value.get("text"))
    if isinstance(value, (list, tuple)):
        items: List[str] = []
        for item in value:
            items.extend(coerce_text_list(item))
        return items
    return []


def coerce_positive_int(value: Any) -> Optional[int]:
    """Read a positive integer from numbers or numeric-looking strings; otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        number = int(round(value))
    elif isinstance(value, str):
        match = _LEADING_INT_PATTERN.match(value)
        if not match:
            return None
        number = int(match.group(1))
    else:
        return None
    return number if number > 0 else None


def _coerce_tag_names(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    names: List[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name")
        if isinstance(item, str) and item.strip():
            names.append(item.strip())
    return names


def _coerce_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_response(raw: str) -> Union[RecipeDraft, ExtractionMiss]:
    """Validate the capability's output against the fixed recipe schema."""
    try:
        payload = load_json_object(raw)
    except ValueError as exc:
        raise ExtractionFailure(ExtractionFailureReason.MALFORMED_OUTPUT, str(exc)) from exc

    error = payload.get("error")
    if error:
        logger.info("Extraction reported no recipe: %s", error)
        return ExtractionMiss(reason=str(error))

    title = _coerce_str(payload.get("title"))
    ingredients = coerce_text_list(payload.get("ingredients"))
    instructions = coerce_text_list(payload.get("instructions"))
    missing = [
        name
        for name, present in (
            ("title", title),
            ("ingredients", ingredients),
            ("instructions", instructions),
        )
        if not present
    ]
    if missing:
        logger.info("Extraction response is missing %s", ", ".join(missing))
        return ExtractionMiss(reason="Missing required fields: " + ", ".join(missing))

    cooking_time = payload.get("cookingTimeMinutes", payload.get("cookingTime"))
    image_url = _coerce_str(payload.get("imageUrl", payload.get("heroImageUrl")))
    full_text = payload.get("fullText")
    return RecipeDraft(
        title=title,
        description=_coerce_str(payload.get("description")),
        ingredients=ingredients,
        instructions=instructions,
        cooking_time_minutes=coerce_positive_int(cooking_time),
        servings=coerce_positive_int(payload.get("servings")),
        hero_image_url=image_url or None,
        tags=_coerce_tag_names(payload.get("tags")),
        full_text=full_text if isinstance(full_text, str) and full_text.strip() else None,
    )


def extract(
    reduced: ReducedContent,
    origin: Optional[str],
    tag_names: Sequence[str],
    extractor: Extractor,
    config: ImportConfig,
) -> Union[RecipeDraft, ExtractionMiss]:
    """Run exactly one structured-extraction call over the reduced content."""
    if not reduced.text.strip():
        return ExtractionMiss(reason="No content to extract")

    text = truncate_text(reduced.text, config.max_extraction_chars, config.truncation_marker)
    schema_hint = build_schema_hint(tag_names, include_full_text=config.ingest_full_text_media)
    raw = extractor.complete_json(SYSTEM_INSTRUCTION, build_user_payload(text, origin), schema_hint)
    if not raw or not raw.strip():
        raise ExtractionFailure(ExtractionFailureReason.MALFORMED_OUTPUT, "Empty response")

    result = parse_response(raw)
    if isinstance(result, RecipeDraft):
        logger.info("Extracted recipe %r", result.title)
    return result
