"""Data models passed between the import pipeline stages."""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class SourceDocument:
    """Raw markup as retrieved from a URL or pasted by a user."""

    origin: Optional[str]
    raw_markup: str
    fetched_at: dt.datetime


@dataclass(frozen=True)
class ReducedContent:
    """Plain text left after stripping non-content markup."""

    text: str
    main_region_found: bool


@dataclass
class RecipeDraft:
    """Loosely validated recipe fields returned by the extraction capability."""

    title: str
    ingredients: List[str]
    instructions: List[str]
    description: str = ""
    cooking_time_minutes: Optional[int] = None
    servings: Optional[int] = None
    hero_image_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    full_text: Optional[str] = None


@dataclass(frozen=True)
class ExtractionMiss:
    """The capability reported that the content holds no recipe."""

    reason: str = "No recipe found"


@dataclass(frozen=True)
class Tag:
    """Entry of the externally curated tag vocabulary."""

    id: str
    name: str


class MediaStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class MediaAsset:
    """A single media reference and the outcome of ingesting it."""

    original_url: str
    resolved_url: str
    owned_url: Optional[str] = None
    attempts: int = 0
    status: MediaStatus = MediaStatus.PENDING

    @property
    def effective_url(self) -> str:
        """Owned location when ingested, otherwise the degraded fallback."""
        return self.owned_url or self.resolved_url or self.original_url


@dataclass
class NormalizedRecipe:
    """Strictly typed recipe ready to hand to the persistence store."""

    title: str
    description: str
    ingredients: List[str]
    instructions: List[str]
    cooking_time_minutes: Optional[int]
    servings: Optional[int]
    hero_image_url: str
    tag_ids: List[str] = field(default_factory=list)
    full_text: Optional[str] = None
    source_url: Optional[str] = None
    original_image_url: Optional[str] = None
    media: List[MediaAsset] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "cookingTimeMinutes": self.cooking_time_minutes,
            "servings": self.servings,
            "imageUrl": self.hero_image_url,
            "originalImageUrl": self.original_image_url,
            "tags": list(self.tag_ids),
            "fullText": self.full_text,
            "sourceUrl": self.source_url,
            "media": [
                {
                    "originalUrl": asset.original_url,
                    "resolvedUrl": asset.resolved_url,
                    "ownedUrl": asset.owned_url,
                    "attempts": asset.attempts,
                    "status": asset.status.value,
                }
                for asset in self.media
            ],
        }


def load_tags(path: Path) -> List[Tag]:
    """Read a tag vocabulary from a JSON list of ``{"id", "name"}`` objects."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"Tag vocabulary must be a JSON list: {path}")
    tags: List[Tag] = []
    for entry in payload:
        if not isinstance(entry, dict) or "id" not in entry or "name" not in entry:
            raise ValueError(f"Invalid tag entry in {path}: {entry!r}")
        tags.append(Tag(id=str(entry["id"]), name=str(entry["name"])))
    return tags
