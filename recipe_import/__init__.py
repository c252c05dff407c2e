"""Import recipes from web pages or pasted text into validated records."""

from .config import ImportConfig
from .errors import (
    ExtractionFailure,
    FetchFailure,
    ImportFailure,
    MediaFailure,
    NoRecipeFound,
    NormalizationFailure,
)
from .models import MediaAsset, MediaStatus, NormalizedRecipe, Tag
from .pipeline import RecipeImporter

__all__ = [
    "ExtractionFailure",
    "FetchFailure",
    "ImportConfig",
    "ImportFailure",
    "MediaAsset",
    "MediaFailure",
    "MediaStatus",
    "NoRecipeFound",
    "NormalizationFailure",
    "NormalizedRecipe",
    "RecipeImporter",
    "Tag",
]
