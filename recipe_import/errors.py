"""Typed failures raised by the import pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence


class FetchFailureReason(str, Enum):
    TIMEOUT = "timeout"
    TOO_LARGE = "too_large"
    BAD_STATUS = "bad_status"
    NETWORK_ERROR = "network_error"
    NOT_TEXT = "not_text"
    INVALID_URL = "invalid_url"


class ExtractionFailureReason(str, Enum):
    MALFORMED_OUTPUT = "malformed_output"
    SERVICE_ERROR = "service_error"


class ImportFailure(Exception):
    """Base class for failures that abort an import."""

    user_message = "We couldn't import this recipe."

    def __init__(self, detail: str, user_message: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if user_message is not None:
            self.user_message = user_message


class FetchFailure(ImportFailure):
    user_message = "We couldn't fetch content from this URL."

    _MESSAGES = {
        FetchFailureReason.TIMEOUT: "The website took too long to respond. Please try again later.",
        FetchFailureReason.TOO_LARGE: "This page is too large to import.",
        FetchFailureReason.BAD_STATUS: "The website refused the request or the page doesn't exist.",
        FetchFailureReason.NOT_TEXT: "This URL doesn't point to a web page.",
        FetchFailureReason.INVALID_URL: "Please enter a valid URL.",
    }

    def __init__(
        self,
        reason: FetchFailureReason,
        detail: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(detail, self._MESSAGES.get(reason))
        self.reason = reason
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}"


class ExtractionFailure(ImportFailure):
    user_message = "We couldn't extract recipe data from this content."

    def __init__(self, reason: ExtractionFailureReason, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}"


class NoRecipeFound(ImportFailure):
    user_message = "No recipe found. Make sure the content contains a recipe."


class NormalizationFailure(ImportFailure):
    user_message = "The extracted recipe is missing a title, ingredients or instructions."

    def __init__(self, missing: Sequence[str]) -> None:
        super().__init__("missing required fields: " + ", ".join(missing))
        self.missing = tuple(missing)


class MediaFailure(Exception):
    """A single media download or upload attempt failed; never aborts an import."""
