"""Reduce raw page markup to the text of its main content region."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Tuple

from bs4 import BeautifulSoup, Comment
from bs4.element import Tag
from readability import Document
from readability.readability import Unparseable

from .models import ReducedContent

logger = logging.getLogger("recipe_import")

_MIN_REGION_CHARS = 200
_REMOVED_TAGS = ["script", "style", "noscript", "iframe", "svg", "button"]
_CHROME_TAGS = ["nav", "header", "footer", "aside"]
_PROTECTED_TAGS = {"html", "body", "main", "article"}
_BOILERPLATE_PATTERN = re.compile(
    r"social|share|comment|widget|sidebar|banner|advert|(?:^|[\s_-])ads?(?:$|[\s_-])",
    re.IGNORECASE,
)
_WHITESPACE_PATTERN = re.compile(r"\s+")
_LEFTOVER_BLOCK_PATTERN = re.compile(
    r"<script\b.*?</script\s*>|<style\b.*?</style\s*>|<!--.*?-->",
    re.IGNORECASE | re.DOTALL,
)
_LEFTOVER_MARKER_PATTERN = re.compile(r"</?(?:script|style)\b[^>]*>?|<!--|-->", re.IGNORECASE)

_RECIPE_SELECTORS = (
    '[itemtype*="Recipe"]',
    '[class*="recipe-container"]',
    '[class*="recipe-content"]',
    '[id*="recipe-container"]',
    '[id*="recipe-content"]',
    ".recipe",
    "#recipe",
)
_CONTENT_SELECTORS = (
    ".main-content",
    "#main-content",
    ".main-article",
    ".content-area",
    ".post-content",
    ".entry-content",
    ".content",
    "#content",
)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def _region_text(element: Tag) -> str:
    return collapse_whitespace(element.get_text(" "))


def _strip_leftover_markup(text: str) -> str:
    """Remove script, style and comment markup that entity decoding brought back."""
    if "<" not in text and "-->" not in text:
        return text
    text = _LEFTOVER_BLOCK_PATTERN.sub(" ", text)
    return collapse_whitespace(_LEFTOVER_MARKER_PATTERN.sub(" ", text))


def _is_boilerplate(tag: Tag) -> bool:
    if tag.name in _PROTECTED_TAGS:
        return False
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    markers = " ".join(classes) + " " + (tag.get("id") or "")
    return bool(markers.strip()) and bool(_BOILERPLATE_PATTERN.search(markers))


def _clean(soup: BeautifulSoup) -> BeautifulSoup:
    """Drop non-content subtrees, comments, boilerplate and images."""
    for tag in soup(_REMOVED_TAGS):
        tag.decompose()
    for tag in soup.select('[role="dialog"]'):
        tag.decompose()
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if _is_boilerplate(tag):
            tag.decompose()
    for img in soup.find_all("img"):
        alt = collapse_whitespace(img.get("alt") or "")
        if alt:
            img.replace_with(f"[img: {alt}]")
        else:
            img.decompose()
    return soup


def _iter_regions(soup: BeautifulSoup) -> Iterable[Tuple[str, Tag]]:
    """Yield candidate content regions in priority order."""
    articles = soup.find_all("article")
    if articles:
        yield "article", max(articles, key=lambda article: len(_region_text(article)))
    main = soup.find("main")
    if main is not None:
        yield "main", main
    for selector in _RECIPE_SELECTORS + _CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            yield selector, element
    instructions = soup.select_one('[itemprop="recipeInstructions"]')
    if instructions is not None and isinstance(instructions.parent, Tag):
        yield "recipeInstructions parent", instructions.parent


def _density_region(soup: BeautifulSoup, min_chars: int) -> Optional[str]:
    """Fall back on readability's text-density scoring."""
    try:
        summary_html = Document(str(soup)).summary(html_partial=True)
    except Unparseable as exc:
        logger.debug("Readability could not score the document: %s", exc)
        return None
    text = _region_text(BeautifulSoup(summary_html, "html.parser"))
    if len(text) >= min_chars:
        return text
    return None


def _body_text(soup: BeautifulSoup) -> str:
    body = soup.body or soup
    for tag in body(_CHROME_TAGS):
        tag.decompose()
    return _region_text(body)


def reduce_markup(markup: str, min_region_chars: int = _MIN_REGION_CHARS) -> ReducedContent:
    """Strip non-content markup and narrow the page to its main content region."""
    soup = _clean(BeautifulSoup(markup, "html.parser"))

    text: Optional[str] = None
    found = False
    for label, region in _iter_regions(soup):
        candidate = _region_text(region)
        if len(candidate) >= min_region_chars:
            logger.debug("Found main content using %s", label)
            text, found = candidate, True
            break

    if (
        text is None
        and soup.find(True) is not None
        and len(_region_text(soup)) >= min_region_chars
    ):
        text = _density_region(soup, min_region_chars)
        found = text is not None
        if found:
            logger.debug("Found main content by text density")

    if text is None:
        logger.debug("No specific content region found, using cleaned body")
        text = _body_text(soup)

    text = _strip_leftover_markup(text)

    # Output never grows relative to the input markup.
    if len(text) > len(markup):
        text = text[: len(markup)]

    if markup:
        logger.info(
            "Reduced markup from %d to %d characters (%d%%)",
            len(markup),
            len(text),
            round(len(text) * 100 / len(markup)),
        )
    return ReducedContent(text=text, main_region_found=found)
