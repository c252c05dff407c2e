"""Command-line entry point for importing recipes."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, List, Sequence

from dotenv import load_dotenv

from .config import ImportConfig
from .errors import ImportFailure
from .llm import build_extractor
from .models import NormalizedRecipe, Tag, load_tags
from .pipeline import RecipeImporter
from .storage import build_object_store

logger = logging.getLogger("recipe_import.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("url", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--tags",
        type=Path,
        default=None,
        help='JSON file holding the tag vocabulary as [{"id": ..., "name": ...}]',
    )
    parser.add_argument(
        "--backend",
        choices=("openai", "mlx"),
        default=None,
        help="Structured-extraction backend (default: RECIPE_IMPORT_BACKEND or openai)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model identifier for the extraction backend",
    )
    parser.add_argument(
        "--max-chars",
        type=int,
        default=None,
        help="Truncate reduced page text to this many characters before extraction",
    )
    parser.add_argument(
        "--store-dir",
        default=None,
        help="Store images in this directory when no S3 bucket is configured",
    )
    parser.add_argument(
        "--store-url",
        default=None,
        help="Public base URL that serves --store-dir",
    )
    parser.add_argument(
        "--full-text-media",
        action="store_true",
        help="Also re-host images embedded in the full recipe text",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import recipes from web pages or pasted text as structured JSON.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    url_parser = subparsers.add_parser("url", help="Import recipes from one or more URLs")
    url_parser.add_argument("urls", nargs="+", help="One or more recipe page URLs")
    _add_common_arguments(url_parser)

    text_parser = subparsers.add_parser("text", help="Import a recipe from pasted HTML or text")
    text_parser.add_argument("path", help="File holding the pasted content, or - for stdin")
    _add_common_arguments(text_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ImportConfig:
    return ImportConfig.from_env(
        extraction_backend=args.backend,
        model_id=args.model,
        max_extraction_chars=args.max_chars,
        store_dir=args.store_dir,
        store_base_url=args.store_url,
        ingest_full_text_media=True if args.full_text_media else None,
    )


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


async def _import_urls(importer: RecipeImporter, urls: List[str]) -> List[NormalizedRecipe]:
    results = await asyncio.gather(
        *(importer.import_from_url(url) for url in urls),
        return_exceptions=True,
    )
    recipes: List[NormalizedRecipe] = []
    for url, result in zip(urls, results):
        if isinstance(result, ImportFailure):
            logger.error("Failed to import %s: %s", url, result)
            print(f"{url}: {result.user_message}", file=sys.stderr)
        elif isinstance(result, Exception):
            logger.error("Unexpected error importing %s", url, exc_info=result)
        else:
            recipes.append(result)
    return recipes


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    tags: List[Tag] = load_tags(args.tags) if args.tags else []
    importer = RecipeImporter(config, build_extractor(config), build_object_store(config), tags)

    overall_start = time.perf_counter()
    if args.command == "url":
        recipes = asyncio.run(_import_urls(importer, args.urls))
        total = len(args.urls)
        json.dump([recipe.to_dict() for recipe in recipes], sys.stdout, indent=2)
    else:
        total = 1
        try:
            recipe = asyncio.run(importer.import_from_text(_read_text(args.path)))
        except ImportFailure as exc:
            logger.error("Failed to import pasted content: %s", exc)
            print(exc.user_message, file=sys.stderr)
            recipes = []
        else:
            recipes = [recipe]
            json.dump(recipe.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")

    logger.info(
        "Finished in %.2fs (%d/%d succeeded)",
        time.perf_counter() - overall_start,
        len(recipes),
        total,
    )
    return 0 if len(recipes) == total else 1


if __name__ == "__main__":
    sys.exit(main())
