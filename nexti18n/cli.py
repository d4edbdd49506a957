import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from nexti18n.app_config import (
    TRANSLATION_MODES,
    AppConfig,
    create_openai_client,
    load_app_config,
    parse_locale_list
)
from nexti18n.completion_client import CompletionClient
from nexti18n.errors import ConfigurationError
from nexti18n.logging_config import LOGGER_NAME
from nexti18n.pipeline import PipelineStage, run_pipeline


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="nexti18n",
        description="Refactor Next.js components to use translation lookups and translate the locale dictionaries."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: ./config.yaml)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        dest="dry_run",
        help="Report what would change without calling the model or writing files",
    )
    parser.add_argument(
        "--model", "-m",
        default=None,
        dest="model_name",
        help="OpenAI model to use",
    )
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=None,
        dest="max_concurrent_api_calls",
        help="Maximum number of requests in flight",
    )
    parser.add_argument(
        "--locale", "-l",
        default=None,
        dest="reference_locale",
        help="Reference locale the source text is written in",
    )
    parser.add_argument(
        "--additional-locales", "-a",
        default=None,
        dest="additional_locales",
        help='Comma-separated target locales, e.g. "en,fr,de"',
    )
    parser.add_argument(
        "--folder", "-f",
        default=None,
        dest="locale_folder",
        help="Folder holding one sub-folder per locale",
    )
    parser.add_argument(
        "--source",
        nargs="+",
        default=None,
        dest="source_roots",
        help="Directories scanned for components to refactor",
    )
    parser.add_argument(
        "--translation-mode",
        choices=TRANSLATION_MODES,
        default=None,
        dest="translation_mode",
        help="Translate missing keys one by one (leaf) or in chunks (batch)",
    )
    halves = parser.add_mutually_exclusive_group()
    halves.add_argument(
        "--translate-only",
        action="store_true",
        help="Skip refactoring and only fill in missing translations",
    )
    halves.add_argument(
        "--refactor-only",
        action="store_true",
        help="Refactor components and merge new keys without translating",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at DEBUG level",
    )
    return parser.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Map parsed flags onto ``AppConfig`` fields. Unset flags map to ``None``."""
    overrides = {
        "dry_run": args.dry_run,
        "model_name": args.model_name,
        "max_concurrent_api_calls": args.max_concurrent_api_calls,
        "reference_locale": args.reference_locale,
        "locale_folder": args.locale_folder,
        "translation_mode": args.translation_mode,
        "additional_locales": parse_locale_list(args.additional_locales) if args.additional_locales else None,
        "source_roots": tuple(args.source_roots) if args.source_roots else None,
    }
    if args.translate_only:
        overrides["refactor"] = False
    if args.refactor_only:
        overrides["translate"] = False
    return overrides


async def run(config: AppConfig) -> int:
    openai_client = create_openai_client(config)
    client = CompletionClient.from_config(config, openai_client) if openai_client is not None else None
    try:
        report = await run_pipeline(config, client)
    finally:
        if openai_client is not None:
            await openai_client.close()
    return 0 if report.stage == PipelineStage.DONE else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_app_config(config_file=args.config, overrides=overrides_from_args(args))
    except ConfigurationError as config_exc:
        print(f"Error: {config_exc}", file=sys.stderr)
        return 1

    if args.verbose:
        logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG)

    try:
        return asyncio.run(run(config))
    except ConfigurationError as config_exc:
        logging.getLogger(LOGGER_NAME).error("Configuration error: %s", config_exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
