"""
File refactor orchestrator.

Finds source files with untranslated user-facing text, asks the model to
rewrite each one with translation lookups, writes the rewritten code back and
collects the translation keys the new code actually uses.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

import tiktoken

from nexti18n.ai_contracts import TaskKind, parse_refactor_response
from nexti18n.completion_client import DEFAULT_MAX_RETRIES, CompletionClient
from nexti18n.concurrency import STRATEGY_POOL, run_concurrently
from nexti18n.errors import ContractViolationError, TransportError
from nexti18n.locale_tree import extract_used_keys
from nexti18n.prompts import build_refactor_prompt, build_refactor_retry_prompt

logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset({"node_modules", ".next", ".git", "dist", "build"})
VALID_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx")

# Markup-like syntax: a JSX/HTML tag opening or a closing jsx fragment marker.
_MARKUP_PATTERN = re.compile(r'<[a-zA-Z]|jsx>')
# Files already wired to the lookup API are left alone.
_LOOKUP_API_PATTERN = re.compile(r'useTranslation|(?<![\w$])t\(')

STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class FileRefactorOutcome:
    file_path: str
    status: str
    confirmed_keys: Dict[str, str] = field(default_factory=dict)
    discarded_keys: Set[str] = field(default_factory=set)
    error: Optional[str] = None


@dataclass
class RefactorReport:
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    confirmed_keys: Dict[str, str] = field(default_factory=dict)


def count_tokens(text: str, model_name: str = 'gpt-4o-mini') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` may try to download model data, which is
    not possible everywhere (e.g. in CI). If that fails the function falls back
    to ``cl100k_base`` and, as a last resort, to a whitespace split.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("cl100k_base")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def is_eligible_source(content: str) -> bool:
    """True when ``content`` holds markup and does not reference the lookup API yet."""
    return bool(_MARKUP_PATTERN.search(content)) and not _LOOKUP_API_PATTERN.search(content)


def discover_eligible_files(
        root_dirs: Iterable[str],
        ignored_dirs: Iterable[str] = IGNORED_DIRS,
        extensions: Iterable[str] = VALID_EXTENSIONS
) -> Iterator[str]:
    """
    Lazily yield eligible source files under ``root_dirs``.

    Ignored directories are pruned from the walk. Order follows the directory
    traversal and is not stable across platforms. A file reachable from more
    than one root is yielded once.
    """
    ignored = set(ignored_dirs)
    suffixes = tuple(extensions)
    seen: Set[str] = set()

    for root_dir in root_dirs:
        if not os.path.isdir(root_dir):
            logger.warning("Source directory '%s' does not exist. Skipping.", root_dir)
            continue
        for dirpath, dirnames, filenames in os.walk(root_dir):
            dirnames[:] = [name for name in dirnames if name not in ignored]
            for filename in filenames:
                if not filename.endswith(suffixes):
                    continue
                file_path = os.path.join(dirpath, filename)
                real_path = os.path.realpath(file_path)
                if real_path in seen:
                    continue
                seen.add(real_path)
                try:
                    with open(file_path, 'r', encoding='utf-8') as f:
                        content = f.read()
                except (OSError, UnicodeDecodeError) as read_exc:
                    logger.warning("Could not read '%s': %s. Skipping.", file_path, read_exc)
                    continue
                if is_eligible_source(content):
                    yield file_path


async def refactor_file(
        client: CompletionClient,
        file_path: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_input_tokens: Optional[int] = None
) -> FileRefactorOutcome:
    """
    Refactor one file through the model.

    The file is overwritten only when the model reports that an update is
    needed. Proposed translations are kept only for keys the new code invokes.

    Raises:
        TransportError: The request could not be completed.
        ContractViolationError: Every attempt returned an invalid response.
        OSError: The file could not be read or written.
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        content = f.read()

    if max_input_tokens is not None:
        token_count = count_tokens(content, client.model_name)
        if token_count > max_input_tokens:
            logger.warning("Skipping '%s': %d tokens exceeds the input budget of %d.",
                           file_path, token_count, max_input_tokens)
            return FileRefactorOutcome(file_path, STATUS_SKIPPED)

    logger.debug("Processing: %s", file_path)
    result = await client.complete(
        TaskKind.REFACTOR_FILE,
        file_path,
        build_refactor_prompt(content),
        parse_refactor_response,
        retry_prompt=lambda reason: build_refactor_retry_prompt(content, reason),
        max_retries=max_retries
    )

    if not result.needs_update:
        logger.info("No update needed for %s", file_path)
        return FileRefactorOutcome(file_path, STATUS_UNCHANGED)

    used_keys = extract_used_keys(result.updated_code)
    confirmed = {key: text for key, text in result.translations.items() if key in used_keys}
    discarded = set(result.translations) - used_keys
    if discarded:
        logger.info("Discarding %d proposed key(s) not used in '%s': %s",
                    len(discarded), file_path, ", ".join(sorted(discarded)))

    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(result.updated_code)
    logger.info("Updated file: %s (%d new key(s))", file_path, len(confirmed))
    return FileRefactorOutcome(file_path, STATUS_UPDATED, confirmed_keys=confirmed, discarded_keys=discarded)


def merge_outcomes(outcomes: Iterable[FileRefactorOutcome]) -> RefactorReport:
    """
    Aggregate per-file outcomes. Outcomes are folded in file-path order, so a
    key proposed by two files keeps the text of the first path whatever the
    completion order was.
    """
    report = RefactorReport()
    for outcome in sorted(outcomes, key=lambda o: o.file_path):
        if outcome.status == STATUS_UPDATED:
            report.updated.append(outcome.file_path)
        elif outcome.status == STATUS_UNCHANGED:
            report.unchanged.append(outcome.file_path)
        elif outcome.status == STATUS_SKIPPED:
            report.skipped.append(outcome.file_path)
        else:
            report.failed[outcome.file_path] = outcome.error or "unknown error"

        for key, text in outcome.confirmed_keys.items():
            existing = report.confirmed_keys.setdefault(key, text)
            if existing != text:
                logger.warning("Key '%s' from '%s' conflicts with an earlier file ('%s' vs '%s'). Keeping the first.",
                               key, outcome.file_path, existing, text)
    return report


async def refactor_all(
        client: CompletionClient,
        files: Iterable[str],
        concurrency_limit: int,
        strategy: str = STRATEGY_POOL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_input_tokens: Optional[int] = None
) -> RefactorReport:
    """
    Refactor every file with at most ``concurrency_limit`` requests in flight.

    A failure on one file is logged and recorded; it never stops the others.

    Returns:
        RefactorReport: Per-file results plus the confirmed new keys.
    """
    files = list(files)

    async def process(file_path: str) -> FileRefactorOutcome:
        try:
            return await refactor_file(client, file_path, max_retries, max_input_tokens)
        except (TransportError, ContractViolationError, OSError, UnicodeDecodeError) as exc:
            logger.error("Error processing %s: %s", file_path, exc)
            return FileRefactorOutcome(file_path, STATUS_FAILED, error=str(exc))

    logger.info("Sending %d file(s) to the model with up to %d concurrent request(s)...",
                len(files), concurrency_limit)
    outcomes = await run_concurrently(files, process, concurrency_limit, strategy,
                                      desc="Refactoring files", unit="file")
    return merge_outcomes(outcomes)
