"""
Locale dictionary synchronizer.

Keeps every target locale's dictionary complete relative to the reference
locale: missing keys are translated by the model and merged in, existing
entries are never overwritten. Each locale's file is read, modified and
written by the single task handling that locale.

Precondition: two pipeline runs never operate on the same project at the
same time. Nothing in-process locks the dictionary files.
"""
import copy
import logging
import os
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Iterable, List, Optional, Tuple

from nexti18n.ai_contracts import (
    TaskKind,
    check_placeholder_parity,
    parse_translated_text,
    parse_translation_batch
)
from nexti18n.app_config import AppConfig
from nexti18n.completion_client import CompletionClient
from nexti18n.concurrency import run_concurrently
from nexti18n.errors import (
    ConfigurationError,
    ContractViolationError,
    LocaleFileError,
    MalformedTreeError,
    TransportError
)
from nexti18n.locale_files import (
    load_locale_dictionary,
    load_locale_dictionary_or_empty,
    locale_file_path,
    save_locale_dictionary
)
from nexti18n.locale_tree import (
    PATH_SEPARATOR,
    Tree,
    count_leaves,
    deep_merge,
    diff_missing,
    flatten,
    get_leaf,
    set_leaf,
    unflatten,
    validate_tree
)
from nexti18n.prompts import (
    build_translate_text_prompt,
    build_translate_text_retry_prompt,
    build_translation_batch_prompt,
    build_translation_batch_retry_prompt
)

logger = logging.getLogger(__name__)

LOCALE_UPDATED = "updated"
LOCALE_UP_TO_DATE = "up_to_date"
LOCALE_PENDING = "pending"
LOCALE_SKIPPED = "skipped"
LOCALE_FAILED = "failed"


@dataclass
class LocaleSyncOutcome:
    locale: str
    status: str
    missing: int = 0
    translated: int = 0
    fallbacks: int = 0
    error: Optional[str] = None


@dataclass
class SyncReport:
    outcomes: Dict[str, LocaleSyncOutcome] = field(default_factory=dict)

    def locales_with_status(self, status: str) -> List[str]:
        return sorted(locale for locale, outcome in self.outcomes.items() if outcome.status == status)

    @property
    def failed(self) -> Dict[str, str]:
        return {
            locale: outcome.error or "unknown error"
            for locale, outcome in sorted(self.outcomes.items())
            if outcome.status == LOCALE_FAILED
        }


def keys_to_tree(new_keys: Dict[str, str]) -> Tree:
    """
    Turn flat dotted keys into a tree. A key that would turn an existing leaf
    into a mapping (or the reverse) is logged and left out.
    """
    tree: Tree = {}
    for key in sorted(new_keys):
        try:
            set_leaf(tree, key, new_keys[key])
        except MalformedTreeError as conflict:
            logger.warning("Skipping translation key '%s': %s", key, conflict)
    return tree


def accept_new_keys(reference: Tree, new_keys: Dict[str, str]) -> Dict[str, str]:
    """
    Return the subset of ``new_keys`` that can be added to ``reference``.

    A key is left out, with a warning, if it has an empty path segment, if it
    would nest under an existing leaf or replace an existing mapping, or if the
    reference already holds different text for it (existing keys are never
    renamed or rewritten). A key already present with the same text is not new
    and is dropped silently. ``reference`` is not modified.
    """
    staged = copy.deepcopy(reference)
    accepted = {}
    for key in sorted(new_keys):
        text = new_keys[key]
        if any(not part for part in key.split(PATH_SEPARATOR)):
            logger.warning("Skipping translation key '%s': empty path segment", key)
            continue
        existing = get_leaf(staged, key)
        if existing is not None:
            if existing != text:
                logger.warning("Translation key '%s' already exists in the reference dictionary as '%s'. "
                               "Keeping it instead of '%s'.", key, existing, text)
            continue
        try:
            set_leaf(staged, key, text)
        except MalformedTreeError as conflict:
            logger.warning("Skipping translation key '%s': %s", key, conflict)
            continue
        accepted[key] = text
    return accepted


def add_missing_keys(tree: Tree, new_keys: Dict[str, str], locale: str) -> List[str]:
    """
    Add each key of ``new_keys`` that ``tree`` lacks, in place. Existing leaves
    are kept and keys clashing with the locale's own structure are logged and
    skipped.

    Returns:
        The keys added.
    """
    added = []
    for key in sorted(new_keys):
        if get_leaf(tree, key) is not None:
            continue
        try:
            set_leaf(tree, key, new_keys[key])
        except MalformedTreeError as conflict:
            logger.warning("%s: not adding key '%s': %s", locale, key, conflict)
            continue
        added.append(key)
    return added


def find_untranslated(reference: Tree, target: Tree, pending_keys: Optional[Dict[str, str]] = None) -> Tree:
    """
    Return the subtree of ``reference`` that ``target`` still needs translated.

    That is every missing path, plus every key in ``pending_keys`` that the
    target still holds in the original language (keys added by this run's
    refactor carry the original text everywhere until translated).
    """
    untranslated = diff_missing(reference, target)
    if pending_keys:
        still_original = {}
        for key, original_text in pending_keys.items():
            if get_leaf(target, key) == original_text:
                still_original[key] = get_leaf(reference, key) or original_text
        if still_original:
            deep_merge(untranslated, keys_to_tree(still_original))
    return untranslated


async def translate_leaf(
        client: CompletionClient,
        config: AppConfig,
        locale: str,
        path: str,
        text: str
) -> str:
    """Translate a single string. Raises ``TransportError`` or ``ContractViolationError``."""
    return await client.complete(
        TaskKind.TRANSLATE_TEXT,
        f"{locale}:{path}",
        build_translate_text_prompt(text, config.reference_locale, locale),
        partial(parse_translated_text, source_text=text),
        retry_prompt=lambda reason: build_translate_text_retry_prompt(text, config.reference_locale, locale, reason),
        max_retries=config.max_retries
    )


async def translate_leaves(
        client: CompletionClient,
        config: AppConfig,
        locale: str,
        entries: List[Tuple[str, str]]
) -> Dict[str, str]:
    """
    Translate each entry with its own request. Entries that fail are absent
    from the result; the caller decides on the fallback.
    """
    async def one(entry: Tuple[str, str]) -> Tuple[str, Optional[str]]:
        path, text = entry
        try:
            return path, await translate_leaf(client, config, locale, path, text)
        except (TransportError, ContractViolationError) as exc:
            logger.error("Error translating key '%s' into '%s': %s", path, locale, exc)
            return path, None

    results = await run_concurrently(entries, one, config.max_concurrent_api_calls, config.concurrency_strategy)
    return {path: translated for path, translated in results if translated is not None}


async def translate_chunk(
        client: CompletionClient,
        config: AppConfig,
        locale: str,
        chunk: Dict[str, str],
        chunk_label: str
) -> Dict[str, str]:
    """
    Translate a chunk of flat entries with one request. The response must carry
    exactly the chunk's keys. Falls back to per-leaf requests for the whole chunk
    if the batch cannot be obtained, and for single entries whose placeholders
    do not survive.
    """
    try:
        translated = await client.complete(
            TaskKind.TRANSLATE_BATCH,
            f"{locale} {chunk_label}",
            build_translation_batch_prompt(chunk, config.reference_locale, locale),
            partial(parse_translation_batch, expected_keys=chunk.keys()),
            retry_prompt=lambda reason: build_translation_batch_retry_prompt(
                chunk, config.reference_locale, locale, reason
            ),
            max_retries=config.max_retries
        )
    except (TransportError, ContractViolationError) as exc:
        logger.warning("Batch translation of %s for '%s' failed (%s). Falling back to per-key requests.",
                       chunk_label, locale, exc)
        return await translate_leaves(client, config, locale, list(chunk.items()))

    accepted = {}
    retry_entries = []
    for path, source_text in chunk.items():
        candidate = translated[path].strip()
        if candidate and check_placeholder_parity(source_text, candidate):
            accepted[path] = candidate
        else:
            logger.warning("Batch translation for '%s' in '%s' lost placeholders or was empty. Retrying it alone.",
                           path, locale)
            retry_entries.append((path, source_text))
    if retry_entries:
        accepted.update(await translate_leaves(client, config, locale, retry_entries))
    return accepted


async def translate_missing(
        client: CompletionClient,
        config: AppConfig,
        locale: str,
        missing: Tree
) -> Tuple[Tree, int, int]:
    """
    Translate every leaf of ``missing`` into ``locale``.

    Returns:
        The translated tree (same shape as ``missing``, never with gaps: a leaf
        whose translation failed keeps the original-language text), the number
        of leaves translated and the number that fell back.
    """
    entries = flatten(missing)
    if config.translation_mode == "leaf":
        translations = await translate_leaves(client, config, locale, entries)
    else:
        size = config.batch_chunk_size
        chunks = [dict(entries[i:i + size]) for i in range(0, len(entries), size)]
        labelled = [(chunk, f"chunk {n + 1}/{len(chunks)}") for n, chunk in enumerate(chunks)]

        async def run_chunk(item: Tuple[Dict[str, str], str]) -> Dict[str, str]:
            chunk, label = item
            return await translate_chunk(client, config, locale, chunk, label)

        translations = {}
        for chunk_result in await run_concurrently(labelled, run_chunk, config.max_concurrent_api_calls,
                                                   config.concurrency_strategy):
            translations.update(chunk_result)

    fallbacks = 0
    final_entries = []
    for path, source_text in entries:
        if path in translations:
            final_entries.append((path, translations[path]))
        else:
            fallbacks += 1
            final_entries.append((path, source_text))
    if fallbacks:
        logger.warning("%d key(s) for '%s' kept the original-language text after failed translation.",
                       fallbacks, locale)
    return unflatten(final_entries), len(entries) - fallbacks, fallbacks


async def sync_locale(
        client: Optional[CompletionClient],
        config: AppConfig,
        locale: str,
        reference: Tree,
        pending_keys: Optional[Dict[str, str]] = None
) -> LocaleSyncOutcome:
    """Bring one locale's dictionary up to date and write it once."""
    target_path = locale_file_path(config.locale_folder, locale, config.namespace)
    if not os.path.exists(target_path):
        logger.info("Skipping %s - no %s found", locale, os.path.basename(target_path))
        return LocaleSyncOutcome(locale, LOCALE_SKIPPED)

    try:
        target = load_locale_dictionary(target_path)
        untranslated = find_untranslated(reference, target, pending_keys)
    except (LocaleFileError, MalformedTreeError) as exc:
        logger.error("%s: could not load dictionary - %s", locale, exc)
        return LocaleSyncOutcome(locale, LOCALE_FAILED, error=str(exc))

    if not untranslated:
        logger.info("%s: No missing keys", locale)
        return LocaleSyncOutcome(locale, LOCALE_UP_TO_DATE)

    missing_count = count_leaves(untranslated)
    logger.info("%s: Found %d missing key(s)", locale, missing_count)
    if config.dry_run or client is None:
        logger.info("[Dry Run] Would translate %d key(s) into '%s'.", missing_count, locale)
        return LocaleSyncOutcome(locale, LOCALE_PENDING, missing=missing_count)

    translated_tree, translated, fallbacks = await translate_missing(client, config, locale, untranslated)
    deep_merge(target, translated_tree)
    try:
        save_locale_dictionary(target_path, target)
    except OSError as exc:
        logger.error("%s: could not write %s - %s", locale, target_path, exc)
        return LocaleSyncOutcome(locale, LOCALE_FAILED, missing=missing_count, error=str(exc))

    logger.info("%s: Updated %s with %d translation(s)", locale, os.path.basename(target_path), translated)
    return LocaleSyncOutcome(locale, LOCALE_UPDATED, missing=missing_count,
                             translated=translated, fallbacks=fallbacks)


def load_reference_dictionary(config: AppConfig) -> Tree:
    """
    Raises:
        ConfigurationError: If the reference dictionary file does not exist.
        LocaleFileError: If it exists but cannot be loaded.
    """
    reference_path = locale_file_path(config.locale_folder, config.reference_locale, config.namespace)
    if not os.path.exists(reference_path):
        raise ConfigurationError(f"Reference dictionary not found at '{reference_path}'.")
    return load_locale_dictionary(reference_path)


async def sync_from_reference(
        config: AppConfig,
        client: Optional[CompletionClient],
        reference_dict: Optional[Tree] = None,
        pending_keys: Optional[Dict[str, str]] = None
) -> SyncReport:
    """
    Translate whatever each target locale is missing relative to the reference.

    Locales fan out under the configured concurrency limit. A failure in one
    locale is recorded in the report and never stops the others. In dry-run
    mode (or without a client) missing keys are only counted.

    Args:
        config: The run configuration.
        client: The completion client; ``None`` only in dry-run mode.
        reference_dict: The reference dictionary; loaded from disk when omitted.
        pending_keys: Keys introduced by this run, with their original text.

    Returns:
        SyncReport: One outcome per target locale.

    Raises:
        MalformedTreeError: If ``reference_dict`` is not a valid locale
            dictionary (a key holding the path separator, for one).
    """
    if reference_dict is not None:
        validate_tree(reference_dict)
        reference = reference_dict
    else:
        reference = load_reference_dictionary(config)
    if not reference:
        logger.info("Reference locale (%s) dictionary is empty.", config.reference_locale)

    async def run(locale: str) -> LocaleSyncOutcome:
        return await sync_locale(client, config, locale, reference, pending_keys)

    outcomes = await run_concurrently(config.target_locales, run, config.max_concurrent_api_calls,
                                      config.concurrency_strategy, desc="Translating locales", unit="locale")
    return SyncReport({outcome.locale: outcome for outcome in outcomes})


def sync_new_keys(config: AppConfig, new_keys: Dict[str, str], locales: Optional[Iterable[str]] = None) -> List[str]:
    """
    Merge newly confirmed keys, with their original-language text, into every
    locale's dictionary (reference included), creating missing files.

    The keys are first checked against the reference dictionary with
    ``accept_new_keys``; a rejected key touches no locale. Accepted keys only
    fill paths a dictionary does not have yet, so no existing text is
    overwritten and no existing leaf or mapping is replaced. A dictionary
    that gains nothing is not rewritten.

    Returns:
        The dictionary files written.
    """
    if not new_keys:
        return []
    reference_path = locale_file_path(config.locale_folder, config.reference_locale, config.namespace)
    try:
        reference = load_locale_dictionary_or_empty(reference_path)
    except LocaleFileError as exc:
        logger.error("Cannot check new keys against '%s': %s. No dictionary was changed.", reference_path, exc)
        return []
    accepted = accept_new_keys(reference, new_keys)
    if not accepted:
        return []

    written = []
    for locale in (locales if locales is not None else config.all_locales):
        path = locale_file_path(config.locale_folder, locale, config.namespace)
        if locale == config.reference_locale:
            current = reference
        else:
            try:
                current = load_locale_dictionary_or_empty(path)
            except LocaleFileError as exc:
                logger.error("Could not merge new keys into '%s': %s", path, exc)
                continue

        added = add_missing_keys(current, accepted, locale)
        if not added:
            continue
        if config.dry_run:
            logger.info("[Dry Run] Would merge %d new key(s) into '%s'.", len(added), path)
            continue
        try:
            save_locale_dictionary(path, current)
        except OSError as exc:
            logger.error("Could not write new keys to '%s': %s", path, exc)
            continue
        written.append(path)
        logger.info("Updated: %s", path)
    return written
