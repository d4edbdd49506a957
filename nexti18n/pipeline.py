"""
Pipeline driver.

Runs discovery, refactoring, key aggregation and dictionary synchronisation
in order, and produces the run summary.
"""
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from nexti18n.app_config import AppConfig
from nexti18n.completion_client import CompletionClient
from nexti18n.errors import ConfigurationError, LocaleFileError
from nexti18n.locale_tree import Tree
from nexti18n.refactor import RefactorReport, discover_eligible_files, refactor_all
from nexti18n.synchronizer import (
    LOCALE_PENDING,
    LOCALE_SKIPPED,
    LOCALE_UP_TO_DATE,
    LOCALE_UPDATED,
    SyncReport,
    accept_new_keys,
    add_missing_keys,
    load_reference_dictionary,
    sync_from_reference,
    sync_new_keys
)

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    DISCOVER = "discover"
    REFACTOR = "refactor"
    AGGREGATE_KEYS = "aggregate-keys"
    SYNC_DICTIONARIES = "sync-dictionaries"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class PipelineReport:
    stage: PipelineStage = PipelineStage.DISCOVER
    discovered_files: List[str] = field(default_factory=list)
    refactor: RefactorReport = field(default_factory=RefactorReport)
    sync: SyncReport = field(default_factory=SyncReport)
    new_keys: Dict[str, str] = field(default_factory=dict)
    written_dictionaries: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_failures(self) -> bool:
        return bool(self.refactor.failed or self.sync.failed)


def _log_summary(report: PipelineReport, dry_run: bool) -> None:
    prefix = "[Dry Run] " if dry_run else ""
    logger.info("%sDiscovered %d eligible file(s).", prefix, len(report.discovered_files))
    logger.info("%sFiles: %d updated, %d unchanged, %d skipped, %d failed.", prefix,
                len(report.refactor.updated), len(report.refactor.unchanged),
                len(report.refactor.skipped), len(report.refactor.failed))
    logger.info("%sNew translation keys: %d.", prefix, len(report.new_keys))
    sync = report.sync
    logger.info("%sLocales: %d updated, %d up to date, %d pending, %d skipped, %d failed.", prefix,
                len(sync.locales_with_status(LOCALE_UPDATED)), len(sync.locales_with_status(LOCALE_UP_TO_DATE)),
                len(sync.locales_with_status(LOCALE_PENDING)), len(sync.locales_with_status(LOCALE_SKIPPED)),
                len(sync.failed))


def write_failure_report(report_path: str, report: PipelineReport) -> None:
    """Write the markdown report of failed files and locales, or remove a stale one."""
    if not report.has_failures:
        if os.path.exists(report_path):
            os.remove(report_path)
        return

    logger.info("Some files or locales failed. Writing report to %s", report_path)
    directory = os.path.dirname(report_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        f.write("## ⚠️ i18n Pipeline Warnings\n\n")
        f.write("The following items could not be processed by the AI pipeline and must be addressed manually.\n\n")
        if report.refactor.failed:
            f.write("### Source files\n")
            for file_path, error in report.refactor.failed.items():
                f.write(f"- 📄 `{file_path}`: {error}\n")
            f.write("\n")
        if report.sync.failed:
            f.write("### Locales\n")
            for locale, error in report.sync.failed.items():
                f.write(f"- 🌐 `{locale}`: {error}\n")
            f.write("\n")


async def run_pipeline(config: AppConfig, client: Optional[CompletionClient]) -> PipelineReport:
    """
    Run the whole pipeline once.

    Configuration problems found before anything is modified end the run in
    the ``ABORTED`` stage. Failures on single files or locales are recorded
    and the run still reaches ``DONE``.

    Args:
        config: The validated run configuration.
        client: The completion client. May be ``None`` only in dry-run mode.

    Returns:
        PipelineReport: What happened, stage by stage.
    """
    report = PipelineReport()
    reference: Optional[Tree] = None

    # Step 1: Validate the run and discover candidate files. Nothing is written yet.
    try:
        if client is None and not config.dry_run:
            raise ConfigurationError("No completion client available outside dry-run mode.")
        if not config.target_locales:
            raise ConfigurationError("No additional locales configured.")
        if config.translate:
            reference = load_reference_dictionary(config)
    except (ConfigurationError, LocaleFileError) as exc:
        logger.error("Aborting: %s", exc)
        report.stage = PipelineStage.ABORTED
        report.error = str(exc)
        return report

    if config.refactor:
        report.discovered_files = sorted(discover_eligible_files(config.source_roots))
        logger.info("Found %d file(s) to refactor.", len(report.discovered_files))

    # Step 2: Refactor the eligible files.
    report.stage = PipelineStage.REFACTOR
    if config.refactor and report.discovered_files:
        if config.dry_run:
            for file_path in report.discovered_files:
                logger.info("[Dry Run] Would refactor '%s'.", file_path)
        else:
            report.refactor = await refactor_all(
                client,
                report.discovered_files,
                config.max_concurrent_api_calls,
                config.concurrency_strategy,
                config.max_retries,
                config.max_input_tokens
            )

    # Step 3: Merge the confirmed keys into every dictionary. Keys clashing with
    # the reference are dropped here so they are never treated as pending.
    report.stage = PipelineStage.AGGREGATE_KEYS
    report.new_keys = dict(report.refactor.confirmed_keys)
    if report.new_keys and reference is not None:
        report.new_keys = accept_new_keys(reference, report.new_keys)
    if report.new_keys:
        report.written_dictionaries = sync_new_keys(config, report.new_keys)
        if reference is not None:
            add_missing_keys(reference, report.new_keys, config.reference_locale)

    # Step 4: Translate what each locale is missing.
    report.stage = PipelineStage.SYNC_DICTIONARIES
    if config.translate:
        report.sync = await sync_from_reference(config, client, reference, pending_keys=report.new_keys)

    report.stage = PipelineStage.DONE
    _log_summary(report, config.dry_run)
    if config.dry_run:
        logger.info("Dry run enabled; no files were modified.")
    else:
        write_failure_report(config.report_file_path, report)
    return report
