"""Application configuration for the i18n pipeline."""
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from nexti18n.concurrency import STRATEGIES
from nexti18n.errors import ConfigurationError
from nexti18n.logging_config import setup_logger

TRANSLATION_MODES = ("leaf", "batch")

DEFAULT_ADDITIONAL_LOCALES = ("en", "fr", "de", "zh", "ar", "pt", "ru", "ja")


@dataclass(frozen=True)
class AppConfig:
    """Immutable run configuration, built once and passed to every component."""
    # Locales
    reference_locale: str = "es"
    additional_locales: Tuple[str, ...] = DEFAULT_ADDITIONAL_LOCALES
    locale_folder: str = "public/locales"
    namespace: str = "common"

    # Source tree
    source_roots: Tuple[str, ...] = (".",)

    # Model configuration
    model_name: str = "gpt-4o-mini"
    max_output_tokens: int = 4000
    max_input_tokens: int = 12000
    request_timeout_seconds: float = 60.0
    max_retries: int = 2

    # Processing settings
    max_concurrent_api_calls: int = 20
    rate_limit_per_minute: int = 500
    concurrency_strategy: str = "pool"
    translation_mode: str = "batch"
    batch_chunk_size: int = 40
    dry_run: bool = False
    refactor: bool = True
    translate: bool = True

    # Reporting
    report_file_path: str = "logs/i18n_report.md"

    # Credentials are kept out of repr so they never reach the logs.
    api_key: Optional[str] = field(default=None, repr=False)

    @property
    def all_locales(self) -> List[str]:
        """The reference locale followed by the additional locales."""
        return [self.reference_locale, *self.target_locales]

    @property
    def target_locales(self) -> List[str]:
        return [locale for locale in self.additional_locales if locale != self.reference_locale]


def parse_locale_list(value: Any) -> Tuple[str, ...]:
    """Accept a comma-separated string or a list and return the trimmed, non-empty locales."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(',')
    else:
        items = [str(item) for item in value]
    return tuple(item.strip() for item in items if item and item.strip())


def validate_config(config: AppConfig) -> AppConfig:
    """
    Check a configuration for fatal problems.

    Raises:
        ConfigurationError: On any value the pipeline cannot run with.
    """
    if not config.reference_locale:
        raise ConfigurationError("No reference locale configured.")
    if not config.target_locales:
        raise ConfigurationError("No additional locales configured.")
    if len(set(config.additional_locales)) != len(config.additional_locales):
        raise ConfigurationError(f"Duplicate locales in {list(config.additional_locales)}.")
    if config.max_concurrent_api_calls < 1:
        raise ConfigurationError("max_concurrent_api_calls must be at least 1.")
    if config.max_retries < 0:
        raise ConfigurationError("max_retries cannot be negative.")
    if config.batch_chunk_size < 1:
        raise ConfigurationError("batch_chunk_size must be at least 1.")
    if config.request_timeout_seconds <= 0:
        raise ConfigurationError("request_timeout_seconds must be positive.")
    if config.translation_mode not in TRANSLATION_MODES:
        raise ConfigurationError(
            f"Unknown translation_mode '{config.translation_mode}'. Expected one of {TRANSLATION_MODES}."
        )
    if config.concurrency_strategy not in STRATEGIES:
        raise ConfigurationError(
            f"Unknown concurrency_strategy '{config.concurrency_strategy}'. Expected one of {STRATEGIES}."
        )
    if not config.refactor and not config.translate:
        raise ConfigurationError("Both refactoring and translation are disabled; nothing to do.")
    if not config.dry_run and not config.api_key:
        raise ConfigurationError(
            "OPENAI_API_KEY environment variable not found. Set it or enable dry_run mode."
        )
    return config


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the first .env file found in the project root or its docker directory."""
    for dotenv_path in (os.path.join(project_root, '.env'), os.path.join(project_root, 'docker', '.env')):
        if os.path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            return dotenv_path
    return None


def _load_yaml_config(project_root: str, config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load the YAML configuration file. Problems fall back to defaults with a warning on stderr."""
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = config_file or os.environ.get('NEXTI18N_CONFIG_FILE', default_config_path)
    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    if not os.path.exists(config_file):
        print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
              file=sys.stderr)
        return {}

    try:
        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
        return {}
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        return {}

    if loaded_config is None:
        print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
              file=sys.stderr)
        return {}
    if not isinstance(loaded_config, dict):
        print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
              file=sys.stderr)
        return {}
    return loaded_config


def _setup_logger_from_config(config: Dict[str, Any], dry_run: bool = False) -> logging.Logger:
    """Set up logger based on configuration. A dry run logs to the console only."""
    log_config = config.get('logging') or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = '' if dry_run else log_config.get('log_file_path', 'logs/nexti18n.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def build_app_config(config: Dict[str, Any], environ=None) -> AppConfig:
    """
    Build an ``AppConfig`` from a raw YAML mapping plus environment overrides.

    Environment variables ``OPENAI_MODEL`` and ``MAX_CONCURRENT_REQUESTS`` win
    over the file; ``OPENAI_API_KEY`` provides the credential.
    """
    environ = os.environ if environ is None else environ
    defaults = AppConfig()

    additional_locales = parse_locale_list(config.get('additional_locales', defaults.additional_locales))
    source_roots = parse_locale_list(config.get('source_roots', defaults.source_roots)) or defaults.source_roots

    try:
        max_concurrent = int(environ.get('MAX_CONCURRENT_REQUESTS',
                                         config.get('max_concurrent_api_calls', defaults.max_concurrent_api_calls)))
        return AppConfig(
            reference_locale=str(config.get('reference_locale', defaults.reference_locale)).strip(),
            additional_locales=additional_locales,
            locale_folder=config.get('locale_folder', defaults.locale_folder),
            namespace=config.get('namespace', defaults.namespace),
            source_roots=source_roots,
            model_name=environ.get('OPENAI_MODEL', config.get('model_name', defaults.model_name)),
            max_output_tokens=int(config.get('max_output_tokens', defaults.max_output_tokens)),
            max_input_tokens=int(config.get('max_input_tokens', defaults.max_input_tokens)),
            request_timeout_seconds=float(config.get('request_timeout_seconds', defaults.request_timeout_seconds)),
            max_retries=int(config.get('max_retries', defaults.max_retries)),
            max_concurrent_api_calls=max_concurrent,
            rate_limit_per_minute=int(config.get('rate_limit_per_minute', defaults.rate_limit_per_minute)),
            concurrency_strategy=config.get('concurrency_strategy', defaults.concurrency_strategy),
            translation_mode=config.get('translation_mode', defaults.translation_mode),
            batch_chunk_size=int(config.get('batch_chunk_size', defaults.batch_chunk_size)),
            dry_run=bool(config.get('dry_run', defaults.dry_run)),
            refactor=bool(config.get('refactor', defaults.refactor)),
            translate=bool(config.get('translate', defaults.translate)),
            report_file_path=config.get('report_file_path', defaults.report_file_path),
            api_key=environ.get('OPENAI_API_KEY') or None
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e


def load_app_config(
        project_root: Optional[str] = None,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
) -> AppConfig:
    """
    Load application configuration from the YAML file, .env and the environment.

    Args:
        project_root: Directory searched for config.yaml and .env. Defaults to the working directory.
        config_file: Explicit configuration file path.
        overrides: Values that win over every other source (e.g. CLI flags); ``None`` values are ignored.

    Returns:
        AppConfig: The validated configuration.

    Raises:
        ConfigurationError: If the resulting configuration cannot be run.
    """
    project_root = os.path.abspath(project_root or os.getcwd())
    dotenv_path = _load_dotenv_files(project_root)
    raw_config = _load_yaml_config(project_root, config_file)

    app_config = build_app_config(raw_config)
    if overrides:
        app_config = replace(app_config, **{key: value for key, value in overrides.items() if value is not None})

    # Set up once the effective dry-run flag is known.
    logger = _setup_logger_from_config(raw_config, app_config.dry_run)
    if dotenv_path:
        logger.info("Loaded environment variables from: %s", dotenv_path)
    else:
        logger.info("No .env file found in '%s'. Relying on system environment variables if any.", project_root)
    return validate_config(app_config)


def create_openai_client(config: AppConfig, logger: Optional[logging.Logger] = None) -> Optional[AsyncOpenAI]:
    """Create the OpenAI client, or ``None`` in dry-run mode where no request may be sent."""
    logger = logger or logging.getLogger(__name__)
    if config.dry_run:
        logger.info("Running in dry-run mode, OpenAI client will not be initialized")
        return None
    if not config.api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable not found.")
    if not config.api_key.startswith('sk-'):
        logger.warning("Warning: OPENAI_API_KEY does not start with 'sk-'. This may be invalid.")
    client = AsyncOpenAI(api_key=config.api_key)
    logger.info("OpenAI client initialized successfully")
    return client
