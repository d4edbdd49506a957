"""
Logging setup for nexti18n.

Modules never configure logging themselves. Each one logs through
``logging.getLogger(__name__)``, a child of the ``nexti18n`` package logger,
and ``setup_logger`` installs the handlers once on that package logger. Records
from ``nexti18n.refactor``, ``nexti18n.synchronizer`` and the other modules
therefore reach the same log file and console stream, tagged with the module
that emitted them.

A dry run writes no files, so it is configured with an empty log file path
and logs to the console only.
"""
import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

LOGGER_NAME = "nexti18n"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


class TqdmLoggingHandler(logging.Handler):
    """
    Console handler that writes through ``tqdm.write`` so log lines emitted
    while locales or files are being processed do not tear the progress bars.
    """

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def _file_handler(log_file_path: str, formatter: logging.Formatter) -> logging.FileHandler:
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.FileHandler(log_file_path, encoding='utf-8')
    handler.setFormatter(formatter)
    return handler


def _remove_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logger(log_level_str: str, log_file_path: Optional[str], log_to_console: bool) -> logging.Logger:
    """
    Configure the ``nexti18n`` package logger.

    Calling it again replaces the previous handlers (closing any open log
    file), so a run reconfigured from the command line never logs twice.
    The package logger does not propagate to the root logger.

    Args:
        log_level_str: The logging level name, e.g. 'INFO' or 'debug'. Unknown names mean INFO.
        log_file_path: The log file, created with its directory. Empty or ``None`` disables file logging.
        log_to_console: Whether to log to stderr through ``TqdmLoggingHandler``.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))
    _remove_handlers(logger)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    if log_file_path:
        logger.addHandler(_file_handler(log_file_path, formatter))
    if log_to_console:
        console_handler = TqdmLoggingHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    return logger
