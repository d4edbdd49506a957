"""Exception types raised by the i18n pipeline."""
from typing import Optional, Set


class I18nPipelineError(Exception):
    """Base class for every error raised by nexti18n."""


class ConfigurationError(I18nPipelineError):
    """Fatal misconfiguration. Raised before any file or dictionary is touched."""


class MalformedTreeError(I18nPipelineError):
    """A locale dictionary has a node that is neither a string leaf nor a mapping,
    a key that is empty or holds the path separator, or clashing paths."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{message} (at '{path or '<root>'}')")


class LocaleFileError(I18nPipelineError):
    """A locale dictionary file could not be read or does not hold a JSON object."""

    def __init__(self, file_path: str, message: str):
        self.file_path = file_path
        super().__init__(f"{file_path}: {message}")


class TransportError(I18nPipelineError):
    """
    The completion endpoint could not be reached, answered with a non-success
    status, or did not answer before the deadline. Never retried by the client.
    """

    def __init__(self, task: str, subject: str, cause: Optional[BaseException] = None):
        self.task = task
        self.subject = subject
        self.cause = cause
        detail = f"{cause.__class__.__name__}: {cause}" if cause else "unknown transport failure"
        super().__init__(f"{task} request for '{subject}' failed: {detail}")


class ContractViolationError(I18nPipelineError):
    """The completion did not parse, or parsed into the wrong shape."""

    def __init__(self, task: str, subject: str, reason: str, raw_response: Optional[str] = None):
        self.task = task
        self.subject = subject
        self.reason = reason
        self.raw_response = raw_response
        super().__init__(f"{task} response for '{subject}' violated the contract: {reason}")


class StructuralMismatchError(ContractViolationError):
    """A batch translation came back with a different key set than was requested."""

    def __init__(self, task: str, subject: str, missing: Set[str], unexpected: Set[str],
                 raw_response: Optional[str] = None):
        self.missing = set(missing)
        self.unexpected = set(unexpected)
        parts = []
        if missing:
            parts.append(f"missing keys {sorted(missing)}")
        if unexpected:
            parts.append(f"unexpected keys {sorted(unexpected)}")
        super().__init__(task, subject, "; ".join(parts) or "key set mismatch", raw_response)
