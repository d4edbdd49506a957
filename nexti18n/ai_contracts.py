"""
Response contracts for every AI task.

Each task kind has a JSON schema and a parse step that turns the raw completion
text into a typed result, or raises ``ContractViolationError``. Nothing
downstream ever looks at the decoded JSON directly.
"""
import json
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional

import jsonschema

from nexti18n.errors import ContractViolationError, StructuralMismatchError


class TaskKind(str, Enum):
    REFACTOR_FILE = "refactor-file"
    TRANSLATE_TEXT = "translate-text"
    TRANSLATE_BATCH = "translate-batch"
    EXTRACT_BUILD_ERRORS = "extract-build-errors"
    FIX_COMPILE_ERROR = "fix-compile-error"


REFACTOR_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "needsUpdate": {"type": "boolean"},
        "updatedCode": {"type": "string"},
        "translations": {
            "type": "object",
            "patternProperties": {
                "^.+$": {"type": "string"}
            },
            "additionalProperties": False
        }
    },
    "required": ["needsUpdate"]
}

# Every value of a batch translation must be a string.
TRANSLATION_BATCH_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string"}
    },
    "additionalProperties": False
}

EXTRACT_ERRORS_SCHEMA = {
    "type": "object",
    "properties": {
        "extractedErrors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "filePath": {"type": "string"},
                    "errorType": {"type": "string"},
                    "errorDescription": {"type": "string"}
                },
                "required": ["filePath", "errorType", "errorDescription"]
            }
        }
    },
    "required": ["extractedErrors"]
}

FIX_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "fixExplanation": {"type": "string"},
        "updatedCode": {"type": "string", "minLength": 1}
    },
    "required": ["fixExplanation", "updatedCode"]
}

_LEADING_FENCE = re.compile(r'^\s*```[a-zA-Z0-9_-]*[ \t]*\n?')
_TRAILING_FENCE = re.compile(r'\n?[ \t]*```\s*$')
_PLACEHOLDER_PATTERN = re.compile(r'\{([^{}]+)\}')


@dataclass(frozen=True)
class RefactorResult:
    kind: ClassVar[TaskKind] = TaskKind.REFACTOR_FILE
    needs_update: bool
    updated_code: str = ""
    translations: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildError:
    file_path: str
    error_type: str
    error_description: str


@dataclass(frozen=True)
class ExtractedErrorsResult:
    kind: ClassVar[TaskKind] = TaskKind.EXTRACT_BUILD_ERRORS
    errors: List[BuildError]


@dataclass(frozen=True)
class FixResult:
    kind: ClassVar[TaskKind] = TaskKind.FIX_COMPILE_ERROR
    fix_explanation: str
    updated_code: str


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (```lang ... ```), if any."""
    stripped = _LEADING_FENCE.sub('', text, count=1)
    if stripped != text:
        stripped = _TRAILING_FENCE.sub('', stripped, count=1)
    return stripped.strip()


def sanitize_code(code: str) -> str:
    """Strip code fences and make sure the file ends with exactly one newline."""
    sanitized = _LEADING_FENCE.sub('', code, count=1)
    sanitized = _TRAILING_FENCE.sub('', sanitized, count=1)
    return sanitized.rstrip('\n') + '\n'


def check_placeholder_parity(source_text: str, translated_text: str) -> bool:
    """
    Check that both strings carry the same multiset of ``{placeholder}`` tokens.
    Reordering is allowed.
    """
    source_placeholders = Counter(_PLACEHOLDER_PATTERN.findall(source_text))
    target_placeholders = Counter(_PLACEHOLDER_PATTERN.findall(translated_text))
    return source_placeholders == target_placeholders


def _load_json_object(task: TaskKind, subject: str, text: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as json_exc:
        raise ContractViolationError(task.value, subject, f"not valid JSON ({json_exc})", text) from json_exc
    if not isinstance(parsed, dict):
        raise ContractViolationError(
            task.value, subject, f"expected a JSON object, got {type(parsed).__name__}", text
        )
    return parsed


def _validate(task: TaskKind, subject: str, instance: Dict[str, Any], schema: Dict[str, Any], text: str) -> None:
    try:
        jsonschema.validate(instance=instance, schema=schema)
    except jsonschema.ValidationError as schema_exc:
        raise ContractViolationError(task.value, subject, schema_exc.message, text) from schema_exc


def parse_refactor_response(text: str, subject: str) -> RefactorResult:
    """
    Parse a refactor-file completion.

    A response that declares ``needsUpdate`` must carry non-empty code; the
    code is sanitised before it is returned.
    """
    task = TaskKind.REFACTOR_FILE
    parsed = _load_json_object(task, subject, text)
    _validate(task, subject, parsed, REFACTOR_RESPONSE_SCHEMA, text)

    if not parsed["needsUpdate"]:
        return RefactorResult(needs_update=False)

    updated_code = parsed.get("updatedCode", "")
    if not updated_code.strip():
        raise ContractViolationError(task.value, subject, "needsUpdate is true but updatedCode is empty", text)
    return RefactorResult(
        needs_update=True,
        updated_code=sanitize_code(updated_code),
        translations=dict(parsed.get("translations", {}))
    )


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Remove quotes or square brackets wrapped around a translation when the
    original text was not wrapped the same way.
    """
    translated_text = translated_text.strip()
    for opening, closing in (('"', '"'), ('“', '”'), ('[', ']')):
        if (len(translated_text) >= 2 and translated_text.startswith(opening)
                and translated_text.endswith(closing)
                and not (original_text.startswith(opening) and original_text.endswith(closing))):
            translated_text = translated_text[1:-1]
    return translated_text


def parse_translated_text(text: str, subject: str, source_text: str) -> str:
    """Parse a translate-text completion: bare text, no JSON envelope."""
    task = TaskKind.TRANSLATE_TEXT
    translated = clean_translated_text(strip_code_fences(text), source_text)
    if not translated:
        raise ContractViolationError(task.value, subject, "empty translation", text)
    if not check_placeholder_parity(source_text, translated):
        raise ContractViolationError(task.value, subject, "placeholders differ from the source text", text)
    return translated


def parse_translation_batch(text: str, subject: str, expected_keys: Iterable[str]) -> Dict[str, str]:
    """
    Parse a translate-batch completion.

    Raises:
        StructuralMismatchError: If the returned keys differ from ``expected_keys``.
        ContractViolationError: If the response is not an object of strings.
    """
    task = TaskKind.TRANSLATE_BATCH
    parsed = _load_json_object(task, subject, text)
    _validate(task, subject, parsed, TRANSLATION_BATCH_SCHEMA, text)

    expected = set(expected_keys)
    returned = set(parsed.keys())
    if returned != expected:
        raise StructuralMismatchError(task.value, subject, expected - returned, returned - expected, text)
    return parsed


def parse_extracted_errors(text: str, subject: str) -> ExtractedErrorsResult:
    task = TaskKind.EXTRACT_BUILD_ERRORS
    parsed = _load_json_object(task, subject, text)
    _validate(task, subject, parsed, EXTRACT_ERRORS_SCHEMA, text)
    return ExtractedErrorsResult(errors=[
        BuildError(
            file_path=item["filePath"],
            error_type=item["errorType"],
            error_description=item["errorDescription"]
        )
        for item in parsed["extractedErrors"]
    ])


def parse_fix_response(text: str, subject: str) -> FixResult:
    task = TaskKind.FIX_COMPILE_ERROR
    parsed = _load_json_object(task, subject, text)
    _validate(task, subject, parsed, FIX_RESPONSE_SCHEMA, text)
    if not parsed["updatedCode"].strip():
        raise ContractViolationError(task.value, subject, "updatedCode is empty", text)
    return FixResult(
        fix_explanation=parsed["fixExplanation"],
        updated_code=sanitize_code(parsed["updatedCode"])
    )


def describe_violation(error: Optional[ContractViolationError]) -> str:
    """One-line reason used in correction prompts."""
    if error is None:
        return "the response did not follow the required format"
    return error.reason
