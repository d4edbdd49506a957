"""Prompt builders for the AI tasks. Each builder embeds the full response contract."""
import json
from typing import Dict

_REFACTOR_CONTRACT = """{
  "needsUpdate": true/false,
  "updatedCode": "<full updated code if needed, otherwise empty>",
  "translations": {
    "<translationKey>": "<original string>"
  }
}"""


def build_refactor_prompt(file_content: str) -> str:
    return f"""You are a Next.js and i18n expert.
Refactor the following code to add multilingual support using react-i18next:
1. Identify all user-facing strings and replace them with meaningful translation keys, looked up with t("key").
2. Return ONLY valid JSON with the structure:
{_REFACTOR_CONTRACT}
3. If no user-facing strings are detected, set "needsUpdate" to false and leave "updatedCode" empty.
4. "updatedCode" must contain the full file content with updated references to translation keys, if changes are made.
5. "translations" must include all original user-facing strings keyed by their new i18n keys.
6. Translation keys use lowercase words joined by underscores; use dots only to separate namespace segments.
7. Do not delete existing comments unless strictly necessary for functionality or to fix errors.
8. Ensure the updated code compiles, retains its original functionality, and is properly formatted.
9. Do not include any additional comments, explanations, or formatting like code blocks (```).
10. Avoid adding unnecessary whitespace at the end of lines or when adding new lines.

Here is the code:
{file_content}"""


def build_refactor_retry_prompt(file_content: str, reason: str) -> str:
    return f"""The previous update attempt was invalid ({reason}). Please correct it now:
1. Return valid JSON with the structure:
{_REFACTOR_CONTRACT}
2. If no user-facing strings are detected, set "needsUpdate" to false and leave "updatedCode" empty.
3. If "needsUpdate" is true, "updatedCode" must hold the complete file and i18n must be properly added.
4. "translations" must only contain relevant keys and their original strings.
5. Do not include code fences, extra comments, or explanations.
6. Ensure the code compiles, retains its original functionality, and is properly formatted.

Here is the code that needs correction:
{file_content}"""


def build_translate_text_prompt(text: str, source_locale: str, target_locale: str) -> str:
    return f"""Translate the following text from {source_locale} to {target_locale}.
Preserve any placeholders like {{this}} in the text exactly as they are. Keep the translation concise and accurate.
Respond only with the translated text without any explanations, quotes or formatting.

Text to translate: "{text}\""""


def build_translate_text_retry_prompt(text: str, source_locale: str, target_locale: str, reason: str) -> str:
    return f"""The previous translation was invalid ({reason}).
Translate the following text from {source_locale} to {target_locale} again.
Every placeholder in curly braces, like {{this}}, must appear unchanged in the translation.
Respond only with the translated text, with no quotes, commentary or formatting.

Text to translate: "{text}\""""


def build_translation_batch_prompt(entries: Dict[str, str], source_locale: str, target_locale: str) -> str:
    entries_json = json.dumps(entries, ensure_ascii=False, indent=2)
    return f"""You are a professional software localizer. Translate the values of the following JSON object
from {source_locale} to {target_locale}.

**Critical Instructions**:
1. Return a single JSON object with exactly the same keys as the input. Do not add, drop or rename keys.
2. Translate only the values. Every value must be a string.
3. Preserve placeholders in curly braces (e.g. {{name}}) and HTML-like tags exactly as they are.
4. Output JSON only: no code fences, no explanations before or after the object.

**Input**:
{entries_json}"""


def build_translation_batch_retry_prompt(entries: Dict[str, str], source_locale: str, target_locale: str,
                                         reason: str) -> str:
    return (
        f"The previous response was invalid ({reason}). "
        f"It must be one JSON object whose keys are exactly the {len(entries)} keys of the input.\n\n"
        + build_translation_batch_prompt(entries, source_locale, target_locale)
    )
