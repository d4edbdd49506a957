import json
import logging
import os

from nexti18n.errors import LocaleFileError, MalformedTreeError
from nexti18n.locale_tree import Tree, validate_tree

logger = logging.getLogger(__name__)


def locale_file_path(locale_folder: str, locale: str, namespace: str = "common") -> str:
    """
    Return the path of a locale's dictionary file.

    Args:
        locale_folder (str): The root folder holding one sub-folder per locale.
        locale (str): The locale identifier (e.g. "es").
        namespace (str): The dictionary namespace, which names the JSON file.

    Returns:
        str: ``<locale_folder>/<locale>/<namespace>.json``
    """
    return os.path.join(locale_folder, locale, f"{namespace}.json")


def load_locale_dictionary(file_path: str) -> Tree:
    """
    Load and validate a locale dictionary file.

    Raises:
        LocaleFileError: If the file cannot be read, is not valid JSON, or does
            not hold a tree of strings.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as json_exc:
        raise LocaleFileError(file_path, f"invalid JSON: {json_exc}") from json_exc
    except (OSError, UnicodeDecodeError) as io_exc:
        raise LocaleFileError(file_path, f"could not be read: {io_exc}") from io_exc

    try:
        validate_tree(data)
    except MalformedTreeError as tree_exc:
        raise LocaleFileError(file_path, str(tree_exc)) from tree_exc
    return data


def load_locale_dictionary_or_empty(file_path: str) -> Tree:
    """Like ``load_locale_dictionary`` but a missing file yields an empty tree."""
    if not os.path.exists(file_path):
        return {}
    return load_locale_dictionary(file_path)


def render_locale_dictionary(tree: Tree) -> str:
    """Serialise a dictionary the way it is stored: 2-space indent, UTF-8 text, trailing newline."""
    return json.dumps(tree, ensure_ascii=False, indent=2) + "\n"


def save_locale_dictionary(file_path: str, tree: Tree) -> None:
    """Write ``tree`` to ``file_path``, creating the locale folder if needed."""
    validate_tree(tree)
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(render_locale_dictionary(tree))
    logger.debug("Wrote locale dictionary '%s'.", file_path)
