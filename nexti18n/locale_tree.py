"""
Operations over locale dictionaries.

A locale dictionary is a tree: every node is either a string leaf (the
translatable text, placeholders such as ``{name}`` kept verbatim) or a mapping
of child nodes. Lists, numbers, booleans and ``None`` are rejected with a
``MalformedTreeError`` naming the offending dotted path.
"""
import copy
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from nexti18n.errors import MalformedTreeError

Tree = Dict[str, Union[str, "Tree"]]

PATH_SEPARATOR = "."

# Scans JS/TS source left to right. Comments, string literals and regex
# literals are consumed whole so lookup-like text inside them is never
# reported; a template literal containing ``${`` is left unconsumed so
# interpolated lookups are seen. A quote or slash only opens a literal where an
# expression may start, so apostrophes in JSX text and division are plain text.
_SOURCE_TOKEN_PATTERN = re.compile(
    r"""
    (?P<comment>(?<!:)//[^\n]*|/\*.*?\*/)
    | (?<![\w$])(?:[\w$]+\.)?t\(\s*(?P<quote>["'`])(?P<key>[^"'`\\\n$]+)(?P=quote)\s*[,)]
    | (?P<template>`(?:[^`\\$]|\\.|\$(?!\{))*`)
    | (?P<literal>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*'|/(?![*/])(?:[^/\\\n\[]|\\.|\[(?:[^\]\\\n]|\\.)*\])+/[A-Za-z]*)
    """,
    re.VERBOSE | re.DOTALL,
)

_EXPRESSION_PUNCTUATION = frozenset("([{,;:=!&|?+-*%~^<")
_EXPRESSION_KEYWORDS = frozenset({
    "await", "case", "default", "delete", "do", "else", "export", "from", "import",
    "in", "instanceof", "of", "return", "throw", "typeof", "void", "yield",
})


def _join(prefix: str, key: str, separator: str = PATH_SEPARATOR) -> str:
    return f"{prefix}{separator}{key}" if prefix else key


def _check_node(value, path: str) -> None:
    if not isinstance(value, (str, dict)):
        raise MalformedTreeError(path, f"Expected a string or a mapping, found {type(value).__name__}")


def validate_tree(tree, path: str = "") -> None:
    """
    Raise ``MalformedTreeError`` unless ``tree`` is a mapping whose nodes are
    all strings or mappings, with string keys throughout.

    Keys must be non-empty and free of the path separator: a key such as
    ``"a.b"`` cannot be told apart from the path ``a`` -> ``b`` once flattened,
    and the lookup call resolves it as the nested path anyway.
    """
    if not isinstance(tree, dict):
        raise MalformedTreeError(path, f"Expected a mapping, found {type(tree).__name__}")
    for key, value in tree.items():
        if not isinstance(key, str):
            raise MalformedTreeError(path, f"Non-string key {key!r}")
        if not key or PATH_SEPARATOR in key:
            raise MalformedTreeError(path, f"Key {key!r} is empty or contains the path separator '{PATH_SEPARATOR}'")
        child_path = _join(path, key)
        _check_node(value, child_path)
        if isinstance(value, dict):
            validate_tree(value, child_path)


def _copy_subtree(value, path: str):
    if isinstance(value, dict):
        validate_tree(value, path)
    return copy.deepcopy(value)


def diff_missing(reference: Tree, target: Tree, _path: str = "") -> Tree:
    """
    Return the part of ``reference`` that ``target`` lacks.

    A key absent from ``target`` carries its whole reference subtree verbatim.
    A reference mapping shadowed by a target leaf is reported missing as a
    whole. The result is empty if and only if every leaf path of
    ``reference`` exists in ``target``.

    Args:
        reference: The reference locale dictionary.
        target: The dictionary of the locale being checked.

    Returns:
        A new tree holding only the missing branches.
    """
    missing: Tree = {}
    for key, value in reference.items():
        path = _join(_path, key)
        _check_node(value, path)
        if key not in target:
            missing[key] = _copy_subtree(value, path)
            continue
        if not isinstance(value, dict):
            continue
        target_value = target[key]
        if not isinstance(target_value, dict):
            missing[key] = _copy_subtree(value, path)
            continue
        nested = diff_missing(value, target_value, path)
        if nested:
            missing[key] = nested
    return missing


def deep_merge(target: Tree, source: Tree, _path: str = "") -> Tree:
    """
    Overlay ``source`` onto ``target`` in place and return ``target``.

    Leaves from ``source`` win; mappings present on both sides are merged key by
    key. Values copied from ``source`` are deep copies, so ``target`` never
    shares nodes with ``source``.
    """
    for key, value in source.items():
        path = _join(_path, key)
        _check_node(value, path)
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            deep_merge(existing, value, path)
        else:
            target[key] = copy.deepcopy(value)
    return target


def flatten(tree: Tree, separator: str = PATH_SEPARATOR, _prefix: str = "") -> List[Tuple[str, str]]:
    """Return ``(dotted_path, text)`` pairs for every leaf, in tree order."""
    entries: List[Tuple[str, str]] = []
    for key, value in tree.items():
        path = _join(_prefix, key, separator)
        _check_node(value, path)
        if isinstance(value, dict):
            entries.extend(flatten(value, separator, path))
        else:
            entries.append((path, value))
    return entries


def unflatten(pairs: Iterable[Tuple[str, str]], separator: str = PATH_SEPARATOR) -> Tree:
    """
    Build a tree from ``(dotted_path, text)`` pairs. Inverse of ``flatten``.

    Raises:
        MalformedTreeError: If one path is a prefix of another, which would
            require a node to be both a leaf and a mapping.
    """
    result: Tree = {}
    for path, value in pairs:
        _check_node(value, path)
        parts = path.split(separator)
        current = result
        for depth, part in enumerate(parts[:-1]):
            node = current.setdefault(part, {})
            if not isinstance(node, dict):
                raise MalformedTreeError(
                    separator.join(parts[:depth + 1]),
                    f"Cannot nest '{path}' under an existing leaf"
                )
            current = node
        leaf = parts[-1]
        if isinstance(current.get(leaf), dict):
            raise MalformedTreeError(path, "Cannot replace a mapping with a leaf")
        current[leaf] = value
    return result


def count_leaves(tree: Tree) -> int:
    return len(flatten(tree))


def get_leaf(tree: Tree, path: str, separator: str = PATH_SEPARATOR) -> Optional[str]:
    """Return the string at ``path``, or ``None`` if the path is absent or not a leaf."""
    node = tree
    for part in path.split(separator):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node if isinstance(node, str) else None


def set_leaf(tree: Tree, path: str, value: str, separator: str = PATH_SEPARATOR) -> None:
    """
    Put ``value`` at ``path`` in place, creating intermediate mappings.

    Raises:
        MalformedTreeError: If a prefix of ``path`` is a leaf or ``path`` itself
            is a mapping. ``tree`` is left unchanged.
    """
    _check_node(value, path)
    parts = path.split(separator)
    node = tree
    for depth, part in enumerate(parts[:-1]):
        child = node.get(part)
        if child is None:
            break
        if not isinstance(child, dict):
            raise MalformedTreeError(
                separator.join(parts[:depth + 1]),
                f"Cannot nest '{path}' under an existing leaf"
            )
        node = child
    else:
        if isinstance(node.get(parts[-1]), dict):
            raise MalformedTreeError(path, "Cannot replace a mapping with a leaf")

    node = tree
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _expression_may_start(source_text: str, index: int, opens_regex: bool) -> bool:
    i = index - 1
    while i >= 0 and source_text[i].isspace():
        i -= 1
    if i < 0:
        return True
    previous = source_text[i]
    if previous == ">":
        # Only an arrow; otherwise it closes a JSX tag.
        return i > 0 and source_text[i - 1] == "="
    if previous in _EXPRESSION_PUNCTUATION:
        # ``</`` is a closing JSX tag.
        return not (opens_regex and previous == "<")
    end = i + 1
    while i >= 0 and (source_text[i].isalnum() or source_text[i] in "_$"):
        i -= 1
    return source_text[i + 1:end] in _EXPRESSION_KEYWORDS


def extract_used_keys(source_text: str) -> Set[str]:
    """
    Return the translation keys invoked through the lookup call in ``source_text``.

    Recognises ``t("key")``, ``t('key')``, ``t(`key`)``, calls with extra
    arguments such as ``t("key", { count })`` and member calls such as
    ``i18n.t("key")``. Lookups inside comments, ordinary string literals or
    regex literals are ignored, and so are dynamic template keys. JSX text
    such as ``It's {t("a")}`` is read as text, not as an open string.
    """
    used_keys: Set[str] = set()
    position = 0
    while True:
        match = _SOURCE_TOKEN_PATTERN.search(source_text, position)
        if match is None:
            return used_keys
        literal = match.group("literal")
        if literal and not _expression_may_start(source_text, match.start(), literal[0] == "/"):
            position = match.start() + 1
            continue
        key = match.group("key")
        if key:
            used_keys.add(key.strip())
        position = match.end()
