"""
Helpers for walking an untyped completion payload.

A payload is a JSON tree: strings, numbers, booleans, None, lists and dicts.
Nothing here assumes a schema. ``find_string`` is a depth-first search that
stops at the first match; mappings are visited in insertion order, so when
several strings match, which one wins depends on how the service ordered its
fields. That choice is implementation-defined.
"""

from __future__ import annotations

from typing import Any, Callable, Collection, Dict, Iterator, List, Optional, Tuple, Union

JsonScalar = Union[str, int, float, bool, None]
JsonValue = Union[JsonScalar, List[Any], Dict[str, Any]]


def get_path(tree: JsonValue, dotted_path: str) -> Optional[JsonValue]:
    """Return the value at ``a.b.c`` or None if any segment is missing.

    Numeric segments index into lists (``files.0.url``).
    """
    node: Any = tree
    for segment in dotted_path.split("."):
        if isinstance(node, dict):
            if segment not in node:
                return None
            node = node[segment]
        elif isinstance(node, list) and segment.isdigit():
            index = int(segment)
            if index >= len(node):
                return None
            node = node[index]
        else:
            return None
    return node


def get_string(tree: JsonValue, dotted_path: str) -> Optional[str]:
    """Like ``get_path`` but only returns non-blank strings."""
    value = get_path(tree, dotted_path)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def iter_strings(tree: JsonValue, path: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], str]]:
    """Yield ``(path, value)`` for every string leaf, depth-first."""
    if isinstance(tree, str):
        yield path, tree
    elif isinstance(tree, dict):
        for key, child in tree.items():
            yield from iter_strings(child, path + (str(key),))
    elif isinstance(tree, list):
        for index, child in enumerate(tree):
            yield from iter_strings(child, path + (str(index),))


def find_string(
    tree: JsonValue,
    predicate: Callable[[str], bool],
    exclude: Collection[str] = (),
) -> Optional[str]:
    """First string leaf (depth-first) matching ``predicate`` and not in ``exclude``."""
    for _, value in iter_strings(tree):
        candidate = value.strip()
        if candidate and candidate not in exclude and predicate(candidate):
            return candidate
    return None
