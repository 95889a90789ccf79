"""Walking and addressing values inside decoded JSON trees.

A decoded tree is built only from str, int, float, bool, None, dict and
list. Paths use dotted keys with bracketed list indices, e.g.
``summary.attendeesAndCompanies[0].name``.
"""

import re
from typing import Any, Iterator, Optional, Union

JsonValue = Union[str, int, float, bool, None, dict[str, Any], list[Any]]

_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def iter_strings(value: JsonValue, path: str = "") -> Iterator[tuple[str, Optional[str], str]]:
    """Yield (path, key, text) for every string in the tree, depth-first.

    ``key`` is the owning object key, or None for list items and the root.
    """
    yield from _walk(value, path, None)


def _walk(value: JsonValue, path: str, key: Optional[str]):
    if isinstance(value, str):
        yield path, key, value
    elif isinstance(value, dict):
        for child_key, child in value.items():
            child_path = f"{path}.{child_key}" if path else str(child_key)
            yield from _walk(child, child_path, str(child_key))
    elif isinstance(value, list):
        for index, child in enumerate(value):
            yield from _walk(child, f"{path}[{index}]", None)


def parse_path(path: str) -> list[Union[str, int]]:
    """Split a dotted/bracketed path into object keys and list indices."""
    if not path:
        raise ValueError("Empty path")
    tokens: list[Union[str, int]] = []
    for name, index in _PATH_TOKEN.findall(path):
        tokens.append(int(index) if index else name)
    return tokens


def get_at(tree: JsonValue, path: str) -> JsonValue:
    node = tree
    for token in parse_path(path):
        node = node[token]
    return node


def set_at(tree: JsonValue, path: str, value: JsonValue) -> None:
    """Replace the value at ``path``. Raises KeyError/IndexError/TypeError if absent."""
    tokens = parse_path(path)
    parent = tree
    for token in tokens[:-1]:
        parent = parent[token]
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise KeyError(last)
    elif isinstance(parent, list):
        if not isinstance(last, int):
            raise TypeError(f"List index expected at {path!r}")
        parent[last]  # raises IndexError when out of range
    else:
        raise TypeError(f"Cannot address into {type(parent).__name__} at {path!r}")
    parent[last] = value
