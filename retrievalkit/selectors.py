"""Selector nodes for walking UnixFS paths, and their DAG-JSON encoding."""

from __future__ import annotations

import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


def _freeze(node: Any) -> Any:
    if isinstance(node, Mapping):
        return MappingProxyType({key: _freeze(value) for key, value in node.items()})
    return node


def _matcher() -> dict:
    return {".": {}}


def _explore_recursive_edge() -> dict:
    return {"@": {}}


def _explore_all(next_selector: Any) -> dict:
    return {"a": {">": next_selector}}


def _explore_recursive_unlimited(sequence: Any) -> dict:
    return {"R": {"l": {"none": {}}, ":>": sequence}}


def _interpret_as(adl: str, next_selector: Any) -> dict:
    return {"~": {">": next_selector, "as": adl}}


def _explore_field(name: str, next_selector: Any) -> dict:
    return {"f": {"f>": {name: next_selector}}}


EXPLORE_ALL_RECURSIVELY = _freeze(
    _explore_recursive_unlimited(_explore_all(_explore_recursive_edge()))
)
MATCH_POINT = _freeze(_matcher())


def _path_segments(path: str) -> list[str]:
    segments = path.split("/")
    last = len(segments) - 1
    filtered = []
    for position, segment in enumerate(segments):
        if segment == "":
            # one leading and one trailing '/' are allowed
            if position in (0, last):
                continue
            raise ValueError(f"invalid empty path segment at position {position}")
        if segment in (".", ".."):
            raise ValueError(f"'{segment}' is unsupported in paths")
        filtered.append(segment)
    return filtered


def unixfs_path_to_selector(path: str, full: bool):
    """Build a selector exploring a UnixFS path.

    With ``full`` the whole DAG under the path's end is explored; otherwise
    only the terminating UnixFS node (preloaded) is matched.
    """
    if path and not path.startswith("/"):
        raise ValueError("path must start with /")
    segments = _path_segments(path)
    if full:
        selector: Any = _explore_recursive_unlimited(_explore_all(_explore_recursive_edge()))
    else:
        selector = _interpret_as("unixfs-preload", _matcher())
    for segment in reversed(segments):
        selector = _interpret_as("unixfs", _explore_field(segment, selector))
    return selector


def _key_order(key: str) -> tuple:
    encoded = key.encode("utf-8")
    return (len(encoded), encoded)


def _normalise(node: Any) -> Any:
    if isinstance(node, Mapping):
        for key in node:
            if not isinstance(key, str):
                raise TypeError("map keys must be strings")
        return {key: _normalise(node[key]) for key in sorted(node, key=_key_order)}
    if isinstance(node, (list, tuple)):
        return [_normalise(item) for item in node]
    if node is None or isinstance(node, (str, bool, int, float)):
        return node
    raise TypeError(f"cannot encode {type(node).__name__} as DAG-JSON")


def encode_dag_json(node: Any) -> str:
    """Encode a selector node as compact DAG-JSON with canonical key order."""
    return json.dumps(_normalise(node), separators=(",", ":"), ensure_ascii=False)