"""Deep merge of nested configuration tables."""

from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` and return a new dict.

    Recursion only happens for keys where both sides hold a mapping.
    Any other override value (scalar, list, or a type mismatch) replaces the
    base value outright; lists are never concatenated. ``base`` is not
    modified, but untouched nested tables are shared with it.
    """
    merged = dict(base)
    for key, value in override.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(existing, value)
        else:
            merged[key] = value
    return merged
