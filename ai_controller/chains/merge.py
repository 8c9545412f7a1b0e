"""
Deep merge for partial updates
"""

import copy
from typing import Any


def deep_merge(existing: Any, incoming: Any) -> Any:
    """
    Merge ``incoming`` into ``existing`` without mutating either

    Dicts are merged key by key (recursively). Lists and scalars in
    ``incoming`` replace the existing value wholesale, so a chain's step list
    is always swapped as a unit.

    Example:
        >>> deep_merge({"a": {"x": 1, "y": 2}, "l": [1, 2]}, {"a": {"y": 3}, "l": [9]})
        {'a': {'x': 1, 'y': 3}, 'l': [9]}
    """
    if isinstance(existing, dict) and isinstance(incoming, dict):
        merged = copy.deepcopy(existing)
        for key, value in incoming.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    return copy.deepcopy(incoming)
