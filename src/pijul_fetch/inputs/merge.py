"""Attribute merging that never overwrites an agreed-upon value."""
from typing import Mapping

from pijul_fetch.core.errors import AttributeConflictError


def merge_attrs(dest: Mapping[str, object], source: Mapping[str, object]) -> dict:
    """Merge ``source`` into a copy of ``dest``.

    Keys missing from ``dest`` are added and keys with equal values are left
    alone. A key present in both with different values means the two maps
    describe different snapshots.

    Raises:
        AttributeConflictError: naming the first conflicting key
    """
    merged = dict(dest)
    for key, value in source.items():
        if key in merged:
            if merged[key] != value:
                raise AttributeConflictError(key, merged[key], value)
        else:
            merged[key] = value
    return merged
