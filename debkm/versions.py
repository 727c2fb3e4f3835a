"""Version ordering and grouping of kernel / driver records."""

import re
from functools import cmp_to_key
from typing import Callable, Dict, Iterable, List, TypeVar

T = TypeVar("T")

_SPLIT_RE = re.compile(r"[.\-]")


def version_compare(a: str, b: str) -> int:
    """
    Component-wise comparison of dotted/dashed versions.

    Components compare numerically when both are integers, otherwise as
    strings; the shorter version is padded with "0".  Returns <0, 0 or >0.
        version_compare("6.12.1", "6.9.5") > 0
    """
    a_parts = _SPLIT_RE.split(a or "")
    b_parts = _SPLIT_RE.split(b or "")
    for i in range(max(len(a_parts), len(b_parts))):
        a_part = a_parts[i] if i < len(a_parts) else "0"
        b_part = b_parts[i] if i < len(b_parts) else "0"
        if a_part.isdigit() and b_part.isdigit():
            x, y = int(a_part), int(b_part)
        else:
            x, y = a_part, b_part
        if x != y:
            return -1 if x < y else 1
    return 0


version_key = cmp_to_key(version_compare)


def group_by(records: Iterable[T], key_fn: Callable[[T], str],
             sort_key: Callable = None, reverse: bool = False) -> Dict[str, List[T]]:
    """Bucket records by key_fn; each bucket sorted by sort_key (insertion order if None)."""
    groups: Dict[str, List[T]] = {}
    for record in records:
        groups.setdefault(key_fn(record), []).append(record)
    if sort_key is not None:
        for group in groups.values():
            group.sort(key=sort_key, reverse=reverse)
    return groups


def group_kernels_by_major_version(kernels):
    """major_version → kernels, newest first."""
    return group_by(kernels, lambda k: k.major_version,
                    sort_key=lambda k: version_key(k.version), reverse=True)


def group_drivers_by_type(drivers):
    """driver_type → drivers sorted by name."""
    return group_by(drivers, lambda d: d.driver_type, sort_key=lambda d: d.name)


def sort_kernels(kernels):
    """
    Display order: running kernel first, then installed, then available;
    newest first inside each band.
    """
    return sorted(kernels, key=cmp_to_key(lambda a, b: (
        _band(a) - _band(b) or -version_compare(a.version, b.version)
    )))


def _band(kernel) -> int:
    return 0 if kernel.is_current else 1 if kernel.is_installed else 2
