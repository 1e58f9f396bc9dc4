"""Multi-key candidate sorting and size formatting."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")

_UNITS = ("B", "KB", "MB", "GB", "TB")


def sort_candidates(items: Iterable[T], keys: Sequence[tuple[str, bool]]) -> list[T]:
    """Sort by ``(field, descending)`` pairs, first pair most significant.

    Python's sort is stable, so sorting by each key from least to most
    significant yields standard multi-key ordering; ties keep input order.
    """
    result = list(items)
    for name, descending in reversed(keys):
        result.sort(key=lambda item: getattr(item, name), reverse=descending)
    return result


def bytes_to_size(size: int) -> str:
    """Format a byte count, e.g. ``1536`` -> ``"1.5 KB"``."""
    if size <= 0:
        return "0 B"
    value = float(size)
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            break
        value /= 1024
    if unit == "B":
        return f"{int(value)} B"
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {unit}"
