"""Shared utilities used across the scheduling core."""

from typing import Iterable, Optional, TypeVar

T = TypeVar("T")


def normalize_worker_ids(values: Optional[Iterable[object]]) -> list[str]:
    """Trim, drop blanks and non-strings, and de-duplicate while keeping order.

    Examples:
        >>> normalize_worker_ids([" w1", "w2", "w1", "", 7])
        ['w1', 'w2']
    """
    if not values:
        return []
    seen: set[str] = set()
    ids: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        ids.append(trimmed)
    return ids


def rotate_from_index(items: list[T], start_index: int) -> list[T]:
    """Return ``items`` rotated so that ``start_index`` comes first.

    The index wraps in both directions, so ``-1`` and ``len(items)`` are valid.

    Examples:
        >>> rotate_from_index(["a", "b", "c"], 1)
        ['b', 'c', 'a']
        >>> rotate_from_index(["a", "b", "c"], 3)
        ['a', 'b', 'c']
    """
    if not items:
        return []
    normalized = start_index % len(items)
    return items[normalized:] + items[:normalized]
