"""Helpers for sources that accept either ``owner/name`` ids or search terms."""

from typing import Callable, Optional, Sequence, TypeVar

T = TypeVar("T")


def parse_owner_name_id(plugin_id: str) -> Optional[tuple[str, str]]:
    """Split ``owner/name`` into its parts.

    Returns:
        (owner, name), or None if the id is a bare search term
    """
    parts = plugin_id.split("/")
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]
    return None


def _is_exact(name: str, query: str) -> bool:
    name = name.lower()
    query = query.lower()
    return name == query or name == query.replace("-", " ")


def rank_exact_first(
    results: Sequence[T],
    query: str,
    name_of: Callable[[T], str],
    keep_order: bool = False,
) -> list[T]:
    """Order search results with case-insensitive exact name matches first.

    Args:
        results: Raw search results
        query: The search term
        name_of: Extracts the display name of a result
        keep_order: Keep the source's order among non-exact matches (e.g.
            popularity) instead of sorting them alphabetically

    Returns:
        Ranked results
    """
    if keep_order:
        return sorted(results, key=lambda r: not _is_exact(name_of(r), query))
    return sorted(
        results,
        key=lambda r: (not _is_exact(name_of(r), query), name_of(r).lower()),
    )
