"""Version comparison and Minecraft compatibility checks.

Compatibility is exact-set membership over normalized runtime identifiers:
a candidate declaring ``{"1.20", "1.20.1"}`` is compatible with ``1.20.1`` but
not with ``1.20.2``. Version ranges are not interpreted.

Ordering of plugin versions is a natural ordering over numeric and alphabetic
runs. Resolvers still return candidates in their source's own newest-first
order; ``compare`` is used to describe lockfile changes as upgrades or
downgrades.
"""

import re
from enum import IntEnum
from typing import Iterable, Optional

_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")


class Ordering(IntEnum):
    """Result of comparing two versions."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


def normalize_runtime_version(version: str) -> str:
    """Strip build metadata from a Minecraft version.

    Examples:
        "1.20.1-R0.1-SNAPSHOT" -> "1.20.1"
        "1.20" -> "1.20"
    """
    return version.strip().split("-", 1)[0].strip()


def version_key(version: str) -> tuple:
    """Natural sort key: numeric runs compare as numbers, above letters."""
    text = version.strip()
    if text[:1] in ("v", "V") and text[1:2].isdigit():
        text = text[1:]
    key = []
    for token in _TOKEN_RE.findall(text):
        if token.isdigit():
            key.append((1, int(token), ""))
        else:
            key.append((0, 0, token.lower()))
    return tuple(key)


class VersionComparator:
    """Ordering and compatibility predicate for one source's identifiers."""

    def is_compatible(
        self,
        declared_runtimes: Optional[Iterable[str]],
        target_runtime: str,
    ) -> bool:
        """Check whether a candidate supports the target runtime.

        Args:
            declared_runtimes: Runtime versions the candidate declares, or None
                when the source publishes no compatibility metadata
            target_runtime: The manifest's Minecraft version

        Returns:
            True on exact (normalized) membership, or when metadata is unknown.
            Callers must surface a warning for the unknown case.
        """
        if declared_runtimes is None:
            return True
        target = normalize_runtime_version(target_runtime)
        return any(normalize_runtime_version(r) == target for r in declared_runtimes)

    def compare(self, a: str, b: str) -> Ordering:
        """Compare two plugin versions."""
        if a == b:
            return Ordering.EQUAL
        key_a, key_b = version_key(a), version_key(b)
        if key_a < key_b:
            return Ordering.LESS
        if key_a > key_b:
            return Ordering.GREATER
        return Ordering.EQUAL


DEFAULT_COMPARATOR = VersionComparator()
