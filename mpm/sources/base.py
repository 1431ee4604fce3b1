"""Resolver protocol and candidate selection shared by all sources."""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

import structlog

from mpm.core.errors import IncompatibleVersion, NoCompatibleVersion
from mpm.core.hashing import ContentHash
from mpm.core.manifest import SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR, VersionComparator

log = structlog.get_logger()


@dataclass(frozen=True)
class ReleaseCandidate:
    """One published release of a plugin.

    Attributes:
        version: Version identifier as published by the source
        download_url: Direct download URL of the jar
        file_name: File name to place in the plugins directory
        content_hash: Published hash, or None when the source has none
        compatible_runtimes: Declared Minecraft versions, or None when unknown
        published_at: Source timestamp used for newest-first ordering
    """

    version: str
    download_url: str
    file_name: str
    content_hash: Optional[ContentHash] = None
    compatible_runtimes: Optional[frozenset[str]] = None
    published_at: str = ""

    @property
    def compatibility_known(self) -> bool:
        return self.compatible_runtimes is not None


@runtime_checkable
class SourceResolver(Protocol):
    """A plugin source able to list release candidates."""

    kind: SourceKind
    comparator: VersionComparator

    async def resolve(
        self,
        plugin_id: str,
        version: Optional[str],
        runtime_version: str,
    ) -> list[ReleaseCandidate]:
        """List candidates, newest first.

        Raises:
            NotFound: If the source does not know the plugin
            SourceUnavailable: On transport or server errors
        """
        ...


@dataclass(frozen=True)
class Resolution:
    """A selected candidate together with the source that produced it."""

    source: SourceKind
    plugin_id: str
    candidate: ReleaseCandidate


def select_candidate(
    source: SourceKind,
    plugin_id: str,
    candidates: Sequence[ReleaseCandidate],
    version: Optional[str],
    runtime_version: str,
    comparator: VersionComparator = DEFAULT_COMPARATOR,
) -> ReleaseCandidate:
    """Pick the candidate to lock.

    Candidates are filtered by runtime compatibility. A requested version must
    match a compatible candidate exactly; otherwise the newest compatible
    candidate wins.

    Args:
        source: Source the candidates came from (for error context)
        plugin_id: Plugin id (for error context)
        candidates: Candidates in newest-first order
        version: Exact version requested, or None for latest
        runtime_version: Target Minecraft version
        comparator: Compatibility predicate for this source

    Returns:
        The selected candidate

    Raises:
        IncompatibleVersion: If the requested version is not compatible
        NoCompatibleVersion: If no candidate is compatible
    """
    compatible = [
        c for c in candidates
        if comparator.is_compatible(c.compatible_runtimes, runtime_version)
    ]

    if version is not None:
        for candidate in compatible:
            if candidate.version == version:
                return candidate

        requested = next((c for c in candidates if c.version == version), None)
        declared = None
        if requested is not None and requested.compatible_runtimes is not None:
            declared = sorted(requested.compatible_runtimes)
        log.debug(
            "requested_version_incompatible",
            source=source.value,
            plugin_id=plugin_id,
            version=version,
            runtime=runtime_version,
            compatible=len(compatible),
        )
        raise IncompatibleVersion(
            source=source.value,
            plugin_id=plugin_id,
            version=version,
            runtime_version=runtime_version,
            compatible_versions=[c.version for c in compatible],
            declared_runtimes=declared,
        )

    if compatible:
        return compatible[0]

    latest_runtimes = None
    if candidates and candidates[0].compatible_runtimes is not None:
        latest_runtimes = sorted(candidates[0].compatible_runtimes)
    raise NoCompatibleVersion(
        source=source.value,
        plugin_id=plugin_id,
        runtime_version=runtime_version,
        latest_runtimes=latest_runtimes,
    )
