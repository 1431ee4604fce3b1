"""Source registry for mpm."""

from typing import Mapping, Optional

import structlog

from mpm.core.errors import NotFound, UnresolvableSource
from mpm.core.manifest import SOURCE_PRIORITY, PluginRequirement, SourceKind
from mpm.sources.base import Resolution, SourceResolver, select_candidate
from mpm.sources.http import HttpClient

log = structlog.get_logger()


class SourceRegistry:
    """Maps each SourceKind to its resolver and selects candidates."""

    def __init__(self, resolvers: Optional[Mapping[SourceKind, SourceResolver]] = None):
        """Initialize registry.

        Args:
            resolvers: Resolvers keyed by source. More can be added with register().
        """
        self._resolvers: dict[SourceKind, SourceResolver] = dict(resolvers or {})

    def register(self, resolver: SourceResolver):
        """Register a resolver under its ``kind``."""
        self._resolvers[resolver.kind] = resolver
        log.debug("source_registered", source=resolver.kind.value)

    def get(self, kind: SourceKind) -> SourceResolver:
        """Get the resolver for a source.

        Raises:
            UnresolvableSource: For UNKNOWN or an unregistered source
        """
        resolver = self._resolvers.get(kind)
        if resolver is None:
            raise UnresolvableSource(kind.value, f"no resolver registered for source '{kind.value}'")
        return resolver

    async def resolve(self, requirement: PluginRequirement, runtime_version: str) -> Resolution:
        """Resolve one requirement to a single candidate.

        With a pinned source only that source is asked. Without one, sources
        are tried in priority order: a NotFound (or an empty candidate list)
        falls through to the next source, while compatibility failures and
        transport errors stop the search.

        Args:
            requirement: Manifest requirement
            runtime_version: Target Minecraft version

        Returns:
            The selected candidate and its source

        Raises:
            NotFound: If no source knows the plugin
            IncompatibleVersion, NoCompatibleVersion: On compatibility failure
            SourceUnavailable: On transport failure
            UnresolvableSource: For imported (UNKNOWN) requirements
        """
        if requirement.source is not None and not requirement.source.resolvable:
            raise UnresolvableSource(requirement.id, "imported plugins cannot be resolved remotely")

        if requirement.source is not None:
            return await self._resolve_from(requirement.source, requirement, runtime_version)

        for kind in SOURCE_PRIORITY:
            if kind not in self._resolvers:
                continue
            try:
                return await self._resolve_from(kind, requirement, runtime_version)
            except NotFound:
                log.debug("source_fallthrough", name=requirement.name, source=kind.value)
                continue

        raise NotFound("any source", requirement.id)

    async def _resolve_from(
        self,
        kind: SourceKind,
        requirement: PluginRequirement,
        runtime_version: str,
    ) -> Resolution:
        resolver = self.get(kind)
        candidates = await resolver.resolve(requirement.id, requirement.version, runtime_version)
        if not candidates:
            raise NotFound(kind.value, requirement.id, "no downloadable releases")

        candidate = select_candidate(
            kind,
            requirement.id,
            candidates,
            requirement.version,
            runtime_version,
            resolver.comparator,
        )
        log.info(
            "plugin_resolved",
            name=requirement.name,
            source=kind.value,
            version=candidate.version,
            file=candidate.file_name,
        )
        return Resolution(source=kind, plugin_id=requirement.id, candidate=candidate)

    @classmethod
    def default(cls, http: HttpClient) -> "SourceRegistry":
        """Registry with the Modrinth, Hangar and GitHub resolvers."""
        from mpm.sources.github import GitHubResolver
        from mpm.sources.hangar import HangarResolver
        from mpm.sources.modrinth import ModrinthResolver

        registry = cls()
        registry.register(ModrinthResolver(http))
        registry.register(HangarResolver(http))
        registry.register(GitHubResolver(http))
        return registry
