"""Modrinth source (https://modrinth.com)."""

from typing import Optional

import structlog

from mpm.core.errors import SourceUnavailable
from mpm.core.hashing import ContentHash
from mpm.core.manifest import SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR, VersionComparator
from mpm.sources.base import ReleaseCandidate
from mpm.sources.http import HttpClient

log = structlog.get_logger()


class ModrinthResolver:
    """Resolves Modrinth project slugs or ids to release candidates."""

    kind = SourceKind.MODRINTH
    BASE_URL = "https://api.modrinth.com/v2"

    def __init__(
        self,
        http: HttpClient,
        base_url: Optional[str] = None,
        comparator: VersionComparator = DEFAULT_COMPARATOR,
    ):
        self.http = http
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.comparator = comparator

    async def resolve(
        self,
        plugin_id: str,
        version: Optional[str],
        runtime_version: str,
    ) -> list[ReleaseCandidate]:
        # Existence check first so an unknown slug is NotFound, not an empty list
        await self.http.get_json(
            f"{self.base_url}/project/{plugin_id}",
            source=self.kind.value,
            plugin_id=plugin_id,
        )
        url = f"{self.base_url}/project/{plugin_id}/version"
        versions = await self.http.get_json(url, source=self.kind.value, plugin_id=plugin_id)

        candidates = []
        for entry in versions or []:
            try:
                candidate = self._to_candidate(entry)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise SourceUnavailable(
                    self.kind.value, url, f"malformed response: {e!r}", plugin_id
                ) from e
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.published_at, reverse=True)
        log.debug(
            "modrinth_versions_fetched",
            plugin_id=plugin_id,
            total=len(versions or []),
            usable=len(candidates),
        )
        return candidates

    @staticmethod
    def _to_candidate(entry: dict) -> Optional[ReleaseCandidate]:
        """Convert one entry of the project versions listing."""
        files = entry.get("files") or []
        if not files:
            return None
        file = next((f for f in files if f.get("primary")), files[0])

        sha512 = (file.get("hashes") or {}).get("sha512")
        return ReleaseCandidate(
            version=entry["version_number"],
            download_url=file["url"],
            file_name=file["filename"],
            content_hash=ContentHash("sha512", sha512) if sha512 else None,
            compatible_runtimes=frozenset(entry.get("game_versions") or []),
            published_at=entry.get("date_published", ""),
        )
