"""Hangar source (https://hangar.papermc.io)."""

from typing import Optional
from urllib.parse import unquote, urlparse

import structlog

from mpm.core.errors import NotFound, SourceUnavailable
from mpm.core.hashing import ContentHash
from mpm.core.manifest import SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR, VersionComparator
from mpm.sources.base import ReleaseCandidate
from mpm.sources.http import HttpClient
from mpm.sources.search import parse_owner_name_id, rank_exact_first

log = structlog.get_logger()

PREFERRED_PLATFORM = "PAPER"


def _file_name_from_url(url: str) -> str:
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or "plugin.jar"


class HangarResolver:
    """Resolves ``owner/slug`` ids, or project search terms, on Hangar."""

    kind = SourceKind.HANGAR
    BASE_URL = "https://hangar.papermc.io/api/v1"

    def __init__(
        self,
        http: HttpClient,
        base_url: Optional[str] = None,
        comparator: VersionComparator = DEFAULT_COMPARATOR,
    ):
        self.http = http
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.comparator = comparator

    async def find_project(self, plugin_id: str) -> tuple[str, str]:
        """Turn a plugin id into ``(owner, slug)``.

        Raises:
            NotFound: If a search term matches no project
        """
        parsed = parse_owner_name_id(plugin_id)
        if parsed is not None:
            return parsed

        data = await self.http.get_json(
            f"{self.base_url}/projects",
            source=self.kind.value,
            plugin_id=plugin_id,
            params={"q": plugin_id},
        )
        results = (data or {}).get("result") or []
        if not results:
            raise NotFound(self.kind.value, plugin_id, "no matching projects")

        best = rank_exact_first(results, plugin_id, lambda p: p.get("name", ""))[0]
        namespace = best["namespace"]
        log.debug(
            "hangar_project_found",
            query=plugin_id,
            owner=namespace["owner"],
            slug=namespace["slug"],
        )
        return namespace["owner"], namespace["slug"]

    async def resolve(
        self,
        plugin_id: str,
        version: Optional[str],
        runtime_version: str,
    ) -> list[ReleaseCandidate]:
        owner, slug = await self.find_project(plugin_id)
        url = f"{self.base_url}/projects/{owner}/{slug}/versions"
        data = await self.http.get_json(url, source=self.kind.value, plugin_id=plugin_id)

        versions = (data or {}).get("result") or []
        candidates = []
        for entry in versions:
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
            "hangar_versions_fetched",
            project=f"{owner}/{slug}",
            total=len(versions),
            usable=len(candidates),
        )
        return candidates

    @staticmethod
    def _to_candidate(entry: dict) -> Optional[ReleaseCandidate]:
        """Convert one Hangar version, preferring its Paper download."""
        downloads = entry.get("downloads") or {}

        def usable(d: Optional[dict]) -> bool:
            return bool(d) and bool(d.get("downloadUrl") or d.get("externalUrl"))

        download = downloads.get(PREFERRED_PLATFORM)
        if not usable(download):
            download = next((d for d in downloads.values() if usable(d)), None)
        if download is None:
            return None

        url = download.get("downloadUrl") or download.get("externalUrl")
        file_info = download.get("fileInfo") or {}
        sha256 = file_info.get("sha256Hash")

        runtimes = set()
        for platform_versions in (entry.get("platformDependencies") or {}).values():
            runtimes.update(platform_versions)

        return ReleaseCandidate(
            version=entry["name"],
            download_url=url,
            file_name=file_info.get("name") or _file_name_from_url(url),
            content_hash=ContentHash("sha256", sha256) if sha256 else None,
            compatible_runtimes=frozenset(runtimes),
            published_at=entry.get("createdAt", ""),
        )
