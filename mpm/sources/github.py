"""GitHub Releases source.

Releases carry no Minecraft compatibility metadata and no published hashes,
so candidates have unknown compatibility and are hashed on download by the
lock engine.
"""

from typing import Optional

import structlog

from mpm.core.errors import NotFound, SourceUnavailable
from mpm.core.manifest import SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR, VersionComparator
from mpm.sources.base import ReleaseCandidate
from mpm.sources.http import HttpClient
from mpm.sources.search import parse_owner_name_id, rank_exact_first

log = structlog.get_logger()


class GitHubResolver:
    """Resolves ``owner/repo`` ids, or repository search terms, on GitHub."""

    kind = SourceKind.GITHUB
    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        http: HttpClient,
        base_url: Optional[str] = None,
        comparator: VersionComparator = DEFAULT_COMPARATOR,
    ):
        self.http = http
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.comparator = comparator

    async def find_repository(self, plugin_id: str) -> tuple[str, str]:
        """Turn a plugin id into ``(owner, repo)``.

        Raises:
            NotFound: If a search term matches no repository
        """
        parsed = parse_owner_name_id(plugin_id)
        if parsed is not None:
            return parsed

        data = await self.http.get_json(
            f"{self.base_url}/search/repositories",
            source=self.kind.value,
            plugin_id=plugin_id,
            params={
                "q": f"{plugin_id} in:name",
                "sort": "stars",
                "order": "desc",
                "per_page": 100,
            },
        )
        items = (data or {}).get("items") or []
        if not items:
            raise NotFound(self.kind.value, plugin_id, "no matching repositories")

        # Keep GitHub's star ordering among non-exact matches
        best = rank_exact_first(items, plugin_id, lambda r: r.get("name", ""), keep_order=True)[0]
        return best["owner"]["login"], best["name"]

    async def resolve(
        self,
        plugin_id: str,
        version: Optional[str],
        runtime_version: str,
    ) -> list[ReleaseCandidate]:
        owner, repo = await self.find_repository(plugin_id)
        repo_url = f"{self.base_url}/repos/{owner}/{repo}"

        if version is not None:
            release = await self.http.get_json(
                f"{repo_url}/releases/tags/{version}",
                source=self.kind.value,
                plugin_id=plugin_id,
            )
            releases = [release]
        else:
            releases = await self.http.get_json(
                f"{repo_url}/releases",
                source=self.kind.value,
                plugin_id=plugin_id,
            ) or []

        candidates = []
        for release in releases:
            try:
                if release.get("draft"):
                    continue
                candidate = self._to_candidate(release)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise SourceUnavailable(
                    self.kind.value, repo_url, f"malformed response: {e!r}", plugin_id
                ) from e
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.published_at, reverse=True)
        log.debug(
            "github_releases_fetched",
            repo=f"{owner}/{repo}",
            total=len(releases),
            usable=len(candidates),
        )
        return candidates

    @staticmethod
    def _to_candidate(release: dict) -> Optional[ReleaseCandidate]:
        """Use the first ``.jar`` asset of a release."""
        asset = next(
            (a for a in release.get("assets") or [] if a.get("name", "").endswith(".jar")),
            None,
        )
        if asset is None:
            return None
        return ReleaseCandidate(
            version=release["tag_name"],
            download_url=asset["browser_download_url"],
            file_name=asset["name"],
            content_hash=None,
            compatible_runtimes=None,
            published_at=release.get("published_at") or release.get("created_at") or "",
        )
