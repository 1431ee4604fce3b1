"""HTTP client shared by the source resolvers and the downloaders."""

from typing import Any, Optional, Protocol, runtime_checkable

import httpx
import structlog

from mpm import __version__
from mpm.core.errors import NotFound, SourceUnavailable

log = structlog.get_logger()


@runtime_checkable
class Downloader(Protocol):
    """Anything that can fetch the raw bytes behind a URL."""

    async def download(self, url: str) -> bytes:
        ...


class HttpClient:
    """Thin wrapper over httpx.AsyncClient with mpm's error mapping.

    Transport errors and non-2xx responses become SourceUnavailable; a 404
    from an API endpoint becomes NotFound. Nothing is retried.

    Example:
        async with HttpClient(timeout=30) as http:
            data = await http.get_json(url, source="modrinth", plugin_id="worldedit")
    """

    # Default timeout in seconds
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (tests pass a mock transport here)
        """
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": f"mpm/{__version__}"},
        )

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_json(
        self,
        url: str,
        *,
        source: str,
        plugin_id: str = "",
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """GET a JSON document.

        Args:
            url: Endpoint URL
            source: Source name for error context
            plugin_id: Plugin id for error context
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            NotFound: On HTTP 404
            SourceUnavailable: On any other failure
        """
        log.debug("http_get_json", url=url, source=source, params=params)
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException:
            raise SourceUnavailable(
                source, url, f"timed out after {self.timeout} seconds", plugin_id
            ) from None
        except httpx.HTTPError as e:
            raise SourceUnavailable(source, url, f"connection failed: {e}", plugin_id) from e

        if response.status_code == 404:
            raise NotFound(source, plugin_id)
        if not response.is_success:
            raise SourceUnavailable(
                source,
                url,
                f"HTTP {response.status_code} {response.reason_phrase}",
                plugin_id,
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailable(source, url, f"invalid JSON: {e}", plugin_id) from e

    async def download(self, url: str) -> bytes:
        """Fetch the full body of ``url``.

        Raises:
            SourceUnavailable: On transport errors or non-2xx responses
        """
        log.debug("http_download", url=url)
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException:
            raise SourceUnavailable(
                "download", url, f"timed out after {self.timeout} seconds"
            ) from None
        except httpx.HTTPError as e:
            raise SourceUnavailable("download", url, f"connection failed: {e}") from e

        if not response.is_success:
            raise SourceUnavailable(
                "download", url, f"HTTP {response.status_code} {response.reason_phrase}"
            )

        log.debug("http_download_complete", url=url, size=len(response.content))
        return response.content
