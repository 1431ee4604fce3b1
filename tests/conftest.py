"""Shared test fixtures."""

import hashlib
import io
import zipfile
import pytest
import tempfile
from pathlib import Path
from typing import Optional

from mpm.core.errors import NotFound, SourceUnavailable
from mpm.core.hashing import ContentHash
from mpm.core.manifest import SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR
from mpm.logging import setup_logging
from mpm.sources.base import ReleaseCandidate


class FakeResolver:
    """In-memory resolver keyed by plugin id."""

    def __init__(self, kind: SourceKind, releases: Optional[dict] = None, errors: Optional[dict] = None):
        self.kind = kind
        self.comparator = DEFAULT_COMPARATOR
        self.releases = releases or {}
        self.errors = errors or {}
        self.calls = []

    async def resolve(self, plugin_id, version, runtime_version):
        self.calls.append((plugin_id, version, runtime_version))
        if plugin_id in self.errors:
            raise self.errors[plugin_id]
        if plugin_id not in self.releases:
            raise NotFound(self.kind.value, plugin_id)
        return list(self.releases[plugin_id])


class FakeDownloader:
    """Serves bytes from a dict of url -> content."""

    def __init__(self, files: Optional[dict] = None):
        self.files = dict(files or {})
        self.calls = []

    async def download(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.files:
            raise SourceUnavailable("download", url, "HTTP 404 Not Found")
        return self.files[url]


def build_jar(descriptor: Optional[dict] = None, descriptor_name: str = "plugin.yml", extra: Optional[dict] = None) -> bytes:
    """Build jar (zip) bytes with an optional YAML plugin descriptor."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as jar:
        if descriptor is not None:
            body = "\n".join(f"{k}: {v}" for k, v in descriptor.items()) + "\n"
            jar.writestr(descriptor_name, body)
        for name, content in (extra or {}).items():
            jar.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    """Route structlog through stdlib at WARNING, as the CLI does."""
    setup_logging("WARNING")


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def config(temp_dir):
    """Test configuration rooted at a temp directory."""
    from mpm.config import MpmConfig

    return MpmConfig.load(base_dir=str(temp_dir), env={})


@pytest.fixture
def plugins_dir(config):
    """Existing, empty plugins directory."""
    config.plugins_dir.mkdir(parents=True, exist_ok=True)
    return config.plugins_dir


@pytest.fixture
def make_jar():
    """Factory writing a plugin jar into a directory."""

    def _make(directory: Path, file_name: str, name: Optional[str] = None, version: str = "1.0.0", **kwargs) -> Path:
        descriptor = {"name": name, "version": version, "main": "com.example.Main"} if name else None
        path = Path(directory) / file_name
        path.write_bytes(build_jar(descriptor, **kwargs))
        return path

    return _make


@pytest.fixture
def make_candidate():
    """Factory for release candidates whose hash matches their content."""

    def _make(
        version: str,
        runtimes=("1.20.1",),
        content: Optional[bytes] = None,
        file_name: Optional[str] = None,
        url: Optional[str] = None,
        with_hash: bool = True,
        published_at: str = "",
    ) -> ReleaseCandidate:
        content = content if content is not None else f"jar-{version}".encode()
        return ReleaseCandidate(
            version=version,
            download_url=url or f"https://cdn.example.com/{version}.jar",
            file_name=file_name or f"plugin-{version}.jar",
            content_hash=ContentHash.of_bytes(content, "sha512") if with_hash else None,
            compatible_runtimes=frozenset(runtimes) if runtimes is not None else None,
            published_at=published_at,
        )

    return _make


@pytest.fixture
def sha256():
    """Helper returning the ``sha256:<hex>`` form of some bytes."""

    def _hash(data: bytes) -> str:
        return "sha256:" + hashlib.sha256(data).hexdigest()

    return _hash


@pytest.fixture
def fake_resolver():
    """Factory for in-memory resolvers: fake_resolver(kind, releases, errors)."""
    return FakeResolver


@pytest.fixture
def fake_downloader():
    """Factory for in-memory downloaders: fake_downloader({url: bytes})."""
    return FakeDownloader
