"""Tests for the sync engine."""

import asyncio
import os
from pathlib import Path

import pytest

from mpm.core.errors import HashMismatch, SourceUnavailable, SyncError
from mpm.core.hashing import ContentHash
from mpm.core.lockfile import LockedPlugin, Lockfile
from mpm.core.manifest import SourceKind
from mpm.core.sync import (
    STAGING_PREFIX,
    DirectoryState,
    SyncEngine,
    plan_sync,
    sync,
)


def _entry(name, content: bytes, file_name=None, url=None, algorithm="sha512"):
    return LockedPlugin(
        name=name,
        source=SourceKind.MODRINTH,
        version="1.0",
        file_name=file_name or f"{name}.jar",
        download_url=url if url is not None else f"https://cdn/{name}.jar",
        content_hash=ContentHash.of_bytes(content, algorithm),
    )


def _listing(directory):
    return sorted(p.name for p in directory.iterdir())


class TrackingDownloader:
    """Downloader that records the peak number of downloads in flight."""

    def __init__(self, files: dict):
        self.files = files
        self.active = 0
        self.peak = 0

    async def download(self, url: str) -> bytes:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return self.files[url]
        finally:
            self.active -= 1


# =============================================================================
# DirectoryState
# =============================================================================

class TestDirectoryState:
    """Tests for DirectoryState.scan."""

    def test_only_jars_counted(self, plugins_dir):
        (plugins_dir / "a.jar").write_bytes(b"a")
        (plugins_dir / "B.JAR").write_bytes(b"b")
        (plugins_dir / "config.yml").write_text("x: 1")
        (plugins_dir / "WorldEdit").mkdir()
        (plugins_dir / f"{STAGING_PREFIX}abc").mkdir()

        state = DirectoryState.scan(plugins_dir)

        assert state.exists is True
        assert state.file_names == {"a.jar", "B.JAR"}

    def test_missing_directory(self, config):
        state = DirectoryState.scan(config.plugins_dir)
        assert state.exists is False
        assert state.file_names == set()

    def test_hash_of(self, plugins_dir):
        (plugins_dir / "a.jar").write_bytes(b"a")
        state = DirectoryState.scan(plugins_dir)
        assert state.hash_of("a.jar", "sha256") == ContentHash.of_bytes(b"a")
        assert state.hash_of("missing.jar", "sha256") is None


# =============================================================================
# Planning
# =============================================================================

class TestPlanSync:
    """Tests for plan_sync."""

    def test_keep_fetch_remove(self, plugins_dir):
        (plugins_dir / "good.jar").write_bytes(b"good")
        (plugins_dir / "stale.jar").write_bytes(b"tampered")
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        lockfile = Lockfile([
            _entry("good", b"good"),
            _entry("stale", b"stale"),
            _entry("missing", b"missing"),
        ])

        plan = plan_sync(lockfile, DirectoryState.scan(plugins_dir))

        assert [p.name for p in plan.to_keep] == ["good"]
        assert [p.name for p in plan.to_fetch] == ["missing", "stale"]
        assert plan.to_remove == ["extra.jar"]
        assert plan.changes_pending is True
        assert plan.exit_code == 1

    def test_in_sync(self, plugins_dir):
        (plugins_dir / "a.jar").write_bytes(b"a")
        plan = plan_sync(Lockfile([_entry("a", b"a")]), DirectoryState.scan(plugins_dir))
        assert plan.changes_pending is False
        assert plan.to_dict()["to_keep"] == ["a"]


# =============================================================================
# Execution
# =============================================================================

class TestSyncEngine:
    """Tests for SyncEngine.execute and sync()."""

    @pytest.mark.asyncio
    async def test_extra_jar_scenario(self, plugins_dir, fake_downloader):
        """An unreferenced extra.jar is removed and the missing plugin placed."""
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        lockfile = Lockfile([_entry("luckperms", b"lp")])
        engine = SyncEngine(plugins_dir, fake_downloader({"https://cdn/luckperms.jar": b"lp"}))

        plan, report = await sync(lockfile, engine)

        assert plan.to_remove == ["extra.jar"]
        assert report.fetched == ["luckperms"]
        assert report.removed == ["extra.jar"]
        assert _listing(plugins_dir) == ["luckperms.jar"]
        assert (plugins_dir / "luckperms.jar").read_bytes() == b"lp"

    @pytest.mark.asyncio
    async def test_idempotent(self, plugins_dir, fake_downloader):
        lockfile = Lockfile([_entry("a", b"a"), _entry("b", b"b")])
        downloader = fake_downloader({"https://cdn/a.jar": b"a", "https://cdn/b.jar": b"b"})
        engine = SyncEngine(plugins_dir, downloader)

        await sync(lockfile, engine)
        downloads = len(downloader.calls)
        plan, report = await sync(lockfile, engine)

        assert plan.changes_pending is False
        assert report.changed is False
        assert len(downloader.calls) == downloads

    @pytest.mark.asyncio
    async def test_hash_mismatch_leaves_directory_untouched(self, plugins_dir, fake_downloader):
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        (plugins_dir / "a.jar").write_bytes(b"old a")
        before = {p.name: p.read_bytes() for p in plugins_dir.iterdir()}
        lockfile = Lockfile([_entry("a", b"new a"), _entry("b", b"b")])
        engine = SyncEngine(
            plugins_dir,
            fake_downloader({"https://cdn/a.jar": b"new a", "https://cdn/b.jar": b"corrupted"}),
        )

        with pytest.raises(SyncError) as exc_info:
            await sync(lockfile, engine)

        assert exc_info.value.name == "b"
        assert isinstance(exc_info.value.cause, HashMismatch)
        assert {p.name: p.read_bytes() for p in plugins_dir.iterdir()} == before

    @pytest.mark.asyncio
    async def test_transport_failure_leaves_directory_untouched(self, plugins_dir, fake_downloader):
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        lockfile = Lockfile([_entry("a", b"a")])
        engine = SyncEngine(plugins_dir, fake_downloader({}))

        with pytest.raises(SyncError) as exc_info:
            await sync(lockfile, engine)

        assert isinstance(exc_info.value.cause, SourceUnavailable)
        assert _listing(plugins_dir) == ["extra.jar"]

    @pytest.mark.asyncio
    async def test_imported_entry_without_url_cannot_be_fetched(self, plugins_dir, fake_downloader):
        entry = LockedPlugin(
            name="Legacy",
            source=SourceKind.UNKNOWN,
            version="1.0",
            file_name="Legacy.jar",
            download_url=None,
            content_hash=ContentHash.of_bytes(b"legacy"),
        )
        engine = SyncEngine(plugins_dir, fake_downloader())
        with pytest.raises(SyncError):
            await sync(Lockfile([entry]), engine)

    @pytest.mark.asyncio
    async def test_imported_entry_present_is_kept(self, plugins_dir, fake_downloader):
        (plugins_dir / "Legacy.jar").write_bytes(b"legacy")
        entry = LockedPlugin(
            name="Legacy",
            source=SourceKind.UNKNOWN,
            version="1.0",
            file_name="Legacy.jar",
            download_url=None,
            content_hash=ContentHash.of_bytes(b"legacy"),
        )
        plan, report = await sync(Lockfile([entry]), SyncEngine(plugins_dir, fake_downloader()))
        assert report.kept == ["Legacy"]
        assert plan.changes_pending is False

    @pytest.mark.asyncio
    async def test_dry_run(self, plugins_dir, fake_downloader):
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        downloader = fake_downloader({"https://cdn/a.jar": b"a"})

        plan, report = await sync(Lockfile([_entry("a", b"a")]), SyncEngine(plugins_dir, downloader), dry_run=True)

        assert report is None
        assert plan.changes_pending is True
        assert downloader.calls == []
        assert _listing(plugins_dir) == ["extra.jar"]

    @pytest.mark.asyncio
    async def test_creates_missing_plugins_dir(self, config, fake_downloader):
        engine = SyncEngine(config.plugins_dir, fake_downloader({"https://cdn/a.jar": b"a"}))
        await sync(Lockfile([_entry("a", b"a")]), engine)
        assert _listing(config.plugins_dir) == ["a.jar"]

    @pytest.mark.asyncio
    async def test_cleans_stale_staging(self, plugins_dir, fake_downloader):
        leftover = plugins_dir / f"{STAGING_PREFIX}crashed"
        leftover.mkdir()
        (leftover / "half.jar").write_bytes(b"partial")

        await sync(Lockfile(), SyncEngine(plugins_dir, fake_downloader()))

        assert not leftover.exists()

    @pytest.mark.asyncio
    async def test_no_staging_left_after_success(self, plugins_dir, fake_downloader):
        engine = SyncEngine(plugins_dir, fake_downloader({"https://cdn/a.jar": b"a"}))
        await sync(Lockfile([_entry("a", b"a")]), engine)
        assert not any(p.name.startswith(STAGING_PREFIX) for p in plugins_dir.iterdir())

    @pytest.mark.asyncio
    async def test_downloads_are_bounded(self, plugins_dir):
        names = [f"p{i}" for i in range(8)]
        downloader = TrackingDownloader({f"https://cdn/{n}.jar": n.encode() for n in names})
        engine = SyncEngine(plugins_dir, downloader, concurrency=3)

        await sync(Lockfile([_entry(n, n.encode()) for n in names]), engine)

        assert 1 < downloader.peak <= 3
        assert _listing(plugins_dir) == sorted(f"{n}.jar" for n in names)

    @pytest.mark.asyncio
    async def test_placement_failure_is_rolled_back(self, plugins_dir, fake_downloader, mocker):
        """A failed rename restores removed and replaced files."""
        (plugins_dir / "extra.jar").write_bytes(b"extra")
        (plugins_dir / "a.jar").write_bytes(b"old a")
        before = {p.name: p.read_bytes() for p in plugins_dir.iterdir()}
        lockfile = Lockfile([_entry("a", b"new a"), _entry("b", b"b")])
        engine = SyncEngine(
            plugins_dir,
            fake_downloader({"https://cdn/a.jar": b"new a", "https://cdn/b.jar": b"b"}),
        )

        real_replace = os.replace

        def failing_replace(src, dst):
            if Path(dst) == plugins_dir / "b.jar":
                raise OSError(28, "No space left on device")
            return real_replace(src, dst)

        mocker.patch("mpm.core.sync.os.replace", side_effect=failing_replace)

        with pytest.raises(SyncError) as exc_info:
            await sync(lockfile, engine)

        assert exc_info.value.name == "b"
        assert exc_info.value.phase == "placing"
        assert isinstance(exc_info.value.cause, OSError)
        assert {p.name: p.read_bytes() for p in plugins_dir.iterdir()} == before
