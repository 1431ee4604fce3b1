"""Sync engine: make the plugins directory match the lockfile exactly.

Execution is two-phase. Every file to fetch is downloaded into a staging
directory inside the plugins directory and verified against its locked hash.
Only when all of them verify are stale files removed and staged files renamed
into place. A failure before that point leaves the live directory untouched;
a failure while placing is rolled back from the files it displaced.
"""

import asyncio
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog

from mpm.core.errors import HashMismatch, MpmError, SyncError
from mpm.core.hashing import ContentHash
from mpm.core.lockfile import LockedPlugin, Lockfile
from mpm.sources.http import Downloader

log = structlog.get_logger()

STAGING_PREFIX = ".mpm-staging-"
BACKUP_DIR = ".backup"
PLUGIN_SUFFIX = ".jar"
DEFAULT_CONCURRENCY = 4


@dataclass
class DirectoryState:
    """Observed plugin jars of a directory.

    Only regular ``.jar`` files directly inside the directory count; staging
    directories and everything else are ignored. Hashes are computed lazily
    and cached per algorithm.
    """

    root: Path
    files: dict[str, Path] = field(default_factory=dict)
    exists: bool = True
    _hashes: dict[tuple[str, str], ContentHash] = field(default_factory=dict, repr=False)

    @classmethod
    def scan(cls, root: Path) -> "DirectoryState":
        root = Path(root)
        if not root.is_dir():
            return cls(root=root, exists=False)

        files = {}
        for entry in root.iterdir():
            if entry.name.startswith(STAGING_PREFIX):
                continue
            if entry.suffix.lower() == PLUGIN_SUFFIX and entry.is_file():
                files[entry.name] = entry
        log.debug("directory_scanned", root=str(root), jars=len(files))
        return cls(root=root, files=files)

    @property
    def file_names(self) -> set[str]:
        return set(self.files)

    def hash_of(self, file_name: str, algorithm: str) -> Optional[ContentHash]:
        """Hash of a file, or None if it is not present."""
        path = self.files.get(file_name)
        if path is None:
            return None
        key = (file_name, algorithm)
        if key not in self._hashes:
            self._hashes[key] = ContentHash.of_file(path, algorithm)
        return self._hashes[key]

    def matches(self, plugin: LockedPlugin) -> bool:
        """Whether the file for ``plugin`` is present with the locked hash."""
        return self.hash_of(plugin.file_name, plugin.content_hash.algorithm) == plugin.content_hash


@dataclass
class SyncPlan:
    """What a sync would do.

    Attributes:
        to_fetch: Entries whose file is missing or has the wrong hash
        to_remove: Jar files no entry refers to
        to_keep: Entries already present with the right hash
    """

    to_fetch: list[LockedPlugin] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    to_keep: list[LockedPlugin] = field(default_factory=list)

    @property
    def changes_pending(self) -> bool:
        return bool(self.to_fetch or self.to_remove)

    @property
    def exit_code(self) -> int:
        return 1 if self.changes_pending else 0

    def to_dict(self) -> dict:
        return {
            "changes_pending": self.changes_pending,
            "exit_code": self.exit_code,
            "to_fetch": [
                {"name": p.name, "version": p.version, "file": p.file_name}
                for p in self.to_fetch
            ],
            "to_remove": list(self.to_remove),
            "to_keep": [p.name for p in self.to_keep],
        }


def plan_sync(lockfile: Lockfile, state: DirectoryState) -> SyncPlan:
    """Compute the minimal set of operations to match the lockfile.

    A file is kept when name and hash match an entry, fetched when it is
    missing or its hash differs, and removed when no entry names it.
    """
    plan = SyncPlan()
    for plugin in lockfile.plugins:
        if state.matches(plugin):
            plan.to_keep.append(plugin)
        else:
            plan.to_fetch.append(plugin)

    plan.to_remove = sorted(state.file_names - lockfile.file_names)
    log.debug(
        "sync_planned",
        fetch=len(plan.to_fetch),
        remove=len(plan.to_remove),
        keep=len(plan.to_keep),
    )
    return plan


@dataclass
class SyncReport:
    """Result of an executed sync."""

    fetched: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.fetched or self.removed)

    def to_dict(self) -> dict:
        return {"fetched": self.fetched, "removed": self.removed, "kept": self.kept}


class SyncEngine:
    """Executes sync plans against a plugins directory.

    Example:
        engine = SyncEngine(config.plugins_dir, http)
        state = DirectoryState.scan(config.plugins_dir)
        report = await engine.execute(plan_sync(lockfile, state))
    """

    def __init__(
        self,
        plugins_dir: Path,
        downloader: Downloader,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        """Initialize the engine.

        Args:
            plugins_dir: Live plugins directory
            downloader: Fetches plugin files
            concurrency: Maximum number of parallel downloads
        """
        self.plugins_dir = Path(plugins_dir)
        self.downloader = downloader
        self.concurrency = max(1, concurrency)

    def cleanup_stale_staging(self) -> list[Path]:
        """Remove staging directories left behind by an interrupted sync."""
        if not self.plugins_dir.is_dir():
            return []
        removed = []
        for entry in self.plugins_dir.iterdir():
            if entry.name.startswith(STAGING_PREFIX) and entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
                removed.append(entry)
                log.info("stale_staging_removed", path=str(entry))
        return removed

    async def _fetch(self, plugin: LockedPlugin, staging: Path, semaphore: asyncio.Semaphore) -> Path:
        if not plugin.download_url:
            raise MpmError(
                f"'{plugin.name}' was imported and has no download URL",
                suggestion="Restore the file by hand or re-add the plugin with 'mpm add'",
            )
        async with semaphore:
            data = await self.downloader.download(plugin.download_url)

        if not plugin.content_hash.matches(data):
            actual = ContentHash.of_bytes(data, plugin.content_hash.algorithm)
            raise HashMismatch(plugin.name, str(plugin.content_hash), str(actual))

        staged = staging / plugin.file_name
        staged.write_bytes(data)
        log.debug("plugin_staged", name=plugin.name, file=plugin.file_name, size=len(data))
        return staged

    async def execute(self, plan: SyncPlan) -> SyncReport:
        """Apply a plan.

        Raises:
            SyncError: If any fetch or placement fails; the live directory then
                keeps its previous contents
        """
        report = SyncReport(kept=[p.name for p in plan.to_keep])
        if not plan.changes_pending:
            return report

        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.plugins_dir))
        try:
            semaphore = asyncio.Semaphore(self.concurrency)
            results = await asyncio.gather(
                *(self._fetch(p, staging, semaphore) for p in plan.to_fetch),
                return_exceptions=True,
            )
            for plugin, result in zip(plan.to_fetch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    log.error("sync_fetch_failed", name=plugin.name, error=str(result))
                    raise SyncError(plugin.name, result) from result

            # Every fetch verified: mutate the live directory
            self._place(plan, results, staging / BACKUP_DIR, report)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return report

    def _place(self, plan: SyncPlan, staged_files: list, backup: Path, report: SyncReport) -> None:
        """Remove and replace live files, moving displaced ones into ``backup``.

        If any filesystem operation fails, files placed so far are removed and
        the displaced ones are moved back before SyncError is raised.
        """
        backup.mkdir()
        displaced: list[tuple[Path, Path]] = []
        placed: list[Path] = []
        current = ""
        try:
            for file_name in plan.to_remove:
                current = file_name
                live = self.plugins_dir / file_name
                os.replace(live, backup / file_name)
                displaced.append((live, backup / file_name))

            for plugin, staged in zip(plan.to_fetch, staged_files):
                current = plugin.name
                live = self.plugins_dir / plugin.file_name
                if live.exists():
                    os.replace(live, backup / plugin.file_name)
                    displaced.append((live, backup / plugin.file_name))
                os.replace(staged, live)
                placed.append(live)
        except OSError as e:
            log.error("sync_place_failed", subject=current, error=str(e))
            self._rollback(placed, displaced)
            raise SyncError(current, e, phase="placing") from e

        for file_name in plan.to_remove:
            report.removed.append(file_name)
            log.info("plugin_removed", file=file_name)
        for plugin in plan.to_fetch:
            report.fetched.append(plugin.name)
            log.info("plugin_installed", name=plugin.name, version=plugin.version)

    @staticmethod
    def _rollback(placed: list[Path], displaced: list[tuple[Path, Path]]) -> None:
        for live in reversed(placed):
            live.unlink(missing_ok=True)
        for live, saved in reversed(displaced):
            os.replace(saved, live)
        log.warning("sync_rolled_back", restored=len(displaced), discarded=len(placed))


async def sync(lockfile: Lockfile, engine: SyncEngine, dry_run: bool = False) -> tuple[SyncPlan, Optional[SyncReport]]:
    """Plan and, unless dry-run, execute a sync.

    Returns:
        Tuple of (plan, report); the report is None for a dry run
    """
    if not dry_run:
        engine.cleanup_stale_staging()
    plan = plan_sync(lockfile, DirectoryState.scan(engine.plugins_dir))
    if dry_run:
        return plan, None
    report = await engine.execute(plan)
    log.info(
        "sync_completed",
        fetched=len(report.fetched),
        removed=len(report.removed),
        kept=len(report.kept),
    )
    return plan, report
