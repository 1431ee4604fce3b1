"""Lock engine: manifest -> deterministic lockfile.

Resolution runs concurrently per plugin (bounded by a semaphore) and is joined
before anything is written: one failed requirement aborts the whole lock, so a
partial lockfile is never produced.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from mpm.core.doctor import HealthFinding, Severity
from mpm.core.errors import MpmError, ResolutionError, UnresolvableSource
from mpm.core.hashing import ContentHash
from mpm.core.lockfile import LockedPlugin, Lockfile, validate_file_name
from mpm.core.manifest import Manifest, PluginRequirement, SourceKind
from mpm.core.versions import DEFAULT_COMPARATOR, Ordering, VersionComparator
from mpm.sources.http import Downloader
from mpm.sources.registry import SourceRegistry

log = structlog.get_logger()

DEFAULT_CONCURRENCY = 4


class ChangeKind(str, Enum):
    """Kinds of lockfile changes."""

    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


@dataclass(frozen=True)
class LockChange:
    """One difference between the existing and the new lockfile."""

    kind: ChangeKind
    name: str
    old: Optional[LockedPlugin] = None
    new: Optional[LockedPlugin] = None

    @property
    def changed_fields(self) -> list[str]:
        """Which of version, hash and url differ (CHANGED only)."""
        if self.old is None or self.new is None:
            return []
        fields = []
        if self.old.version != self.new.version:
            fields.append("version")
        if self.old.content_hash != self.new.content_hash:
            fields.append("hash")
        if self.old.download_url != self.new.download_url:
            fields.append("url")
        return fields

    def direction(self, comparator: VersionComparator = DEFAULT_COMPARATOR) -> Optional[str]:
        """Return "upgrade", "downgrade", or None when the version did not move."""
        if self.old is None or self.new is None:
            return None
        order = comparator.compare(self.new.version, self.old.version)
        if order is Ordering.GREATER:
            return "upgrade"
        if order is Ordering.LESS:
            return "downgrade"
        return None

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value, "name": self.name}
        if self.old is not None:
            data["old"] = self.old.to_dict()
        if self.new is not None:
            data["new"] = self.new.to_dict()
        if self.kind is ChangeKind.CHANGED:
            data["fields"] = self.changed_fields
            data["direction"] = self.direction()
        return data


def diff(existing: Optional[Lockfile], new: Lockfile) -> list[LockChange]:
    """Diff two lockfiles by plugin name.

    Args:
        existing: Lockfile currently on disk (None if there is none)
        new: Freshly computed lockfile

    Returns:
        Changes sorted by name
    """
    old_by_name = {p.name: p for p in existing.plugins} if existing else {}
    new_by_name = {p.name: p for p in new.plugins}

    changes = []
    for name in sorted(old_by_name.keys() | new_by_name.keys()):
        old = old_by_name.get(name)
        current = new_by_name.get(name)
        if old is None:
            changes.append(LockChange(ChangeKind.ADDED, name, new=current))
        elif current is None:
            changes.append(LockChange(ChangeKind.REMOVED, name, old=old))
        elif (old.version, old.content_hash, old.download_url) != (
            current.version,
            current.content_hash,
            current.download_url,
        ):
            changes.append(LockChange(ChangeKind.CHANGED, name, old=old, new=current))
    return changes


@dataclass
class LockResult:
    """Outcome of a lock computation.

    Attributes:
        lockfile: The computed lockfile
        changes: Diff against the existing lockfile
        findings: Warnings raised during resolution
        existed: Whether a lockfile existed before
        written: Whether the lockfile was written to disk
    """

    lockfile: Lockfile
    changes: list[LockChange] = field(default_factory=list)
    findings: list[HealthFinding] = field(default_factory=list)
    existed: bool = True
    written: bool = False

    @property
    def changes_pending(self) -> bool:
        """True when writing would change the lockfile on disk."""
        return bool(self.changes) or not self.existed

    @property
    def exit_code(self) -> int:
        return 1 if self.changes_pending else 0

    def to_dict(self) -> dict:
        return {
            "changes_pending": self.changes_pending,
            "exit_code": self.exit_code,
            "written": self.written,
            "changes": [c.to_dict() for c in self.changes],
            "findings": [f.to_dict() for f in self.findings],
        }


class LockEngine:
    """Resolves a manifest into a lockfile.

    Example:
        engine = LockEngine(SourceRegistry.default(http), http)
        lockfile, findings = await engine.compute_lockfile(manifest, existing)
    """

    def __init__(
        self,
        registry: SourceRegistry,
        downloader: Downloader,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        """Initialize the engine.

        Args:
            registry: Source resolvers
            downloader: Used to hash candidates that carry no published hash
            concurrency: Maximum number of plugins resolved at once
        """
        self.registry = registry
        self.downloader = downloader
        self.concurrency = max(1, concurrency)

    async def compute_lockfile(
        self,
        manifest: Manifest,
        existing: Optional[Lockfile] = None,
    ) -> tuple[Lockfile, list[HealthFinding]]:
        """Resolve every requirement.

        Args:
            manifest: Desired plugins and runtime version
            existing: Current lockfile; imported (UNKNOWN) entries are carried over from it

        Returns:
            Tuple of (lockfile, resolution findings)

        Raises:
            ResolutionError: For the first failing requirement in name order
        """
        requirements = manifest.sorted_requirements()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(requirement: PluginRequirement):
            async with semaphore:
                return await self._lock_one(requirement, manifest.runtime_version, existing)

        log.info(
            "lock_started",
            plugins=len(requirements),
            runtime=manifest.runtime_version,
            concurrency=self.concurrency,
        )
        results = await asyncio.gather(
            *(bounded(r) for r in requirements), return_exceptions=True
        )

        locked = []
        findings = []
        owners: dict[str, str] = {}
        for requirement, result in zip(requirements, results):
            if isinstance(result, BaseException):
                if isinstance(result, ResolutionError):
                    raise result
                if isinstance(result, MpmError):
                    log.error("lock_failed", name=requirement.name, error=result.message)
                    raise ResolutionError(requirement.name, result) from result
                raise result
            plugin, finding = result
            if plugin.file_name in owners:
                other = owners[plugin.file_name]
                log.error("lock_file_name_conflict", name=plugin.name, other=other, file=plugin.file_name)
                raise ResolutionError(
                    plugin.name,
                    MpmError(
                        f"file '{plugin.file_name}' is already locked for '{other}'",
                        suggestion=f"Pin a different release of '{plugin.name}' or '{other}'",
                    ),
                )
            owners[plugin.file_name] = plugin.name
            locked.append(plugin)
            if finding is not None:
                findings.append(finding)

        log.info("lock_completed", plugins=len(locked), warnings=len(findings))
        return Lockfile(plugins=locked), findings

    async def _lock_one(
        self,
        requirement: PluginRequirement,
        runtime_version: str,
        existing: Optional[Lockfile],
    ) -> tuple[LockedPlugin, Optional[HealthFinding]]:
        if requirement.source is SourceKind.UNKNOWN:
            return self._carry_over(requirement, existing), None

        resolution = await self.registry.resolve(requirement, runtime_version)
        candidate = resolution.candidate

        content_hash = candidate.content_hash
        if content_hash is None:
            data = await self.downloader.download(candidate.download_url)
            content_hash = ContentHash.of_bytes(data, "sha256")
            log.debug("candidate_hashed", name=requirement.name, hash=str(content_hash))

        try:
            file_name = validate_file_name(candidate.file_name)
        except ValueError as e:
            raise ResolutionError(
                requirement.name,
                MpmError(f"{resolution.source.value} returned an unusable file name: {e}"),
            ) from e

        plugin = LockedPlugin(
            name=requirement.name,
            source=resolution.source,
            version=candidate.version,
            file_name=file_name,
            download_url=candidate.download_url,
            content_hash=content_hash,
        )

        finding = None
        if not candidate.compatibility_known:
            log.warning(
                "compatibility_unverified",
                name=requirement.name,
                source=resolution.source.value,
                version=candidate.version,
                runtime=runtime_version,
            )
            finding = HealthFinding(
                severity=Severity.WARNING,
                code="unverified-compatibility",
                subject=requirement.name,
                message=(
                    f"{resolution.source.value} publishes no Minecraft compatibility data; "
                    f"verify {candidate.version} works with {runtime_version} manually"
                ),
            )
        return plugin, finding

    @staticmethod
    def _carry_over(requirement: PluginRequirement, existing: Optional[Lockfile]) -> LockedPlugin:
        """Keep an imported plugin's lock entry as it is."""
        entry = existing.get(requirement.name) if existing else None
        if entry is None:
            raise ResolutionError(
                requirement.name,
                UnresolvableSource(requirement.id, "imported plugin has no lockfile entry"),
            )
        if requirement.version is not None and requirement.version != entry.version:
            raise ResolutionError(
                requirement.name,
                UnresolvableSource(
                    requirement.id,
                    f"version {requirement.version} was requested but only the imported "
                    f"{entry.version} is available",
                ),
            )
        return entry


async def lock(
    manifest: Manifest,
    lockfile_path: Path,
    engine: LockEngine,
    dry_run: bool = False,
) -> LockResult:
    """Compute the lockfile, diff it against disk and write it unless dry-run.

    Nothing is written when resolution fails or when the lockfile would not change.
    """
    existing = Lockfile.load_optional(lockfile_path)
    lockfile, findings = await engine.compute_lockfile(manifest, existing)
    result = LockResult(
        lockfile=lockfile,
        changes=diff(existing, lockfile),
        findings=findings,
        existed=existing is not None,
    )

    if dry_run or not result.changes_pending:
        log.info("lock_not_written", dry_run=dry_run, changes=len(result.changes))
        return result

    lockfile.save(lockfile_path)
    result.written = True
    log.info("lockfile_written", path=str(lockfile_path), changes=len(result.changes))
    return result
