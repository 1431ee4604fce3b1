"""Import engine: bootstrap a manifest and lockfile from existing jars.

Every readable jar becomes a requirement pinned to its declared version and a
lock entry with source ``unknown`` and no download URL. Unreadable jars are
reported per file and skipped.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog

from mpm.core.errors import (
    ManifestAlreadyExists,
    MetadataExtractionError,
    PluginsDirMissing,
)
from mpm.core.lockfile import LockedPlugin, Lockfile, validate_file_name
from mpm.core.manifest import Manifest, PluginRequirement, SourceKind
from mpm.core.metadata import (
    DEFAULT_RUNTIME_VERSION,
    detect_runtime_version,
    read_plugin_descriptor,
)
from mpm.core.sync import DirectoryState

log = structlog.get_logger()


@dataclass
class ImportResult:
    """Outcome of an import.

    Attributes:
        manifest: Manifest built from the imported jars
        lockfile: Lockfile built from the imported jars
        failures: Per-file errors for jars that were skipped
    """

    manifest: Manifest
    lockfile: Lockfile
    failures: list[MetadataExtractionError] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return len(self.lockfile)

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "failed": len(self.failures),
            "plugins": [p.to_dict() for p in self.lockfile.plugins],
            "failures": [{"file": f.file_name, "reason": f.reason} for f in self.failures],
        }


def import_directory(plugins_dir: Path, runtime_version: str) -> ImportResult:
    """Build a manifest and lockfile from the jars in ``plugins_dir``.

    Args:
        plugins_dir: Directory holding the plugin jars
        runtime_version: Minecraft version to record in the manifest

    Returns:
        ImportResult; nothing is written to disk
    """
    state = DirectoryState.scan(plugins_dir)
    manifest = Manifest(runtime_version=runtime_version)
    locked = []
    failures = []
    seen: dict[str, str] = {}

    for file_name in sorted(state.file_names):
        try:
            validate_file_name(file_name)
        except ValueError as e:
            error = MetadataExtractionError(file_name, str(e))
            log.warning("import_file_failed", file=file_name, reason=error.reason)
            failures.append(error)
            continue

        try:
            descriptor = read_plugin_descriptor(state.files[file_name])
        except MetadataExtractionError as e:
            log.warning("import_file_failed", file=file_name, reason=e.reason)
            failures.append(e)
            continue

        if descriptor.name in seen:
            error = MetadataExtractionError(
                file_name,
                f"plugin '{descriptor.name}' is already provided by {seen[descriptor.name]}",
            )
            log.warning("import_file_failed", file=file_name, reason=error.reason)
            failures.append(error)
            continue
        seen[descriptor.name] = file_name

        manifest.add(PluginRequirement(
            name=descriptor.name,
            id=descriptor.name,
            source=SourceKind.UNKNOWN,
            version=descriptor.version,
        ))
        locked.append(LockedPlugin(
            name=descriptor.name,
            source=SourceKind.UNKNOWN,
            version=descriptor.version,
            file_name=file_name,
            download_url=None,
            content_hash=state.hash_of(file_name, "sha256"),
        ))
        log.info("plugin_imported", name=descriptor.name, version=descriptor.version, file=file_name)

    return ImportResult(manifest=manifest, lockfile=Lockfile(plugins=locked), failures=failures)


def import_plugins(
    manifest_path: Path,
    lockfile_path: Path,
    plugins_dir: Path,
    runtime_version: str,
) -> ImportResult:
    """Import jars and write the resulting lockfile and manifest.

    Raises:
        ManifestAlreadyExists: If a manifest exists (checked before any write)
        PluginsDirMissing: If the plugins directory does not exist
    """
    manifest_path = Path(manifest_path)
    if manifest_path.exists():
        raise ManifestAlreadyExists(manifest_path)
    if not Path(plugins_dir).is_dir():
        raise PluginsDirMissing(Path(plugins_dir))

    result = import_directory(plugins_dir, runtime_version)

    # Lockfile before manifest
    result.lockfile.save(lockfile_path)
    result.manifest.save(manifest_path)
    log.info(
        "import_completed",
        imported=result.imported,
        failed=len(result.failures),
        runtime=runtime_version,
    )
    return result


def detect_import_runtime(base_dir: Path, explicit: Optional[str] = None) -> str:
    """Runtime version for an import: explicit, detected, or the default."""
    if explicit:
        return explicit
    return detect_runtime_version(base_dir) or DEFAULT_RUNTIME_VERSION
