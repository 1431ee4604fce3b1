"""Error taxonomy for mpm.

Every failure raised by the core derives from MpmError and carries the context
needed to render a precise message: plugin name, source, attempted version and,
where relevant, the list of compatible versions. Nothing here is retried
automatically and nothing is silently swallowed by the core.
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Sequence


class ErrorCategory(Enum):
    """Categories of errors for rendering and exit-code decisions."""

    PARSE = "parse"                # Malformed manifest/lockfile text
    RESOLUTION = "resolution"      # Plugin or version could not be resolved
    TRANSPORT = "transport"        # Network or remote API failure
    INTEGRITY = "integrity"        # Content hash verification failed
    PRECONDITION = "precondition"  # Missing or conflicting on-disk state


class MpmError(Exception):
    """Base class for all mpm errors."""

    category: ErrorCategory = ErrorCategory.PRECONDITION
    exit_code: int = 2

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def __str__(self) -> str:
        """Human-readable error representation."""
        parts = [self.message]
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class ParseError(MpmError):
    """A manifest or lockfile could not be parsed."""

    category = ErrorCategory.PARSE

    def __init__(self, path: Optional[Path], detail: str):
        self.path = path
        self.detail = detail
        where = str(path) if path else "<text>"
        super().__init__(
            f"Failed to parse {where}: {detail}",
            suggestion="Fix the file by hand or regenerate it",
        )


class ManifestNotFound(MpmError):
    """No manifest exists at the configured location."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Manifest not found: {path}",
            suggestion="Run 'mpm init' first",
        )


class ManifestAlreadyExists(MpmError):
    """Import was asked to bootstrap over an existing manifest."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"{path.name} already exists at {path}",
            suggestion="Remove it first before importing",
        )


class LockfileNotFound(MpmError):
    """No lockfile exists at the configured location."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Lockfile not found: {path}",
            suggestion="Run 'mpm lock' first",
        )


class PluginsDirMissing(MpmError):
    """The plugins directory to import from does not exist."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Plugins directory '{path}' does not exist")


class PluginNotInManifest(MpmError):
    """A named plugin is not declared in the manifest."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Plugin '{name}' not found in manifest")


# ---------------------------------------------------------------------------
# Resolution errors
# ---------------------------------------------------------------------------


class SourceError(MpmError):
    """Base class for errors raised while querying a plugin source."""

    category = ErrorCategory.RESOLUTION

    def __init__(
        self,
        message: str,
        source: str,
        plugin_id: str = "",
        suggestion: Optional[str] = None,
    ):
        self.source = source
        self.plugin_id = plugin_id
        super().__init__(message, suggestion=suggestion)


class NotFound(SourceError):
    """The plugin id is unknown to the source."""

    def __init__(self, source: str, plugin_id: str, detail: Optional[str] = None):
        message = f"Plugin '{plugin_id}' not found in {source}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(
            message,
            source=source,
            plugin_id=plugin_id,
            suggestion="Check the plugin id or pin a different source",
        )


class SourceUnavailable(SourceError):
    """The source could not be reached or answered with a server error."""

    category = ErrorCategory.TRANSPORT

    def __init__(self, source: str, url: str, detail: str, plugin_id: str = ""):
        self.url = url
        self.detail = detail
        super().__init__(
            f"{source} request failed: {url} ({detail})",
            source=source,
            plugin_id=plugin_id,
            suggestion="Check your network connection and try again",
        )


class IncompatibleVersion(SourceError):
    """A pinned version is not among the versions compatible with the runtime."""

    def __init__(
        self,
        source: str,
        plugin_id: str,
        version: str,
        runtime_version: str,
        compatible_versions: Sequence[str],
        declared_runtimes: Optional[Sequence[str]] = None,
    ):
        self.version = version
        self.runtime_version = runtime_version
        self.compatible_versions = list(compatible_versions)
        self.declared_runtimes = list(declared_runtimes) if declared_runtimes else []

        message = (
            f"Plugin '{plugin_id}' version '{version}' is not compatible with "
            f"Minecraft {runtime_version}"
        )
        if self.declared_runtimes:
            message += f" (it supports: {', '.join(self.declared_runtimes)})"
        message += ". Compatible versions: " + (
            ", ".join(self.compatible_versions) if self.compatible_versions else "none"
        )
        super().__init__(message, source=source, plugin_id=plugin_id)


class NoCompatibleVersion(SourceError):
    """No published version of the plugin supports the runtime."""

    def __init__(
        self,
        source: str,
        plugin_id: str,
        runtime_version: str,
        latest_runtimes: Optional[Sequence[str]] = None,
    ):
        self.runtime_version = runtime_version
        self.latest_runtimes = list(latest_runtimes) if latest_runtimes else []
        supported = ", ".join(self.latest_runtimes) if self.latest_runtimes else "unknown"
        super().__init__(
            f"No versions of plugin '{plugin_id}' are compatible with Minecraft "
            f"{runtime_version}. Latest version supports: {supported}",
            source=source,
            plugin_id=plugin_id,
        )


class UnresolvableSource(SourceError):
    """The requirement's source cannot be resolved remotely (imported plugins)."""

    def __init__(self, plugin_id: str, detail: str):
        super().__init__(
            f"Plugin '{plugin_id}' has no remote source: {detail}",
            source="unknown",
            plugin_id=plugin_id,
            suggestion="Re-add the plugin from a real source with 'mpm add'",
        )


class ResolutionError(MpmError):
    """A manifest requirement failed to resolve; the whole lock is aborted."""

    category = ErrorCategory.RESOLUTION

    def __init__(self, name: str, cause: MpmError):
        self.name = name
        self.cause = cause
        super().__init__(
            f"Failed to resolve '{name}': {cause.message}",
            suggestion=cause.suggestion,
        )


# ---------------------------------------------------------------------------
# Sync / integrity errors
# ---------------------------------------------------------------------------


class HashMismatch(MpmError):
    """Downloaded bytes do not match the locked content hash."""

    category = ErrorCategory.INTEGRITY

    def __init__(self, name: str, expected: str, actual: str):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash mismatch for {name}: expected {expected}, got {actual}",
            suggestion="The upstream file changed; run 'mpm lock' to re-resolve",
        )


class SyncError(MpmError):
    """A sync was aborted; the live plugins directory keeps its previous contents."""

    def __init__(self, name: str, cause: Exception, phase: str = "fetching"):
        self.name = name
        self.cause = cause
        self.phase = phase
        detail = cause.message if isinstance(cause, MpmError) else str(cause)
        super().__init__(
            f"Sync aborted while {phase} '{name}': {detail}",
            suggestion=getattr(cause, "suggestion", None),
        )
        if isinstance(cause, MpmError):
            self.category = cause.category


class MetadataExtractionError(MpmError):
    """Plugin metadata could not be read from a jar file."""

    category = ErrorCategory.PARSE

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not read plugin metadata from {file_name}: {reason}")
