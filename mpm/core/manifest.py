"""Manifest model (plugins.toml).

The manifest is the human-edited declaration of desired plugins::

    [minecraft]
    version = "1.20.1"

    [plugins.worldedit]
    source = "modrinth"
    id = "worldedit"
    version = "7.3.0"

``source`` may be omitted (search all sources in priority order) and
``version`` may be omitted (resolve to the latest compatible version).
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog
import toml

from mpm.core.errors import ManifestNotFound, ParseError
from mpm.core.fsutil import atomic_write_text

log = structlog.get_logger()


class SourceKind(str, Enum):
    """Plugin sources. UNKNOWN marks plugins bootstrapped by import."""

    MODRINTH = "modrinth"
    HANGAR = "hangar"
    GITHUB = "github"
    UNKNOWN = "unknown"

    @property
    def resolvable(self) -> bool:
        """Whether a remote resolver exists for this source."""
        return self is not SourceKind.UNKNOWN


# Order in which sources are searched when a requirement pins none
SOURCE_PRIORITY = (SourceKind.MODRINTH, SourceKind.HANGAR, SourceKind.GITHUB)


def parse_source(value: str) -> SourceKind:
    """Parse a source name, case-insensitively.

    Raises:
        ValueError: If the name is not a known source
    """
    try:
        return SourceKind(value.strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in SourceKind)
        raise ValueError(f"Unsupported source '{value}'. Supported sources: {valid}") from None


@dataclass
class PluginRequirement:
    """A single plugin declared in the manifest.

    Attributes:
        name: Unique key within the manifest
        id: Source-specific plugin identifier
        source: Pinned source, or None to search all sources
        version: Pinned version, or None for latest compatible
    """

    name: str
    id: str
    source: Optional[SourceKind] = None
    version: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the manifest's TOML table layout."""
        data = {}
        if self.source is not None:
            data["source"] = self.source.value
        data["id"] = self.id
        if self.version is not None:
            data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "PluginRequirement":
        """Create from a manifest table.

        Raises:
            ValueError: If required keys are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"plugin '{name}' must be a table")
        plugin_id = data.get("id")
        if not isinstance(plugin_id, str) or not plugin_id.strip():
            raise ValueError(f"plugin '{name}' is missing a non-empty 'id'")

        source = data.get("source")
        version = data.get("version")
        if version is not None and not isinstance(version, str):
            raise ValueError(f"plugin '{name}' version must be a string")

        return cls(
            name=name,
            id=plugin_id.strip(),
            source=parse_source(source) if source else None,
            version=version.strip() if version else None,
        )


@dataclass
class Manifest:
    """Desired plugins plus the target Minecraft version.

    Attributes:
        runtime_version: Minecraft version all plugins must support
        requirements: Requirements keyed by name
    """

    runtime_version: str
    requirements: dict[str, PluginRequirement] = field(default_factory=dict)

    def add(self, requirement: PluginRequirement) -> Optional[PluginRequirement]:
        """Add or replace a requirement. Returns the replaced one, if any."""
        previous = self.requirements.get(requirement.name)
        self.requirements[requirement.name] = requirement
        return previous

    def remove(self, name: str) -> Optional[PluginRequirement]:
        """Remove a requirement by name. Returns it, or None if absent."""
        return self.requirements.pop(name, None)

    def sorted_requirements(self) -> list[PluginRequirement]:
        return [self.requirements[name] for name in sorted(self.requirements)]

    def to_dict(self) -> dict:
        return {
            "minecraft": {"version": self.runtime_version},
            "plugins": {r.name: r.to_dict() for r in self.sorted_requirements()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        """Create from parsed TOML.

        Raises:
            ValueError: If the structure is invalid
        """
        minecraft = data.get("minecraft")
        if not isinstance(minecraft, dict) or not isinstance(minecraft.get("version"), str):
            raise ValueError("missing [minecraft] table with a 'version' string")

        plugins = data.get("plugins", {})
        if not isinstance(plugins, dict):
            raise ValueError("[plugins] must be a table")

        requirements = {
            name: PluginRequirement.from_dict(name, spec) for name, spec in plugins.items()
        }
        return cls(runtime_version=minecraft["version"].strip(), requirements=requirements)

    def dumps(self) -> str:
        return toml.dumps(self.to_dict())

    @classmethod
    def loads(cls, text: str, path: Optional[Path] = None) -> "Manifest":
        """Parse manifest text.

        Raises:
            ParseError: On TOML syntax or structure errors
        """
        try:
            return cls.from_dict(toml.loads(text))
        except (toml.TomlDecodeError, ValueError, TypeError) as e:
            raise ParseError(path, str(e)) from e

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load the manifest from disk.

        Raises:
            ManifestNotFound: If the file does not exist
            ParseError: If it cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            raise ManifestNotFound(path)
        manifest = cls.loads(path.read_text(encoding="utf-8"), path)
        log.debug("manifest_loaded", path=str(path), plugins=len(manifest.requirements))
        return manifest

    def save(self, path: Path) -> None:
        """Write the manifest atomically."""
        atomic_write_text(Path(path), self.dumps())
        log.debug("manifest_saved", path=str(path), plugins=len(self.requirements))


def parse_plugin_spec(spec: str) -> tuple[Optional[SourceKind], str, Optional[str]]:
    """Parse an ``add`` spec.

    Accepted forms: ``id``, ``id@version``, ``source:id``, ``source:id@version``.

    Returns:
        Tuple of (source or None, id, version or None)

    Raises:
        ValueError: On an empty id, empty version or unknown source
    """
    spec = spec.strip()
    source = None
    if ":" in spec:
        source_text, spec = spec.split(":", 1)
        source = parse_source(source_text)

    plugin_id, sep, version = spec.partition("@")
    plugin_id = plugin_id.strip()
    if not plugin_id:
        raise ValueError("Plugin id cannot be empty")
    if sep and not version.strip():
        raise ValueError("Version after '@' cannot be empty")

    return source, plugin_id, version.strip() if sep else None


def default_name_for(plugin_id: str) -> str:
    """Manifest key for a plugin id (``owner/repo`` -> ``repo``)."""
    return plugin_id.rstrip("/").rsplit("/", 1)[-1]
