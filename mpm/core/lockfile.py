"""Lockfile model (plugins.lock).

The lockfile is generated, never hand-edited. Entries are always sorted by
name and serialized with a fixed key order so that identical resolved inputs
produce byte-identical files::

    [[plugin]]
    name = "worldedit"
    source = "modrinth"
    version = "7.3.0"
    file = "worldedit-bukkit-7.3.0.jar"
    url = "https://cdn.modrinth.com/..."
    hash = "sha512:..."

``url`` is omitted for imported plugins, which have no remote source.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog
import toml

from mpm.core.errors import LockfileNotFound, ParseError
from mpm.core.fsutil import atomic_write_text
from mpm.core.hashing import ContentHash
from mpm.core.manifest import SourceKind, parse_source

log = structlog.get_logger()

HEADER = "# This file is generated by mpm. Do not edit it by hand.\n\n"


def validate_file_name(file_name: str) -> str:
    """Reject file names that would escape the plugins directory.

    Raises:
        ValueError: If the name is empty, hidden or contains a path separator
    """
    if not file_name or file_name in (".", ".."):
        raise ValueError("file name cannot be empty")
    if "/" in file_name or "\\" in file_name:
        raise ValueError(f"file name must not contain path separators: {file_name!r}")
    if file_name.startswith("."):
        raise ValueError(f"file name must not be hidden: {file_name!r}")
    return file_name


@dataclass(frozen=True)
class LockedPlugin:
    """A fully resolved plugin.

    Attributes:
        name: Manifest key
        source: Source the plugin was resolved from
        version: Exact resolved version
        file_name: File name inside the plugins directory
        download_url: Where to fetch the file (None for imported plugins)
        content_hash: Expected hash of the file bytes
    """

    name: str
    source: SourceKind
    version: str
    file_name: str
    download_url: Optional[str]
    content_hash: ContentHash

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "source": self.source.value,
            "version": self.version,
            "file": self.file_name,
        }
        if self.download_url:
            data["url"] = self.download_url
        data["hash"] = str(self.content_hash)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LockedPlugin":
        """Create from a ``[[plugin]]`` table.

        Raises:
            ValueError: If keys are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError("each [[plugin]] entry must be a table")
        missing = [k for k in ("name", "source", "version", "file", "hash") if k not in data]
        if missing:
            raise ValueError(f"plugin entry {data.get('name', '?')!r} missing keys: {', '.join(missing)}")
        return cls(
            name=str(data["name"]),
            source=parse_source(str(data["source"])),
            version=str(data["version"]),
            file_name=validate_file_name(str(data["file"])),
            download_url=data.get("url") or None,
            content_hash=ContentHash.parse(str(data["hash"])),
        )


@dataclass
class Lockfile:
    """Ordered collection of locked plugins (always sorted by name)."""

    plugins: list[LockedPlugin] = field(default_factory=list)

    def __post_init__(self):
        self.plugins = sorted(self.plugins, key=lambda p: p.name)
        seen = set()
        owners: dict[str, str] = {}
        for plugin in self.plugins:
            if plugin.name in seen:
                raise ValueError(f"duplicate lockfile entry for '{plugin.name}'")
            seen.add(plugin.name)
            if plugin.file_name in owners:
                raise ValueError(
                    f"'{owners[plugin.file_name]}' and '{plugin.name}' both lock the file "
                    f"'{plugin.file_name}'"
                )
            owners[plugin.file_name] = plugin.name

    def get(self, name: str) -> Optional[LockedPlugin]:
        for plugin in self.plugins:
            if plugin.name == name:
                return plugin
        return None

    @property
    def file_names(self) -> set[str]:
        return {p.file_name for p in self.plugins}

    def __len__(self) -> int:
        return len(self.plugins)

    def to_dict(self) -> dict:
        return {"plugin": [p.to_dict() for p in self.plugins]}

    @classmethod
    def from_dict(cls, data: dict) -> "Lockfile":
        entries = data.get("plugin", [])
        if not isinstance(entries, list):
            raise ValueError("'plugin' must be an array of tables")
        return cls(plugins=[LockedPlugin.from_dict(e) for e in entries])

    def dumps(self) -> str:
        """Deterministic serialization."""
        return HEADER + toml.dumps(self.to_dict())

    @classmethod
    def loads(cls, text: str, path: Optional[Path] = None) -> "Lockfile":
        """Parse lockfile text.

        Raises:
            ParseError: On TOML syntax or structure errors
        """
        try:
            return cls.from_dict(toml.loads(text))
        except (toml.TomlDecodeError, ValueError, TypeError) as e:
            raise ParseError(path, str(e)) from e

    @classmethod
    def load(cls, path: Path) -> "Lockfile":
        """Load the lockfile from disk.

        Raises:
            LockfileNotFound: If the file does not exist
            ParseError: If it cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            raise LockfileNotFound(path)
        lockfile = cls.loads(path.read_text(encoding="utf-8"), path)
        log.debug("lockfile_loaded", path=str(path), plugins=len(lockfile))
        return lockfile

    @classmethod
    def load_optional(cls, path: Path) -> Optional["Lockfile"]:
        """Load the lockfile, or return None if it does not exist."""
        try:
            return cls.load(path)
        except LockfileNotFound:
            return None

    def save(self, path: Path) -> None:
        """Write the lockfile atomically."""
        atomic_write_text(Path(path), self.dumps())
        log.debug("lockfile_saved", path=str(path), plugins=len(self))
