"""Plugin and server metadata read from jar files."""

import re
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
import yaml

from mpm.core.errors import MetadataExtractionError
from mpm.core.versions import normalize_runtime_version

log = structlog.get_logger()

DEFAULT_RUNTIME_VERSION = "1.21.11"

# Checked in order; the first one present wins
DESCRIPTOR_FILES = ("plugin.yml", "paper-plugin.yml", "bungee.yml")

_SERVER_JAR_RE = re.compile(r"^paper(?:mc)?-(\d+(?:\.\d+)+)(?:-.*)?\.jar$", re.IGNORECASE)
_MANIFEST_VERSION_KEYS = ("Implementation-Version", "Specification-Version")


@dataclass(frozen=True)
class PluginDescriptor:
    """Name and version declared inside a plugin jar.

    Attributes:
        name: Declared plugin name
        version: Declared plugin version
        descriptor: Which descriptor file they were read from
    """

    name: str
    version: str
    descriptor: str


def read_plugin_descriptor(path: Path) -> PluginDescriptor:
    """Read the plugin descriptor from a jar.

    Args:
        path: Path to the jar file

    Returns:
        PluginDescriptor

    Raises:
        MetadataExtractionError: If the jar is unreadable or lacks a usable descriptor
    """
    path = Path(path)
    try:
        with zipfile.ZipFile(path) as jar:
            names = set(jar.namelist())
            descriptor = next((d for d in DESCRIPTOR_FILES if d in names), None)
            if descriptor is None:
                raise MetadataExtractionError(
                    path.name, f"no {', '.join(DESCRIPTOR_FILES)} found"
                )
            raw = jar.read(descriptor)
    except zipfile.BadZipFile:
        raise MetadataExtractionError(path.name, "not a valid jar (zip) file") from None
    except (zlib.error, zipfile.LargeZipFile, NotImplementedError, RuntimeError) as e:
        # Corrupt deflate data, encrypted entries
        raise MetadataExtractionError(path.name, f"cannot read jar entry: {e}") from e
    except OSError as e:
        raise MetadataExtractionError(path.name, str(e)) from e

    try:
        data = yaml.safe_load(raw.decode("utf-8", errors="replace"))
    except yaml.YAMLError as e:
        raise MetadataExtractionError(path.name, f"invalid {descriptor}: {e}") from e
    if not isinstance(data, dict):
        raise MetadataExtractionError(path.name, f"{descriptor} is not a mapping")

    name = data.get("name")
    version = data.get("version")
    if name is None or not str(name).strip():
        raise MetadataExtractionError(path.name, f"{descriptor} has no 'name'")
    if version is None or not str(version).strip():
        raise MetadataExtractionError(path.name, f"{descriptor} has no 'version'")

    return PluginDescriptor(name=str(name).strip(), version=str(version).strip(), descriptor=descriptor)


def _version_from_server_manifest(path: Path) -> Optional[str]:
    try:
        with zipfile.ZipFile(path) as jar:
            text = jar.read("META-INF/MANIFEST.MF").decode("utf-8", errors="replace")
    except (zipfile.BadZipFile, zlib.error, KeyError, OSError, NotImplementedError, RuntimeError):
        return None

    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() in _MANIFEST_VERSION_KEYS:
            match = re.search(r"\d+(?:\.\d+)+", value)
            if match:
                return match.group(0)
    return None


def detect_runtime_version(base_dir: Path) -> Optional[str]:
    """Detect the Minecraft version from a Paper server jar in ``base_dir``.

    The version is taken from a ``paper-<version>[-build].jar`` file name, or
    failing that from the jar's ``META-INF/MANIFEST.MF``.

    Returns:
        Normalized version, or None if no server jar was recognized
    """
    base_dir = Path(base_dir)
    if not base_dir.is_dir():
        return None

    jars = sorted(p for p in base_dir.glob("*.jar") if p.is_file())
    for jar in jars:
        match = _SERVER_JAR_RE.match(jar.name)
        if match:
            log.debug("runtime_detected", source="filename", jar=jar.name, version=match.group(1))
            return normalize_runtime_version(match.group(1))

    for jar in jars:
        if not jar.name.lower().startswith("paper"):
            continue
        version = _version_from_server_manifest(jar)
        if version:
            log.debug("runtime_detected", source="manifest", jar=jar.name, version=version)
            return normalize_runtime_version(version)
    return None
