"""mpm - deterministic plugin manager for Minecraft servers.

A human-edited manifest (plugins.toml) declares the desired plugins and the
target Minecraft version; a generated lockfile (plugins.lock) pins exact
versions, download URLs and content hashes; sync makes the plugins directory
match the lockfile exactly.
"""

__version__ = "0.4.0"

from mpm.config import MpmConfig
from mpm.core.manifest import Manifest, PluginRequirement, SourceKind
from mpm.core.lockfile import Lockfile, LockedPlugin

__all__ = [
    "__version__",
    "MpmConfig",
    "Manifest",
    "PluginRequirement",
    "SourceKind",
    "Lockfile",
    "LockedPlugin",
]
