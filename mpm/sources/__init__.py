"""Plugin sources for mpm.

Each remote source (Modrinth, Hangar, GitHub Releases) has a resolver that
turns a plugin id into release candidates, newest first. The registry maps a
SourceKind to its resolver and implements the no-source fallback order.
"""

from mpm.sources.base import (
    ReleaseCandidate,
    Resolution,
    SourceResolver,
    select_candidate,
)
from mpm.sources.http import Downloader, HttpClient
from mpm.sources.registry import SourceRegistry

__all__ = [
    "ReleaseCandidate",
    "Resolution",
    "SourceResolver",
    "select_candidate",
    "Downloader",
    "HttpClient",
    "SourceRegistry",
]
