"""Content hashes in the lockfile's ``algorithm:hexdigest`` form."""

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path

SUPPORTED_ALGORITHMS = ("sha256", "sha512")
DEFAULT_ALGORITHM = "sha256"

_CHUNK_SIZE = 1024 * 1024
_HEX_RE = re.compile(r"^[0-9a-f]+$")
_DIGEST_LENGTHS = {"sha256": 64, "sha512": 128}


@dataclass(frozen=True)
class ContentHash:
    """An algorithm-tagged hex digest.

    Attributes:
        algorithm: Hash algorithm name (sha256 or sha512)
        digest: Lowercase hex digest
    """

    algorithm: str
    digest: str

    def __post_init__(self):
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.algorithm}")
        digest = self.digest.lower()
        if not _HEX_RE.match(digest) or len(digest) != _DIGEST_LENGTHS[self.algorithm]:
            raise ValueError(f"Invalid {self.algorithm} digest: {self.digest!r}")
        object.__setattr__(self, "digest", digest)

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.digest}"

    @classmethod
    def parse(cls, text: str) -> "ContentHash":
        """Parse ``algorithm:hexdigest``.

        Raises:
            ValueError: If the text is not a supported, well-formed hash
        """
        algorithm, sep, digest = text.strip().partition(":")
        if not sep:
            raise ValueError(f"Hash must be formatted as 'algorithm:hexdigest': {text!r}")
        return cls(algorithm.lower(), digest)

    @classmethod
    def of_bytes(cls, data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> "ContentHash":
        """Hash raw bytes."""
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        return cls(algorithm, hashlib.new(algorithm, data).hexdigest())

    @classmethod
    def of_file(cls, path: Path, algorithm: str = DEFAULT_ALGORITHM) -> "ContentHash":
        """Hash a file's bytes without loading it into memory at once."""
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        hasher = hashlib.new(algorithm)
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
        return cls(algorithm, hasher.hexdigest())

    def matches(self, data: bytes) -> bool:
        """Whether ``data`` hashes to this digest under the same algorithm."""
        return ContentHash.of_bytes(data, self.algorithm) == self
