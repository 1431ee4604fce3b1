"""Configuration for mpm with validation."""

import os
from pathlib import Path
from typing import Mapping, Optional

import structlog
import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mpm.core.errors import ParseError

log = structlog.get_logger()

MANIFEST_FILE = "plugins.toml"
LOCKFILE_FILE = "plugins.lock"
CONFIG_FILE = "mpm.toml"
DEFAULT_PLUGINS_SUBDIR = "plugins"

ENV_BASE_DIR = "MPM_DIR"
ENV_BASE_DIR_LEGACY = "PM_DIR"
ENV_PLUGINS_DIR = "MPM_PLUGINS_DIR"


class MpmConfig(BaseModel):
    """Per-invocation configuration.

    Resolved once by the CLI and passed explicitly to everything that needs it.
    """

    model_config = ConfigDict(validate_assignment=True)

    # Paths
    base_dir: Path = Field(default_factory=lambda: Path("."))
    plugins_subdir: str = DEFAULT_PLUGINS_SUBDIR

    # Network
    concurrency: int = Field(ge=1, le=32, default=4)
    http_timeout: float = Field(gt=0, le=300, default=30.0)

    # Logging
    log_level: str = Field(default="WARNING", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None

    @field_validator('plugins_subdir')
    @classmethod
    def subdir_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('plugins_subdir cannot be empty')
        return v.strip()

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def model_post_init(self, __context):
        """Expand user paths."""
        self.base_dir = Path(self.base_dir).expanduser()

    @property
    def manifest_path(self) -> Path:
        return self.base_dir / MANIFEST_FILE

    @property
    def lockfile_path(self) -> Path:
        return self.base_dir / LOCKFILE_FILE

    @property
    def plugins_dir(self) -> Path:
        subdir = Path(self.plugins_subdir).expanduser()
        if subdir.is_absolute():
            return subdir
        return self.base_dir / subdir

    @classmethod
    def load(
        cls,
        base_dir: Optional[str] = None,
        plugins_subdir: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> 'MpmConfig':
        """Resolve configuration.

        Precedence, highest first:
        1. Explicit arguments (CLI options)
        2. Environment (MPM_DIR or legacy PM_DIR, MPM_PLUGINS_DIR)
        3. ``mpm.toml`` in the base directory
        4. Defaults

        Args:
            base_dir: Base directory override
            plugins_subdir: Plugins directory override, relative to the base dir
            env: Environment mapping (defaults to os.environ)

        Returns:
            MpmConfig instance

        Raises:
            ParseError: If mpm.toml exists but is invalid
        """
        env = os.environ if env is None else env

        base = base_dir or env.get(ENV_BASE_DIR) or env.get(ENV_BASE_DIR_LEGACY) or "."
        data = cls._read_file(Path(base).expanduser() / CONFIG_FILE)
        data["base_dir"] = base

        subdir = plugins_subdir or env.get(ENV_PLUGINS_DIR)
        if subdir:
            data["plugins_subdir"] = subdir

        try:
            config = cls(**data)
        except ValidationError as e:
            raise ParseError(Path(base) / CONFIG_FILE, str(e)) from e

        log.debug(
            "config_resolved",
            base_dir=str(config.base_dir),
            plugins_dir=str(config.plugins_dir),
            concurrency=config.concurrency,
        )
        return config

    @staticmethod
    def _read_file(path: Path) -> dict:
        if not path.exists():
            return {}
        try:
            data = toml.load(path)
        except toml.TomlDecodeError as e:
            raise ParseError(path, str(e)) from e
        log.info("config_loaded", path=str(path))
        # Paths always come from arguments or the environment
        data.pop("base_dir", None)
        return data


def validate_config(config: MpmConfig) -> list[str]:
    """Validate configuration and return warnings.

    Args:
        config: Config to validate

    Returns:
        List of warning messages
    """
    warnings = []

    if not config.base_dir.is_dir():
        warnings.append(f"Base directory does not exist: {config.base_dir}")

    if config.plugins_dir.exists() and not config.plugins_dir.is_dir():
        warnings.append(f"Plugins path is not a directory: {config.plugins_dir}")

    return warnings
