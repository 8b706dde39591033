"""Configuration settings for pitrac_packaging.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_project_root() -> Path:
    """Return the default project root (current working directory)."""
    return Path.cwd()


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PITRAC_PKG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="PITRAC_PKG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    project_root: Path = Field(
        default_factory=_default_project_root,
        description="Root of the packaging tree (holds docker/ and sources)",
    )
    build_dir: Path | None = Field(
        default=None,
        description="Build output root (defaults to <project_root>/build)",
    )
    packages_file: Path | None = Field(
        default=None,
        description="Optional YAML/JSON package table overriding the built-in one",
    )
    db_url: str | None = Field(
        default=None,
        description="Build history database URL (defaults to SQLite in build_dir)",
    )

    # Target
    architecture: Literal["arm64"] = Field(
        default="arm64",
        description="Target Debian architecture (Raspberry Pi 5)",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=1,
        ge=1,
        le=8,
        description="Maximum concurrent package builds (1 = strictly sequential)",
    )

    # Timeouts (in seconds)
    build_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Per-package build timeout (None = no timeout)",
    )

    # Docker builder
    docker_binary: str = Field(
        default="docker",
        description="Docker executable used by the builder",
    )
    pitrac_repo: str | None = Field(
        default=None,
        description="Upstream PiTrac repository passed as a build arg",
    )
    pitrac_branch: str | None = Field(
        default=None,
        description="Upstream PiTrac branch passed as a build arg",
    )
    github_token: SecretStr | None = Field(
        default=None,
        description="Token for private repository access during the pitrac build",
    )

    @property
    def effective_build_dir(self) -> Path:
        """Build output root."""
        return self.build_dir or self.project_root / "build"

    @property
    def cache_dir(self) -> Path:
        """Directory holding per-package fingerprint files."""
        return self.effective_build_dir / "cache"

    @property
    def debs_dir(self) -> Path:
        """Root of the architecture-scoped artifact directories."""
        return self.effective_build_dir / "debs"

    @property
    def logs_dir(self) -> Path:
        """Directory for per-build log files."""
        return self.effective_build_dir / "logs"

    @property
    def effective_db_url(self) -> str:
        """Database URL for build history."""
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.effective_build_dir / 'history.sqlite'}"


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
