"""Pydantic models for the package configuration table.

The package table is the immutable description of every package this tree
builds: its version policy, the source paths that feed its fingerprint, and
the packages it depends on. It is loaded once per run and passed explicitly
into the scheduler.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pitrac_packaging.types import KNOWN_PACKAGES

# Debian revision appended to date-derived versions
DATE_VERSION_REVISION = "1"


class PackageSpec(BaseModel):
    """Schema for a single buildable package.

    Attributes:
        name: Package name, one of the known package set.
        version: Fixed Debian version string (e.g. '4.11.0-1').
        version_scheme: 'fixed' uses version as-is; 'date' derives
            YYYY.MM.DD-1 at schedule time.
        sources: Paths (files or directories) relative to the project root
            whose content determines whether the package is dirty.
        dependencies: Packages that must be built first.
        description: Optional human-readable description.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Package name")
    version: str | None = Field(default=None, description="Fixed version string")
    version_scheme: Literal["fixed", "date"] = Field(
        default="fixed", description="How the version is resolved"
    )
    sources: tuple[str, ...] = Field(
        default=(), description="Source paths relative to the project root"
    )
    dependencies: tuple[str, ...] = Field(
        default=(), description="Names of packages built before this one"
    )
    description: str | None = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the name belongs to the known package set."""
        if v not in KNOWN_PACKAGES:
            raise ValueError(
                f"unknown package '{v}', expected one of {', '.join(KNOWN_PACKAGES)}"
            )
        return v

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject absolute source paths; sources are project-relative."""
        for path in v:
            if path.startswith("/"):
                raise ValueError(f"source path must be relative, got '{path}'")
        return v

    @model_validator(mode="after")
    def validate_version_policy(self) -> "PackageSpec":
        """A fixed scheme needs an explicit version."""
        if self.version_scheme == "fixed" and not self.version:
            raise ValueError(f"package '{self.name}' has a fixed scheme but no version")
        return self

    def resolve_version(self, today: date | None = None) -> str:
        """Return the version to build with.

        Args:
            today: Date used for the 'date' scheme (defaults to today).

        Returns:
            Debian version string.

        Raises:
            ValueError: If a fixed-scheme package has no version.
        """
        if self.version_scheme == "date":
            today = today or date.today()
            return f"{today:%Y.%m.%d}-{DATE_VERSION_REVISION}"
        if not self.version:
            raise ValueError(f"package '{self.name}' has a fixed scheme but no version")
        return self.version


class PackageTable(BaseModel):
    """Ordered, immutable table of package specs.

    Declared order is significant: it is the tie-break order used when
    several packages become buildable at the same time.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    packages: tuple[PackageSpec, ...] = Field(default=())

    @field_validator("packages")
    @classmethod
    def validate_unique(cls, v: tuple[PackageSpec, ...]) -> tuple[PackageSpec, ...]:
        """Validate package names are unique."""
        seen: set[str] = set()
        for spec in v:
            if spec.name in seen:
                raise ValueError(f"duplicate package '{spec.name}'")
            seen.add(spec.name)
        return v

    def __contains__(self, name: object) -> bool:
        return any(spec.name == name for spec in self.packages)

    def names(self) -> list[str]:
        """Return package names in declared order."""
        return [spec.name for spec in self.packages]

    def get(self, name: str) -> PackageSpec:
        """Return the spec for a package.

        Raises:
            KeyError: If the package is not in the table.
        """
        for spec in self.packages:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def position(self, name: str) -> int:
        """Declared index of a package; unknown names sort last."""
        names = self.names()
        return names.index(name) if name in names else len(names)

    def dependents(self, name: str) -> list[str]:
        """Return packages that directly depend on ``name``."""
        return [spec.name for spec in self.packages if name in spec.dependencies]

    def resolve_versions(self, today: date | None = None) -> dict[str, str]:
        """Map every package to the version it would be built with."""
        return {spec.name: spec.resolve_version(today) for spec in self.packages}


def default_package_table() -> PackageTable:
    """Return the built-in PiTrac package table."""
    return PackageTable(
        packages=(
            PackageSpec(
                name="lgpio",
                version="0.2.2-1",
                sources=("docker/Dockerfile.lgpio",),
                description="GPIO library for the Raspberry Pi",
            ),
            PackageSpec(
                name="msgpack",
                version="6.1.1-1",
                sources=("docker/Dockerfile.msgpack",),
                description="MessagePack C++ headers",
            ),
            PackageSpec(
                name="activemq",
                version="3.9.5-1",
                sources=("docker/Dockerfile.activemq",),
                description="ActiveMQ C++ client",
            ),
            PackageSpec(
                name="opencv",
                version="4.11.0-1",
                sources=("docker/Dockerfile.opencv",),
                description="OpenCV built for the Pi 5",
            ),
            PackageSpec(
                name="pitrac",
                version_scheme="date",
                sources=("docker/Dockerfile.pitrac", "pitrac/", "opencv/"),
                dependencies=("lgpio", "msgpack", "activemq", "opencv"),
                description="PiTrac launch monitor application",
            ),
        )
    )


__all__ = [
    "DATE_VERSION_REVISION",
    "PackageSpec",
    "PackageTable",
    "default_package_table",
]
