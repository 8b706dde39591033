"""Shared type definitions for pitrac_packaging.

This module contains enums, dataclasses and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

# Closed set of packages this tree knows how to build, in declared order.
KNOWN_PACKAGES: tuple[str, ...] = ("lgpio", "msgpack", "activemq", "opencv", "pitrac")

# Only arm64 is supported (Raspberry Pi 5).
SUPPORTED_ARCHITECTURES: tuple[str, ...] = ("arm64",)


class BuildStatus(str, Enum):
    """Status of a recorded build attempt."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PackageState(str, Enum):
    """Per-run state of a scheduled package."""

    PENDING = "pending"
    CLEAN = "clean"
    DIRTY = "dirty"
    BUILDING = "building"
    BUILT = "built"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal_success(self) -> bool:
        """Whether dependents may proceed past this state."""
        return self in (PackageState.CLEAN, PackageState.BUILT)


class RebuildReason(str, Enum):
    """Why a package was (or was not) flagged for rebuild."""

    NO_PREVIOUS_BUILD = "no_previous_build"
    SOURCES_CHANGED = "sources_changed"
    ARTIFACT_MISSING = "artifact_missing"
    UP_TO_DATE = "up_to_date"


@dataclass(frozen=True)
class RebuildDecision:
    """Outcome of the dirty check for one package."""

    package: str
    dirty: bool
    reason: RebuildReason
    fingerprint: str
    cached_fingerprint: str | None = None


@dataclass
class ArtifactInfo:
    """Information about a built .deb artifact."""

    filename: str
    path: Path
    size_bytes: int
    sha256: str


@dataclass
class RunReport:
    """Result of one scheduling run."""

    requested: list[str]
    auto_added: list[str] = field(default_factory=list)
    order: list[str] = field(default_factory=list)
    states: dict[str, PackageState] = field(default_factory=dict)
    versions: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def built(self) -> list[str]:
        """Packages that were rebuilt in this run, in schedule order."""
        return [p for p in self.order if self.states.get(p) == PackageState.BUILT]

    @property
    def skipped(self) -> list[str]:
        """Packages found clean in this run, in schedule order."""
        return [p for p in self.order if self.states.get(p) == PackageState.CLEAN]


__all__ = [
    "KNOWN_PACKAGES",
    "SUPPORTED_ARCHITECTURES",
    "ArtifactInfo",
    "BuildStatus",
    "PackageState",
    "RebuildDecision",
    "RebuildReason",
    "RunReport",
]
