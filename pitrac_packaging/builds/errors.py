"""Error types raised by the incremental build scheduler.

Every error carries a stable ``code`` so callers (the CLI, build history
records) can handle failures programmatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pitrac_packaging.types import RunReport

UNKNOWN_PACKAGE = "unknown_package"
CIRCULAR_DEPENDENCY = "circular_dependency"
BUILD_FAILED = "build_failed"
BUILD_TIMEOUT = "build_timeout"
CACHE_READ_ERROR = "cache_read_error"
CACHE_WRITE_ERROR = "cache_write_error"


class SchedulerError(Exception):
    """Base error for scheduling and build execution.

    Errors raised while executing a schedule carry the partial run report
    in ``report``.
    """

    def __init__(self, message: str, code: str = "scheduler_error") -> None:
        super().__init__(message)
        self.code = code
        self.report: RunReport | None = None


class UnknownPackage(SchedulerError):
    """Raised when a requested package is not in the package table."""

    def __init__(self, package: str, known: list[str] | None = None) -> None:
        message = f"Unknown package: {package}"
        if known:
            message += f" (available: {', '.join(known)})"
        super().__init__(message, code=UNKNOWN_PACKAGE)
        self.package = package


class CircularOrMissingDependency(SchedulerError):
    """Raised when no build order exists for the candidate set."""

    def __init__(self, stuck: list[str]) -> None:
        super().__init__(
            "Circular dependency detected or missing dependencies for: "
            + " ".join(stuck),
            code=CIRCULAR_DEPENDENCY,
        )
        self.stuck = stuck


class BuildFailed(SchedulerError):
    """Raised when the builder reports failure for a package."""

    def __init__(
        self,
        package: str,
        reason: str | None = None,
        code: str = BUILD_FAILED,
    ) -> None:
        message = f"Build failed for {package}"
        if reason:
            message += f": {reason}"
        super().__init__(message, code=code)
        self.package = package
        self.reason = reason


class BuildTimedOut(BuildFailed):
    """Raised when a package build exceeds its timeout."""

    def __init__(self, package: str, timeout: float | None = None) -> None:
        reason = f"timed out after {timeout} seconds" if timeout else "timed out"
        super().__init__(package, reason, code=BUILD_TIMEOUT)
        self.timeout = timeout


class CacheReadError(SchedulerError):
    """Raised when a fingerprint entry exists but cannot be read."""

    def __init__(self, package: str, reason: str) -> None:
        super().__init__(
            f"Cannot read fingerprint for {package}: {reason}", code=CACHE_READ_ERROR
        )
        self.package = package


class CacheWriteError(SchedulerError):
    """Raised when a successful build cannot record its fingerprint."""

    def __init__(self, package: str, reason: str) -> None:
        super().__init__(
            f"Cannot record fingerprint for {package}: {reason}",
            code=CACHE_WRITE_ERROR,
        )
        self.package = package


__all__ = [
    "BUILD_FAILED",
    "BUILD_TIMEOUT",
    "CACHE_READ_ERROR",
    "CACHE_WRITE_ERROR",
    "CIRCULAR_DEPENDENCY",
    "UNKNOWN_PACKAGE",
    "BuildFailed",
    "BuildTimedOut",
    "CacheReadError",
    "CacheWriteError",
    "CircularOrMissingDependency",
    "SchedulerError",
    "UnknownPackage",
]
