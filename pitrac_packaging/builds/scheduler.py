"""Incremental build scheduler.

This module handles:
- Dirty detection against the fingerprint store and artifact directory
- Expanding the requested set with packages that changed on disk
- Deriving a deterministic dependency-respecting build order
- Executing builds (sequentially, or in parallel across DAG siblings)

The dirty expansion is a single pass: a package added because it changed
does not cause its dependents to be added in the same run. Dependents are
picked up on the next run, once the new upstream fingerprint is recorded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pitrac_packaging.builds.artifacts import has_artifact
from pitrac_packaging.builds.errors import (
    BuildFailed,
    BuildTimedOut,
    CacheWriteError,
    CircularOrMissingDependency,
    SchedulerError,
    UnknownPackage,
)
from pitrac_packaging.builds.fingerprint import compute_fingerprint
from pitrac_packaging.builds.runner import BuildExecutionError
from pitrac_packaging.types import (
    BuildStatus,
    PackageState,
    RebuildDecision,
    RebuildReason,
    RunReport,
)

if TYPE_CHECKING:
    from pitrac_packaging.builds.cache import FingerprintStore
    from pitrac_packaging.builds.runner import Builder, BuildResult
    from pitrac_packaging.packages.schema import PackageTable

logger = logging.getLogger(__name__)


class BuildRecorder(Protocol):
    """Receives one record per attempted build."""

    def record(
        self,
        package: str,
        architecture: str,
        version: str,
        status: BuildStatus,
        started_at: datetime,
        finished_at: datetime,
        fingerprint: str | None = None,
        log_path: str | None = None,
        error_type: str | None = None,
        error_message: str | None = None,
    ) -> None: ...


def validate_requested(table: PackageTable, requested: Iterable[str]) -> list[str]:
    """Check requested names against the table, dropping duplicates.

    Raises:
        UnknownPackage: For the first name not in the table.
    """
    result: list[str] = []
    for name in requested:
        if name not in table:
            raise UnknownPackage(name, table.names())
        if name not in result:
            result.append(name)
    return result


def expand_dirty(
    table: PackageTable,
    requested: list[str],
    is_dirty: Callable[[str], bool],
) -> tuple[list[str], list[str]]:
    """Add every independently dirty package to the requested set.

    An empty request means every known package. This is one pass over the
    table in declared order; it is not a transitive closure.

    Args:
        table: Package table.
        requested: Validated requested names.
        is_dirty: Dirty predicate for a package name.

    Returns:
        Tuple of (candidates, auto_added).
    """
    candidates = list(requested) if requested else table.names()
    auto_added: list[str] = []
    for name in table.names():
        if name in candidates:
            continue
        if is_dirty(name):
            logger.info("Adding %s to build queue due to changes", name)
            candidates.append(name)
            auto_added.append(name)
    return candidates, auto_added


def compute_build_order(table: PackageTable, candidates: Iterable[str]) -> list[str]:
    """Order candidates so every package follows its dependencies.

    Repeated passes move a package to the result once each dependency is
    already ordered, or is a known package outside the candidate set (it is
    not being rebuilt, so it is already present). Packages are visited in
    declared table order, which makes the result deterministic.

    Args:
        table: Package table.
        candidates: Names to order.

    Returns:
        Build order.

    Raises:
        CircularOrMissingDependency: If a pass makes no progress.
    """
    remaining = sorted(set(candidates), key=table.position)
    candidate_set = set(remaining)
    ordered: list[str] = []
    placed: set[str] = set()

    while remaining:
        still_waiting: list[str] = []
        for name in remaining:
            deps = table.get(name).dependencies if name in table else ("<unknown>",)
            ready = all(
                dep in placed or (dep in table and dep not in candidate_set)
                for dep in deps
            )
            if ready:
                ordered.append(name)
                placed.add(name)
            else:
                still_waiting.append(name)

        if len(still_waiting) == len(remaining):
            logger.error(
                "Circular dependency detected or missing dependencies for: %s",
                " ".join(still_waiting),
            )
            raise CircularOrMissingDependency(still_waiting)
        remaining = still_waiting

    return ordered


def validate_dependency_graph(table: PackageTable) -> None:
    """Ensure the whole table forms a DAG over known names.

    Raises:
        CircularOrMissingDependency: On a cycle or dangling dependency.
    """
    compute_build_order(table, table.names())


class IncrementalScheduler:
    """Schedules and executes the minimal set of package rebuilds.

    Args:
        table: Package table (not mutated).
        store: Fingerprint store.
        builder: Builder collaborator.
        project_root: Root against which package sources are resolved.
        debs_dir: Root artifact directory.
        architecture: Target architecture.
        timeout: Optional per-build timeout in seconds.
        max_workers: Builds allowed to run at once; 1 is strictly sequential
            with fail-fast abort of the whole schedule.
        recorder: Optional sink for build history.
        today: Date used to resolve date-derived versions.
    """

    def __init__(
        self,
        table: PackageTable,
        store: FingerprintStore,
        builder: Builder,
        project_root: Path,
        debs_dir: Path,
        architecture: str = "arm64",
        timeout: float | None = None,
        max_workers: int = 1,
        recorder: BuildRecorder | None = None,
        today: date | None = None,
    ) -> None:
        self.table = table
        self.store = store
        self.builder = builder
        self.project_root = project_root
        self.debs_dir = debs_dir
        self.architecture = architecture
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.recorder = recorder
        self.today = today
        self._state_lock = threading.Lock()

    # -- dirty detection -------------------------------------------------

    def fingerprint(self, package: str) -> str:
        """Current fingerprint of a package."""
        return compute_fingerprint(self.table.get(package), self.project_root, self.store)

    def needs_rebuild(self, package: str) -> RebuildDecision:
        """Decide whether a package must be rebuilt.

        Rules, first match wins: no cached fingerprint; fingerprint changed;
        no artifact on disk; otherwise up to date.
        """
        current = self.fingerprint(package)
        cached = self.store.get(package)

        if cached is None:
            logger.info("%s: No previous build found", package)
            reason = RebuildReason.NO_PREVIOUS_BUILD
        elif current != cached:
            logger.info("%s: Source changes detected", package)
            reason = RebuildReason.SOURCES_CHANGED
        elif not has_artifact(self.debs_dir, self.architecture, package):
            logger.info("%s: No .deb files found", package)
            reason = RebuildReason.ARTIFACT_MISSING
        else:
            logger.info("%s: No changes detected, skipping build", package)
            reason = RebuildReason.UP_TO_DATE

        return RebuildDecision(
            package=package,
            dirty=reason != RebuildReason.UP_TO_DATE,
            reason=reason,
            fingerprint=current,
            cached_fingerprint=cached,
        )

    def status(self, requested: Iterable[str] = ()) -> list[RebuildDecision]:
        """Rebuild decisions for the requested (default: all) packages."""
        names = validate_requested(self.table, requested) or self.table.names()
        return [self.needs_rebuild(name) for name in names]

    # -- planning --------------------------------------------------------

    def plan(self, requested: Iterable[str] = ()) -> RunReport:
        """Validate the request and derive the build order.

        Raises:
            UnknownPackage: If a requested name is not in the table.
            CircularOrMissingDependency: If the graph has no valid order.
        """
        names = validate_requested(self.table, requested)
        validate_dependency_graph(self.table)

        candidates, auto_added = expand_dirty(
            self.table, names, lambda p: self.needs_rebuild(p).dirty
        )
        order = compute_build_order(self.table, candidates)

        versions = self.table.resolve_versions(self.today)
        return RunReport(
            requested=names,
            auto_added=auto_added,
            order=order,
            states={name: PackageState.PENDING for name in order},
            versions={name: versions[name] for name in order},
        )

    def preview(self, report: RunReport) -> RunReport:
        """Fill predicted states for a dry run without building anything.

        A package is predicted dirty when it is dirty now or when one of its
        scheduled dependencies is predicted dirty.
        """
        report.dry_run = True
        for name in report.order:
            upstream_dirty = any(
                report.states.get(dep) == PackageState.DIRTY
                for dep in self.table.get(name).dependencies
            )
            dirty = upstream_dirty or self.needs_rebuild(name).dirty
            report.states[name] = PackageState.DIRTY if dirty else PackageState.CLEAN
        return report

    # -- execution -------------------------------------------------------

    def run(self, requested: Iterable[str] = (), dry_run: bool = False) -> RunReport:
        """Plan and execute an incremental build.

        Returns:
            RunReport with final per-package states.

        Raises:
            SchedulerError: On any fatal planning or build error. The partial
                report is attached as ``error.report``.
        """
        report = self.plan(requested)
        if not report.order:
            logger.info("All packages are up to date")
            return report

        logger.info("Build order: %s", " ".join(report.order))
        if dry_run:
            return self.preview(report)

        try:
            if self.max_workers == 1:
                self._execute_sequential(report)
            else:
                self._execute_parallel(report)
        except SchedulerError as e:
            e.report = report
            raise

        logger.info("Incremental build completed successfully")
        return report

    def _set_state(self, report: RunReport, package: str, state: PackageState) -> None:
        with self._state_lock:
            report.states[package] = state

    def _execute_sequential(self, report: RunReport) -> None:
        for index, name in enumerate(report.order):
            try:
                self._process(name, report)
            except SchedulerError:
                for rest in report.order[index + 1 :]:
                    self._set_state(report, rest, PackageState.CANCELLED)
                raise

    def _execute_parallel(self, report: RunReport) -> None:
        pending = list(report.order)
        scheduled = set(report.order)
        blocked: set[str] = set()
        failures: list[SchedulerError] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: dict[Future[None], str] = {}
            while pending or futures:
                for name in list(pending):
                    deps = [
                        d for d in self.table.get(name).dependencies if d in scheduled
                    ]
                    if any(d in blocked for d in deps):
                        pending.remove(name)
                        blocked.add(name)
                        self._set_state(report, name, PackageState.CANCELLED)
                        logger.warning("Skipping %s due to failed dependency", name)
                    elif all(report.states[d].is_terminal_success for d in deps):
                        pending.remove(name)
                        futures[pool.submit(self._process, name, report)] = name

                if not futures:
                    break

                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in done:
                    name = futures.pop(future)
                    try:
                        future.result()
                    except SchedulerError as e:
                        failures.append(e)
                        blocked.add(name)

        if failures:
            raise failures[0]

    def _process(self, package: str, report: RunReport) -> None:
        """Rebuild one package if it is dirty, then record its fingerprint."""
        decision = self.needs_rebuild(package)
        if not decision.dirty:
            self._set_state(report, package, PackageState.CLEAN)
            logger.info("%s is up to date", package)
            return

        self._set_state(report, package, PackageState.DIRTY)
        version = report.versions[package]
        self._set_state(report, package, PackageState.BUILDING)
        logger.info("Building %s for %s...", package, self.architecture)

        started_at = datetime.now(timezone.utc)
        result: BuildResult | None = None
        try:
            result = self.builder.build(
                package, self.architecture, version, timeout=self.timeout
            )
        except BuildExecutionError as e:
            self._set_state(report, package, PackageState.FAILED)
            timed_out = e.code == "build_timeout"
            self._record(
                package,
                version,
                BuildStatus.TIMED_OUT if timed_out else BuildStatus.FAILED,
                started_at,
                error_type=e.code,
                error_message=str(e),
            )
            logger.error("Failed to build %s for %s", package, self.architecture)
            if timed_out:
                raise BuildTimedOut(package, self.timeout) from e
            raise BuildFailed(package, str(e)) from e

        log_path = str(result.log_path) if result.log_path else None
        if not result.success:
            self._set_state(report, package, PackageState.FAILED)
            self._record(
                package,
                version,
                BuildStatus.FAILED,
                started_at,
                log_path=log_path,
                error_type="build_failed",
                error_message=result.error_message,
            )
            logger.error("Failed to build %s for %s", package, self.architecture)
            raise BuildFailed(package, result.error_message)

        fingerprint = self.fingerprint(package)
        try:
            self.store.put(package, fingerprint)
        except CacheWriteError as e:
            self._set_state(report, package, PackageState.FAILED)
            self._record(
                package,
                version,
                BuildStatus.FAILED,
                started_at,
                fingerprint=fingerprint,
                log_path=log_path,
                error_type=e.code,
                error_message=str(e),
            )
            raise

        self._set_state(report, package, PackageState.BUILT)
        self._record(
            package,
            version,
            BuildStatus.SUCCEEDED,
            started_at,
            fingerprint=fingerprint,
            log_path=log_path,
        )
        logger.info("%s build completed", package)

    def _record(
        self,
        package: str,
        version: str,
        status: BuildStatus,
        started_at: datetime,
        **details: str | None,
    ) -> None:
        if self.recorder is None:
            return
        self.recorder.record(
            package=package,
            architecture=self.architecture,
            version=version,
            status=status,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            **details,
        )


__all__ = [
    "BuildRecorder",
    "IncrementalScheduler",
    "compute_build_order",
    "expand_dirty",
    "validate_dependency_graph",
    "validate_requested",
]
