"""Build service module.

This module provides the high-level build API:
- create_scheduler(): wire settings, package table, store and builder
- run_incremental_build(): plan and execute one run, recording history
- SqlBuildRecorder / list_builds(): build history persistence
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from pitrac_packaging.builds.cache import FingerprintStore
from pitrac_packaging.builds.models import BuildRecord
from pitrac_packaging.builds.runner import DockerBuilder
from pitrac_packaging.builds.scheduler import IncrementalScheduler
from pitrac_packaging.config import get_settings
from pitrac_packaging.packages.io import load_configured_table
from pitrac_packaging.types import BuildStatus, RunReport

if TYPE_CHECKING:
    from pitrac_packaging.builds.runner import Builder
    from pitrac_packaging.config import Settings
    from pitrac_packaging.packages.schema import PackageTable

logger = logging.getLogger(__name__)


class SqlBuildRecorder:
    """Writes one BuildRecord row per build attempt.

    Each record is committed in its own session so history survives an
    aborted run. Writes are serialized for use from build worker threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        run_id: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.run_id = run_id or uuid.uuid4().hex
        self._lock = threading.Lock()

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
    ) -> None:
        """Persist a build attempt."""
        with self._lock, self.session_factory() as session:
            session.add(
                BuildRecord(
                    run_id=self.run_id,
                    package=package,
                    architecture=architecture,
                    version=version,
                    fingerprint=fingerprint,
                    status=status.value,
                    started_at=started_at,
                    finished_at=finished_at,
                    log_path=log_path,
                    error_type=error_type,
                    error_message=error_message,
                )
            )
            session.commit()
        logger.debug("Recorded %s build of %s", status.value, package)


def list_builds(
    session: Session,
    package: str | None = None,
    status: BuildStatus | None = None,
    limit: int = 100,
) -> list[BuildRecord]:
    """List build records, newest first.

    Args:
        session: Database session.
        package: Filter by package name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)

    if package is not None:
        stmt = stmt.where(BuildRecord.package == package)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)

    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def create_scheduler(
    settings: Settings | None = None,
    table: PackageTable | None = None,
    builder: Builder | None = None,
    recorder: SqlBuildRecorder | None = None,
    max_workers: int | None = None,
    timeout: float | None = None,
) -> IncrementalScheduler:
    """Build a scheduler from settings.

    Args:
        settings: Application settings.
        table: Package table (defaults to the configured one).
        builder: Builder (defaults to DockerBuilder).
        recorder: Optional build history recorder.
        max_workers: Overrides settings.max_concurrent_builds.
        timeout: Overrides settings.build_timeout.

    Returns:
        Configured IncrementalScheduler.
    """
    if settings is None:
        settings = get_settings()
    if table is None:
        table = load_configured_table(settings)
    if builder is None:
        builder = DockerBuilder(settings)

    return IncrementalScheduler(
        table=table,
        store=FingerprintStore(settings.cache_dir),
        builder=builder,
        project_root=settings.project_root,
        debs_dir=settings.debs_dir,
        architecture=settings.architecture,
        timeout=timeout if timeout is not None else settings.build_timeout,
        max_workers=max_workers or settings.max_concurrent_builds,
        recorder=recorder,
    )


def run_incremental_build(
    requested: Iterable[str] = (),
    settings: Settings | None = None,
    table: PackageTable | None = None,
    builder: Builder | None = None,
    session_factory: sessionmaker[Session] | None = None,
    dry_run: bool = False,
    max_workers: int | None = None,
    timeout: float | None = None,
) -> RunReport:
    """Plan and execute an incremental build.

    This is the main entry point. When a session factory is given, every
    build attempt is recorded in the build history.

    Args:
        requested: Package names; empty means all known packages.
        settings: Application settings.
        table: Package table (defaults to the configured one).
        builder: Builder override (tests inject fakes here).
        session_factory: Optional factory for build history sessions.
        dry_run: Plan and predict without building.
        max_workers: Concurrent builds override.
        timeout: Per-build timeout override in seconds.

    Returns:
        RunReport for the run.

    Raises:
        SchedulerError: On unknown packages, dependency errors, build
            failures or cache write failures.
    """
    if settings is None:
        settings = get_settings()

    recorder = SqlBuildRecorder(session_factory) if session_factory else None
    scheduler = create_scheduler(
        settings,
        table=table,
        builder=builder,
        recorder=recorder,
        max_workers=max_workers,
        timeout=timeout,
    )
    return scheduler.run(requested, dry_run=dry_run)


__all__ = [
    "SqlBuildRecorder",
    "create_scheduler",
    "list_builds",
    "run_incremental_build",
]
