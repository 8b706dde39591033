"""Build ORM models.

This module defines the BuildRecord model for storing the history of
package build attempts.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pitrac_packaging.db import Base
from pitrac_packaging.types import BuildStatus


class BuildRecord(Base):
    """ORM model for package build attempts.

    Attributes:
        id: Primary key.
        run_id: Identifier shared by all attempts of one scheduling run.
        package: Package name.
        architecture: Target architecture.
        version: Version the package was built with.
        fingerprint: Fingerprint recorded on success.
        status: Build status (succeeded, failed, timed_out).
        requested_at: Timestamp when the row was written.
        started_at: Timestamp when the build started.
        finished_at: Timestamp when the build finished.
        log_path: Path to the build log file.
        error_type: Error code if the build failed.
        error_message: Error message if the build failed.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)

    package: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    architecture: Mapped[str] = mapped_column(String(16), nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_build_records_package_status", "package", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildRecord."""
        return (
            f"<BuildRecord(id={self.id}, package='{self.package}', "
            f"version='{self.version}', status='{self.status}')>"
        )

    @property
    def duration_seconds(self) -> float | None:
        """Build duration, if both timestamps are known."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def is_succeeded(self) -> bool:
        """Check if this build succeeded."""
        return self.status == BuildStatus.SUCCEEDED.value


__all__ = ["BuildRecord"]
