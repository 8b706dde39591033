"""Build runner for executing Docker package builds.

This module handles:
- The Builder interface used by the scheduler
- Composing `docker build` commands for a package
- Executing builds with subprocess, capturing output to log files
- Extracting .deb files from the built image
- Enforcing build timeouts
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pitrac_packaging.builds.artifacts import (
    artifact_dir,
    build_metadata,
    discover_artifacts,
    select_primary_artifact,
    write_metadata,
)
from pitrac_packaging.types import SUPPORTED_ARCHITECTURES, ArtifactInfo

if TYPE_CHECKING:
    from pitrac_packaging.config import Settings

logger = logging.getLogger(__name__)

# Docker platform per Debian architecture
DOCKER_PLATFORMS = {"arm64": "linux/arm64"}

# Paths inside the build image that may hold the produced .deb files
CONTAINER_OUTPUT_PATHS = ("/output/", "/build/")

# Timeout for the short docker housekeeping commands (create/cp/rm)
DOCKER_AUX_TIMEOUT = 300


class BuildExecutionError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Result of a build execution.

    Attributes:
        success: Whether the build succeeded.
        exit_code: Process exit code.
        log_path: Path to the build log file (if any).
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
        error_message: Error message if build failed.
        artifacts: Artifacts present after the build.
    """

    success: bool
    exit_code: int
    started_at: datetime
    finished_at: datetime
    log_path: Path | None = None
    command: str = ""
    error_message: str | None = None
    artifacts: list[ArtifactInfo] = field(default_factory=list)


class Builder(Protocol):
    """Builds one package for one architecture.

    Implementations return a BuildResult for completed runs (successful or
    not) and raise BuildExecutionError when the build cannot run or times
    out (``code="build_timeout"``).
    """

    def build(
        self,
        package: str,
        architecture: str,
        version: str,
        timeout: float | None = None,
    ) -> BuildResult: ...


def compose_build_args(
    package: str,
    architecture: str,
    version: str,
    settings: Settings,
) -> list[str]:
    """Compose the ``--build-arg`` flags for a package.

    The application package also receives the upstream repository, branch
    and access token when they are configured.
    """
    args = [
        "--build-arg",
        f"DEBIAN_ARCH={architecture}",
        "--build-arg",
        f"PACKAGE_VERSION={version}",
    ]
    if package == "pitrac":
        if settings.pitrac_repo:
            args += ["--build-arg", f"PITRAC_REPO={settings.pitrac_repo}"]
        if settings.pitrac_branch:
            args += ["--build-arg", f"PITRAC_BRANCH={settings.pitrac_branch}"]
        if settings.github_token is not None:
            token = settings.github_token.get_secret_value()
            args += ["--build-arg", f"GITHUB_TOKEN={token}"]
    return args


def image_tag(package: str, architecture: str) -> str:
    """Return the Docker image tag for a package build."""
    return f"pitrac-{package}:{architecture}"


def compose_docker_build_command(
    package: str,
    architecture: str,
    version: str,
    settings: Settings,
) -> list[str]:
    """Compose the `docker build` command for a package.

    Args:
        package: Package name.
        architecture: Target architecture.
        version: Version passed to the Dockerfile.
        settings: Settings providing paths and build args.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    dockerfile = settings.project_root / "docker" / f"Dockerfile.{package}"
    return [
        settings.docker_binary,
        "build",
        f"--platform={DOCKER_PLATFORMS[architecture]}",
        *compose_build_args(package, architecture, version, settings),
        "-f",
        str(dockerfile),
        "-t",
        image_tag(package, architecture),
        str(settings.project_root),
    ]


def redact_command(cmd: list[str]) -> str:
    """Render a command for logs with secrets masked."""
    return shlex.join(
        "GITHUB_TOKEN=***" if part.startswith("GITHUB_TOKEN=") else part
        for part in cmd
    )


class DockerBuilder:
    """Builder that produces .deb files with Docker.

    Each build runs `docker build`, creates a container from the image,
    copies the container's output directory out and moves the .deb files
    into the architecture-scoped artifact directory.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _docker(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Run a docker housekeeping command.

        Raises:
            BuildExecutionError: ``build_timeout`` if the command outlives
                DOCKER_AUX_TIMEOUT, ``extract_error`` if it cannot be run.
        """
        try:
            return subprocess.run(
                [self.settings.docker_binary, *args],
                capture_output=True,
                text=True,
                timeout=DOCKER_AUX_TIMEOUT,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise BuildExecutionError(
                f"docker {args[0]} timed out after {DOCKER_AUX_TIMEOUT} seconds",
                exit_code=-1,
                code="build_timeout",
            ) from e
        except OSError as e:
            raise BuildExecutionError(
                f"Failed to execute docker {args[0]}: {e}",
                code="extract_error",
            ) from e

    def _remove_container(self, container_id: str) -> None:
        try:
            removed = self._docker("rm", container_id)
        except BuildExecutionError as e:
            logger.warning("Could not remove container %s: %s", container_id, e)
            return
        if removed.returncode != 0:
            logger.warning(
                "Could not remove container %s: %s",
                container_id,
                removed.stderr.strip(),
            )

    def _extract_debs(self, package: str, architecture: str) -> int:
        """Copy .deb files out of the built image.

        Returns:
            Number of .deb files moved into the artifact directory.

        Raises:
            BuildExecutionError: If no output directory can be copied, a
                docker command times out, or the files cannot be moved.
        """
        out_dir = artifact_dir(self.settings.debs_dir, architecture)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuildExecutionError(
                f"Cannot create artifact directory {out_dir}: {e}",
                code="extract_error",
            ) from e

        created = self._docker(
            "create",
            f"--platform={DOCKER_PLATFORMS[architecture]}",
            image_tag(package, architecture),
        )
        if created.returncode != 0:
            raise BuildExecutionError(
                f"docker create failed: {created.stderr.strip()}",
                exit_code=created.returncode,
                code="extract_error",
            )
        container_id = created.stdout.strip()

        try:
            with tempfile.TemporaryDirectory(prefix="pitrac-build-") as tmp:
                for src in CONTAINER_OUTPUT_PATHS:
                    copied = self._docker("cp", f"{container_id}:{src}", tmp)
                    if copied.returncode == 0:
                        moved = 0
                        for deb in Path(tmp).rglob("*.deb"):
                            shutil.move(str(deb), out_dir / deb.name)
                            moved += 1
                        logger.info(
                            "Extracted %d .deb file(s) from %s to %s",
                            moved,
                            src,
                            out_dir,
                        )
                        return moved
                raise BuildExecutionError(
                    "Failed to extract .deb package from container",
                    code="extract_error",
                )
        except OSError as e:
            raise BuildExecutionError(
                f"Failed to move .deb files into {out_dir}: {e}",
                code="extract_error",
            ) from e
        finally:
            self._remove_container(container_id)

    def build(
        self,
        package: str,
        architecture: str,
        version: str,
        timeout: float | None = None,
    ) -> BuildResult:
        """Build a package.

        Args:
            package: Package name.
            architecture: Target architecture (arm64 only).
            version: Version string for the package.
            timeout: Build timeout in seconds (None = no timeout).

        Returns:
            BuildResult with execution details.

        Raises:
            BuildExecutionError: If the build cannot run, times out, or
                produces no extractable output.
        """
        if architecture not in SUPPORTED_ARCHITECTURES:
            raise BuildExecutionError(
                f"Unsupported architecture: {architecture} "
                "(only arm64 supported for Raspberry Pi 5)",
                code="unsupported_architecture",
            )

        dockerfile = self.settings.project_root / "docker" / f"Dockerfile.{package}"
        if not dockerfile.is_file():
            raise BuildExecutionError(
                f"Dockerfile not found: {dockerfile}", code="missing_dockerfile"
            )

        logs_dir = self.settings.logs_dir
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / f"{package}-{architecture}.log"

        cmd = compose_docker_build_command(package, architecture, version, self.settings)
        cmd_str = redact_command(cmd)
        logger.info("Building %s for %s (version %s)", package, architecture, version)
        logger.debug("Executing build: %s", cmd_str)

        started_at = datetime.now(timezone.utc)
        error_message: str | None = None

        try:
            with log_path.open("w") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    cwd=self.settings.project_root,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    check=False,
                )

            exit_code = result.returncode
            success = exit_code == 0
            if not success:
                error_message = f"docker build failed with exit code {exit_code}"
                logger.error("%s. See log: %s", error_message, log_path)

        except subprocess.TimeoutExpired as e:
            error_message = f"Build timed out after {timeout} seconds"
            logger.error("%s. See log: %s", error_message, log_path)
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise BuildExecutionError(
                error_message,
                exit_code=-1,
                code="build_timeout",
            ) from e

        except OSError as e:
            error_message = f"Failed to execute build: {e}"
            logger.error(error_message)
            raise BuildExecutionError(
                error_message,
                exit_code=None,
                code="execution_error",
            ) from e

        artifacts: list[ArtifactInfo] = []
        if success:
            try:
                moved = self._extract_debs(package, architecture)
            except BuildExecutionError as e:
                logger.error("%s. See log: %s", e, log_path)
                with log_path.open("a") as log_file:
                    log_file.write(f"\n# EXTRACTION FAILED: {e}\n")
                raise
            if moved == 0:
                logger.warning("Container output for %s held no .deb files", package)
            artifacts = discover_artifacts(
                self.settings.debs_dir, architecture, package, version
            )
            if not artifacts:
                success = False
                error_message = f"Package file not found for {package}"
                logger.error(error_message)
            else:
                primary = select_primary_artifact(artifacts, package, version)
                write_metadata(
                    build_metadata(
                        package,
                        architecture,
                        version,
                        DOCKER_PLATFORMS[architecture],
                        primary,
                    ),
                    self.settings.debs_dir,
                )

        finished_at = datetime.now(timezone.utc)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        return BuildResult(
            success=success,
            exit_code=exit_code,
            started_at=started_at,
            finished_at=finished_at,
            log_path=log_path,
            command=cmd_str,
            error_message=error_message,
            artifacts=artifacts,
        )


__all__ = [
    "CONTAINER_OUTPUT_PATHS",
    "DOCKER_PLATFORMS",
    "BuildExecutionError",
    "BuildResult",
    "Builder",
    "DockerBuilder",
    "compose_build_args",
    "compose_docker_build_command",
    "image_tag",
    "redact_command",
]
