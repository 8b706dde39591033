"""Shared fixtures: a throwaway packaging tree and a fake builder."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from pitrac_packaging.builds.cache import FingerprintStore
from pitrac_packaging.builds.runner import BuildExecutionError, BuildResult
from pitrac_packaging.builds.scheduler import IncrementalScheduler
from pitrac_packaging.config import Settings
from pitrac_packaging.packages.schema import PackageTable, default_package_table
from pitrac_packaging.types import KNOWN_PACKAGES


class FakeBuilder:
    """Builder double that drops a .deb into the artifact directory."""

    def __init__(
        self,
        debs_dir: Path,
        fail: tuple[str, ...] = (),
        time_out: tuple[str, ...] = (),
    ) -> None:
        self.debs_dir = debs_dir
        self.fail = fail
        self.time_out = time_out
        self.calls: list[str] = []
        self.versions: dict[str, str] = {}
        self.timeouts: dict[str, float | None] = {}

    def build(
        self,
        package: str,
        architecture: str,
        version: str,
        timeout: float | None = None,
    ) -> BuildResult:
        self.calls.append(package)
        self.versions[package] = version
        self.timeouts[package] = timeout
        now = datetime.now(timezone.utc)

        if package in self.time_out:
            raise BuildExecutionError(
                f"Build timed out after {timeout} seconds",
                exit_code=-1,
                code="build_timeout",
            )
        if package in self.fail:
            return BuildResult(
                success=False,
                exit_code=1,
                started_at=now,
                finished_at=now,
                error_message="docker build failed with exit code 1",
            )

        out_dir = self.debs_dir / architecture
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / f"{package}_{version}_{architecture}.deb").write_bytes(b"!<arch>\n")
        return BuildResult(success=True, exit_code=0, started_at=now, finished_at=now)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create a packaging tree with Dockerfiles and application sources."""
    root = tmp_path / "project"
    docker_dir = root / "docker"
    docker_dir.mkdir(parents=True)
    for name in KNOWN_PACKAGES:
        (docker_dir / f"Dockerfile.{name}").write_text(f"FROM debian:bookworm\n# {name}\n")

    src = root / "pitrac" / "src"
    src.mkdir(parents=True)
    (src / "main.cpp").write_text("int main() { return 0; }\n")
    (root / "pitrac" / "meson.build").write_text("project('pitrac', 'cpp')\n")

    (root / "opencv").mkdir()
    (root / "opencv" / "build.sh").write_text("#!/bin/sh\ncmake ..\n")
    return root


@pytest.fixture
def settings(project: Path, tmp_path: Path) -> Settings:
    """Settings pointing at the throwaway project."""
    return Settings(project_root=project, build_dir=tmp_path / "build")


@pytest.fixture
def store(settings: Settings) -> FingerprintStore:
    """Fingerprint store inside the build directory."""
    return FingerprintStore(settings.cache_dir)


@pytest.fixture
def builder(settings: Settings) -> FakeBuilder:
    """Builder that always succeeds."""
    return FakeBuilder(settings.debs_dir)


@pytest.fixture
def make_scheduler(settings: Settings, store: FingerprintStore):
    """Factory for schedulers over the throwaway project."""

    def _make(
        builder: FakeBuilder,
        table: PackageTable | None = None,
        **kwargs,
    ) -> IncrementalScheduler:
        return IncrementalScheduler(
            table=table or default_package_table(),
            store=store,
            builder=builder,
            project_root=settings.project_root,
            debs_dir=settings.debs_dir,
            architecture=settings.architecture,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_builder(settings: Settings):
    """Factory for fake builders that fail or time out on chosen packages."""

    def _make(
        fail: tuple[str, ...] = (),
        time_out: tuple[str, ...] = (),
    ) -> FakeBuilder:
        return FakeBuilder(settings.debs_dir, fail=fail, time_out=time_out)

    return _make
