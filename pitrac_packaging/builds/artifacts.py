"""Artifact discovery and build metadata.

This module handles:
- Locating built .deb files in the architecture-scoped artifact directory
- Existence checks used by the dirty detector
- Writing per-build metadata files next to the artifacts
- Summarizing artifact counts after a run
"""

from __future__ import annotations

import logging
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from pitrac_packaging.builds.fingerprint import compute_file_hash
from pitrac_packaging.types import ArtifactInfo

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".deb"


def artifact_dir(debs_dir: Path, architecture: str) -> Path:
    """Return the artifact directory for an architecture."""
    return debs_dir / architecture


def find_artifacts(debs_dir: Path, architecture: str, package: str) -> list[Path]:
    """Return artifact files matching ``<package>*.deb``, sorted by name.

    Args:
        debs_dir: Root artifact directory.
        architecture: Target architecture.
        package: Package name used as the filename prefix.

    Returns:
        Sorted list of matching files (empty if the directory is missing).
    """
    out_dir = artifact_dir(debs_dir, architecture)
    if not out_dir.is_dir():
        return []
    return sorted(
        p for p in out_dir.glob(f"{package}*{ARTIFACT_SUFFIX}") if p.is_file()
    )


def has_artifact(debs_dir: Path, architecture: str, package: str) -> bool:
    """Whether at least one artifact exists for ``package``.

    This is an existence check only; contents are not verified.
    """
    return bool(find_artifacts(debs_dir, architecture, package))


def find_built_packages(
    debs_dir: Path, architecture: str, package: str, version: str
) -> list[Path]:
    """Return the .deb files a build of ``package`` at ``version`` produced.

    Built files may carry a library prefix or soname suffix around the
    package name (``liblgpio1`` for lgpio), so the name is matched anywhere
    in the filename. Files naming ``_<version>_`` are preferred; any file
    containing the package name is accepted otherwise.
    """
    out_dir = artifact_dir(debs_dir, architecture)
    if not out_dir.is_dir():
        return []
    for pattern in (
        f"*{package}*_{version}_*{ARTIFACT_SUFFIX}",
        f"*{package}*{ARTIFACT_SUFFIX}",
    ):
        found = sorted(p for p in out_dir.glob(pattern) if p.is_file())
        if found:
            return found
    return []


def discover_artifacts(
    debs_dir: Path,
    architecture: str,
    package: str,
    version: str | None = None,
) -> list[ArtifactInfo]:
    """Describe the artifacts of a package with their size and checksum.

    Without ``version`` the prefix match of find_artifacts() is used. With
    it, the files are those find_built_packages() reports for that version.
    """
    if version is None:
        paths = find_artifacts(debs_dir, architecture, package)
    else:
        paths = find_built_packages(debs_dir, architecture, package, version)

    artifacts: list[ArtifactInfo] = []
    for path in paths:
        artifacts.append(
            ArtifactInfo(
                filename=path.name,
                path=path,
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )
        )
        logger.debug("Discovered artifact: %s", path.name)
    return artifacts


def select_primary_artifact(
    artifacts: list[ArtifactInfo], package: str, version: str
) -> ArtifactInfo | None:
    """Pick the artifact that matches the built version, if any.

    Falls back to the first artifact when none carries the version in its
    name (some packages use a different naming pattern).
    """
    for artifact in artifacts:
        if f"_{version}_" in artifact.filename and package in artifact.filename:
            return artifact
    return artifacts[0] if artifacts else None


def build_metadata(
    package: str,
    architecture: str,
    version: str,
    docker_platform: str,
    artifact: ArtifactInfo | None,
) -> dict[str, Any]:
    """Assemble the metadata record written after a build."""
    return {
        "package": package,
        "architecture": architecture,
        "version": version,
        "build_date": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "build_host": socket.gethostname(),
        "docker_platform": docker_platform,
        "package_file": artifact.filename if artifact else None,
        "package_size": artifact.size_bytes if artifact else None,
        "sha256": artifact.sha256 if artifact else None,
    }


def write_metadata(
    metadata: dict[str, Any],
    debs_dir: Path,
) -> Path:
    """Write a metadata record as ``<pkg>_<arch>_<version>.metadata``.

    Args:
        metadata: Record from build_metadata().
        debs_dir: Root artifact directory.

    Returns:
        Path to the written file.
    """
    out_dir = artifact_dir(debs_dir, metadata["architecture"])
    out_dir.mkdir(parents=True, exist_ok=True)
    path = (
        out_dir
        / f"{metadata['package']}_{metadata['architecture']}_{metadata['version']}.metadata"
    )
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(metadata, f, sort_keys=False)
    logger.info("Build metadata saved: %s", path)
    return path


def summarize_artifacts(
    debs_dir: Path, architecture: str, packages: list[str]
) -> dict[str, int]:
    """Count artifacts per package, in the given order."""
    return {p: len(find_artifacts(debs_dir, architecture, p)) for p in packages}


__all__ = [
    "ARTIFACT_SUFFIX",
    "artifact_dir",
    "build_metadata",
    "discover_artifacts",
    "find_artifacts",
    "find_built_packages",
    "has_artifact",
    "select_primary_artifact",
    "summarize_artifacts",
    "write_metadata",
]
