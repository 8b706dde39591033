"""Fingerprint computation for packages.

This module handles:
- Content hashing of source files and directory trees
- Combining source hashes with the cached fingerprints of dependencies

A package fingerprint changes whenever one of its sources changes or a
dependency records a new fingerprint, which makes it transitively sensitive
to upstream changes without rehashing upstream sources.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pitrac_packaging.builds.cache import FingerprintStore
    from pitrac_packaging.packages.schema import PackageSpec

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def compute_directory_hash(directory: Path) -> str:
    """Hash every file below ``directory``.

    Per-file digests are sorted before being combined, so the result does
    not depend on directory listing order (nor on file names).

    Args:
        directory: Directory to hash recursively.

    Returns:
        SHA-256 hex digest of the sorted per-file digests.
    """
    file_hashes = sorted(
        compute_file_hash(path) for path in directory.rglob("*") if path.is_file()
    )
    return hashlib.sha256("".join(file_hashes).encode("ascii")).hexdigest()


def hash_source_path(path: Path) -> str:
    """Return the contribution of one source path.

    Files contribute their digest, directories their tree digest, and
    missing paths contribute nothing.
    """
    if path.is_file():
        return compute_file_hash(path)
    if path.is_dir():
        return compute_directory_hash(path)
    logger.debug("Source path does not exist, skipping: %s", path)
    return ""


def compute_fingerprint(
    spec: PackageSpec,
    project_root: Path,
    store: FingerprintStore,
) -> str:
    """Compute the current fingerprint of a package.

    Source contributions are concatenated in declared order, followed by the
    cached fingerprint of each direct dependency in declared order. Upstream
    fingerprints come from the store, so dependencies must be recorded
    before their dependents are evaluated.

    Args:
        spec: Package spec.
        project_root: Root against which source paths are resolved.
        store: Fingerprint store providing dependency fingerprints.

    Returns:
        SHA-256 hex digest.
    """
    parts: list[str] = [hash_source_path(project_root / src) for src in spec.sources]

    for dep in spec.dependencies:
        parts.append(store.get(dep) or "")

    fingerprint = hashlib.sha256("".join(parts).encode("ascii")).hexdigest()
    logger.debug("Fingerprint for %s: %s", spec.name, fingerprint[:16])
    return fingerprint


__all__ = [
    "HASH_CHUNK_SIZE",
    "compute_directory_hash",
    "compute_file_hash",
    "compute_fingerprint",
    "hash_source_path",
]
