"""Persistent fingerprint store.

One file per package, ``<cache_dir>/<package>.hash``, holding the hex
fingerprint recorded after the last successful build. Entries are replaced
atomically (temp file + rename) so a crash never exposes a partial value.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from pitrac_packaging.builds.errors import CacheReadError, CacheWriteError

logger = logging.getLogger(__name__)

HASH_SUFFIX = ".hash"


class FingerprintStore:
    """File-backed ``package -> fingerprint`` mapping.

    Reads and writes are serialized by an internal lock so the store can be
    shared between build worker threads.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir
        self._lock = threading.Lock()

    def _path(self, package: str) -> Path:
        return self.cache_dir / f"{package}{HASH_SUFFIX}"

    def read(self, package: str) -> str | None:
        """Return the cached fingerprint, or None if there is no entry.

        Raises:
            CacheReadError: If an entry exists but cannot be read.
        """
        path = self._path(package)
        with self._lock:
            if not path.exists():
                return None
            try:
                value = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as e:
                raise CacheReadError(package, str(e)) from e
        if not value:
            raise CacheReadError(package, "empty entry")
        return value

    def get(self, package: str) -> str | None:
        """Return the cached fingerprint; unreadable entries count as absent."""
        try:
            return self.read(package)
        except CacheReadError as e:
            logger.warning("%s; treating as no previous build", e)
            return None

    def put(self, package: str, fingerprint: str) -> None:
        """Atomically replace the entry for ``package``.

        Raises:
            CacheWriteError: If the entry cannot be written.
        """
        path = self._path(package)
        with self._lock:
            tmp_name: str | None = None
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.cache_dir, prefix=f".{package}.", suffix=".tmp"
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(fingerprint + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
                tmp_name = None
            except OSError as e:
                raise CacheWriteError(package, str(e)) from e
            finally:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
        logger.debug("Recorded fingerprint for %s: %s", package, fingerprint[:16])


__all__ = ["HASH_SUFFIX", "FingerprintStore"]
