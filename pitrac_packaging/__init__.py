"""PiTrac packaging - incremental Debian package builds for Raspberry Pi 5.

This package fingerprints package sources and Docker build descriptors,
schedules the minimal set of rebuilds in dependency order, and drives
Docker to produce arm64 .deb artifacts.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
