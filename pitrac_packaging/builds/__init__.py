"""Build orchestration module.

This module handles:
- Fingerprint computation and the persistent fingerprint store
- Dirty detection, dependency ordering and build execution
- Running Docker builds and discovering .deb artifacts
- Build history records
"""

from pitrac_packaging.builds.models import BuildRecord

__all__ = ["BuildRecord"]

# Lazy imports for submodules to avoid circular imports
# Access via pitrac_packaging.builds.scheduler, etc.
