"""Package table module.

This module handles:
- The package configuration table (names, versions, sources, dependencies)
- Loading an alternative table from YAML/JSON
"""

from pitrac_packaging.packages.io import load_configured_table, load_package_table
from pitrac_packaging.packages.schema import (
    PackageSpec,
    PackageTable,
    default_package_table,
)

__all__ = [
    "PackageSpec",
    "PackageTable",
    "default_package_table",
    "load_configured_table",
    "load_package_table",
]
