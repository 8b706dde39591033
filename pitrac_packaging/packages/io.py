"""Package table loading.

The built-in table covers the standard PiTrac build. A YAML or JSON file
with the same shape can replace it:

    packages:
      - name: lgpio
        version: 0.2.2-1
        sources: [docker/Dockerfile.lgpio]
      - name: pitrac
        version_scheme: date
        sources: [docker/Dockerfile.pitrac, pitrac/]
        dependencies: [lgpio]
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from pitrac_packaging.packages.schema import PackageTable, default_package_table

if TYPE_CHECKING:
    from pitrac_packaging.config import Settings

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_package_table(data: dict[str, Any]) -> PackageTable:
    """Validate raw table data.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    return PackageTable.model_validate(data)


def load_package_table(path: Path) -> PackageTable:
    """Load a package table from a YAML or JSON file.

    The format is chosen by file extension (.json is JSON, anything else
    is parsed as YAML).

    Args:
        path: Path to the table file.

    Returns:
        Validated PackageTable.
    """
    if path.suffix.lower() == ".json":
        data = load_json(path)
    else:
        data = load_yaml(path)
    table = parse_package_table(data)
    logger.debug("Loaded %d packages from %s", len(table.packages), path)
    return table


def load_configured_table(settings: "Settings") -> PackageTable:
    """Return the table named in settings, or the built-in one."""
    if settings.packages_file is None:
        return default_package_table()
    return load_package_table(settings.packages_file)


__all__ = [
    "load_configured_table",
    "load_json",
    "load_package_table",
    "load_yaml",
    "parse_package_table",
]
