"""Reading and writing package lists.

A package list is a JSON array of absolute URL strings. Output is
pretty-printed with unescaped slashes so diffs stay readable.
"""

import json
from pathlib import Path
from typing import Any

from package_validator.errors import InputError, InvalidPackageError
from package_validator.models import PackageURL


def _read_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise InputError(f"file not found: {path}") from e
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InputError(f"cannot read {path}: {e}") from e


def parse_package_list(data: Any, source: object) -> list[PackageURL]:
    """Validate decoded JSON as a package list read from `source`."""
    if not isinstance(data, list):
        raise InputError(f"{source}: expected a JSON array of package urls")
    try:
        return [PackageURL.parse(item) for item in data]
    except InvalidPackageError as e:
        raise InputError(f"{source}: {e}") from e


def load_package_list(path: Path) -> list[PackageURL]:
    """Load a package list.

    Args:
        path: JSON file containing an array of URL strings.

    Returns:
        The URLs in stored order.

    Raises:
        InputError: If the file is missing, not JSON, or holds anything
            other than an array of valid URLs.
    """
    return parse_package_list(_read_json(path), path)


def load_url_strings(path: Path) -> list[str]:
    """Load a JSON array of strings without URL validation."""
    data = _read_json(path)
    if not isinstance(data, list) or not all(isinstance(i, str) for i in data):
        raise InputError(f"{path}: expected a JSON array of strings")
    return data


def load_deny_list(path: Path) -> list[PackageURL]:
    """Load a deny list of the form `[{"package_url": "..."}]`."""
    data = _read_json(path)
    if not isinstance(data, list):
        raise InputError(f"{path}: expected a JSON array of deny list entries")
    try:
        return [PackageURL.parse(entry["package_url"]) for entry in data]
    except (KeyError, TypeError) as e:
        raise InputError(f"{path}: deny list entry without package_url") from e
    except InvalidPackageError as e:
        raise InputError(f"{path}: {e}") from e


def dumps_package_list(urls: list[PackageURL] | list[str]) -> str:
    return json.dumps([str(u) for u in urls], indent=2, ensure_ascii=False, sort_keys=True) + "\n"


def save_package_list(urls: list[PackageURL] | list[str], path: Path) -> None:
    """Write a package list in its canonical stored form."""
    path.write_text(dumps_package_list(urls), encoding="utf-8")
