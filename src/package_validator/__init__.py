"""Package Validator - keeps a package index list canonical and complete.

This package provides tools for detecting moved or deleted repositories
and for discovering packages through dependency manifests.
"""

__version__ = "0.1.0"
__author__ = "forkrul"

from package_validator.models import (
    CanonicalURL,
    Manifest,
    PackageURL,
    Redirect,
    Repository,
)

__all__ = [
    "__version__",
    "CanonicalURL",
    "Manifest",
    "PackageURL",
    "Redirect",
    "Repository",
]
