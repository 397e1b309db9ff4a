"""HTTP clients for the forge API, redirect checks and the package index.

Each client owns an aiohttp session; use them as async context managers or
call close() when done.
"""

from package_validator.clients.github import GitHubClient
from package_validator.clients.http import HttpClient
from package_validator.clients.index_api import PackageIndexAPI
from package_validator.clients.redirects import RedirectResolver

__all__ = [
    "GitHubClient",
    "HttpClient",
    "PackageIndexAPI",
    "RedirectResolver",
]
