"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from package_validator.models import Dependency, Manifest, Product, Repository


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> SleepRecorder:
    """Return a sleep recorder for backoff paths."""
    return SleepRecorder()


@pytest.fixture
def sample_repository_response() -> dict[str, Any]:
    """Sample GitHub API response for GET /repos/{owner}/{name}."""
    return {
        "id": 44838949,
        "name": "swift-nio",
        "full_name": "apple/swift-nio",
        "owner": {"login": "apple", "type": "Organization"},
        "fork": False,
        "default_branch": "main",
        "html_url": "https://github.com/apple/swift-nio",
    }


@pytest.fixture
def sample_tree_response() -> dict[str, Any]:
    """Sample GitHub API response for the git tree of a repository."""
    return {
        "sha": "9fb037999f264ba9a7fc6274d15fa3ae2ab98312",
        "truncated": False,
        "tree": [
            {"path": ".github", "type": "tree"},
            {"path": "Package.swift", "type": "blob"},
            {"path": "Package@swift-5.9.swift", "type": "blob"},
            {"path": "README.md", "type": "blob"},
            {"path": "Sources", "type": "tree"},
        ],
    }


@pytest.fixture
def sample_dump_output() -> dict[str, Any]:
    """Sample `swift package dump-package` output."""
    return {
        "name": "swift-nio-ssl",
        "products": [{"name": "NIOSSL", "targets": ["NIOSSL"]}],
        "dependencies": [
            {
                "sourceControl": [
                    {
                        "identity": "swift-nio",
                        "location": {
                            "remote": [{"urlString": "https://github.com/apple/swift-nio.git"}]
                        },
                    }
                ]
            }
        ],
    }


@pytest.fixture
def repository() -> Repository:
    """Return a non-fork repository with a default branch."""
    return Repository(owner="apple", name="swift-nio", default_branch="main")


@pytest.fixture
def manifest() -> Manifest:
    """Return a manifest with one product and one dependency."""
    return Manifest(
        name="swift-nio",
        products=(Product(name="NIO"),),
        dependencies=(Dependency(locations=("https://github.com/apple/swift-atomics.git",)),),
    )
