"""Tests for the manifest decoder."""

import json
import sys
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from aioresponses import aioresponses

from package_validator.clients.github import GitHubClient
from package_validator.errors import ManifestDumpError, ManifestNotFoundError
from package_validator.manifest import ManifestDecoder
from package_validator.models import PackageURL, Repository

TREE_URL = "https://api.github.com/repos/apple/swift-nio/git/trees/main"
RAW_URL = "https://raw.githubusercontent.com/apple/swift-nio/main/Package@swift-5.9.swift"

# Echoes the manifest file content as the package name.
ECHO_SCRIPT = """
import json, os, pathlib
assert os.environ["SPI_PROCESSING"] == "1"
name = pathlib.Path("Package.swift").read_text().strip()
print(json.dumps({"name": name, "products": [{"name": name}], "dependencies": []}))
"""


class FakeRunner:
    """Dump command stand-in that returns canned output."""

    def __init__(self, output: str) -> None:
        self.output = output
        self.seen: list[str] = []

    async def __call__(self, directory: Path) -> str:
        self.seen.append((directory / "Package.swift").read_text())
        return self.output


@pytest.fixture
async def github_client(sleep) -> AsyncGenerator[GitHubClient, None]:
    client = GitHubClient(github_token="ghp_test123token", sleep=sleep)
    yield client
    await client.close()


class TestDecode:
    """Test suite for ManifestDecoder.decode."""

    async def test_decode(
        self,
        github_client: GitHubClient,
        repository: Repository,
        sample_tree_response: dict[str, Any],
        sample_dump_output: dict[str, Any],
    ) -> None:
        """Test that the chosen manifest is evaluated and decoded."""
        runner = FakeRunner(json.dumps(sample_dump_output))
        decoder = ManifestDecoder(github_client, runner=runner)

        with aioresponses() as m:
            m.get(TREE_URL, payload=sample_tree_response)
            m.get(RAW_URL, body=b"// swift-tools-version:5.9\n")

            manifest = await decoder.decode(repository)

        assert manifest.name == "swift-nio-ssl"
        assert manifest.dependency_urls == ["https://github.com/apple/swift-nio.git"]
        assert runner.seen == ["// swift-tools-version:5.9\n"]

    async def test_decode_is_cached(
        self,
        github_client: GitHubClient,
        repository: Repository,
        sample_tree_response: dict[str, Any],
        sample_dump_output: dict[str, Any],
    ) -> None:
        """Test that a repository is evaluated once per run."""
        runner = FakeRunner(json.dumps(sample_dump_output))
        decoder = ManifestDecoder(github_client, runner=runner)

        with aioresponses() as m:
            m.get(TREE_URL, payload=sample_tree_response)
            m.get(RAW_URL, body=b"// manifest\n")

            first = await decoder.decode(repository)
            second = await decoder.decode(Repository("Apple", "Swift-NIO", default_branch="main"))

        assert first == second
        assert len(runner.seen) == 1

    async def test_raw_not_found(
        self,
        github_client: GitHubClient,
        repository: Repository,
        sample_tree_response: dict[str, Any],
    ) -> None:
        decoder = ManifestDecoder(github_client, runner=FakeRunner("{}"))

        with aioresponses() as m:
            m.get(TREE_URL, payload=sample_tree_response)
            m.get(RAW_URL, status=404)

            with pytest.raises(ManifestNotFoundError):
                await decoder.decode(repository)

    async def test_products(
        self,
        github_client: GitHubClient,
        sample_repository_response: dict[str, Any],
        sample_tree_response: dict[str, Any],
        sample_dump_output: dict[str, Any],
    ) -> None:
        decoder = ManifestDecoder(github_client, runner=FakeRunner(json.dumps(sample_dump_output)))

        with aioresponses() as m:
            m.get(
                "https://api.github.com/repos/apple/swift-nio",
                payload=sample_repository_response,
            )
            m.get(TREE_URL, payload=sample_tree_response)
            m.get(RAW_URL, body=b"// manifest\n")

            products = await decoder.products(
                PackageURL("https://github.com/apple/swift-nio.git")
            )

        assert [product.name for product in products] == ["NIOSSL"]


class TestParse:
    """Test suite for decoding dump output."""

    @pytest.mark.parametrize("output", ["", "   \n", "not json", '{"products": []}', "[]"])
    def test_malformed_output(self, output: str) -> None:
        with pytest.raises(ManifestDumpError):
            ManifestDecoder.parse(output, context="apple/swift-nio")

    def test_legacy_format(self) -> None:
        output = json.dumps(
            {
                "name": "Legacy",
                "products": [{"name": "Legacy"}],
                "dependencies": [{"url": "https://github.com/foo/bar.git"}],
            }
        )
        assert ManifestDecoder.parse(output).dependency_urls == ["https://github.com/foo/bar.git"]


class TestRunDump:
    """Test suite for running the dump command as a subprocess."""

    async def test_runs_in_manifest_directory(
        self,
        github_client: GitHubClient,
        repository: Repository,
        sample_tree_response: dict[str, Any],
    ) -> None:
        decoder = ManifestDecoder(github_client, command=(sys.executable, "-c", ECHO_SCRIPT))

        with aioresponses() as m:
            m.get(TREE_URL, payload=sample_tree_response)
            m.get(RAW_URL, body=b"EchoPackage\n")

            manifest = await decoder.decode(repository)

        assert manifest.name == "EchoPackage"
        assert [product.name for product in manifest.products] == ["EchoPackage"]

    async def test_non_zero_exit(self, github_client: GitHubClient, tmp_path: Path) -> None:
        decoder = ManifestDecoder(
            github_client,
            command=(sys.executable, "-c", "import sys; sys.stderr.write('bad manifest'); sys.exit(3)"),
        )

        with pytest.raises(ManifestDumpError, match="exit code 3: bad manifest"):
            await decoder._run_dump(tmp_path)

    async def test_missing_command(self, github_client: GitHubClient, tmp_path: Path) -> None:
        decoder = ManifestDecoder(github_client, command=("package-validator-no-such-tool",))

        with pytest.raises(ManifestDumpError, match="failed to run"):
            await decoder._run_dump(tmp_path)
