"""Manifest decoding via the external evaluation tool.

The manifest file is downloaded from the forge, written to a temporary
directory and evaluated with the dump command (`swift package dump-package`
by default), which prints the manifest as JSON.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Optional

from package_validator.cache import Cache, manifest_cache
from package_validator.clients.github import GitHubClient
from package_validator.config import DEFAULT_DUMP_COMMAND
from package_validator.errors import ManifestDumpError, ManifestNotFoundError, RequestFailedError
from package_validator.models import Manifest, PackageURL, Product, Repository

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "Package.swift"

Runner = Callable[[Path], Awaitable[str]]


class ManifestDecoder:
    """Fetch and decode repository manifests, memoized per repository.

    Attributes:
        github: Client used to locate and download manifest files.
        cache: Decoded manifests keyed by `owner/name`.
        command: Dump command, run inside the manifest's directory.
    """

    def __init__(
        self,
        github: GitHubClient,
        cache: Optional[Cache[Manifest]] = None,
        command: Sequence[str] = DEFAULT_DUMP_COMMAND,
        runner: Optional[Runner] = None,
    ) -> None:
        self.github = github
        self.cache = cache if cache is not None else manifest_cache()
        self.command = tuple(command)
        self._runner = runner or self._run_dump

    async def decode(self, repository: Repository) -> Manifest:
        """Return the decoded manifest of `repository`.

        Raises:
            ManifestNotFoundError: If the repository has no manifest file.
            ManifestDumpError: If the dump command fails or its output
                cannot be decoded.
        """
        cached = self.cache.get(repository.path)
        if cached is not None:
            return cached

        manifest_url = await self.github.fetch_manifest_url(repository)
        logger.debug("Decoding manifest %s", manifest_url)
        try:
            content = await self.github.fetch_raw(manifest_url)
        except RequestFailedError as e:
            if e.status == 404:
                raise ManifestNotFoundError(repository.owner, repository.name) from e
            raise

        with tempfile.TemporaryDirectory(prefix="package-validator-") as tmp:
            directory = Path(tmp)
            (directory / MANIFEST_FILENAME).write_bytes(content)
            output = await self._runner(directory)

        manifest = self.parse(output, context=manifest_url)
        self.cache.set(repository.path, manifest)
        return manifest

    async def decode_url(self, url: PackageURL) -> Manifest:
        repository = await self.github.fetch_repository(url.owner, url.repository)
        return await self.decode(repository)

    @staticmethod
    def parse(output: str, context: str = "manifest") -> Manifest:
        if not output.strip():
            raise ManifestDumpError(f"package dump did not return data for {context}")
        try:
            return Manifest.from_dict(json.loads(output))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ManifestDumpError(f"cannot decode package dump for {context}: {e}") from e

    async def _run_dump(self, directory: Path) -> str:
        env = {**os.environ, "SPI_PROCESSING": "1"}
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=directory,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise ManifestDumpError(f"failed to run {' '.join(self.command)}: {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ManifestDumpError(
                f"package dump failed with exit code {process.returncode}: {message}"
            )
        return stdout.decode("utf-8", errors="replace")

    async def products(self, url: PackageURL) -> tuple[Product, ...]:
        """Return the products declared by the package at `url`."""
        manifest = await self.decode_url(url)
        return manifest.products
