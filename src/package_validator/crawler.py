"""Dependency crawler.

Expands a seed list of package URLs with every repository reachable
through dependency manifests. Each URL runs through the same pipeline:

1. Fetch repository metadata and decode its manifest
2. Keep https dependencies hosted on the forge
3. Resolve redirects for each dependency
4. Drop forks and packages without products
5. Fold survivors into the result, preserving known casing
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

from package_validator.clients.github import GitHubClient
from package_validator.clients.redirects import RedirectResolver
from package_validator.config import ValidatorConfig
from package_validator.errors import (
    ITEM_ERRORS,
    InvalidPackageError,
    MaxRedirectsExceededError,
    RequestFailedError,
    RetryLimitExceededError,
    TransientError,
    ValidatorError,
)
from package_validator.limiter import ConcurrencyLimiter
from package_validator.manifest import ManifestDecoder
from package_validator.models import PackageRecord, PackageURL, sort_package_urls
from package_validator.reconcile import (
    UniqueCanonicalURLs,
    find_unindexed_dependencies,
    indexed_packages,
    merge_with_existing,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(base: float, attempt: int) -> float:
    """Exponential backoff: `base * 2 ** (attempt - 1)` for attempt >= 1."""
    return base * 2 ** (attempt - 1)


def chunk(
    urls: Sequence[PackageURL], index: Optional[int], count: Optional[int]
) -> list[PackageURL]:
    """Return slice `index` of `urls` split into `count` contiguous chunks.

    Chunks hold `ceil(len(urls) / count)` items, so the last one may be
    shorter. Without both `index` and a positive `count` the whole list is
    returned.

    Raises:
        ValueError: If `index` is outside `0..count-1`.
    """
    if index is None or not count:
        return list(urls)
    if not 0 <= index < count:
        raise ValueError(f"chunk index {index} out of range for {count} chunks")
    size = math.ceil(len(urls) / count)
    return list(urls[index * size : (index + 1) * size])


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, RequestFailedError):
        return error.is_transient
    return isinstance(error, (TransientError, aiohttp.ClientError, asyncio.TimeoutError))


@dataclass(frozen=True)
class CrawlPolicy:
    """Which discovered dependencies are accepted."""

    forge_host: str = "github.com"
    drop_forks: bool = True
    drop_no_products: bool = True

    @classmethod
    def from_config(cls, config: ValidatorConfig) -> "CrawlPolicy":
        return cls(
            forge_host=config.forge_host,
            drop_forks=config.drop_forks,
            drop_no_products=config.drop_no_products,
        )


@dataclass
class DiscoveryResult:
    """Outcome of reconciling against the package index.

    Attributes:
        added: Packages referenced by the index but not indexed yet.
        merged: Index packages, seeds and additions, sorted.
        skipped_forks: Additions rejected because they are forks.
    """

    added: list[PackageURL] = field(default_factory=list)
    merged: list[PackageURL] = field(default_factory=list)
    skipped_forks: int = 0


class DependencyCrawler:
    """Crawl dependency manifests starting from a list of seed packages.

    All collaborators are injected; a run shares one repository cache and
    one manifest cache through them.

    Attributes:
        github: Client for repository metadata.
        redirects: Resolver used to normalize discovered dependencies.
        manifests: Decoder for repository manifests.
        limiter: Gate bounding how many packages are processed at once.
        policy: Dependency filters.
        retry_delay: Base delay in seconds for the per-package backoff.
    """

    def __init__(
        self,
        github: GitHubClient,
        redirects: RedirectResolver,
        manifests: ManifestDecoder,
        limiter: Optional[ConcurrencyLimiter] = None,
        policy: Optional[CrawlPolicy] = None,
        retry_delay: float = 5.0,
        sleep: Sleep = asyncio.sleep,
        progress_interval: int = 10,
    ) -> None:
        self.github = github
        self.redirects = redirects
        self.manifests = manifests
        self.limiter = limiter or ConcurrencyLimiter(1)
        # Dependency lookups run while their seed holds a slot of `limiter`,
        # so they get a gate of their own with the same bound.
        self.lookup_limiter = ConcurrencyLimiter(
            self.limiter.maximum, granularity=self.limiter.granularity
        )
        self.policy = policy or CrawlPolicy()
        self.retry_delay = retry_delay
        self.progress_interval = progress_interval
        self._sleep = sleep
        self._processed = 0

    def candidate_urls(self, locations: Iterable[str]) -> list[PackageURL]:
        """Keep https locations on the forge host, `.git`-suffixed and unique."""
        candidates: dict[str, PackageURL] = {}
        for location in locations:
            try:
                url = PackageURL.parse(location)
            except InvalidPackageError:
                logger.debug("Ignoring dependency location %r", location)
                continue
            if url.scheme != "https" or (url.host or "") != self.policy.forge_host.lower():
                continue
            url = url.appending_git_extension()
            candidates.setdefault(url.normalized(), url)
        return list(candidates.values())

    async def _resolve(self, url: PackageURL) -> Optional[PackageURL]:
        try:
            redirect = await self.redirects.resolve_package_redirects(url)
        except (MaxRedirectsExceededError, RetryLimitExceededError) as e:
            logger.warning("Skipping %s: %s", url, e)
            return None
        resolved = redirect.resolved_url
        if resolved is None:
            logger.info("Dropping %s: %s", url, redirect.message or redirect.kind.value)
            return None
        return resolved.appending_git_extension()

    async def _keep_where(
        self,
        urls: Sequence[PackageURL],
        check: Callable[[PackageURL], Awaitable[bool]],
    ) -> list[PackageURL]:
        """Return the urls passing `check`, gated by `lookup_limiter`.

        A dependency whose lookup fails is dropped. Transient failures
        propagate so the seed's backoff retries them.
        """

        async def keep(url: PackageURL) -> bool:
            async with self.lookup_limiter:
                try:
                    return await check(url)
                except ValidatorError as e:
                    if _is_transient(e):
                        raise
                    logger.info("Dropping %s: %s", url, e)
                    return False

        flags = await asyncio.gather(*(keep(url) for url in urls))
        return [url for url, kept in zip(urls, flags) if kept]

    async def drop_forks(self, urls: Sequence[PackageURL]) -> list[PackageURL]:
        async def is_source(url: PackageURL) -> bool:
            repository = await self.github.fetch_repository(url.owner, url.repository)
            if repository.is_fork:
                logger.info("Dropping %s: fork", url)
            return not repository.is_fork

        return await self._keep_where(urls, is_source)

    async def drop_no_products(self, urls: Sequence[PackageURL]) -> list[PackageURL]:
        async def has_products(url: PackageURL) -> bool:
            products = await self.manifests.products(url)
            if not products:
                logger.info("Dropping %s: no products", url)
            return bool(products)

        return await self._keep_where(urls, has_products)

    async def find_dependencies(self, url: PackageURL) -> list[PackageURL]:
        """Return the accepted dependencies of one package.

        Per-item failures (missing repository or manifest, failing dump)
        are logged and yield no dependencies.
        """
        try:
            repository = await self.github.fetch_repository(url.owner, url.repository)
            manifest = await self.manifests.decode(repository)
        except ITEM_ERRORS as e:
            logger.warning("No dependencies for %s: %s", url, e)
            return []

        candidates = self.candidate_urls(manifest.dependency_urls)
        resolved: dict[str, PackageURL] = {}
        for candidate in candidates:
            target = await self._resolve(candidate)
            if target is not None:
                resolved.setdefault(target.normalized(), target)

        dependencies = list(resolved.values())
        if self.policy.drop_forks:
            dependencies = await self.drop_forks(dependencies)
        if self.policy.drop_no_products:
            dependencies = await self.drop_no_products(dependencies)
        logger.debug("%s: %d dependencies", url, len(dependencies))
        return dependencies

    async def find_dependencies_with_retry(
        self, url: PackageURL, retries: int = 3
    ) -> list[PackageURL]:
        """Run `find_dependencies`, backing off exponentially on transient errors.

        Raises:
            RetryLimitExceededError: If all `retries` retries failed.
        """
        attempt = 0
        while True:
            try:
                return await self.find_dependencies(url)
            except Exception as e:
                if not _is_transient(e):
                    raise
                attempt += 1
                if attempt > retries:
                    raise RetryLimitExceededError(str(url), attempt) from e
                delay = backoff_delay(self.retry_delay, attempt)
                logger.warning(
                    "Transient error for %s (%s), retrying in %ss ...", url, e, delay
                )
                await self._sleep(delay)

    def _report_progress(self, total: int) -> None:
        self._processed += 1
        if self._processed % self.progress_interval == 0:
            headroom = self.github.last_rate_limit.remaining
            logger.info(
                "Progress: %d/%d (rate limit remaining: %s)",
                self._processed,
                total,
                "unknown" if headroom is None else headroom,
            )

    async def _crawl(self, url: PackageURL, total: int, retries: int) -> list[PackageURL]:
        async with self.limiter:
            try:
                return await self.find_dependencies_with_retry(url, retries)
            except RetryLimitExceededError as e:
                logger.error("Skipping %s: %s", url, e)
                return []
            except ValidatorError as e:
                logger.warning("No dependencies for %s: %s", url, e)
                return []
            finally:
                self._report_progress(total)

    async def expand(
        self,
        seed_urls: Iterable[PackageURL],
        limit: Optional[int] = None,
        retries: int = 3,
        chunk_index: Optional[int] = None,
        number_of_chunks: Optional[int] = None,
    ) -> list[PackageURL]:
        """Return the seeds plus every package reachable through their manifests.

        Args:
            seed_urls: Known packages. Their casing wins over rediscovered
                duplicates.
            limit: Maximum number of packages to crawl, seeds first.
            retries: Retries per package for transient failures.
            chunk_index: Only crawl this chunk of the seeds. Every seed is
                still part of the result.
            number_of_chunks: How many chunks the seeds are split into.

        Returns:
            De-duplicated URLs sorted case-insensitively.
        """
        seeds = merge_with_existing([], seed_urls)
        seen = {url.normalized() for url in seeds}
        discovered: list[PackageURL] = []
        pending = chunk(seeds, chunk_index, number_of_chunks)
        crawled = 0
        self._processed = 0

        while pending:
            if limit is not None:
                pending = pending[: max(0, limit - crawled)]
                if not pending:
                    break
            total = crawled + len(pending)
            logger.info("Checking dependencies of %d package(s) ...", len(pending))
            results = await asyncio.gather(
                *(self._crawl(url, total, retries) for url in pending)
            )
            crawled += len(pending)

            next_round: list[PackageURL] = []
            for dependencies in results:
                for dependency in dependencies:
                    key = dependency.normalized()
                    if key not in seen:
                        seen.add(key)
                        discovered.append(dependency)
                        next_round.append(dependency)
            pending = next_round

        logger.info("Found %d new package(s)", len(discovered))
        return sort_package_urls(merge_with_existing(discovered, seeds))

    async def discover_unindexed(
        self,
        records: Sequence[PackageRecord],
        seeds: Iterable[PackageURL] = (),
        limit: Optional[int] = None,
    ) -> DiscoveryResult:
        """Find dependencies the index references but does not contain.

        Each missing dependency is redirect-resolved; those that resolve to
        an indexed package or to a fork are skipped.

        Args:
            records: Package records from the index API.
            seeds: Additional known packages to merge into the result.
            limit: Stop after this many new packages.
        """
        indexed = indexed_packages(records)
        missing = find_unindexed_dependencies(list(records)).package_urls()
        logger.info("Total packages: %d, not indexed: %d", len(indexed), len(missing))

        added = UniqueCanonicalURLs()
        result = DiscoveryResult()
        for index, dependency in enumerate(missing):
            if index % self.progress_interval == 0:
                logger.info("Progress: %d/%d", index, len(missing))
            if limit is not None and len(added) >= limit:
                logger.info("Limit reached")
                break

            async with self.limiter:
                target = await self._resolve(dependency)
                if target is None:
                    continue
                if target.canonical in indexed:
                    logger.info("Skipping %s: already indexed", dependency)
                    continue
                if self.policy.drop_forks:
                    try:
                        repository = await self.github.fetch_repository(
                            target.owner, target.repository
                        )
                    except ValidatorError as e:
                        logger.warning("Skipping %s: %s", target, e)
                        continue
                    if repository.is_fork:
                        logger.info("Skipping %s: fork", target)
                        result.skipped_forks += 1
                        continue

            if added.insert(target.canonical):
                logger.info("Adding %s", target)

        result.added = added.package_urls()
        merged = merge_with_existing(result.added, indexed.package_urls())
        result.merged = sort_package_urls(merge_with_existing(merged, seeds))
        return result
