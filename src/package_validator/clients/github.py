"""GitHub API client.

Fetches repository metadata, file trees and raw manifest content, detects
rate limiting from response headers and memoizes repository lookups.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import Any, Optional, TypeVar

from package_validator.cache import Cache, repository_cache
from package_validator.clients.http import HttpClient
from package_validator.config import DEFAULT_USER_AGENT, ValidatorConfig
from package_validator.errors import (
    DecodingError,
    GitHubTokenNotSetError,
    GraphQLError,
    ManifestNotFoundError,
    RateLimitedError,
    RepositoryNotFoundError,
    RequestFailedError,
    RetryLimitExceededError,
)
from package_validator.models import (
    PackageURL,
    RateLimit,
    RateLimitState,
    RateLimitStatus,
    Repository,
)
from package_validator.storage import parse_package_list

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_URL = "https://api.github.com"
GRAPHQL_URL = f"{API_URL}/graphql"
RAW_URL = "https://raw.githubusercontent.com"
PACKAGE_LIST_URL = f"{RAW_URL}/SwiftPackageIndex/PackageList/main/packages.json"

# Package.swift, Package@swift-5.9.swift, ...
MANIFEST_PATTERN = re.compile(r"^Package.*\.swift$")

REPOSITORY_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    name
    isFork
    owner { login }
    defaultBranchRef { name }
  }
}
"""

Sleep = Callable[[float], Awaitable[Any]]


class GitHubClient(HttpClient):
    """Rate-limit aware client for the GitHub REST and GraphQL APIs.

    Repository lookups are memoized in a `Cache` keyed by the lower-cased
    API URL, so the same repository requested with different casing costs
    one request per run.

    Attributes:
        cache: Repository cache, shared with whoever constructed the client.
        max_attempts: Attempts per repository lookup while rate limited.
        last_rate_limit: Most recent rate-limit status seen on a response.
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        cache: Optional[Cache[Repository]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        max_attempts: int = 3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize GitHubClient.

        Args:
            github_token: Optional GitHub personal access token for API authentication.
                Increases rate limit from 60 to 5000 requests/hour.
            cache: Repository cache. A fresh one is created if not given.
            user_agent: Product token sent as `User-Agent`.
            timeout: Total per-request timeout in seconds.
            max_attempts: Attempts per lookup when rate limited.
            sleep: Coroutine used to wait out rate limits.
        """
        super().__init__(token=github_token, user_agent=user_agent, timeout=timeout)
        self.cache = cache if cache is not None else repository_cache()
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.last_rate_limit = RateLimitStatus.unknown()

    @classmethod
    def from_config(
        cls, config: ValidatorConfig, cache: Optional[Cache[Repository]] = None
    ) -> "GitHubClient":
        return cls(
            github_token=config.github_token,
            cache=cache,
            user_agent=config.user_agent,
            timeout=config.request_timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/vnd.github+json"
        return headers

    def _check_response(self, url: str, status: int, headers: Any) -> None:
        rate_limit = RateLimitStatus.from_response(status, headers)
        if rate_limit.state is not RateLimitState.UNKNOWN:
            self.last_rate_limit = rate_limit
        if rate_limit.is_limited:
            raise RateLimitedError(until=rate_limit.reset_at)
        if not 200 <= status < 300:
            raise RequestFailedError(url, status)

    async def _request(self, method: str, url: str, **kwargs: Any) -> bytes:
        session = await self._get_session()
        logger.debug("%s %s", method, url)
        async with session.request(method, url, headers=self._headers(), **kwargs) as response:
            body = await response.read()
            self._check_response(url, response.status, response.headers)
            return body

    @staticmethod
    def _decode(url: str, body: bytes) -> Any:
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodingError(url, body.decode("utf-8", errors="replace")) from e

    async def fetch_json(self, url: str) -> Any:
        """GET `url` and decode the JSON body.

        Raises:
            RateLimitedError: If the response signals an exhausted quota.
            RequestFailedError: For any other non-2xx status.
            DecodingError: If the body is not JSON.
        """
        return self._decode(url, await self._request("GET", url))

    async def fetch_raw(self, url: str) -> bytes:
        """GET `url` and return the body unchanged."""
        return await self._request("GET", url)

    async def post_graphql(
        self, query: str, variables: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """POST a GraphQL query. The GraphQL endpoint requires a token."""
        if not self.token:
            raise GitHubTokenNotSetError()
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        body = await self._request("POST", GRAPHQL_URL, json=payload)
        data = self._decode(GRAPHQL_URL, body)
        if not isinstance(data, dict):
            raise DecodingError(GRAPHQL_URL, body.decode("utf-8", errors="replace"))
        return data

    def _seconds_until(self, until: datetime) -> float:
        return max(0.0, (until - datetime.now(UTC)).total_seconds())

    async def _with_rate_limit_retry(
        self, label: str, operation: Callable[[], Awaitable[T]]
    ) -> T:
        """Run `operation`, sleeping until the reported reset when rate limited.

        Raises:
            RetryLimitExceededError: If every attempt was rate limited.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except RateLimitedError as e:
                logger.warning(
                    "Rate limited fetching %s, resets at %s (attempt %d/%d)",
                    label,
                    e.until.isoformat(),
                    attempt,
                    self.max_attempts,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self._seconds_until(e.until))
        raise RetryLimitExceededError(label, self.max_attempts)

    @staticmethod
    def repository_api_url(owner: str, name: str) -> str:
        return f"{API_URL}/repos/{owner}/{name}"

    async def fetch_repository(self, owner: str, name: str) -> Repository:
        """Fetch repository metadata via the REST API.

        Args:
            owner: Repository owner.
            name: Repository name.

        Returns:
            The repository, from cache when it was fetched before.

        Raises:
            RepositoryNotFoundError: If the API answers 404.
            RetryLimitExceededError: If rate limited on every attempt.
        """
        url = self.repository_api_url(owner, name)
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        async def fetch() -> Repository:
            try:
                data = await self.fetch_json(url)
            except RequestFailedError as e:
                if e.status == 404:
                    raise RepositoryNotFoundError(owner, name) from e
                raise
            return Repository.from_api(data, owner, name)

        repository = await self._with_rate_limit_retry(f"{owner}/{name}", fetch)
        self.cache.set(url, repository)
        return repository

    async def fetch_repository_graphql(self, owner: str, name: str) -> Repository:
        """Fetch repository metadata via GraphQL.

        Shares the cache with `fetch_repository`. A `NOT_FOUND` error or a
        null repository maps to `RepositoryNotFoundError`.
        """
        url = self.repository_api_url(owner, name)
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        async def fetch() -> Repository:
            response = await self.post_graphql(
                REPOSITORY_QUERY, {"owner": owner, "name": name}
            )
            errors = response.get("errors") or []
            if any(error.get("type") == "NOT_FOUND" for error in errors):
                raise RepositoryNotFoundError(owner, name)
            if errors:
                raise GraphQLError([str(error.get("message")) for error in errors])
            node = (response.get("data") or {}).get("repository")
            if node is None:
                raise RepositoryNotFoundError(owner, name)
            return Repository.from_graphql(node, owner, name)

        repository = await self._with_rate_limit_retry(f"{owner}/{name}", fetch)
        self.cache.set(url, repository)
        return repository

    async def fetch_repositories(
        self, urls: Iterable[PackageURL]
    ) -> list[tuple[PackageURL, Optional[Repository]]]:
        """Fetch repositories for several package URLs concurrently.

        Returns:
            `(url, repository)` pairs in input order; the repository is None
            for URLs the API does not know.
        """

        async def fetch(url: PackageURL) -> tuple[PackageURL, Optional[Repository]]:
            try:
                return url, await self.fetch_repository(url.owner, url.repository)
            except RepositoryNotFoundError:
                return url, None

        return list(await asyncio.gather(*(fetch(url) for url in urls)))

    async def fetch_package_list(self, url: str = PACKAGE_LIST_URL) -> list[PackageURL]:
        """Download the canonical package list.

        Raises:
            InputError: If the document is not an array of package URLs.
        """
        data = await self.fetch_json(url)
        packages = parse_package_list(data, url)
        logger.info("Fetched %d packages from %s", len(packages), url)
        return packages

    async def get_rate_limit(self) -> RateLimit:
        """Return the current core API quota."""
        data = await self.fetch_json(f"{API_URL}/rate_limit")
        rate = data["rate"]
        return RateLimit(
            limit=int(rate["limit"]),
            used=int(rate["used"]),
            remaining=int(rate["remaining"]),
            reset=int(rate["reset"]),
        )

    async def list_repository_file_paths(self, repository: Repository) -> list[str]:
        """List the top-level files on the repository's default branch.

        Raises:
            MissingDefaultBranchError: If the metadata has no default branch.
        """
        branch = repository.require_default_branch()
        url = f"{API_URL}/repos/{repository.owner}/{repository.name}/git/trees/{branch}"

        async def fetch() -> Any:
            return await self.fetch_json(url)

        data = await self._with_rate_limit_retry(f"{repository.path} tree", fetch)
        return [
            item["path"]
            for item in data.get("tree", [])
            if item.get("type") == "blob" and "path" in item
        ]

    async def fetch_manifest_url(self, repository: Repository) -> str:
        """Return the raw-content URL of the repository's manifest file.

        When several manifest files exist, the lexicographically last one is
        chosen, which prefers version-suffixed files.

        Raises:
            ManifestNotFoundError: If no file matches the manifest naming.
        """
        branch = repository.require_default_branch()
        paths = await self.list_repository_file_paths(repository)
        manifests = sorted(p for p in paths if MANIFEST_PATTERN.match(p))
        if not manifests:
            raise ManifestNotFoundError(repository.owner, repository.name)
        return f"{RAW_URL}/{repository.owner}/{repository.name}/{branch}/{manifests[-1]}"
