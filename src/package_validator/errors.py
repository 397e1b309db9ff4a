"""Exceptions raised by package_validator.

Lower layers (API client, redirect resolver, manifest decoder) raise
narrowly-scoped errors from this module so the crawler and the CLI can
decide per class whether to retry, skip the item, or stop the run.
"""

from datetime import datetime
from typing import Optional


class ValidatorError(Exception):
    """Base for all package_validator errors."""


class TransientError(ValidatorError):
    """An upstream failure that is expected to clear up when retried."""


class RateLimitedError(TransientError):
    """Raised when the API reports an exhausted rate limit.

    Attributes:
        until: When the quota resets.
    """

    def __init__(self, until: datetime) -> None:
        super().__init__(f"rate limited until {until.isoformat()}")
        self.until = until


class RequestFailedError(ValidatorError):
    """Raised for a non-2xx response that has no more specific meaning."""

    def __init__(self, url: str, status: int) -> None:
        super().__init__(f"request failed with status {status}: {url}")
        self.url = url
        self.status = status

    @property
    def is_transient(self) -> bool:
        return self.status >= 500


class GraphQLError(ValidatorError):
    """Raised when a GraphQL response carries errors other than NOT_FOUND."""

    def __init__(self, messages: list[str]) -> None:
        super().__init__("graphql error: " + "; ".join(messages))
        self.messages = messages


class DecodingError(ValidatorError):
    """Raised when a response body cannot be decoded."""

    def __init__(self, context: str, body: str) -> None:
        super().__init__(f"failed to decode response from {context}: {body[:200]}")
        self.context = context
        self.body = body


class RepositoryNotFoundError(ValidatorError):
    """Raised when the forge reports that a repository does not exist."""

    def __init__(self, owner: str, name: str) -> None:
        super().__init__(f"repository not found: {owner}/{name}")
        self.owner = owner
        self.name = name


class ManifestNotFoundError(ValidatorError):
    """Raised when a repository has no manifest file on its default branch."""

    def __init__(self, owner: str, name: str) -> None:
        super().__init__(f"manifest not found: {owner}/{name}")
        self.owner = owner
        self.name = name


class ManifestDumpError(ValidatorError):
    """Raised when the manifest evaluation tool fails or emits garbage."""


class InvalidPackageError(ValidatorError, ValueError):
    """Raised for a string that cannot identify a source repository."""

    def __init__(self, url: str, reason: Optional[str] = None) -> None:
        message = f"invalid package url: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.url = url


class MissingDefaultBranchError(ValidatorError):
    """Raised when repository metadata lacks the default branch."""

    def __init__(self, owner: str, name: str) -> None:
        super().__init__(f"no default branch for {owner}/{name}")
        self.owner = owner
        self.name = name


class MaxRedirectsExceededError(ValidatorError):
    """Raised when a redirect chain is longer than the hop limit."""

    def __init__(self, url: str, max_hops: int) -> None:
        super().__init__(f"max redirects exceeded ({max_hops}) for url: {url}")
        self.url = url
        self.max_hops = max_hops


class RetryLimitExceededError(ValidatorError):
    """Raised when a bounded retry loop runs out of attempts."""

    def __init__(self, label: str, attempts: int) -> None:
        super().__init__(f"retry limit exceeded for {label} after {attempts} attempt(s)")
        self.label = label
        self.attempts = attempts


class ConfigurationError(ValidatorError):
    """Raised for configuration that makes a whole run impossible."""


class GitHubTokenNotSetError(ConfigurationError):
    """Raised when a code path requires an authenticated GitHub token."""

    def __init__(self) -> None:
        super().__init__("GITHUB_TOKEN is not set")


class InputError(ValidatorError):
    """Raised for unreadable or malformed input files."""


# Errors that only affect the item being processed. The crawler logs them
# and carries on with the rest of the batch.
ITEM_ERRORS: tuple[type[ValidatorError], ...] = (
    RepositoryNotFoundError,
    DecodingError,
    ManifestNotFoundError,
    ManifestDumpError,
    InvalidPackageError,
    MissingDefaultBranchError,
)
