"""Redirect resolution for repository URLs.

Follows HTTP redirects with HEAD requests until a terminal outcome, to
detect repositories that were renamed, moved or deleted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional
from urllib.parse import urljoin

import aiohttp

from package_validator.clients.http import HttpClient
from package_validator.config import DEFAULT_USER_AGENT, ValidatorConfig
from package_validator.errors import (
    InvalidPackageError,
    MaxRedirectsExceededError,
    RetryLimitExceededError,
)
from package_validator.models import PackageURL, Redirect, RedirectKind

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def _retry_after(value: Optional[str], default: int) -> int:
    try:
        return max(0, int(value)) if value is not None else default
    except ValueError:
        return default


class RedirectResolver(HttpClient):
    """Resolve the final location of a repository URL.

    Each call is independent and safe to run concurrently with others; the
    only shared state is the HTTP session.

    Attributes:
        max_hops: Redirects followed before giving up on a URL.
        max_attempts: Ceiling on requests per URL, counting rate-limit retries.
        connection_retry_delay: Seconds to wait after a dropped connection.
        default_retry_after: Seconds to wait on 429 without `Retry-After`.
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 5.0,
        max_hops: int = 10,
        max_attempts: int = 30,
        connection_retry_delay: float = 5.0,
        default_retry_after: int = 5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(token=github_token, user_agent=user_agent, timeout=timeout)
        self.max_hops = max_hops
        self.max_attempts = max_attempts
        self.connection_retry_delay = connection_retry_delay
        self.default_retry_after = default_retry_after
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ValidatorConfig) -> "RedirectResolver":
        return cls(
            github_token=config.github_token,
            user_agent=config.user_agent,
            timeout=config.head_timeout,
        )

    async def _head(self, url: str) -> tuple[int, Optional[str], Optional[str]]:
        session = await self._get_session()
        async with session.head(
            url, headers=self._headers(), allow_redirects=False
        ) as response:
            return (
                response.status,
                response.headers.get("Location"),
                response.headers.get("Retry-After"),
            )

    async def resolve(self, url: PackageURL) -> Redirect:
        """Follow redirects for `url` exactly as given.

        Returns:
            INITIAL if the URL answers 2xx without redirecting, otherwise
            the last REDIRECTED target once a 2xx is reached; NOT_FOUND,
            UNAUTHORIZED or ERROR for the respective terminal responses.

        Raises:
            MaxRedirectsExceededError: If the chain is longer than `max_hops`.
            RetryLimitExceededError: If `max_attempts` requests were made
                without reaching a terminal state.
        """
        current = url
        last_result = Redirect.initial(url)
        hops = 0

        for attempt in range(1, self.max_attempts + 1):
            try:
                status, location, retry_after = await self._head(current.url)
            except (aiohttp.ServerDisconnectedError, ConnectionResetError) as e:
                hops += 1
                if hops > self.max_hops:
                    raise MaxRedirectsExceededError(url.url, self.max_hops) from e
                logger.warning(
                    "Connection closed for %s, retrying in %ss ...",
                    current,
                    self.connection_retry_delay,
                )
                await self._sleep(self.connection_retry_delay)
                continue
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                return Redirect.error(f"{type(e).__name__}: {e} for url: {current}")

            if 200 <= status < 300:
                return last_result

            if status == 301:
                if hops >= self.max_hops:
                    raise MaxRedirectsExceededError(url.url, self.max_hops)
                if not location:
                    return Redirect.error(f"no Location header for url: {current}")
                try:
                    target = PackageURL.parse(urljoin(current.url, location))
                except InvalidPackageError as e:
                    return Redirect.error(str(e))
                logger.debug("%s redirects to %s", current, target)
                last_result = Redirect.redirected(target)
                current = target
                hops += 1
                continue

            if status == 404:
                return Redirect.not_found(current)

            if status in (401, 403):
                return Redirect.unauthorized()

            if status == 429:
                delay = _retry_after(retry_after, self.default_retry_after)
                logger.warning("Rate limited resolving %s, sleeping for %ds ...", current, delay)
                await self._sleep(delay)
                continue

            return Redirect.error(f"unexpected status '{status}' for url: {current}")

        raise RetryLimitExceededError(f"redirects of {url}", self.max_attempts)

    async def resolve_package_redirects(self, url: PackageURL) -> Redirect:
        """Resolve redirects for a package URL.

        The `.git` suffix is stripped before checking, because GitHub always
        redirects `.git` URLs, and re-appended to a REDIRECTED result so the
        output is suffixed the same way regardless of the input.
        """
        result = await self.resolve(url.deleting_git_extension())
        if result.kind is RedirectKind.REDIRECTED and result.url is not None:
            return Redirect.redirected(result.url.appending_git_extension())
        return result
