"""Standalone redirect check over an existing package list."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

from package_validator.clients.redirects import RedirectResolver
from package_validator.errors import MaxRedirectsExceededError, RetryLimitExceededError
from package_validator.limiter import ConcurrencyLimiter
from package_validator.models import PackageURL, RedirectKind, sort_package_urls
from package_validator.reconcile import NormalizedURLSet

logger = logging.getLogger(__name__)


async def _check_one(
    index: int,
    url: PackageURL,
    resolver: RedirectResolver,
    limiter: ConcurrencyLimiter,
    known: NormalizedURLSet,
    progress_interval: int,
) -> Optional[PackageURL]:
    if index % progress_interval == 0:
        logger.info("package %d ...", index)

    async with limiter:
        try:
            redirect = await resolver.resolve_package_redirects(url)
        except (MaxRedirectsExceededError, RetryLimitExceededError) as e:
            logger.warning("KEEP    %s (%s)", url, e)
            return url

    if redirect.kind is RedirectKind.INITIAL:
        logger.debug("        %s", url)
        return url
    if redirect.kind is RedirectKind.NOT_FOUND:
        logger.warning("NOT FOUND:  %s", url)
        return None
    if redirect.kind is RedirectKind.REDIRECTED and redirect.url is not None:
        target = redirect.url
        if target.normalized() == url.normalized():
            return url
        if not await known.insert(target):
            logger.warning("DELETE  %s -> %s (exists)", url, target)
            return None
        logger.warning("ADD     %s -> %s (new)", url, target)
        return target

    logger.warning("KEEP    %s (%s)", url, redirect.message or redirect.kind.value)
    return url


async def check_redirects(
    urls: Sequence[PackageURL],
    resolver: RedirectResolver,
    limiter: Optional[ConcurrencyLimiter] = None,
    limit: Optional[int] = None,
    progress_interval: int = 50,
) -> list[PackageURL]:
    """Replace moved packages with their new location and drop deleted ones.

    A redirect target that is already on the list (or was produced by an
    earlier redirect in this run) removes the redirecting entry instead of
    duplicating the target. Packages that could not be checked are kept.

    Args:
        urls: The package list.
        resolver: Redirect resolver to check each package with.
        limiter: Bounds concurrent checks. Sequential if not given.
        limit: Check only the first `limit` packages; the rest are kept as is.
        progress_interval: Log progress every this many packages.

    Returns:
        The updated list, sorted case-insensitively.
    """
    limiter = limiter or ConcurrencyLimiter(1)
    known = NormalizedURLSet(urls)
    count = len(urls) if limit is None else min(limit, len(urls))
    logger.info("Checking for redirects (%d packages) ...", count)

    checked = await asyncio.gather(
        *(
            _check_one(index, url, resolver, limiter, known, progress_interval)
            for index, url in enumerate(urls[:count])
        )
    )
    updated = [url for url in checked if url is not None]
    updated.extend(urls[count:])
    return sort_package_urls(updated)
