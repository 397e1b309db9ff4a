"""Run configuration for package_validator.

Settings come from CLI options with environment fallbacks. The only
environment variable read directly is the GitHub token.
"""

import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from package_validator.errors import GitHubTokenNotSetError

logger = logging.getLogger(__name__)

GITHUB_TOKEN_ENV = "GITHUB_TOKEN"
DEFAULT_USER_AGENT = "package-validator"
DEFAULT_DUMP_COMMAND = ("swift", "package", "dump-package")


@dataclass(frozen=True)
class ValidatorConfig:
    """Settings shared by the clients and the crawler.

    Attributes:
        github_token: Bearer token for the GitHub API. Optional; anonymous
            access works with a far lower quota (60 instead of 5000 req/h).
        user_agent: Product token sent as `User-Agent`.
        concurrency: Maximum in-flight crawl or redirect operations.
        retries: Retries per seed for transient failures.
        retry_delay: Base delay in seconds for exponential backoff.
        request_timeout: Total timeout for API requests in seconds.
        head_timeout: Total timeout for redirect HEAD checks in seconds.
        forge_host: Only dependencies hosted here are followed.
        drop_forks: Exclude dependencies that are forks.
        drop_no_products: Exclude dependencies that declare no products.
        cache_path: Optional SQLite file to persist caches across runs.
        dump_command: Command that evaluates a manifest into JSON.
    """

    github_token: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = 1
    retries: int = 3
    retry_delay: float = 5.0
    request_timeout: float = 30.0
    head_timeout: float = 5.0
    forge_host: str = "github.com"
    drop_forks: bool = True
    drop_no_products: bool = True
    cache_path: Optional[Path] = None
    dump_command: tuple[str, ...] = field(default=DEFAULT_DUMP_COMMAND)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any
    ) -> "ValidatorConfig":
        """Build a config from the environment plus explicit overrides.

        Overrides whose value is None are ignored so CLI options that were
        not given fall back to the environment or the defaults.
        """
        environ = os.environ if environ is None else environ
        config = cls(github_token=environ.get(GITHUB_TOKEN_ENV) or None)
        values = {k: v for k, v in overrides.items() if v is not None}
        if isinstance(values.get("dump_command"), str):
            values["dump_command"] = tuple(shlex.split(values["dump_command"]))
        return replace(config, **values)

    @property
    def is_anonymous(self) -> bool:
        return not self.github_token

    def warn_if_anonymous(self) -> bool:
        """Log a warning when no token is configured.

        Returns:
            True if a warning was emitted.
        """
        if self.is_anonymous:
            logger.warning(
                "Using anonymous authentication -- you will quickly run into rate limiting issues"
            )
            return True
        return False

    def require_token(self) -> str:
        if not self.github_token:
            raise GitHubTokenNotSetError()
        return self.github_token
