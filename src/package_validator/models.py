"""Core data models for package_validator.

This module defines the value types shared by the API client, the redirect
resolver and the dependency crawler: package URLs and their identity rules,
repository metadata, decoded manifests, redirect outcomes and rate-limit
status.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from package_validator.errors import InvalidPackageError, MissingDefaultBranchError

GIT_SUFFIX = ".git"


def _strip_git_suffix(value: str) -> str:
    """Remove a `.git` suffix in any of its spellings.

    Handles `foo.git`, `foo.GIT`, `foo/.git`, `foo/` and `foo.git/`.
    """
    stripped = value.rstrip("/")
    lowered = stripped.lower()
    if lowered.endswith("/" + GIT_SUFFIX):
        stripped = stripped[: -len(GIT_SUFFIX) - 1]
    elif lowered.endswith(GIT_SUFFIX):
        stripped = stripped[: -len(GIT_SUFFIX)]
    return stripped.rstrip("/")


def normalize(url: Union[str, "PackageURL"]) -> str:
    """Return the lower-cased, `.git`-suffixed form used for de-duplication."""
    return (_strip_git_suffix(str(url)) + GIT_SUFFIX).lower()


@dataclass(frozen=True)
class PackageURL:
    """A URL identifying a source repository.

    Construct through `PackageURL.parse`, which rejects strings without a
    scheme or host. The original casing is kept; identity for
    de-duplication is the `normalized()` form.

    Attributes:
        url: The absolute URL string as given.
    """

    url: str

    @classmethod
    def parse(cls, value: str) -> "PackageURL":
        """Validate and wrap a URL string.

        Args:
            value: Absolute URL, e.g. "https://github.com/owner/repo.git".

        Returns:
            The wrapped URL.

        Raises:
            InvalidPackageError: If the string has no scheme or host.
        """
        if not isinstance(value, str):
            raise InvalidPackageError(repr(value), "not a string")
        value = value.strip()
        parts = urlsplit(value)
        if not parts.scheme or not parts.netloc:
            raise InvalidPackageError(value, "missing scheme or host")
        return cls(value)

    def __str__(self) -> str:
        return self.url

    @property
    def absolute_string(self) -> str:
        return self.url

    @property
    def scheme(self) -> Optional[str]:
        return urlsplit(self.url).scheme.lower() or None

    @property
    def host(self) -> Optional[str]:
        return urlsplit(self.url).hostname

    def _path_components(self) -> list[str]:
        path = urlsplit(_strip_git_suffix(self.url)).path
        return [part for part in path.split("/") if part]

    @property
    def repository(self) -> str:
        """Last path segment, without any `.git` suffix."""
        parts = self._path_components()
        return parts[-1] if parts else ""

    @property
    def owner(self) -> str:
        """Second to last path segment."""
        parts = self._path_components()
        return parts[-2] if len(parts) >= 2 else ""

    def appending_git_extension(self) -> "PackageURL":
        return PackageURL(_strip_git_suffix(self.url) + GIT_SUFFIX)

    def deleting_git_extension(self) -> "PackageURL":
        return PackageURL(_strip_git_suffix(self.url))

    def lowercased(self) -> str:
        return self.url.lower()

    def normalized(self) -> str:
        return normalize(self.url)

    @property
    def canonical(self) -> "CanonicalURL":
        return CanonicalURL.parse(self.url)


def sort_package_urls(urls: Iterable[PackageURL]) -> list[PackageURL]:
    """Sort case-insensitively by normalized form (ties broken by raw URL)."""
    return sorted(urls, key=lambda u: (u.normalized(), u.url))


# git@github.com:owner/repo.git
_SCP_PATTERN = re.compile(r"^(?:[\w.+-]+@)?(?P<host>[\w.-]+):(?P<path>[^/].*)$")


@dataclass(frozen=True)
class CanonicalURL:
    """Host and path identity of a repository, independent of scheme and suffix.

    Used when reconciling against an external system of record where
    `http://`, `git@` and casing differences must not look like new packages.

    Attributes:
        hostname: Lower-cased host without a leading "www.".
        path: Repository path ("owner/name") without the `.git` suffix.
    """

    hostname: str
    path: str

    @classmethod
    def parse(cls, value: str) -> "CanonicalURL":
        """Parse https, http, ssh or scp-style repository locations.

        Raises:
            InvalidPackageError: If no host or path can be extracted.
        """
        value = value.strip()
        host: Optional[str]
        if "://" not in value and (match := _SCP_PATTERN.match(value)):
            host, path = match.group("host"), match.group("path")
        else:
            parts = urlsplit(value)
            host, path = parts.hostname, parts.path

        if not host:
            raise InvalidPackageError(value, "missing host")
        host = host.lower()
        if host.startswith("www."):
            host = host[4:]

        path = _strip_git_suffix(path.strip("/")).strip("/")
        if not path:
            raise InvalidPackageError(value, "missing path")
        return cls(hostname=host, path=path)

    @property
    def canonical_path(self) -> str:
        return f"{self.hostname}/{self.path}".lower()

    @property
    def package_url(self) -> PackageURL:
        return PackageURL(f"https://{self.hostname}/{self.path}{GIT_SUFFIX}")

    def __str__(self) -> str:
        return self.canonical_path


@dataclass(frozen=True)
class Repository:
    """Repository metadata as reported by the forge.

    Attributes:
        owner: Owner login.
        name: Repository name.
        is_fork: True if the repository is a fork of another one.
        default_branch: Default branch name. The upstream schema allows it
            to be missing; use `require_default_branch()` where it is needed.
    """

    owner: str
    name: str
    is_fork: bool = False
    default_branch: Optional[str] = None

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.name}"

    def require_default_branch(self) -> str:
        if not self.default_branch:
            raise MissingDefaultBranchError(self.owner, self.name)
        return self.default_branch

    @classmethod
    def from_api(cls, data: Mapping[str, Any], owner: str, name: str) -> "Repository":
        """Build from a REST `GET /repos/{owner}/{name}` payload."""
        owner_info = data.get("owner") or {}
        return cls(
            owner=owner_info.get("login") or owner,
            name=data.get("name") or name,
            is_fork=bool(data.get("fork", False)),
            default_branch=data.get("default_branch"),
        )

    @classmethod
    def from_graphql(cls, data: Mapping[str, Any], owner: str, name: str) -> "Repository":
        """Build from a GraphQL `repository { ... }` node."""
        owner_info = data.get("owner") or {}
        branch_ref = data.get("defaultBranchRef") or {}
        return cls(
            owner=owner_info.get("login") or owner,
            name=data.get("name") or name,
            is_fork=bool(data.get("isFork", False)),
            default_branch=branch_ref.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "is_fork": self.is_fork,
            "default_branch": self.default_branch,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Repository":
        return cls(
            owner=data["owner"],
            name=data["name"],
            is_fork=bool(data.get("is_fork", False)),
            default_branch=data.get("default_branch"),
        )


@dataclass(frozen=True)
class Product:
    name: str


@dataclass(frozen=True)
class Dependency:
    """A manifest dependency reduced to its source-control locations."""

    locations: tuple[str, ...] = ()

    @property
    def first_remote(self) -> Optional[str]:
        return self.locations[0] if self.locations else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Dependency":
        """Read any of the dump formats the evaluation tool has produced.

        Older tools emit `{"url": ...}`, later ones `{"scm": [{"location": ...}]}`
        and current ones `{"sourceControl": [{"location": {"remote": [...]}}]}`
        where each remote is either a string or `{"urlString": ...}`.
        """
        locations: list[str] = []

        for scm in data.get("scm") or []:
            location = scm.get("location")
            if isinstance(location, str):
                locations.append(location)

        for source_control in data.get("sourceControl") or []:
            location = source_control.get("location") or {}
            remotes = location.get("remote") or [] if isinstance(location, dict) else []
            for remote in remotes:
                if isinstance(remote, str):
                    locations.append(remote)
                elif isinstance(remote, dict) and isinstance(remote.get("urlString"), str):
                    locations.append(remote["urlString"])

        if not locations and isinstance(data.get("url"), str):
            locations.append(data["url"])

        return cls(locations=tuple(locations))


@dataclass(frozen=True)
class Manifest:
    """Decoded package manifest: name, products and dependencies."""

    name: str
    products: tuple[Product, ...] = ()
    dependencies: tuple[Dependency, ...] = ()

    @property
    def dependency_urls(self) -> list[str]:
        return [dep.first_remote for dep in self.dependencies if dep.first_remote]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Manifest":
        if not isinstance(data, Mapping) or not isinstance(data.get("name"), str):
            raise ValueError("manifest has no name")
        return cls(
            name=data["name"],
            products=tuple(Product(name=p["name"]) for p in data.get("products") or []),
            dependencies=tuple(
                Dependency.from_dict(d) for d in data.get("dependencies") or []
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "products": [{"name": p.name} for p in self.products],
            "dependencies": [
                {"scm": [{"location": loc} for loc in dep.locations]}
                for dep in self.dependencies
            ],
        }


class RedirectKind(str, Enum):
    INITIAL = "initial"
    REDIRECTED = "redirected"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    ERROR = "error"


@dataclass(frozen=True)
class Redirect:
    """Outcome of resolving redirects for one URL.

    Exactly one kind is produced per resolution. Use the class method
    constructors rather than filling the fields by hand.

    Attributes:
        kind: Which outcome this is.
        url: The URL for INITIAL, REDIRECTED and NOT_FOUND.
        delay: Seconds to wait for RATE_LIMITED.
        message: Description for ERROR.
    """

    kind: RedirectKind
    url: Optional[PackageURL] = None
    delay: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def initial(cls, url: PackageURL) -> "Redirect":
        return cls(RedirectKind.INITIAL, url=url)

    @classmethod
    def redirected(cls, to: PackageURL) -> "Redirect":
        return cls(RedirectKind.REDIRECTED, url=to)

    @classmethod
    def not_found(cls, url: PackageURL) -> "Redirect":
        return cls(RedirectKind.NOT_FOUND, url=url)

    @classmethod
    def rate_limited(cls, delay: int) -> "Redirect":
        return cls(RedirectKind.RATE_LIMITED, delay=delay)

    @classmethod
    def unauthorized(cls) -> "Redirect":
        return cls(RedirectKind.UNAUTHORIZED)

    @classmethod
    def error(cls, message: str) -> "Redirect":
        return cls(RedirectKind.ERROR, message=message)

    @property
    def resolved_url(self) -> Optional[PackageURL]:
        """The URL to keep, or None if the package should not be kept."""
        if self.kind in (RedirectKind.INITIAL, RedirectKind.REDIRECTED):
            return self.url
        return None


class RateLimitState(str, Enum):
    LIMITED = "limited"
    OK = "ok"
    UNKNOWN = "unknown"


REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"


@dataclass(frozen=True)
class RateLimitStatus:
    """Rate-limit state derived from response headers."""

    state: RateLimitState
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None

    @classmethod
    def limited(cls, until: datetime) -> "RateLimitStatus":
        return cls(RateLimitState.LIMITED, remaining=0, reset_at=until)

    @classmethod
    def ok(cls, remaining: int, reset_at: datetime) -> "RateLimitStatus":
        return cls(RateLimitState.OK, remaining=remaining, reset_at=reset_at)

    @classmethod
    def unknown(cls) -> "RateLimitStatus":
        return cls(RateLimitState.UNKNOWN)

    @property
    def is_limited(self) -> bool:
        return self.state is RateLimitState.LIMITED

    @classmethod
    def from_response(cls, status: int, headers: Mapping[str, str]) -> "RateLimitStatus":
        """Classify a response.

        Only a denial (403/429) that also carries a zero remaining-quota
        header counts as limited. A denial without the headers, or with quota
        left, is some other failure and reported as unknown.
        """
        try:
            remaining = int(headers.get(REMAINING_HEADER))  # type: ignore[arg-type]
            reset = datetime.fromtimestamp(int(headers.get(RESET_HEADER)), tz=UTC)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.unknown()

        if status in (403, 429):
            return cls.limited(reset) if remaining == 0 else cls.unknown()
        return cls.ok(remaining, reset)


@dataclass(frozen=True)
class RateLimit:
    """Quota as reported by `GET /rate_limit`."""

    limit: int
    used: int
    remaining: int
    reset: int

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset, tz=UTC)


@dataclass(frozen=True)
class PackageRecord:
    """A package as known to the index API. Read-only here."""

    id: str
    url: CanonicalURL
    resolved_dependencies: Optional[tuple[CanonicalURL, ...]] = field(default=None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PackageRecord":
        deps = data.get("resolvedDependencies")
        return cls(
            id=str(data["id"]),
            url=CanonicalURL.parse(data["url"]),
            resolved_dependencies=(
                tuple(CanonicalURL.parse(d) for d in deps) if deps is not None else None
            ),
        )
