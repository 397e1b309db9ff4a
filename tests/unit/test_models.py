from datetime import UTC, datetime

import pytest

from package_validator.errors import InvalidPackageError, MissingDefaultBranchError
from package_validator.models import (
    CanonicalURL,
    Dependency,
    Manifest,
    PackageRecord,
    PackageURL,
    RateLimitState,
    RateLimitStatus,
    Redirect,
    RedirectKind,
    Repository,
    normalize,
    sort_package_urls,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/foo/bar",
        "https://github.com/foo/bar.git",
        "https://github.com/foo/bar.GIT",
        "https://github.com/foo/bar/",
        "https://github.com/foo/bar/.git",
        "https://github.com/foo/bar.git/",
        "https://github.com/Foo/Bar",
    ],
)
def test_normalize_suffix_variants(url):
    """Test that every suffix and casing variant normalizes to the same form."""
    assert normalize(url) == "https://github.com/foo/bar.git"


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/Foo/Bar",
        "https://github.com/foo/bar.git",
        "https://github.com/foo/bar/.git/",
        "https://gitlab.com/group/sub/Project.GIT",
    ],
)
def test_normalize_is_idempotent(url):
    """Test that normalizing twice gives the same result as once."""
    assert normalize(normalize(url)) == normalize(url)


def test_normalize_accepts_package_url():
    url = PackageURL.parse("https://github.com/Foo/Bar")
    assert normalize(url) == url.normalized() == "https://github.com/foo/bar.git"


class TestPackageURL:
    """Test suite for PackageURL."""

    def test_parse_keeps_casing(self):
        url = PackageURL.parse("  https://github.com/Foo/Bar.git ")
        assert str(url) == "https://github.com/Foo/Bar.git"
        assert url.absolute_string == "https://github.com/Foo/Bar.git"

    @pytest.mark.parametrize("value", ["github.com/foo/bar", "foo", "", "https://"])
    def test_parse_rejects_invalid(self, value):
        """Test that strings without scheme or host are rejected."""
        with pytest.raises(InvalidPackageError):
            PackageURL.parse(value)

    def test_invalid_package_is_value_error(self):
        with pytest.raises(ValueError):
            PackageURL.parse("not a url")

    @pytest.mark.parametrize(
        "value",
        [
            "https://github.com/foo/bar",
            "https://github.com/foo/bar.git",
            "https://github.com/foo/bar/",
        ],
    )
    def test_owner_and_repository(self, value):
        """Test that accessors ignore the .git suffix."""
        url = PackageURL.parse(value)
        assert url.owner == "foo"
        assert url.repository == "bar"

    def test_scheme_and_host(self):
        url = PackageURL.parse("HTTPS://GitHub.com/foo/bar")
        assert url.scheme == "https"
        assert url.host == "github.com"

    def test_git_extension(self):
        url = PackageURL.parse("https://github.com/foo/bar")
        assert url.appending_git_extension().url == "https://github.com/foo/bar.git"
        assert (
            url.appending_git_extension().appending_git_extension().url
            == "https://github.com/foo/bar.git"
        )
        assert (
            PackageURL.parse("https://github.com/foo/bar.git").deleting_git_extension().url
            == "https://github.com/foo/bar"
        )

    def test_lowercased(self):
        assert PackageURL.parse("https://github.com/Foo/Bar").lowercased() == (
            "https://github.com/foo/bar"
        )

    def test_equality_is_exact(self):
        """Test that dataclass equality does not fold case."""
        assert PackageURL("https://github.com/a/b") != PackageURL("https://github.com/A/b")


def test_sort_package_urls_is_case_insensitive():
    urls = [
        PackageURL("https://github.com/b/repo.git"),
        PackageURL("https://github.com/A/repo.git"),
        PackageURL("https://github.com/c/Repo"),
    ]
    assert [u.url for u in sort_package_urls(urls)] == [
        "https://github.com/A/repo.git",
        "https://github.com/b/repo.git",
        "https://github.com/c/Repo",
    ]


class TestCanonicalURL:
    """Test suite for CanonicalURL."""

    @pytest.mark.parametrize(
        "value",
        [
            "https://github.com/Foo/Bar.git",
            "http://github.com/foo/bar",
            "https://www.github.com/foo/bar/",
            "git@github.com:Foo/Bar.git",
            "ssh://git@github.com/foo/bar.git",
        ],
    )
    def test_canonical_path(self, value):
        """Test that scheme, suffix, www and casing do not affect identity."""
        assert CanonicalURL.parse(value).canonical_path == "github.com/foo/bar"

    def test_package_url(self):
        canonical = CanonicalURL.parse("git@github.com:Foo/Bar.git")
        assert canonical.package_url == PackageURL("https://github.com/Foo/Bar.git")

    def test_missing_path(self):
        with pytest.raises(InvalidPackageError):
            CanonicalURL.parse("https://github.com/")


class TestRepository:
    """Test suite for Repository."""

    def test_from_api(self, sample_repository_response):
        repository = Repository.from_api(sample_repository_response, "Apple", "Swift-NIO")
        assert repository == Repository(
            owner="apple", name="swift-nio", is_fork=False, default_branch="main"
        )

    def test_from_graphql(self):
        node = {
            "name": "bar",
            "isFork": True,
            "owner": {"login": "foo"},
            "defaultBranchRef": None,
        }
        repository = Repository.from_graphql(node, "foo", "bar")
        assert repository.is_fork is True
        assert repository.default_branch is None

    def test_require_default_branch(self):
        with pytest.raises(MissingDefaultBranchError):
            Repository(owner="foo", name="bar").require_default_branch()
        assert Repository("foo", "bar", default_branch="dev").require_default_branch() == "dev"

    def test_dict_round_trip(self, repository):
        assert Repository.from_dict(repository.to_dict()) == repository


class TestManifest:
    """Test suite for Manifest and Dependency decoding."""

    def test_source_control_format(self, sample_dump_output):
        manifest = Manifest.from_dict(sample_dump_output)
        assert manifest.name == "swift-nio-ssl"
        assert [p.name for p in manifest.products] == ["NIOSSL"]
        assert manifest.dependency_urls == ["https://github.com/apple/swift-nio.git"]

    def test_scm_format(self):
        dependency = Dependency.from_dict({"scm": [{"location": "https://github.com/a/b"}]})
        assert dependency.first_remote == "https://github.com/a/b"

    def test_plain_remote_string(self):
        dependency = Dependency.from_dict(
            {"sourceControl": [{"location": {"remote": ["https://github.com/a/b"]}}]}
        )
        assert dependency.locations == ("https://github.com/a/b",)

    def test_legacy_url_format(self):
        dependency = Dependency.from_dict({"url": "https://github.com/a/b.git"})
        assert dependency.first_remote == "https://github.com/a/b.git"

    def test_local_dependency_has_no_remote(self):
        manifest = Manifest.from_dict(
            {"name": "x", "products": [], "dependencies": [{"fileSystem": [{"path": "../y"}]}]}
        )
        assert manifest.dependency_urls == []

    def test_missing_name(self):
        with pytest.raises(ValueError):
            Manifest.from_dict({"products": []})

    def test_dict_round_trip(self, manifest):
        assert Manifest.from_dict(manifest.to_dict()) == manifest


class TestRedirect:
    """Test suite for Redirect outcomes."""

    def test_resolved_url(self):
        url = PackageURL("https://github.com/foo/bar")
        target = PackageURL("https://github.com/foo/baz")
        assert Redirect.initial(url).resolved_url == url
        assert Redirect.redirected(target).resolved_url == target
        assert Redirect.not_found(url).resolved_url is None
        assert Redirect.unauthorized().resolved_url is None
        assert Redirect.rate_limited(5).resolved_url is None
        assert Redirect.error("boom").resolved_url is None

    def test_kinds(self):
        assert Redirect.error("boom").kind is RedirectKind.ERROR
        assert Redirect.rate_limited(5).delay == 5


class TestRateLimitStatus:
    """Test suite for rate-limit classification."""

    reset = "1700000000"

    def test_denied_with_zero_remaining_is_limited(self):
        status = RateLimitStatus.from_response(
            403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": self.reset}
        )
        assert status.is_limited
        assert status.reset_at == datetime.fromtimestamp(1700000000, tz=UTC)

    def test_too_many_requests_with_zero_remaining_is_limited(self):
        status = RateLimitStatus.from_response(
            429, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": self.reset}
        )
        assert status.state is RateLimitState.LIMITED

    def test_denied_without_headers_is_not_limited(self):
        """Test that a 403 alone is not treated as rate limiting."""
        status = RateLimitStatus.from_response(403, {})
        assert status.state is RateLimitState.UNKNOWN

    def test_denied_with_quota_left_is_not_limited(self):
        status = RateLimitStatus.from_response(
            403, {"X-RateLimit-Remaining": "12", "X-RateLimit-Reset": self.reset}
        )
        assert not status.is_limited

    def test_ok(self):
        status = RateLimitStatus.from_response(
            200, {"X-RateLimit-Remaining": "4999", "X-RateLimit-Reset": self.reset}
        )
        assert status.state is RateLimitState.OK
        assert status.remaining == 4999

    def test_invalid_header(self):
        status = RateLimitStatus.from_response(
            200, {"X-RateLimit-Remaining": "lots", "X-RateLimit-Reset": self.reset}
        )
        assert status.state is RateLimitState.UNKNOWN


def test_package_record_from_dict():
    record = PackageRecord.from_dict(
        {
            "id": "2C1E5E2B-3F8C-4B43-9D3C-8A1F1F4D9E01",
            "url": "https://github.com/apple/swift-nio.git",
            "resolvedDependencies": ["https://github.com/apple/swift-atomics"],
        }
    )
    assert record.url.canonical_path == "github.com/apple/swift-nio"
    assert record.resolved_dependencies == (
        CanonicalURL(hostname="github.com", path="apple/swift-atomics"),
    )


def test_package_record_without_dependencies():
    record = PackageRecord.from_dict({"id": 1, "url": "https://github.com/a/b"})
    assert record.id == "1"
    assert record.resolved_dependencies is None
