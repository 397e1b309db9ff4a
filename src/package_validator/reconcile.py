"""Case-insensitive reconciliation of package URL lists.

`merge_with_existing` is the single definition of "is this a new
package". The crawler, the redirect check and the index reconciliation
all go through it or through the sets below.
"""

import asyncio
from collections.abc import Iterable, Iterator

from package_validator.models import CanonicalURL, PackageRecord, PackageURL


def merge_with_existing(
    candidates: Iterable[PackageURL], existing: Iterable[PackageURL]
) -> list[PackageURL]:
    """Merge candidates into an authoritative list.

    Existing entries come first in their original order, followed by the
    candidates whose normalized form is not already present. The first
    occurrence of a normalized form wins, so existing casing always beats a
    candidate's.

    Args:
        candidates: Newly produced URLs.
        existing: Already-known URLs whose casing must be preserved.

    Returns:
        The merged list.
    """
    seen: set[str] = set()
    merged: list[PackageURL] = []
    for url in [*existing, *candidates]:
        key = url.normalized()
        if key not in seen:
            seen.add(key)
            merged.append(url)
    return merged


def merge_lists(*package_lists: Iterable[str]) -> list[str]:
    """Case-insensitive union of plain URL lists, sorted case-insensitively.

    The first spelling seen for a URL is the one kept.
    """
    union: dict[str, str] = {}
    for package_list in package_lists:
        for url in package_list:
            union.setdefault(url.lower(), url)
    return [union[key] for key in sorted(union)]


def apply_deny_list(
    packages: Iterable[PackageURL], deny_list: Iterable[PackageURL]
) -> list[PackageURL]:
    """Remove denied packages (compared case-insensitively) and sort."""
    denied = {url.lowercased() for url in deny_list}
    kept: dict[str, PackageURL] = {}
    for url in packages:
        key = url.lowercased()
        if key not in denied:
            kept.setdefault(key, url)
    return [kept[key] for key in sorted(kept)]


class NormalizedURLSet:
    """Set of normalized URLs shared between concurrent tasks.

    `insert` is an atomic test-and-insert so two tasks discovering the same
    redirect target cannot both accept it.
    """

    def __init__(self, urls: Iterable[PackageURL] = ()) -> None:
        self._normalized = {url.normalized() for url in urls}
        self._lock = asyncio.Lock()

    def __contains__(self, url: object) -> bool:
        return isinstance(url, PackageURL) and url.normalized() in self._normalized

    def __len__(self) -> int:
        return len(self._normalized)

    async def insert(self, url: PackageURL) -> bool:
        """Insert `url`.

        Returns:
            True if it was not present before.
        """
        key = url.normalized()
        async with self._lock:
            if key in self._normalized:
                return False
            self._normalized.add(key)
            return True


class UniqueCanonicalURLs:
    """Set of canonical URLs keyed by `canonical_path`.

    Each entry is stored as a `(key, value)` pair so the first-seen
    `CanonicalURL` (with its casing) is kept for a given key.
    """

    def __init__(self, urls: Iterable[CanonicalURL] = ()) -> None:
        self._entries: dict[str, CanonicalURL] = {}
        for url in urls:
            self.insert(url)

    @classmethod
    def from_package_urls(cls, urls: Iterable[PackageURL]) -> "UniqueCanonicalURLs":
        return cls(url.canonical for url in urls)

    @staticmethod
    def key(url: CanonicalURL) -> str:
        return url.canonical_path

    def insert(self, url: CanonicalURL) -> bool:
        key = self.key(url)
        if key in self._entries:
            return False
        self._entries[key] = url
        return True

    def __contains__(self, url: object) -> bool:
        return isinstance(url, CanonicalURL) and self.key(url) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CanonicalURL]:
        return iter(self._entries.values())

    def subtracting(self, other: "UniqueCanonicalURLs") -> "UniqueCanonicalURLs":
        return UniqueCanonicalURLs(url for url in self if url not in other)

    def sorted(self) -> list[CanonicalURL]:
        return [self._entries[key] for key in sorted(self._entries)]

    def package_urls(self) -> list[PackageURL]:
        return [url.package_url for url in self.sorted()]


def indexed_packages(records: Iterable[PackageRecord]) -> UniqueCanonicalURLs:
    return UniqueCanonicalURLs(record.url for record in records)


def indexed_dependencies(records: Iterable[PackageRecord]) -> UniqueCanonicalURLs:
    return UniqueCanonicalURLs(
        dep for record in records for dep in record.resolved_dependencies or ()
    )


def find_unindexed_dependencies(records: list[PackageRecord]) -> UniqueCanonicalURLs:
    """Dependencies referenced by indexed packages that are not indexed themselves."""
    return indexed_dependencies(records).subtracting(indexed_packages(records))
