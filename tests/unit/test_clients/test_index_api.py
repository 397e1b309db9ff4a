"""Tests for the package index API client."""

from typing import AsyncGenerator

import pytest
from aioresponses import aioresponses
from yarl import URL

from package_validator.clients.index_api import PackageIndexAPI
from package_validator.errors import DecodingError, RequestFailedError

DEPENDENCIES_URL = "https://swiftpackageindex.com/api/dependencies"


@pytest.fixture
async def index_api() -> AsyncGenerator[PackageIndexAPI, None]:
    api = PackageIndexAPI("https://swiftpackageindex.com/", "spi_test_token")
    yield api
    await api.close()


async def test_fetch_dependencies(index_api: PackageIndexAPI) -> None:
    with aioresponses() as m:
        m.get(
            DEPENDENCIES_URL,
            payload=[
                {
                    "id": "1",
                    "url": "https://github.com/apple/swift-nio.git",
                    "resolvedDependencies": ["https://github.com/apple/swift-atomics.git"],
                },
                {"id": "2", "url": "https://github.com/apple/swift-atomics.git"},
            ],
        )

        records = await index_api.fetch_dependencies()

        headers = m.requests[("GET", URL(DEPENDENCIES_URL))][0].kwargs["headers"]
        assert headers["Authorization"] == "Bearer spi_test_token"

    assert [record.url.canonical_path for record in records] == [
        "github.com/apple/swift-nio",
        "github.com/apple/swift-atomics",
    ]
    assert records[1].resolved_dependencies is None


async def test_non_200(index_api: PackageIndexAPI) -> None:
    with aioresponses() as m:
        m.get(DEPENDENCIES_URL, status=401)

        with pytest.raises(RequestFailedError) as exc_info:
            await index_api.fetch_dependencies()

    assert exc_info.value.status == 401


async def test_malformed_payload(index_api: PackageIndexAPI) -> None:
    with aioresponses() as m:
        m.get(DEPENDENCIES_URL, payload={"unexpected": True})

        with pytest.raises(DecodingError):
            await index_api.fetch_dependencies()
