"""Client for the package index API (the external system of record)."""

import json
import logging

from package_validator.clients.http import HttpClient
from package_validator.config import DEFAULT_USER_AGENT
from package_validator.errors import DecodingError, RequestFailedError
from package_validator.models import PackageRecord

logger = logging.getLogger(__name__)


class PackageIndexAPI(HttpClient):
    """Read-only access to the index's package and dependency records."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(token=api_token, user_agent=user_agent, timeout=timeout)
        self.base_url = base_url.rstrip("/")

    async def fetch_dependencies(self) -> list[PackageRecord]:
        """Fetch every indexed package with its resolved dependencies.

        Raises:
            RequestFailedError: If the API does not answer 200.
            DecodingError: If the payload is not a list of records.
        """
        url = f"{self.base_url}/api/dependencies"
        session = await self._get_session()
        async with session.get(url, headers=self._headers()) as response:
            if response.status != 200:
                raise RequestFailedError(url, response.status)
            body = await response.read()

        try:
            records = [PackageRecord.from_dict(item) for item in json.loads(body)]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise DecodingError(url, body.decode("utf-8", errors="replace")) from e

        logger.info("Fetched %d package records from %s", len(records), self.base_url)
        return records
