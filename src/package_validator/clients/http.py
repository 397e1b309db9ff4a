from typing import Optional

import aiohttp

from package_validator.config import DEFAULT_USER_AGENT


class HttpClient:
    """Base class for clients that make HTTP requests.

    Manages a shared aiohttp.ClientSession for connection pooling and reuse,
    and the headers every outbound request carries.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the HttpClient.

        Args:
            token: Optional bearer token sent as `Authorization`.
            user_agent: Product token sent as `User-Agent`.
            timeout: Total per-request timeout in seconds.
        """
        self.token = token
        self.user_agent = user_agent
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session.

        Returns:
            The shared aiohttp ClientSession.
        """
        if self._session is None or self._session.closed:
            self._session = self._create_session()
        return self._session

    def _create_session(self) -> aiohttp.ClientSession:
        """Create a new aiohttp.ClientSession.

        Subclasses can override this to provide custom session configuration.

        Returns:
            A new aiohttp.ClientSession instance.
        """
        connector = aiohttp.TCPConnector(ttl_dns_cache=300)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def close(self) -> None:
        """Close the aiohttp session.

        Should be called when done using the client to release resources.
        """
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "HttpClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
