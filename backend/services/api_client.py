"""REST client for the Creamie backend API."""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

import httpx

from config import API_BASE_URL, API_TIMEOUT

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class APIError:
    """Structured error from a REST call."""
    code: str
    message: str
    details: Dict[str, Any]


class APIClientError(Exception):
    """Custom exception for API client errors with structured error information."""

    def __init__(self, error: APIError):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


class APIClient:
    """
    JSON-over-HTTP client with bearer auth.

    A single attempt per request; the only timeout is the blanket one set on
    the underlying httpx client.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = API_TIMEOUT,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: Backend root, e.g. http://127.0.0.1:9000
            timeout: Request timeout in seconds
            token_provider: Returns the cached auth token, if any
            transport: Optional httpx transport (used by tests)
        """
        if not base_url or not base_url.startswith(("http://", "https://")):
            raise APIClientError(APIError(
                code="INVALID_URL",
                message="Invalid URL",
                details={"base_url": base_url}
            ))

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token_provider = token_provider or (lambda: None)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"APIClient initialized for {self.base_url}")

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a request and decode the JSON response.

        Args:
            endpoint: Path below the base URL, e.g. /user/login
            method: HTTP method
            body: JSON body (snake_case keys)
            params: Query string parameters

        Returns:
            Decoded JSON object

        Raises:
            APIClientError: UNAUTHORIZED, SERVER_ERROR, NETWORK_ERROR,
                NO_DATA or DECODING_ERROR
        """
        headers = {}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(
                method, endpoint, json=body, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            error = APIError(
                code="NETWORK_ERROR",
                message=f"Network error: {e}",
                details={"endpoint": endpoint, "method": method, "original_error": str(e)}
            )
            logger.error(f"Network error: {method} {endpoint}, error={e}", extra={"error_code": error.code})
            raise APIClientError(error) from e

        if response.status_code == 401:
            logger.warning(f"Unauthorized: {method} {endpoint}", extra={"error_code": "UNAUTHORIZED"})
            raise APIClientError(APIError(
                code="UNAUTHORIZED",
                message="Unauthorized access",
                details={"endpoint": endpoint, "method": method}
            ))

        if not 200 <= response.status_code < 300:
            logger.error(
                f"Server error: {method} {endpoint} returned {response.status_code}",
                extra={"error_code": "SERVER_ERROR"}
            )
            raise APIClientError(APIError(
                code="SERVER_ERROR",
                message=f"Server error with code: {response.status_code}",
                details={"endpoint": endpoint, "method": method, "status_code": response.status_code}
            ))

        if not response.content:
            raise APIClientError(APIError(
                code="NO_DATA",
                message="No data received",
                details={"endpoint": endpoint, "method": method}
            ))

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Decoding error: {method} {endpoint}, error={e}", extra={"error_code": "DECODING_ERROR"})
            raise APIClientError(APIError(
                code="DECODING_ERROR",
                message="Failed to decode response",
                details={"endpoint": endpoint, "method": method, "original_error": str(e)}
            )) from e

        if not isinstance(data, dict):
            raise APIClientError(APIError(
                code="DECODING_ERROR",
                message="Failed to decode response",
                details={"endpoint": endpoint, "method": method, "body_type": type(data).__name__}
            ))
        return data

    async def close(self) -> None:
        await self._client.aclose()


def decode_response(data: Dict[str, Any], decoder: Callable[[Dict[str, Any]], T], endpoint: str) -> T:
    """
    Build a model from a decoded JSON body.

    Raises:
        APIClientError: DECODING_ERROR if the body does not have the expected shape
    """
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.error(f"Decoding error: {endpoint}, error={e!r}", extra={"error_code": "DECODING_ERROR"})
        raise APIClientError(APIError(
            code="DECODING_ERROR",
            message="Failed to decode response",
            details={"endpoint": endpoint, "original_error": str(e), "error_type": type(e).__name__}
        )) from e
