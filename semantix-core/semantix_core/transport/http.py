from typing import Any, Dict, Optional

import httpx
import structlog

from ..exceptions import HTTPError, RequestTimeoutError, TransientNetworkError, TransportError
from ..requests.models import Request
from .base import Transport

logger = structlog.get_logger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


class HttpTransport(Transport):
    """
    Async HTTP transport for the conversation backend.

    Features:
    - Connection pooling (via httpx.AsyncClient).
    - JSON request bodies for POST/PUT/PATCH.
    - Response decoding: JSON, empty (204) or text.
    - Standardized exception mapping to the pipeline error taxonomy.

    Retries are not performed here; the lifecycle handler owns them.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **(headers or {}),
        }
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def build_url(self, endpoint: str) -> str:
        """Absolute endpoints pass through; relative ones join the base URL."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{self.base_url}{endpoint}"

    def build_options(self, request: Request) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "headers": {**self.default_headers, **request.headers},
        }
        if request.payload is not None and request.method in BODY_METHODS:
            options["json"] = request.payload
        return options

    async def execute(self, request: Request, timeout: Optional[float] = None) -> Any:
        budget = self.timeout if timeout is None else timeout
        url = self.build_url(request.endpoint)

        try:
            response = await self.client.request(
                request.method,
                url,
                timeout=budget,
                **self.build_options(request),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self._map_exception(e, budget) from e

        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text

    def _map_exception(self, exc: httpx.HTTPError, budget: float) -> TransportError:
        """Map httpx exceptions to pipeline transport errors."""
        if isinstance(exc, httpx.TimeoutException):
            return RequestTimeoutError(f"Request timeout after {budget}s", timeout=budget)
        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            try:
                body = response.json()
            except ValueError:
                body = response.text
            return HTTPError(
                response.status_code,
                body=body,
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
            )
        if isinstance(exc, httpx.TransportError):
            return TransientNetworkError(f"Network error - Unable to reach server: {exc}")

        logger.warning("transport_unexpected_error", error=str(exc))
        return TransientNetworkError(f"Unexpected transport error: {exc}")
