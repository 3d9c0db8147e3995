"""
HTTP-backed Actions

Shared plumbing for actions that call third-party HTTP APIs: a lazily
created httpx client and mapping of transport errors to
ExternalCallFailedError.
"""

from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from soc_automation.actions.base import BaseAction
from soc_automation.exceptions import ExternalCallFailedError


def mask_url(url: str) -> str:
    """Mask a URL for logs and results: keep scheme, host and a path prefix."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "invalid-url"
    if not parts.scheme or not parts.hostname:
        return "invalid-url"
    return f"{parts.scheme}://{parts.hostname}{parts.path[:20]}..."


class HttpAction(BaseAction):
    """
    Base class for actions that talk to an HTTP API.

    An ``httpx.AsyncClient`` may be injected (tests pass one backed by
    ``httpx.MockTransport``); otherwise one is created on first use.
    """

    service_name = "http"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the action.

        Args:
            client: Optional shared HTTP client.
            timeout: Request timeout in seconds for a self-created client.
        """
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request and raise for non-2xx/3xx responses.

        Raises:
            ExternalCallFailedError: On connection errors, timeouts, or an
                error status. 4xx responses are marked non-retryable.
        """
        try:
            response = await self.client.request(method, url, **kwargs)
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}: {response.reason_phrase}",
                    request=response.request,
                    response=response,
                )
            return response
        except httpx.TimeoutException as e:
            raise ExternalCallFailedError(
                message=f"{self.service_name} request timed out",
                service=self.service_name,
                original_error=e,
            )
        except httpx.ConnectError as e:
            raise ExternalCallFailedError(
                message=f"Failed to connect to {self.service_name} at {mask_url(url)}",
                service=self.service_name,
                original_error=e,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ExternalCallFailedError(
                message=str(e),
                service=self.service_name,
                status_code=status,
                retryable=status >= 500,
                original_error=e,
            )
        except httpx.HTTPError as e:
            raise ExternalCallFailedError(
                message=str(e) or e.__class__.__name__,
                service=self.service_name,
                original_error=e,
            )

    async def close(self) -> None:
        """Close the HTTP client if this action created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
