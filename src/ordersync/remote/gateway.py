"""
Async HTTP client for the remote order API (/api/os).

Every call has a bounded timeout and ends in one of three ways:
  - success: the decoded JSON body is returned
  - the server answered with an error status: RemoteStatusError
  - the server could not be reached or timed out: RemoteUnavailableError

Both failures share the RemoteError base so callers that only care about
"remote unavailable" can catch one type.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ordersync.models.order import CanonicalOrder, LifecycleStatus
from ordersync.sync.decision import find_matching_order

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0
ORDERS_PATH = "/api/os"


class RemoteError(RuntimeError):
    """Base class for remote API failures."""


class RemoteUnavailableError(RemoteError):
    """Raised on network errors and timeouts."""


class RemoteStatusError(RemoteError):
    """Raised when the API answers with an HTTP error status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class RemoteGateway:
    """
    Thin async wrapper over the remote order endpoints.

    One httpx.AsyncClient per gateway; call aclose() (or use ``async with``)
    when done.
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            server_url: Base URL of the backend, e.g. "http://192.168.0.10:3000".
            token: Bearer token handed over by the host application.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        try:
            self._client = httpx.AsyncClient(
                base_url=server_url.rstrip("/"),
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                timeout=timeout,
                transport=transport,
            )
        except (httpx.InvalidURL, httpx.HTTPError) as exc:
            raise RemoteUnavailableError(
                f"Invalid server URL {server_url!r}: {exc}"
            ) from exc

    async def __aenter__(self) -> "RemoteGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteUnavailableError(f"{method} {path} timed out") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RemoteUnavailableError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteStatusError(response.status_code, response.text[:200])

        try:
            return response.json()
        except ValueError:
            return {}

    async def find_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Look up the remote order linked to a legacy external id.

        Returns:
            The remote order dict, or None if the API has no match.
        """
        body = await self._request(
            "GET", ORDERS_PATH, params={"search": external_id}
        )
        orders = body.get("orders") if isinstance(body, dict) else None
        return find_matching_order(orders or [], external_id)

    async def create(self, order: CanonicalOrder) -> Dict[str, Any]:
        """Create a remote order from the canonical payload."""
        return await self._request("POST", ORDERS_PATH, json=order.to_payload())

    async def update_status(
        self,
        remote_id: Any,
        status: LifecycleStatus,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Move a remote order to ``status``.

        completedAt is stamped when the new status is COMPLETED and cleared
        otherwise.
        """
        completed_at = None
        if status == LifecycleStatus.COMPLETED:
            completed_at = (now or datetime.now(timezone.utc)).isoformat()

        return await self._request(
            "PUT",
            f"{ORDERS_PATH}/{remote_id}",
            json={"currentStatus": status.value, "completedAt": completed_at},
        )
