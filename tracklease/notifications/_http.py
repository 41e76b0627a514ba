"""
Confirmation delivery to an HTTP mail endpoint (httpx).
"""

import httpx
from combinators import RetryPolicy, retry
from kungfu import Error, LazyCoroResult, Ok, Result

from tracklease import errors
from tracklease._retry import backoff, transient_status
from tracklease.errors import LeaseError
from tracklease.notifications._types import OrderConfirmation


class HttpNotifier:
    """
    POSTs the confirmation as JSON with a bearer key.

    Transport errors, 429 and 5xx are retried with backoff; other statuses
    fail immediately.
    """

    def __init__(
        self,
        endpoint_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy[LeaseError] | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url = endpoint_url
        self._key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._policy = policy or backoff()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def order_completed(self, confirmation: OrderConfirmation) -> Result[None, LeaseError]:
        payload = confirmation.as_payload()
        headers = {"authorization": f"Bearer {self._key}"}

        async def attempt() -> Result[None, LeaseError]:
            try:
                response = await self._client.post(self._url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                return Error(errors.notification(f"POST {self._url}: {exc}", transient=True))
            if response.is_success:
                return Ok(None)
            return Error(errors.notification(
                f"POST {self._url} -> {response.status_code}: {response.text[:200]}",
                transient=transient_status(response.status_code),
            ))

        return await retry(LazyCoroResult(attempt), policy=self._policy)


__all__ = ("HttpNotifier",)
