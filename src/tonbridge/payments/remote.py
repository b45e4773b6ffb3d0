"""Destination payments through a remote TON signer service.

The signer holds the destination wallet keys; this executor only asks it to
send a transfer. The dedupe key travels as an ``Idempotency-Key`` header, so a
retried request for the same transfer returns the original transaction.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from tonbridge.payments.base import PaymentError, PaymentExecutor, PaymentResult

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class RemoteSignerExecutor(PaymentExecutor):
    """Pays through ``POST {base_url}/transfers`` on the signer service."""

    name = "remote"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the executor.

        Args:
            base_url: Signer service URL
            token: Bearer token for the signer
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (tests use a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)
        return self._client

    async def pay(self, recipient: str, amount: Decimal, dedupe_key: str) -> PaymentResult:
        client = self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/transfers",
                headers={"Idempotency-Key": dedupe_key},
                json={"recipient": recipient, "amount": str(amount), "memo": dedupe_key},
            )
        except httpx.HTTPError as e:
            raise PaymentError(f"Signer request failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise PaymentError(f"Signer returned HTTP {response.status_code}")

        if response.status_code not in (200, 201):
            logger.warning(
                f"Signer rejected payment {dedupe_key}: HTTP {response.status_code} {response.text}"
            )
            return PaymentResult(
                success=False,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        data = response.json()
        reference = data.get("tx_hash") or data.get("reference")
        if not reference:
            return PaymentResult(success=False, error="Signer response has no transaction reference")

        logger.info(f"Paid {amount} to {recipient} via signer (ref: {reference})")
        return PaymentResult(success=True, reference_id=reference)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
