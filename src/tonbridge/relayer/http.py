"""Ledger client over the bridge HTTP API."""

import logging
from typing import Any, Optional

import httpx

from tonbridge.exceptions import TransferNotFound, error_from_code
from tonbridge.relayer.base import BridgeClient, RequestEvent, TransferRecord

logger = logging.getLogger(__name__)


class HttpBridgeClient(BridgeClient):
    """Talks to a remote ledger through ``/api/v1``.

    Bridge rejections come back as ``{"error": code, "detail": message}`` and
    are re-raised as the matching ``BridgeError`` subclass. Other HTTP failures
    surface as ``httpx.HTTPError`` and are treated as transient by the loop.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        identity: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        page_size: int = 500,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = max(1, page_size)
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self._headers: dict[str, str] = {}
        if api_key:
            self._headers["X-Api-Key"] = api_key
        if identity:
            self._headers["X-Caller-Identity"] = identity

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._get_client()
        response = await client.request(
            method, f"{self.base_url}{path}", headers=self._headers, **kwargs
        )
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and "error" in body:
                raise error_from_code(body["error"], body.get("detail"))
            response.raise_for_status()
        return response.json()

    async def latest_position(self) -> int:
        data = await self._request("GET", "/api/v1/events/latest")
        return int(data["position"])

    async def get_request_events(self, from_position: int, to_position: int) -> list[RequestEvent]:
        """Read every request event in the range, one server page at a time."""
        events: list[RequestEvent] = []
        position = from_position
        while position <= to_position:
            data = await self._request(
                "GET",
                "/api/v1/events",
                params={
                    "from_position": position,
                    "to_position": to_position,
                    "event_type": "request_accepted",
                    "limit": self.page_size,
                },
            )
            page = data["events"]
            events.extend(
                RequestEvent.from_payload(event["position"], event["payload"]) for event in page
            )
            if len(page) < self.page_size:
                break
            position = int(page[-1]["position"]) + 1
        return events

    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        try:
            data = await self._request("GET", f"/api/v1/transfers/{transfer_id}")
        except TransferNotFound:
            return None
        return TransferRecord.from_dict(data)

    async def has_attested(self, transfer_id: str, relayer: str) -> bool:
        data = await self._request(
            "GET", f"/api/v1/transfers/{transfer_id}/attestations/{relayer}"
        )
        return bool(data["attested"])

    async def attest(self, transfer_id: str, relayer: str) -> TransferRecord:
        # The server attributes the attestation to the authenticated caller
        data = await self._request("POST", f"/api/v1/transfers/{transfer_id}/attestations")
        return TransferRecord.from_dict(data)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
