"""Ledger access interface used by the reconciliation loop.

The loop never touches ledger storage directly: it reads events and transfers
and submits attestations through a ``BridgeClient``, either in-process or over
the HTTP API.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from tonbridge.quorum import TransferStatus


@dataclass
class TransferRecord:
    """Transfer as read back from the ledger."""
    transfer_id: str
    sender: str
    destination_recipient: str
    asset: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    status: TransferStatus
    confirmation_count: int

    @property
    def is_completed(self) -> bool:
        return self.status == TransferStatus.COMPLETED

    @classmethod
    def from_dict(cls, data: dict) -> "TransferRecord":
        return cls(
            transfer_id=data["transfer_id"],
            sender=data["sender"],
            destination_recipient=data["destination_recipient"],
            asset=data["asset"],
            amount=Decimal(data["amount"]),
            fee=Decimal(data["fee"]),
            net_amount=Decimal(data["net_amount"]),
            status=TransferStatus(data["status"]),
            confirmation_count=int(data["confirmation_count"]),
        )


@dataclass
class RequestEvent:
    """A ``request_accepted`` event at a log position."""
    position: int
    transfer_id: str
    sender: str
    asset: str
    net_amount: Decimal
    destination_recipient: str
    fee: Decimal

    @classmethod
    def from_payload(cls, position: int, payload: dict) -> "RequestEvent":
        return cls(
            position=position,
            transfer_id=payload["transfer_id"],
            sender=payload["sender"],
            asset=payload["asset"],
            net_amount=Decimal(payload["net_amount"]),
            destination_recipient=payload["destination_recipient"],
            fee=Decimal(payload["fee"]),
        )

    @classmethod
    def from_json(cls, position: int, payload: str) -> "RequestEvent":
        return cls.from_payload(position, json.loads(payload))


class BridgeClient(ABC):
    """Abstract ledger client for relayers."""

    @abstractmethod
    async def latest_position(self) -> int:
        """Position of the newest event in the log."""
        pass

    @abstractmethod
    async def get_request_events(self, from_position: int, to_position: int) -> list[RequestEvent]:
        """``request_accepted`` events in an inclusive position range, in order."""
        pass

    @abstractmethod
    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        """Read a transfer back; None if it does not exist."""
        pass

    @abstractmethod
    async def has_attested(self, transfer_id: str, relayer: str) -> bool:
        pass

    @abstractmethod
    async def attest(self, transfer_id: str, relayer: str) -> TransferRecord:
        """Submit an attestation.

        Raises:
            BridgeError subclasses on rejection
        """
        pass

    async def close(self) -> None:
        pass
