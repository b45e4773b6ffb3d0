"""In-process ledger client."""

from typing import Optional

from tonbridge.ledger.models import BridgeEventType, Transfer
from tonbridge.ledger.service import BridgeLedger
from tonbridge.quorum import TransferStatus
from tonbridge.relayer.base import BridgeClient, RequestEvent, TransferRecord


def transfer_to_record(transfer: Transfer) -> TransferRecord:
    return TransferRecord(
        transfer_id=transfer.id,
        sender=transfer.sender,
        destination_recipient=transfer.destination_recipient,
        asset=transfer.asset,
        amount=transfer.amount,
        fee=transfer.fee,
        net_amount=transfer.net_amount,
        status=TransferStatus(transfer.status),
        confirmation_count=transfer.confirmation_count,
    )


class LocalBridgeClient(BridgeClient):
    """Talks to a ``BridgeLedger`` in the same process."""

    def __init__(self, ledger: BridgeLedger):
        self.ledger = ledger

    async def latest_position(self) -> int:
        return await self.ledger.latest_position()

    async def get_request_events(self, from_position: int, to_position: int) -> list[RequestEvent]:
        events = await self.ledger.get_events(
            from_position, to_position, event_type=BridgeEventType.REQUEST_ACCEPTED
        )
        return [RequestEvent.from_json(e.position, e.payload) for e in events]

    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        transfer = await self.ledger.lookup(transfer_id)
        return transfer_to_record(transfer) if transfer else None

    async def has_attested(self, transfer_id: str, relayer: str) -> bool:
        return await self.ledger.has_attested(transfer_id, relayer)

    async def attest(self, transfer_id: str, relayer: str) -> TransferRecord:
        transfer = await self.ledger.attest(transfer_id, relayer)
        return transfer_to_record(transfer)
