"""Bridge endpoints: transfer requests, attestations, releases and events."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from tonbridge.api.deps import get_caller, get_ledger
from tonbridge.api.schemas import (
    AttestationList,
    AttestationStatus,
    EventList,
    EventResponse,
    PolicyResponse,
    ReleasePayload,
    ReleaseResponse,
    TransferRequestPayload,
    TransferResponse,
)
from tonbridge.exceptions import TransferNotFound
from tonbridge.ledger.models import BridgeEventType
from tonbridge.ledger.service import BridgeLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["bridge"])

MAX_EVENTS_PER_PAGE = 1000


@router.post("/transfers", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def request_transfer(
    payload: TransferRequestPayload,
    caller: str = Depends(get_caller),
    ledger: BridgeLedger = Depends(get_ledger),
) -> TransferResponse:
    """Request a transfer to the destination chain on behalf of the caller."""
    transfer = await ledger.request(
        sender=caller,
        destination_recipient=payload.destination_recipient,
        asset=payload.asset,
        amount=Decimal(payload.amount),
        attached_value=Decimal(payload.attached_value),
    )
    return TransferResponse.from_transfer(transfer)


@router.get("/transfers/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: str,
    ledger: BridgeLedger = Depends(get_ledger),
) -> TransferResponse:
    """Look up a transfer."""
    transfer = await ledger.lookup(transfer_id)
    if transfer is None:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    return TransferResponse.from_transfer(transfer)


@router.post("/transfers/{transfer_id}/attestations", response_model=TransferResponse)
async def attest_transfer(
    transfer_id: str,
    caller: str = Depends(get_caller),
    ledger: BridgeLedger = Depends(get_ledger),
) -> TransferResponse:
    """Attest a transfer as the calling relayer."""
    transfer = await ledger.attest(transfer_id, caller)
    return TransferResponse.from_transfer(transfer)


@router.get("/transfers/{transfer_id}/attestations", response_model=AttestationList)
async def list_attestations(
    transfer_id: str,
    ledger: BridgeLedger = Depends(get_ledger),
) -> AttestationList:
    transfer = await ledger.lookup(transfer_id)
    if transfer is None:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    policy = await ledger.get_policy()
    return AttestationList(
        transfer_id=transfer.id,
        relayers=await ledger.get_attestations(transfer.id),
        confirmation_count=transfer.confirmation_count,
        threshold=policy.relayer_threshold,
        status=transfer.status,
    )


@router.get("/transfers/{transfer_id}/attestations/{relayer}", response_model=AttestationStatus)
async def get_attestation_status(
    transfer_id: str,
    relayer: str,
    ledger: BridgeLedger = Depends(get_ledger),
) -> AttestationStatus:
    """Check whether a relayer attested a transfer."""
    return AttestationStatus(
        transfer_id=transfer_id,
        relayer=relayer,
        attested=await ledger.has_attested(transfer_id, relayer),
    )


@router.post("/releases", response_model=ReleaseResponse, status_code=status.HTTP_201_CREATED)
async def release(
    payload: ReleasePayload,
    caller: str = Depends(get_caller),
    ledger: BridgeLedger = Depends(get_ledger),
) -> ReleaseResponse:
    """Release funds for a transfer that originated on the destination chain."""
    processed = await ledger.release(
        caller=caller,
        recipient=payload.recipient,
        asset=payload.asset,
        amount=Decimal(payload.amount),
        source_tx_ref=payload.source_tx_ref,
    )
    return ReleaseResponse.from_release(processed)


@router.get("/releases", response_model=ReleaseResponse)
async def get_release(
    source_tx_ref: str = Query(..., min_length=1),
    ledger: BridgeLedger = Depends(get_ledger),
) -> ReleaseResponse:
    processed = await ledger.get_release(source_tx_ref)
    if processed is None:
        raise HTTPException(status_code=404, detail=f"No release for {source_tx_ref}")
    return ReleaseResponse.from_release(processed)


@router.get("/events", response_model=EventList)
async def get_events(
    from_position: int = Query(1, ge=0),
    to_position: Optional[int] = Query(None, ge=0),
    event_type: Optional[BridgeEventType] = None,
    limit: int = Query(500, ge=1, le=MAX_EVENTS_PER_PAGE),
    ledger: BridgeLedger = Depends(get_ledger),
) -> EventList:
    """Read the event log in position order."""
    events = await ledger.get_events(from_position, to_position, event_type, limit)
    return EventList(
        events=[EventResponse.from_event(e) for e in events],
        latest_position=await ledger.latest_position(),
    )


@router.get("/events/latest")
async def get_latest_position(ledger: BridgeLedger = Depends(get_ledger)) -> dict:
    """Position of the newest event (0 when the log is empty)."""
    return {"position": await ledger.latest_position()}


@router.get("/policy", response_model=PolicyResponse)
async def get_policy(ledger: BridgeLedger = Depends(get_ledger)) -> PolicyResponse:
    """Current policy, pause flag and supported assets."""
    policy = await ledger.get_policy()
    return PolicyResponse(
        min_amount=str(policy.min_amount),
        max_amount=str(policy.max_amount),
        fee_basis_points=policy.fee_basis_points,
        relayer_threshold=policy.relayer_threshold,
        enabled=policy.enabled,
        paused=await ledger.is_paused(),
        supported_assets=await ledger.supported_assets(),
    )
