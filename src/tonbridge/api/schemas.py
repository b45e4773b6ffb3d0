"""Request and response models for the bridge API."""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from tonbridge.constants import NATIVE_ASSET
from tonbridge.ledger.models import BridgeEvent, ProcessedRelease, Transfer
from tonbridge.policy import BridgePolicy


def _validate_decimal(v: str) -> str:
    try:
        amount = Decimal(v)
    except InvalidOperation:
        raise ValueError(f"Invalid amount format: {v}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount format: {v}")
    return str(amount)


class TransferRequestPayload(BaseModel):
    """Payload for a new transfer request; the sender is the caller."""

    destination_recipient: str = Field(..., max_length=128, description="TON recipient address")
    asset: str = Field(default=NATIVE_ASSET, max_length=66, description="Asset identifier")
    amount: str = Field(..., description="Gross amount as string")
    attached_value: str = Field(default="0", description="Native value attached to the request")

    @field_validator("amount", "attached_value")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a decimal number."""
        return _validate_decimal(v)


class TransferResponse(BaseModel):
    """Transfer record."""

    transfer_id: str
    sender: str
    destination_recipient: str
    asset: str
    amount: str
    fee: str
    net_amount: str
    nonce: int
    status: str
    confirmation_count: int
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_transfer(cls, transfer: Transfer) -> "TransferResponse":
        return cls(
            transfer_id=transfer.id,
            sender=transfer.sender,
            destination_recipient=transfer.destination_recipient,
            asset=transfer.asset,
            amount=str(transfer.amount),
            fee=str(transfer.fee),
            net_amount=str(transfer.net_amount),
            nonce=transfer.nonce,
            status=transfer.status,
            confirmation_count=transfer.confirmation_count,
            created_at=transfer.created_at,
            completed_at=transfer.completed_at,
        )


class AttestationStatus(BaseModel):
    """Whether one relayer attested a transfer."""

    transfer_id: str
    relayer: str
    attested: bool


class AttestationList(BaseModel):
    """Relayers that attested a transfer."""

    transfer_id: str
    relayers: list[str]
    confirmation_count: int
    threshold: int
    status: str


class ReleasePayload(BaseModel):
    """Payload for a reverse-direction release."""

    recipient: str = Field(..., max_length=66, description="Source-chain recipient")
    asset: str = Field(default=NATIVE_ASSET, max_length=66, description="Asset identifier")
    amount: str = Field(..., description="Amount to release as string")
    source_tx_ref: str = Field(..., max_length=256, description="Destination-chain transaction")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a decimal number."""
        return _validate_decimal(v)


class ReleaseResponse(BaseModel):
    """Processed release."""

    release_id: str
    source_tx_ref: str
    recipient: str
    asset: str
    amount: str
    released_by: str

    @classmethod
    def from_release(cls, release: ProcessedRelease) -> "ReleaseResponse":
        return cls(
            release_id=release.release_id,
            source_tx_ref=release.source_tx_ref,
            recipient=release.recipient,
            asset=release.asset,
            amount=str(release.amount),
            released_by=release.released_by,
        )


class EventResponse(BaseModel):
    """Entry of the bridge event log."""

    position: int
    event_type: str
    transfer_id: Optional[str] = None
    payload: dict[str, Any]

    @classmethod
    def from_event(cls, event: BridgeEvent) -> "EventResponse":
        return cls(
            position=event.position,
            event_type=event.event_type,
            transfer_id=event.transfer_id,
            payload=json.loads(event.payload),
        )


class EventList(BaseModel):
    events: list[EventResponse]
    latest_position: int


class PolicyPayload(BaseModel):
    """Replacement bridge policy."""

    min_amount: str
    max_amount: str
    fee_basis_points: int = Field(..., ge=0)
    relayer_threshold: int = Field(..., ge=1)
    enabled: bool = True

    @field_validator("min_amount", "max_amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a decimal number."""
        return _validate_decimal(v)

    def to_policy(self) -> BridgePolicy:
        return BridgePolicy(
            min_amount=Decimal(self.min_amount),
            max_amount=Decimal(self.max_amount),
            fee_basis_points=self.fee_basis_points,
            relayer_threshold=self.relayer_threshold,
            enabled=self.enabled,
        )


class PolicyResponse(BaseModel):
    """Current bridge policy and pause flag."""

    min_amount: str
    max_amount: str
    fee_basis_points: int
    relayer_threshold: int
    enabled: bool
    paused: bool
    supported_assets: list[str]


class AssetPayload(BaseModel):
    asset: str = Field(..., max_length=66)
    supported: bool = True


class RolePayload(BaseModel):
    role: str
    identity: str = Field(..., min_length=1, max_length=128)


class WithdrawFeesPayload(BaseModel):
    asset: str = Field(default=NATIVE_ASSET, max_length=66)
    to: Optional[str] = Field(None, max_length=66, description="Defaults to the fee collector")


class FeeCollectorPayload(BaseModel):
    fee_collector: str = Field(..., min_length=1, max_length=66)


class CreditPayload(BaseModel):
    """Funding helper payload (non-production only)."""

    account: str = Field(..., min_length=1, max_length=66)
    asset: str = Field(default=NATIVE_ASSET, max_length=66)
    amount: str

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a decimal number."""
        return _validate_decimal(v)
