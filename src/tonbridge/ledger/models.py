"""SQLAlchemy models for the bridge ledger and relayer state."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from tonbridge.quorum import TransferStatus


class Amount(TypeDecorator):
    """Exact decimal amount.

    SQLite has no decimal type and would round-trip through float, so amounts
    are stored as text there and as NUMERIC(36, 18) elsewhere.
    """

    impl = Numeric(36, 18)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(80))
        return dialect.type_descriptor(Numeric(36, 18, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(Decimal(value))
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Role(str, Enum):
    """Capabilities checked by the ledger."""

    ADMIN = "admin"
    RELAYER = "relayer"
    PAUSER = "pauser"


class BridgeEventType(str, Enum):
    """Types of entries in the append-only event log."""

    REQUEST_ACCEPTED = "request_accepted"
    RELAYER_CONFIRMED = "relayer_confirmed"
    COMPLETED = "completed"
    RELEASED = "released"
    POLICY_UPDATED = "policy_updated"
    ASSET_SUPPORT_CHANGED = "asset_support_changed"
    PAUSED = "paused"
    UNPAUSED = "unpaused"
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    FEES_WITHDRAWN = "fees_withdrawn"
    FEE_COLLECTOR_CHANGED = "fee_collector_changed"


class OutstandingStage(str, Enum):
    """Step a relayer still owes for a transfer."""

    PAYMENT = "payment"            # Destination payment not yet made
    ATTESTATION = "attestation"    # Paid, attestation not yet accepted


class BridgeState(Base):
    """Singleton row holding the ledger's global state and policy.

    Policy columns are always written together (whole-struct replacement).
    """

    __tablename__ = "bridge_state"

    id: Mapped[int] = mapped_column(primary_key=True)
    admin: Mapped[str] = mapped_column(String(255), nullable=False)
    fee_collector: Mapped[str] = mapped_column(String(255), nullable=False)
    nonce: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Policy
    min_amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)
    max_amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)
    fee_basis_points: Mapped[int] = mapped_column(Integer, nullable=False)
    relayer_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_fee_basis_points: Mapped[int] = mapped_column(Integer, nullable=False)
    policy_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    initialized_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SupportedAsset(Base):
    """Asset allow-list entry (native sentinel or token address)."""

    __tablename__ = "supported_assets"

    asset: Mapped[str] = mapped_column(String(255), primary_key=True)
    supported: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RoleGrant(Base):
    """Role held by an identity."""

    __tablename__ = "role_grants"
    __table_args__ = (Index("ix_role_grants_role_identity", "role", "identity", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    granted_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Transfer(Base):
    """Outbound transfer request (source chain -> destination chain)."""

    __tablename__ = "transfers"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    sender: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    destination_recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    asset: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)  # gross
    fee: Mapped[Decimal] = mapped_column(Amount(), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)  # amount - fee
    nonce: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=TransferStatus.PENDING.value, nullable=False
    )
    confirmation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_completed(self) -> bool:
        return self.status == TransferStatus.COMPLETED


class Attestation(Base):
    """One relayer's claim that the destination payment happened."""

    __tablename__ = "attestations"
    __table_args__ = (
        Index("ix_attestations_transfer_relayer", "transfer_id", "relayer", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    transfer_id: Mapped[str] = mapped_column(ForeignKey("transfers.id"), nullable=False)
    relayer: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AccountBalance(Base):
    """Balance of an account for an asset (value-custody collaborator)."""

    __tablename__ = "account_balances"
    __table_args__ = (
        Index("ix_account_balances_account_asset", "account", "asset", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account: Mapped[str] = mapped_column(String(255), nullable=False)
    asset: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount(), default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CollectedFee(Base):
    """Running total of fees owed to the protocol per asset."""

    __tablename__ = "collected_fees"

    asset: Mapped[str] = mapped_column(String(255), primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Amount(), default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Amount(), default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProcessedRelease(Base):
    """Replay guard for releases originating on the destination chain."""

    __tablename__ = "processed_releases"

    release_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    source_tx_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    asset: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)
    released_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BridgeEvent(Base):
    """Append-only event log.

    ``position`` is strictly increasing and serves as the block height that
    relayer cursors resume from.
    """

    __tablename__ = "bridge_events"

    position: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class RelayerCursor(Base):
    """Last event position fully handled by a relayer."""

    __tablename__ = "relayer_cursors"

    relayer: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_position: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class OutstandingTransfer(Base):
    """Transfer a relayer has seen but not yet resolved.

    Recorded before the cursor moves past its event, so no event is skipped.
    """

    __tablename__ = "outstanding_transfers"
    __table_args__ = (
        Index("ix_outstanding_relayer_transfer", "relayer", "transfer_id", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    relayer: Mapped[str] = mapped_column(String(255), nullable=False)
    transfer_id: Mapped[str] = mapped_column(String(66), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(
        String(20), default=OutstandingStage.PAYMENT.value, nullable=False
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
