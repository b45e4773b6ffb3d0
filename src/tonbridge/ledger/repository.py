"""Repository for ledger operations.

Every method works inside the caller's session and only flushes; the caller
owns the transaction boundary (see ``tonbridge.ledger.database.get_db``).
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tonbridge.constants import normalize_identity
from tonbridge.exceptions import InsufficientFunds
from tonbridge.ledger.models import (
    AccountBalance,
    Attestation,
    BridgeEvent,
    BridgeEventType,
    BridgeState,
    CollectedFee,
    OutstandingStage,
    OutstandingTransfer,
    ProcessedRelease,
    RelayerCursor,
    Role,
    RoleGrant,
    SupportedAsset,
    Transfer,
)
from tonbridge.quorum import TransferStatus

STATE_ROW_ID = 1


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Global state
    async def get_state(self, for_update: bool = False) -> Optional[BridgeState]:
        """Get the singleton state row.

        Uses SELECT FOR UPDATE on PostgreSQL; SQLite has implicit locking.
        """
        stmt = select(BridgeState).where(BridgeState.id == STATE_ROW_ID)
        dialect = self.session.bind.dialect.name if self.session.bind else "sqlite"
        if for_update and dialect == "postgresql":
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_state(self, **fields: Any) -> BridgeState:
        """Create the singleton state row."""
        state = BridgeState(id=STATE_ROW_ID, **fields)
        self.session.add(state)
        await self.session.flush()
        return state

    async def allocate_nonce(self, state: BridgeState) -> int:
        """Return the current nonce and advance the counter."""
        nonce = state.nonce
        state.nonce = nonce + 1
        await self.session.flush()
        return nonce

    # Supported assets
    async def is_asset_supported(self, asset: str) -> bool:
        """Check if an asset is on the allow-list."""
        stmt = select(SupportedAsset).where(SupportedAsset.asset == normalize_identity(asset))
        result = await self.session.execute(stmt)
        entry = result.scalar_one_or_none()
        return entry is not None and entry.supported

    async def set_asset_supported(self, asset: str, supported: bool) -> SupportedAsset:
        """Add, enable or disable an asset."""
        asset = normalize_identity(asset)
        stmt = select(SupportedAsset).where(SupportedAsset.asset == asset)
        result = await self.session.execute(stmt)
        entry = result.scalar_one_or_none()
        if entry is None:
            entry = SupportedAsset(asset=asset, supported=supported)
            self.session.add(entry)
        else:
            entry.supported = supported
        await self.session.flush()
        return entry

    async def get_supported_assets(self) -> list[str]:
        """List assets currently supported."""
        stmt = (
            select(SupportedAsset.asset)
            .where(SupportedAsset.supported.is_(True))
            .order_by(SupportedAsset.asset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Roles
    async def has_role(self, role: Role, identity: str) -> bool:
        """Check if an identity holds a role."""
        stmt = select(RoleGrant).where(
            RoleGrant.role == role.value,
            RoleGrant.identity == normalize_identity(identity),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def grant_role(
        self, role: Role, identity: str, granted_by: Optional[str] = None
    ) -> bool:
        """Grant a role. Returns False if the identity already held it."""
        if await self.has_role(role, identity):
            return False
        self.session.add(
            RoleGrant(
                role=role.value,
                identity=normalize_identity(identity),
                granted_by=granted_by,
            )
        )
        await self.session.flush()
        return True

    async def revoke_role(self, role: Role, identity: str) -> bool:
        """Revoke a role. Returns False if the identity did not hold it."""
        stmt = delete(RoleGrant).where(
            RoleGrant.role == role.value,
            RoleGrant.identity == normalize_identity(identity),
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

    async def get_role_members(self, role: Role) -> list[str]:
        """List identities holding a role."""
        stmt = select(RoleGrant.identity).where(RoleGrant.role == role.value).order_by(RoleGrant.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Transfers
    async def create_transfer(
        self,
        transfer_id: str,
        sender: str,
        destination_recipient: str,
        asset: str,
        amount: Decimal,
        fee: Decimal,
        net_amount: Decimal,
        nonce: int,
        created_at: datetime,
    ) -> Transfer:
        """Persist a new pending transfer."""
        transfer = Transfer(
            id=transfer_id,
            sender=sender,
            destination_recipient=destination_recipient,
            asset=asset,
            amount=amount,
            fee=fee,
            net_amount=net_amount,
            nonce=nonce,
            status=TransferStatus.PENDING.value,
            confirmation_count=0,
            created_at=created_at,
        )
        self.session.add(transfer)
        await self.session.flush()
        return transfer

    async def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        """Get transfer by ID."""
        stmt = select(Transfer).where(Transfer.id == transfer_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_transfers(
        self,
        status: Optional[TransferStatus] = None,
        sender: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transfer]:
        """List transfers, newest first."""
        stmt = select(Transfer)
        if status is not None:
            stmt = stmt.where(Transfer.status == status.value)
        if sender:
            stmt = stmt.where(Transfer.sender == normalize_identity(sender))
        stmt = stmt.order_by(Transfer.nonce.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def complete_transfer(self, transfer: Transfer) -> Transfer:
        """Mark a transfer as completed."""
        transfer.status = TransferStatus.COMPLETED.value
        transfer.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return transfer

    # Attestations
    async def has_attestation(self, transfer_id: str, relayer: str) -> bool:
        """Check if a relayer attested a transfer."""
        stmt = select(Attestation).where(
            Attestation.transfer_id == transfer_id,
            Attestation.relayer == normalize_identity(relayer),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add_attestation(self, transfer: Transfer, relayer: str) -> Attestation:
        """Record an attestation and bump the transfer's confirmation count."""
        attestation = Attestation(transfer_id=transfer.id, relayer=normalize_identity(relayer))
        self.session.add(attestation)
        transfer.confirmation_count += 1
        await self.session.flush()
        return attestation

    async def get_attesting_relayers(self, transfer_id: str) -> list[str]:
        """List relayers that attested a transfer, in attestation order."""
        stmt = (
            select(Attestation.relayer)
            .where(Attestation.transfer_id == transfer_id)
            .order_by(Attestation.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_attestations(self, transfer_id: str) -> int:
        """Count distinct relayers that attested a transfer."""
        stmt = select(func.count(Attestation.id)).where(Attestation.transfer_id == transfer_id)
        return await self.session.scalar(stmt) or 0

    # Balances (value custody)
    async def get_balance(self, account: str, asset: str) -> Optional[AccountBalance]:
        """Get account balance for a specific asset."""
        stmt = select(AccountBalance).where(
            AccountBalance.account == normalize_identity(account),
            AccountBalance.asset == normalize_identity(asset),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_balance(self, account: str, asset: str) -> AccountBalance:
        """Get or create a balance record for account/asset."""
        balance = await self.get_balance(account, asset)
        if balance is None:
            balance = AccountBalance(
                account=normalize_identity(account),
                asset=normalize_identity(asset),
                amount=Decimal("0"),
            )
            self.session.add(balance)
            await self.session.flush()
        return balance

    async def credit_balance(self, account: str, asset: str, amount: Decimal) -> AccountBalance:
        """Add amount to account balance."""
        balance = await self.get_or_create_balance(account, asset)
        balance.amount += amount
        await self.session.flush()
        return balance

    async def debit_balance(self, account: str, asset: str, amount: Decimal) -> AccountBalance:
        """Subtract amount from account balance. Raises InsufficientFunds if short."""
        balance = await self.get_or_create_balance(account, asset)
        if balance.amount < amount:
            raise InsufficientFunds(
                f"Insufficient balance: {account} has {balance.amount} of {asset}, need {amount}"
            )
        balance.amount -= amount
        await self.session.flush()
        return balance

    # Collected fees
    async def get_collected_fee(self, asset: str) -> Optional[CollectedFee]:
        """Get collected fee record for an asset."""
        stmt = select(CollectedFee).where(CollectedFee.asset == normalize_identity(asset))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_collected_fee(self, asset: str, amount: Decimal) -> CollectedFee:
        """Increase the collected fee total for an asset."""
        record = await self.get_collected_fee(asset)
        if record is None:
            record = CollectedFee(
                asset=normalize_identity(asset),
                amount=Decimal("0"),
                total_withdrawn=Decimal("0"),
            )
            self.session.add(record)
        record.amount += amount
        await self.session.flush()
        return record

    async def take_collected_fee(self, asset: str) -> Decimal:
        """Zero the collected fee total for an asset and return what it held."""
        record = await self.get_collected_fee(asset)
        if record is None or record.amount <= 0:
            return Decimal("0")
        amount = record.amount
        record.amount = Decimal("0")
        record.total_withdrawn += amount
        await self.session.flush()
        return amount

    async def get_all_collected_fees(self) -> list[CollectedFee]:
        """Get collected fee records for every asset."""
        result = await self.session.execute(select(CollectedFee).order_by(CollectedFee.asset))
        return list(result.scalars().all())

    # Reverse-direction releases (idempotency)
    async def get_processed_release(self, release_id: str) -> Optional[ProcessedRelease]:
        """Get the release recorded for a release id."""
        stmt = select(ProcessedRelease).where(ProcessedRelease.release_id == release_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_release(
        self,
        release_id: str,
        source_tx_ref: str,
        recipient: str,
        asset: str,
        amount: Decimal,
        released_by: str,
    ) -> ProcessedRelease:
        """Record a processed release."""
        release = ProcessedRelease(
            release_id=release_id,
            source_tx_ref=source_tx_ref,
            recipient=recipient,
            asset=asset,
            amount=amount,
            released_by=released_by,
        )
        self.session.add(release)
        await self.session.flush()
        return release

    # Event log
    async def append_event(
        self,
        event_type: BridgeEventType,
        payload: dict,
        transfer_id: Optional[str] = None,
    ) -> BridgeEvent:
        """Append an entry to the event log."""
        event = BridgeEvent(
            event_type=event_type.value,
            transfer_id=transfer_id,
            payload=json.dumps(payload, default=_json_default, sort_keys=True),
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_events(
        self,
        from_position: int,
        to_position: Optional[int] = None,
        event_type: Optional[BridgeEventType] = None,
        limit: Optional[int] = None,
    ) -> list[BridgeEvent]:
        """Get events in an inclusive position range, in emission order."""
        stmt = select(BridgeEvent).where(BridgeEvent.position >= from_position)
        if to_position is not None:
            stmt = stmt.where(BridgeEvent.position <= to_position)
        if event_type is not None:
            stmt = stmt.where(BridgeEvent.event_type == event_type.value)
        stmt = stmt.order_by(BridgeEvent.position)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_latest_position(self) -> int:
        """Get the position of the newest event (0 when the log is empty)."""
        return await self.session.scalar(select(func.max(BridgeEvent.position))) or 0

    # Relayer cursor and outstanding work
    async def get_cursor(self, relayer: str) -> Optional[int]:
        """Get the last position fully handled by a relayer."""
        stmt = select(RelayerCursor).where(RelayerCursor.relayer == normalize_identity(relayer))
        result = await self.session.execute(stmt)
        cursor = result.scalar_one_or_none()
        return cursor.last_position if cursor else None

    async def set_cursor(self, relayer: str, position: int) -> RelayerCursor:
        """Store the last position fully handled by a relayer."""
        relayer = normalize_identity(relayer)
        stmt = select(RelayerCursor).where(RelayerCursor.relayer == relayer)
        result = await self.session.execute(stmt)
        cursor = result.scalar_one_or_none()
        if cursor is None:
            cursor = RelayerCursor(relayer=relayer, last_position=position)
            self.session.add(cursor)
        else:
            cursor.last_position = position
        await self.session.flush()
        return cursor

    async def get_outstanding(self, relayer: str) -> list[OutstandingTransfer]:
        """Get unresolved transfers for a relayer, oldest event first."""
        stmt = (
            select(OutstandingTransfer)
            .where(OutstandingTransfer.relayer == normalize_identity(relayer))
            .order_by(OutstandingTransfer.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_outstanding_transfer(
        self, relayer: str, transfer_id: str
    ) -> Optional[OutstandingTransfer]:
        """Get the outstanding record of one transfer for a relayer."""
        stmt = select(OutstandingTransfer).where(
            OutstandingTransfer.relayer == normalize_identity(relayer),
            OutstandingTransfer.transfer_id == transfer_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save_outstanding(
        self,
        relayer: str,
        transfer_id: str,
        position: int,
        stage: OutstandingStage,
        payment_reference: Optional[str] = None,
        error: Optional[str] = None,
    ) -> OutstandingTransfer:
        """Create or update the outstanding record of a transfer."""
        record = await self.get_outstanding_transfer(relayer, transfer_id)
        if record is None:
            record = OutstandingTransfer(
                relayer=normalize_identity(relayer),
                transfer_id=transfer_id,
                position=position,
                attempts=0,
            )
            self.session.add(record)
        record.stage = stage.value
        if payment_reference:
            record.payment_reference = payment_reference
        record.attempts = (record.attempts or 0) + 1
        record.last_error = error
        await self.session.flush()
        return record

    async def remove_outstanding(self, relayer: str, transfer_id: str) -> bool:
        """Forget an outstanding transfer once it is resolved."""
        stmt = delete(OutstandingTransfer).where(
            OutstandingTransfer.relayer == normalize_identity(relayer),
            OutstandingTransfer.transfer_id == transfer_id,
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0
