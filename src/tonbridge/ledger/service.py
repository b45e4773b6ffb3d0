"""Bridge ledger: the authoritative record of transfers and custody.

Each mutating operation runs under the ledger lock and inside a single
database transaction. Any rejection rolls the whole transaction back, so funds
never move without a transfer record and no record exists without custody.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tonbridge.constants import NATIVE_ASSET, SCHEMA_VERSION, normalize_identity
from tonbridge.exceptions import (
    AlreadyInitialized,
    AlreadyReleased,
    BridgeDisabled,
    BridgePaused,
    InvalidAmount,
    InvalidConfiguration,
    InvalidRecipient,
    InvalidReference,
    NotInitialized,
    Unauthorized,
    UnsupportedAsset,
)
from tonbridge.identifiers import derive_release_id, derive_transfer_id
from tonbridge.ledger.access import AccessControl, validate_identity
from tonbridge.ledger.custody import CustodyVault
from tonbridge.ledger.database import get_db
from tonbridge.ledger.models import (
    BridgeEvent,
    BridgeEventType,
    BridgeState,
    CollectedFee,
    ProcessedRelease,
    Role,
    Transfer,
)
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.policy import (
    DEFAULT_MAX_FEE_BASIS_POINTS,
    BridgePolicy,
    check_amount,
    compute_fee,
    quantize_amount,
)
from tonbridge.quorum import TransferStatus, check_attestation, decide
from tonbridge.utils.locks import LedgerLock

logger = logging.getLogger(__name__)

AmountLike = Union[Decimal, str, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_amount(value: AmountLike) -> Decimal:
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite: {value!r}")
    return amount


def policy_from_state(state: BridgeState) -> BridgePolicy:
    """Read the policy columns of the state row as one value."""
    return BridgePolicy(
        min_amount=state.min_amount,
        max_amount=state.max_amount,
        fee_basis_points=state.fee_basis_points,
        relayer_threshold=state.relayer_threshold,
        enabled=state.enabled,
    )


class BridgeLedger:
    """Transfer ledger, quorum confirmation and operator interface."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        lock: Optional[LedgerLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the ledger.

        Args:
            session_factory: Session factory (defaults to the global one)
            lock: Lock serializing mutations (one per ledger by default)
            clock: Source of creation timestamps
        """
        self._session_factory = session_factory
        self.lock = lock or LedgerLock("bridge-ledger")
        self._clock = clock or _utcnow

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[LedgerRepository, None]:
        async with self.lock.hold(operation):
            async with get_db(self._session_factory) as session:
                yield LedgerRepository(session)

    @asynccontextmanager
    async def _read(self) -> AsyncGenerator[LedgerRepository, None]:
        async with get_db(self._session_factory) as session:
            yield LedgerRepository(session)

    @staticmethod
    async def _state(repo: LedgerRepository, for_update: bool = False) -> BridgeState:
        state = await repo.get_state(for_update=for_update)
        if state is None:
            raise NotInitialized("Bridge ledger has not been initialized")
        return state

    # ======================
    # Initialization
    # ======================

    async def initialize(
        self,
        admin: str,
        policy: BridgePolicy,
        fee_collector: Optional[str] = None,
        relayers: Iterable[str] = (),
        max_fee_basis_points: int = DEFAULT_MAX_FEE_BASIS_POINTS,
    ) -> None:
        """Create the ledger state.

        The admin receives the admin and pauser roles; the native asset is
        supported from the start. Invalid configuration never reaches storage.
        """
        admin = validate_identity(admin, "admin")
        fee_collector = validate_identity(fee_collector or admin, "fee collector")
        policy.validate(max_fee_basis_points)

        async with self._transaction("initialize") as repo:
            if await repo.get_state() is not None:
                raise AlreadyInitialized("Bridge ledger is already initialized")

            await repo.create_state(
                admin=admin,
                fee_collector=fee_collector,
                nonce=0,
                paused=False,
                min_amount=policy.min_amount,
                max_amount=policy.max_amount,
                fee_basis_points=policy.fee_basis_points,
                relayer_threshold=policy.relayer_threshold,
                enabled=policy.enabled,
                max_fee_basis_points=max_fee_basis_points,
                policy_version=1,
                schema_version=SCHEMA_VERSION,
            )
            access = AccessControl(repo)
            await access.grant(Role.ADMIN, admin, granted_by=admin)
            await access.grant(Role.PAUSER, admin, granted_by=admin)
            for relayer in relayers:
                await access.grant(Role.RELAYER, relayer, granted_by=admin)
            await repo.set_asset_supported(NATIVE_ASSET, True)
            await repo.append_event(BridgeEventType.POLICY_UPDATED, policy.to_dict())

        logger.info(f"Bridge ledger initialized (admin: {admin}, policy: {policy})")

    async def is_initialized(self) -> bool:
        async with self._read() as repo:
            return await repo.get_state() is not None

    # ======================
    # Transfers
    # ======================

    async def request(
        self,
        sender: str,
        destination_recipient: str,
        asset: str,
        amount: AmountLike,
        attached_value: AmountLike = Decimal("0"),
    ) -> Transfer:
        """Accept a transfer request, taking its funds into custody.

        Raises:
            BridgePaused, BridgeDisabled, UnsupportedAsset, InvalidAmount,
            InsufficientAmount, ExceedsMaxAmount, InvalidRecipient,
            InsufficientFunds
        """
        amount = _to_amount(amount)
        attached_value = _to_amount(attached_value)
        asset = normalize_identity(asset)
        sender = normalize_identity(sender or "")
        recipient = (destination_recipient or "").strip()

        async with self._transaction("request") as repo:
            state = await self._state(repo, for_update=True)
            if state.paused:
                raise BridgePaused("Bridge is paused; requests are blocked")
            policy = policy_from_state(state)
            if not policy.enabled:
                raise BridgeDisabled("Bridge is disabled by policy")
            if not await repo.is_asset_supported(asset):
                raise UnsupportedAsset(f"Asset {asset} is not supported")
            check_amount(amount, policy)
            if not recipient:
                raise InvalidRecipient("Destination recipient must not be empty")
            if not sender:
                raise Unauthorized("Request has no sender")

            breakdown = compute_fee(amount, policy.fee_basis_points)
            await CustodyVault(repo).fund(asset, sender, amount, attached_value)

            nonce = await repo.allocate_nonce(state)
            created_at = self._clock()
            transfer_id = derive_transfer_id(
                sender, recipient, asset, amount, nonce, int(created_at.timestamp())
            )
            transfer = await repo.create_transfer(
                transfer_id=transfer_id,
                sender=sender,
                destination_recipient=recipient,
                asset=asset,
                amount=amount,
                fee=breakdown.fee,
                net_amount=breakdown.net_amount,
                nonce=nonce,
                created_at=created_at,
            )
            if breakdown.fee > 0:
                await repo.add_collected_fee(asset, breakdown.fee)
            await repo.append_event(
                BridgeEventType.REQUEST_ACCEPTED,
                {
                    "transfer_id": transfer_id,
                    "sender": sender,
                    "asset": asset,
                    "net_amount": breakdown.net_amount,
                    "destination_recipient": recipient,
                    "fee": breakdown.fee,
                },
                transfer_id=transfer_id,
            )

        logger.info(
            f"Transfer {transfer_id} accepted: {amount} of {asset} from {sender} "
            f"to {recipient} (fee {breakdown.fee}, nonce {nonce})"
        )
        return transfer

    async def lookup(self, transfer_id: str) -> Optional[Transfer]:
        """Get a transfer, or None if it was never created."""
        async with self._read() as repo:
            return await repo.get_transfer(normalize_identity(transfer_id))

    async def list_transfers(
        self,
        status: Optional[TransferStatus] = None,
        sender: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transfer]:
        async with self._read() as repo:
            return await repo.get_transfers(status=status, sender=sender, limit=limit, offset=offset)

    # ======================
    # Quorum confirmation
    # ======================

    async def attest(self, transfer_id: str, relayer: str) -> Transfer:
        """Record a relayer attestation; complete the transfer at threshold.

        The threshold is read when the attestation is applied, so policy
        updates affect transfers already in flight.

        Raises:
            BridgePaused, Unauthorized, TransferNotFound, AlreadyCompleted,
            AlreadyAttested
        """
        transfer_id = normalize_identity(transfer_id)
        relayer = normalize_identity(relayer or "")

        async with self._transaction("attest") as repo:
            state = await self._state(repo, for_update=True)
            authorized = await AccessControl(repo).has_role(Role.RELAYER, relayer)
            transfer = await repo.get_transfer(transfer_id)
            already_attested = (
                transfer is not None and await repo.has_attestation(transfer_id, relayer)
            )
            check_attestation(
                paused=state.paused,
                authorized=authorized,
                exists=transfer is not None,
                status=transfer.status if transfer else None,
                already_attested=already_attested,
                transfer_id=transfer_id,
                relayer=relayer,
            )

            decision = decide(transfer.confirmation_count, state.relayer_threshold)
            await repo.add_attestation(transfer, relayer)
            await repo.append_event(
                BridgeEventType.RELAYER_CONFIRMED,
                {
                    "transfer_id": transfer_id,
                    "relayer": relayer,
                    "confirmation_count": decision.confirmation_count,
                },
                transfer_id=transfer_id,
            )
            if decision.completed:
                await repo.complete_transfer(transfer)
                await repo.append_event(
                    BridgeEventType.COMPLETED,
                    {"transfer_id": transfer_id},
                    transfer_id=transfer_id,
                )

        logger.info(
            f"Transfer {transfer_id} attested by {relayer} "
            f"({decision.confirmation_count}/{decision.threshold})"
        )
        if decision.completed:
            logger.info(f"Transfer {transfer_id} completed")
        return transfer

    async def has_attested(self, transfer_id: str, relayer: str) -> bool:
        async with self._read() as repo:
            return await repo.has_attestation(
                normalize_identity(transfer_id), normalize_identity(relayer)
            )

    async def get_attestations(self, transfer_id: str) -> list[str]:
        """Relayers that attested a transfer."""
        async with self._read() as repo:
            return await repo.get_attesting_relayers(normalize_identity(transfer_id))

    # ======================
    # Reverse direction
    # ======================

    async def release(
        self,
        caller: str,
        recipient: str,
        asset: str,
        amount: AmountLike,
        source_tx_ref: str,
    ) -> ProcessedRelease:
        """Pay out a transfer that originated on the destination chain.

        The release id is derived from the foreign transaction reference only;
        a reference that was already released is rejected before any payout.

        Raises:
            BridgePaused, Unauthorized, UnsupportedAsset, InvalidAmount,
            InvalidRecipient, InvalidReference, AlreadyReleased, InsufficientFunds
        """
        amount = _to_amount(amount)
        caller = normalize_identity(caller or "")
        recipient = normalize_identity(recipient or "")
        asset = normalize_identity(asset)
        source_tx_ref = (source_tx_ref or "").strip()

        async with self._transaction("release") as repo:
            state = await self._state(repo, for_update=True)
            if state.paused:
                raise BridgePaused("Bridge is paused; releases are blocked")
            await AccessControl(repo).require(Role.RELAYER, caller)
            if not await repo.is_asset_supported(asset):
                raise UnsupportedAsset(f"Asset {asset} is not supported")
            if amount <= 0 or amount != quantize_amount(amount):
                raise InvalidAmount(f"Invalid release amount: {amount}")
            if not recipient:
                raise InvalidRecipient("Release recipient must not be empty")
            if not source_tx_ref:
                raise InvalidReference("Source transaction reference must not be empty")

            release_id = derive_release_id(source_tx_ref)
            existing = await repo.get_processed_release(release_id)
            if existing is not None:
                raise AlreadyReleased(
                    f"Reference {source_tx_ref} was already released as {release_id}"
                )

            await CustodyVault(repo).pay_out(asset, recipient, amount)
            release = await repo.record_release(
                release_id=release_id,
                source_tx_ref=source_tx_ref,
                recipient=recipient,
                asset=asset,
                amount=amount,
                released_by=caller,
            )
            await repo.append_event(
                BridgeEventType.RELEASED,
                {
                    "release_id": release_id,
                    "source_tx_ref": source_tx_ref,
                    "recipient": recipient,
                    "asset": asset,
                    "amount": amount,
                    "relayer": caller,
                },
                transfer_id=release_id,
            )

        logger.info(f"Released {amount} of {asset} to {recipient} for {source_tx_ref}")
        return release

    async def get_release(self, source_tx_ref: str) -> Optional[ProcessedRelease]:
        async with self._read() as repo:
            return await repo.get_processed_release(derive_release_id(source_tx_ref))

    # ======================
    # Operator interface
    # ======================

    async def update_policy(self, caller: str, policy: BridgePolicy) -> BridgePolicy:
        """Replace the whole policy. Raises InvalidPolicy or Unauthorized."""
        async with self._transaction("update_policy") as repo:
            state = await self._state(repo, for_update=True)
            await AccessControl(repo).require(Role.ADMIN, caller)
            policy.validate(state.max_fee_basis_points)

            state.min_amount = policy.min_amount
            state.max_amount = policy.max_amount
            state.fee_basis_points = policy.fee_basis_points
            state.relayer_threshold = policy.relayer_threshold
            state.enabled = policy.enabled
            state.policy_version += 1
            await repo.append_event(
                BridgeEventType.POLICY_UPDATED,
                {**policy.to_dict(), "version": state.policy_version},
            )

        logger.info(f"Bridge policy updated by {caller}: {policy}")
        return policy

    async def set_supported_asset(self, caller: str, asset: str, supported: bool) -> None:
        async with self._transaction("set_supported_asset") as repo:
            await self._state(repo)
            await AccessControl(repo).require(Role.ADMIN, caller)
            entry = await repo.set_asset_supported(asset, supported)
            await repo.append_event(
                BridgeEventType.ASSET_SUPPORT_CHANGED,
                {"asset": entry.asset, "supported": supported},
            )
        logger.info(f"Asset {asset} supported={supported} (by {caller})")

    async def grant_role(self, caller: str, role: Role, identity: str) -> bool:
        """Grant a role. Returns False if the identity already held it."""
        async with self._transaction("grant_role") as repo:
            await self._state(repo)
            access = AccessControl(repo)
            await access.require(Role.ADMIN, caller)
            granted = await access.grant(role, identity, granted_by=normalize_identity(caller))
            if granted:
                await repo.append_event(
                    BridgeEventType.ROLE_GRANTED,
                    {"role": role.value, "identity": normalize_identity(identity)},
                )
        if granted:
            logger.info(f"Granted {role.value} to {identity} (by {caller})")
        return granted

    async def revoke_role(self, caller: str, role: Role, identity: str) -> bool:
        """Revoke a role. The last admin cannot be revoked."""
        async with self._transaction("revoke_role") as repo:
            await self._state(repo)
            access = AccessControl(repo)
            await access.require(Role.ADMIN, caller)
            if role == Role.ADMIN:
                admins = await access.members(Role.ADMIN)
                if admins == [normalize_identity(identity)]:
                    raise InvalidConfiguration("Cannot revoke the last admin")
            revoked = await access.revoke(role, identity)
            if revoked:
                await repo.append_event(
                    BridgeEventType.ROLE_REVOKED,
                    {"role": role.value, "identity": normalize_identity(identity)},
                )
        if revoked:
            logger.info(f"Revoked {role.value} from {identity} (by {caller})")
        return revoked

    async def add_relayer(self, caller: str, relayer: str) -> bool:
        return await self.grant_role(caller, Role.RELAYER, relayer)

    async def remove_relayer(self, caller: str, relayer: str) -> bool:
        return await self.revoke_role(caller, Role.RELAYER, relayer)

    async def get_role_members(self, role: Role) -> list[str]:
        async with self._read() as repo:
            return await repo.get_role_members(role)

    async def has_role(self, role: Role, identity: str) -> bool:
        async with self._read() as repo:
            return await AccessControl(repo).has_role(role, identity)

    async def pause(self, caller: str) -> bool:
        """Block requests, attestations and releases. Returns False if already paused."""
        return await self._set_paused(caller, True)

    async def unpause(self, caller: str) -> bool:
        """Lift a pause. Returns False if not paused."""
        return await self._set_paused(caller, False)

    async def _set_paused(self, caller: str, paused: bool) -> bool:
        operation = "pause" if paused else "unpause"
        async with self._transaction(operation) as repo:
            state = await self._state(repo, for_update=True)
            await AccessControl(repo).require(Role.PAUSER, caller)
            if state.paused == paused:
                return False
            state.paused = paused
            await repo.append_event(
                BridgeEventType.PAUSED if paused else BridgeEventType.UNPAUSED,
                {"by": normalize_identity(caller)},
            )
        logger.warning(f"Bridge {'paused' if paused else 'unpaused'} by {caller}")
        return True

    async def withdraw_fees(
        self, caller: str, asset: str = NATIVE_ASSET, to: Optional[str] = None
    ) -> Decimal:
        """Move all collected fees of an asset to the fee collector.

        Returns the amount withdrawn (zero when nothing was collected).
        """
        async with self._transaction("withdraw_fees") as repo:
            state = await self._state(repo)
            await AccessControl(repo).require(Role.ADMIN, caller)
            destination = validate_identity(to or state.fee_collector, "fee collector")
            amount = await repo.take_collected_fee(asset)
            if amount <= 0:
                return Decimal("0")
            await CustodyVault(repo).pay_out(asset, destination, amount)
            await repo.append_event(
                BridgeEventType.FEES_WITHDRAWN,
                {"asset": normalize_identity(asset), "amount": amount, "to": destination},
            )
        logger.info(f"Withdrew {amount} of {asset} in fees to {destination}")
        return amount

    async def set_fee_collector(self, caller: str, fee_collector: str) -> None:
        async with self._transaction("set_fee_collector") as repo:
            state = await self._state(repo, for_update=True)
            await AccessControl(repo).require(Role.ADMIN, caller)
            state.fee_collector = validate_identity(fee_collector, "fee collector")
            await repo.append_event(
                BridgeEventType.FEE_COLLECTOR_CHANGED, {"fee_collector": state.fee_collector}
            )

    # ======================
    # Funding helper
    # ======================

    async def credit_account(self, account: str, asset: str, amount: AmountLike) -> Decimal:
        """Credit an account's balance (funds entering from outside the bridge)."""
        amount = _to_amount(amount)
        async with self._transaction("credit_account") as repo:
            return await CustodyVault(repo).deposit(account, asset, amount)

    # ======================
    # Read-only views
    # ======================

    async def get_policy(self) -> BridgePolicy:
        async with self._read() as repo:
            return policy_from_state(await self._state(repo))

    async def get_state(self) -> BridgeState:
        async with self._read() as repo:
            return await self._state(repo)

    async def is_paused(self) -> bool:
        async with self._read() as repo:
            return (await self._state(repo)).paused

    async def is_supported(self, asset: str) -> bool:
        async with self._read() as repo:
            return await repo.is_asset_supported(asset)

    async def supported_assets(self) -> list[str]:
        async with self._read() as repo:
            return await repo.get_supported_assets()

    async def collected_fees(self, asset: str = NATIVE_ASSET) -> Decimal:
        async with self._read() as repo:
            record = await repo.get_collected_fee(asset)
            return record.amount if record else Decimal("0")

    async def fee_summary(self) -> list[CollectedFee]:
        """Collected and withdrawn fee totals for every asset."""
        async with self._read() as repo:
            return await repo.get_all_collected_fees()

    async def current_nonce(self) -> int:
        async with self._read() as repo:
            return (await self._state(repo)).nonce

    async def balance_of(self, account: str, asset: str = NATIVE_ASSET) -> Decimal:
        async with self._read() as repo:
            balance = await repo.get_balance(account, asset)
            return balance.amount if balance else Decimal("0")

    async def custody_balance(self, asset: str = NATIVE_ASSET) -> Decimal:
        async with self._read() as repo:
            return await CustodyVault(repo).custody_balance(asset)

    async def latest_position(self) -> int:
        async with self._read() as repo:
            return await repo.get_latest_position()

    async def get_events(
        self,
        from_position: int,
        to_position: Optional[int] = None,
        event_type: Optional[BridgeEventType] = None,
        limit: Optional[int] = None,
    ) -> list[BridgeEvent]:
        async with self._read() as repo:
            return await repo.get_events(from_position, to_position, event_type, limit)
