"""Tests for relayer attestations and quorum completion."""

import json
from decimal import Decimal

import pytest

from conftest import ADMIN, RELAYER_A, RELAYER_B, RELAYER_C, TON_RECIPIENT, USER
from tonbridge.constants import NATIVE_ASSET
from tonbridge.exceptions import (
    AlreadyAttested,
    AlreadyCompleted,
    BridgePaused,
    TransferNotFound,
    Unauthorized,
)
from tonbridge.ledger.models import BridgeEventType
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.ledger.service import BridgeLedger
from tonbridge.policy import BridgePolicy
from tonbridge.quorum import TransferStatus, check_attestation, decide

async def new_transfer(ledger: BridgeLedger, amount: str = "1"):
    return await ledger.request(
        USER, TON_RECIPIENT, NATIVE_ASSET, Decimal(amount), Decimal(amount)
    )


class TestDecisionLogic:
    """Tests for the pure quorum helpers."""

    def test_decide_below_threshold(self):
        decision = decide(0, 2)
        assert decision.confirmation_count == 1
        assert decision.completed is False

    def test_decide_reaches_threshold(self):
        decision = decide(1, 2)
        assert decision.confirmation_count == 2
        assert decision.completed is True

    def test_check_order_paused_first(self):
        with pytest.raises(BridgePaused):
            check_attestation(
                paused=True,
                authorized=False,
                exists=False,
                status=None,
                already_attested=False,
                transfer_id="0x1",
                relayer="r",
            )

    def test_check_completed_before_duplicate(self):
        with pytest.raises(AlreadyCompleted):
            check_attestation(
                paused=False,
                authorized=True,
                exists=True,
                status=TransferStatus.COMPLETED,
                already_attested=True,
                transfer_id="0x1",
                relayer="r",
            )


class TestThresholdOne:
    """Single-relayer quorum."""

    @pytest.mark.asyncio
    async def test_single_attestation_completes(self, ledger: BridgeLedger):
        transfer = await new_transfer(ledger)

        attested = await ledger.attest(transfer.id, RELAYER_A)

        assert attested.status == TransferStatus.COMPLETED
        assert attested.confirmation_count == 1
        assert attested.completed_at is not None

    @pytest.mark.asyncio
    async def test_unauthorized_relayer_rejected(self, ledger: BridgeLedger):
        transfer = await new_transfer(ledger)

        with pytest.raises(Unauthorized):
            await ledger.attest(transfer.id, RELAYER_B)

        assert (await ledger.lookup(transfer.id)).confirmation_count == 0

    @pytest.mark.asyncio
    async def test_unknown_transfer_rejected(self, ledger: BridgeLedger):
        with pytest.raises(TransferNotFound):
            await ledger.attest("0x" + "12" * 32, RELAYER_A)

    @pytest.mark.asyncio
    async def test_paused_blocks_attestation(self, ledger: BridgeLedger):
        transfer = await new_transfer(ledger)
        await ledger.pause(ADMIN)

        with pytest.raises(BridgePaused):
            await ledger.attest(transfer.id, RELAYER_A)

        await ledger.unpause(ADMIN)
        assert (await ledger.attest(transfer.id, RELAYER_A)).status == TransferStatus.COMPLETED


class TestThresholdTwo:
    """Two-of-three quorum."""

    @pytest.mark.asyncio
    async def test_worked_example(self, quorum_ledger: BridgeLedger):
        """Pending after one, completed after two, third rejected."""
        transfer = await new_transfer(quorum_ledger)

        first = await quorum_ledger.attest(transfer.id, RELAYER_A)
        assert first.status == TransferStatus.PENDING
        assert first.confirmation_count == 1

        second = await quorum_ledger.attest(transfer.id, RELAYER_B)
        assert second.status == TransferStatus.COMPLETED
        assert second.confirmation_count == 2

        with pytest.raises(AlreadyCompleted):
            await quorum_ledger.attest(transfer.id, RELAYER_C)

        final = await quorum_ledger.lookup(transfer.id)
        assert final.status == TransferStatus.COMPLETED
        assert final.confirmation_count == 2

    @pytest.mark.asyncio
    async def test_duplicate_attestation_rejected(self, quorum_ledger: BridgeLedger):
        transfer = await new_transfer(quorum_ledger)
        await quorum_ledger.attest(transfer.id, RELAYER_A)

        with pytest.raises(AlreadyAttested):
            await quorum_ledger.attest(transfer.id, RELAYER_A)

        found = await quorum_ledger.lookup(transfer.id)
        assert found.confirmation_count == 1
        assert found.status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_identity_is_case_insensitive(self, quorum_ledger: BridgeLedger):
        transfer = await new_transfer(quorum_ledger)
        await quorum_ledger.attest(transfer.id, RELAYER_A)

        with pytest.raises(AlreadyAttested):
            await quorum_ledger.attest(transfer.id, RELAYER_A.upper().replace("0X", "0x"))

    @pytest.mark.asyncio
    async def test_count_matches_attestation_rows(
        self, quorum_ledger: BridgeLedger, ledger_repo: LedgerRepository
    ):
        transfer = await new_transfer(quorum_ledger)
        await quorum_ledger.attest(transfer.id, RELAYER_A)
        await quorum_ledger.attest(transfer.id, RELAYER_C)

        relayers = await quorum_ledger.get_attestations(transfer.id)
        found = await quorum_ledger.lookup(transfer.id)

        assert relayers == [RELAYER_A, RELAYER_C]
        assert found.confirmation_count == len(relayers)
        assert await ledger_repo.count_attestations(transfer.id) == 2
        assert await quorum_ledger.has_attested(transfer.id, RELAYER_C)
        assert not await quorum_ledger.has_attested(transfer.id, RELAYER_B)

    @pytest.mark.asyncio
    async def test_events_emitted(self, quorum_ledger: BridgeLedger):
        transfer = await new_transfer(quorum_ledger)
        start = await quorum_ledger.latest_position() + 1

        await quorum_ledger.attest(transfer.id, RELAYER_A)
        await quorum_ledger.attest(transfer.id, RELAYER_B)

        events = await quorum_ledger.get_events(start)
        kinds = [e.event_type for e in events]
        assert kinds == [
            BridgeEventType.RELAYER_CONFIRMED.value,
            BridgeEventType.RELAYER_CONFIRMED.value,
            BridgeEventType.COMPLETED.value,
        ]
        assert json.loads(events[1].payload)["confirmation_count"] == 2
        assert json.loads(events[2].payload) == {"transfer_id": transfer.id}

    @pytest.mark.asyncio
    async def test_removed_relayer_cannot_attest(self, quorum_ledger: BridgeLedger):
        transfer = await new_transfer(quorum_ledger)
        await quorum_ledger.remove_relayer(ADMIN, RELAYER_B)

        with pytest.raises(Unauthorized):
            await quorum_ledger.attest(transfer.id, RELAYER_B)


class TestThresholdChanges:
    """The threshold is read when each attestation is applied."""

    @pytest.mark.asyncio
    async def test_lowered_threshold_applies_to_in_flight(self, quorum_ledger: BridgeLedger):
        first = await new_transfer(quorum_ledger)
        second = await new_transfer(quorum_ledger)
        await quorum_ledger.attest(first.id, RELAYER_A)

        policy = await quorum_ledger.get_policy()
        await quorum_ledger.update_policy(
            ADMIN,
            BridgePolicy(
                min_amount=policy.min_amount,
                max_amount=policy.max_amount,
                fee_basis_points=policy.fee_basis_points,
                relayer_threshold=1,
            ),
        )

        # First stays pending until the next attestation arrives
        assert (await quorum_ledger.lookup(first.id)).status == TransferStatus.PENDING
        assert (await quorum_ledger.attest(first.id, RELAYER_B)).status == TransferStatus.COMPLETED
        assert (await quorum_ledger.attest(second.id, RELAYER_C)).status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_raised_threshold_delays_completion(self, quorum_ledger: BridgeLedger):
        transfer = await new_transfer(quorum_ledger)
        policy = await quorum_ledger.get_policy()
        await quorum_ledger.update_policy(
            ADMIN,
            BridgePolicy(
                min_amount=policy.min_amount,
                max_amount=policy.max_amount,
                fee_basis_points=policy.fee_basis_points,
                relayer_threshold=3,
            ),
        )

        await quorum_ledger.attest(transfer.id, RELAYER_A)
        pending = await quorum_ledger.attest(transfer.id, RELAYER_B)
        assert pending.status == TransferStatus.PENDING

        done = await quorum_ledger.attest(transfer.id, RELAYER_C)
        assert done.status == TransferStatus.COMPLETED
        assert done.confirmation_count == 3
