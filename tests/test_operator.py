"""Tests for the operator interface: policy, roles, pause and fees."""

import json
from decimal import Decimal

import pytest

from conftest import ADMIN, RELAYER_A, RELAYER_B, TOKEN, TON_RECIPIENT, USER
from tonbridge.constants import NATIVE_ASSET
from tonbridge.exceptions import (
    BridgeDisabled,
    BridgePaused,
    InvalidConfiguration,
    InvalidPolicy,
    Unauthorized,
)
from tonbridge.ledger.models import BridgeEventType, Role
from tonbridge.ledger.service import BridgeLedger
from tonbridge.policy import BridgePolicy

COLLECTOR = "0xfee0000000000000000000000000000000000001"
SECOND_ADMIN = "0xad00000000000000000000000000000000000002"


def policy_with(base: BridgePolicy, **overrides) -> BridgePolicy:
    values = base.to_dict()
    values.update(
        min_amount=Decimal(values["min_amount"]),
        max_amount=Decimal(values["max_amount"]),
    )
    values.update(overrides)
    return BridgePolicy(**values)


class TestPolicyUpdates:
    """Tests for update_policy."""

    @pytest.mark.asyncio
    async def test_update_policy(self, ledger: BridgeLedger):
        current = await ledger.get_policy()
        updated = policy_with(current, fee_basis_points=50, max_amount=Decimal("2000"))

        await ledger.update_policy(ADMIN, updated)

        assert await ledger.get_policy() == updated
        state = await ledger.get_state()
        assert state.policy_version == 2

    @pytest.mark.asyncio
    async def test_new_fee_applies_to_new_requests(self, ledger: BridgeLedger):
        await ledger.update_policy(ADMIN, policy_with(await ledger.get_policy(), fee_basis_points=100))

        transfer = await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))

        assert transfer.fee == Decimal("0.01")
        assert transfer.net_amount == Decimal("0.99")

    @pytest.mark.asyncio
    async def test_invalid_policy_is_not_stored(self, ledger: BridgeLedger):
        before = await ledger.get_policy()

        with pytest.raises(InvalidPolicy):
            await ledger.update_policy(
                ADMIN, policy_with(before, min_amount=Decimal("5"), max_amount=Decimal("1"))
            )
        with pytest.raises(InvalidPolicy):
            await ledger.update_policy(ADMIN, policy_with(before, fee_basis_points=1001))
        with pytest.raises(InvalidPolicy):
            await ledger.update_policy(ADMIN, policy_with(before, relayer_threshold=0))

        assert await ledger.get_policy() == before
        assert (await ledger.get_state()).policy_version == 1

    @pytest.mark.asyncio
    async def test_non_admin_cannot_update(self, ledger: BridgeLedger):
        with pytest.raises(Unauthorized):
            await ledger.update_policy(USER, await ledger.get_policy())

    @pytest.mark.asyncio
    async def test_disabled_policy_blocks_requests(self, ledger: BridgeLedger):
        await ledger.update_policy(ADMIN, policy_with(await ledger.get_policy(), enabled=False))

        with pytest.raises(BridgeDisabled):
            await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))

    @pytest.mark.asyncio
    async def test_policy_event_logged(self, ledger: BridgeLedger):
        await ledger.update_policy(ADMIN, policy_with(await ledger.get_policy(), fee_basis_points=10))

        events = await ledger.get_events(1, event_type=BridgeEventType.POLICY_UPDATED)
        assert len(events) == 2
        payload = json.loads(events[-1].payload)
        assert payload["fee_basis_points"] == 10
        assert payload["version"] == 2


class TestSupportedAssets:
    @pytest.mark.asyncio
    async def test_native_supported_by_default(self, ledger: BridgeLedger):
        assert await ledger.is_supported(NATIVE_ASSET)
        assert not await ledger.is_supported(TOKEN)

    @pytest.mark.asyncio
    async def test_add_and_remove_token(self, ledger: BridgeLedger):
        await ledger.set_supported_asset(ADMIN, TOKEN, True)
        assert await ledger.supported_assets() == sorted([NATIVE_ASSET, TOKEN])

        await ledger.set_supported_asset(ADMIN, TOKEN, False)
        assert await ledger.supported_assets() == [NATIVE_ASSET]

    @pytest.mark.asyncio
    async def test_token_request_pulls_exact_amount(self, ledger: BridgeLedger):
        await ledger.set_supported_asset(ADMIN, TOKEN, True)
        await ledger.credit_account(USER, TOKEN, Decimal("10"))

        transfer = await ledger.request(USER, TON_RECIPIENT, TOKEN, Decimal("4"))

        assert transfer.asset == TOKEN
        assert await ledger.balance_of(USER, TOKEN) == Decimal("6")
        assert await ledger.custody_balance(TOKEN) == Decimal("4")

    @pytest.mark.asyncio
    async def test_non_admin_cannot_change_assets(self, ledger: BridgeLedger):
        with pytest.raises(Unauthorized):
            await ledger.set_supported_asset(USER, TOKEN, True)


class TestRoles:
    """Tests for role grants and revocations."""

    @pytest.mark.asyncio
    async def test_add_relayer(self, ledger: BridgeLedger):
        assert await ledger.add_relayer(ADMIN, RELAYER_B) is True
        assert await ledger.add_relayer(ADMIN, RELAYER_B) is False

        assert await ledger.get_role_members(Role.RELAYER) == [RELAYER_A, RELAYER_B]

    @pytest.mark.asyncio
    async def test_remove_relayer(self, ledger: BridgeLedger):
        assert await ledger.remove_relayer(ADMIN, RELAYER_A) is True
        assert await ledger.remove_relayer(ADMIN, RELAYER_A) is False
        assert not await ledger.has_role(Role.RELAYER, RELAYER_A)

    @pytest.mark.asyncio
    async def test_zero_identity_rejected(self, ledger: BridgeLedger):
        with pytest.raises(InvalidConfiguration):
            await ledger.add_relayer(ADMIN, "0x0000000000000000000000000000000000000000")
        with pytest.raises(InvalidConfiguration):
            await ledger.add_relayer(ADMIN, "   ")

    @pytest.mark.asyncio
    async def test_non_admin_cannot_grant(self, ledger: BridgeLedger):
        with pytest.raises(Unauthorized):
            await ledger.grant_role(RELAYER_A, Role.ADMIN, RELAYER_A)

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_revoked(self, ledger: BridgeLedger):
        with pytest.raises(InvalidConfiguration):
            await ledger.revoke_role(ADMIN, Role.ADMIN, ADMIN)

        assert await ledger.has_role(Role.ADMIN, ADMIN)

    @pytest.mark.asyncio
    async def test_admin_handover(self, ledger: BridgeLedger):
        await ledger.grant_role(ADMIN, Role.ADMIN, SECOND_ADMIN)

        assert await ledger.revoke_role(SECOND_ADMIN, Role.ADMIN, ADMIN) is True

        assert await ledger.get_role_members(Role.ADMIN) == [SECOND_ADMIN]
        with pytest.raises(Unauthorized):
            await ledger.update_policy(ADMIN, await ledger.get_policy())

    @pytest.mark.asyncio
    async def test_role_events(self, ledger: BridgeLedger):
        start = await ledger.latest_position() + 1
        await ledger.add_relayer(ADMIN, RELAYER_B)
        await ledger.remove_relayer(ADMIN, RELAYER_B)

        events = await ledger.get_events(start)
        assert [e.event_type for e in events] == [
            BridgeEventType.ROLE_GRANTED.value,
            BridgeEventType.ROLE_REVOKED.value,
        ]
        assert json.loads(events[0].payload) == {"identity": RELAYER_B, "role": "relayer"}


class TestPause:
    """Tests for the emergency pause."""

    @pytest.mark.asyncio
    async def test_pause_and_unpause(self, ledger: BridgeLedger):
        assert await ledger.pause(ADMIN) is True
        assert await ledger.is_paused()

        assert await ledger.unpause(ADMIN) is True
        assert not await ledger.is_paused()

    @pytest.mark.asyncio
    async def test_pause_is_idempotent(self, ledger: BridgeLedger):
        await ledger.pause(ADMIN)
        position = await ledger.latest_position()

        assert await ledger.pause(ADMIN) is False
        assert await ledger.latest_position() == position

        await ledger.unpause(ADMIN)
        assert await ledger.unpause(ADMIN) is False

    @pytest.mark.asyncio
    async def test_pauser_role_required(self, ledger: BridgeLedger):
        with pytest.raises(Unauthorized):
            await ledger.pause(USER)

        await ledger.grant_role(ADMIN, Role.PAUSER, USER)
        assert await ledger.pause(USER) is True

    @pytest.mark.asyncio
    async def test_pause_keeps_lookups_working(self, ledger: BridgeLedger):
        transfer = await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))
        await ledger.pause(ADMIN)

        with pytest.raises(BridgePaused):
            await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))

        found = await ledger.lookup(transfer.id)
        assert found is not None
        assert found.id == transfer.id


class TestFees:
    """Tests for fee accounting and withdrawal."""

    @pytest.mark.asyncio
    async def test_fees_accumulate(self, ledger: BridgeLedger):
        for _ in range(3):
            await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))

        assert await ledger.collected_fees(NATIVE_ASSET) == Decimal("0.009")

    @pytest.mark.asyncio
    async def test_withdraw_to_fee_collector(self, ledger: BridgeLedger):
        await ledger.set_fee_collector(ADMIN, COLLECTOR)
        await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("10"), Decimal("10"))

        withdrawn = await ledger.withdraw_fees(ADMIN)

        assert withdrawn == Decimal("0.03")
        assert await ledger.balance_of(COLLECTOR) == Decimal("0.03")
        assert await ledger.collected_fees() == Decimal("0")
        assert await ledger.custody_balance() == Decimal("9.97")

        summary = await ledger.fee_summary()
        assert summary[0].total_withdrawn == Decimal("0.03")

    @pytest.mark.asyncio
    async def test_withdraw_with_nothing_collected(self, ledger: BridgeLedger):
        position = await ledger.latest_position()

        assert await ledger.withdraw_fees(ADMIN) == Decimal("0")
        assert await ledger.latest_position() == position

    @pytest.mark.asyncio
    async def test_withdraw_requires_admin(self, ledger: BridgeLedger):
        await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))

        with pytest.raises(Unauthorized):
            await ledger.withdraw_fees(USER)

        assert await ledger.collected_fees() == Decimal("0.003")

    @pytest.mark.asyncio
    async def test_fee_collector_defaults_to_admin(self, ledger: BridgeLedger):
        state = await ledger.get_state()
        assert state.fee_collector == ADMIN

    @pytest.mark.asyncio
    async def test_fee_collector_must_be_valid(self, ledger: BridgeLedger):
        with pytest.raises(InvalidConfiguration):
            await ledger.set_fee_collector(ADMIN, "")
