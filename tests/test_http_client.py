"""Tests for the HTTP ledger client against the real API app."""

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import RELAYER_A, RELAYER_B, TON_RECIPIENT, USER
from tonbridge.api.app import create_app
from tonbridge.constants import NATIVE_ASSET
from tonbridge.exceptions import AlreadyCompleted, Unauthorized
from tonbridge.payments.simulated import SimulatedPaymentExecutor
from tonbridge.quorum import TransferStatus
from tonbridge.relayer.http import HttpBridgeClient
from tonbridge.relayer.retry import RetryPolicy
from tonbridge.relayer.runner import ReconciliationLoop
from tonbridge.relayer.state import RelayerStateStore


@pytest_asyncio.fixture
async def asgi_client(ledger):
    app = create_app(ledger)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def bridge_client(asgi_client, identity: str = RELAYER_A) -> HttpBridgeClient:
    return HttpBridgeClient("http://test", identity=identity, client=asgi_client)


async def request_transfer(ledger):
    return await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal("1"), Decimal("1"))


class TestHttpBridgeClient:
    """Tests for HttpBridgeClient."""

    @pytest.mark.asyncio
    async def test_reads_events_and_transfers(self, ledger, asgi_client):
        transfer = await request_transfer(ledger)
        client = bridge_client(asgi_client)

        latest = await client.latest_position()
        events = await client.get_request_events(1, latest)
        record = await client.get_transfer(transfer.id)

        assert latest == await ledger.latest_position()
        assert [e.transfer_id for e in events] == [transfer.id]
        assert events[0].net_amount == Decimal("0.997")
        assert record.destination_recipient == TON_RECIPIENT
        assert record.status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_transfer_is_none(self, asgi_client):
        assert await bridge_client(asgi_client).get_transfer("0x" + "00" * 32) is None

    @pytest.mark.asyncio
    async def test_attest_and_errors(self, ledger, asgi_client):
        transfer = await request_transfer(ledger)

        record = await bridge_client(asgi_client).attest(transfer.id, RELAYER_A)
        assert record.is_completed
        assert await bridge_client(asgi_client).has_attested(transfer.id, RELAYER_A)

        with pytest.raises(AlreadyCompleted):
            await bridge_client(asgi_client).attest(transfer.id, RELAYER_A)

    @pytest.mark.asyncio
    async def test_rejections_are_rebuilt(self, ledger, asgi_client):
        transfer = await request_transfer(ledger)

        with pytest.raises(Unauthorized):
            await bridge_client(asgi_client, identity=RELAYER_B).attest(transfer.id, RELAYER_B)

    @pytest.mark.asyncio
    async def test_loop_over_http(self, ledger, asgi_client, session_factory):
        transfer = await request_transfer(ledger)
        executor = SimulatedPaymentExecutor()
        loop = ReconciliationLoop(
            client=bridge_client(asgi_client),
            executor=executor,
            state=RelayerStateStore(RELAYER_A, session_factory),
            relayer=RELAYER_A,
            start_position=1,
            retry_policy=RetryPolicy(max_attempts=1),
        )

        result = await loop.run_cycle()

        assert result.attested == 1
        assert len(executor.sent) == 1
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_events_span_several_pages(self, ledger, asgi_client):
        transfers = [await request_transfer(ledger) for _ in range(5)]
        client = HttpBridgeClient(
            "http://test", identity=RELAYER_A, client=asgi_client, page_size=2
        )

        events = await client.get_request_events(1, await ledger.latest_position())

        assert [e.transfer_id for e in events] == [t.id for t in transfers]

    @pytest.mark.asyncio
    async def test_loop_settles_beyond_one_page(self, ledger, asgi_client, session_factory):
        transfers = [await request_transfer(ledger) for _ in range(5)]
        executor = SimulatedPaymentExecutor()
        state = RelayerStateStore(RELAYER_A, session_factory)
        loop = ReconciliationLoop(
            client=HttpBridgeClient(
                "http://test", identity=RELAYER_A, client=asgi_client, page_size=2
            ),
            executor=executor,
            state=state,
            relayer=RELAYER_A,
            start_position=1,
            max_range=1000,
            retry_policy=RetryPolicy(max_attempts=1),
        )

        result = await loop.run_cycle()

        assert result.attested == 5
        assert len(executor.sent) == 5
        assert await state.get_outstanding() == []
        for transfer in transfers:
            assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED
