"""Tests for the relayer reconciliation loop."""

import asyncio
from decimal import Decimal
from typing import Optional

import httpx
import pytest

from conftest import ADMIN, RELAYER_A, RELAYER_B, TON_RECIPIENT, USER
from tonbridge.constants import NATIVE_ASSET
from tonbridge.ledger.models import OutstandingStage
from tonbridge.ledger.service import BridgeLedger
from tonbridge.payments.base import PaymentError
from tonbridge.payments.simulated import SimulatedPaymentExecutor
from tonbridge.quorum import TransferStatus
from tonbridge.relayer.base import BridgeClient, RequestEvent, TransferRecord
from tonbridge.relayer.local import LocalBridgeClient
from tonbridge.relayer.retry import RetryExhausted, RetryPolicy, call_with_retry
from tonbridge.relayer.runner import ReconciliationLoop
from tonbridge.relayer.state import RelayerStateStore


class CountingClient(BridgeClient):
    """Local client that counts attestations and can fail them."""

    def __init__(self, ledger: BridgeLedger, attest_failures: int = 0):
        self.inner = LocalBridgeClient(ledger)
        self.attest_failures = attest_failures
        self.attest_calls = 0

    async def latest_position(self) -> int:
        return await self.inner.latest_position()

    async def get_request_events(self, from_position: int, to_position: int) -> list[RequestEvent]:
        return await self.inner.get_request_events(from_position, to_position)

    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        return await self.inner.get_transfer(transfer_id)

    async def has_attested(self, transfer_id: str, relayer: str) -> bool:
        return await self.inner.has_attested(transfer_id, relayer)

    async def attest(self, transfer_id: str, relayer: str) -> TransferRecord:
        self.attest_calls += 1
        if self.attest_failures > 0:
            self.attest_failures -= 1
            raise httpx.ConnectError("ledger unreachable")
        return await self.inner.attest(transfer_id, relayer)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_loop(
    client: BridgeClient,
    executor: SimulatedPaymentExecutor,
    session_factory,
    sleep: Optional[RecordingSleep] = None,
    **kwargs,
) -> ReconciliationLoop:
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=30.0))
    return ReconciliationLoop(
        client=client,
        executor=executor,
        state=RelayerStateStore(RELAYER_A, session_factory),
        relayer=RELAYER_A,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


async def request_transfer(ledger: BridgeLedger, amount: str = "1"):
    return await ledger.request(USER, TON_RECIPIENT, NATIVE_ASSET, Decimal(amount), Decimal(amount))


class TestRetryPolicy:
    """Tests for backoff delays and the retry helper."""

    def test_delays_grow_exponentially(self):
        policy = RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=30.0)

        assert [policy.get_delay(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self):
        calls = []

        async def boom():
            calls.append(1)
            raise ValueError("not transient")

        with pytest.raises(ValueError):
            await call_with_retry(boom, RetryPolicy(), retry_on=(PaymentError,), sleep=RecordingSleep())

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhaustion_keeps_last_error(self):
        sleep = RecordingSleep()

        async def always_fails():
            raise PaymentError("node down")

        with pytest.raises(RetryExhausted) as exc_info:
            await call_with_retry(
                always_fails, RetryPolicy(max_attempts=3), retry_on=(PaymentError,), sleep=sleep
            )

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, PaymentError)
        assert sleep.delays == [2.0, 4.0]


class TestReconciliation:
    """Tests for one reconciliation cycle."""

    @pytest.mark.asyncio
    async def test_transient_payment_failures_are_retried(self, ledger, session_factory):
        """Two payment failures then success: one payment, one attestation."""
        transfer = await request_transfer(ledger)
        client = CountingClient(ledger)
        executor = SimulatedPaymentExecutor(fail_times=2)
        sleep = RecordingSleep()
        loop = make_loop(client, executor, session_factory, sleep=sleep, start_position=1)

        result = await loop.run_cycle()

        assert result.attested == 1
        assert result.deferred == 0
        assert executor.calls == 3
        assert executor.sent == [(TON_RECIPIENT, Decimal("0.997"), transfer.id)]
        assert client.attest_calls == 1
        assert sleep.delays == [2.0, 4.0]
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED
        assert await loop.state.get_outstanding() == []

    @pytest.mark.asyncio
    async def test_first_run_starts_after_latest(self, ledger, session_factory):
        await request_transfer(ledger)
        executor = SimulatedPaymentExecutor()
        loop = make_loop(CountingClient(ledger), executor, session_factory)

        result = await loop.run_cycle()

        assert result.attested == 0
        assert await loop.state.get_cursor() == await ledger.latest_position()
        assert executor.calls == 0

        await request_transfer(ledger)
        assert (await loop.run_cycle()).attested == 1

    @pytest.mark.asyncio
    async def test_cursor_survives_restart(self, ledger, session_factory):
        await request_transfer(ledger)
        first_executor = SimulatedPaymentExecutor()
        await make_loop(CountingClient(ledger), first_executor, session_factory, start_position=1).run_cycle()
        assert len(first_executor.sent) == 1

        # A fresh loop with the same identity resumes from the stored cursor
        second_executor = SimulatedPaymentExecutor()
        restarted = make_loop(CountingClient(ledger), second_executor, session_factory, start_position=1)
        result = await restarted.run_cycle()

        assert result.scanned_from is None
        assert second_executor.calls == 0

    @pytest.mark.asyncio
    async def test_max_range_limits_each_cycle(self, ledger, session_factory):
        await request_transfer(ledger)
        await request_transfer(ledger)
        start = await ledger.latest_position() - 1
        loop = make_loop(
            CountingClient(ledger), SimulatedPaymentExecutor(), session_factory,
            start_position=start, max_range=1,
        )

        first = await loop.run_cycle()
        second = await loop.run_cycle()

        assert (first.scanned_from, first.scanned_to, first.attested) == (start, start, 1)
        assert (second.scanned_from, second.scanned_to, second.attested) == (start + 1, start + 1, 1)

    @pytest.mark.asyncio
    async def test_exhausted_payment_is_recovered(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        executor = SimulatedPaymentExecutor(fail_times=3)
        loop = make_loop(CountingClient(ledger), executor, session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.deferred == 1
        outstanding = await loop.state.get_outstanding()
        assert [o.transfer_id for o in outstanding] == [transfer.id]
        assert outstanding[0].stage == OutstandingStage.PAYMENT.value
        assert outstanding[0].payment_reference is None
        # The cursor still moves; the transfer is tracked as outstanding
        assert await loop.state.get_cursor() == await ledger.latest_position()

        retried = await loop.run_cycle()

        assert retried.recovered == 1
        assert await loop.state.get_outstanding() == []
        assert len(executor.sent) == 1
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rejected_payment_is_not_retried(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        executor = SimulatedPaymentExecutor(permanent_failure=True)
        loop = make_loop(CountingClient(ledger), executor, session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.deferred == 1
        assert executor.calls == 1
        record = await loop.state.get(transfer.id)
        assert record.last_error == "Simulated payment rejection"
        assert (await ledger.lookup(transfer.id)).confirmation_count == 0

    @pytest.mark.asyncio
    async def test_attestation_failure_does_not_pay_twice(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        client = CountingClient(ledger, attest_failures=3)
        executor = SimulatedPaymentExecutor()
        loop = make_loop(client, executor, session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.deferred == 1
        record = await loop.state.get(transfer.id)
        assert record.stage == OutstandingStage.ATTESTATION.value
        assert record.payment_reference == executor.payments[transfer.id].reference_id

        retried = await loop.run_cycle()

        assert retried.recovered == 1
        assert executor.calls == 1
        assert len(executor.sent) == 1
        assert client.attest_calls == 4
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_paused_ledger_defers_attestation(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        await ledger.pause(ADMIN)
        client = CountingClient(ledger)
        loop = make_loop(client, SimulatedPaymentExecutor(), session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.deferred == 1
        # Rejections are not transient; one attempt only
        assert client.attest_calls == 1

        await ledger.unpause(ADMIN)
        assert (await loop.run_cycle()).recovered == 1
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_skips_already_attested(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        await ledger.attest(transfer.id, RELAYER_A)
        executor = SimulatedPaymentExecutor()
        loop = make_loop(CountingClient(ledger), executor, session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.skipped == 1
        assert executor.calls == 0

    @pytest.mark.asyncio
    async def test_skips_completed_by_others(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        await ledger.add_relayer(ADMIN, RELAYER_B)
        await ledger.attest(transfer.id, RELAYER_B)
        client = CountingClient(ledger)
        executor = SimulatedPaymentExecutor()
        loop = make_loop(client, executor, session_factory, start_position=1)

        result = await loop.run_cycle()

        assert result.skipped == 1
        assert executor.calls == 0
        assert client.attest_calls == 0

    @pytest.mark.asyncio
    async def test_quorum_of_relayers(self, quorum_ledger, session_factory):
        """Two independent relayers complete a threshold-two transfer."""
        transfer = await request_transfer(quorum_ledger)
        executor = SimulatedPaymentExecutor()

        for relayer in (RELAYER_A, RELAYER_B):
            loop = ReconciliationLoop(
                client=LocalBridgeClient(quorum_ledger),
                executor=executor,
                state=RelayerStateStore(relayer, session_factory),
                relayer=relayer,
                start_position=1,
                sleep=RecordingSleep(),
            )
            assert (await loop.run_cycle()).attested == 1

        final = await quorum_ledger.lookup(transfer.id)
        assert final.status == TransferStatus.COMPLETED
        assert final.confirmation_count == 2
        # Both relayers share the dedupe key, so the destination is paid once
        assert len(executor.sent) == 1


class TestRunLoop:
    """Tests for the long-running loop."""

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, ledger, session_factory):
        transfer = await request_transfer(ledger)
        loop = make_loop(
            CountingClient(ledger), SimulatedPaymentExecutor(), session_factory,
            start_position=1, poll_interval=0.01,
        )

        task = asyncio.create_task(loop.run())
        for _ in range(200):
            if (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)

        assert loop.running
        loop.stop()
        await asyncio.wait_for(task, timeout=2)

        assert not loop.running
        assert (await ledger.lookup(transfer.id)).status == TransferStatus.COMPLETED
