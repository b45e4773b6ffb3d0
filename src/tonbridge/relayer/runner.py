"""Relayer reconciliation loop.

Watches the ledger's event log for accepted transfers, pays each one on the
destination chain and attests it back to the ledger.

Usage:
    python -m tonbridge.relayer.runner --interval 10
    python -m tonbridge.relayer.runner --once

Environment variables:
    RELAYER_IDENTITY: Identity the relayer attests as
    RELAYER_API_KEY: API key sent to the ledger API
    BRIDGE_API_URL: URL of the ledger API (default: http://127.0.0.1:8000)
    RELAYER_DATABASE_URL: Database holding the cursor and outstanding transfers
    POLL_INTERVAL: Seconds between cycles (default: 10)
"""

import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from tonbridge.exceptions import AlreadyAttested, AlreadyCompleted, BridgeError
from tonbridge.ledger.models import OutstandingStage
from tonbridge.payments.base import PaymentError, PaymentExecutor
from tonbridge.relayer.base import BridgeClient, RequestEvent, TransferRecord
from tonbridge.relayer.retry import RetryExhausted, RetryPolicy, call_with_retry
from tonbridge.relayer.state import RelayerStateStore
from tonbridge.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (PaymentError, httpx.HTTPError, LockTimeoutError)


@dataclass
class CycleResult:
    """Summary of one reconciliation cycle."""
    scanned_from: Optional[int] = None
    scanned_to: Optional[int] = None
    attested: int = 0
    skipped: int = 0
    deferred: int = 0
    recovered: int = 0


class ReconciliationLoop:
    """Pays and attests accepted transfers for one relayer identity."""

    def __init__(
        self,
        client: BridgeClient,
        executor: PaymentExecutor,
        state: RelayerStateStore,
        relayer: str,
        poll_interval: float = 10.0,
        start_position: Optional[int] = None,
        max_range: int = 1000,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the loop.

        Args:
            client: Ledger client (local or HTTP)
            executor: Destination payment executor
            state: Cursor and outstanding-transfer storage
            relayer: Identity the loop attests as
            poll_interval: Seconds between cycles
            start_position: First position scanned on first run (default: latest)
            max_range: Maximum positions scanned per cycle
            retry_policy: Backoff applied to payments and attestations
            sleep: Sleep used between retries
        """
        self.client = client
        self.executor = executor
        self.state = state
        self.relayer = relayer
        self.poll_interval = poll_interval
        self.start_position = start_position
        self.max_range = max(1, max_range)
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._running = False
        self._wakeup = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def _initial_cursor(self, latest: int) -> int:
        if self.start_position is not None:
            return max(self.start_position - 1, 0)
        return latest

    async def run_cycle(self) -> CycleResult:
        """Run a single reconciliation cycle.

        The cursor moves past a range only after every event in it was either
        resolved or recorded as outstanding.
        """
        result = CycleResult()
        await self._retry_outstanding(result)

        latest = await self.client.latest_position()
        cursor = await self.state.get_cursor()
        if cursor is None:
            cursor = self._initial_cursor(latest)
            await self.state.set_cursor(cursor)
            logger.info(f"Relayer {self.relayer} starting after position {cursor}")

        if latest <= cursor:
            return result

        from_position = cursor + 1
        to_position = min(latest, cursor + self.max_range)
        result.scanned_from, result.scanned_to = from_position, to_position

        events = await self.client.get_request_events(from_position, to_position)
        if events:
            logger.info(f"Found {len(events)} transfer requests in {from_position}..{to_position}")

        for event in events:
            await self._process_event(event, result)

        await self.state.set_cursor(to_position)
        return result

    async def _process_event(self, event: RequestEvent, result: CycleResult) -> None:
        if await self.state.get(event.transfer_id) is not None:
            logger.debug(f"Transfer {event.transfer_id} is already outstanding")
            return

        try:
            transfer = await self.client.get_transfer(event.transfer_id)
            if transfer is None:
                logger.warning(f"Transfer {event.transfer_id} from event {event.position} not found")
                result.skipped += 1
                return
            if transfer.is_completed or await self.client.has_attested(
                transfer.transfer_id, self.relayer
            ):
                result.skipped += 1
                return
        except httpx.HTTPError as e:
            await self._defer(event.transfer_id, event.position, OutstandingStage.PAYMENT, None, e)
            result.deferred += 1
            return

        if await self._settle(transfer, event.position, payment_reference=None):
            result.attested += 1
        else:
            result.deferred += 1

    async def _retry_outstanding(self, result: CycleResult) -> None:
        for record in await self.state.get_outstanding():
            try:
                transfer = await self.client.get_transfer(record.transfer_id)
                if transfer is None:
                    logger.warning(f"Outstanding transfer {record.transfer_id} no longer exists")
                    await self.state.resolve(record.transfer_id)
                    continue
                if transfer.is_completed or await self.client.has_attested(
                    transfer.transfer_id, self.relayer
                ):
                    await self.state.resolve(record.transfer_id)
                    result.recovered += 1
                    continue
            except httpx.HTTPError as e:
                logger.warning(f"Could not re-read outstanding {record.transfer_id}: {e}")
                continue

            reference = (
                record.payment_reference
                if record.stage == OutstandingStage.ATTESTATION.value
                else None
            )
            if await self._settle(transfer, record.position, payment_reference=reference):
                await self.state.resolve(record.transfer_id)
                result.recovered += 1

    async def _settle(
        self,
        transfer: TransferRecord,
        position: int,
        payment_reference: Optional[str],
    ) -> bool:
        """Pay (unless already paid) and attest one transfer.

        Returns True when the transfer is resolved for this relayer.
        """
        transfer_id = transfer.transfer_id

        if payment_reference is None:
            try:
                payment = await call_with_retry(
                    lambda: self.executor.pay(
                        transfer.destination_recipient, transfer.net_amount, transfer_id
                    ),
                    self.retry_policy,
                    retry_on=TRANSIENT_ERRORS,
                    description=f"Payment for {transfer_id}",
                    sleep=self._sleep,
                )
            except RetryExhausted as e:
                await self._defer(transfer_id, position, OutstandingStage.PAYMENT, None, e)
                return False
            if not payment.success:
                await self._defer(
                    transfer_id, position, OutstandingStage.PAYMENT, None, payment.error
                )
                return False
            payment_reference = payment.reference_id
            logger.info(f"Paid {transfer.net_amount} for {transfer_id} (ref: {payment_reference})")

        try:
            await call_with_retry(
                lambda: self.client.attest(transfer_id, self.relayer),
                self.retry_policy,
                retry_on=TRANSIENT_ERRORS,
                description=f"Attestation of {transfer_id}",
                sleep=self._sleep,
            )
        except (AlreadyAttested, AlreadyCompleted) as e:
            logger.info(f"Transfer {transfer_id} already resolved: {e}")
            return True
        except (RetryExhausted, BridgeError) as e:
            await self._defer(
                transfer_id, position, OutstandingStage.ATTESTATION, payment_reference, e
            )
            return False

        logger.info(f"Attested transfer {transfer_id} as {self.relayer}")
        return True

    async def _defer(
        self,
        transfer_id: str,
        position: int,
        stage: OutstandingStage,
        payment_reference: Optional[str],
        error: object,
    ) -> None:
        logger.error(f"Deferring transfer {transfer_id} at {stage.value} stage: {error}")
        await self.state.mark_outstanding(
            transfer_id, position, stage, payment_reference=payment_reference, error=str(error)
        )

    async def run(self) -> None:
        """Run cycles until stopped."""
        logger.info(
            f"Starting relayer {self.relayer} "
            f"(interval: {self.poll_interval}s, max_range: {self.max_range})"
        )
        self._running = True
        self._wakeup.clear()

        while self._running:
            try:
                result = await self.run_cycle()
                if result.attested or result.deferred or result.recovered:
                    logger.info(
                        f"Cycle done: {result.attested} attested, {result.deferred} deferred, "
                        f"{result.recovered} recovered"
                    )
            except Exception as e:
                logger.error(f"Relayer cycle error: {e}")

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Relayer {self.relayer} stopped")

    def stop(self) -> None:
        """Stop after the in-flight cycle finishes."""
        self._running = False
        self._wakeup.set()


def build_retry_policy(settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.payment_max_attempts,
        base_delay=settings.payment_base_delay,
        max_delay=settings.payment_max_delay,
    )


async def main():
    """Main entry point for a standalone relayer."""
    from tonbridge.config import get_settings
    from tonbridge.ledger.database import create_engine, create_session_factory, init_db
    from tonbridge.payments.factory import get_payment_executor
    from tonbridge.relayer.http import HttpBridgeClient

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the bridge relayer")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.poll_interval,
        help=f"Seconds between cycles (default: {settings.poll_interval})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one cycle and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not settings.relayer_identity:
        parser.error("RELAYER_IDENTITY must be set")

    engine = create_engine(settings.relayer_database_url or settings.database_url)
    await init_db(engine)

    client = HttpBridgeClient(
        settings.bridge_api_url,
        api_key=settings.relayer_api_key,
        identity=settings.relayer_identity,
    )
    executor = get_payment_executor(settings)
    loop = ReconciliationLoop(
        client=client,
        executor=executor,
        state=RelayerStateStore(settings.relayer_identity, create_session_factory(engine)),
        relayer=settings.relayer_identity,
        poll_interval=args.interval,
        start_position=settings.start_position,
        max_range=settings.max_range,
        retry_policy=build_retry_policy(settings),
    )

    try:
        if args.once:
            result = await loop.run_cycle()
            print(
                f"Scanned {result.scanned_from}..{result.scanned_to}: "
                f"{result.attested} attested, {result.deferred} deferred, "
                f"{result.recovered} recovered"
            )
        else:
            event_loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                event_loop.add_signal_handler(sig, loop.stop)
            await loop.run()
    finally:
        await client.close()
        await executor.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
