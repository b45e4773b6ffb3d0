"""Main entry point - runs the API and, optionally, the relayer."""

import asyncio
import logging
import signal

import uvicorn

from tonbridge.api.app import create_app
from tonbridge.bootstrap import bootstrap_ledger
from tonbridge.config import get_settings
from tonbridge.ledger.database import close_db, init_db
from tonbridge.ledger.service import BridgeLedger
from tonbridge.payments.factory import get_payment_executor
from tonbridge.relayer.local import LocalBridgeClient
from tonbridge.relayer.runner import ReconciliationLoop, build_retry_policy
from tonbridge.relayer.state import RelayerStateStore

logger = logging.getLogger(__name__)


class Application:
    """Main application that runs the ledger API and the relayer."""

    def __init__(self):
        self.settings = get_settings()
        self.ledger = None
        self.relayer = None
        self.executor = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting tonbridge...")
        logger.info(f"Environment: {self.settings.environment}")

        # Initialize database
        await init_db()
        logger.info("Database initialized")

        self.ledger = BridgeLedger()
        if await bootstrap_ledger(self.ledger, self.settings):
            logger.info("Ledger initialized from settings")

        tasks = []

        # Start relayer if enabled; it shares the ledger (and its lock) in-process
        if self.settings.relayer_enabled:
            if not self.settings.relayer_identity:
                logger.warning("RELAYER_IDENTITY not set - relayer disabled")
            else:
                self.executor = get_payment_executor(self.settings)
                self.relayer = ReconciliationLoop(
                    client=LocalBridgeClient(self.ledger),
                    executor=self.executor,
                    state=RelayerStateStore(self.settings.relayer_identity),
                    relayer=self.settings.relayer_identity,
                    poll_interval=self.settings.poll_interval,
                    start_position=self.settings.start_position,
                    max_range=self.settings.max_range,
                    retry_policy=build_retry_policy(self.settings),
                )
                tasks.append(asyncio.create_task(self._run_relayer()))
                logger.info("Relayer task created")

        # Start API server
        tasks.append(asyncio.create_task(self._run_api()))
        logger.info("API task created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        # Let the relayer finish its in-flight cycle before cancelling
        if self.relayer:
            self.relayer.stop()
            await asyncio.gather(tasks.pop(0), return_exceptions=True)

        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)

        await self._cleanup()

    async def _run_relayer(self):
        """Run the reconciliation loop."""
        try:
            await self.relayer.run()
        except asyncio.CancelledError:
            logger.info("Relayer cancelled")
        except Exception as e:
            logger.error(f"Relayer error: {e}")
            raise

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(self.ledger)
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
            # uvicorn handles SIGINT itself; stop the rest once it exits
            self.shutdown()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        if self.executor:
            await self.executor.close()

        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()

    # Setup signal handlers
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
