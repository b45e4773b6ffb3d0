"""Concurrency control for ledger mutations.

Every mutating ledger operation runs under one ledger-wide lock, so shared
counters (nonce, confirmation counts, collected fees) are never observed
half-updated and two requests never read the same nonce.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class LedgerLock:
    """Exclusive lock serializing ledger mutations.

    Example:
        lock = LedgerLock("bridge")
        async with lock.hold("request"):
            # Read state, mutate, commit
            ...
    """

    def __init__(self, name: str = "ledger", timeout: Optional[float] = 30.0):
        """Initialize the lock.

        Args:
            name: Name used in log messages
            timeout: Maximum time to wait for the lock (None = wait forever)
        """
        self.name = name
        self.timeout = timeout
        self._lock = asyncio.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    def hold(self, operation: str = "ledger_operation") -> "_LockHold":
        """Context manager acquiring the lock for one operation."""
        return _LockHold(self, operation)


class _LockHold:
    def __init__(self, owner: LedgerLock, operation: str):
        self.owner = owner
        self.operation = operation
        self._acquired = False

    async def __aenter__(self) -> "_LockHold":
        """Acquire the lock."""
        lock = self.owner._lock
        try:
            if self.owner.timeout:
                await asyncio.wait_for(lock.acquire(), timeout=self.owner.timeout)
            else:
                await lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for {self.owner.name}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for {self.owner.name} after {self.owner.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire {self.owner.name} lock within {self.owner.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired:
            self.owner._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.owner.name}: {self.operation}")
        return False
