"""Utility modules for tonbridge."""

from tonbridge.utils.locks import LedgerLock, LockTimeoutError

__all__ = ["LedgerLock", "LockTimeoutError"]
