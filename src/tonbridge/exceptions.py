"""Bridge error kinds.

Every rejection raised by the ledger carries a stable ``code`` (used on the
wire by the HTTP API) and the HTTP status it maps to. A rejected operation
never leaves partial state behind.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all ledger rejections."""

    code = "bridge_error"
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InsufficientAmount(BridgeError):
    """Amount is below the bridge minimum."""

    code = "insufficient_amount"


class ExceedsMaxAmount(BridgeError):
    """Amount is above the bridge maximum."""

    code = "exceeds_max_amount"


class InvalidAmount(BridgeError):
    """Amount must be positive."""

    code = "invalid_amount"


class UnsupportedAsset(BridgeError):
    """Asset is not on the supported list."""

    code = "unsupported_asset"


class InvalidRecipient(BridgeError):
    """Destination recipient must not be empty."""

    code = "invalid_recipient"


class InvalidReference(BridgeError):
    """Foreign transaction reference must not be empty."""

    code = "invalid_reference"


class BridgeDisabled(BridgeError):
    """Bridge policy does not accept new requests."""

    code = "bridge_disabled"
    status_code = 503


class BridgePaused(BridgeError):
    """Bridge is paused."""

    code = "bridge_paused"
    status_code = 503


class InsufficientFunds(BridgeError):
    """Funds attached or available do not cover the amount."""

    code = "insufficient_funds"


class TransferNotFound(BridgeError):
    """Transfer does not exist."""

    code = "not_found"
    status_code = 404


class AlreadyCompleted(BridgeError):
    """Transfer is already completed."""

    code = "already_completed"
    status_code = 409


class AlreadyAttested(BridgeError):
    """Relayer already attested this transfer."""

    code = "already_attested"
    status_code = 409


class AlreadyReleased(BridgeError):
    """Foreign transaction reference was already released."""

    code = "already_released"
    status_code = 409


class Unauthorized(BridgeError):
    """Caller lacks the required role."""

    code = "unauthorized"
    status_code = 403


class InvalidPolicy(BridgeError):
    """Bridge policy is not valid."""

    code = "invalid_policy"


class InvalidConfiguration(BridgeError):
    """Ledger configuration is not valid."""

    code = "invalid_configuration"


class AlreadyInitialized(BridgeError):
    """Ledger is already initialized."""

    code = "already_initialized"
    status_code = 409


class NotInitialized(BridgeError):
    """Ledger has not been initialized."""

    code = "not_initialized"
    status_code = 503


ERRORS_BY_CODE: dict[str, type[BridgeError]] = {
    cls.code: cls
    for cls in (
        InsufficientAmount,
        ExceedsMaxAmount,
        InvalidAmount,
        UnsupportedAsset,
        InvalidRecipient,
        InvalidReference,
        BridgeDisabled,
        BridgePaused,
        InsufficientFunds,
        TransferNotFound,
        AlreadyCompleted,
        AlreadyAttested,
        AlreadyReleased,
        Unauthorized,
        InvalidPolicy,
        InvalidConfiguration,
        AlreadyInitialized,
        NotInitialized,
    )
}


def error_from_code(code: str, message: Optional[str] = None) -> BridgeError:
    """Rebuild a bridge error from its wire code."""
    cls = ERRORS_BY_CODE.get(code, BridgeError)
    return cls(message)
