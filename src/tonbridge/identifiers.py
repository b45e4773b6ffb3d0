"""Deterministic transfer and release identifiers.

Every field is length-prefixed before hashing, so no two distinct inputs
serialize to the same byte string (a recipient ending in digits cannot bleed
into the amount that follows it).
"""

import hashlib
from decimal import Decimal
from typing import Union

from tonbridge.policy import to_base_units

TRANSFER_DOMAIN = b"tonbridge.transfer.v1"
RELEASE_DOMAIN = b"tonbridge.release.v1"

Field = Union[str, int, bytes]


def _encode(value: Field) -> bytes:
    if isinstance(value, bytes):
        raw = value
    elif isinstance(value, int):
        raw = str(value).encode("ascii")
    else:
        raw = value.encode("utf-8")
    return len(raw).to_bytes(4, "big") + raw


def _digest(*fields: Field) -> str:
    hasher = hashlib.sha256()
    for value in fields:
        hasher.update(_encode(value))
    return "0x" + hasher.hexdigest()


def derive_transfer_id(
    sender: str,
    destination_recipient: str,
    asset: str,
    amount: Decimal,
    nonce: int,
    timestamp: int,
) -> str:
    """Derive the id of a new transfer.

    The ledger nonce alone makes ids unique; the timestamp decorrelates ids
    from values a caller could compute in advance.
    """
    return _digest(
        TRANSFER_DOMAIN,
        sender,
        destination_recipient,
        asset,
        to_base_units(amount),
        nonce,
        timestamp,
    )


def derive_release_id(source_tx_ref: str) -> str:
    """Derive the replay-guard id of a reverse-direction release.

    Depends only on the foreign transaction reference, so replaying a
    reference with different amounts or recipients maps to the same id.
    """
    return _digest(RELEASE_DOMAIN, source_tx_ref.strip())


def is_transfer_id(value: str) -> bool:
    """Check that a value has the shape of a derived id."""
    if len(value) != 66 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True
