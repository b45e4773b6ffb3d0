"""Shared identifiers used across the ledger and the relayer."""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Native asset (POL on Polygon) is identified by the zero address
NATIVE_ASSET = ZERO_ADDRESS

# Account holding funds in bridge custody
CUSTODY_ACCOUNT = "bridge:custody"

# Current persistent schema version (see alembic/versions)
SCHEMA_VERSION = 1


def normalize_identity(value: str) -> str:
    """Normalize an account, relayer or asset identifier.

    EVM addresses are case-insensitive, so identities are compared lowercased.
    """
    return value.strip().lower()
