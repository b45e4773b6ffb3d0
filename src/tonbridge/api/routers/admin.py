"""Operator API endpoints (token-protected).

Every mutating endpoint also runs the ledger's role check against the caller
identity, so the admin token alone does not grant ledger capabilities.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from tonbridge.api.deps import get_caller, get_ledger, require_admin_token
from tonbridge.api.schemas import (
    AssetPayload,
    CreditPayload,
    FeeCollectorPayload,
    PolicyPayload,
    RolePayload,
    TransferResponse,
    WithdrawFeesPayload,
)
from tonbridge.config import get_settings
from tonbridge.ledger.models import Role
from tonbridge.ledger.service import BridgeLedger
from tonbridge.quorum import TransferStatus

router = APIRouter(prefix="/admin", tags=["admin"])


def _parse_role(value: str) -> Role:
    try:
        return Role(value.lower())
    except ValueError:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown role {value}; expected one of {[r.value for r in Role]}",
        )


@router.get("/state")
async def get_state(
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Ledger state summary."""
    state = await ledger.get_state()
    return {
        "admin": state.admin,
        "fee_collector": state.fee_collector,
        "nonce": state.nonce,
        "paused": state.paused,
        "policy_version": state.policy_version,
        "schema_version": state.schema_version,
        "max_fee_basis_points": state.max_fee_basis_points,
        "latest_position": await ledger.latest_position(),
        "relayers": await ledger.get_role_members(Role.RELAYER),
    }


@router.put("/policy")
async def update_policy(
    payload: PolicyPayload,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Replace the bridge policy."""
    policy = await ledger.update_policy(caller, payload.to_policy())
    return {"success": True, "policy": policy.to_dict()}


@router.post("/assets")
async def set_supported_asset(
    payload: AssetPayload,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    await ledger.set_supported_asset(caller, payload.asset, payload.supported)
    return {"success": True, "asset": payload.asset.lower(), "supported": payload.supported}


@router.get("/roles/{role}")
async def get_role_members(
    role: str,
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    parsed = _parse_role(role)
    return {"role": parsed.value, "members": await ledger.get_role_members(parsed)}


@router.post("/roles")
async def grant_role(
    payload: RolePayload,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Grant a role (relayer, pauser, admin)."""
    granted = await ledger.grant_role(caller, _parse_role(payload.role), payload.identity)
    return {"success": True, "changed": granted}


@router.delete("/roles/{role}/{identity}")
async def revoke_role(
    role: str,
    identity: str,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    revoked = await ledger.revoke_role(caller, _parse_role(role), identity)
    return {"success": True, "changed": revoked}


@router.post("/pause")
async def pause(
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Pause requests, attestations and releases."""
    changed = await ledger.pause(caller)
    return {"success": True, "paused": True, "changed": changed}


@router.post("/unpause")
async def unpause(
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    changed = await ledger.unpause(caller)
    return {"success": True, "paused": False, "changed": changed}


@router.get("/fees")
async def get_fees(
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> list[dict]:
    """Collected fees per asset."""
    return [
        {
            "asset": record.asset,
            "collected": str(record.amount),
            "withdrawn": str(record.total_withdrawn),
        }
        for record in await ledger.fee_summary()
    ]


@router.post("/fees/withdraw")
async def withdraw_fees(
    payload: WithdrawFeesPayload,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Withdraw collected fees to the fee collector (or an explicit address)."""
    amount = await ledger.withdraw_fees(caller, payload.asset, payload.to)
    return {"success": True, "asset": payload.asset.lower(), "amount": str(amount)}


@router.put("/fee-collector")
async def set_fee_collector(
    payload: FeeCollectorPayload,
    caller: str = Depends(get_caller),
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    await ledger.set_fee_collector(caller, payload.fee_collector)
    return {"success": True, "fee_collector": payload.fee_collector.lower()}


@router.get("/transfers")
async def list_transfers(
    status: Optional[TransferStatus] = None,
    sender: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """List transfers, newest first."""
    transfers = await ledger.list_transfers(status=status, sender=sender, limit=limit, offset=offset)
    return {
        "transfers": [TransferResponse.from_transfer(t).model_dump(mode="json") for t in transfers],
        "limit": limit,
        "offset": offset,
    }


@router.post("/accounts/credit")
async def credit_account(
    payload: CreditPayload,
    _: bool = Depends(require_admin_token),
    ledger: BridgeLedger = Depends(get_ledger),
) -> dict:
    """Credit an account balance (testing only).

    Disabled in production; real funds enter through the source chain.
    """
    if get_settings().is_production:
        raise HTTPException(status_code=403, detail="Account crediting is disabled in production")

    balance = await ledger.credit_account(payload.account, payload.asset, payload.amount)
    return {"success": True, "account": payload.account.lower(), "balance": str(balance)}
