"""Role-based access control owned by the ledger."""

import logging

from tonbridge.constants import ZERO_ADDRESS, normalize_identity
from tonbridge.exceptions import InvalidConfiguration, Unauthorized
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.ledger.models import Role

logger = logging.getLogger(__name__)


def validate_identity(identity: str, what: str = "identity") -> str:
    """Reject empty and zero-address identities."""
    normalized = normalize_identity(identity or "")
    if not normalized or normalized == ZERO_ADDRESS:
        raise InvalidConfiguration(f"{what} must be a non-zero identity")
    return normalized


class AccessControl:
    """Allow-list of (role, identity) grants."""

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    async def has_role(self, role: Role, identity: str) -> bool:
        if not identity:
            return False
        return await self.repo.has_role(role, identity)

    async def require(self, role: Role, identity: str) -> None:
        """Raise Unauthorized unless the identity holds the role."""
        if not await self.has_role(role, identity):
            logger.warning(f"Denied {role.value} capability to {identity or '(anonymous)'}")
            raise Unauthorized(f"{identity or '(anonymous)'} does not hold the {role.value} role")

    async def grant(self, role: Role, identity: str, granted_by: str) -> bool:
        identity = validate_identity(identity)
        return await self.repo.grant_role(role, identity, granted_by=granted_by)

    async def revoke(self, role: Role, identity: str) -> bool:
        return await self.repo.revoke_role(role, normalize_identity(identity))

    async def members(self, role: Role) -> list[str]:
        return await self.repo.get_role_members(role)
