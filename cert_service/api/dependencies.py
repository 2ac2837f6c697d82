from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from cert_service.models.principal import Principal

logger = logging.getLogger(__name__)


def require_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_roles: Annotated[str, Header()] = "",
) -> Principal:
    """Build the caller's Principal from the gateway's identity headers.

    The gateway authenticates the user and forwards X-User-Id (UUID) and
    X-User-Roles (comma-separated).  Used as a FastAPI dependency on any
    endpoint that needs a caller.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        logger.warning("Rejected malformed X-User-Id header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid caller identity",
        ) from None

    roles = frozenset(r.strip().lower() for r in x_user_roles.split(",") if r.strip())
    return Principal(user_id=user_id, roles=roles)


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    Returns the Principal if the role is present, else 403.
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_principal)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard
