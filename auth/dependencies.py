"""
auth/dependencies.py -- FastAPI Depends() guards for authentication and roles.

verify_token() checks the Authorization: Bearer <token> header, verifies the
access token and attaches a minimal Identity to request.state.identity.

require_role(role) is a guard factory. It relies on verify_token() having run
earlier in the same request and re-reads the user from the store, so a role
change or account deletion takes effect immediately rather than at token
expiry.

401 vs 403 stay distinct: 401 means "no usable identity", 403 means "valid
identity, insufficient role".

Usage:
    @router.get("/me")
    def me(identity: Identity = Depends(verify_token)): ...

    @router.patch("/users/{id}", dependencies=[Depends(verify_token), Depends(require_role("admin"))])
    def update(...): ...

Layer rule: this module may import fastapi (it is part of the FastAPI
dependency injection system) but not api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import Identity, User, UserRole

logger = logging.getLogger("authgate.auth")


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail=message, headers={"WWW-Authenticate": "Bearer"})


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def verify_token(request: Request) -> Identity:
    """Require a valid access token. Raises HTTP 401 otherwise."""
    token = _bearer_token(request)
    if token is None:
        raise _unauthorized("Unauthorized")

    token_service = request.app.state.auth.token_service
    try:
        payload = token_service.verify_token(token)
    except Exception:
        # verify_token() is not supposed to raise; treat it as a bad token anyway.
        logger.warning("Token verification raised", exc_info=True)
        payload = None
    if not payload:
        raise _unauthorized("Invalid token")

    identity = Identity(id=payload["user_id"], email=payload.get("email") or "", role=payload.get("role"))
    request.state.identity = identity
    return identity


def require_role(role: UserRole | str) -> Callable[[Request], User]:
    """Build a guard that admits users whose role ranks at or above role."""
    required = UserRole(role)

    def guard(request: Request) -> User:
        identity: Identity | None = getattr(request.state, "identity", None)
        if identity is None:
            raise _unauthorized("Unauthorized")
        module = request.app.state.auth
        user = module.user_store.find_by_id(identity.id)
        if user is None or not module.auth_service.has_role(user, required):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    guard.__name__ = f"require_role_{required.value}"
    return guard
