"""
api/routes/v1/auth.py -- Authentication and user administration REST endpoints.

Routes:
  POST  /api/v1/auth/login                -- email/password sign-in; returns token bundle
  POST  /api/v1/auth/signup               -- register + sign-in; returns token bundle
  POST  /api/v1/auth/refresh              -- exchange a refresh token for a new access token
  POST  /api/v1/auth/signout              -- end the session that owns a refresh token
  POST  /api/v1/auth/signout-all          -- end every session of the caller (requires auth)
  GET   /api/v1/auth/me                   -- identity carried by the access token (requires auth)
  GET   /api/v1/auth/users/{id}           -- user record (moderator and above)
  PATCH /api/v1/auth/users/{id}/role      -- change a user's role (admin only)

Status codes:
  200 success, 400 validation or domain error, 401 unauthenticated,
  403 forbidden, 404 unknown user (admin routes), 429 rate limited,
  500 unexpected (handled globally in api/main.py).

Security:
  POST /login and /signup are rate-limited per IP (LOGIN_RATE_LIMIT).
  AuthService returns the same error for unknown email and wrong password.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import credential_rate_limit, limiter
from api.models import (
    ErrorResponse,
    IdentityPayload,
    RefreshRequest,
    ResultResponse,
    RoleUpdateRequest,
    SafeUserPayload,
    SignInPayload,
    SignInRequest,
    SignUpRequest,
    SuccessPayload,
    TokenPayload,
)
from auth.dependencies import require_role, verify_token
from auth.errors import AuthServiceError, InvalidRefreshTokenError, NotFoundError
from auth.models import Identity, User, UserRole
from auth.module import AuthModule

logger = logging.getLogger("authgate.api")

# Auth policy:
# - POST  /api/v1/auth/login:             public -- credential endpoint, rate-limited
# - POST  /api/v1/auth/signup:            public -- credential endpoint, rate-limited
# - POST  /api/v1/auth/refresh:           public -- the refresh token is the credential
# - POST  /api/v1/auth/signout:           public -- the refresh token is the credential
# - POST  /api/v1/auth/signout-all:       requires auth (verify_token)
# - GET   /api/v1/auth/me:                requires auth (verify_token)
# - GET   /api/v1/auth/users/{id}:        requires moderator (verify_token + require_role)
# - PATCH /api/v1/auth/users/{id}/role:   requires admin (verify_token + require_role)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _module(request: Request) -> AuthModule:
    return request.app.state.auth


def _client_context(request: Request) -> tuple[str | None, str | None]:
    user_agent = request.headers.get("User-Agent")
    ip_address = request.client.host if request.client else None
    return user_agent, ip_address


def _ok(message: str, result: dict, no_store: bool = False) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=ResultResponse(message=message, result=result).model_dump())
    if no_store:
        resp.headers["Cache-Control"] = "no-store"
    return resp


def _fail(status_code: int, message: str, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=error).model_dump(exclude_none=True),
    )


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
def login(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with email and password; return access + refresh tokens."""
    user_agent, ip_address = _client_context(request)
    try:
        result = _module(request).auth_service.sign_in_with_email_and_password(
            body.email, body.password, user_agent=user_agent, ip_address=ip_address
        )
    except AuthServiceError as exc:
        return _fail(400, "AuthServiceError: Failed to login", exc.message)
    return _ok("Login successful", _dump(SignInPayload.from_result(result)), no_store=True)


@limiter.limit(credential_rate_limit)
@router.post("/auth/signup")
def signup(request: Request, body: SignUpRequest) -> JSONResponse:
    """Create an account with role "user" and sign it in."""
    user_agent, ip_address = _client_context(request)
    try:
        result = _module(request).auth_service.sign_up_with_email_and_password(
            body.email, body.password, body.name, user_agent=user_agent, ip_address=ip_address
        )
    except AuthServiceError as exc:
        return _fail(400, "AuthServiceError: Failed to signup", exc.message)
    return _ok("Signup successful", _dump(SignInPayload.from_result(result)), no_store=True)


@router.post("/auth/refresh")
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Issue a fresh access token. The refresh token itself stays the same."""
    try:
        result = _module(request).auth_service.refresh_token(body.refresh_token)
    except InvalidRefreshTokenError as exc:
        return _fail(401, "Failed to refresh token", exc.message)
    except AuthServiceError as exc:
        return _fail(400, "AuthServiceError: Failed to refresh token", exc.message)
    payload = TokenPayload(token=result.token, expires_at=result.expires_at)
    return _ok("Token refreshed", _dump(payload), no_store=True)


@router.post("/auth/signout")
def signout(request: Request, body: RefreshRequest) -> JSONResponse:
    """End the session bound to the given refresh token.

    Idempotent: an unknown or already signed-out token still returns 200.
    The client is responsible for discarding its access token, which stays
    valid until it expires.
    """
    result = _module(request).auth_service.sign_out_by_refresh_token(body.refresh_token)
    return _ok("Signout successful", SuccessPayload(**result).model_dump())


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signout-all")
def signout_all(request: Request, identity: Identity = Depends(verify_token)) -> JSONResponse:
    """End every session of the calling user (sign out on all devices)."""
    result = _module(request).auth_service.sign_out_everywhere(identity.id)
    return _ok("Signout successful", SuccessPayload(**result).model_dump())


@router.get("/auth/me")
def me(identity: Identity = Depends(verify_token)) -> JSONResponse:
    """Return the identity carried by the caller's access token."""
    payload = IdentityPayload(id=identity.id, email=identity.email, role=identity.role)
    return _ok("Me", _dump(payload))


# ---------------------------------------------------------------------------
# User administration (role-gated)
# ---------------------------------------------------------------------------


@router.get(
    "/auth/users/{user_id}",
    dependencies=[Depends(verify_token), Depends(require_role(UserRole.moderator))],
)
def get_user(request: Request, user_id: str) -> JSONResponse:
    """Return a user record without its password hash. Moderator and above."""
    user = _module(request).user_store.find_by_id(user_id)
    if user is None:
        return _fail(404, "Not found", "User not found")
    return _ok("User", _dump(SafeUserPayload.from_user(user.to_safe())))


@router.patch("/auth/users/{user_id}/role", dependencies=[Depends(verify_token)])
def update_role(
    request: Request,
    user_id: str,
    body: RoleUpdateRequest,
    current_user: User = Depends(require_role(UserRole.admin)),
) -> JSONResponse:
    """Change a user's role. Admin only.

    An admin cannot change their own role (no accidental self-lockout).
    Banning a user also ends all of their sessions.
    """
    module = _module(request)
    if user_id == current_user.id:
        return _fail(400, "AuthServiceError: Failed to update role", "You cannot change your own role")
    try:
        updated = module.user_store.update(user_id, role=body.role)
    except NotFoundError:
        return _fail(404, "Not found", "User not found")
    if body.role == UserRole.banned:
        module.auth_service.sign_out_everywhere(user_id)
    logger.info("User %s set role of %s to %s", current_user.id, user_id, body.role.value)
    return _ok("Role updated", _dump(SafeUserPayload.from_user(updated)))
