"""
auth/service.py -- Credential-to-token orchestration and the role hierarchy.

AuthService owns the sign-in / sign-up / sign-out flows. It never signs a
token itself (TokenService does) and never touches SQL (the stores do).

Anti-enumeration: every sign-in failure -- unknown email, account without a
local password, wrong password, banned account -- raises the identical
AuthServiceError("Invalid email or password"), and bcrypt runs on every path
so response time does not reveal which check failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from auth.errors import AuthServiceError, RefreshNotSupportedError
from auth.models import ROLE_HIERARCHY, SafeUser, User, UserRole
from auth.passwords import PasswordHasher
from auth.store import SessionStore, UserStore
from auth.tokens import TokenResult, TokenService

logger = logging.getLogger("authgate.auth")

_INVALID_CREDENTIALS = "Invalid email or password"


@dataclass
class SignInUser:
    """The user view returned with a token bundle. Never carries the hash."""

    id: str
    email: str
    name: str | None = None


@dataclass
class SignInResult:
    user: SignInUser
    token: str
    expires_at: int
    refresh_token: Optional[str] = None


class AuthService:
    def __init__(
        self,
        user_store: UserStore,
        session_store: SessionStore,
        token_service: TokenService,
        hasher: PasswordHasher,
    ) -> None:
        self.user_store = user_store
        self.session_store = session_store
        self.token_service = token_service
        self.hasher = hasher

    # ------------------------------------------------------------------
    # Sign-in / sign-up
    # ------------------------------------------------------------------

    def sign_in_with_email_and_password(
        self,
        email: str,
        password: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> SignInResult:
        user = self.user_store.find_by_email(email)
        if user is None or user.password is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hasher.verify(password, self.hasher.dummy_hash)
            logger.info("Sign-in failed: unknown account")
            raise AuthServiceError(_INVALID_CREDENTIALS)
        if not self.hasher.verify(password, user.password):
            logger.info("Sign-in failed: bad password for user %s", user.id)
            raise AuthServiceError(_INVALID_CREDENTIALS)
        if user.role == UserRole.banned:
            logger.info("Sign-in refused: user %s is banned", user.id)
            raise AuthServiceError(_INVALID_CREDENTIALS)

        claims = {"user_id": user.id, "email": user.email, "role": UserRole(user.role).value}
        view = SignInUser(id=user.id, email=user.email, name=user.name)

        if self.token_service.supports_refresh:
            issued = self.token_service.generate_refresh_token(claims, user_agent=user_agent, ip_address=ip_address)
            logger.info("User %s signed in", user.id)
            return SignInResult(
                user=view,
                token=issued.token,
                expires_at=issued.expires_at,
                refresh_token=issued.refresh_token,
            )

        issued = self.token_service.generate_token(claims)
        logger.info("User %s signed in (access token only)", user.id)
        return SignInResult(user=view, token=issued.token, expires_at=issued.expires_at)

    def sign_up_with_email_and_password(
        self,
        email: str,
        password: str,
        name: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> SignInResult:
        """Register a new account with role "user", then sign it in.

        Creation and sign-in are two independent store operations. A crash in
        between leaves a user without a session; a later sign-in recovers.
        """
        if self.user_store.find_by_email(email) is not None:
            raise AuthServiceError("User already exists")

        hashed = self.hasher.hash(password)

        if not name:
            name = email.split("@")[0]
            if not name:
                raise AuthServiceError("Invalid name")

        created = self.user_store.create(User(name=name, email=email, password=hashed, role=UserRole.user))
        logger.info("User %s signed up", created.id)

        return self.sign_in_with_email_and_password(email, password, user_agent=user_agent, ip_address=ip_address)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def validate_token(self, token: str) -> dict | None:
        return self.token_service.verify_token(token)

    def refresh_token(self, refresh_token: str) -> TokenResult:
        if not self.token_service.supports_refresh:
            raise RefreshNotSupportedError()
        return self.token_service.refresh_token(refresh_token)

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    def sign_out(self, session_id: str) -> dict:
        """Delete one session. Idempotent: an absent session is still success."""
        self.session_store.delete(session_id)
        logger.info("Session %s signed out", session_id)
        return {"success": True}

    def sign_out_by_refresh_token(self, refresh_token: str) -> dict:
        """Invalidate the session that owns refresh_token, if there is one.

        The row is kept (is_valid=False) rather than deleted: refresh treats a
        missing row as stateless and would keep honoring the token until its
        own exp.
        """
        session = self.session_store.find_by_refresh_token(refresh_token)
        if session is not None:
            self.session_store.invalidate(session.id)
            logger.info("Session %s signed out", session.id)
        return {"success": True}

    def sign_out_everywhere(self, user_id: str) -> dict:
        """Invalidate every session of a user. Used by sign-out-all and bans."""
        revoked = self.session_store.invalidate_all_by_user_id(user_id)
        logger.info("User %s signed out of %d session(s)", user_id, revoked)
        return {"success": True}

    def sweep_expired_sessions(self) -> int:
        return self.session_store.delete_all_expired_sessions()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @staticmethod
    def has_role(user: User | SafeUser, required_role: UserRole | str) -> bool:
        """True iff the user's role ranks at or above required_role."""
        return ROLE_HIERARCHY[UserRole(user.role)] >= ROLE_HIERARCHY[UserRole(required_role)]
