"""
auth/tokens.py -- JWT access/refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       independent secrets, so a refresh token can never pass access-token
       verification (and vice versa) even before the "type" claim is checked.
       Each token also carries a "type" discriminator ("access" / "refresh")
       so the two kinds stay apart when both secrets are misconfigured to
       the same value.

  Verification: verify_token() returns None on any failure -- the guard
       turns that into a 401. Only refresh_token() raises, and always with
       the single message "Invalid refresh token" whatever the cause.

  Sessions: RefreshTokenService optionally persists one Session row per
       refresh token. The row is the server-side source of truth for
       liveness; the token itself is never rotated.

Two variants are chosen once at construction via the supports_refresh class
attribute: TokenService (access only) and RefreshTokenService (access +
refresh). Callers branch on the flag, never on hasattr().
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from jose import JWTError, jwt

from auth.errors import InvalidRefreshTokenError
from auth.models import Session
from auth.store import SessionStore, utcnow

logger = logging.getLogger("authgate.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

DEFAULT_DURATION_SECONDS = 3600
DEFAULT_REFRESH_EXPIRES_IN = "7d"

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}

Duration = Union[int, str]


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


def parse_duration(value: Duration) -> int:
    """Resolve an expiry policy to a number of seconds.

    Accepts an integer (seconds), a digit-only string (seconds) or
    <number><unit> with unit one of s/m/h/d. Anything else resolves to
    DEFAULT_DURATION_SECONDS with a warning; this function never raises.
    Zero and negative amounts count as anything else: they would mint tokens
    and sessions that are already expired. Environment configuration is
    validated strictly in core.config, so the fallback only applies to values
    passed in code.
    """
    if isinstance(value, int):
        seconds = value
    else:
        text = str(value).strip()
        if text.isdigit():
            seconds = int(text)
        else:
            unit = text[-1:]
            try:
                amount = int(text[:-1])
            except ValueError:
                logger.warning("Unparseable duration %r, defaulting to %ds", value, DEFAULT_DURATION_SECONDS)
                return DEFAULT_DURATION_SECONDS
            if unit not in _UNIT_SECONDS:
                logger.warning("Unknown duration unit in %r, defaulting to %ds", value, DEFAULT_DURATION_SECONDS)
                return DEFAULT_DURATION_SECONDS
            seconds = amount * _UNIT_SECONDS[unit]
    if seconds <= 0:
        logger.warning("Non-positive duration %r, defaulting to %ds", value, DEFAULT_DURATION_SECONDS)
        return DEFAULT_DURATION_SECONDS
    return seconds


# ---------------------------------------------------------------------------
# Config and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    """Signing secrets and expiry policies.

    refresh_secret defaults to "<secret>_refresh" and refresh_expires_in to
    seven days when not given.
    """

    secret: str
    expires_in: Duration = "1h"
    refresh_secret: Optional[str] = None
    refresh_expires_in: Optional[Duration] = None

    def __post_init__(self) -> None:
        if not self.refresh_secret:
            object.__setattr__(self, "refresh_secret", f"{self.secret}_refresh")
        if self.refresh_expires_in in (None, ""):
            object.__setattr__(self, "refresh_expires_in", DEFAULT_REFRESH_EXPIRES_IN)

    @property
    def expires_in_seconds(self) -> int:
        return parse_duration(self.expires_in)

    @property
    def refresh_expires_in_seconds(self) -> int:
        return parse_duration(self.refresh_expires_in)


@dataclass
class TokenResult:
    token: str
    expires_at: int  # absolute expiry, milliseconds since the epoch


@dataclass
class RefreshTokenResult(TokenResult):
    refresh_token: str


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


class TokenService:
    """Access-token-only service."""

    supports_refresh = False

    def __init__(self, config: TokenConfig, clock: Callable[[], datetime] = utcnow) -> None:
        self.config = config
        self._clock = clock

    def generate_token(self, payload: Mapping[str, Any]) -> TokenResult:
        """Sign payload + exp with the access secret. No side effects.

        payload must contain "user_id". A caller-supplied "type" or "exp"
        is overwritten.
        """
        expires_at = int(self._clock().timestamp()) + self.config.expires_in_seconds
        claims = {**payload, "exp": expires_at, "type": ACCESS}
        token = jwt.encode(claims, self.config.secret, algorithm=_ALGORITHM)
        return TokenResult(token=token, expires_at=expires_at * 1000)

    def verify_token(self, token: str) -> dict | None:
        """Decode and verify an access token. Returns the payload dict or None on any failure.

        Refresh tokens are refused here even if they were signed with the
        access secret, so a leaked refresh token cannot be replayed as a
        bearer credential.
        """
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = jwt.decode(token, self.config.secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") == REFRESH or "user_id" not in payload:
            return None
        return payload


class RefreshTokenService(TokenService):
    """Access + refresh tokens, with optional session bookkeeping.

    Without a session store the service is purely stateless: refresh tokens
    are valid until their own exp. With one, every issued refresh token gets
    a Session row and each refresh slides that row's expiry forward.
    """

    supports_refresh = True

    def __init__(
        self,
        config: TokenConfig,
        session_store: SessionStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(config, clock=clock)
        self.session_store = session_store

    def generate_refresh_token(
        self,
        payload: Mapping[str, Any],
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshTokenResult:
        """Issue an access token plus a refresh token for payload["user_id"].

        The refresh token carries only user_id, the "refresh" discriminator
        and a random jti (two tokens issued in the same second must still be
        distinct strings -- refresh_token is UNIQUE in the session table).
        """
        access = self.generate_token(payload)

        user_id = payload["user_id"]
        refresh_exp = int(self._clock().timestamp()) + self.config.refresh_expires_in_seconds
        refresh_token = jwt.encode(
            {"user_id": user_id, "type": REFRESH, "jti": uuid.uuid4().hex, "exp": refresh_exp},
            self.config.refresh_secret,
            algorithm=_ALGORITHM,
        )

        if self.session_store is not None:
            self.session_store.create(
                Session(
                    user_id=user_id,
                    refresh_token=refresh_token,
                    user_agent=user_agent or "unknown",
                    ip_address=ip_address or "unknown",
                    expires_at=datetime.fromtimestamp(refresh_exp, tz=timezone.utc),
                    is_valid=True,
                    last_used_at=self._clock(),
                )
            )

        return RefreshTokenResult(token=access.token, expires_at=access.expires_at, refresh_token=refresh_token)

    def refresh_token(self, refresh_token: str) -> TokenResult:
        """Exchange a refresh token for a fresh access token.

        Raises InvalidRefreshTokenError on a bad signature, expiry, wrong
        token kind, or a session row that is invalidated or elapsed. A missing
        session row is not an error. The refresh token itself is unchanged.
        """
        if not isinstance(refresh_token, str) or not refresh_token:
            raise InvalidRefreshTokenError()
        try:
            claims = jwt.decode(refresh_token, self.config.refresh_secret, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise InvalidRefreshTokenError() from None
        if claims.get("type") != REFRESH or not claims.get("user_id"):
            logger.info("Refresh rejected: wrong token type")
            raise InvalidRefreshTokenError()

        if self.session_store is not None:
            self._touch_session(refresh_token)

        return self.generate_token({"user_id": claims["user_id"]})

    def _touch_session(self, refresh_token: str) -> None:
        session = self.session_store.find_by_refresh_token(refresh_token)
        if session is None:
            return
        now = self._clock()
        if not session.is_usable(now):
            if session.expires_at <= now:
                # Elapsed sessions are purged on sight, not just ignored.
                self.session_store.delete(session.id)
            logger.info("Refresh rejected: session %s is no longer usable", session.id)
            raise InvalidRefreshTokenError()
        self.session_store.update(
            session.id,
            last_used_at=now,
            expires_at=session.expires_at + timedelta(seconds=self.config.refresh_expires_in_seconds),
        )
