"""
auth/module.py -- Composition root for the auth package.

Builds one Engine, one UserStore, one SessionStore, one token service and one
AuthService, and hands them out as a plain object. api/main.py stores the
result on app.state; the CLI builds its own. There is no module-level
singleton: tests construct as many independent modules as they need.

Usage:
    module = AuthModule.from_settings(get_settings())
    result = module.auth_service.sign_in_with_email_and_password(email, password)
    module.close()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from auth.passwords import DEFAULT_ROUNDS, PasswordHasher
from auth.service import AuthService
from auth.store import SessionStore, UserStore, create_store_engine
from auth.tokens import RefreshTokenService, TokenConfig, TokenService
from core.config import Settings

logger = logging.getLogger("authgate.auth")


@dataclass
class AuthModule:
    engine: Engine
    user_store: UserStore
    session_store: SessionStore
    token_service: TokenService
    auth_service: AuthService

    @classmethod
    def build(
        cls,
        db_url: str,
        token_config: TokenConfig,
        refresh_enabled: bool = True,
        password_rounds: int = DEFAULT_ROUNDS,
    ) -> "AuthModule":
        engine = create_store_engine(db_url)
        user_store = UserStore(engine)
        session_store = SessionStore(engine)
        if refresh_enabled:
            token_service: TokenService = RefreshTokenService(token_config, session_store=session_store)
        else:
            token_service = TokenService(token_config)
        auth_service = AuthService(user_store, session_store, token_service, PasswordHasher(password_rounds))
        logger.info("Auth module ready (refresh_tokens=%s)", token_service.supports_refresh)
        return cls(
            engine=engine,
            user_store=user_store,
            session_store=session_store,
            token_service=token_service,
            auth_service=auth_service,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthModule":
        return cls.build(
            db_url=settings.database_url,
            token_config=TokenConfig(
                secret=settings.jwt_secret,
                expires_in=settings.jwt_expires_in,
                refresh_secret=settings.jwt_refresh_secret or None,
                refresh_expires_in=settings.jwt_refresh_expires_in,
            ),
            refresh_enabled=settings.refresh_tokens_enabled,
            password_rounds=settings.bcrypt_rounds,
        )

    def close(self) -> None:
        self.engine.dispose()
