"""Unit tests for auth/service.py -- sign-in, sign-up, refresh, sign-out, roles.

Covers:
- Sign-in happy path returns user view + access + refresh token and a session row
- Unknown email, wrong password, password-less and banned accounts all fail
  with the identical message
- Sign-up: duplicate email, derived name, invalid derived name, hash stored
- Access-only configuration: no refresh token, refresh raises not-supported
- Sign-out variants are idempotent
- has_role() follows the numeric hierarchy
"""

from __future__ import annotations

import pytest

from auth.errors import AuthServiceError, InvalidRefreshTokenError, RefreshNotSupportedError
from auth.models import SafeUser, User, UserRole
from auth.service import AuthService

PASSWORD = "password123"


@pytest.fixture
def service(module) -> AuthService:
    return module.auth_service


def _create(module, email: str, password: str | None = PASSWORD, role: UserRole = UserRole.user) -> str:
    hashed = module.auth_service.hasher.hash(password) if password is not None else None
    return module.user_store.create(User(name=email.split("@")[0], email=email, password=hashed, role=role)).id


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


class TestSignIn:
    def test_returns_tokens_and_user_view(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        result = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)

        assert result.user.id == user_id
        assert result.user.email == "ada@test.com"
        assert result.user.name == "ada"
        assert not hasattr(result.user, "password")
        assert result.refresh_token

        claims = service.validate_token(result.token)
        assert claims["user_id"] == user_id
        assert claims["email"] == "ada@test.com"
        assert claims["role"] == "user"

    def test_persists_session_with_client_context(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        result = service.sign_in_with_email_and_password(
            "ada@test.com", PASSWORD, user_agent="Mozilla/5.0", ip_address="192.0.2.7"
        )
        session = module.session_store.find_by_refresh_token(result.refresh_token)
        assert session is not None
        assert session.user_id == user_id
        assert session.user_agent == "Mozilla/5.0"
        assert session.ip_address == "192.0.2.7"

    def test_each_sign_in_opens_a_new_session(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        assert len(module.session_store.list_by_user_id(user_id)) == 2

    @pytest.mark.parametrize(
        ("email", "password"),
        [("nobody@test.com", PASSWORD), ("ada@test.com", "wrong-password")],
        ids=["unknown-email", "wrong-password"],
    )
    def test_failures_are_indistinguishable(self, module, service, email, password) -> None:
        _create(module, "ada@test.com")
        with pytest.raises(AuthServiceError) as exc_info:
            service.sign_in_with_email_and_password(email, password)
        assert exc_info.value.message == "Invalid email or password"

    def test_account_without_password_cannot_sign_in(self, module, service) -> None:
        _create(module, "sso@test.com", password=None)
        with pytest.raises(AuthServiceError, match="Invalid email or password"):
            service.sign_in_with_email_and_password("sso@test.com", PASSWORD)

    def test_banned_account_cannot_sign_in(self, module, service) -> None:
        user_id = _create(module, "troll@test.com", role=UserRole.banned)
        with pytest.raises(AuthServiceError, match="Invalid email or password"):
            service.sign_in_with_email_and_password("troll@test.com", PASSWORD)
        assert module.session_store.list_by_user_id(user_id) == []

    def test_failed_sign_in_creates_no_session(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        with pytest.raises(AuthServiceError):
            service.sign_in_with_email_and_password("ada@test.com", "wrong-password")
        assert module.session_store.list_by_user_id(user_id) == []

    def test_access_only_sign_in_has_no_refresh_token(self, access_only_module) -> None:
        user_id = _create(access_only_module, "ada@test.com")
        result = access_only_module.auth_service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        assert result.refresh_token is None
        assert access_only_module.auth_service.validate_token(result.token)["user_id"] == user_id
        assert access_only_module.session_store.list_by_user_id(user_id) == []


# ---------------------------------------------------------------------------
# Sign-up
# ---------------------------------------------------------------------------


class TestSignUp:
    def test_creates_user_and_signs_in(self, module, service) -> None:
        result = service.sign_up_with_email_and_password("grace@test.com", PASSWORD, "Grace")
        stored = module.user_store.find_by_email("grace@test.com")
        assert stored is not None
        assert stored.role == UserRole.user
        assert stored.name == "Grace"
        assert result.user.id == stored.id
        assert result.refresh_token

    def test_password_is_stored_hashed(self, module, service, hasher) -> None:
        service.sign_up_with_email_and_password("grace@test.com", PASSWORD)
        stored = module.user_store.find_by_email("grace@test.com")
        assert stored.password != PASSWORD
        assert hasher.verify(PASSWORD, stored.password)

    def test_name_defaults_to_local_part(self, service) -> None:
        result = service.sign_up_with_email_and_password("grace.hopper@test.com", PASSWORD)
        assert result.user.name == "grace.hopper"

    def test_duplicate_email_rejected(self, module, service) -> None:
        _create(module, "grace@test.com")
        with pytest.raises(AuthServiceError, match="User already exists"):
            service.sign_up_with_email_and_password("grace@test.com", PASSWORD)
        assert module.user_store.count() == 1

    def test_empty_local_part_rejected(self, module, service) -> None:
        with pytest.raises(AuthServiceError, match="Invalid name"):
            service.sign_up_with_email_and_password("@test.com", PASSWORD)
        assert module.user_store.count() == 0

    def test_password_over_72_bytes_rejected(self, module, service) -> None:
        # 40 characters, 80 bytes
        with pytest.raises(AuthServiceError, match="Password is too long"):
            service.sign_up_with_email_and_password("mb@test.com", "é" * 40)
        assert module.user_store.count() == 0

    def test_overlong_password_never_matches(self, module, service) -> None:
        _create(module, "ada@test.com")
        with pytest.raises(AuthServiceError, match="Invalid email or password"):
            service.sign_in_with_email_and_password("ada@test.com", "é" * 40)

    def test_soft_deleted_email_can_register_again(self, module, service) -> None:
        old_id = _create(module, "grace@test.com")
        module.user_store.soft_delete(old_id)
        result = service.sign_up_with_email_and_password("grace@test.com", PASSWORD)
        assert result.user.id != old_id


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_returns_new_access_token(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        signed_in = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        refreshed = service.refresh_token(signed_in.refresh_token)
        assert service.validate_token(refreshed.token)["user_id"] == user_id

    def test_invalid_refresh_token_propagates(self, service) -> None:
        with pytest.raises(InvalidRefreshTokenError, match="Invalid refresh token"):
            service.refresh_token("garbage-string")

    def test_access_only_refresh_not_supported(self, access_only_module) -> None:
        with pytest.raises(RefreshNotSupportedError) as exc_info:
            access_only_module.auth_service.refresh_token("anything")
        assert exc_info.value.message == "Refresh token functionality not supported"
        assert isinstance(exc_info.value, AuthServiceError)

    def test_validate_token_rejects_garbage(self, service) -> None:
        assert service.validate_token("invalid-token") is None


# ---------------------------------------------------------------------------
# Sign-out
# ---------------------------------------------------------------------------


class TestSignOut:
    def test_sign_out_deletes_session(self, module, service) -> None:
        _create(module, "ada@test.com")
        result = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        session = module.session_store.find_by_refresh_token(result.refresh_token)

        assert service.sign_out(session.id) == {"success": True}
        assert module.session_store.find_by_id(session.id) is None

    def test_sign_out_is_idempotent(self, service) -> None:
        assert service.sign_out("no-such-session") == {"success": True}
        assert service.sign_out("no-such-session") == {"success": True}

    def test_sign_out_by_refresh_token(self, module, service) -> None:
        _create(module, "ada@test.com")
        first = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        second = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)

        assert service.sign_out_by_refresh_token(first.refresh_token) == {"success": True}
        assert module.session_store.find_by_refresh_token(first.refresh_token).is_valid is False
        assert module.session_store.find_by_refresh_token(second.refresh_token).is_valid is True

    def test_signed_out_refresh_token_no_longer_refreshes(self, module, service) -> None:
        _create(module, "ada@test.com")
        signed_in = service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        service.sign_out_by_refresh_token(signed_in.refresh_token)
        with pytest.raises(InvalidRefreshTokenError, match="Invalid refresh token"):
            service.refresh_token(signed_in.refresh_token)

    def test_sign_out_by_unknown_refresh_token(self, service) -> None:
        assert service.sign_out_by_refresh_token("never-issued") == {"success": True}

    def test_sign_out_everywhere(self, module, service) -> None:
        user_id = _create(module, "ada@test.com")
        other_id = _create(module, "bob@test.com")
        issued = [service.sign_in_with_email_and_password("ada@test.com", PASSWORD) for _ in range(3)]
        other = service.sign_in_with_email_and_password("bob@test.com", PASSWORD)

        assert service.sign_out_everywhere(user_id) == {"success": True}
        assert [s.is_valid for s in module.session_store.list_by_user_id(user_id)] == [False, False, False]
        assert [s.is_valid for s in module.session_store.list_by_user_id(other_id)] == [True]
        for result in issued:
            with pytest.raises(InvalidRefreshTokenError):
                service.refresh_token(result.refresh_token)
        assert service.refresh_token(other.refresh_token).token

    def test_sweep_expired_sessions_with_nothing_expired(self, module, service) -> None:
        _create(module, "ada@test.com")
        service.sign_in_with_email_and_password("ada@test.com", PASSWORD)
        assert service.sweep_expired_sessions() == 0


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class TestHasRole:
    @pytest.mark.parametrize(
        ("role", "required", "expected"),
        [
            (UserRole.admin, UserRole.moderator, True),
            (UserRole.moderator, UserRole.moderator, True),
            (UserRole.user, UserRole.moderator, False),
            (UserRole.guest, UserRole.user, False),
            (UserRole.banned, UserRole.guest, False),
            (UserRole.user, "guest", True),
            (UserRole.moderator, UserRole.user, True),
            (UserRole.moderator, UserRole.admin, False),
        ],
    )
    def test_hierarchy(self, role, required, expected) -> None:
        user = SafeUser(id="u1", name="u1", email="u1@test.com", role=role)
        assert AuthService.has_role(user, required) is expected

    def test_rank_values(self) -> None:
        assert [r.rank for r in (UserRole.banned, UserRole.guest, UserRole.user, UserRole.moderator, UserRole.admin)] == [
            -1,
            0,
            10,
            20,
            30,
        ]
