"""
auth/passwords.py -- Password hashing (bcrypt, used directly).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

PasswordHasher is a black box to the rest of the package: hash() and
verify(). The work factor is a constructor argument so the test suite can use
the minimum cost.
"""

from __future__ import annotations

import bcrypt

from auth.errors import AuthServiceError

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization: sign-in verifies against this hash when the
        # account does not exist, so response time does not reveal whether
        # an email is registered.
        self.dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        bcrypt cannot hash more than 72 bytes. Longer input (easy to reach
        with multibyte characters) raises AuthServiceError instead of being
        truncated or failing inside bcrypt.
        """
        if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise AuthServiceError("Password is too long")
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash in the DB (e.g. an imported non-bcrypt value).
            return False
