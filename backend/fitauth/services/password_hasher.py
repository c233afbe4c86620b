"""
services/password_hasher.py — One-way salted password hashing.

Two interchangeable algorithms behind one small interface:
  - bcrypt   (default; cost factor from BCRYPT_LOG_ROUNDS)
  - argon2id (argon2-cffi defaults)

verify() never raises for a malformed or foreign stored hash — it returns
False, so the login path treats it exactly like a wrong password.
Raw passwords are never stored and never logged.
"""

from __future__ import annotations

import bcrypt
from argon2 import PasswordHasher as _Argon2, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError


class PasswordHasher:
    """Interface for password hashing algorithms."""

    algorithm: str = ""

    def hash(self, password: str) -> str:
        raise NotImplementedError

    def verify(self, password: str, hashed: str) -> bool:
        raise NotImplementedError


class BcryptPasswordHasher(PasswordHasher):
    algorithm = "bcrypt"

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(
            password.encode("utf-8"),
            bcrypt.gensalt(rounds=self.rounds),
        ).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        # bcrypt.checkpw compares in constant time.
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # "Invalid salt": the stored value is not a bcrypt hash.
            return False


class Argon2PasswordHasher(PasswordHasher):
    algorithm = "argon2"

    def __init__(self, **params) -> None:
        self._hasher = _Argon2(type=Type.ID, **params)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return self._hasher.verify(hashed, password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False


def build_password_hasher(algorithm: str, *, bcrypt_rounds: int = 12) -> PasswordHasher:
    """Returns the hasher configured by PASSWORD_HASH_ALGORITHM."""
    name = algorithm.strip().lower()
    if name == "bcrypt":
        return BcryptPasswordHasher(rounds=bcrypt_rounds)
    if name in ("argon2", "argon2id"):
        return Argon2PasswordHasher()
    raise ValueError(f"Unsupported PASSWORD_HASH_ALGORITHM: {algorithm!r}")
