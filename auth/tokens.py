"""
auth/tokens.py -- Password hashing, verification tokens, and JWT issuance.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in check_credentials() so response
       time does not reveal whether an email is registered [C1].

  Verification tokens: secrets.token_urlsafe(45) -> 60 URL-safe characters
       (360 bits of entropy).

  JWT: python-jose with HS256. Tokens carry the user id as the subject, the
       email, and an expiry. TokenIssuer.decode() returns None on any failure
       -- the route layer turns that into a 401.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import PasswordTooLong
from auth.models import AuthToken, User

logger = logging.getLogger("authgate.auth.tokens")

_ALGORITHM = "HS256"

MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises PasswordTooLong when the UTF-8 encoding exceeds bcrypt's 72-byte
    input limit. Multibyte characters count per byte, not per character.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise PasswordTooLong()
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store; treat as a mismatch.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


def check_credentials(user: User | None, password: str) -> bool:
    """Constant-work password check [C1].

    Always runs bcrypt, against _DUMMY_HASH when the user is unknown, so an
    attacker cannot enumerate registered emails by response time.
    """
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, user.hashed_password)


def generate_verification_token() -> str:
    """Return a fresh 60-character email verification token."""
    return secrets.token_urlsafe(45)


# ---------------------------------------------------------------------------
# JWT issuance
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Issues and verifies signed bearer tokens."""

    def __init__(self, secret_key: str, expire_seconds: int = 3600) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, user: User) -> AuthToken:
        expire = datetime.now(timezone.utc) + timedelta(seconds=self.expire_seconds)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "exp": expire,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        logger.info("Issued access token (user_id=%s)", user.id)
        return AuthToken(access_token=token, token_type="Bearer", expires_in=self.expire_seconds)

    def decode(self, token: str) -> dict | None:
        """Decode and verify a JWT. Returns the payload dict or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if "sub" not in payload:
            return None
        return payload
