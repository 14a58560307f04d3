"""
auth/mfa.py -- Time-based one-time code verification (RFC 6238, via pyotp).

Challenge lifecycle:
  1. The first verify() for a user lazily caches a challenge under
     mfa:token:{user_id} (TTL = mfa_token_ttl). The cached value describes the
     generator (secret, digits, interval) so it survives a Redis round trip.
  2. A code is accepted if it matches any time step within +/- valid_window
     steps of now.
  3. The matching step is then claimed in mfa:used:{user_id}:{step} with an
     atomic add-if-absent. A second submission of the same code fails even
     though the generator seed is deterministic.
  4. On success the cached challenge is evicted. On failure it is left to expire.

Layer rule: may import core/ and cache/; no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import pyotp
from pyotp.utils import strings_equal

from auth.errors import InvalidMfaCode, MfaCodeRequired
from auth.models import User
from cache.store import CacheStore
from core.monitoring import Monitor

logger = logging.getLogger("authgate.auth.mfa")

MFA_TOKEN_TTL = 300
DIGITS = 6
INTERVAL = 30


def challenge_key(user_id: int | None) -> str:
    return f"mfa:token:{user_id}"


def used_code_key(user_id: int | None, step: int) -> str:
    return f"mfa:used:{user_id}:{step}"


def generate_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    """otpauth:// URI for authenticator apps (render as a QR code)."""
    return pyotp.TOTP(secret, digits=DIGITS, interval=INTERVAL).provisioning_uri(name=email, issuer_name=issuer)


class MfaVerifier:
    def __init__(
        self,
        cache: CacheStore,
        monitor: Monitor,
        *,
        token_ttl: int = MFA_TOKEN_TTL,
        valid_window: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.monitor = monitor
        self.token_ttl = token_ttl
        self.valid_window = valid_window
        self._clock = clock

    def verify(self, user: User, code: str | None) -> None:
        """Validate code for user. Returns None on success; raises on any failure.

        Raises:
            MfaCodeRequired: code is missing or blank.
            InvalidMfaCode:  code does not match the accepted window, or the
                             matching time step was already consumed.
        """
        if not code or not code.strip():
            raise MfaCodeRequired()
        if not user.mfa_secret:
            logger.error("MFA enabled without a secret (user_id=%s)", user.id)
            raise InvalidMfaCode()

        key = challenge_key(user.id)
        challenge = self.cache.remember(
            key,
            self.token_ttl,
            lambda: {"secret": user.mfa_secret, "digits": DIGITS, "interval": INTERVAL},
        )
        totp = pyotp.TOTP(challenge["secret"], digits=challenge["digits"], interval=challenge["interval"])

        step = self._matching_step(totp, code.strip())
        if step is None:
            logger.warning("MFA verification failed (user_id=%s)", user.id)
            self.monitor.report_event(
                "mfa.verification_failed",
                {"user_id": user.id, "message": f"Invalid MFA code for user {user.id}"},
            )
            raise InvalidMfaCode()

        # TTL covers every step that could still accept this code.
        ledger_ttl = totp.interval * (2 * self.valid_window + 2)
        if not self.cache.add(used_code_key(user.id, step), 1, ledger_ttl):
            logger.warning("MFA code replay rejected (user_id=%s, step=%d)", user.id, step)
            self.monitor.report_event("mfa.code_replayed", {"user_id": user.id, "step": step})
            raise InvalidMfaCode()

        self.cache.forget(key)
        logger.info("MFA verified (user_id=%s)", user.id)

    def _matching_step(self, totp: pyotp.TOTP, code: str) -> int | None:
        """Return the time step code was generated for, or None if no step in the window matches."""
        current = int(self._clock()) // totp.interval
        for step in range(current - self.valid_window, current + self.valid_window + 1):
            if strings_equal(code, totp.generate_otp(step)):
                return step
        return None
