"""
auth/service.py -- AuthService, the single entry point for registration and login.

authenticate() walks a fixed gate sequence; any failure is terminal and no
token is issued:

    rate limit (login) -> resolve user (cache-aside) -> password check
        -> [MFA check, if enabled] -> issue token

register() runs the rate limit gate and then creates, caches and announces
the user. Failure policy:
  - RateLimitExceeded, PasswordTooLong and DuplicateEmail propagate unchanged.
  - A failed write of the public cache entry is logged and reported but does
    not fail registration: the user already exists in the durable store.
  - Any other fault is reported to monitoring and replaced with a generic
    RegistrationFailed, so internal detail never reaches the caller.
  - Email delivery happens on the dispatcher worker and cannot affect the result.

Cache keys:
  user:auth:{id}               public view of the user (no secrets)     user_cache_ttl
  user:auth:email:{email}      full record used for credential checks   user_cache_ttl

The client IP is passed in explicitly by the HTTP layer or CLI.

Layer rule: may import core/, cache/ and notify/; no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from auth.errors import DuplicateEmail, InvalidCredentials, InvalidMfaCode, RegistrationFailed
from auth.mfa import MfaVerifier, challenge_key, generate_secret, provisioning_uri
from auth.models import AuthToken, MfaEnrollment, User
from auth.ratelimit import RateLimiter
from auth.store import UserStore
from auth.tokens import TokenIssuer, check_credentials, generate_verification_token, hash_password
from cache.store import CacheStore
from core.monitoring import Monitor
from notify.dispatcher import PRIORITY_MEDIUM, NotificationDispatcher
from notify.events import USER_REGISTERED, VERIFICATION_EMAIL

logger = logging.getLogger("authgate.auth")

USER_CACHE_TTL = 3600


def user_cache_key(user_id: int | None) -> str:
    return f"user:auth:{user_id}"


def email_cache_key(email: str) -> str:
    return f"user:auth:email:{email}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def public_view(user: User) -> dict[str, Any]:
    """Cacheable, client-safe representation: no password hash, MFA seed, or token."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "mfa_enabled": user.mfa_enabled,
        "email_verified_at": user.email_verified_at,
        "created_at": user.created_at,
    }


class AuthService:
    def __init__(
        self,
        store: UserStore,
        cache: CacheStore,
        rate_limiter: RateLimiter,
        mfa: MfaVerifier,
        tokens: TokenIssuer,
        dispatcher: NotificationDispatcher,
        monitor: Monitor,
        *,
        user_cache_ttl: int = USER_CACHE_TTL,
        mfa_issuer: str = "AuthGate",
    ) -> None:
        self.store = store
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.mfa = mfa
        self.tokens = tokens
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.user_cache_ttl = user_cache_ttl
        self.mfa_issuer = mfa_issuer

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        *,
        ip: str,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        """Create a user, cache its public view, and queue the verification email.

        Raises:
            RateLimitExceeded:  too many register attempts from ip.
            DuplicateEmail:     email is already registered.
            PasswordTooLong:    password exceeds 72 bytes once UTF-8 encoded.
            RegistrationFailed: any other internal fault (details are logged).
        """
        self.rate_limiter.enforce(ip, "register")
        email = normalize_email(email)
        hashed_password = hash_password(password)

        try:
            user = self.store.create(
                {
                    "name": name,
                    "email": email,
                    "hashed_password": hashed_password,
                    "verification_token": generate_verification_token(),
                }
            )
            self._cache_public_view(user)
            self.dispatcher.enqueue(
                USER_REGISTERED,
                {
                    "user_id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "registered_at": datetime.now(timezone.utc).isoformat(),
                    "metadata": dict(metadata or {}),
                },
            )
            self.dispatcher.enqueue(
                VERIFICATION_EMAIL,
                {
                    "user_id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "verification_token": user.verification_token,
                },
                priority=PRIORITY_MEDIUM,
            )
        except DuplicateEmail:
            raise
        except Exception as exc:
            self.monitor.report_exception(exc)
            logger.error("User registration failed: %s", exc)
            raise RegistrationFailed() from exc

        logger.info("User registered (user_id=%s)", user.id)
        return user

    def _cache_public_view(self, user: User) -> None:
        try:
            self.cache.put(user_cache_key(user.id), public_view(user), self.user_cache_ttl)
        except Exception as exc:  # noqa: BLE001 -- the durable write already succeeded
            logger.warning("Could not cache new user (user_id=%s): %s", user.id, exc)
            self.monitor.report_exception(exc)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str, mfa_code: str | None = None, *, ip: str) -> AuthToken:
        """Check credentials (and MFA when enabled) and return a bearer token.

        Raises:
            RateLimitExceeded:  too many login attempts from ip.
            InvalidCredentials: unknown email or wrong password (indistinguishable).
            MfaCodeRequired:    MFA is enabled and no code was supplied.
            InvalidMfaCode:     the code is wrong or was already used.
        """
        self.rate_limiter.enforce(ip, "login")
        email = normalize_email(email)

        user = self._resolve_user(email)
        if not check_credentials(user, password):
            self.rate_limiter.record_failure(ip)
            logger.info("Invalid credentials (ip=%s)", ip)
            raise InvalidCredentials()

        if user.mfa_enabled:
            try:
                self.mfa.verify(user, mfa_code)
            except InvalidMfaCode:
                self.rate_limiter.record_failure(ip)
                raise

        return self.tokens.issue(user)

    def _resolve_user(self, email: str) -> User | None:
        def load() -> dict[str, Any] | None:
            found = self.store.find_by_email(email)
            return asdict(found) if found is not None else None

        data = self.cache.remember(email_cache_key(email), self.user_cache_ttl, load)
        return User(**data) if data else None

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def current_user(self, user_id: int) -> dict[str, Any] | None:
        """Public view of user_id, served from the user:auth:{id} cache entry."""

        def load() -> dict[str, Any] | None:
            found = self.store.find_by_id(user_id)
            return public_view(found) if found is not None else None

        return self.cache.remember(user_cache_key(user_id), self.user_cache_ttl, load)

    def enroll_mfa(self, user_id: int) -> MfaEnrollment:
        """Generate and store a TOTP secret for user_id and enable MFA.

        Raises InvalidCredentials if the user does not exist.
        """
        user = self.store.find_by_id(user_id)
        if user is None:
            raise InvalidCredentials()

        secret = generate_secret()
        user = self.store.update(user, {"mfa_secret": secret, "mfa_enabled": True})
        # Cached copies predate the new secret.
        self.cache.forget(email_cache_key(user.email))
        self.cache.forget(user_cache_key(user.id))
        self.cache.forget(challenge_key(user.id))

        logger.info("MFA enrolled (user_id=%s)", user.id)
        return MfaEnrollment(secret=secret, provisioning_uri=provisioning_uri(secret, user.email, self.mfa_issuer))
