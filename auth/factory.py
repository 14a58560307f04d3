"""
auth/factory.py -- Assembles the AuthService object graph from Settings.

Used by the API lifespan and by the CLI so both run the same wiring. Every
collaborator is constructed here and injected; nothing in auth/ reaches for a
process-wide cache or store on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.mfa import MfaVerifier
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from cache.store import CacheStore, MemoryCache, RedisCache
from core.config import Settings
from core.monitoring import Monitor, SentryMonitor, init_sentry
from notify.dispatcher import NotificationDispatcher
from notify.email import EmailNotificationSender
from notify.events import USER_REGISTERED, VERIFICATION_EMAIL, log_user_registered

logger = logging.getLogger("authgate.factory")


@dataclass
class Components:
    service: AuthService
    store: UserStore
    cache: CacheStore
    dispatcher: NotificationDispatcher
    tokens: TokenIssuer
    monitor: Monitor

    def close(self) -> None:
        self.dispatcher.stop()
        self.cache.close()
        self.store.close()


def build_cache(settings: Settings) -> CacheStore:
    if settings.redis_url:
        cache = RedisCache(settings.redis_url)
        cache.verify_connection()
        return cache
    logger.warning("REDIS_URL not set -- using in-process MemoryCache (single worker only)")
    return MemoryCache()


def build_components(
    settings: Settings,
    *,
    store: UserStore | None = None,
    cache: CacheStore | None = None,
    monitor: Monitor | None = None,
) -> Components:
    """Build every collaborator. Pre-built store/cache/monitor override the defaults (tests)."""
    if monitor is None:
        init_sentry(settings)
        monitor = SentryMonitor()
    store = store or UserStore(settings.database_url)
    cache = cache or build_cache(settings)

    dispatcher = NotificationDispatcher(
        monitor,
        tries=settings.notification_tries,
        backoff=settings.notification_backoff,
    )
    dispatcher.subscribe(USER_REGISTERED, log_user_registered)
    dispatcher.subscribe(VERIFICATION_EMAIL, EmailNotificationSender(settings).send_verification)

    tokens = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
    service = AuthService(
        store=store,
        cache=cache,
        rate_limiter=RateLimiter(
            cache,
            base_attempts=settings.rate_limit_base_attempts,
            window_seconds=settings.rate_limit_window,
            history_ttl=settings.rate_history_ttl,
        ),
        mfa=MfaVerifier(
            cache,
            monitor,
            token_ttl=settings.mfa_token_ttl,
            valid_window=settings.mfa_valid_window,
        ),
        tokens=tokens,
        dispatcher=dispatcher,
        monitor=monitor,
        user_cache_ttl=settings.user_cache_ttl,
        mfa_issuer=settings.mfa_issuer,
    )
    return Components(
        service=service,
        store=store,
        cache=cache,
        dispatcher=dispatcher,
        tokens=tokens,
        monitor=monitor,
    )
