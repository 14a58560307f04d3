"""
auth/ratelimit.py -- Adaptive per-(action, ip) rate limiting.

Two counters live in the cache:

  {action}:{ip}        Attempt count for the current fixed window. Created by
                       the first hit with a TTL of the window length; later
                       hits increment it without extending the TTL. It only
                       goes away by expiring.

  rate:history:{ip}    Long-horizon failure count. Every 10 failures shave one
                       attempt off the per-window allowance, up to 4, so the
                       threshold stays in [1, base_attempts].

All increments go through CacheStore.hit(), which is atomic at the store, so
concurrent requests for the same key never double-count. enforce() compares
the count hit() returns, not an earlier read, against the threshold.

Layer rule: may import cache/ (the CacheStore contract); no imports from api/
or notify/.
"""

from __future__ import annotations

import logging

from auth.errors import RateLimitExceeded
from cache.store import CacheStore

logger = logging.getLogger("authgate.auth.ratelimit")

BASE_ATTEMPTS = 5
WINDOW_SECONDS = 60
HISTORY_TTL = 24 * 60 * 60
# Failures per one-step reduction of the allowance, and the largest reduction.
HISTORY_STEP = 10
MAX_REDUCTION = 4


def history_key(ip: str) -> str:
    return f"rate:history:{ip}"


def attempt_key(action: str, ip: str) -> str:
    return f"{action}:{ip}"


class RateLimiter:
    def __init__(
        self,
        cache: CacheStore,
        *,
        base_attempts: int = BASE_ATTEMPTS,
        window_seconds: int = WINDOW_SECONDS,
        history_ttl: int = HISTORY_TTL,
    ) -> None:
        self.cache = cache
        self.base_attempts = base_attempts
        self.window_seconds = window_seconds
        self.history_ttl = history_ttl

    def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        """True if the current window's count for key has reached max_attempts."""
        count = self.cache.get(key) or 0
        return int(count) >= max_attempts

    def available_in(self, key: str) -> int:
        """Seconds until the window for key resets. Only meaningful while limited."""
        return self.cache.remaining_ttl(key)

    def hit(self, key: str, window_seconds: int) -> int:
        return self.cache.hit(key, window_seconds)

    def calculate_dynamic_threshold(self, ip: str) -> int:
        """Allowed attempts per window for ip, given its failure history.

        threshold = max(1, base - min(history // 10, 4)). Pure function of the
        cached history value.
        """
        history = int(self.cache.get(history_key(ip)) or 0)
        reduction = min(max(history, 0) // HISTORY_STEP, MAX_REDUCTION)
        return max(1, self.base_attempts - reduction)

    def record_failure(self, ip: str) -> int:
        """Add one failed attempt to ip's long-horizon history."""
        return self.cache.hit(history_key(ip), self.history_ttl)

    def enforce(self, ip: str, action: str) -> None:
        """Gate one attempt of action from ip, recording it if allowed.

        Raises RateLimitExceeded (with retry_after and {ip, action} context)
        when the dynamic threshold has been reached for the current window.

        The decision rests on the count returned by the atomic hit(), so two
        concurrent requests that both pass the pre-check cannot both be
        admitted past the threshold.
        """
        key = attempt_key(action, ip)
        max_attempts = self.calculate_dynamic_threshold(ip)

        if self.too_many_attempts(key, max_attempts):
            self._reject(key, ip, action, max_attempts)

        if self.hit(key, self.window_seconds) > max_attempts:
            self._reject(key, ip, action, max_attempts)

    def _reject(self, key: str, ip: str, action: str, max_attempts: int) -> None:
        seconds = self.available_in(key)
        logger.warning(
            "Rate limit exceeded (ip=%s, action=%s, threshold=%d, retry_after=%ds)",
            ip,
            action,
            max_attempts,
            seconds,
        )
        raise RateLimitExceeded(
            f"Too many {action} attempts. Retry in {seconds} seconds.",
            retry_after=seconds,
            context={"ip": ip, "action": action},
        )
