"""
core/monitoring.py -- Error-telemetry sink backed by sentry-sdk.

The auth core reports two kinds of signal:
  report_exception(exc)         -- unexpected faults (registration failures,
                                   exhausted notification retries).
  report_event(name, details)   -- expected-but-interesting security events
                                   (failed or replayed MFA codes).

Both calls are best-effort: they log locally, forward to Sentry, and never
raise into the caller's flow. When no SENTRY_DSN is configured the SDK is not
initialised and sentry_sdk.capture_* are no-ops, so only the log line remains.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, or notify/.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import sentry_sdk

from core.config import Settings

logger = logging.getLogger("authgate.monitoring")


class Monitor(Protocol):
    """Monitoring sink contract consumed by the auth core and the dispatcher."""

    def report_exception(self, exc: BaseException) -> None: ...

    def report_event(self, name: str, details: dict[str, Any]) -> None: ...


def init_sentry(settings: Settings) -> bool:
    """Initialise the Sentry SDK if a DSN is configured. Returns True when enabled."""
    if not settings.sentry_dsn:
        logger.info("Sentry disabled (no SENTRY_DSN configured)")
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        send_default_pii=False,
    )
    logger.info("Sentry initialized (environment=%s)", settings.sentry_environment)
    return True


class SentryMonitor:
    """Monitor implementation that logs and forwards to Sentry."""

    def report_exception(self, exc: BaseException) -> None:
        logger.error("Reporting exception: %s: %s", type(exc).__name__, exc)
        try:
            sentry_sdk.capture_exception(exc)
        except Exception:  # noqa: BLE001
            # Telemetry must never mask the original error.
            logger.exception("Sentry capture_exception failed")

    def report_event(self, name: str, details: dict[str, Any]) -> None:
        logger.warning("Security event %s %s", name, details)
        try:
            sentry_sdk.capture_message(name, level="warning", extras=details)
        except Exception:  # noqa: BLE001
            logger.exception("Sentry capture_message failed for %s", name)
