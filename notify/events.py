"""
notify/events.py -- Job kinds published by the auth core, and the default listener.

Payloads are plain JSON-compatible dicts so a job can be handed to any queue:

  user.registered      {user_id, name, email, registered_at (ISO-8601 UTC), metadata}
  verification_email   {user_id, name, email, verification_token}
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("authgate.notify.events")

USER_REGISTERED = "user.registered"
VERIFICATION_EMAIL = "verification_email"


def log_user_registered(payload: dict[str, Any]) -> None:
    """Audit-log listener for user.registered."""
    logger.info(
        "User registered event (user_id=%s, registered_at=%s, metadata=%s)",
        payload.get("user_id"),
        payload.get("registered_at"),
        payload.get("metadata") or {},
    )
