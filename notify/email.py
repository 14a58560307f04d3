"""
notify/email.py -- SMTP delivery of verification emails.

EmailNotificationSender is subscribed to the "verification_email" job kind.
Delivery failures are logged and re-raised so the dispatcher retries with
backoff. With no SMTP host configured (dev mode) the message is logged with
a redacted recipient instead of being sent.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any
from urllib.parse import urlencode

from core.config import Settings

logger = logging.getLogger("authgate.notify.email")

_SUBJECT = "Verify your email address"


class EmailNotificationSender:
    def __init__(self, settings: Settings) -> None:
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_use_tls = settings.smtp_use_tls
        self.mail_from = settings.mail_from
        self.base_url = settings.app_base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.mail_from)

    @staticmethod
    def _redact_email(email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def build_message(self, payload: dict[str, Any]) -> EmailMessage:
        query = urlencode({"token": payload["verification_token"], "email": payload["email"]})
        link = f"{self.base_url}/verify-email?{query}"
        msg = EmailMessage()
        msg["Subject"] = _SUBJECT
        msg["From"] = self.mail_from
        msg["To"] = payload["email"]
        msg.set_content(
            f"Hello {payload.get('name') or 'there'},\n\n"
            f"Please confirm your email address by opening the link below:\n\n"
            f"{link}\n\n"
            "If you did not create an account, you can ignore this message.\n"
        )
        return msg

    def preview(self, payload: dict[str, Any]) -> str:
        """Render the verification email without sending it."""
        return self.build_message(payload).as_string()

    def send_verification(self, payload: dict[str, Any]) -> None:
        """Deliver the verification email. Raises on SMTP failure so the job is retried."""
        msg = self.build_message(payload)
        recipient = self._redact_email(payload["email"])

        if not self.is_configured:
            logger.info("Email dev mode: not sending verification email (to=%s, user_id=%s)", recipient, payload.get("user_id"))
            return

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as smtp:
                if self.smtp_use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.smtp_user:
                    smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send verification email (to=%s, user_id=%s): %s", recipient, payload.get("user_id"), exc)
            raise

        logger.info("Verification email sent (to=%s, user_id=%s)", recipient, payload.get("user_id"))
