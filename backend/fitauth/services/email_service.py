"""
services/email_service.py — Transactional email (welcome, password reset).

Both public methods are fire-and-report: they return True/False and never
raise, so the orchestrator can treat delivery as best-effort. Every SMTP
call carries a socket timeout (MAIL_TIMEOUT_SECONDS).

When MAIL_SERVER is empty (development, tests) the message is logged instead
of sent and reported as delivered. Reset links are never logged; recipient
addresses are redacted.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Mapping

logger = logging.getLogger(__name__)


class EmailSender:

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        from_address: str = "",
        from_name: str = "WorkoutProject",
        timeout: float = 10,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_address = from_address or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping) -> "EmailSender":
        return cls(
            smtp_host=config.get("MAIL_SERVER", ""),
            smtp_port=config.get("MAIL_PORT", 587),
            smtp_user=config.get("MAIL_USERNAME", ""),
            smtp_password=config.get("MAIL_PASSWORD", ""),
            use_tls=config.get("MAIL_USE_TLS", True),
            from_address=config.get("MAIL_FROM_ADDRESS", ""),
            from_name=config.get("MAIL_FROM_NAME", "WorkoutProject"),
            timeout=config.get("MAIL_TIMEOUT_SECONDS", 10),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_address)

    # ------------------------------------------------------------------
    # Public messages
    # ------------------------------------------------------------------

    def send_password_reset(self, to: str, link: str, first_name: str) -> bool:
        subject = "Reset Your Password"
        text_body = (
            f"Hi {first_name},\n\n"
            "We received a request to reset your password. "
            f"Open the link below to choose a new one:\n\n{link}\n\n"
            "If you didn't request this, you can ignore this email.\n\n"
            f"Best regards,\n{self.from_name} Team"
        )
        html_body = (
            "<html><body>"
            "<h2>Password Reset Request</h2>"
            f"<p>Hi {html.escape(first_name)},</p>"
            "<p>We received a request to reset your password. "
            "Click the link below to reset it:</p>"
            f'<p><a href="{html.escape(link)}">Reset Password</a></p>'
            "<p>If you didn't request this, please ignore this email.</p>"
            f"<p>Best regards,<br>{self.from_name} Team</p>"
            "</body></html>"
        )
        return self._send(to, subject, text_body, html_body)

    def send_welcome(self, to: str, first_name: str) -> bool:
        subject = f"Welcome to {self.from_name}!"
        text_body = (
            f"Hi {first_name},\n\n"
            f"Thank you for joining {self.from_name}! "
            "We're excited to help you on your fitness journey.\n\n"
            f"Best regards,\n{self.from_name} Team"
        )
        html_body = (
            "<html><body>"
            f"<h2>Welcome to {self.from_name}!</h2>"
            f"<p>Hi {html.escape(first_name)},</p>"
            f"<p>Thank you for joining {self.from_name}! "
            "We're excited to help you on your fitness journey.</p>"
            f"<p>Best regards,<br>{self.from_name} Team</p>"
            "</body></html>"
        )
        return self._send(to, subject, text_body, html_body)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @staticmethod
    def _redact(address: str) -> str:
        if "@" not in address:
            return "redacted"
        local, domain = address.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _send(self, to: str, subject: str, text_body: str, html_body: str) -> bool:
        if not self.is_configured:
            logger.info("Email not configured; skipping '%s' to %s", subject, self._redact(to))
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            # OSError covers refused connections and socket timeouts.
            logger.error("Failed to send '%s' to %s: %s", subject, self._redact(to), exc)
            return False

        logger.info("Sent '%s' to %s", subject, self._redact(to))
        return True
