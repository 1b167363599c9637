"""
auth/notify.py -- Outbound email for verification codes and reset links.

Fire-and-forget contract: flows await send_*() but a delivery failure never
fails the flow. SMTP errors are logged with traceback and dropped; the user
can always ask for a new code.

smtplib is blocking, so the actual send runs in a worker thread
(asyncio.to_thread) to keep the event loop free.

When SMTP_HOST is not configured the message is written to the log instead
(dev mode). The code itself is only included when DEBUG=true.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("eatfast.auth.notify")

_CODE_TEMPLATE = """\
{heading}

Your {purpose} code is: {code}

This code expires in 10 minutes.
{footer}
"""


class Notifier:
    """SMTP-backed notification sender."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send_verification_code(self, email: str, code: str) -> None:
        body = _CODE_TEMPLATE.format(
            heading="Welcome to Eat Fast!",
            purpose="verification",
            code=code,
            footer="If you didn't request this, please ignore this email.",
        )
        await self._dispatch(email, "Verify Your Email - Eat Fast", body, code)

    async def send_login_code(self, email: str, code: str) -> None:
        body = _CODE_TEMPLATE.format(
            heading="Login Verification",
            purpose="login verification",
            code=code,
            footer="If you didn't request this, please secure your account immediately.",
        )
        await self._dispatch(email, "Your Login Code - Eat Fast", body, code)

    async def send_password_reset(self, email: str, token: str) -> None:
        reset_url = f"{self.settings.client_url}/reset-password?token={token}"
        body = (
            "You requested a password reset. Open the link below to choose a new password:\n\n"
            f"{reset_url}\n\n"
            "This link expires in 1 hour.\n"
            "If you didn't request this, please ignore this email.\n"
        )
        await self._dispatch(email, "Password Reset - Eat Fast", body, token)

    async def _dispatch(self, to_email: str, subject: str, body: str, secret: str) -> None:
        if not self.settings.smtp_host:
            if self.settings.debug:
                logger.info("[DEV MODE] email to %s (%s): %s", to_email, subject, secret)
            else:
                logger.warning("SMTP not configured -- dropped email to %s (%s)", to_email, subject)
            return
        try:
            await asyncio.to_thread(self._send, to_email, subject, body)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send %r to %s", subject, to_email)
        else:
            logger.info("Sent %r to %s", subject, to_email)

    def _send(self, to_email: str, subject: str, body: str) -> None:
        cfg = self.settings
        msg = EmailMessage()
        msg["From"] = cfg.from_email
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as server:
            if cfg.smtp_use_tls:
                server.starttls()
            if cfg.smtp_user and cfg.smtp_password:
                server.login(cfg.smtp_user, cfg.smtp_password)
            server.send_message(msg)
