"""Email service — delivers signup OTPs via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from pairing_broker.config import Settings

logger = logging.getLogger(__name__)


class OtpMailer:
    """Sends OTP emails using the configured SMTP server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send_otp(self, recipient: str, code: str) -> bool:
        """Email *code* to *recipient*.

        Returns ``True`` once the SMTP server has accepted the message and
        ``False`` if delivery failed; the caller decides how to surface it.
        """
        cfg = self._settings
        msg = EmailMessage()
        msg["Subject"] = "Verify your email"
        msg["From"] = f'"{cfg.app_name}" <{cfg.email_from}>'
        msg["To"] = recipient
        msg.set_content(
            f"Your OTP is {code}. It is valid for {cfg.otp_ttl_seconds // 60} minutes.\n\n"
            "If you did not request this code you can ignore this email."
        )
        msg.add_alternative(
            f"<p>Your OTP is <b>{code}</b>. "
            f"It is valid for {cfg.otp_ttl_seconds // 60} minutes.</p>",
            subtype="html",
        )

        logger.info("Sending OTP email to %s", recipient)
        try:
            await aiosmtplib.send(
                msg,
                hostname=cfg.smtp_host,
                port=cfg.smtp_port,
                username=cfg.smtp_username or None,
                password=cfg.smtp_password or None,
                use_tls=cfg.smtp_use_tls,
                start_tls=not cfg.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("OTP email to %s could not be delivered", recipient)
            return False

        logger.info("OTP email sent to %s", recipient)
        return True
