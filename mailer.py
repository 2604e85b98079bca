import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from fastapi import HTTPException

import settings

logger = logging.getLogger(__name__)


class Mailer:
    """Sends plain-text mail through the configured SMTP account."""

    def __init__(self, host: str, port: int, user: Optional[str], password: Optional[str]):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, to: str, subject: str, body: str) -> None:
        if not self.user or not self.password:
            logger.error("Mail account not configured, cannot send %r to %s", subject, to)
            raise HTTPException(status_code=502, detail="Could not send email")

        message = EmailMessage()
        message["From"] = self.user
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Sending %r to %s failed", subject, to)
            raise HTTPException(status_code=502, detail="Could not send email")
        logger.info("Sent %r to %s", subject, to)

    def send_reset_otp(self, to: str, otp: str) -> None:
        self.send(
            to,
            "Password Reset OTP",
            f"Your OTP for resetting password is: {otp}. It is valid for {settings.OTP_EXPIRE_MINUTES} minutes.",
        )


_mailer = Mailer(settings.EMAIL_HOST, settings.EMAIL_PORT, settings.EMAIL_USER, settings.EMAIL_PASS)


def get_mailer() -> Mailer:
    return _mailer
