"""
Email delivery for owner notifications.

DESIGN DECISION: Delivery sits behind EmailSenderInterface so the
dispatcher never knows about SMTP. Tests plug in a recording sender.

Sends are NOT retried here. A failed notification is reported by the
dispatcher and the run moves on; the items it describes are already
persisted and will not be due again.
"""

import asyncio
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

from src.config import get_settings
from src.config.settings import EmailSettings


class NotificationError(Exception):
    """Email could not be delivered."""
    pass


class EmailSenderInterface(ABC):
    """Anything that can deliver one email."""

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        """
        Deliver a message.

        Raises:
            NotificationError: If delivery fails
        """
        pass


class SMTPEmailSender(EmailSenderInterface):
    """Sends multipart (plain text + HTML) email over SMTP."""

    def __init__(self, settings: Optional[EmailSettings] = None):
        self._settings = settings or get_settings().email

    def _build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._settings.from_address
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.host, s.port, timeout=s.timeout_seconds) as smtp:
            smtp.ehlo()
            if s.use_starttls:
                smtp.starttls(context=ssl.create_default_context())
                smtp.ehlo()
            if s.username:
                smtp.login(s.username, s.password or "")
            smtp.send_message(msg)

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        msg = self._build_message(to, subject, html, text)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery to {to} failed: {e}")
