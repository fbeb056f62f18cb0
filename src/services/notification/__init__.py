"""Notification services package."""

from src.services.notification.email_sender import (
    EmailSenderInterface,
    NotificationError,
    SMTPEmailSender,
)
from src.services.notification.dispatcher import (
    NotificationDispatcher,
    format_amount,
    net_total,
)

__all__ = [
    "EmailSenderInterface",
    "NotificationDispatcher",
    "NotificationError",
    "SMTPEmailSender",
    "format_amount",
    "net_total",
]
