"""
Notification protocol and data classes.

Defines the interface of a mail transport and the values passed through
it. Concrete transports live in ``channels/``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class TransportType(str, Enum):
    SENDMAIL = "sendmail"
    MAIL = "mail"
    SMTP = "smtp"


@dataclass(frozen=True)
class MailMessage:
    """A rendered notification, independent of how it is delivered."""

    subject: str
    body: str
    recipients: tuple[str, ...]
    sender: str = "pgbackup@localhost"

    def to_email(self) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(self.body)
        return msg


@dataclass
class DeliveryResult:
    """Result of one delivery attempt through one transport."""

    transport: str
    success: bool
    message: str | None = None
    error: Exception | None = None
    delivered_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def ok(cls, transport: str, message: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(transport=transport, success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, transport: str, error: Exception) -> DeliveryResult:
        return cls(transport=transport, success=False, error=error, message=str(error))


@runtime_checkable
class MailTransport(Protocol):
    """
    Protocol for mail transports.

    Implementations must not raise from ``send``; failures are reported as
    a failed DeliveryResult so the notifier can move to the next transport.
    """

    @property
    def name(self) -> str: ...

    @property
    def transport_type(self) -> TransportType: ...

    @property
    def enabled(self) -> bool: ...

    def send(self, message: MailMessage) -> DeliveryResult: ...
