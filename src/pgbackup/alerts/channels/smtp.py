"""Email (SMTP) transport."""

from __future__ import annotations

import smtplib
from typing import Any

from pgbackup.alerts.base import BaseTransport
from pgbackup.alerts.protocol import DeliveryResult, MailMessage, TransportType
from pgbackup.core.errors import NotifyError


class SmtpTransport(BaseTransport):
    """
    Sends the report through an SMTP relay.

    Used when no local MTA is installed, or as the last route before the
    fallback file.
    """

    def __init__(
        self,
        smtp_host: str,
        *,
        name: str = "smtp",
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = True,
        **kwargs: Any,
    ):
        super().__init__(name, TransportType.SMTP, **kwargs)
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._use_tls = use_tls

    def deliver(self, message: MailMessage) -> DeliveryResult:
        try:
            with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self.timeout) as server:
                if self._use_tls:
                    server.starttls()
                if self._smtp_user and self._smtp_password:
                    server.login(self._smtp_user, self._smtp_password)
                server.send_message(message.to_email(), from_addr=message.sender, to_addrs=list(message.recipients))
        except (smtplib.SMTPException, OSError) as e:
            return DeliveryResult.fail(self.name, NotifyError(str(e), cause=e))
        return DeliveryResult.ok(self.name)
