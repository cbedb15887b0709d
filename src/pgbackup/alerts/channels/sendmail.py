"""Local MTA transport via ``sendmail -t``."""

from __future__ import annotations

from typing import Any

from pgbackup.alerts.base import BaseTransport
from pgbackup.alerts.protocol import DeliveryResult, MailMessage, TransportType
from pgbackup.core.errors import NotifyError
from pgbackup.execution.process import run_process


class SendmailTransport(BaseTransport):
    """
    Hands the full RFC 5322 message to the local MTA.

    ``-t`` takes recipients from the headers, ``-i`` stops a lone ``.``
    line from ending the message early.
    """

    def __init__(self, binary: str = "sendmail", *, name: str = "sendmail", **kwargs: Any):
        super().__init__(name, TransportType.SENDMAIL, **kwargs)
        self._binary = binary

    def deliver(self, message: MailMessage) -> DeliveryResult:
        result = run_process(
            [self._binary, "-t", "-i"],
            timeout=self.timeout,
            stdin_data=message.to_email().as_bytes(),
            kill_grace=2.0,
        )
        if result.ok:
            return DeliveryResult.ok(self.name)
        detail = result.describe()
        if result.tail:
            detail = f"{detail}: {result.tail[-1]}"
        return DeliveryResult.fail(self.name, NotifyError(detail))
