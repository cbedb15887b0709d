"""``mail -s`` transport (mailx / bsd-mailx)."""

from __future__ import annotations

from typing import Any

from pgbackup.alerts.base import BaseTransport
from pgbackup.alerts.protocol import DeliveryResult, MailMessage, TransportType
from pgbackup.core.errors import NotifyError
from pgbackup.execution.process import run_process


class MailxTransport(BaseTransport):
    """Pipes the body into ``mail -s <subject> <recipients...>``."""

    def __init__(self, binary: str = "mail", *, name: str = "mail", **kwargs: Any):
        super().__init__(name, TransportType.MAIL, **kwargs)
        self._binary = binary

    def deliver(self, message: MailMessage) -> DeliveryResult:
        result = run_process(
            [self._binary, "-s", message.subject, *message.recipients],
            timeout=self.timeout,
            stdin_data=message.body.encode("utf-8"),
            kill_grace=2.0,
        )
        if result.ok:
            return DeliveryResult.ok(self.name)
        detail = result.describe()
        if result.tail:
            detail = f"{detail}: {result.tail[-1]}"
        return DeliveryResult.fail(self.name, NotifyError(detail))
