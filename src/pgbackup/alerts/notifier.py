"""Notifier: delivers the run report through an ordered list of transports.

Transports are tried in order until one succeeds. If all of them fail the
rendered message is appended to a local fallback file so operators can
still read it. ``NotifyError`` is raised only when even the fallback file
cannot be written; the orchestrator logs it and keeps the run verdict.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pgbackup.alerts.channels import MailxTransport, SendmailTransport, SmtpTransport
from pgbackup.alerts.protocol import DeliveryResult, MailMessage, MailTransport
from pgbackup.alerts.render import render_report
from pgbackup.core.errors import NotifyError
from pgbackup.core.logging import get_logger
from pgbackup.core.models import RunContext, RunReport
from pgbackup.core.settings import BackupSettings

logger = get_logger(__name__)

FALLBACK_FILENAME = "pgbackup-notifications.txt"


@dataclass
class NotificationResult:
    message: MailMessage
    deliveries: list[DeliveryResult] = field(default_factory=list)
    fallback_path: Path | None = None

    @property
    def delivered(self) -> bool:
        return any(d.success for d in self.deliveries)


def write_fallback(message: MailMessage, directory: Path, now: datetime | None = None) -> Path:
    """Append ``message`` to the fallback file in ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / FALLBACK_FILENAME
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    with path.open("a", encoding="utf-8") as fh:
        fh.write(f"===== {stamp} =====\n")
        fh.write(f"To: {', '.join(message.recipients)}\n")
        fh.write(f"Subject: {message.subject}\n\n")
        fh.write(message.body)
        fh.write("\n")
    return path


class Notifier:
    """Renders and dispatches run reports."""

    def __init__(
        self,
        transports: Sequence[MailTransport],
        *,
        fallback_dir: Path | None = None,
        sender: str = "pgbackup@localhost",
    ):
        self.transports = list(transports)
        self.fallback_dir = fallback_dir
        self.sender = sender

    def notify(self, report: RunReport, ctx: RunContext) -> NotificationResult:
        message = render_report(report, ctx, sender=self.sender)
        result = NotificationResult(message=message)

        for transport in self.transports:
            if not transport.enabled:
                continue
            delivery = transport.send(message)
            result.deliveries.append(delivery)
            if delivery.success:
                logger.info("notify.delivered", transport=transport.name, subject=message.subject)
                return result
            logger.warning("notify.transport_failed", transport=transport.name, error=delivery.message)

        if self.fallback_dir is None:
            raise NotifyError("no transport delivered the report and no fallback directory is configured")
        try:
            result.fallback_path = write_fallback(message, self.fallback_dir)
        except OSError as exc:
            raise NotifyError(f"cannot write fallback notification: {exc}", cause=exc).with_context(
                path=str(self.fallback_dir)
            ) from exc
        logger.warning("notify.fallback_written", path=str(result.fallback_path))
        return result


def build_transports(settings: BackupSettings) -> list[MailTransport]:
    """Instantiate the configured transports, in order."""
    transports: list[MailTransport] = []
    for name in settings.transports:
        if name == "sendmail":
            transports.append(SendmailTransport(settings.sendmail_bin, timeout=settings.notify_timeout))
        elif name == "mail":
            transports.append(MailxTransport(settings.mail_bin, timeout=settings.notify_timeout))
        elif name == "smtp":
            if not settings.smtp_host:
                logger.warning("notify.smtp_unconfigured")
                continue
            transports.append(
                SmtpTransport(
                    settings.smtp_host,
                    smtp_port=settings.smtp_port,
                    smtp_user=settings.smtp_user,
                    smtp_password=settings.smtp_password,
                    use_tls=settings.smtp_tls,
                    timeout=settings.notify_timeout,
                )
            )
    return transports


def build_notifier(settings: BackupSettings) -> Notifier:
    return Notifier(
        build_transports(settings),
        fallback_dir=settings.resolved_fallback_dir,
        sender=settings.mail_from,
    )
