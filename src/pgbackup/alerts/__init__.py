"""
Run report notifications.

The notifier renders a RunReport into a MailMessage and hands it to the
configured transports in order::

    RunReport ──► render_report ──► MailMessage
                                        │
                                        ▼
                          sendmail ─► mail ─► smtp ─► fallback file

Usage:
    from pgbackup.alerts import build_notifier

    notifier = build_notifier(settings)
    notifier.notify(report, ctx)
"""

from pgbackup.alerts.base import BaseTransport
from pgbackup.alerts.channels import MailxTransport, SendmailTransport, SmtpTransport
from pgbackup.alerts.notifier import (
    FALLBACK_FILENAME,
    NotificationResult,
    Notifier,
    build_notifier,
    build_transports,
    write_fallback,
)
from pgbackup.alerts.protocol import DeliveryResult, MailMessage, MailTransport, TransportType
from pgbackup.alerts.render import render_body, render_report, render_subject

__all__ = [
    "FALLBACK_FILENAME",
    "BaseTransport",
    "DeliveryResult",
    "MailMessage",
    "MailTransport",
    "MailxTransport",
    "NotificationResult",
    "Notifier",
    "SendmailTransport",
    "SmtpTransport",
    "TransportType",
    "build_notifier",
    "build_transports",
    "render_body",
    "render_report",
    "render_subject",
    "write_fallback",
]
