"""Mail transport implementations.

Each module implements a single delivery route. The notifier tries them
in the configured order and stops at the first success.
"""

from pgbackup.alerts.channels.mailx import MailxTransport
from pgbackup.alerts.channels.sendmail import SendmailTransport
from pgbackup.alerts.channels.smtp import SmtpTransport

__all__ = [
    "MailxTransport",
    "SendmailTransport",
    "SmtpTransport",
]
