"""Failure alerts: message building and mail transports."""

from jobspine.framework.alerts.notifier import FailureNotifier
from jobspine.framework.alerts.transports import MailTransport, SendmailTransport, SmtpTransport

__all__ = ["FailureNotifier", "MailTransport", "SendmailTransport", "SmtpTransport"]
