"""Failure notifier.

Builds the "needs some attention" email for a failed job and hands it to a
transport.  Transport selection is a pure function of configuration:

    1. a transport injected into the notifier
    2. ``SmtpTransport.from_dsn()`` when ``mailer_dsn`` is set
    3. ``SmtpTransport`` when ``mailer == "smtp"``
    4. ``SendmailTransport`` otherwise
"""

from __future__ import annotations

import socket
from email.message import EmailMessage
from email.utils import formataddr

from jobspine.core.logging import get_logger
from jobspine.execution.config import JobConfig
from jobspine.framework.alerts.transports import MailTransport, SendmailTransport, SmtpTransport

logger = get_logger(__name__)


class FailureNotifier:
    """Sends failure emails for jobs that have recipients configured.

    Example:
        >>> notifier = FailureNotifier()
        >>> notifier.notify("backup", config, "Job exited with status '2'")
    """

    def __init__(self, transport: MailTransport | None = None, host: str | None = None):
        self._transport = transport
        self._host = host

    @property
    def host(self) -> str:
        return self._host or socket.gethostname()

    def select_transport(self, config: JobConfig) -> MailTransport:
        """Transport for ``config``.

        Raises:
            NotificationError: ``mailer_dsn`` cannot be parsed
        """
        if self._transport is not None:
            return self._transport
        if config.mailer_dsn:
            return SmtpTransport.from_dsn(config.mailer_dsn)
        if config.mailer == "smtp":
            return SmtpTransport(
                config.smtp_host,
                config.smtp_port,
                username=config.smtp_username,
                password=config.smtp_password,
                security=config.smtp_security,
            )
        return SendmailTransport()

    def build_message(self, job: str, config: JobConfig, message: str) -> EmailMessage:
        host = self.host
        body = (
            f"{message}\n\n"
            f"You can find its output in {config.stdout_target} on {host}.\n\n"
            f"Best,\n"
            f"jobspine@{host}\n"
        )

        mail = EmailMessage()
        mail["Subject"] = f"[{host}] '{job}' needs some attention!"
        mail["From"] = formataddr((config.smtp_sender_name, config.sender))
        mail["Sender"] = config.sender
        mail["To"] = ", ".join(config.recipient_list)
        mail.set_content(body)
        return mail

    def notify(self, job: str, config: JobConfig, message: str) -> EmailMessage | None:
        """Send the failure email; no-op when there are no recipients.

        Raises:
            NotificationError: The transport could not deliver the message
        """
        recipients = config.recipient_list
        if not recipients:
            return None

        mail = self.build_message(job, config, message)
        self.select_transport(config).send(mail)
        logger.info("notify.sent", job=job, recipients=len(recipients))
        return mail


__all__ = ["FailureNotifier"]
