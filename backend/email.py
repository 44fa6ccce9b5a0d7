import smtplib
import ssl
import logging
from email.mime.text import MIMEText

from backend.config import Settings

logger = logging.getLogger(__name__)


class EmailNotificationSink:
    """Sends sync problem notifications over SMTP (SSL)."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to_email: str, subject: str, body: str):
        msg = MIMEText(body, 'plain')
        msg['Subject'] = f"{self.settings.mail_subject_prefix} {subject}".strip()
        msg['From'] = self.settings.smtp_from
        msg['To'] = to_email

        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port, context=context) as server:
            if self.settings.smtp_user:
                server.login(self.settings.smtp_user, self.settings.smtp_password)
            server.send_message(msg)
        logger.info(f"Sent notification '{subject}' to {to_email}")


class NoopNotificationSink:
    """Used when mail is disabled; only logs."""

    def send(self, to_email: str, subject: str, body: str):
        logger.info(f"Mail disabled, not sending '{subject}' to {to_email}")


def build_notification_sink(settings: Settings):
    if settings.mail_enabled and settings.smtp_host and settings.smtp_from:
        return EmailNotificationSink(settings)
    return NoopNotificationSink()
