"""SMTP email transport."""
from email.message import EmailMessage
import asyncio
import logging
import smtplib

from marketpulse.config import EmailConfig, email_config
from marketpulse.domain.errors import NotificationError
from marketpulse.domain.interfaces import EmailTransport

logger = logging.getLogger(__name__)


class SmtpEmailTransport(EmailTransport):
    """Sends plain-text mail over STARTTLS; the blocking SMTP session runs in a thread."""

    def __init__(self, config: EmailConfig = email_config, timeout: float = 10.0):
        self._config = config
        self._timeout = timeout

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._config.HOST, self._config.PORT, timeout=self._timeout) as smtp:
            smtp.starttls()
            smtp.login(self._config.USER, self._config.PASSWORD)
            smtp.send_message(message)

    async def send(self, to_address: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self._config.FROM_ADDRESS
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email to {to_address} failed: {e}") from e
        logger.info(f"Email sent to {to_address}: {subject}")
