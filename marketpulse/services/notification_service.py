"""Fire-and-forget delivery of triggered alerts."""
from typing import Optional, Set, Tuple
import asyncio
import logging

from marketpulse.domain.entities import Alert
from marketpulse.domain.errors import MarketPulseError, NotificationError
from marketpulse.domain.interfaces import AlertRepository, EmailTransport, UserDirectory
from marketpulse.services.broadcast_service import BroadcastService

logger = logging.getLogger(__name__)


def format_alert_email(alert: Alert) -> Tuple[str, str]:
    """Subject and body of the alert email."""
    subject = f"Stock Alert: {alert.symbol} - {alert.message}"
    triggered = alert.triggered_at.isoformat() if alert.triggered_at else "n/a"
    body = (
        f"Your {alert.priority.value} priority alert for {alert.symbol} was triggered.\n\n"
        f"Condition: {alert.alert_type.value} {alert.condition.value} {alert.target_value}\n"
        f"Observed value: {alert.current_value}\n"
        f"Triggered at: {triggered}\n\n"
        f"{alert.message}\n"
    )
    return subject, body


class NotificationService:
    """Pushes trigger events to the owner's alerts room and emails them once."""

    def __init__(
        self,
        alert_repository: AlertRepository,
        broadcast: BroadcastService,
        user_directory: UserDirectory,
        email_transport: Optional[EmailTransport] = None,
    ):
        self._alerts = alert_repository
        self._broadcast = broadcast
        self._users = user_directory
        self._email = email_transport
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, alert: Alert) -> asyncio.Task:
        """Schedule delivery in the background and return immediately."""
        task = asyncio.create_task(self._deliver(alert), name=f"notify-{alert.id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification task {task.get_name()} failed: {error!r}")

    async def drain(self) -> None:
        """Wait for every outstanding delivery."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, alert: Alert) -> None:
        try:
            await self._broadcast.broadcast_alert_to_user(alert.user_id, alert)
        except Exception as e:
            logger.error(f"Push for alert {alert.id} failed: {e}")

        if await self._send_email(alert):
            try:
                self._alerts.mark_notification_sent(alert.id)
            except MarketPulseError as e:
                logger.error(f"Could not flag notification for alert {alert.id}: {e}")

    async def _send_email(self, alert: Alert) -> bool:
        if self._email is None:
            return False
        contact = self._users.get_contact(alert.user_id)
        if contact is None or not contact.email or not contact.email_notifications:
            logger.debug(f"No email contact for user {alert.user_id}")
            return False

        subject, body = format_alert_email(alert)
        try:
            await self._email.send(contact.email, subject, body)
        except NotificationError as e:
            logger.error(f"Email for alert {alert.id} failed: {e}")
            return False
        return True
