import logging
from typing import List

logger = logging.getLogger(__name__)


class NotificationSender:
    """
    Outbound notification channel (email in production deployments).

    Delivery is best-effort: callers go through ``send_quietly`` so a failing
    channel never fails the operation that triggered it.
    """

    def send(self, recipients: List[str], subject: str, body: str) -> None:
        raise NotImplementedError


class LoggingNotificationSender(NotificationSender):
    """Writes notifications to the application log"""

    def send(self, recipients: List[str], subject: str, body: str) -> None:
        logger.info(f"Notification to {', '.join(recipients)}: {subject}\n{body}")


def send_quietly(notifier: NotificationSender, recipients: List[str], subject: str, body: str) -> bool:
    if not recipients:
        logger.info(f"No recipients for notification '{subject}'")
        return False
    try:
        notifier.send(recipients, subject, body)
    except Exception:
        logger.exception(f"Failed to send notification '{subject}'")
        return False
    logger.info(f"Notification '{subject}' sent to {len(recipients)} recipient(s)")
    return True
