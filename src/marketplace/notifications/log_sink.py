"""Log notification sink: writes each notice as a structured log line.

Used until a real SMS/email/push provider is wired in.
"""

from uuid import uuid4

import structlog

from marketplace.notifications.port import NotificationSink

logger = structlog.get_logger(__name__)


class LogNotificationSink(NotificationSink):
    def notify(self, event_kind: str, recipient_ref: str, payload: dict) -> dict:
        notification_id = f"ntf-{uuid4().hex[:12]}"
        logger.info(
            "Notification dispatched",
            notification_id=notification_id,
            event_kind=event_kind,
            recipient_ref=recipient_ref,
            **payload,
        )
        return {"notification_id": notification_id, "status": "sent"}
