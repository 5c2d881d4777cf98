"""In-memory notification sink: records notices for test assertions."""

from uuid import uuid4

from marketplace.notifications.port import NotificationSink


class InMemoryNotificationSink(NotificationSink):
    """Keeps every notice in `sent`. Can be told to fail or to raise."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"

    def configure(
        self,
        should_succeed: bool = True,
        should_raise: bool = False,
        failure_reason: str = "Notification delivery failed",
    ):
        self.should_succeed = should_succeed
        self.should_raise = should_raise
        self.failure_reason = failure_reason

    def notify(self, event_kind: str, recipient_ref: str, payload: dict) -> dict:
        if self.should_raise:
            raise ConnectionError(self.failure_reason)
        if not self.should_succeed:
            return {"notification_id": None, "status": "failed", "error": self.failure_reason}

        notification_id = f"ntf-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "notification_id": notification_id,
                "event_kind": event_kind,
                "recipient_ref": recipient_ref,
                "payload": dict(payload),
            }
        )
        return {"notification_id": notification_id, "status": "sent"}

    def sent_to(self, recipient_ref: str) -> list[dict]:
        return [n for n in self.sent if n["recipient_ref"] == recipient_ref]

    def of_kind(self, event_kind: str) -> list[dict]:
        return [n for n in self.sent if n["event_kind"] == event_kind]

    def reset(self):
        """Clear recorded notices and restore default behavior."""
        self.sent.clear()
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"
