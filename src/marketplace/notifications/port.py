"""Notification sink port: where buyer/seller notices are handed off."""

from abc import ABC, abstractmethod


class NotificationSink(ABC):
    """Abstract interface for notification dispatch.

    Delivery is fire-and-forget: callers log a failing sink and carry on.
    """

    @abstractmethod
    def notify(self, event_kind: str, recipient_ref: str, payload: dict) -> dict:
        """Hand one notice to the sink.

        Returns:
            dict with keys: notification_id, status ("sent" or "failed"), error (optional)
        """
        ...
