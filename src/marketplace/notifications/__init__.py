"""Notification sink registry.

Provides singleton access to the configured sink. NOTIFICATION_SINK selects
"log" (default) or "memory"; tests may install their own with set_sink().
"""

import os

from marketplace.notifications.port import NotificationSink

SINK_LOG = "log"
SINK_MEMORY = "memory"

_sink_instance: NotificationSink | None = None


def get_sink() -> NotificationSink:
    """Return the configured notification sink (singleton)."""
    global _sink_instance
    if _sink_instance is None:
        sink_type = os.environ.get("NOTIFICATION_SINK", SINK_LOG).lower()
        if sink_type == SINK_LOG:
            from marketplace.notifications.log_sink import LogNotificationSink

            _sink_instance = LogNotificationSink()
        elif sink_type == SINK_MEMORY:
            from marketplace.notifications.memory_sink import InMemoryNotificationSink

            _sink_instance = InMemoryNotificationSink()
        else:
            raise ValueError(f"Unknown notification sink: {sink_type}")

    return _sink_instance


def set_sink(sink: NotificationSink) -> None:
    global _sink_instance
    _sink_instance = sink


def reset_sink():
    """Forget the current sink (useful for testing)."""
    global _sink_instance
    _sink_instance = None
