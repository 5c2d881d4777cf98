"""Fire-and-forget hand-off to the notification sink."""

import structlog

from marketplace.notifications import get_sink

logger = structlog.get_logger(__name__)

PAYMENT_SUCCESS = "payment_success"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_FAILED = "payment_failed"
ESCROW_RELEASED = "escrow_released"
REFUND_PROCESSED = "refund_processed"
DELIVERY_STATUS_CHANGED = "delivery_status_changed"


def send_notice(event_kind: str, recipient_ref: str | None, payload: dict) -> bool:
    """Notify one recipient. Returns True when the sink accepted the notice.

    Sink failures never reach the caller; a state change that already
    committed must not be undone because a notice could not go out.
    """
    if not recipient_ref:
        logger.debug("Notice has no recipient, skipped", event_kind=event_kind)
        return False

    try:
        result = get_sink().notify(event_kind, str(recipient_ref), payload)
    except Exception as exc:
        logger.error(
            "Notification sink raised",
            event_kind=event_kind,
            recipient_ref=str(recipient_ref),
            error=str(exc),
            exc_info=True,
        )
        return False

    if result.get("status") != "sent":
        logger.warning(
            "Notification not delivered",
            event_kind=event_kind,
            recipient_ref=str(recipient_ref),
            error=result.get("error"),
        )
        return False
    return True
