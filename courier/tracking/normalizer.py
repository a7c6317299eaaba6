"""Map inbound real-time messages onto the canonical StatusEvent envelope.

Accepted shapes:
  - canonical envelope {eventType, orderId, timestamp, data}
  - notification wrapper {eventType|title, timestamp, message,
    data: {orderId, data: {...}}} as pushed by the notification socket
Anything else is dropped with a warning; this module never raises.
"""

import logging
import math
from datetime import UTC, datetime
from typing import Any

from courier.models.events import EventType, StatusEvent

logger = logging.getLogger(__name__)

# Epoch values below this are seconds, not milliseconds (year 2286 in seconds)
_MS_THRESHOLD = 10_000_000_000


def parse_timestamp_ms(value: Any) -> int | None:
    """Epoch ms from epoch ms, epoch seconds or an ISO-8601 string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        if value <= 0:
            return None
        return int(value if value >= _MS_THRESHOLD else value * 1000)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp_ms(float(text))
        except ValueError:
            pass
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return int(dt.timestamp() * 1000)
    return None


def _event_type(raw: dict) -> EventType | None:
    name = raw.get("eventType") or raw.get("title")
    try:
        return EventType(name)
    except ValueError:
        return None


def _sequence(*sources: dict) -> int | None:
    for source in sources:
        value = source.get("sequence")
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def normalize_message(raw: Any) -> StatusEvent | None:
    """Return the canonical event for a raw message, or None to drop it."""
    if not isinstance(raw, dict):
        logger.warning("Dropping non-object real-time message: %r", raw)
        return None

    event_type = _event_type(raw)
    if event_type is None:
        logger.warning(
            "Dropping message with unknown event type %r",
            raw.get("eventType") or raw.get("title"),
        )
        return None

    data = raw.get("data")
    if not isinstance(data, dict):
        logger.warning("Dropping %s message without a data object", event_type)
        return None

    if isinstance(data.get("data"), dict) and "orderId" in data:
        # Notification wrapper: the standard event sits one level down
        inner = data
        payload = dict(inner["data"])
        order_id = inner.get("orderId")
        timestamp = parse_timestamp_ms(inner.get("timestamp")) or parse_timestamp_ms(
            raw.get("timestamp")
        )
        sequence = _sequence(inner, raw)
        if raw.get("message") and not payload.get("message"):
            payload["message"] = raw["message"]
    else:
        payload = dict(data)
        order_id = raw.get("orderId")
        timestamp = parse_timestamp_ms(raw.get("timestamp"))
        sequence = _sequence(raw)

    if not order_id:
        logger.warning("Dropping %s message without orderId", event_type)
        return None
    if timestamp is None:
        logger.warning("Dropping %s message for order %s without a timestamp", event_type, order_id)
        return None

    return StatusEvent(
        event_type=event_type,
        order_id=str(order_id),
        timestamp=timestamp,
        payload=payload,
        sequence=sequence,
    )
