"""Event envelope codec.

Turns one wire message into a WorkflowEvent and back. The wire framing is
standard server-sent events:

    data: {"workflow_id": "...", "event_type": "LOG", "protocol": "MCP",
           "data": {"message": "..."}, "timestamp": "2024-01-01T00:00:00Z"}
    <blank line>

and the literal payload [DONE] marks producer-side end-of-stream without
being an event.

Decoding is lenient about shape (missing event_type means LOG, a missing
or unparseable timestamp means now, the flat {"type", "message"} producer
shape is accepted) and strict about content (invalid JSON or an unknown
event type fails). A failure is always local to one message: callers log
it and keep reading.
"""

import json
import logging
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from schemas.events import EventType, ProtocolTag, WorkflowEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_PAYLOAD = "[DONE]"
DONE_FRAME = f"{DATA_PREFIX}{DONE_PAYLOAD}\n\n"

_EVENT_ADAPTER: TypeAdapter[WorkflowEvent] = TypeAdapter(WorkflowEvent)
_TIMESTAMP_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)
_KNOWN_PROTOCOLS = {tag.value for tag in ProtocolTag}
_PAYLOAD_KEYS = ("message", "result", "error")


class EventDecodeError(Exception):
    """Raised when one wire message cannot be decoded into a WorkflowEvent.

    Non-fatal by contract: the consumer drops the message and continues
    reading the stream. The .raw attribute holds the offending text.
    """

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def encode_event(event: WorkflowEvent) -> str:
    """Serialize one event as a complete SSE frame (line plus blank line).

    The receiver-side id is excluded; every consumer assigns its own.
    """
    return f"{DATA_PREFIX}{event.model_dump_json()}\n\n"


def decode_event(raw: str) -> WorkflowEvent:
    """Decode one message payload into a WorkflowEvent.

    Args:
        raw: The JSON payload of a message. A full "data: ..." line is also
            accepted; the prefix is removed first.

    Returns:
        The decoded event with a freshly assigned id.

    Raises:
        EventDecodeError: If the payload is not a JSON object, names an
            unknown event_type, or fails validation for its variant.
    """
    text = raw[len(DATA_PREFIX):] if raw.startswith(DATA_PREFIX) else raw

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EventDecodeError(f"Invalid JSON in event payload: {exc}", raw=raw) from exc

    if not isinstance(payload, dict):
        raise EventDecodeError("Event payload is not a JSON object", raw=raw)

    event_type = payload.get("event_type") or payload.get("type") or EventType.LOG.value

    candidate = {
        "workflow_id": payload.get("workflow_id") or "",
        "event_type": event_type,
        "protocol": _known_protocol(payload.get("protocol")),
        "data": _event_data(payload, event_type),
    }
    timestamp = _timestamp(payload.get("timestamp"))
    if timestamp is not None:
        candidate["timestamp"] = timestamp

    try:
        return _EVENT_ADAPTER.validate_python(candidate)
    except ValidationError as exc:
        raise EventDecodeError(f"Event payload failed validation: {exc}", raw=raw) from exc


# ── Private helpers ────────────────────────────────────────────────────────────

def _event_data(payload: dict, event_type: str) -> dict:
    """Return the data object, lifting top-level fields for the flat shape."""
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {key: payload[key] for key in _PAYLOAD_KEYS if key in payload}

    if event_type == EventType.ERROR and not data.get("error"):
        data = {"error": data.get("message") or "Unknown error"}
    return data


def _timestamp(value: object) -> datetime | None:
    """Parse the producer's timestamp; an unusable one falls back to now."""
    if not value:
        return None
    try:
        return _TIMESTAMP_ADAPTER.validate_python(value)
    except ValidationError:
        logger.debug("Dropping unparseable timestamp %r.", value)
        return None


def _known_protocol(value: object) -> str | None:
    if value is None or (isinstance(value, str) and value in _KNOWN_PROTOCOLS):
        return value
    logger.debug("Dropping unknown protocol tag %r.", value)
    return None
