"""Webhook payload validation.

Turns the decoded JSON body delivered by the platform into typed events, so the
ingestor never has to poke at optional keys of an untyped dict.
"""

from dataclasses import dataclass


class WebhookPayloadError(Exception):
    pass


@dataclass(frozen=True)
class EventSource:
    type: str
    user_id: str | None = None
    group_id: str | None = None
    room_id: str | None = None

    @property
    def is_group(self) -> bool:
        return self.type == "group" and bool(self.group_id)


@dataclass(frozen=True)
class TextMessageEvent:
    source: EventSource
    text: str


@dataclass(frozen=True)
class OtherEvent:
    type: str
    source: EventSource | None = None


def _opt_str(value) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_source(raw) -> EventSource | None:
    if not isinstance(raw, dict):
        return None
    return EventSource(
        type=str(raw.get("type") or ""),
        user_id=_opt_str(raw.get("userId")),
        group_id=_opt_str(raw.get("groupId")),
        room_id=_opt_str(raw.get("roomId")),
    )


def parse_event(raw) -> TextMessageEvent | OtherEvent:
    if not isinstance(raw, dict):
        raise WebhookPayloadError(f"event must be an object, got {type(raw).__name__}")

    event_type = str(raw.get("type") or "")
    source = parse_source(raw.get("source"))
    message = raw.get("message")

    if event_type == "message" and isinstance(message, dict) and message.get("type") == "text":
        text = message.get("text")
        if isinstance(text, str):
            return TextMessageEvent(
                source=source or EventSource(type=""),
                text=text,
            )

    return OtherEvent(type=event_type, source=source)


def parse_events(payload) -> list[TextMessageEvent | OtherEvent]:
    if not isinstance(payload, dict):
        raise WebhookPayloadError("webhook body must be a JSON object")
    events = payload.get("events", [])
    if events is None:
        return []
    if not isinstance(events, list):
        raise WebhookPayloadError("'events' must be an array")
    return [parse_event(e) for e in events]
