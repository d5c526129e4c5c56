"""Translate database change notifications into automation events.

A change notification looks like ``{"type": "insert", "table": "leads",
"record": {...}, "old_record": {...}}``. Only changes that correspond to a
known business event produce a stimulus; everything else is ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..core.logger import get_logger
from .models import TriggerStimulus, TriggerType, utcnow

logger = get_logger("automation.events")

# Status transitions on update that are reported as their own event.
_CONVERSATION_STATUS_EVENTS = {
    "closed": "conversation.closed",
    "human_takeover": "conversation.human_takeover",
}
_BOOKING_STATUS_EVENTS = {
    "cancelled": "booking.cancelled",
    "confirmed": "booking.confirmed",
    "completed": "booking.completed",
    "no_show": "booking.no_show",
}

_LEAD_FIELDS = (
    "id", "name", "email", "phone", "company", "status", "stage_id", "data", "created_at",
    "updated_at",
)
_CONVERSATION_FIELDS = ("id", "agent_id", "status", "channel", "metadata", "created_at")
_MESSAGE_FIELDS = ("id", "conversation_id", "role", "content", "created_at")
_BOOKING_FIELDS = (
    "id", "title", "start_time", "end_time", "status", "event_type", "visitor_name",
    "visitor_email", "visitor_phone", "lead_id", "conversation_id", "location_id", "notes",
    "created_at",
)

EVENT_NAMES = (
    "lead.created",
    "lead.updated",
    "lead.deleted",
    "lead.stage_changed",
    "conversation.created",
    "conversation.closed",
    "conversation.human_takeover",
    "message.received",
    "booking.created",
    "booking.updated",
    "booking.deleted",
    "booking.cancelled",
    "booking.confirmed",
    "booking.completed",
    "booking.no_show",
)


class ChangeNotification(BaseModel):
    """A row-level change reported by the database."""

    type: Literal["insert", "update", "delete"]
    table: str
    schema_name: str = Field(default="public", alias="schema")
    record: dict[str, Any] = Field(default_factory=dict)
    old_record: dict[str, Any] | None = None
    tenant_id: str | None = None


def _status_transition(
    record: Mapping[str, Any], old: Mapping[str, Any] | None, events: Mapping[str, str]
) -> str | None:
    if not old:
        return None
    status = record.get("status")
    if status in events and old.get("status") != status:
        return events[status]
    return None


def event_name_for(change: ChangeNotification) -> str | None:
    """Map a table and operation to an event name, or None if it is not an event."""
    record, old = change.record, change.old_record

    if change.table == "leads":
        if change.type == "insert":
            return "lead.created"
        if change.type == "delete":
            return "lead.deleted"
        if old and record.get("stage_id") != old.get("stage_id"):
            return "lead.stage_changed"
        return "lead.updated"

    if change.table == "conversations":
        if change.type == "insert":
            return "conversation.created"
        if change.type == "update":
            return _status_transition(record, old, _CONVERSATION_STATUS_EVENTS)
        return None

    if change.table == "messages":
        if change.type == "insert" and record.get("role") == "user":
            return "message.received"
        return None

    if change.table == "calendar_events":
        if change.type == "insert":
            return "booking.created"
        if change.type == "delete":
            return "booking.deleted"
        return _status_transition(record, old, _BOOKING_STATUS_EVENTS) or "booking.updated"

    return None


def _pick(record: Mapping[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: record.get(name) for name in fields}


def build_event_payload(event_name: str, change: ChangeNotification) -> dict[str, Any]:
    """Build the run seed data for a change event."""
    record = change.record
    payload: dict[str, Any] = {
        "event": event_name,
        "table": change.table,
        "operation": change.type,
        "timestamp": utcnow().isoformat(),
        "record": dict(record),
    }

    if change.table == "leads":
        payload["lead"] = _pick(record, _LEAD_FIELDS)
        if event_name == "lead.stage_changed" and change.old_record:
            payload["previous_stage_id"] = change.old_record.get("stage_id")
    elif change.table == "conversations":
        payload["conversation"] = _pick(record, _CONVERSATION_FIELDS)
        metadata = record.get("metadata")
        if isinstance(metadata, Mapping) and metadata.get("lead_id"):
            payload["lead_id"] = metadata["lead_id"]
    elif change.table == "messages":
        payload["message"] = _pick(record, _MESSAGE_FIELDS)
        payload["conversation_id"] = record.get("conversation_id")
    elif change.table == "calendar_events":
        payload["booking"] = _pick(record, _BOOKING_FIELDS)
        if record.get("lead_id"):
            payload["lead_id"] = record["lead_id"]
        if record.get("conversation_id"):
            payload["conversation_id"] = record["conversation_id"]

    return payload


def stimulus_from_change(change: ChangeNotification) -> TriggerStimulus | None:
    """Convert a change notification into an event stimulus."""
    event_name = event_name_for(change)
    if event_name is None:
        logger.debug("Ignoring %s on %s: no matching event", change.type, change.table)
        return None
    return TriggerStimulus(
        source_type=TriggerType.EVENT,
        event_name=event_name,
        tenant_id=change.tenant_id or change.record.get("tenant_id"),
        payload=build_event_payload(event_name, change),
    )


__all__ = [
    "ChangeNotification",
    "EVENT_NAMES",
    "build_event_payload",
    "event_name_for",
    "stimulus_from_change",
]
