"""Tests for change notification translation."""

from __future__ import annotations

import pytest

from pilot_automation.automation.events import (
    ChangeNotification,
    event_name_for,
    stimulus_from_change,
)
from pilot_automation.automation.models import TriggerType


def change(type_: str, table: str, record: dict, old: dict | None = None) -> ChangeNotification:
    return ChangeNotification(type=type_, table=table, record=record, old_record=old)


@pytest.mark.parametrize(
    ("notification", "expected"),
    [
        (change("insert", "leads", {"id": "L1"}), "lead.created"),
        (change("delete", "leads", {"id": "L1"}), "lead.deleted"),
        (
            change("update", "leads", {"id": "L1", "stage_id": "s2"}, {"stage_id": "s1"}),
            "lead.stage_changed",
        ),
        (change("update", "leads", {"id": "L1", "name": "B"}, {"name": "A"}), "lead.updated"),
        (change("insert", "conversations", {"id": "C1"}), "conversation.created"),
        (
            change("update", "conversations", {"status": "human_takeover"}, {"status": "active"}),
            "conversation.human_takeover",
        ),
        (change("update", "conversations", {"status": "active"}, {"status": "active"}), None),
        (change("insert", "messages", {"role": "user", "content": "hi"}), "message.received"),
        (change("insert", "messages", {"role": "assistant", "content": "hi"}), None),
        (change("insert", "calendar_events", {"id": "B1"}), "booking.created"),
        (
            change("update", "calendar_events", {"status": "cancelled"}, {"status": "confirmed"}),
            "booking.cancelled",
        ),
        (change("update", "calendar_events", {"title": "x"}, {"title": "y"}), "booking.updated"),
        (change("insert", "audit_log", {"id": 1}), None),
    ],
)
def test_event_name_for(notification: ChangeNotification, expected: str | None) -> None:
    assert event_name_for(notification) == expected


def test_stage_change_stimulus() -> None:
    notification = change(
        "update",
        "leads",
        {"id": "L1", "name": "Ada", "stage_id": "qualified", "tenant_id": "acme"},
        {"id": "L1", "stage_id": "new"},
    )
    stimulus = stimulus_from_change(notification)
    assert stimulus is not None
    assert stimulus.source_type is TriggerType.EVENT
    assert stimulus.event_name == "lead.stage_changed"
    assert stimulus.tenant_id == "acme"
    assert stimulus.payload["lead"]["stage_id"] == "qualified"
    assert stimulus.payload["previous_stage_id"] == "new"
    assert stimulus.payload["record"]["name"] == "Ada"


def test_message_stimulus_carries_conversation() -> None:
    stimulus = stimulus_from_change(
        change("insert", "messages", {"role": "user", "content": "hi", "conversation_id": "C9"})
    )
    assert stimulus is not None
    assert stimulus.payload["conversation_id"] == "C9"
    assert stimulus.payload["message"]["content"] == "hi"


def test_ignored_change_has_no_stimulus() -> None:
    assert stimulus_from_change(change("insert", "audit_log", {"id": 1})) is None


def test_notification_schema_alias() -> None:
    parsed = ChangeNotification.model_validate(
        {"type": "insert", "table": "leads", "schema": "crm", "record": {"id": "L1"}}
    )
    assert parsed.schema_name == "crm"
