"""Collaborator interfaces used by action and AI nodes.

Lead, messaging and booking gateways write tenant data or deliver messages; the
AI client answers prompts. The engine only depends on these interfaces. The
in-memory implementations back the CLI, local development and tests.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from .models import new_id, utcnow


class LeadGateway(ABC):
    """Creates and updates CRM leads."""

    @abstractmethod
    async def create_lead(self, tenant_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Create a lead and return the stored record."""

    @abstractmethod
    async def update_lead(
        self, tenant_id: str, lead_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Apply field updates to a lead and return the stored record."""

    @abstractmethod
    async def get_lead(self, tenant_id: str, lead_id: str) -> dict[str, Any] | None:
        """Return a lead or None."""


class MessageGateway(ABC):
    """Delivers outbound emails and chat messages."""

    @abstractmethod
    async def send_email(
        self, tenant_id: str, to: str, subject: str, body: str, body_type: str = "text"
    ) -> dict[str, Any]:
        """Send an email and return a delivery receipt."""

    @abstractmethod
    async def send_message(
        self, tenant_id: str, conversation_id: str, content: str, channel: str | None = None
    ) -> dict[str, Any]:
        """Post a message into a conversation and return the stored message."""


class BookingGateway(ABC):
    """Creates calendar bookings."""

    @abstractmethod
    async def create_booking(self, tenant_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Create a booking and return the stored record."""


class AIClient(ABC):
    """Text completion service used by AI nodes."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the model's reply to ``prompt``."""


# ----------------------------------------------------------------------
# In-memory implementations
# ----------------------------------------------------------------------
def set_dotted(target: dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating intermediate mappings."""
    parts = path.split(".")
    current = target
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


class InMemoryLeadGateway(LeadGateway):
    def __init__(self) -> None:
        self.leads: dict[tuple[str, str], dict[str, Any]] = {}

    async def create_lead(self, tenant_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        lead: dict[str, Any] = {"id": new_id(), "created_at": utcnow().isoformat()}
        for key, value in fields.items():
            set_dotted(lead, key, copy.deepcopy(value))
        self.leads[(tenant_id, lead["id"])] = lead
        return copy.deepcopy(lead)

    async def update_lead(
        self, tenant_id: str, lead_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any]:
        lead = self.leads.get((tenant_id, lead_id))
        if lead is None:
            raise KeyError(f"Lead not found: {lead_id}")
        for key, value in fields.items():
            set_dotted(lead, key, copy.deepcopy(value))
        lead["updated_at"] = utcnow().isoformat()
        return copy.deepcopy(lead)

    async def get_lead(self, tenant_id: str, lead_id: str) -> dict[str, Any] | None:
        lead = self.leads.get((tenant_id, lead_id))
        return copy.deepcopy(lead) if lead is not None else None


class InMemoryMessageGateway(MessageGateway):
    def __init__(self) -> None:
        self.outbox: list[dict[str, Any]] = []

    async def send_email(
        self, tenant_id: str, to: str, subject: str, body: str, body_type: str = "text"
    ) -> dict[str, Any]:
        receipt = {
            "id": new_id(),
            "kind": "email",
            "tenant_id": tenant_id,
            "to": to,
            "subject": subject,
            "body": body,
            "body_type": body_type,
            "sent_at": utcnow().isoformat(),
        }
        self.outbox.append(receipt)
        return dict(receipt)

    async def send_message(
        self, tenant_id: str, conversation_id: str, content: str, channel: str | None = None
    ) -> dict[str, Any]:
        message = {
            "id": new_id(),
            "kind": "message",
            "tenant_id": tenant_id,
            "conversation_id": conversation_id,
            "content": content,
            "channel": channel,
            "role": "assistant",
            "sent_at": utcnow().isoformat(),
        }
        self.outbox.append(message)
        return dict(message)


class InMemoryBookingGateway(BookingGateway):
    def __init__(self) -> None:
        self.bookings: dict[str, dict[str, Any]] = {}

    async def create_booking(self, tenant_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        booking = {
            "id": new_id(),
            "tenant_id": tenant_id,
            "status": "confirmed",
            **copy.deepcopy(dict(fields)),
        }
        self.bookings[booking["id"]] = booking
        return dict(booking)


__all__ = [
    "AIClient",
    "BookingGateway",
    "InMemoryBookingGateway",
    "InMemoryLeadGateway",
    "InMemoryMessageGateway",
    "LeadGateway",
    "MessageGateway",
    "set_dotted",
]
