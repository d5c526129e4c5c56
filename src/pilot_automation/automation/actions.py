"""Node adapters and the executor that runs them.

Each executable node type has one adapter. The :class:`NodeExecutor` looks the
adapter up in an :class:`AdapterRegistry`, bounds the call with the node's
timeout and, in test mode, asks adapters with local side effects to simulate
instead of acting. Condition and trigger nodes are handled by the run engine
and have no adapter.
"""

from __future__ import annotations

import asyncio
import copy
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

import httpx

from ..core.config import EngineSettings, RetryPolicyConfig
from ..core.exceptions import HTTPStatusError, NodeTimeoutError, RequestBlockedError
from ..core.logger import get_logger
from .gateways import (
    AIClient,
    BookingGateway,
    InMemoryBookingGateway,
    InMemoryLeadGateway,
    InMemoryMessageGateway,
    LeadGateway,
    MessageGateway,
    set_dotted,
)
from .http import HTTPRequester, HTTPRequestSpec
from .models import Node, NodeType, RunMode, StepOutcome, new_id
from .templating import UNDEFINED, render, render_text, resolve_path

logger = get_logger("automation.actions")


class NodeResult:
    """Result of running one node."""

    def __init__(
        self,
        outcome: StepOutcome,
        output: dict[str, Any] | None = None,
        error: str | None = None,
        simulated: bool = False,
        stop: bool = False,
        duration: float = 0.0,
    ) -> None:
        self.outcome = outcome
        self.output = output or {}
        self.error = error
        self.simulated = simulated
        self.stop = stop
        self.duration = duration

    @classmethod
    def ok(cls, output: dict[str, Any] | None = None, **kwargs: Any) -> NodeResult:
        return cls(StepOutcome.SUCCESS, output, **kwargs)

    @classmethod
    def fail(cls, error: str, output: dict[str, Any] | None = None) -> NodeResult:
        return cls(StepOutcome.FAILURE, output, error=error)

    @property
    def success(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "outcome": self.outcome.value,
            "output": self.output,
            "error": self.error,
            "simulated": self.simulated,
            "stop": self.stop,
            "duration": self.duration,
        }


class BaseNodeAdapter(ABC):
    """Base class for node adapters.

    ``local_effect`` marks adapters that write tenant data or deliver messages;
    those are simulated in test mode. ``pure`` marks adapters whose output
    depends only on their configuration and the run context.
    """

    node_type: NodeType
    local_effect: bool = False
    pure: bool = False

    @property
    def simulated_in_test(self) -> bool:
        return self.local_effect

    @abstractmethod
    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        """Perform the node's effect.

        Args:
            config: The node's configuration payload
            context: Run context (read-only)
            mode: Run mode
            tenant_id: Tenant owning the run

        Returns:
            NodeResult whose output is merged into the run context on success
        """

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        """Describe what :meth:`execute` would have done without doing it."""
        return NodeResult.ok({})

    def timeout_extension(self, config: Mapping[str, Any]) -> float:
        """Seconds added to the node timeout for adapters that wait on purpose."""
        return 0.0

    def timeout_budget(self, config: Mapping[str, Any]) -> float | None:
        """Worst-case seconds the adapter itself allows a call to take, if it bounds one."""
        return None


def _field_updates(raw: Any, context: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise ``fields`` given as a mapping or as ``[{"field", "value", "type"}]``."""
    updates: dict[str, Any] = {}
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            updates[str(key)] = render(value, context)
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, Mapping) or not item.get("field"):
                continue
            value = render(item.get("value"), context)
            updates[str(item["field"])] = _coerce(value, item.get("type"))
    return updates


def _coerce(value: Any, value_type: Any) -> Any:
    if value_type in (None, "", "auto") or value is None:
        return value
    if value_type == "string":
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)
    if value_type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        number = float(value)
        return int(number) if number.is_integer() else number
    if value_type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in {"true", "1", "yes", "on"}
        return bool(value)
    if value_type == "json":
        return json.loads(value) if isinstance(value, str) else value
    raise ValueError(f"Unsupported value type: {value_type}")


# ----------------------------------------------------------------------
# Outbound HTTP
# ----------------------------------------------------------------------
class HTTPRequestAdapter(BaseNodeAdapter):
    """Call a user-defined HTTP endpoint.

    Runs in test mode too: the engine cannot know whether the remote system is
    idempotent, so callers of test runs are told external calls were made.
    """

    node_type = NodeType.ACTION_HTTP

    def __init__(self, requester: HTTPRequester) -> None:
        self.requester = requester

    def build_request(self, config: Mapping[str, Any], context: Mapping[str, Any]) -> HTTPRequestSpec:
        url = render_text(config.get("url", ""), context)
        if not url:
            raise ValueError("url is required")
        body = self._render_body(config.get("body"), config.get("bodyType", "json"), context)
        return HTTPRequestSpec(
            method=str(config.get("method", "GET")),
            url=url,
            headers=render(config.get("headers") or {}, context),
            params=render(config.get("params") or config.get("queryParams") or {}, context),
            body=body,
            timeout=self._request_timeout(config),
            follow_redirects=config.get("followRedirects", True) is not False,
            retry=self._retry_policy(config),
        )

    @staticmethod
    def _request_timeout(config: Mapping[str, Any]) -> float | None:
        if config.get("timeoutMs"):
            return float(config["timeoutMs"]) / 1000
        if config.get("timeoutSeconds"):
            return float(config["timeoutSeconds"])
        return None

    def _retry_policy(self, config: Mapping[str, Any]) -> RetryPolicyConfig | None:
        if config.get("retryOnFailure") is False:
            return self.requester.config.retry.model_copy(update={"max_attempts": 1})
        if config.get("retryOnFailure") and config.get("maxRetries") is not None:
            attempts = max(int(config["maxRetries"]), 0) + 1
            return self.requester.config.retry.model_copy(update={"max_attempts": attempts})
        return None

    @staticmethod
    def _render_body(body: Any, body_type: Any, context: Mapping[str, Any]) -> Any:
        if body is None or body == "":
            return None
        if isinstance(body, str) and body_type in ("json", None):
            try:
                # Parse first so "{{lead}}" placeholders keep their structure.
                return render(json.loads(body), context)
            except ValueError:
                rendered = render_text(body, context)
                try:
                    return json.loads(rendered)
                except ValueError:
                    return rendered
        return render(body, context)

    def timeout_budget(self, config: Mapping[str, Any]) -> float | None:
        try:
            return self.requester.time_budget(
                self._request_timeout(config), self._retry_policy(config)
            )
        except (TypeError, ValueError):
            return None

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        variable = str(config.get("outputVariable") or "http_response")
        try:
            request = self.build_request(config, context)
            response = await self.requester.request(request)
        except HTTPStatusError as exc:
            return NodeResult.fail(str(exc), output={variable: exc.details})
        except RequestBlockedError as exc:
            return NodeResult.fail(str(exc))
        except httpx.TimeoutException:
            return NodeResult.fail(f"HTTP request timed out: {config.get('url')}")
        except httpx.HTTPError as exc:
            return NodeResult.fail(f"HTTP request failed: {exc}")
        return NodeResult.ok({variable: response.to_dict()})


# ----------------------------------------------------------------------
# Tenant-local effects
# ----------------------------------------------------------------------
class SendEmailAdapter(BaseNodeAdapter):
    node_type = NodeType.ACTION_EMAIL
    local_effect = True

    def __init__(self, messages: MessageGateway) -> None:
        self.messages = messages

    def _render(self, config: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, str]:
        email = {
            "to": render_text(config.get("to", ""), context),
            "subject": render_text(config.get("subject", ""), context),
            "body": render_text(config.get("body", ""), context),
            "body_type": str(config.get("bodyType", "text")),
        }
        if not email["to"] or "{{" in email["to"]:
            raise ValueError(f"Email recipient could not be resolved: {config.get('to')!r}")
        return email

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        email = self._render(config, context)
        receipt = await self.messages.send_email(
            tenant_id, email["to"], email["subject"], email["body"], email["body_type"]
        )
        return NodeResult.ok({"email": {**email, "id": receipt.get("id"), "status": "sent"}})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        email = self._render(config, context)
        return NodeResult.ok({"email": {**email, "id": None, "status": "simulated"}})


class SendMessageAdapter(BaseNodeAdapter):
    node_type = NodeType.ACTION_SEND_MESSAGE
    local_effect = True

    def __init__(self, messages: MessageGateway) -> None:
        self.messages = messages

    @staticmethod
    def _conversation_id(config: Mapping[str, Any], context: Mapping[str, Any]) -> str:
        explicit = render(config.get("conversationId"), context)
        if explicit:
            return str(explicit)
        for path in ("conversation_id", "conversation.id", "message.conversation_id"):
            value = resolve_path(context, path)
            if value not in (UNDEFINED, None, ""):
                return str(value)
        raise ValueError("No conversation to send the message to")

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        conversation_id = self._conversation_id(config, context)
        content = render_text(config.get("message", ""), context)
        message = await self.messages.send_message(
            tenant_id, conversation_id, content, config.get("channel")
        )
        return NodeResult.ok({"sent_message": message})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        return NodeResult.ok(
            {
                "sent_message": {
                    "id": None,
                    "conversation_id": self._conversation_id(config, context),
                    "content": render_text(config.get("message", ""), context),
                    "status": "simulated",
                }
            }
        )


class CreateLeadAdapter(BaseNodeAdapter):
    node_type = NodeType.ACTION_CREATE_LEAD
    local_effect = True

    def __init__(self, leads: LeadGateway) -> None:
        self.leads = leads

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        lead = await self.leads.create_lead(tenant_id, _field_updates(config.get("fields"), context))
        return NodeResult.ok({"lead": lead})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        lead: dict[str, Any] = {"id": f"simulated-{new_id()[:12]}"}
        for key, value in _field_updates(config.get("fields"), context).items():
            set_dotted(lead, key, value)
        return NodeResult.ok({"lead": lead})


class UpdateLeadAdapter(BaseNodeAdapter):
    node_type = NodeType.ACTION_UPDATE_LEAD
    local_effect = True

    def __init__(self, leads: LeadGateway) -> None:
        self.leads = leads

    @staticmethod
    def _lead_id(config: Mapping[str, Any], context: Mapping[str, Any]) -> str:
        explicit = render(config.get("leadId"), context)
        if explicit:
            return str(explicit)
        for path in ("lead.id", "lead_id"):
            value = resolve_path(context, path)
            if value not in (UNDEFINED, None, ""):
                return str(value)
        raise ValueError("No lead to update")

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        updates = _field_updates(config.get("fields"), context)
        if not updates:
            raise ValueError("No fields to update")
        lead = await self.leads.update_lead(tenant_id, self._lead_id(config, context), updates)
        return NodeResult.ok({"lead": lead})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        current = resolve_path(context, "lead")
        lead = copy.deepcopy(current) if isinstance(current, dict) else {}
        lead.setdefault("id", self._lead_id(config, context))
        for key, value in _field_updates(config.get("fields"), context).items():
            set_dotted(lead, key, value)
        return NodeResult.ok({"lead": lead})


class CreateBookingAdapter(BaseNodeAdapter):
    node_type = NodeType.ACTION_CREATE_BOOKING
    local_effect = True

    def __init__(self, bookings: BookingGateway) -> None:
        self.bookings = bookings

    @staticmethod
    def _fields(config: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        start = render(config.get("startTime"), context)
        if not start:
            raise ValueError("startTime is required")
        start_at = datetime.fromisoformat(str(start).replace("Z", "+00:00"))
        end = render(config.get("endTime"), context)
        if end:
            end_at = datetime.fromisoformat(str(end).replace("Z", "+00:00"))
        else:
            end_at = start_at + timedelta(minutes=int(config.get("durationMinutes", 30)))
        lead_id = render(config.get("leadId"), context) or resolve_path(context, "lead.id")
        return {
            "title": render_text(config.get("title", "Booking"), context),
            "start_time": start_at.isoformat(),
            "end_time": end_at.isoformat(),
            "visitor_name": render(config.get("visitorName"), context),
            "visitor_email": render(config.get("visitorEmail"), context),
            "lead_id": None if lead_id is UNDEFINED else lead_id,
            "notes": render(config.get("notes"), context),
        }

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        booking = await self.bookings.create_booking(tenant_id, self._fields(config, context))
        return NodeResult.ok({"booking": booking})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        booking = {"id": f"simulated-{new_id()[:12]}", "status": "simulated"}
        booking.update(self._fields(config, context))
        return NodeResult.ok({"booking": booking})


# ----------------------------------------------------------------------
# Pure and flow-control adapters
# ----------------------------------------------------------------------
class SetVariableAdapter(BaseNodeAdapter):
    node_type = NodeType.TRANSFORM_SET_VARIABLE
    pure = True

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        name = config.get("variableName")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("variableName is required")
        raw = config.get("valueExpression", config.get("value"))
        value_type = config.get("valueType")
        if value_type == "json" and isinstance(raw, str):
            value = render(json.loads(raw), context)
        else:
            value = _coerce(render(raw, context), value_type)
        return NodeResult.ok({name.strip(): value})


class DelayAdapter(BaseNodeAdapter):
    """Wait before continuing. Test runs skip the wait."""

    node_type = NodeType.LOGIC_DELAY

    @property
    def simulated_in_test(self) -> bool:
        return True

    @staticmethod
    def delay_seconds(config: Mapping[str, Any]) -> float:
        if config.get("delayMs") is not None:
            return max(float(config["delayMs"]), 0.0) / 1000
        return max(float(config.get("delaySeconds", 0)), 0.0)

    def timeout_extension(self, config: Mapping[str, Any]) -> float:
        try:
            return self.delay_seconds(config)
        except (TypeError, ValueError):
            return 0.0

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        seconds = self.delay_seconds(config)
        await asyncio.sleep(seconds)
        return NodeResult.ok({"delayed_ms": int(seconds * 1000)})

    async def simulate(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        return NodeResult.ok({"delayed_ms": int(self.delay_seconds(config) * 1000)})


class StopAdapter(BaseNodeAdapter):
    node_type = NodeType.LOGIC_STOP
    pure = True

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        return NodeResult.ok({}, stop=True)


class NoopAdapter(BaseNodeAdapter):
    node_type = NodeType.LOGIC_NOOP
    pure = True

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        return NodeResult.ok({})


# ----------------------------------------------------------------------
# AI
# ----------------------------------------------------------------------
class BaseAIAdapter(BaseNodeAdapter):
    """AI nodes call the configured client in both live and test runs."""

    def __init__(self, client: AIClient | None) -> None:
        self.client = client

    async def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        if self.client is None:
            return NodeResult.fail("No AI client configured")
        variable = config.get("outputVariable")
        if not isinstance(variable, str) or not variable.strip():
            raise ValueError("outputVariable is required")
        value = await self.run(self.client, config, context)
        return NodeResult.ok({variable.strip(): value})

    @abstractmethod
    async def run(self, client: AIClient, config: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        """Produce the value stored in the node's output variable."""

    @staticmethod
    def _input_text(config: Mapping[str, Any], context: Mapping[str, Any]) -> str:
        if config.get("input") is not None:
            return render_text(config["input"], context)
        if config.get("inputVariable"):
            value = resolve_path(context, str(config["inputVariable"]))
            if value is UNDEFINED:
                raise ValueError(f"Input variable not found: {config['inputVariable']}")
            return value if isinstance(value, str) else json.dumps(value, default=str)
        raise ValueError("input is required")

    @staticmethod
    def _parse_json(reply: str) -> Any:
        text = reply.strip()
        if text.startswith("```"):
            text = text.strip("`")
            text = text[text.find("\n") + 1 :] if "\n" in text else text
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end == -1:
            raise ValueError("AI reply did not contain a JSON object")
        return json.loads(text[start : end + 1])


class AIGenerateAdapter(BaseAIAdapter):
    node_type = NodeType.AI_GENERATE

    async def run(self, client: AIClient, config: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        prompt = render_text(config.get("prompt", ""), context)
        if not prompt:
            raise ValueError("prompt is required")
        return await client.complete(
            prompt,
            system=config.get("systemPrompt"),
            model=config.get("model"),
            temperature=config.get("temperature"),
            max_tokens=config.get("maxTokens"),
        )


class AIClassifyAdapter(BaseAIAdapter):
    node_type = NodeType.AI_CLASSIFY

    async def run(self, client: AIClient, config: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        categories = []
        for item in config.get("categories") or []:
            if isinstance(item, Mapping):
                categories.append((str(item.get("name")), str(item.get("description", ""))))
            else:
                categories.append((str(item), ""))
        if len(categories) < 2:
            raise ValueError("At least 2 categories are required")
        listing = "\n".join(
            f"- {name}: {description}" if description else f"- {name}"
            for name, description in categories
        )
        prompt = (
            "Classify the input into exactly one of these categories:\n"
            f"{listing}\n\nInput:\n{self._input_text(config, context)}\n\n"
            'Reply with JSON: {"category": "<name>", "confidence": <0..1>}'
        )
        reply = await client.complete(prompt, model=config.get("model"), temperature=0)
        names = [name for name, _ in categories]
        try:
            parsed = self._parse_json(reply)
            category = str(parsed.get("category", "")).strip()
            confidence = float(parsed.get("confidence", 0.0))
        except ValueError:
            category = next((name for name in names if name.lower() in reply.lower()), "")
            confidence = 0.0
        if category not in names:
            raise ValueError(f"AI returned an unknown category: {category or reply[:80]!r}")
        return {"category": category, "confidence": confidence}


class AIExtractAdapter(BaseAIAdapter):
    node_type = NodeType.AI_EXTRACT

    async def run(self, client: AIClient, config: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        fields = []
        for item in config.get("fields") or []:
            if isinstance(item, Mapping):
                fields.append((str(item.get("name")), str(item.get("description", ""))))
            else:
                fields.append((str(item), ""))
        if not fields:
            raise ValueError("At least one field to extract is required")
        listing = "\n".join(
            f"- {name}: {description}" if description else f"- {name}" for name, description in fields
        )
        prompt = (
            "Extract the following fields from the input. Use null when a field is absent.\n"
            f"{listing}\n\nInput:\n{self._input_text(config, context)}\n\nReply with a JSON object."
        )
        reply = await client.complete(prompt, model=config.get("model"), temperature=0)
        parsed = self._parse_json(reply)
        return {name: parsed.get(name) for name, _ in fields}


# ----------------------------------------------------------------------
# Registry and executor
# ----------------------------------------------------------------------
class AdapterRegistry:
    """Maps node types to adapters."""

    def __init__(self) -> None:
        self._adapters: dict[NodeType, BaseNodeAdapter] = {}

    def register(self, adapter: BaseNodeAdapter) -> None:
        self._adapters[adapter.node_type] = adapter

    def get(self, node_type: NodeType | str) -> BaseNodeAdapter | None:
        try:
            key = NodeType(node_type)
        except ValueError:
            return None
        return self._adapters.get(key)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._adapters

    @property
    def node_types(self) -> list[NodeType]:
        return list(self._adapters)


def create_default_registry(
    requester: HTTPRequester | None = None,
    leads: LeadGateway | None = None,
    messages: MessageGateway | None = None,
    bookings: BookingGateway | None = None,
    ai_client: AIClient | None = None,
) -> AdapterRegistry:
    """Build a registry with every built-in adapter."""
    messages = messages or InMemoryMessageGateway()
    leads = leads or InMemoryLeadGateway()
    registry = AdapterRegistry()
    for adapter in (
        HTTPRequestAdapter(requester or HTTPRequester()),
        SendEmailAdapter(messages),
        SendMessageAdapter(messages),
        CreateLeadAdapter(leads),
        UpdateLeadAdapter(leads),
        CreateBookingAdapter(bookings or InMemoryBookingGateway()),
        SetVariableAdapter(),
        DelayAdapter(),
        StopAdapter(),
        NoopAdapter(),
        AIGenerateAdapter(ai_client),
        AIClassifyAdapter(ai_client),
        AIExtractAdapter(ai_client),
    ):
        registry.register(adapter)
    return registry


class NodeExecutor:
    """Runs a single node through its adapter."""

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self.registry = registry or create_default_registry()
        self.settings = settings or EngineSettings()

    def timeout_for(self, node: Node, adapter: BaseNodeAdapter) -> float:
        base = self.settings.timeout_for(node.type.value, node.data.get("timeoutSeconds"))
        budget = adapter.timeout_budget(node.data)
        if budget is not None:
            base = max(base, min(budget, self.settings.max_node_timeout))
        extension = adapter.timeout_extension(node.data)
        if extension > 0:
            extension += self.settings.delay_grace_seconds
        return base + extension

    async def execute(
        self,
        node: Node,
        context: Mapping[str, Any],
        mode: RunMode,
        *,
        tenant_id: str = "default",
    ) -> NodeResult:
        """Execute (or simulate) one node.

        Adapter exceptions and timeouts are reported as failed results rather
        than raised.

        Args:
            node: Node to run
            context: Current run context; adapters must not mutate it
            mode: Live or test
            tenant_id: Tenant owning the run

        Returns:
            NodeResult
        """
        started = time.perf_counter()
        adapter = self.registry.get(node.type)
        if adapter is None:
            return NodeResult.fail(f"No adapter registered for node type {node.type.value}")

        simulate = mode is RunMode.TEST and adapter.simulated_in_test
        timeout = self.timeout_for(node, adapter)
        logger.debug(
            "Executing node %s (%s) mode=%s simulate=%s timeout=%.1fs",
            node.id,
            node.type.value,
            mode.value,
            simulate,
            timeout,
        )

        if simulate:
            call = adapter.simulate(node.data, context, tenant_id=tenant_id)
        else:
            call = adapter.execute(node.data, context, mode, tenant_id=tenant_id)

        try:
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            result = NodeResult.fail(str(NodeTimeoutError(node.id, timeout)))
        except Exception as exc:
            logger.warning("Node %s (%s) raised: %s", node.id, node.type.value, exc, exc_info=True)
            result = NodeResult.fail(str(exc) or type(exc).__name__)

        if simulate and result.success:
            result.simulated = True
        result.duration = time.perf_counter() - started
        return result


__all__ = [
    "AIClassifyAdapter",
    "AIExtractAdapter",
    "AIGenerateAdapter",
    "AdapterRegistry",
    "BaseNodeAdapter",
    "CreateBookingAdapter",
    "CreateLeadAdapter",
    "DelayAdapter",
    "HTTPRequestAdapter",
    "NodeExecutor",
    "NodeResult",
    "NoopAdapter",
    "SendEmailAdapter",
    "SendMessageAdapter",
    "SetVariableAdapter",
    "StopAdapter",
    "UpdateLeadAdapter",
    "create_default_registry",
]
