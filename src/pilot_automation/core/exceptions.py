"""Exception hierarchy for the automation engine."""

from __future__ import annotations

from typing import Any


class AutomationError(Exception):
    """Base exception for automation engine errors."""

    pass


# ----------------------------------------------------------------------
# Configuration errors: fatal to a run, never retried
# ----------------------------------------------------------------------
class AutomationConfigError(AutomationError):
    """Raised when an automation definition cannot be executed as written."""

    def __init__(self, message: str, node_id: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            node_id: Node the problem was found on, if any
        """
        self.node_id = node_id
        super().__init__(message)


class DanglingBranchError(AutomationConfigError):
    """Raised when a condition node has no unique edge for the selected branch."""

    def __init__(self, node_id: str, branch: str, edge_count: int = 0) -> None:
        """Initialize the exception.

        Args:
            node_id: Condition node id
            branch: Branch handle that was selected ("true" or "false")
            edge_count: Number of edges found for that handle
        """
        self.branch = branch
        self.edge_count = edge_count
        if edge_count == 0:
            message = f"Dangling branch: condition node '{node_id}' has no '{branch}' edge"
        else:
            message = (
                f"Ambiguous branch: condition node '{node_id}' has {edge_count} "
                f"'{branch}' edges"
            )
        super().__init__(message, node_id=node_id)


class AmbiguousEdgeError(AutomationConfigError):
    """Raised when a non-branching node has more than one outgoing edge."""

    def __init__(self, node_id: str, edge_count: int) -> None:
        self.edge_count = edge_count
        super().__init__(
            f"Node '{node_id}' has {edge_count} outgoing edges; exactly one is allowed",
            node_id=node_id,
        )


class CycleDetectedError(AutomationConfigError):
    """Raised when a run exhausts its step budget."""

    def __init__(self, node_id: str, max_steps: int) -> None:
        self.max_steps = max_steps
        super().__init__(
            f"Cycle detected: step budget of {max_steps} exhausted at node '{node_id}'",
            node_id=node_id,
        )


class MalformedTriggerError(AutomationConfigError):
    """Raised when an automation's trigger configuration is unusable."""

    def __init__(self, automation_id: str, reason: str) -> None:
        self.automation_id = automation_id
        self.reason = reason
        super().__init__(f"Malformed trigger on automation '{automation_id}': {reason}")


class UnknownNodeTypeError(AutomationConfigError):
    """Raised when a node declares a type the engine does not know."""

    def __init__(self, node_type: str, node_id: str | None = None) -> None:
        self.node_type = node_type
        super().__init__(f"Unknown node type: {node_type}", node_id=node_id)


class ConditionConfigError(AutomationConfigError):
    """Raised when a condition uses an unknown operator or a malformed group."""

    pass


class InvalidAutomationError(AutomationConfigError):
    """Raised when an automation fails validation on save."""

    def __init__(self, automation_id: str, issues: list[dict[str, Any]]) -> None:
        self.automation_id = automation_id
        self.issues = issues
        summary = "; ".join(str(issue.get("message")) for issue in issues) or "invalid graph"
        super().__init__(f"Automation '{automation_id}' is invalid: {summary}")


# ----------------------------------------------------------------------
# Adapter errors: reported as a failed step
# ----------------------------------------------------------------------
class AdapterError(AutomationError):
    """Raised by a node adapter when its effect could not be performed."""

    pass


class NodeTimeoutError(AdapterError):
    """Raised when a node adapter exceeds its timeout."""

    def __init__(self, node_id: str, timeout: float) -> None:
        self.node_id = node_id
        self.timeout = timeout
        super().__init__(f"Node '{node_id}' timed out after {timeout:g}s")


class HTTPStatusError(AdapterError):
    """Raised when a remote endpoint answers with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        url: str,
        body: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.url = url
        self.body = body
        self.details = details or {}
        super().__init__(f"HTTP {status_code} from {url}")


class RequestBlockedError(AdapterError):
    """Raised when an outbound URL fails the network safety check."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Request blocked: {reason}")


# ----------------------------------------------------------------------
# Lookup and state errors
# ----------------------------------------------------------------------
class RunStateError(AutomationError):
    """Raised when a run is modified after reaching a terminal state."""

    pass


class AutomationNotFoundError(AutomationError):
    """Raised when an automation id is not known."""

    def __init__(self, automation_id: str) -> None:
        self.automation_id = automation_id
        super().__init__(f"Automation not found: {automation_id}")


class AutomationDisabledError(AutomationError):
    """Raised when a live run is requested for a disabled automation."""

    def __init__(self, automation_id: str) -> None:
        self.automation_id = automation_id
        super().__init__(f"Automation is disabled: {automation_id}")


class RunNotFoundError(AutomationError):
    """Raised when a run id is not known."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


__all__ = [
    "AdapterError",
    "AmbiguousEdgeError",
    "AutomationConfigError",
    "AutomationDisabledError",
    "AutomationError",
    "AutomationNotFoundError",
    "ConditionConfigError",
    "CycleDetectedError",
    "DanglingBranchError",
    "HTTPStatusError",
    "InvalidAutomationError",
    "MalformedTriggerError",
    "NodeTimeoutError",
    "RequestBlockedError",
    "RunNotFoundError",
    "RunStateError",
    "UnknownNodeTypeError",
]
