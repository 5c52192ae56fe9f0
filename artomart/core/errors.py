"""Exception hierarchy for the orchestration layer.

Every error carries a stable ``kind`` that travels to clients either as the
``kind`` field of an HTTP error body or inside a ``taskFailed`` event.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable error identifiers exposed to clients."""

    VALIDATION = "validationError"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rateLimited"
    AGENT_UNAVAILABLE = "agentUnavailable"
    UPSTREAM_FAILURE = "upstreamFailure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class OrchestrationError(Exception):
    """Base exception for all orchestration errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ValidationFailed(OrchestrationError):
    """Bad input from the client."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class UnknownArchetype(ValidationFailed):
    status_code = 404

    def __init__(self, archetype: str) -> None:
        super().__init__(f"Unknown agent type: {archetype}")
        self.archetype = archetype


class UnsupportedAction(ValidationFailed):
    def __init__(self, archetype: str, action: str) -> None:
        super().__init__(f"Action '{action}' is not supported by {archetype}")
        self.archetype = archetype
        self.action = action


class DuplicateRequest(ValidationFailed):
    """A (session, request) pair was reused for a different task."""

    status_code = 409

    def __init__(self, task_id: str) -> None:
        super().__init__("Request identifier already used for a different task", details={"taskId": task_id})
        self.task_id = task_id


class PayloadTooLarge(ValidationFailed):
    status_code = 413


class TaskNotFound(ValidationFailed):
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class Unauthorized(OrchestrationError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class Forbidden(OrchestrationError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 403


class RateLimited(OrchestrationError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429

    def __init__(self, retry_after: float) -> None:
        super().__init__("Too many requests", details={"retryAfter": round(retry_after, 2)})
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Agents and tasks
# ---------------------------------------------------------------------------

class AgentUnavailable(OrchestrationError):
    """No running instance, or the instance is saturated."""

    kind = ErrorKind.AGENT_UNAVAILABLE
    status_code = 503


class TaskTimeout(OrchestrationError):
    kind = ErrorKind.TIMEOUT
    status_code = 504


class TaskCancelled(OrchestrationError):
    kind = ErrorKind.CANCELLED
    status_code = 409


# ---------------------------------------------------------------------------
# Upstream provider
# ---------------------------------------------------------------------------

class ProviderError(OrchestrationError):
    """Single failed call to the upstream model provider."""

    kind = ErrorKind.UPSTREAM_FAILURE
    status_code = 502

    def __init__(self, message: str, *, status: Optional[int] = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


class TransientProviderError(ProviderError):
    """Provider failure worth retrying (network, timeout, 5xx, 429)."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message, status=status, transient=True)


class UpstreamFailure(OrchestrationError):
    """Provider call failed permanently or exhausted its retries."""

    kind = ErrorKind.UPSTREAM_FAILURE
    status_code = 502


class MalformedResponse(ProviderError):
    """Provider answered with something that cannot be used."""
