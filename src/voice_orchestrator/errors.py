"""Error taxonomy shared by every orchestrator component.

Each error carries a stable ``kind`` tag so callers can tell "fix your
config" apart from "retry later" and "this session is dead", plus the
upstream provider's status and body when one was involved.
"""

from typing import Any


class OrchestratorError(Exception):
    """Base class for errors surfaced by the orchestrator."""

    kind = "orchestrator"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "status": self.status,
            "body": self.body,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status={self.status})"


class ValidationError(OrchestratorError):
    """Malformed input. Never retried."""

    kind = "validation"


class ConfigurationError(OrchestratorError):
    """Missing or invalid credentials or secrets. Must be fixed by an operator."""

    kind = "configuration"


class AuthenticationError(OrchestratorError):
    """A provider rejected our credentials, or a webhook signature failed."""

    kind = "authentication"


class RetryableProviderError(OrchestratorError):
    """Timeout, 5xx or rate limit from a provider."""

    kind = "retryable_provider"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: Any = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status=status, body=body)
        self.retry_after = retry_after


class ProviderError(OrchestratorError):
    """Terminal provider failure: a 4xx other than rate limiting."""

    kind = "provider"


class InvalidStateError(OrchestratorError):
    """The session's current state forbids the requested operation."""

    kind = "invalid_state"


class SessionNotFoundError(OrchestratorError):
    kind = "not_found"


class ReconciliationWarning(OrchestratorError):
    """Remote leave failed during stop.

    Recorded on the session and logged; never raised to callers.
    """

    kind = "reconciliation"
