"""
Orchestration error hierarchy.

Each error carries a stable code and the HTTP status the API renders it
with. Validation and precondition errors are raised before any state is
mutated; collaborator errors wrap failures of external calls.
"""

from typing import Any, Optional


class OrchestraError(Exception):
    """Base exception for all orchestration errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the API error body."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ==========================================================================
# Caller errors (never retried)
# ==========================================================================

class ValidationError(OrchestraError):
    """Bad input or an operation requested from the wrong state."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=details,
            status_code=400,
        )


class InvalidPayloadError(ValidationError):
    """Webhook payload without an extractable status token."""

    def __init__(self, message: str = "Invalid webhook payload - missing status") -> None:
        super().__init__(message=message)
        self.code = "INVALID_PAYLOAD"


class PreconditionError(OrchestraError):
    """A required association or credential is missing."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="PRECONDITION_FAILED",
            details=details,
            status_code=409,
        )


class NotFoundError(OrchestraError):
    """Requested record does not exist (or is not visible to the caller)."""

    def __init__(self, resource_type: str, resource_id: Optional[str] = None) -> None:
        message = f"{resource_type} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
            status_code=404,
        )


# ==========================================================================
# Collaborator errors
# ==========================================================================

class CollaboratorError(OrchestraError):
    """An external service call failed."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(
            message=message,
            code="COLLABORATOR_ERROR",
            details={"service": service},
            status_code=502,
        )
        self.service = service


class AgentLaunchError(CollaboratorError):
    """The agent platform refused or failed to launch an agent."""

    def __init__(self, message: str) -> None:
        super().__init__("cursor_agent", message)


class SourceControlError(CollaboratorError):
    """A merge or branch operation against GitHub failed."""

    def __init__(self, message: str) -> None:
        super().__init__("github", message)


# ==========================================================================
# Pipeline errors
# ==========================================================================

class WebhookProcessingError(OrchestraError):
    """A webhook status handler could not apply its transition."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            code="WEBHOOK_PROCESSING_FAILED",
            status_code=422,
        )


class MergeError(OrchestraError):
    """The merge completion pipeline failed after its preconditions passed."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            code="MERGE_FAILED",
            status_code=502,
        )
