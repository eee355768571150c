"""Error hierarchy shared by the queue, work state and dispatch layers.

Every error carries a stable ``code`` so the MCP tools, the HTTP app and the
CLI can report it consistently. Store errors (``sqlite3.Error``) are not
wrapped; they propagate unchanged.
"""


class CofounderError(Exception):
    """Base class for errors surfaced to callers."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(CofounderError):
    """A referenced task, job or blocker does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier):
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "id": identifier},
        )


class ConflictError(CofounderError):
    """The operation is invalid given the current state."""

    code = "CONFLICT"


class ValidationError(CofounderError, ValueError):
    """Malformed input, rejected before any mutation."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)


class ExternalServiceError(CofounderError):
    """A notification post or remote call failed."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, operation: str, original: Exception | str | None = None):
        super().__init__(
            f"{service} {operation} failed",
            {
                "service": service,
                "operation": operation,
                "original_message": str(original) if original else None,
            },
        )


class DispatchTimeoutError(CofounderError):
    """Local agent execution exceeded the configured timeout."""

    code = "TIMEOUT"


class AgentUnavailableError(ValidationError):
    """The requested agent cannot run on the requested target."""
