"""
Application-wide exception hierarchy.

Services raise these types; the app factory registers one handler per type
so every blueprint gets the same HTTP status and error code.

Usage:
    from tavilist.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Stage", resource_id=stage_id)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Unknown signature tokens also raise this, so a public caller cannot tell
    a mistyped token from one belonging to another project.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Signature").
        resource_id: The key that was looked up. Logged, not echoed to clients.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a stage or project status change is not allowed.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, current: str, target: str, message: str | None = None) -> None:
        self.resource = resource
        self.current = current
        self.target = target
        super().__init__(message or f"Invalid {resource} transition: {current} → {target}")


class AlreadySignedError(Exception):
    """Raised when a signature token has already been consumed. Maps to 409."""

    def __init__(self, message: str = "This confirmation has already been signed") -> None:
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Raised when the caller's role does not allow the operation. Maps to 403."""


class ChannelUnavailableError(Exception):
    """Raised when the messaging channel is missing or reports disconnected.

    Maps to HTTP 503. The persisted ``connected`` flag is already updated
    by the time this is raised.
    """


class GatewayError(Exception):
    """Raised when a downstream provider (WhatsApp, email) rejects a call.

    Maps to HTTP 502. ``details`` carries the provider payload verbatim so
    the caller can decide whether to retry.
    """

    def __init__(self, message: str, details: dict | list | str | None = None,
                 status_code: int | None = None) -> None:
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class StorageError(Exception):
    """Raised when an object-store upload or fetch fails. Maps to 502."""
