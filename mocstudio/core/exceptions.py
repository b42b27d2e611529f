"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
map them to HTTP status codes (see ``mocstudio.blueprints.register_error_handlers``).
All of them are local, synchronous and recoverable by the caller: retry the
read-modify-write or correct the input.

Usage:
    from mocstudio.core.exceptions import NotFoundError, InvalidTransition

    raise NotFoundError(resource="MOCRequest", resource_id=moc_id)
    raise InvalidTransition(current="draft", attempted="approved")
"""


class NotFoundError(Exception):
    """Raised when a referenced request, approver or task does not exist.

    Args:
        resource: Human-readable entity name (e.g. "MOCRequest", "Approver").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a required field is missing or out of range at a transition boundary.

    No state change has happened when this is raised.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class MissingComment(ValidationError):
    """Raised when a rejection or changes-requested decision carries no comment."""

    def __init__(self, decision: str) -> None:
        self.decision = decision
        super().__init__(
            f"A comment is required when the decision is '{decision}'",
            details={"comments": "required"},
        )


class InvalidTransition(Exception):
    """Raised when a status change is not permitted from the current status.

    Args:
        current: Status the entity is in.
        attempted: Status (or action) that was requested.
        reason: Optional extra explanation.
    """

    def __init__(self, current: str, attempted: str, reason: str | None = None) -> None:
        msg = f"Cannot '{attempted}' from status '{current}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.current = current
        self.attempted = attempted
        self.reason = reason


class ConcurrentModification(Exception):
    """Raised on an optimistic version mismatch while re-evaluating consensus.

    The caller should re-read the request and retry.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently; retry the operation"
        )


class PermissionDenied(Exception):
    """Raised when the caller's profile does not allow the action."""

    def __init__(self, user_id: str | None, action: str, reason: str | None = None) -> None:
        msg = f"User {user_id} does not have permission for '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.user_id = user_id
        self.action = action
        self.reason = reason
