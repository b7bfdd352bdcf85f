"""
Workflow-engine exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, SequenceError

    raise NotFoundError(resource="Phase", resource_id=42)
    raise SequenceError("Phase 3 cannot start before phase 2 is completed")
"""


class NotFoundError(Exception):
    """Raised when a requested project, phase, deliverable or team does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "Deliverable").
        resource_id: The key that was looked up. Included in logs and message.
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
    """Raised when input is well-formed but violates a business rule.

    Examples: an unknown approval actor, an empty phase template list.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class SequenceError(Exception):
    """Raised when a phase is activated out of order.

    A phase may only become active when it is pending and its predecessor
    is completed (or it is phase 1).

    Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation is not permitted in the entity's current state.

    Examples: approving a deliverable of a non-active phase, approving a
    deliverable that was rejected and not yet regenerated.

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        current_status: The status that blocked the operation, when known.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class DependencyError(Exception):
    """Raised when an external collaborator (LLM reviewer, notifier, mailer) fails.

    Never implies success: a failed review is not an approval, a failed
    generation leaves the deliverable untouched.

    Maps to HTTP 502.

    Args:
        dependency: Name of the failing collaborator (e.g. "reviewer").
        message: Underlying failure description.
    """

    def __init__(self, dependency: str, message: str = "") -> None:
        self.dependency = dependency
        msg = f"{dependency} unavailable"
        if message:
            msg += f": {message}"
        super().__init__(msg)
