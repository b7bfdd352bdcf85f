"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Deliverable not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")
    return api_error(E.SEQUENCE, "Phase 3 cannot start yet", details={"phase_number": 3})

Blueprints that call workflow services register the shared exception
handlers once:

    register_error_handlers(workflow_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from app.core.exceptions import (
    DependencyError,
    InvalidStateError,
    NotFoundError,
    SequenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400 (malformed request) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Workflow conflicts – HTTP 409
    SEQUENCE = "ERR_SEQUENCE"
    INVALID_STATE = "ERR_INVALID_STATE"

    # Upstream collaborator failure – HTTP 502
    DEPENDENCY = "ERR_DEPENDENCY"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.SEQUENCE: 409,
    E.INVALID_STATE: 409,
    E.DEPENDENCY: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Map the workflow exception hierarchy onto JSON errors for ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(SequenceError)
    def _handle_sequence(error: SequenceError):
        return api_error(E.SEQUENCE, str(error), details=error.details)

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        details = {"current_status": error.current_status} if error.current_status else None
        return api_error(E.INVALID_STATE, str(error), details=details)

    @bp.errorhandler(DependencyError)
    def _handle_dependency(error: DependencyError):
        logger.warning("Dependency failure in %s: %s", request.endpoint, error)
        return api_error(E.DEPENDENCY, str(error), details={"dependency": error.dependency})
