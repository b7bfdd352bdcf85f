"""
Workflow Blueprint.

HTTP surface of the phase & deliverable approval workflow.

Endpoints:
    POST   /api/v1/projects
           Body: { "name", "description"?, "industry"?, "owner_id"?,
                   "phase_templates"? }
           Returns: 201 with the project and its phases.

    GET    /api/v1/projects/<pid>/progress
    POST   /api/v1/projects/<pid>/advance
    POST   /api/v1/projects/<pid>/phases/<n>/activate
    POST   /api/v1/projects/<pid>/phases/<n>/resume
           Body: { "deliverable_template"? }

    POST   /api/v1/phases/<phase_id>/report      (re)compile the report
    GET    /api/v1/phases/<phase_id>/report

    GET    /api/v1/deliverables/<did>?include_feedback=true
    POST   /api/v1/deliverables/<did>/generate   Body: { "feedback"?, "timeout"? }
    POST   /api/v1/deliverables/<did>/review
    POST   /api/v1/deliverables/<did>/approval
           Body: { "actor": "reviewer|owner", "approved": bool,
                   "comment"?, "quality_score"? }

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - NO db.session calls here; all writes owned by the services.
    - Service exceptions are mapped once by register_error_handlers().
    - Verdict-recording routes follow up with try_advance(); a phase that is
      not ready yet is reported in the response, not as an error.
"""

import logging

from flask import Blueprint, jsonify, request

from app.services import approval_gate, deliverable_service, phase_state_machine, report_compiler
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _advance_after_verdict(deliverable) -> dict | None:
    """Try to close the phase once a verdict made it ready."""
    if deliverable.status != "approved":
        return None
    return phase_state_machine.try_advance(deliverable.phase.project_id)


# ═════════════════════════════════════════════════════════════════════════
# Projects & phases
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects", methods=["POST"])
def create_project():
    """Create a project; phase 1 starts immediately.

    Returns 201 on success, 400 on missing name, 422 on malformed templates.
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")

    templates = data.get("phase_templates")
    if templates is not None and not isinstance(templates, list):
        return api_error(E.VALIDATION_INVALID, "phase_templates must be a list")

    project = phase_state_machine.create_project(
        name,
        templates,
        owner_id=data.get("owner_id"),
        description=data.get("description", ""),
        industry=data.get("industry", ""),
    )
    return jsonify(project.to_dict(include_phases=True)), 201


@workflow_bp.route("/projects/<int:project_id>/progress", methods=["GET"])
def get_project_progress(project_id):
    return jsonify(phase_state_machine.get_project_progress(project_id)), 200


@workflow_bp.route("/projects/<int:project_id>/advance", methods=["POST"])
def advance_project(project_id):
    """Complete the active phase if ready. Not-ready is a 200 with advanced=false."""
    result = phase_state_machine.try_advance(project_id)
    return jsonify(result), 200


@workflow_bp.route("/projects/<int:project_id>/phases/<int:phase_number>/activate", methods=["POST"])
def activate_phase(project_id, phase_number):
    phase = phase_state_machine.activate_phase(project_id, phase_number)
    return jsonify(phase.to_dict(include_deliverables=True)), 200


@workflow_bp.route("/projects/<int:project_id>/phases/<int:phase_number>/resume", methods=["POST"])
def resume_phase(project_id, phase_number):
    data = request.get_json(silent=True) or {}
    template = data.get("deliverable_template")
    if template is not None and not isinstance(template, list):
        return api_error(E.VALIDATION_INVALID, "deliverable_template must be a list")

    phase = phase_state_machine.resume_phase(project_id, phase_number, template)
    return jsonify(phase.to_dict(include_deliverables=True)), 200


# ═════════════════════════════════════════════════════════════════════════
# Consolidated reports
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/phases/<int:phase_id>/report", methods=["POST"])
def compile_phase_report(phase_id):
    """Compile (or re-compile) the consolidated report of a phase."""
    report = report_compiler.compile(phase_id)
    return jsonify(report.to_dict()), 200


@workflow_bp.route("/phases/<int:phase_id>/report", methods=["GET"])
def get_phase_report(phase_id):
    report = report_compiler.get_report(phase_id)
    return jsonify(report.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Deliverables
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/deliverables/<int:deliverable_id>", methods=["GET"])
def get_deliverable(deliverable_id):
    deliverable = deliverable_service.get_deliverable(deliverable_id)
    include_feedback = _as_bool(request.args.get("include_feedback", "false"))
    return jsonify(deliverable.to_dict(include_feedback=include_feedback)), 200


@workflow_bp.route("/deliverables/<int:deliverable_id>/generate", methods=["POST"])
def generate_deliverable(deliverable_id):
    """Generate or regenerate content; the deliverable lands in review.

    Returns 200, 409 when the phase is not active, 502 on LLM failure/timeout.
    """
    data = request.get_json(silent=True) or {}
    feedback = (data.get("feedback") or "").strip() or None

    timeout = data.get("timeout")
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "timeout must be a number of seconds")
        if timeout <= 0:
            return api_error(E.VALIDATION_INVALID, "timeout must be positive")

    deliverable = deliverable_service.generate_deliverable(deliverable_id, feedback, timeout=timeout)
    return jsonify(deliverable.to_dict()), 200


@workflow_bp.route("/deliverables/<int:deliverable_id>/review", methods=["POST"])
def review_deliverable(deliverable_id):
    """Run the automated reviewer and record its verdict."""
    deliverable, verdict = deliverable_service.review_deliverable(deliverable_id)
    return jsonify({
        "deliverable": deliverable.to_dict(),
        "verdict": verdict.to_dict(),
        "advance": _advance_after_verdict(deliverable),
    }), 200


@workflow_bp.route("/deliverables/<int:deliverable_id>/approval", methods=["POST"])
def record_approval(deliverable_id):
    """Record a reviewer or owner verdict.

    Returns 200, 400 on missing fields, 409 on a rejected / non-active
    deliverable, 422 on an unknown actor.
    """
    data = request.get_json(silent=True) or {}
    actor = (data.get("actor") or "").strip()
    if not actor:
        return api_error(E.VALIDATION_REQUIRED, "actor is required")
    if "approved" not in data:
        return api_error(E.VALIDATION_REQUIRED, "approved is required")

    quality_score = data.get("quality_score")
    if quality_score is not None:
        try:
            quality_score = float(quality_score)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "quality_score must be a number")

    deliverable = approval_gate.record_approval(
        deliverable_id,
        actor,
        _as_bool(data.get("approved")),
        data.get("comment"),
        quality_score=quality_score,
    )
    return jsonify({
        "deliverable": deliverable.to_dict(),
        "advance": _advance_after_verdict(deliverable),
    }), 200
