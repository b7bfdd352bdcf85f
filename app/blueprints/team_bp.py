"""
Team Blueprint.

Endpoints:
    GET    /api/v1/teams/<team_id>               roster + workload counters
    POST   /api/v1/teams/<team_id>/auto-assign   idle members take pending work
    POST   /api/v1/teams/<team_id>/assign        one member takes one deliverable
"""

import logging

from flask import Blueprint, jsonify, request

from app.services import team_lifecycle
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

team_bp = Blueprint("teams", __name__, url_prefix="/api/v1/teams")
register_error_handlers(team_bp)


@team_bp.route("/<int:team_id>", methods=["GET"])
def get_team(team_id):
    return jsonify(team_lifecycle.get_team_status(team_id)), 200


@team_bp.route("/<int:team_id>/auto-assign", methods=["POST"])
def auto_assign(team_id):
    """Pair idle members with pending deliverables. An empty list is a valid result."""
    assignments = team_lifecycle.auto_assign(team_id)
    return jsonify({"team_id": team_id, "assignments": assignments, "count": len(assignments)}), 200


@team_bp.route("/<int:team_id>/assign", methods=["POST"])
def assign(team_id):
    """Body: {deliverable_id, member_id}."""
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("deliverable_id", "member_id") if data.get(k) is None]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} required",
                         details={k: "required" for k in missing})
    try:
        deliverable_id = int(data["deliverable_id"])
        member_id = int(data["member_id"])
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "deliverable_id and member_id must be integers")

    assignment = team_lifecycle.assign(team_id, deliverable_id, member_id)
    return jsonify({"team_id": team_id, **assignment}), 200
