"""
AI Company Workflow Engine
Notification & Scheduling Blueprint.

Provides:
    - Per-project notification listing and read tracking
    - Scheduled job management (list, trigger)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.models.notification import NOTIFICATION_EVENTS
from app.services.notification import NotificationService
from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/projects/<int:project_id>/notifications", methods=["GET"])
def list_project_notifications(project_id):
    """List a project's notifications, newest first.

    Query params: recipient, unread_only, event_type, limit (≤200), offset
    """
    event_type = request.args.get("event_type")
    if event_type and event_type not in NOTIFICATION_EVENTS:
        return api_error(
            E.VALIDATION_INVALID,
            f"Invalid event_type. Must be one of: {sorted(NOTIFICATION_EVENTS)}",
        )

    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    items, total = NotificationService.list_for_project(
        project_id,
        recipient=request.args.get("recipient"),
        unread_only=unread_only,
        event_type=event_type,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(notification_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()}), 200


@notification_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Trigger a registered job immediately."""
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status
