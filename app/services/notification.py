"""
AI Company Workflow Engine
Notification Service.

Central service for creating and querying in-app notifications, plus the
fire-and-forget sink the phase state machine emits workflow events into.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import DependencyError
from app.models import db
from app.models.notification import Notification
from app.services.email_service import SEVERITY_COLORS, EmailService

logger = logging.getLogger(__name__)

# event_type → (title template, severity)
EVENT_TITLES = {
    "phase_completed": ("Phase {phase_number} ({phase_name}) completed", "success"),
    "project_completed": ("Project {project_name} completed", "success"),
    "phase_blocked": ("Phase {phase_number} ({phase_name}) is blocked", "warning"),
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, event_type, message="", severity="info",
               recipient="all", project_id=None, payload=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            project_id=project_id,
            recipient=recipient,
            event_type=event_type,
            title=title,
            message=message,
            severity=severity,
            payload=payload,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_project(project_id, recipient=None, unread_only=False, event_type=None,
                         limit=50, offset=0):
        """
        Retrieve a project's notifications, newest first.
        """
        q = Notification.query.filter_by(project_id=project_id)
        if recipient:
            q = q.filter(
                (Notification.recipient == recipient) | (Notification.recipient == "all")
            )
        if unread_only:
            q = q.filter_by(is_read=False)
        if event_type:
            q = q.filter_by(event_type=event_type)
        total = q.count()
        items = q.order_by(Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif


class NotificationSink:
    """
    Fire-and-forget delivery of workflow events.

    Writes an in-app Notification and mirrors it by email when the
    recipient is an address. Any failure is raised as DependencyError so
    the caller can log and drop it.
    """

    def notify(self, user_id, event_type, payload):
        payload = dict(payload or {})
        title_tpl, severity = EVENT_TITLES.get(event_type, ("{event_type}", "info"))
        title = title_tpl.format(event_type=event_type, **{
            "phase_number": payload.get("phase_number", ""),
            "phase_name": payload.get("phase_name", ""),
            "project_name": payload.get("project_name", ""),
        })
        message = payload.get("message", "")
        recipient = str(user_id) if user_id else "all"

        try:
            notif = NotificationService.create(
                title=title,
                event_type=event_type,
                message=message,
                severity=severity,
                recipient=recipient,
                project_id=payload.get("project_id"),
                payload=payload,
            )
        except SQLAlchemyError as e:
            db.session.rollback()
            raise DependencyError("notification", str(e)) from e

        if "@" in recipient:
            try:
                EmailService.send_from_template(
                    to_email=recipient,
                    template_name="workflow_event",
                    context={
                        "title": title,
                        "message": message,
                        "event_type": event_type,
                        "project_name": payload.get("project_name", ""),
                        "severity_color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"]),
                    },
                )
            except Exception as e:
                raise DependencyError("email", str(e)) from e

        logger.info(
            "Notification dispatched",
            extra={"event_type": event_type, "project_id": payload.get("project_id"),
                   "notification_id": notif.id},
        )
        return notif
