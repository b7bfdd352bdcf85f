"""
Notification sink + notification service tests.
"""

import pytest

from app.core.exceptions import DependencyError
from app.models.notification import Notification
from app.services.email_service import EmailService
from app.services.notification import NotificationService, NotificationSink


@pytest.fixture()
def project(make_project):
    return make_project([("Research", ["A"])], owner_id="owner-1")


def _payload(project, **extra):
    return {"project_id": project.id, "project_name": project.name,
            "phase_number": 1, "phase_name": "Research", **extra}


class TestNotificationSink:
    def test_writes_in_app_notification(self, project):
        notif = NotificationSink().notify("owner-1", "phase_completed", _payload(project))

        assert notif.id is not None
        assert notif.recipient == "owner-1"
        assert notif.title == "Phase 1 (Research) completed"
        assert notif.severity == "success"
        assert notif.payload["phase_name"] == "Research"
        assert Notification.query.filter_by(project_id=project.id).count() == 1

    def test_missing_owner_broadcasts(self, project):
        notif = NotificationSink().notify(None, "phase_blocked", _payload(project))
        assert notif.recipient == "all"
        assert notif.severity == "warning"

    def test_email_recipient_is_mailed(self, project, monkeypatch):
        sent = []

        def fake_send(**kwargs):
            sent.append(kwargs)
            return "logged"

        monkeypatch.setattr(EmailService, "send_from_template", staticmethod(fake_send))
        NotificationSink().notify("owner@acme.test", "project_completed", _payload(project))

        assert len(sent) == 1
        assert sent[0]["to_email"] == "owner@acme.test"
        assert sent[0]["template_name"] == "workflow_event"
        assert sent[0]["context"]["title"] == "Project Acme Coffee completed"

    def test_plain_owner_id_is_not_mailed(self, project, monkeypatch):
        sent = []
        monkeypatch.setattr(EmailService, "send_from_template",
                            staticmethod(lambda **kw: sent.append(kw)))
        NotificationSink().notify("owner-1", "phase_completed", _payload(project))
        assert sent == []

    def test_email_failure_is_dependency_error(self, project, monkeypatch):
        def broken(**kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(EmailService, "send_from_template", staticmethod(broken))
        with pytest.raises(DependencyError) as exc:
            NotificationSink().notify("owner@acme.test", "phase_completed", _payload(project))
        assert exc.value.dependency == "email"

    def test_dev_mode_email_is_logged(self, project, app):
        assert not app.config.get("MAIL_SERVER")
        assert EmailService.send(to_email="a@b.test", subject="s", html_body="<p/>") == "logged"


class TestNotificationService:
    def test_list_filters_and_paginates(self, project):
        sink = NotificationSink()
        sink.notify("owner-1", "phase_blocked", _payload(project))
        sink.notify("owner-1", "phase_completed", _payload(project))
        sink.notify("someone-else", "phase_completed", _payload(project))

        items, total = NotificationService.list_for_project(project.id, recipient="owner-1")
        assert total == 2
        assert [n.event_type for n in items] == ["phase_completed", "phase_blocked"]

        items, total = NotificationService.list_for_project(project.id, event_type="phase_blocked")
        assert total == 1

        items, total = NotificationService.list_for_project(project.id, limit=1, offset=1)
        assert total == 3
        assert len(items) == 1

    def test_mark_read(self, project):
        notif = NotificationSink().notify("owner-1", "phase_completed", _payload(project))
        NotificationService.mark_read(notif.id)

        items, total = NotificationService.list_for_project(project.id, unread_only=True)
        assert total == 0
        assert NotificationService.mark_read(999) is None
