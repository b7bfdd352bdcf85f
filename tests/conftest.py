"""
Shared pytest fixtures for the workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - reviewer / notifier: in-memory doubles for the LLM reviewer and the
      notification sink
    - make_project: creates a project from compact phase templates
    - approve: drives one deliverable through generation + both approvals
"""

import pytest

from app import create_app
from app.core.exceptions import DependencyError
from app.models import db as _db
from app.services.reviewer import ReviewVerdict


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Collaborator doubles ─────────────────────────────────────────────────


class FakeReviewer:
    """ReviewerAdapter stand-in with scripted answers and call counters."""

    def __init__(self):
        self.verdict = ReviewVerdict(approved=True, quality_score=8.5, feedback="Looks good")
        self.summary = "Phase wrapped up with every deliverable signed off."
        self.fail_review = False
        self.fail_generate = False
        self.fail_summary = False
        self.calls = {"review": 0, "generate": 0, "summarize": 0}
        self.last_feedback = None

    def review(self, deliverable):
        self.calls["review"] += 1
        if self.fail_review:
            raise DependencyError("reviewer", "provider down")
        return self.verdict

    def generate(self, deliverable, feedback=None, *, timeout=None):
        self.calls["generate"] += 1
        self.last_feedback = feedback
        if self.fail_generate:
            raise DependencyError("reviewer", "timed out after 1s")
        return {
            "content": {"title": deliverable.name, "body": f"v{deliverable.version + 1}"},
            "citations": [{"source": "https://example.com/report", "title": "Source"}],
            "screenshots": ["https://example.com/shot.png"],
        }

    def summarize(self, phase, context):
        self.calls["summarize"] += 1
        if self.fail_summary:
            raise DependencyError("reviewer", "provider down")
        return self.summary


class FakeNotifier:
    """NotificationSink stand-in that records events."""

    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def notify(self, user_id, event_type, payload):
        self.events.append((user_id, event_type, payload))
        if self.fail:
            raise DependencyError("notification", "smtp down")


@pytest.fixture()
def reviewer():
    return FakeReviewer()


@pytest.fixture()
def notifier():
    return FakeNotifier()


# ── Convenience fixtures ─────────────────────────────────────────────────


def phase_template(name, deliverables, team=None, members=None):
    """Compact phase template: ``deliverables`` is a list of names."""
    team_name = team or f"{name.lower()}-team"
    return {
        "name": name,
        "team": {
            "name": team_name,
            "division": name.lower(),
            "members": members if members is not None else [
                {"agent_id": f"{team_name}-manager", "role": "executive"},
                {"agent_id": f"{team_name}-lead", "role": "lead"},
                f"{team_name}-agent",
            ],
        },
        "deliverables": [{"name": d, "description": f"{d} description"} for d in deliverables],
    }


@pytest.fixture()
def make_project():
    """Factory: make_project([("Research", ["Report A", "Report B"]), ...])."""
    from app.services import phase_state_machine

    def _make(phases, **kwargs):
        templates = [phase_template(name, deliverables) for name, deliverables in phases]
        return phase_state_machine.create_project(kwargs.pop("name", "Acme Coffee"), templates, **kwargs)

    return _make


@pytest.fixture()
def approve():
    """Generate content for a deliverable and record both approvals."""
    from app.services import approval_gate

    def _approve(deliverable_id):
        approval_gate.record_generation(deliverable_id, {"body": "content"})
        approval_gate.record_approval(deliverable_id, "reviewer", True, quality_score=8)
        return approval_gate.record_approval(deliverable_id, "owner", True)

    return _approve


@pytest.fixture()
def template():
    """Expose phase_template() to tests that build raw template lists."""
    return phase_template


@pytest.fixture()
def failing_notifier():
    return FakeNotifier(fail=True)
