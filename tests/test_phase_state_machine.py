"""
Phase state machine tests.

Tests cover:
  - Project creation: phase 1 active with deliverables, team activated
  - Sequencing: phases start strictly in order
  - try_advance: not-ready no-op, completion, next-phase activation,
    project completion, idempotency
  - Concurrent try_advance: exactly one completion and one set of effects,
    both interleaved in one session and from real threads on a file database
  - Side-effect failures never undo a completion
  - Blocked phases (empty template) and resume
  - Progress reporting
  - End-to-end single-phase and two-phase scenarios
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from app import create_app
from app.config import TestingConfig, config
from app.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    SequenceError,
    ValidationError,
)
from app.models import db
from app.models.project import Phase, Project
from app.models.reporting import ConsolidatedReport
from app.models.team import Team
from app.services import approval_gate, phase_state_machine, report_compiler, team_lifecycle
from app.services.scheduler_service import SchedulerService


def _phase(project_id, number):
    return Phase.query.filter_by(project_id=project_id, phase_number=number).first()


def _approve_phase(phase, approve):
    for d in phase.deliverables.all():
        approve(d.id)


# ═════════════════════════════════════════════════════════════════════════
# CREATION
# ═════════════════════════════════════════════════════════════════════════

class TestCreateProject:
    def test_phase_one_starts_active(self, make_project):
        project = make_project([("Research", ["A", "B"]), ("Branding", ["C"])], owner_id="owner-1")

        assert project.status == "in_progress"
        assert project.phase_count == 2
        p1, p2 = project.phases.all()
        assert p1.status == "active"
        assert p1.started_at is not None
        assert p1.deliverables.count() == 2
        assert p2.status == "pending"
        assert p2.deliverables.count() == 0
        assert project.current_phase_number == 1

    def test_phase_one_team_is_activated(self, make_project):
        project = make_project([("Research", ["A"]), ("Branding", ["C"])])
        p1, p2 = project.phases.all()
        assert db.session.get(Team, p1.team_id).status == "active"
        assert db.session.get(Team, p2.team_id).status == "inactive"

    def test_default_template_has_six_phases(self):
        project = phase_state_machine.create_project("Bean There")
        assert project.phase_count == 6
        names = [p.name for p in project.phases]
        assert names == ["Research", "Branding", "Development", "Content", "Marketing", "Sales"]
        assert project.current_phase.deliverables.count() == 4

    def test_team_shared_between_phases(self, template):
        templates = [
            template("Research", ["A"], team="core-team"),
            template("Analysis", ["B"], team="core-team"),
        ]
        project = phase_state_machine.create_project("Shared", templates)
        p1, p2 = project.phases.all()
        assert p1.team_id == p2.team_id
        assert project.teams.count() == 1

    def test_name_required(self, template):
        with pytest.raises(ValidationError):
            phase_state_machine.create_project("   ", [template("Research", ["A"])])

    def test_empty_templates_rejected(self):
        with pytest.raises(ValidationError):
            phase_state_machine.create_project("Empty", [])
        assert Project.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# SEQUENCING
# ═════════════════════════════════════════════════════════════════════════

class TestActivatePhase:
    def test_cannot_skip_ahead(self, make_project):
        project = make_project([("Research", ["A"]), ("Branding", ["B"]), ("Sales", ["C"])])
        with pytest.raises(SequenceError):
            phase_state_machine.activate_phase(project.id, 3)
        with pytest.raises(SequenceError):
            phase_state_machine.activate_phase(project.id, 2)
        assert _phase(project.id, 2).status == "pending"
        assert _phase(project.id, 3).status == "pending"

    def test_cannot_reactivate_active_phase(self, make_project):
        project = make_project([("Research", ["A"])])
        with pytest.raises(SequenceError):
            phase_state_machine.activate_phase(project.id, 1)
        assert _phase(project.id, 1).deliverables.count() == 1

    def test_unknown_project_or_phase(self, make_project):
        with pytest.raises(NotFoundError):
            phase_state_machine.activate_phase(9999, 1)
        project = make_project([("Research", ["A"])])
        with pytest.raises(NotFoundError):
            phase_state_machine.activate_phase(project.id, 7)

    def test_at_most_one_active_phase(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B"]), ("Sales", ["C"])])
        for number in (1, 2, 3):
            in_flight = [p for p in project.phases if p.status in ("active", "blocked")]
            assert len(in_flight) == 1
            assert in_flight[0].phase_number == number
            _approve_phase(in_flight[0], approve)
            phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        assert all(p.status == "completed" for p in project.phases)


# ═════════════════════════════════════════════════════════════════════════
# ADVANCEMENT
# ═════════════════════════════════════════════════════════════════════════

class TestTryAdvance:
    def test_not_ready_is_a_noop(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A", "B"]), ("Branding", ["C"])])
        phase = project.current_phase
        approve(phase.deliverables.first().id)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert result["advanced"] is False
        assert result["reason"] == "not_ready"
        assert _phase(project.id, 1).status == "active"
        assert _phase(project.id, 2).status == "pending"
        assert ConsolidatedReport.query.count() == 0
        assert notifier.events == []

    def test_completes_phase_and_activates_next(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B", "C"])], owner_id="owner-1")
        p1_team = _phase(project.id, 1).team_id
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert result["advanced"] is True
        assert result["errors"] == []
        assert result["completed_phase"]["phase_number"] == 1
        assert result["new_phase"]["phase_number"] == 2
        p1, p2 = _phase(project.id, 1), _phase(project.id, 2)
        assert p1.status == "completed"
        assert p1.completed_at is not None
        assert p2.status == "active"
        assert p2.deliverables.count() == 2
        assert db.session.get(Team, p1_team).status == "inactive"
        assert db.session.get(Team, p2.team_id).status == "active"
        report = db.session.get(ConsolidatedReport, result["report_id"])
        assert report.phase_id == p1.id
        assert [e[1] for e in notifier.events] == ["phase_completed"]
        assert notifier.events[0][0] == "owner-1"

    def test_already_completed_phase_is_not_recompleted(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B"])])
        _approve_phase(project.current_phase, approve)

        first = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        second = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert first["advanced"] is True
        assert second["advanced"] is False
        assert second["reason"] == "not_ready"
        assert ConsolidatedReport.query.count() == 1
        assert len(notifier.events) == 1

    def test_last_phase_completes_project(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"])])
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert result["advanced"] is True
        assert result["project_complete"] is True
        assert result["new_phase"] is None
        project = db.session.get(Project, project.id)
        assert project.status == "completed"
        assert project.completed_at is not None
        assert [e[1] for e in notifier.events] == ["project_completed"]

        again = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        assert again["advanced"] is False
        assert again["reason"] == "no_active_phase"
        assert again["project_complete"] is True

    def test_unknown_project(self):
        with pytest.raises(NotFoundError):
            phase_state_machine.try_advance(9999)


class TestConcurrentAdvance:
    def test_interleaved_callers_complete_once(self, monkeypatch, make_project, approve, reviewer, notifier):
        """A second caller finishes the phase between the first caller's
        readiness check and its status flip; the first must back off."""
        project = make_project([("Research", ["A", "B"]), ("Branding", ["C"])])
        _approve_phase(project.current_phase, approve)

        counts = {"deactivate": 0, "compile": 0}
        real_ready = approval_gate.is_phase_ready
        real_deactivate = team_lifecycle.deactivate
        real_compile = report_compiler.compile
        inner_results = []
        raced = {"done": False}

        def racing_ready(phase):
            ready = real_ready(phase)
            if not raced["done"]:
                raced["done"] = True
                inner_results.append(
                    phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
                )
            return ready

        def counting_deactivate(team_id):
            counts["deactivate"] += 1
            return real_deactivate(team_id)

        def counting_compile(phase_id, **kwargs):
            counts["compile"] += 1
            return real_compile(phase_id, **kwargs)

        monkeypatch.setattr(approval_gate, "is_phase_ready", racing_ready)
        monkeypatch.setattr(team_lifecycle, "deactivate", counting_deactivate)
        monkeypatch.setattr(report_compiler, "compile", counting_compile)

        outer = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        inner = inner_results[0]

        assert inner["advanced"] is True
        assert outer["advanced"] is False
        assert outer["reason"] == "already_advanced"
        assert counts == {"deactivate": 1, "compile": 1}
        assert len(notifier.events) == 1
        assert ConsolidatedReport.query.count() == 1
        assert _phase(project.id, 2).status == "active"
        assert _phase(project.id, 2).deliverables.count() == 1


@pytest.fixture()
def race_app(tmp_path, monkeypatch):
    """Second app on a file-backed SQLite database shared by worker threads."""

    class RaceConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30, "check_same_thread": False}}

    monkeypatch.setitem(config, "race", RaceConfig)
    previous_app = SchedulerService._app
    application = create_app("race")
    yield application
    SchedulerService._app = previous_app
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestThreadedAdvance:
    CALLERS = 8

    def test_parallel_callers_complete_once(self, race_app, template, approve, reviewer, notifier):
        with race_app.app_context():
            project = phase_state_machine.create_project(
                "Race Co", [template("Research", ["A", "B"]), template("Branding", ["C"])],
            )
            project_id = project.id
            for d in project.current_phase.deliverables.all():
                approve(d.id)

        barrier = threading.Barrier(self.CALLERS)

        def call():
            with race_app.app_context():
                barrier.wait(timeout=30)
                return phase_state_machine.try_advance(project_id, reviewer=reviewer, notifier=notifier)

        with ThreadPoolExecutor(max_workers=self.CALLERS) as pool:
            futures = [pool.submit(call) for _ in range(self.CALLERS)]
            results = [f.result(timeout=60) for f in futures]

        winners = [r for r in results if r["advanced"]]
        assert len(winners) == 1
        assert winners[0]["errors"] == []
        losing_reasons = {r["reason"] for r in results if not r["advanced"]}
        assert losing_reasons <= {"already_advanced", "not_ready", "no_active_phase"}
        assert len(notifier.events) == 1
        assert reviewer.calls["summarize"] == 1

        with race_app.app_context():
            assert _phase(project_id, 1).status == "completed"
            assert _phase(project_id, 2).status == "active"
            assert _phase(project_id, 2).deliverables.count() == 1
            assert ConsolidatedReport.query.count() == 1


class TestSideEffectFailures:
    def test_report_failure_does_not_undo_completion(self, monkeypatch, make_project, approve,
                                                     reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B"])])
        _approve_phase(project.current_phase, approve)

        def broken_compile(phase_id, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(report_compiler, "compile", broken_compile)
        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert result["advanced"] is True
        assert result["report_id"] is None
        assert any("report_compilation" in e for e in result["errors"])
        assert _phase(project.id, 1).status == "completed"
        assert _phase(project.id, 2).status == "active"

    def test_report_retry_after_failure(self, monkeypatch, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B"])])
        _approve_phase(project.current_phase, approve)
        monkeypatch.setattr(report_compiler, "compile", lambda phase_id, **kw: 1 / 0)
        phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        monkeypatch.undo()

        report = report_compiler.compile(_phase(project.id, 1).id, reviewer=reviewer)
        assert report.metrics["deliverable_count"] == 1

    def test_notification_failure_is_swallowed(self, make_project, approve, reviewer, failing_notifier):
        failing = failing_notifier
        project = make_project([("Research", ["A"])])
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=failing)

        assert result["advanced"] is True
        assert result["project_complete"] is True
        assert any("notification" in e for e in result["errors"])

    def test_unexpected_notifier_error_is_reported(self, make_project, approve, reviewer):
        class UnreachableNotifier:
            def notify(self, user_id, event_type, payload):
                raise ConnectionError("sink unreachable")

        project = make_project([("Research", ["A"]), ("Branding", ["B"])])
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(
            project.id, reviewer=reviewer, notifier=UnreachableNotifier())

        assert result["advanced"] is True
        assert result["errors"] == ["notification: sink unreachable"]
        assert _phase(project.id, 1).status == "completed"
        assert _phase(project.id, 2).status == "active"
        assert ConsolidatedReport.query.count() == 1

    def test_summary_failure_degrades_to_template(self, make_project, approve, reviewer, notifier):
        reviewer.fail_summary = True
        project = make_project([("Research", ["A"])])
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        report = db.session.get(ConsolidatedReport, result["report_id"])
        assert report.summary_source == "template"
        assert "1 of 1 deliverables approved" in report.executive_summary
        assert result["errors"] == []


# ═════════════════════════════════════════════════════════════════════════
# BLOCKED PHASES
# ═════════════════════════════════════════════════════════════════════════

class TestBlockedPhases:
    def test_empty_template_blocks_phase(self, template, approve, reviewer, notifier):
        templates = [template("Research", ["A"]), template("Branding", [])]
        project = phase_state_machine.create_project("Blocky", templates)
        _approve_phase(project.current_phase, approve)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        p2 = _phase(project.id, 2)
        assert result["advanced"] is True
        assert p2.status == "blocked"
        assert p2.blocked_reason
        assert [e[1] for e in notifier.events] == ["phase_blocked", "phase_completed"]

        stuck = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        assert stuck["reason"] == "phase_blocked"

    def test_resume_with_template(self, template, approve, reviewer, notifier):
        templates = [template("Research", ["A"]), template("Branding", [])]
        project = phase_state_machine.create_project("Blocky", templates)
        _approve_phase(project.current_phase, approve)
        phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        with pytest.raises(ValidationError):
            phase_state_machine.resume_phase(project.id, 2)

        phase = phase_state_machine.resume_phase(project.id, 2, [{"name": "Brand Book"}])
        phase = db.session.get(Phase, phase.id)
        assert phase.status == "active"
        assert phase.blocked_reason is None
        assert [d.name for d in phase.deliverables] == ["Brand Book"]

    def test_resume_requires_blocked(self, make_project):
        project = make_project([("Research", ["A"])])
        with pytest.raises(InvalidStateError):
            phase_state_machine.resume_phase(project.id, 1)

    def test_blocked_first_phase(self, template, notifier):
        project = phase_state_machine.create_project(
            "Nothing yet", [template("Research", [])], owner_id="founder", notifier=notifier,
        )
        assert project.current_phase.status == "blocked"
        assert project.current_phase_number == 1
        [(user_id, event_type, payload)] = notifier.events
        assert (user_id, event_type) == ("founder", "phase_blocked")
        assert payload["phase_number"] == 1


# ═════════════════════════════════════════════════════════════════════════
# PROGRESS
# ═════════════════════════════════════════════════════════════════════════

class TestProgress:
    def test_progress_counts(self, make_project, approve, reviewer, notifier):
        project = make_project([("Research", ["A"]), ("Branding", ["B", "C"]), ("Sales", ["D"])])
        _approve_phase(project.current_phase, approve)
        phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        approve(_phase(project.id, 2).deliverables.first().id)

        progress = phase_state_machine.get_project_progress(project.id)

        assert progress["overall_percent"] == 33
        assert progress["current_phase_number"] == 2
        assert progress["project_complete"] is False
        phases = progress["phases"]
        assert [p["status"] for p in phases] == ["completed", "active", "pending"]
        assert phases[0]["percent"] == 100
        assert (phases[1]["approved_deliverables"], phases[1]["total_deliverables"]) == (1, 2)
        assert phases[1]["percent"] == 50
        assert phases[2]["percent"] == 0


# ═════════════════════════════════════════════════════════════════════════
# END-TO-END
# ═════════════════════════════════════════════════════════════════════════

class TestScenarios:
    def test_single_phase_project(self, reviewer, notifier, template):
        project = phase_state_machine.create_project(
            "Solo", [template("Research", ["Market Analysis"])], owner_id="founder",
        )
        d = project.current_phase.deliverables.first()

        approval_gate.record_generation(d.id, {"summary": "TAM 2bn"})
        approval_gate.record_approval(d.id, "reviewer", True, quality_score=8)
        assert phase_state_machine.try_advance(
            project.id, reviewer=reviewer, notifier=notifier)["reason"] == "not_ready"
        approval_gate.record_approval(d.id, "owner", True)

        result = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert result["advanced"] is True
        assert result["project_complete"] is True
        assert db.session.get(Project, project.id).status == "completed"
        report = db.session.get(ConsolidatedReport, result["report_id"])
        assert report.summary_source == "ai"
        assert report.executive_summary == reviewer.summary
        assert report.metrics["approved_count"] == 1
        assert notifier.events[-1][1] == "project_completed"

    def test_two_phase_project_with_rejection(self, reviewer, notifier, template):
        project = phase_state_machine.create_project(
            "Duo", [template("Research", ["A", "B"]), template("Branding", ["C"])],
        )
        a, b = project.current_phase.deliverables.all()

        approval_gate.record_generation(a.id, {"v": 1})
        approval_gate.record_generation(b.id, {"v": 1})
        approval_gate.record_approval(a.id, "reviewer", True)
        approval_gate.record_approval(a.id, "owner", True)
        approval_gate.record_approval(b.id, "reviewer", True)
        approval_gate.record_approval(b.id, "owner", False, "Missing competitors")
        assert phase_state_machine.try_advance(
            project.id, reviewer=reviewer, notifier=notifier)["advanced"] is False

        approval_gate.record_generation(b.id, {"v": 2}, "Missing competitors")
        approval_gate.record_approval(b.id, "reviewer", True)
        approval_gate.record_approval(b.id, "owner", True)
        first = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)
        assert first["advanced"] is True
        assert first["new_phase"]["phase_number"] == 2

        c = _phase(project.id, 2).deliverables.first()
        approval_gate.record_generation(c.id, {"v": 1})
        approval_gate.record_approval(c.id, "owner", True)
        approval_gate.record_approval(c.id, "reviewer", True)
        second = phase_state_machine.try_advance(project.id, reviewer=reviewer, notifier=notifier)

        assert second["advanced"] is True
        assert second["project_complete"] is True
        assert [e[1] for e in notifier.events] == ["phase_completed", "project_completed"]
        assert ConsolidatedReport.query.count() == 2
        assert phase_state_machine.get_project_progress(project.id)["overall_percent"] == 100
