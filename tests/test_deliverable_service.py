"""
Deliverable generation + automated review tests.
"""

import pytest

from app.core.exceptions import DependencyError, InvalidStateError, NotFoundError
from app.models import db
from app.models.deliverable import Deliverable
from app.models.team import TeamMember
from app.services import approval_gate, deliverable_service, team_lifecycle


@pytest.fixture()
def deliverable(make_project):
    project = make_project([("Research", ["Market Analysis"]), ("Branding", ["Logo"])])
    return project.current_phase.deliverables.first()


class TestGenerate:
    def test_generation_sends_to_review(self, deliverable, reviewer):
        d = deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        assert d.status == "review"
        assert d.version == 1
        assert d.generated_content == {"title": "Market Analysis", "body": "v1"}
        assert d.citations == [{"source": "https://example.com/report", "title": "Source"}]
        assert d.screenshots == ["https://example.com/shot.png"]
        assert reviewer.calls["generate"] == 1

    def test_failure_leaves_deliverable_in_progress(self, deliverable, reviewer):
        reviewer.fail_generate = True
        with pytest.raises(DependencyError):
            deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)

        db.session.expire_all()
        d = db.session.get(Deliverable, deliverable.id)
        assert d.status == "in_progress"
        assert d.version == 0
        assert d.generated_content is None

    def test_retry_after_failure(self, deliverable, reviewer):
        reviewer.fail_generate = True
        with pytest.raises(DependencyError):
            deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        reviewer.fail_generate = False
        d = deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        assert d.status == "review"
        assert d.version == 1

    def test_approved_deliverable_needs_feedback(self, deliverable, reviewer, approve):
        approve(deliverable.id)
        with pytest.raises(InvalidStateError):
            deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)

        d = deliverable_service.generate_deliverable(
            deliverable.id, "Refresh the numbers", reviewer=reviewer,
        )
        assert d.status == "review"
        assert d.version == 2
        assert d.reviewer_approved is False
        assert d.owner_approved is False
        assert reviewer.last_feedback == "Refresh the numbers"

    def test_pending_phase_refused(self, make_project, reviewer):
        project = make_project([("Research", ["A"]), ("Branding", ["B"])])
        later = project.phases.filter_by(phase_number=2).first().deliverables.first()
        with pytest.raises(InvalidStateError):
            deliverable_service.generate_deliverable(later.id, reviewer=reviewer)
        assert reviewer.calls["generate"] == 0

    def test_unknown_deliverable(self, reviewer):
        with pytest.raises(NotFoundError):
            deliverable_service.generate_deliverable(999, reviewer=reviewer)


class TestReview:
    def test_records_reviewer_verdict(self, deliverable, reviewer):
        deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        d, verdict = deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)

        assert verdict.approved is True
        assert d.reviewer_approved is True
        assert d.owner_approved is False
        assert d.status == "review"
        assert d.quality_score == 8.5
        history = approval_gate.get_feedback_history(deliverable.id)
        assert history[-1]["actor"] == "reviewer"
        assert history[-1]["comment"] == "Looks good"

    def test_rejecting_verdict(self, deliverable, reviewer):
        from app.services.reviewer import ReviewVerdict
        reviewer.verdict = ReviewVerdict(approved=False, quality_score=4, feedback="Too vague")
        deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)

        d, _ = deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)
        assert d.status == "rejected"

    def test_requires_review_status(self, deliverable, reviewer):
        with pytest.raises(InvalidStateError) as exc:
            deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)
        assert exc.value.current_status == "pending"
        assert reviewer.calls["review"] == 0

    def test_reviewer_failure_records_nothing(self, deliverable, reviewer):
        deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        reviewer.fail_review = True
        with pytest.raises(DependencyError):
            deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)

        assert approval_gate.get_feedback_history(deliverable.id) == []
        d = db.session.get(Deliverable, deliverable.id)
        assert d.reviewer_approved is False
        assert d.status == "review"


def _team_member(deliverable, role):
    return TeamMember.query.filter_by(team_id=deliverable.phase.team_id, role=role).first()


class TestTeamMemberStatus:
    def test_executive_reviewing_during_review(self, deliverable, reviewer):
        deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        seen = []
        real_review = reviewer.review

        def watching_review(d):
            seen.append(_team_member(d, "executive").status)
            return real_review(d)

        reviewer.review = watching_review
        deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)

        assert seen == ["reviewing"]
        assert _team_member(deliverable, "executive").status == "idle"

    def test_executive_released_when_review_fails(self, deliverable, reviewer):
        deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        reviewer.fail_review = True
        with pytest.raises(DependencyError):
            deliverable_service.review_deliverable(deliverable.id, reviewer=reviewer)
        assert _team_member(deliverable, "executive").status == "idle"

    def test_failed_generation_blocks_assignee(self, deliverable, reviewer):
        lead = _team_member(deliverable, "lead")
        team_lifecycle.assign(deliverable.phase.team_id, deliverable.id, lead.id)

        reviewer.fail_generate = True
        with pytest.raises(DependencyError):
            deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        lead = db.session.get(TeamMember, lead.id)
        assert lead.status == "blocked"
        assert lead.current_deliverable_id == deliverable.id

        reviewer.fail_generate = False
        d = deliverable_service.generate_deliverable(deliverable.id, reviewer=reviewer)
        lead = db.session.get(TeamMember, lead.id)
        assert d.status == "review"
        assert lead.status == "idle"
        assert lead.current_deliverable_id is None
