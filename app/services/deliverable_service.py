"""
Deliverable content generation and automated review.

Both operations call the LLM through the ReviewerAdapter with no write
pending on the session, then hand the outcome to the approval gate:

    generate_deliverable:  → in_progress (committed) → LLM → record_generation → review
    review_deliverable:    review → LLM verdict → record_approval(actor="reviewer")

A failed or timed-out generation raises DependencyError, leaves the
deliverable in_progress for a retry and marks its assignee blocked. The
team executives show as reviewing while the automated review runs.
Neither call advances the phase; callers follow up with
phase_state_machine.try_advance().
"""

from __future__ import annotations

import logging

from flask import current_app

from app.core.exceptions import DependencyError, InvalidStateError, NotFoundError
from app.models import db
from app.models.deliverable import Deliverable
from app.services import approval_gate, team_lifecycle
from app.services.reviewer import ReviewVerdict, get_reviewer

logger = logging.getLogger(__name__)


def get_deliverable(deliverable_id: int) -> Deliverable:
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
    return deliverable


def _require_active_phase(deliverable: Deliverable) -> None:
    if deliverable.phase.status != "active":
        raise InvalidStateError(
            f"Phase {deliverable.phase.phase_number} is '{deliverable.phase.status}'; "
            f"deliverables can only be worked on while their phase is active",
            current_status=deliverable.phase.status,
        )


def generate_deliverable(
    deliverable_id: int,
    feedback: str | None = None,
    *,
    timeout: float | None = None,
    reviewer=None,
) -> Deliverable:
    """Produce (or regenerate) a deliverable's content and send it to review.

    Args:
        deliverable_id: Target deliverable.
        feedback:       Revision instructions; required to regenerate an
                        approved deliverable.
        timeout:        Seconds to wait for the LLM. Defaults to
                        GENERATION_TIMEOUT_SECONDS.
        reviewer:       ReviewerAdapter override.

    Raises:
        NotFoundError:     unknown deliverable.
        InvalidStateError: phase not active, or approved without feedback.
        DependencyError:   LLM failure or timeout (deliverable stays in_progress,
                           assignee blocked).
    """
    deliverable = get_deliverable(deliverable_id)
    _require_active_phase(deliverable)

    if deliverable.status == "approved" and not feedback:
        raise InvalidStateError(
            f"Deliverable {deliverable.id} is already approved; supply feedback to regenerate it",
            current_status=deliverable.status,
        )

    deliverable.status = "in_progress"
    if deliverable.generated_content is not None or feedback:
        # approved ⟺ both flags, so a deliverable back in progress holds neither
        deliverable.reviewer_approved = False
        deliverable.owner_approved = False
    db.session.commit()

    reviewer = reviewer or get_reviewer()
    if timeout is None:
        timeout = current_app.config.get("GENERATION_TIMEOUT_SECONDS")

    logger.info(
        "Generating deliverable",
        extra={"deliverable_id": deliverable.id, "phase_id": deliverable.phase_id,
               "regeneration": bool(feedback), "timeout": timeout},
    )
    try:
        output = reviewer.generate(deliverable, feedback, timeout=timeout)
    except DependencyError as e:
        team_lifecycle.block_assignee(deliverable, str(e))
        raise

    return approval_gate.record_generation(
        deliverable.id,
        output.get("content"),
        feedback,
        citations=output.get("citations"),
        screenshots=output.get("screenshots"),
    )


def review_deliverable(deliverable_id: int, *, reviewer=None) -> tuple[Deliverable, ReviewVerdict]:
    """Run the automated reviewer and record its verdict.

    Raises:
        NotFoundError:     unknown deliverable.
        InvalidStateError: phase not active or deliverable not in review.
        DependencyError:   reviewer failure; nothing is recorded.
    """
    deliverable = get_deliverable(deliverable_id)
    _require_active_phase(deliverable)
    if deliverable.status != "review":
        raise InvalidStateError(
            f"Deliverable {deliverable.id} is '{deliverable.status}'; only deliverables in review can be reviewed",
            current_status=deliverable.status,
        )

    reviewer = reviewer or get_reviewer()
    team_id = deliverable.phase.team_id
    if team_id:
        team_lifecycle.start_review(team_id)
    try:
        verdict = reviewer.review(deliverable)
    finally:
        if team_id:
            team_lifecycle.finish_review(team_id)

    deliverable = approval_gate.record_approval(
        deliverable.id,
        "reviewer",
        verdict.approved,
        verdict.feedback,
        quality_score=verdict.quality_score,
    )
    return deliverable, verdict
