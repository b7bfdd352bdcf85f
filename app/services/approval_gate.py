"""
Deliverable approval gate.

Owns every mutation of a Deliverable's content and approval state, and
decides whether a phase's deliverable set is complete.

Business rules:
    - A deliverable is approved only when BOTH the automated reviewer and
      the human owner have approved it (status == approved ⟺ both flags).
    - A rejection by either actor sets status to "rejected" and leaves the
      other actor's flag untouched.
    - Rejection is sticky: further approvals raise InvalidStateError until a
      new generation clears both flags.
    - The latest verdict per actor wins (plain field overwrite).
    - Every approval call and every feedback-bearing generation appends a
      DeliverableFeedback row; history is never rewritten.
    - Nothing here advances the phase. Callers invoke
      phase_state_machine.try_advance() after approvals.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import APPROVAL_ACTORS, Deliverable, DeliverableFeedback
from app.models.project import Phase
from app.models.team import TeamMember

logger = logging.getLogger(__name__)

# Statuses in which content exists and a verdict may be recorded
_APPROVABLE_STATUSES = frozenset({"review", "approved"})


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_deliverable(deliverable_id: int) -> Deliverable:
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
    return deliverable


def _require_active_phase(deliverable: Deliverable) -> Phase:
    phase = deliverable.phase
    if phase.status != "active":
        raise InvalidStateError(
            f"Phase {phase.phase_number} is '{phase.status}'; "
            f"deliverables can only change while their phase is active",
            current_status=phase.status,
        )
    return phase


def _release_member(deliverable: Deliverable) -> None:
    """Return the member that produced this deliverable to the idle pool."""
    if deliverable.assigned_member_id is None:
        return
    member = db.session.get(TeamMember, deliverable.assigned_member_id)
    if member is None:
        return
    if member.current_deliverable_id in (None, deliverable.id):
        member.status = "idle"
        member.current_deliverable_id = None


# ── Public API ─────────────────────────────────────────────────────────────────


def record_generation(
    deliverable_id: int,
    content,
    feedback: str | None = None,
    *,
    citations: list | None = None,
    screenshots: list | None = None,
) -> Deliverable:
    """Store freshly generated content and send the deliverable to review.

    A generation is a regeneration when feedback is supplied or content was
    already present; regenerations clear both approval flags, which is the
    only way a rejected deliverable becomes approvable again.

    Args:
        deliverable_id: Target deliverable.
        content:        Opaque generated payload (JSON-serialisable).
        feedback:       Revision context; appended to the feedback history.
        citations:      Source list produced with the content.
        screenshots:    Captured screenshot references.

    Raises:
        NotFoundError:     deliverable does not exist.
        InvalidStateError: the deliverable's phase is not active.
    """
    deliverable = _get_deliverable(deliverable_id)
    _require_active_phase(deliverable)

    is_regeneration = bool(feedback) or deliverable.generated_content is not None

    deliverable.generated_content = content
    if citations is not None:
        deliverable.citations = list(citations)
    if screenshots is not None:
        deliverable.screenshots = list(screenshots)
    deliverable.version = (deliverable.version or 0) + 1
    deliverable.status = "review"

    if is_regeneration:
        deliverable.reviewer_approved = False
        deliverable.owner_approved = False
        deliverable.quality_score = None

    if feedback:
        db.session.add(DeliverableFeedback(
            deliverable_id=deliverable.id,
            actor="generator",
            comment=feedback,
            approved=None,
            deliverable_version=deliverable.version,
        ))

    _release_member(deliverable)
    db.session.commit()

    logger.info(
        "Deliverable generated",
        extra={
            "deliverable_id": deliverable.id,
            "phase_id": deliverable.phase_id,
            "version": deliverable.version,
            "regeneration": is_regeneration,
        },
    )
    return deliverable


def record_approval(
    deliverable_id: int,
    actor: str,
    approved: bool,
    comment: str | None = None,
    *,
    quality_score: float | None = None,
) -> Deliverable:
    """Record one actor's verdict on a deliverable.

    Args:
        deliverable_id: Target deliverable.
        actor:          "reviewer" (automated) or "owner" (human).
        approved:       The verdict.
        comment:        Optional note stored in the feedback history.
        quality_score:  Reviewer score, stored on the deliverable when given.

    Raises:
        ValidationError:   unknown actor.
        NotFoundError:     deliverable does not exist.
        InvalidStateError: phase not active, nothing generated yet, or the
                           deliverable is rejected and awaits regeneration.
    """
    if actor not in APPROVAL_ACTORS:
        raise ValidationError(
            f"Invalid actor '{actor}'. Must be one of: {', '.join(sorted(APPROVAL_ACTORS))}",
            details={"actor": actor},
        )

    deliverable = _get_deliverable(deliverable_id)
    _require_active_phase(deliverable)

    if deliverable.status == "rejected":
        raise InvalidStateError(
            f"Deliverable {deliverable.id} was rejected; regenerate it before recording new verdicts",
            current_status=deliverable.status,
        )
    if deliverable.status not in _APPROVABLE_STATUSES:
        raise InvalidStateError(
            f"Deliverable {deliverable.id} is '{deliverable.status}'; nothing has been generated to approve",
            current_status=deliverable.status,
        )

    approved = bool(approved)
    if actor == "reviewer":
        deliverable.reviewer_approved = approved
        if quality_score is not None:
            deliverable.quality_score = quality_score
    else:
        deliverable.owner_approved = approved

    if not approved:
        deliverable.status = "rejected"
    elif deliverable.reviewer_approved and deliverable.owner_approved:
        deliverable.status = "approved"
    else:
        deliverable.status = "review"

    db.session.add(DeliverableFeedback(
        deliverable_id=deliverable.id,
        actor=actor,
        comment=(comment or "").strip() or None,
        approved=approved,
        deliverable_version=deliverable.version,
    ))
    db.session.commit()

    logger.info(
        "Deliverable verdict recorded",
        extra={
            "deliverable_id": deliverable.id,
            "phase_id": deliverable.phase_id,
            "actor": actor,
            "approved": approved,
            "status": deliverable.status,
        },
    )
    return deliverable


def phase_approval_counts(phase: Phase) -> tuple[int, int]:
    """Return (approved, total) deliverable counts for a phase."""
    total = db.session.execute(
        select(func.count(Deliverable.id)).where(Deliverable.phase_id == phase.id)
    ).scalar_one()
    approved = db.session.execute(
        select(func.count(Deliverable.id)).where(
            Deliverable.phase_id == phase.id,
            Deliverable.status == "approved",
        )
    ).scalar_one()
    return approved, total


def is_phase_ready(phase: Phase) -> bool:
    """True iff the phase has deliverables and every one of them is approved.

    A phase with zero deliverables is never ready.
    """
    approved, total = phase_approval_counts(phase)
    return total > 0 and approved == total


def get_feedback_history(deliverable_id: int) -> list[dict]:
    """Return the append-only feedback trail, oldest first."""
    _get_deliverable(deliverable_id)
    rows = db.session.execute(
        select(DeliverableFeedback)
        .where(DeliverableFeedback.deliverable_id == deliverable_id)
        .order_by(DeliverableFeedback.id)
    ).scalars().all()
    return [r.to_dict() for r in rows]
