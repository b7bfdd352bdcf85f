"""
Team lifecycle controller.

Activates and deactivates the agent team bound to a phase and hands idle
members pending work.

Transitions:
    activate:    team inactive → active; non-executive members → idle
    deactivate:  team → inactive; every member → idle, current deliverable cleared
    auto_assign: idle non-executive member + pending deliverable
                 → member working, deliverable in_progress
    assign:      the same pairing for one named member and deliverable
    start_review / finish_review:
                 executives → reviewing while the automated review runs, → idle after
    block_assignee:
                 working member whose generation failed → blocked; the next
                 successful generation releases it

Members are never deleted; a team is reused across the phases it serves.
activate, deactivate and auto_assign are idempotent.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import Deliverable
from app.models.project import Phase
from app.models.team import EXECUTIVE_ROLES, Team, TeamMember

logger = logging.getLogger(__name__)

# A rejected deliverable waits for a redo and can be handed out again.
ASSIGNABLE_STATUSES = ("pending", "rejected")


def _get_team(team_id: int) -> Team:
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFoundError(resource="Team", resource_id=team_id)
    return team


def _pair(team: Team, member: TeamMember, deliverable: Deliverable) -> dict:
    member.status = "working"
    member.current_deliverable_id = deliverable.id
    deliverable.status = "in_progress"
    deliverable.assigned_team_id = team.id
    deliverable.assigned_member_id = member.id
    return {
        "member_id": member.id,
        "agent_id": member.agent_id,
        "deliverable_id": deliverable.id,
        "deliverable_name": deliverable.name,
    }


def activate(team_id: int) -> Team:
    """Mark the team active and make its non-executive members available."""
    team = _get_team(team_id)
    if team.status == "active":
        logger.info("Team already active", extra={"team_id": team.id})
        return team

    team.status = "active"
    for member in team.members:
        if member.role not in EXECUTIVE_ROLES:
            member.status = "idle"
    db.session.commit()

    logger.info("Team activated", extra={"team_id": team.id, "project_id": team.project_id})
    return team


def deactivate(team_id: int) -> Team:
    """Mark the team inactive and release every member."""
    team = _get_team(team_id)
    for member in team.members:
        member.status = "idle"
        member.current_deliverable_id = None

    already_inactive = team.status == "inactive"
    team.status = "inactive"
    db.session.commit()

    if already_inactive:
        logger.info("Team already inactive", extra={"team_id": team.id})
    else:
        logger.info("Team deactivated", extra={"team_id": team.id, "project_id": team.project_id})
    return team


def auto_assign(team_id: int) -> list[dict]:
    """Pair idle members with pending deliverables of the team's active phases.

    First-fit in id order on both sides. Returns the assignments made; an
    empty list means no pending work or no free capacity.
    """
    team = _get_team(team_id)

    pending = db.session.execute(
        select(Deliverable)
        .join(Phase, Deliverable.phase_id == Phase.id)
        .where(
            Phase.team_id == team.id,
            Phase.status == "active",
            Deliverable.status == "pending",
        )
        .order_by(Deliverable.id)
    ).scalars().all()

    idle_members = db.session.execute(
        select(TeamMember)
        .where(
            TeamMember.team_id == team.id,
            TeamMember.status == "idle",
            TeamMember.role.not_in(list(EXECUTIVE_ROLES)),
        )
        .order_by(TeamMember.id)
    ).scalars().all()

    assignments = [_pair(team, member, deliverable) for member, deliverable in zip(idle_members, pending)]

    if assignments:
        db.session.commit()

    logger.info(
        "Auto-assigned %d deliverable(s)", len(assignments),
        extra={"team_id": team.id, "pending": len(pending), "idle": len(idle_members)},
    )
    return assignments


def assign(team_id: int, deliverable_id: int, member_id: int) -> dict:
    """Hand one deliverable to one named member of the team.

    The deliverable must belong to an active phase the team serves and
    still be waiting for work (pending, or rejected and awaiting a redo).

    Raises:
        NotFoundError:     unknown team, member or deliverable.
        ValidationError:   member outside the team, executive member, or a
                           deliverable of a phase the team does not serve.
        InvalidStateError: member busy, phase not active, or deliverable
                           already being worked on.
    """
    team = _get_team(team_id)
    member = db.session.get(TeamMember, member_id)
    if member is None:
        raise NotFoundError(resource="TeamMember", resource_id=member_id)
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)

    if member.team_id != team.id:
        raise ValidationError(
            f"Member {member.id} does not belong to team {team.id}",
            details={"member_id": "not a member of this team"},
        )
    if member.role in EXECUTIVE_ROLES:
        raise ValidationError(
            f"Member {member.id} is an executive; executives review work, they are not assigned it",
            details={"member_id": "executive"},
        )
    phase = deliverable.phase
    if phase.team_id != team.id:
        raise ValidationError(
            f"Deliverable {deliverable.id} belongs to a phase served by another team",
            details={"deliverable_id": "not served by this team"},
        )
    if phase.status != "active":
        raise InvalidStateError(
            f"Phase {phase.phase_number} is '{phase.status}'; work is only assigned in active phases",
            current_status=phase.status,
        )
    if member.status != "idle":
        raise InvalidStateError(
            f"Member {member.id} is '{member.status}'",
            current_status=member.status,
        )
    if deliverable.status not in ASSIGNABLE_STATUSES:
        raise InvalidStateError(
            f"Deliverable {deliverable.id} is '{deliverable.status}'",
            current_status=deliverable.status,
        )

    assignment = _pair(team, member, deliverable)
    db.session.commit()

    logger.info("Deliverable assigned", extra={"team_id": team.id, **assignment})
    return assignment


def _executives(team_id: int) -> list[TeamMember]:
    return db.session.execute(
        select(TeamMember).where(
            TeamMember.team_id == team_id,
            TeamMember.role.in_(list(EXECUTIVE_ROLES)),
        )
    ).scalars().all()


def start_review(team_id: int) -> int:
    """Mark the team's executives as reviewing. Returns how many were marked."""
    executives = _executives(team_id)
    for member in executives:
        member.status = "reviewing"
    if executives:
        db.session.commit()
    return len(executives)


def finish_review(team_id: int) -> int:
    """Return reviewing executives to idle."""
    executives = [m for m in _executives(team_id) if m.status == "reviewing"]
    for member in executives:
        member.status = "idle"
    if executives:
        db.session.commit()
    return len(executives)


def block_assignee(deliverable: Deliverable, reason: str = "") -> TeamMember | None:
    """Mark the member working on ``deliverable`` as blocked.

    The member keeps the deliverable; approval_gate releases it on the next
    successful generation.
    """
    if deliverable.assigned_member_id is None:
        return None
    member = db.session.get(TeamMember, deliverable.assigned_member_id)
    if member is None or member.current_deliverable_id != deliverable.id:
        return None

    member.status = "blocked"
    db.session.commit()
    logger.warning(
        "Member blocked: %s", reason or "generation failed",
        extra={"member_id": member.id, "deliverable_id": deliverable.id},
    )
    return member


def get_team_status(team_id: int) -> dict:
    """Team roster plus workload counters."""
    team = _get_team(team_id)
    members = team.members.all()

    deliverables = db.session.execute(
        select(Deliverable)
        .join(Phase, Deliverable.phase_id == Phase.id)
        .where(Phase.team_id == team.id)
    ).scalars().all()

    def _count(status):
        return sum(1 for d in deliverables if d.status == status)

    return {
        "team": team.to_dict(include_members=True),
        "stats": {
            "total_members": len(members),
            "working": sum(1 for m in members if m.status == "working"),
            "idle": sum(1 for m in members if m.status == "idle"),
            "reviewing": sum(1 for m in members if m.status == "reviewing"),
            "blocked": sum(1 for m in members if m.status == "blocked"),
            "pending_deliverables": _count("pending"),
            "in_progress_deliverables": _count("in_progress"),
            "review_deliverables": _count("review"),
            "approved_deliverables": _count("approved"),
        },
    }
