"""
Phase state machine — the only writer of Phase.status.

Lifecycle:
    pending → active → completed
                 ⇅
              blocked          (activated with an empty deliverable template)

Guarantees:
    - Phases start strictly in order: phase k needs phase k-1 completed.
    - Every status flip is a conditional UPDATE keyed on (phase id, expected
      status); only the caller whose UPDATE hits a row proceeds. Concurrent
      try_advance() calls therefore complete a phase exactly once, and the
      downstream effects (team deactivation, report, next-phase activation,
      notification) run once.
    - Side effects after completion never undo it. Their failures are logged
      and returned in the result's ``errors`` list; each is safe to re-run
      (team_lifecycle.deactivate, report_compiler.compile, activate_phase).
    - The current phase is derived from phase rows, never stored.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from app.core.exceptions import (
    DependencyError,
    InvalidStateError,
    NotFoundError,
    SequenceError,
    ValidationError,
)
from app.models import db
from app.models.deliverable import Deliverable
from app.models.project import Phase, Project, validate_phase_transition
from app.models.team import Team, TeamMember
from app.services import approval_gate, report_compiler, team_lifecycle
from app.services.notification import NotificationSink
from app.services.phase_templates import normalize_deliverables, normalize_templates

logger = logging.getLogger(__name__)

EMPTY_TEMPLATE_REASON = "No deliverables configured for this phase"


# ── Private helpers ────────────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def _get_phase(project_id: int, phase_number: int) -> Phase:
    phase = db.session.execute(
        select(Phase).where(Phase.project_id == project_id, Phase.phase_number == phase_number)
    ).scalar_one_or_none()
    if phase is None:
        raise NotFoundError(resource="Phase", resource_id=f"{project_id}/{phase_number}")
    return phase


def _cas_status(phase_id: int, expected: str, new: str, **values) -> bool:
    """Flip Phase.status from ``expected`` to ``new``; True iff this caller won."""
    if not validate_phase_transition(expected, new):
        raise InvalidStateError(f"Phase transition {expected} → {new} is not allowed", current_status=expected)
    result = db.session.execute(
        update(Phase)
        .where(Phase.id == phase_id, Phase.status == expected)
        .values(status=new, updated_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _instantiate_deliverables(phase: Phase) -> int:
    count = 0
    for item in phase.deliverable_template or []:
        db.session.add(Deliverable(
            phase_id=phase.id,
            deliverable_type=item["deliverable_type"],
            name=item["name"],
            description=item.get("description", ""),
            status="pending",
            assigned_team_id=phase.team_id,
        ))
        count += 1
    return count


def _notify(notifier, project: Project, event_type: str, payload: dict) -> str | None:
    """Fire-and-forget; returns an error string instead of raising."""
    notifier = notifier or NotificationSink()
    payload = {"project_id": project.id, "project_name": project.name, **payload}
    try:
        notifier.notify(project.owner_id, event_type, payload)
    except DependencyError as e:
        logger.warning(
            "Notification dropped: %s", e,
            extra={"project_id": project.id, "event_type": event_type},
        )
        return f"notification: {e}"
    except Exception as e:
        db.session.rollback()
        logger.error(
            "Notifier failed: %s", e,
            extra={"project_id": project.id, "event_type": event_type},
        )
        return f"notification: {e}"
    return None


# ── Project creation ──────────────────────────────────────────────────────────


def create_project(
    name: str,
    phase_templates: list | None = None,
    *,
    owner_id: str | None = None,
    description: str = "",
    industry: str = "",
    notifier=None,
) -> Project:
    """Create a project with its teams and phases; phase 1 starts active.

    Project, teams, phases and phase 1's activation (status + deliverables)
    are written in one commit. Teams are shared between phases that name
    the same team. A blocked phase 1 is reported through ``notifier``.

    Raises:
        ValidationError: missing name or malformed templates.
    """
    if not (name or "").strip():
        raise ValidationError("Project name is required", details={"name": "required"})
    templates = normalize_templates(phase_templates)

    project = Project(
        name=name.strip(),
        description=description or "",
        industry=industry or "",
        owner_id=owner_id,
        status="in_progress",
        phase_count=len(templates),
    )
    db.session.add(project)
    db.session.flush()

    teams_by_name: dict[str, Team] = {}
    phases = []
    for number, tpl in enumerate(templates, start=1):
        team_tpl = tpl["team"]
        team = teams_by_name.get(team_tpl["name"])
        if team is None:
            team = Team(project_id=project.id, name=team_tpl["name"],
                        division=team_tpl["division"], status="inactive")
            db.session.add(team)
            db.session.flush()
            for m in team_tpl["members"]:
                db.session.add(TeamMember(team_id=team.id, agent_id=m["agent_id"],
                                          agent_name=m["agent_name"], role=m["role"],
                                          status="idle"))
            teams_by_name[team.name] = team

        phase = Phase(
            project_id=project.id,
            phase_number=number,
            name=tpl["name"],
            status="pending",
            team_id=team.id,
            deliverable_template=tpl["deliverables"],
        )
        db.session.add(phase)
        phases.append(phase)
    db.session.flush()

    first = phases[0]
    first.started_at = _now()
    if first.deliverable_template:
        first.status = "active"
        _instantiate_deliverables(first)
    else:
        first.status = "blocked"
        first.blocked_reason = EMPTY_TEMPLATE_REASON
    db.session.commit()

    logger.info(
        "Project created",
        extra={"project_id": project.id, "phase_count": project.phase_count,
               "team_count": len(teams_by_name)},
    )

    if first.status == "active" and first.team_id:
        team_lifecycle.activate(first.team_id)
    elif first.status == "blocked":
        _notify(notifier, project, "phase_blocked", {
            "phase_id": first.id, "phase_number": 1, "phase_name": first.name,
            "message": first.blocked_reason,
        })
    return project


# ── Phase activation ──────────────────────────────────────────────────────────


def activate_phase(project_id: int, phase_number: int, *, notifier=None) -> Phase:
    """Start a pending phase whose predecessor is completed.

    Deliverables are instantiated from the phase template and the phase's
    team is activated. An empty template leaves the phase blocked.

    Raises:
        NotFoundError: unknown project or phase.
        SequenceError: phase not pending, predecessor not completed, or a
                       concurrent caller activated it first.
    """
    _get_project(project_id)
    phase = _get_phase(project_id, phase_number)

    if phase.status != "pending":
        raise SequenceError(
            f"Phase {phase_number} is '{phase.status}'; only pending phases can be activated",
            details={"phase_number": phase_number, "status": phase.status},
        )
    if phase_number > 1:
        previous = _get_phase(project_id, phase_number - 1)
        if previous.status != "completed":
            raise SequenceError(
                f"Phase {phase_number} cannot start before phase {phase_number - 1} is completed",
                details={"phase_number": phase_number, "previous_status": previous.status},
            )

    now = _now()
    if not _cas_status(phase.id, "pending", "active", started_at=now):
        db.session.rollback()
        raise SequenceError(
            f"Phase {phase_number} was activated concurrently",
            details={"phase_number": phase_number},
        )

    blocked = not phase.deliverable_template
    if blocked:
        _cas_status(phase.id, "active", "blocked", blocked_reason=EMPTY_TEMPLATE_REASON)
        created = 0
    else:
        created = _instantiate_deliverables(phase)
    db.session.commit()

    logger.info(
        "Phase %s", "blocked" if blocked else "activated",
        extra={"project_id": project_id, "phase_id": phase.id,
               "phase_number": phase_number, "deliverables_created": created},
    )

    if blocked:
        _notify(notifier, phase.project, "phase_blocked", {
            "phase_id": phase.id, "phase_number": phase_number, "phase_name": phase.name,
            "message": EMPTY_TEMPLATE_REASON,
        })
    elif phase.team_id:
        team_lifecycle.activate(phase.team_id)
    return phase


def resume_phase(project_id: int, phase_number: int, deliverable_template: list | None = None) -> Phase:
    """Move a blocked phase back to active, optionally supplying its template.

    Raises:
        NotFoundError:     unknown project or phase.
        InvalidStateError: phase is not blocked (or was resumed concurrently).
        ValidationError:   still no deliverables to work on.
    """
    _get_project(project_id)
    phase = _get_phase(project_id, phase_number)
    if phase.status != "blocked":
        raise InvalidStateError(
            f"Phase {phase_number} is '{phase.status}'; only blocked phases can be resumed",
            current_status=phase.status,
        )

    if deliverable_template is not None:
        phase.deliverable_template = normalize_deliverables(deliverable_template)
    has_deliverables = phase.deliverables.count() > 0
    if not phase.deliverable_template and not has_deliverables:
        db.session.rollback()
        raise ValidationError(
            "A blocked phase needs a non-empty deliverable template to resume",
            details={"deliverable_template": "required"},
        )

    if not _cas_status(phase.id, "blocked", "active", blocked_reason=None):
        db.session.rollback()
        raise InvalidStateError(f"Phase {phase_number} was resumed concurrently")

    created = 0 if has_deliverables else _instantiate_deliverables(phase)
    db.session.commit()

    logger.info(
        "Phase resumed",
        extra={"project_id": project_id, "phase_id": phase.id,
               "phase_number": phase_number, "deliverables_created": created},
    )
    if phase.team_id:
        team_lifecycle.activate(phase.team_id)
    return phase


# ── Advancement ───────────────────────────────────────────────────────────────


def try_advance(project_id: int, *, reviewer=None, notifier=None) -> dict:
    """Complete the active phase if every deliverable is approved.

    Safe to call any number of times, concurrently. Not-ready is a normal
    result, not an error.

    Returns:
        dict: advanced, reason (not_ready | already_advanced | no_active_phase
              | phase_blocked | None), completed_phase, new_phase,
              project_complete, report_id, errors

    Raises:
        NotFoundError: unknown project.
    """
    project = _get_project(project_id)
    result = {
        "advanced": False,
        "reason": None,
        "completed_phase": None,
        "new_phase": None,
        "project_complete": project.is_complete,
        "report_id": None,
        "errors": [],
    }

    phase = project.current_phase
    if phase is None:
        result["reason"] = "no_active_phase"
        return result
    if phase.status == "blocked":
        result["reason"] = "phase_blocked"
        return result

    if not approval_gate.is_phase_ready(phase):
        result["reason"] = "not_ready"
        return result

    phase_id = phase.id
    if not _cas_status(phase_id, "active", "completed", completed_at=_now()):
        db.session.rollback()
        logger.info("Phase already advanced by another caller",
                    extra={"project_id": project_id, "phase_id": phase_id})
        result["reason"] = "already_advanced"
        return result
    db.session.commit()

    phase = db.session.get(Phase, phase_id)
    logger.info(
        "Phase completed",
        extra={"project_id": project_id, "phase_id": phase_id, "phase_number": phase.phase_number},
    )
    result["advanced"] = True

    # Effects below are logged on failure; the completed status stands.
    if phase.team_id:
        try:
            team_lifecycle.deactivate(phase.team_id)
        except Exception as e:
            db.session.rollback()
            logger.error("Team deactivation failed: %s", e, extra={"phase_id": phase_id})
            result["errors"].append(f"team_deactivation: {e}")

    try:
        report = report_compiler.compile(phase_id, reviewer=reviewer)
        result["report_id"] = report.id
    except Exception as e:
        db.session.rollback()
        logger.error("Report compilation failed: %s", e, extra={"phase_id": phase_id})
        result["errors"].append(f"report_compilation: {e}")

    next_number = phase.phase_number + 1
    if next_number <= project.phase_count:
        try:
            new_phase = activate_phase(project_id, next_number, notifier=notifier)
            result["new_phase"] = new_phase.to_dict()
        except (SequenceError, NotFoundError) as e:
            db.session.rollback()
            logger.error("Next phase activation failed: %s", e,
                         extra={"project_id": project_id, "phase_number": next_number})
            result["errors"].append(f"next_phase_activation: {e}")
        event_type = "phase_completed"
    else:
        project.status = "completed"
        project.completed_at = _now()
        db.session.commit()
        result["project_complete"] = True
        event_type = "project_completed"
        logger.info("Project completed", extra={"project_id": project_id})

    result["completed_phase"] = phase.to_dict()

    error = _notify(notifier, project, event_type, {
        "phase_id": phase_id,
        "phase_number": phase.phase_number,
        "phase_name": phase.name,
        "report_id": result["report_id"],
        "next_phase_number": next_number if result["new_phase"] else None,
    })
    if error:
        result["errors"].append(error)
    return result


# ── Progress ──────────────────────────────────────────────────────────────────


def get_project_progress(project_id: int) -> dict:
    """Per-phase approval progress and overall completion of a project."""
    project = _get_project(project_id)

    phases = []
    completed = 0
    for phase in project.phases:
        approved, total = approval_gate.phase_approval_counts(phase)
        if phase.status == "completed":
            completed += 1
            percent = 100
        else:
            percent = round(approved / total * 100) if total else 0
        phases.append({
            "phase_id": phase.id,
            "phase_number": phase.phase_number,
            "name": phase.name,
            "status": phase.status,
            "team_id": phase.team_id,
            "approved_deliverables": approved,
            "total_deliverables": total,
            "percent": percent,
            "blocked_reason": phase.blocked_reason,
            "started_at": phase.started_at.isoformat() if phase.started_at else None,
            "completed_at": phase.completed_at.isoformat() if phase.completed_at else None,
        })

    return {
        "project": project.to_dict(),
        "phases": phases,
        "overall_percent": round(completed / project.phase_count * 100) if project.phase_count else 0,
        "current_phase_number": project.current_phase_number,
        "project_complete": project.is_complete,
    }
