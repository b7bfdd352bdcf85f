"""
AI Company Workflow Engine
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - phase_advance_poller: calls try_advance for every in-progress project
    - team_auto_assign:     hands pending deliverables to idle members of active teams
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from app.models import db
from app.models.project import Project
from app.models.team import Team
from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Phase Advance Poller
# ═══════════════════════════════════════════════════════════════════════════

@register_job("phase_advance_poller")
def advance_ready_phases(app) -> dict[str, Any]:
    """Advance every project whose active phase has all deliverables approved."""
    from app.services import phase_state_machine

    results = {"projects_checked": 0, "advanced": 0, "not_ready": 0, "failed": 0, "errors": []}

    project_ids = db.session.execute(
        select(Project.id).where(Project.status == "in_progress").order_by(Project.id)
    ).scalars().all()

    for project_id in project_ids:
        results["projects_checked"] += 1
        try:
            outcome = phase_state_machine.try_advance(project_id)
        except Exception as e:
            db.session.rollback()
            results["failed"] += 1
            results["errors"].append({"project_id": project_id, "error": str(e)})
            logger.error("Advance failed for project %s: %s", project_id, e,
                         extra={"project_id": project_id})
            continue

        if outcome["advanced"]:
            results["advanced"] += 1
        else:
            results["not_ready"] += 1

    logger.info("Phase advance poller: %d advanced of %d checked",
                results["advanced"], results["projects_checked"])
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Team Auto-Assign
# ═══════════════════════════════════════════════════════════════════════════

@register_job("team_auto_assign")
def assign_pending_work(app) -> dict[str, Any]:
    """Pair idle members of every active team with pending deliverables."""
    from app.services import team_lifecycle

    results = {"teams_checked": 0, "assignments": 0, "failed": 0}

    team_ids = db.session.execute(
        select(Team.id).where(Team.status == "active").order_by(Team.id)
    ).scalars().all()

    for team_id in team_ids:
        results["teams_checked"] += 1
        try:
            results["assignments"] += len(team_lifecycle.auto_assign(team_id))
        except Exception as e:
            db.session.rollback()
            results["failed"] += 1
            logger.error("Auto-assign failed for team %s: %s", team_id, e,
                         extra={"team_id": team_id})

    return results
