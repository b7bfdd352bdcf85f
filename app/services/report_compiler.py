"""
Consolidated phase report compiler.

compile(phase_id) gathers every deliverable of a phase into a single
ConsolidatedReport row:
    - agent work summaries (one entry per deliverable)
    - citations and screenshots, each tagged with its deliverable
    - metrics (counts plus wall-clock duration of the phase)
    - an executive summary from the reviewer, or a templated one when the
      reviewer is unavailable

Re-compiling overwrites the existing row for the phase, so the call is
safe to retry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.core.exceptions import DependencyError, NotFoundError
from app.models import db
from app.models.deliverable import Deliverable
from app.models.project import Phase
from app.models.reporting import ConsolidatedReport
from app.models.team import TeamMember

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = (
    "Phase {phase_number} ({phase_name}) completed with "
    "{approved_count} of {deliverable_count} deliverables approved."
)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _tag(items, deliverable: Deliverable, key: str) -> list[dict]:
    tagged = []
    for item in items or []:
        entry = dict(item) if isinstance(item, dict) else {key: item}
        entry["deliverable_id"] = deliverable.id
        entry["deliverable_name"] = deliverable.name
        tagged.append(entry)
    return tagged


def _duration_seconds(phase: Phase) -> float | None:
    started = _as_utc(phase.started_at)
    completed = _as_utc(phase.completed_at)
    if started is None or completed is None:
        return None
    return round((completed - started).total_seconds(), 3)


def build_report_context(phase: Phase) -> dict:
    """Aggregate the deliverables of a phase without writing anything."""
    deliverables = db.session.execute(
        select(Deliverable).where(Deliverable.phase_id == phase.id).order_by(Deliverable.id)
    ).scalars().all()

    member_ids = {d.assigned_member_id for d in deliverables if d.assigned_member_id}
    agents = {}
    if member_ids:
        rows = db.session.execute(
            select(TeamMember).where(TeamMember.id.in_(member_ids))
        ).scalars().all()
        agents = {m.id: m.agent_id for m in rows}

    work, citations, screenshots = [], [], []
    for d in deliverables:
        work.append({
            "deliverable_id": d.id,
            "name": d.name,
            "deliverable_type": d.deliverable_type,
            "agent_id": agents.get(d.assigned_member_id),
            "status": d.status,
            "version": d.version,
            "quality_score": d.quality_score,
            "content": d.generated_content,
        })
        citations.extend(_tag(d.citations, d, "source"))
        screenshots.extend(_tag(d.screenshots, d, "url"))

    metrics = {
        "deliverable_count": len(deliverables),
        "approved_count": sum(1 for d in deliverables if d.status == "approved"),
        "citation_count": len(citations),
        "screenshot_count": len(screenshots),
        "agent_count": len(member_ids),
        "duration_seconds": _duration_seconds(phase),
    }
    return {
        "agent_work_summaries": work,
        "citations": citations,
        "screenshots": screenshots,
        "metrics": metrics,
    }


def compile(phase_id: int, *, reviewer=None) -> ConsolidatedReport:  # noqa: A001
    """Build (or rebuild) the consolidated report of a phase.

    Args:
        phase_id: Target phase.
        reviewer: ReviewerAdapter used for the executive summary; built from
                  app config when None.

    Raises:
        NotFoundError: unknown phase.
    """
    phase = db.session.get(Phase, phase_id)
    if phase is None:
        raise NotFoundError(resource="Phase", resource_id=phase_id)

    context = build_report_context(phase)
    metrics = context["metrics"]

    if reviewer is None:
        from app.services.reviewer import get_reviewer
        reviewer = get_reviewer()

    try:
        summary = reviewer.summarize(phase, context)
        source = "ai"
    except DependencyError as e:
        logger.warning(
            "Executive summary unavailable, using template: %s", e,
            extra={"phase_id": phase.id, "project_id": phase.project_id},
        )
        summary = FALLBACK_SUMMARY.format(
            phase_number=phase.phase_number,
            phase_name=phase.name,
            approved_count=metrics["approved_count"],
            deliverable_count=metrics["deliverable_count"],
        )
        source = "template"

    report = db.session.execute(
        select(ConsolidatedReport).where(ConsolidatedReport.phase_id == phase.id)
    ).scalar_one_or_none()
    if report is None:
        report = ConsolidatedReport(phase_id=phase.id, project_id=phase.project_id)
        db.session.add(report)

    report.executive_summary = summary
    report.summary_source = source
    report.agent_work_summaries = context["agent_work_summaries"]
    report.citations = context["citations"]
    report.screenshots = context["screenshots"]
    report.metrics = metrics
    report.compiled_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Phase report compiled",
        extra={"phase_id": phase.id, "project_id": phase.project_id,
               "report_id": report.id, "summary_source": source},
    )
    return report


def get_report(phase_id: int) -> ConsolidatedReport:
    """Return the stored report of a phase.

    Raises:
        NotFoundError: unknown phase or phase not compiled yet.
    """
    if db.session.get(Phase, phase_id) is None:
        raise NotFoundError(resource="Phase", resource_id=phase_id)
    report = db.session.execute(
        select(ConsolidatedReport).where(ConsolidatedReport.phase_id == phase_id)
    ).scalar_one_or_none()
    if report is None:
        raise NotFoundError(resource="ConsolidatedReport", resource_id=phase_id)
    return report
