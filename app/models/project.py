"""
AI Company Workflow Engine
Project and Phase domain models.

Models:
    - Project:  one business project run by the AI company (N sequential phases)
    - Phase:    one stage of a project, served by a team and gated by deliverables

Architecture:
    Project ──1:N──▶ Phase ──1:N──▶ Deliverable
    Project ──1:N──▶ Team ◀──N:1── Phase   (a team may serve several phases)

Lifecycle states:
    Project:  in_progress → completed
    Phase:    pending → active → completed  |  active ⇄ blocked

The current phase is never stored on Project; it is derived from the
phase rows on every read.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"in_progress", "completed"}

PHASE_STATUSES = {"pending", "active", "completed", "blocked"}

PHASE_TRANSITIONS = {
    "pending":   ["active"],
    "active":    ["completed", "blocked"],
    "blocked":   ["active"],
    "completed": [],
}


def validate_phase_transition(old_status, new_status):
    """Return True if Phase status transition is valid."""
    return new_status in PHASE_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """Business project whose phases are worked through by agent teams."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    industry = db.Column(db.String(100), default="")
    owner_id = db.Column(
        db.String(64), nullable=True, index=True,
        comment="Recipient of workflow notifications",
    )
    status = db.Column(
        db.String(20), nullable=False, default="in_progress",
        comment="in_progress | completed",
    )
    phase_count = db.Column(
        db.Integer, nullable=False,
        comment="Fixed at creation time",
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('in_progress','completed')",
            name="ck_project_status",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    phases = db.relationship(
        "Phase", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Phase.phase_number",
    )
    teams = db.relationship(
        "Team", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Team.id",
    )

    @property
    def current_phase(self):
        """The unique phase currently in flight (active or blocked), or None."""
        return self.phases.filter(Phase.status.in_(["active", "blocked"])).first()

    @property
    def current_phase_number(self):
        phase = self.current_phase
        return phase.phase_number if phase else None

    @property
    def is_complete(self):
        return self.status == "completed"

    def to_dict(self, include_phases=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "industry": self.industry,
            "owner_id": self.owner_id,
            "status": self.status,
            "phase_count": self.phase_count,
            "current_phase_number": self.current_phase_number,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_phases:
            result["phases"] = [p.to_dict() for p in self.phases]
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Phase
# ═════════════════════════════════════════════════════════════════════════════


class Phase(db.Model):
    """
    One stage of a project.

    Status is only ever changed by the phase state machine service; the
    active → completed flip goes through a conditional UPDATE so that a
    single caller wins when several advance attempts race.
    """

    __tablename__ = "phases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | active | completed | blocked",
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    deliverable_template = db.Column(
        db.JSON, nullable=False, default=list,
        comment="[{deliverable_type, name, description}] instantiated on activation",
    )
    blocked_reason = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "phase_number", name="uq_phase_project_number"),
        db.CheckConstraint(
            "status IN ('pending','active','completed','blocked')",
            name="ck_phase_status",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    deliverables = db.relationship(
        "Deliverable", backref="phase", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Deliverable.id",
    )
    team = db.relationship("Team", foreign_keys=[team_id])
    report = db.relationship(
        "ConsolidatedReport", backref="phase", uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_deliverables=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "phase_number": self.phase_number,
            "name": self.name,
            "status": self.status,
            "team_id": self.team_id,
            "team_name": self.team.name if self.team else None,
            "deliverable_count": self.deliverables.count(),
            "blocked_reason": self.blocked_reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_deliverables:
            result["deliverables"] = [d.to_dict() for d in self.deliverables]
        return result

    def __repr__(self):
        return f"<Phase {self.id}: #{self.phase_number} {self.name} [{self.status}]>"
